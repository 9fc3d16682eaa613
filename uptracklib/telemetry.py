from functools import wraps
from typing import Any, Awaitable, Callable, Optional

from opentelemetry import trace


def start_as_current_span_async(tracer: trace.Tracer, name: str, **span_kwargs):
    """Decorator opening a span, made current, around every call of a coroutine function.
    span_kwargs are passed to tracer.start_as_current_span.
    """

    def decorator(function: Callable[..., Awaitable[Any]]):
        @wraps(function)
        async def wrapper(*args, **kwargs):
            with tracer.start_as_current_span(name, **span_kwargs):
                return await function(*args, **kwargs)

        return wrapper

    return decorator


def set_span_attributes(attributes: dict, span: Optional[trace.Span] = None):
    """Set attributes on the given span (current span by default), skipping None values"""
    span = span or trace.get_current_span()
    for key, value in attributes.items():
        if value is not None:
            span.set_attribute(key, value)
