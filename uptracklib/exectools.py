"""Subprocess and concurrency helpers for the external tools uptrack drives (git, oc)."""

import asyncio
import functools
import time
import weakref
from typing import Awaitable, Callable, Sequence, Tuple, TypeVar

from opentelemetry import trace

from uptracklib import logutil
from uptracklib.telemetry import set_span_attributes, start_as_current_span_async

logger = logutil.get_logger(__name__)
TRACER = trace.get_tracer(__name__)

F = TypeVar('F', bound=Callable[..., Awaitable])


def limit_concurrency(limit: int = 5) -> Callable[[F], F]:
    """Decorator allowing at most `limit` concurrent calls of a coroutine function per event loop.
    :raises ValueError: if limit is not positive
    :raises TypeError: if the decorated function is not a coroutine function
    """
    if limit <= 0:
        raise ValueError("Limit must be positive")

    # a semaphore is bound to the loop it is first used in
    semaphores: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, asyncio.Semaphore]" = weakref.WeakKeyDictionary()

    def decorator(func: F) -> F:
        if not asyncio.iscoroutinefunction(func):
            raise TypeError("limit_concurrency can only decorate async functions")

        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            loop = asyncio.get_running_loop()
            semaphore = semaphores.get(loop)
            if semaphore is None:
                semaphore = semaphores[loop] = asyncio.BoundedSemaphore(limit)
            async with semaphore:
                return await func(*args, **kwargs)

        return wrapper  # type: ignore

    return decorator


def span_name(cmd: Sequence[str]) -> str:
    """exec.<tool>.<subcommand>, e.g. exec.git.rev-parse or exec.oc.image.info"""
    if not cmd:
        return "exec.unknown"
    words = [cmd[0]]
    for arg in cmd[1:3 if cmd[0] == "oc" else 2]:
        if arg.startswith("-"):
            break
        words.append(arg)
    return "exec." + ".".join(words)


@start_as_current_span_async(TRACER, "cmd_gather_async")
async def cmd_gather_async(cmd: Sequence[str], check: bool = True, **kwargs) -> Tuple[int, str, str]:
    """Run a command and capture its output.
    :param cmd: Program and arguments
    :param check: Raise ChildProcessError if the command exits non-zero
    :param kwargs: Passed to asyncio.create_subprocess_exec, e.g. env or cwd
    :return: rc, stdout, stderr
    """
    cmd = [str(arg) for arg in cmd]
    span = trace.get_current_span()
    span.update_name(span_name(cmd))
    set_span_attributes({"exec.cmd": cmd}, span)

    kwargs.setdefault("stdout", asyncio.subprocess.PIPE)
    kwargs.setdefault("stderr", asyncio.subprocess.PIPE)

    logger.info("Executing: %s", " ".join(cmd))
    started = time.monotonic()
    proc = await asyncio.subprocess.create_subprocess_exec(*cmd, **kwargs)
    out, err = await proc.communicate()
    stdout = out.decode() if out else ""
    stderr = err.decode() if err else ""
    set_span_attributes(
        {"exec.exit_code": proc.returncode, "exec.duration_seconds": time.monotonic() - started}, span
    )

    if proc.returncode != 0:
        msg = f"Process {cmd!r} exited with code {proc.returncode}.\nstdout>>{stdout}<<\nstderr>>{stderr}<<\n"
        if check:
            raise ChildProcessError(msg)
        logger.debug(msg)
    return proc.returncode, stdout, stderr
