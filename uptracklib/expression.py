"""
Evaluator for the expressions allowed in variant configuration (tag mapping,
extra tags, labels and build args).

Expressions are Jinja2 expressions evaluated in a sandbox, e.g.::

    name | replace('-alpine', '')
    'py' ~ (name | split('.') | first) ~ '-' ~ architecture
    tag.tag_last_pushed | formatDateTime('%Y%m%d')

Each ExpressionEvaluator owns its environment; the functions available to
expressions are the fixed FUNCTIONS table below, registered both as filters
(``value | fn(arg)``) and as globals (``fn(value, arg)``).
"""

import json
import re
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Mapping, Optional

from dateutil import parser as date_parser
from jinja2 import StrictUndefined, TemplateError
from jinja2.sandbox import SandboxedEnvironment

from uptracklib import logutil
from uptracklib.model import Expression, RawImage, RawTag, ValueOrExpression

logger = logutil.get_logger(__name__)


class ExpressionError(ValueError):
    pass


def _as_str(val) -> str:
    if val is None:
        return ''
    return val if isinstance(val, str) else str(val)


def _as_datetime(val) -> datetime:
    if isinstance(val, datetime):
        return val
    if isinstance(val, (int, float)):
        return datetime.fromtimestamp(val, tz=timezone.utc)
    return date_parser.isoparse(_as_str(val))


def swap_case(val) -> str:
    return _as_str(val).swapcase()


def starts_with(val, prefix: str) -> bool:
    return _as_str(val).startswith(prefix)


def ends_with(val, suffix: str) -> bool:
    return _as_str(val).endswith(suffix)


def index_of(val, sub: str) -> int:
    return _as_str(val).find(sub)


def ltrim(val) -> str:
    return _as_str(val).lstrip()


def rtrim(val) -> str:
    return _as_str(val).rstrip()


def replace_first(val, old: str, new: str) -> str:
    return _as_str(val).replace(old, new, 1)


def replace_all(val, old: str, new: str) -> str:
    return _as_str(val).replace(old, new)


def regex_replace(val, pattern: str, replacement: str) -> str:
    return re.sub(pattern, replacement, _as_str(val))


def regex_match(val, pattern: str, group: int = 0) -> Optional[str]:
    m = re.search(pattern, _as_str(val))
    return m.group(group) if m else None


def split(val, delimiter: str) -> list:
    return _as_str(val).split(delimiter)


def substring(val, start: int, end: Optional[int] = None) -> str:
    return _as_str(val)[start:end]


def pad_start(val, length: int, fill: str = ' ') -> str:
    s = _as_str(val)
    if not fill or len(s) >= length:
        return s
    return (fill * length)[: length - len(s)] + s


def pad_end(val, length: int, fill: str = ' ') -> str:
    s = _as_str(val)
    if not fill or len(s) >= length:
        return s
    return s + (fill * length)[: length - len(s)]


def parse_int(val, base: int = 10) -> int:
    return int(_as_str(val).strip(), base)


def parse_float(val) -> float:
    return float(_as_str(val).strip())


def to_boolean(val) -> bool:
    return _as_str(val).strip().lower() in ('true', '1', 'yes', 'y', 'on')


def slugify(val) -> str:
    return re.sub(r'[^a-z0-9]+', '-', _as_str(val).lower()).strip('-')


def unslugify(val) -> str:
    return ' '.join(w.capitalize() for w in re.split(r'[-_]+', _as_str(val)) if w)


def get(val: Mapping, key: str, default=None):
    return val.get(key, default) if isinstance(val, Mapping) else default


def keys(val: Mapping) -> list:
    return list(val.keys())


def values(val: Mapping) -> list:
    return list(val.values())


def has(val: Mapping, key: str) -> bool:
    return isinstance(val, Mapping) and key in val


def stringify(val) -> str:
    return json.dumps(val, sort_keys=True, default=str)


def parse_json(val):
    return json.loads(_as_str(val))


def format_date_time(val, fmt: str = '%Y-%m-%d') -> str:
    return _as_datetime(val).strftime(fmt)


def to_millis(val) -> int:
    return round(_as_datetime(val).timestamp() * 1000)


def to_epoch(val) -> int:
    return round(_as_datetime(val).timestamp())


def utc_now(_val=None) -> str:
    return datetime.now(tz=timezone.utc).isoformat()


FUNCTIONS: Dict[str, Callable] = {
    'swapCase': swap_case,
    'startsWith': starts_with,
    'endsWith': ends_with,
    'indexOf': index_of,
    'ltrim': ltrim,
    'rtrim': rtrim,
    'replaceFirst': replace_first,
    'replaceAll': replace_all,
    'regexReplace': regex_replace,
    'regexMatch': regex_match,
    'split': split,
    'substring': substring,
    'padStart': pad_start,
    'padEnd': pad_end,
    'parseInt': parse_int,
    'parseFloat': parse_float,
    'toBoolean': to_boolean,
    'slugify': slugify,
    'unslugify': unslugify,
    'get': get,
    'keys': keys,
    'values': values,
    'has': has,
    'stringify': stringify,
    'parseJson': parse_json,
    'formatDateTime': format_date_time,
    'toMillis': to_millis,
    'toEpoch': to_epoch,
    'utcNow': utc_now,
}


class ExpressionEvaluator:
    def __init__(self, functions: Optional[Mapping[str, Callable]] = None):
        self.functions = dict(FUNCTIONS if functions is None else functions)
        self._env = SandboxedEnvironment(undefined=StrictUndefined, autoescape=False)
        self._env.filters.update(self.functions)
        self._env.globals.update(self.functions)
        self._compiled: Dict[str, Callable[..., Any]] = {}

    def _compile(self, expression: str):
        compiled = self._compiled.get(expression)
        if compiled is None:
            try:
                compiled = self._env.compile_expression(expression, undefined_to_none=False)
            except TemplateError as e:
                raise ExpressionError(f'Invalid expression ({expression}): {e}') from e
            self._compiled[expression] = compiled
        return compiled

    def validate(self, expression: str):
        """Raise ExpressionError if the expression is blank or does not compile"""
        if expression is None or not expression.strip():
            raise ExpressionError('Expression cannot be empty or null')
        self._compile(expression)

    def _run(self, expression: str, context: Mapping[str, Any]):
        self.validate(expression)
        try:
            return self._compile(expression)(**context)
        except Exception as e:
            raise ExpressionError(f'Error occurred while evaluating expression ({expression}): {e}') from e

    def evaluate(self, expression: str, context: Mapping[str, Any]) -> str:
        """
        Evaluate an expression and return its value, which must be a non-blank string.
        :raises ExpressionError: if the expression cannot be evaluated or does not yield a non-blank string
        """
        result = self._run(expression, context)
        if result is None:
            raise ExpressionError(f'Expression ({expression}) returned null')
        if not isinstance(result, str):
            raise ExpressionError(
                f'Expression ({expression}) returned value of type "{type(result).__name__}" instead of "str"'
            )
        if not result.strip():
            raise ExpressionError(f'Expression ({expression}) returned empty value')
        return result

    def evaluate_optional(self, expression: str, context: Mapping[str, Any]) -> Optional[str]:
        """Like evaluate(), but a null or blank result yields None instead of raising"""
        result = self._run(expression, context)
        if result is None or (isinstance(result, str) and not result.strip()):
            return None
        if not isinstance(result, str):
            raise ExpressionError(
                f'Expression ({expression}) returned value of type "{type(result).__name__}" instead of "str"'
            )
        return result

    def resolve(self, value: ValueOrExpression, context: Mapping[str, Any]) -> str:
        """A literal value is returned as is, an Expression is evaluated"""
        if isinstance(value, Expression):
            return self.evaluate(value.expression, context)
        return value


def build_context(tag: RawTag, image: RawImage, config: Mapping[str, Any]) -> Dict[str, Any]:
    """
    The variables visible to an expression evaluated for one upstream tag/platform image.
    tag and image are the registry records as listed, config the variant configuration.
    """
    return {
        'name': tag.name,
        'os': image.os,
        'architecture': image.architecture,
        'platform': image.platform,
        'tag': {'name': tag.name, **tag.raw},
        'image': {'digest': image.digest, 'os': image.os, 'architecture': image.architecture, **image.raw},
        'config': config,
    }
