"""
Loading and validation of the uptrack configuration file.

The file (JSON, or YAML when named *.yml / *.yaml) is validated against the
pydantic models below and then processed into VariantConfig objects, which is
what the rest of uptrack works with.
"""

import json
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, FrozenSet, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, PositiveInt, ValidationError, field_validator
from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from uptracklib import logutil
from uptracklib.constants import DEFAULT_NAMESPACE
from uptracklib.model import Expression, FilterRule, RuleKind, ValueOrExpression

logger = logutil.get_logger(__name__)


class ConfigError(ValueError):
    pass


class StrictBaseModel(BaseModel):
    # do not allow extra fields
    model_config = ConfigDict(extra='forbid')


def _not_blank(value: str) -> str:
    if not value.strip():
        raise ValueError('Expression cannot be empty')
    return value


def _unique(items: List[str]) -> List[str]:
    if len(set(items)) != len(items):
        raise ValueError('All items must be unique, no duplicate values allowed')
    return items


class ExpressionValue(StrictBaseModel):
    expression: str

    @field_validator('expression')
    @classmethod
    def check_expression(cls, value: str) -> str:
        return _not_blank(value)


ValueOrExpressionModel = Union[str, ExpressionValue]


class RuleOverrides(StrictBaseModel):
    """Fields every object form of a tag filter may carry"""

    extraBuildArgs: Optional[Dict[str, ValueOrExpressionModel]] = None
    extraLabels: Optional[Dict[str, ValueOrExpressionModel]] = None
    extraTags: Optional[List[ValueOrExpressionModel]] = None
    buildTarget: Optional[str] = None


class TagName(RuleOverrides):
    name: str


class TagNameMapped(RuleOverrides):
    name: str
    mapped: str


class TagNameExpression(RuleOverrides):
    name: str
    expression: str

    @field_validator('expression')
    @classmethod
    def check_expression(cls, value: str) -> str:
        return _not_blank(value)


class TagPattern(RuleOverrides):
    pattern: str


class TagPatternMapped(RuleOverrides):
    pattern: str
    mapped: str


class TagPatternExpression(RuleOverrides):
    pattern: str
    expression: str

    @field_validator('expression')
    @classmethod
    def check_expression(cls, value: str) -> str:
        return _not_blank(value)


TagFilter = Union[
    str,
    TagName,
    TagNameMapped,
    TagNameExpression,
    TagPattern,
    TagPatternMapped,
    TagPatternExpression,
]


class Filters(StrictBaseModel):
    oldest_tag_limit: Optional[str] = None  # duration, e.g. "30d" or "2 weeks"
    limit_releases: Optional[PositiveInt] = None
    page_limit: Optional[PositiveInt] = None
    tags: Optional[List[TagFilter]] = None


class Upstream(StrictBaseModel):
    namespace: str = DEFAULT_NAMESPACE
    name: str


class Variant(StrictBaseModel):
    namespace: str = DEFAULT_NAMESPACE
    name: str
    platforms: List[str] = Field(min_length=1)
    upstream: Upstream
    filters: Optional[Filters] = None
    buildArgs: Optional[Dict[str, ValueOrExpressionModel]] = None
    labels: Optional[Dict[str, ValueOrExpressionModel]] = None
    extraTags: Optional[List[ValueOrExpressionModel]] = None
    include: List[str] = Field(default_factory=list)
    buildTarget: Optional[str] = None

    @field_validator('platforms', 'include')
    @classmethod
    def check_unique(cls, items: List[str]) -> List[str]:
        return _unique(items)


class WrapperImageConfig(StrictBaseModel):
    variants: List[Variant] = Field(min_length=1)
    schema_: Optional[str] = Field(default=None, alias='$schema')


@dataclass(frozen=True)
class UpstreamConfig:
    namespace: str
    name: str
    image_name: str


@dataclass(frozen=True)
class TagFilters:
    platforms: FrozenSet[str]
    rules: Tuple[FilterRule, ...] = ()
    oldest_tag_limit: Optional[float] = None  # seconds
    limit_releases: Optional[int] = None
    page_limit: int = 0  # 0 means no limit


@dataclass(frozen=True)
class VariantConfig:
    """A processed variant: one downstream image tracked against one upstream image"""

    namespace: str
    name: str
    image_name: str
    platforms: Tuple[str, ...]
    upstream: UpstreamConfig
    filters: TagFilters
    extra_tags: Tuple[ValueOrExpression, ...] = ()
    build_args: Dict[str, ValueOrExpression] = field(default_factory=dict)
    labels: Dict[str, ValueOrExpression] = field(default_factory=dict)
    include: Tuple[str, ...] = ()
    build_target: Optional[str] = None
    source: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def reference_platform(self) -> str:
        """The platform provenance labels are read from: the first configured one"""
        return self.platforms[0]

    def to_context(self) -> Dict[str, Any]:
        """The variant as seen by expressions"""
        return {
            'namespace': self.namespace,
            'name': self.name,
            'imageName': self.image_name,
            'platforms': list(self.platforms),
            'upstream': {
                'namespace': self.upstream.namespace,
                'name': self.upstream.name,
                'imageName': self.upstream.image_name,
            },
            'buildTarget': self.build_target,
            'include': list(self.include),
            'source': self.source,
        }


_DURATION_RE = re.compile(
    r'^(?P<value>-?\d*\.?\d+) *(?P<unit>milliseconds?|msecs?|ms|seconds?|secs?|s|minutes?|mins?|m'
    r'|hours?|hrs?|h|days?|d|weeks?|w|years?|yrs?|y)?$',
    re.IGNORECASE,
)

_UNIT_SECONDS = {
    'ms': 0.001,
    's': 1,
    'm': 60,
    'h': 60 * 60,
    'd': 24 * 60 * 60,
    'w': 7 * 24 * 60 * 60,
    'y': 365.25 * 24 * 60 * 60,
}


def parse_duration(value: str) -> float:
    """
    Parse a human duration such as "90d", "2 weeks", "1.5h" or "500ms" into seconds.
    A bare number is taken as milliseconds.
    :raises ValueError: if the value is not a duration
    """
    m = _DURATION_RE.match(value.strip()) if value else None
    if not m:
        raise ValueError(f'Invalid duration "{value}"')
    unit = (m.group('unit') or 'ms').lower()
    if unit.startswith(('ms', 'msec', 'millisecond')):
        key = 'ms'
    else:
        key = unit[0]
    return float(m.group('value')) * _UNIT_SECONDS[key]


def full_image_name(namespace: str, name: str) -> str:
    """Docker Hub image name; official images in the "library" namespace are referenced without it"""
    return name if namespace == DEFAULT_NAMESPACE else f'{namespace}/{name}'


def convert_pattern(pattern: str) -> str:
    """Accept (?<name>...) named groups by rewriting them to Python's (?P<name>...)"""
    return re.sub(r'\(\?<(?![=!])', '(?P<', pattern)


def _convert_value(value) -> ValueOrExpression:
    if isinstance(value, ExpressionValue):
        return Expression(value.expression)
    return value


def _convert_values(values: Optional[Dict[str, Any]]) -> Dict[str, ValueOrExpression]:
    return {k: _convert_value(v) for k, v in (values or {}).items()}


def process_tag_filter(tag_filter: TagFilter) -> FilterRule:
    """Turn one validated tag filter entry into a FilterRule"""
    if isinstance(tag_filter, str):
        return FilterRule.exact(tag_filter)

    overrides = dict(
        extra_tags=tuple(_convert_value(v) for v in tag_filter.extraTags or []),
        extra_build_args=_convert_values(tag_filter.extraBuildArgs),
        extra_labels=_convert_values(tag_filter.extraLabels),
        build_target=tag_filter.buildTarget,
    )

    if isinstance(tag_filter, TagNameMapped):
        return FilterRule(RuleKind.EXACT_MAPPED, tag_filter.name, mapped=tag_filter.mapped, **overrides)
    if isinstance(tag_filter, TagNameExpression):
        return FilterRule(RuleKind.EXACT_EXPRESSION, tag_filter.name, expression=tag_filter.expression, **overrides)
    if isinstance(tag_filter, TagName):
        return FilterRule(RuleKind.EXACT, tag_filter.name, **overrides)

    try:
        regex = re.compile(convert_pattern(tag_filter.pattern))
    except re.error as e:
        raise ConfigError(f'Invalid tag filter pattern "{tag_filter.pattern}": {e}') from e

    if isinstance(tag_filter, TagPatternMapped):
        return FilterRule(
            RuleKind.PATTERN_MAPPED, tag_filter.pattern, mapped=tag_filter.mapped, regex=regex, **overrides
        )
    if isinstance(tag_filter, TagPatternExpression):
        return FilterRule(
            RuleKind.PATTERN_EXPRESSION, tag_filter.pattern, expression=tag_filter.expression, regex=regex, **overrides
        )
    if isinstance(tag_filter, TagPattern):
        return FilterRule(RuleKind.PATTERN, tag_filter.pattern, regex=regex, **overrides)

    raise ConfigError(f'Unsupported tag filter {tag_filter!r}')


def process_variant(variant: Variant) -> VariantConfig:
    filters = variant.filters or Filters()

    oldest_tag_limit = None
    if filters.oldest_tag_limit is not None:
        try:
            oldest_tag_limit = parse_duration(filters.oldest_tag_limit)
        except ValueError as e:
            raise ConfigError(f'Failed to process "filters.oldest_tag_limit" value ({filters.oldest_tag_limit}): {e}')

    return VariantConfig(
        namespace=variant.namespace,
        name=variant.name,
        image_name=full_image_name(variant.namespace, variant.name),
        platforms=tuple(variant.platforms),
        upstream=UpstreamConfig(
            namespace=variant.upstream.namespace,
            name=variant.upstream.name,
            image_name=full_image_name(variant.upstream.namespace, variant.upstream.name),
        ),
        filters=TagFilters(
            platforms=frozenset(variant.platforms),
            rules=tuple(process_tag_filter(f) for f in filters.tags or []),
            oldest_tag_limit=oldest_tag_limit,
            limit_releases=filters.limit_releases,
            page_limit=filters.page_limit or 0,
        ),
        extra_tags=tuple(_convert_value(v) for v in variant.extraTags or []),
        build_args=_convert_values(variant.buildArgs),
        labels=_convert_values(variant.labels),
        include=tuple(variant.include),
        build_target=variant.buildTarget,
        source=variant.model_dump(mode='json', exclude_none=True),
    )


def process_config(config: WrapperImageConfig) -> List[VariantConfig]:
    return [process_variant(v) for v in config.variants]


def format_validation_error(error: ValidationError) -> str:
    messages = []
    for issue in error.errors():
        location = '.'.join(str(part) for part in issue['loc'])
        prefix = f'Field ({location}) ' if location else ''
        messages.append(f'{prefix}{issue["msg"]}')
    return 'Errors while parsing config file: ' + '; '.join(messages)


def parse_config_data(data: Any) -> WrapperImageConfig:
    try:
        return WrapperImageConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(format_validation_error(e)) from e


def load_config(path: Union[str, Path]) -> WrapperImageConfig:
    """
    Read and validate a configuration file.
    :raises ConfigError: if the file is missing, unreadable or invalid
    """
    path = Path(path)
    if not path.is_file():
        raise ConfigError(f'Config file "{path}" does not exist')

    text = path.read_text(encoding='utf-8')
    try:
        if path.suffix.lower() in ('.yml', '.yaml'):
            data = YAML(typ='safe').load(text)
        else:
            data = json.loads(text)
    except (json.JSONDecodeError, YAMLError) as e:
        raise ConfigError(f'Failed to parse config file "{path}": {e}') from e

    config = parse_config_data(data)
    logger.info('Parsed config file "%s"', path)
    return config


def load_variants(path: Union[str, Path]) -> List[VariantConfig]:
    return process_config(load_config(path))
