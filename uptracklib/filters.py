"""
Filtering and renaming of upstream tags.

Every raw tag listed by the registry is checked against the variant's filter
configuration; the tags that survive become MatchedTag records carrying one
MatchedImage per configured platform, each with the downstream tag name the
matching rule maps it to.
"""

import re
import time
from typing import Awaitable, Callable, Iterable, List, Optional, Tuple

from uptracklib import logutil
from uptracklib.config import VariantConfig
from uptracklib.expression import ExpressionEvaluator, build_context
from uptracklib.model import FilterRule, MatchedImage, MatchedTag, RawImage, RawTag, RuleKind, to_epoch

logger = logutil.get_logger(__name__)

# Produces the downstream tag name of one platform image of a matched tag
TagNameMapper = Callable[[RawTag, RawImage], Awaitable[str]]

_TEMPLATE_REF = re.compile(r'\$(\$|&|<\w+>|\d{1,2})')


def expand_template(match: re.Match, template: str) -> str:
    """
    Expand a replacement template for one regex match.
    $1..$99 refer to numbered groups, $<name> to named groups, $& to the whole match and $$ is a literal $.
    References to groups that do not exist are kept literally.
    """
    groups = match.re.groups

    def _ref(ref: re.Match) -> str:
        token = ref.group(1)
        if token == '$':
            return '$'
        if token == '&':
            return match.group(0)
        if token.startswith('<'):
            name = token[1:-1]
            if name in match.re.groupindex:
                return match.group(name) or ''
            return ref.group(0)
        index = int(token)
        if 0 < index <= groups:
            return match.group(index) or ''
        # $12 with fewer than 12 groups is $1 followed by "2"
        if len(token) == 2 and 0 < int(token[0]) <= groups:
            return (match.group(int(token[0])) or '') + token[1]
        return ref.group(0)

    return _TEMPLATE_REF.sub(_ref, template)


def substitute(regex: re.Pattern, template: str, value: str) -> str:
    """Replace every match of regex in value with the expanded template"""
    return regex.sub(lambda m: expand_template(m, template), value)


def rule_matches(rule: FilterRule, tag_name: str) -> bool:
    if rule.kind.is_pattern:
        return rule.regex.search(tag_name) is not None
    return rule.value == tag_name


def find_rule(rules: Iterable[FilterRule], tag_name: str) -> Optional[FilterRule]:
    """The first rule, in configured order, matching the tag name"""
    for rule in rules:
        if rule_matches(rule, tag_name):
            return rule
    return None


def make_mapper(
    rule: Optional[FilterRule], tag_name: str, variant: VariantConfig, evaluator: ExpressionEvaluator
) -> TagNameMapper:
    """The downstream tag name mapping a matched rule applies to the given tag"""

    async def identity(tag: RawTag, image: RawImage) -> str:
        return tag_name

    if rule is None:
        return identity

    if rule.kind in (RuleKind.EXACT, RuleKind.PATTERN):
        return identity

    if rule.kind == RuleKind.EXACT_MAPPED:
        mapped = rule.mapped

        async def constant(tag: RawTag, image: RawImage) -> str:
            return mapped

        return constant

    if rule.kind == RuleKind.PATTERN_MAPPED:
        mapped = substitute(rule.regex, rule.mapped, tag_name)

        async def substituted(tag: RawTag, image: RawImage) -> str:
            return mapped

        return substituted

    if rule.kind in (RuleKind.EXACT_EXPRESSION, RuleKind.PATTERN_EXPRESSION):
        expression = rule.expression
        evaluator.validate(expression)
        config_context = variant.to_context()

        async def evaluated(tag: RawTag, image: RawImage) -> str:
            return evaluator.evaluate(expression, build_context(tag, image, config_context))

        return evaluated

    raise ValueError(f'Unsupported filter rule kind {rule.kind}')


def is_too_old(tag: RawTag, platforms, oldest_timestamp: int) -> bool:
    """
    A tag is too old if it was last pushed before the threshold, or if any of its images
    on a configured platform was. Images on other platforms are not considered.
    """
    if to_epoch(tag.last_pushed) < oldest_timestamp:
        return True
    for image in tag.images:
        if image.platform not in platforms:
            continue
        if to_epoch(image.last_pushed) < oldest_timestamp:
            return True
    return False


async def filter_tags(
    tags: Iterable[RawTag],
    variant: VariantConfig,
    evaluator: ExpressionEvaluator,
    now: Optional[float] = None,
) -> List[MatchedTag]:
    """
    Select the upstream tags a variant tracks and compute their downstream names.
    :param tags: Raw tags in registry listing order
    :param variant: Variant configuration
    :param evaluator: Evaluator for expression based tag mappings
    :param now: Current epoch seconds, used with the oldest tag limit. Defaults to the current time.
    :return: Matched tags, at most filters.limit_releases of them
    :raises ExpressionError: if a mapping expression fails
    """
    filters = variant.filters
    platforms = filters.platforms
    result: List[MatchedTag] = []

    oldest_timestamp = None
    if filters.oldest_tag_limit is not None:
        oldest_timestamp = round((time.time() if now is None else now) - filters.oldest_tag_limit)

    match_all = not filters.rules

    for tag in tags:
        if not tag.is_active_image:
            logger.debug('Skipping tag %s: status %s, content type %s', tag.name, tag.tag_status, tag.content_type)
            continue

        if filters.limit_releases is not None and len(result) >= filters.limit_releases:
            logger.debug('Release limit %s reached', filters.limit_releases)
            break

        if oldest_timestamp is not None and is_too_old(tag, platforms, oldest_timestamp):
            logger.debug('Skipping tag %s: older than the oldest tag limit', tag.name)
            continue

        tag_name = tag.name
        if tag_name is None or not tag_name.strip():
            continue

        rule = None
        if not match_all:
            rule = find_rule(filters.rules, tag_name)
            if rule is None:
                logger.debug('Skipping tag %s: no filter matches', tag_name)
                continue

        mapper = make_mapper(rule, tag_name, variant, evaluator)

        images: List[MatchedImage] = []
        for image in tag.images:
            if image.platform not in platforms:
                continue
            images.append(
                MatchedImage(
                    digest=image.digest,
                    tag_name=tag_name,
                    mapped_tag_name=await mapper(tag, image),
                    platform=image.platform,
                    os=image.os,
                    architecture=image.architecture,
                    last_pushed=to_epoch(image.last_pushed),
                    status=image.status,
                    rule=rule,
                    raw=image,
                )
            )

        result.append(
            MatchedTag(
                name=tag_name,
                last_pushed=to_epoch(tag.last_pushed),
                images=tuple(images),
                rule=rule,
                raw=tag,
            )
        )

    return result


def summarize(tags: Iterable[MatchedTag]) -> Tuple[str, ...]:
    """Distinct tag names, in order"""
    return tuple(dict.fromkeys(t.name for t in tags))
