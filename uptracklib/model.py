"""
Value types shared by the reconciliation steps.

Everything here is produced and consumed within a single reconciliation pass
of one variant: raw registry records go in, matched tags come out of the
filter, merged releases come out of the merger and verdicts come out of the
staleness checks.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, FrozenSet, List, Mapping, Optional, Tuple, Union

from dateutil import parser as date_parser

from uptracklib.constants import CONTENT_TYPE_IMAGE, TAG_STATUS_ACTIVE

# A configured value is either a literal string or {"expression": "..."} evaluated per release
ValueOrExpression = Union[str, "Expression"]


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 registry timestamp, returning None for missing values"""
    if not value:
        return None
    return date_parser.isoparse(value)


def to_epoch(value: Optional[datetime]) -> int:
    """Epoch seconds (rounded) of a timestamp; a missing timestamp counts as the epoch itself"""
    if value is None:
        return 0
    return round(value.timestamp())


def canonical_list(value: Union[str, List[str], Tuple[str, ...], FrozenSet[str]]) -> str:
    """Canonical form of a comma separated list: split on comma, sort, rejoin"""
    items = value.split(',') if isinstance(value, str) else list(value)
    return ','.join(sorted(items))


@dataclass(frozen=True)
class Expression:
    """An expression evaluated against the tag/image/config context"""

    expression: str


@dataclass(frozen=True)
class RawImage:
    """One platform image of an upstream tag as listed by the registry"""

    digest: str
    os: str
    architecture: str
    status: str = TAG_STATUS_ACTIVE
    last_pushed: Optional[datetime] = None
    variant: Optional[str] = None
    raw: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def platform(self) -> str:
        return f'{self.os}/{self.architecture}'

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RawImage":
        return cls(
            digest=data.get('digest') or '',
            os=data.get('os') or '',
            architecture=data.get('architecture') or '',
            status=data.get('status') or '',
            last_pushed=parse_timestamp(data.get('last_pushed')),
            variant=data.get('variant') or None,
            raw=dict(data),
        )


@dataclass(frozen=True)
class RawTag:
    """One upstream tag as listed by the registry, with its per-platform images"""

    name: Optional[str]
    last_pushed: Optional[datetime] = None
    tag_status: str = TAG_STATUS_ACTIVE
    content_type: str = CONTENT_TYPE_IMAGE
    images: Tuple[RawImage, ...] = ()
    raw: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def is_active_image(self) -> bool:
        return self.tag_status == TAG_STATUS_ACTIVE and self.content_type == CONTENT_TYPE_IMAGE

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RawTag":
        return cls(
            name=data.get('name'),
            last_pushed=parse_timestamp(data.get('tag_last_pushed')),
            tag_status=data.get('tag_status') or '',
            content_type=data.get('content_type') or '',
            images=tuple(RawImage.from_dict(i) for i in data.get('images') or []),
            raw=dict(data),
        )


class RuleKind(Enum):
    EXACT = 'name'
    EXACT_MAPPED = 'name+mapped'
    EXACT_EXPRESSION = 'name+expression'
    PATTERN = 'pattern'
    PATTERN_MAPPED = 'pattern+mapped'
    PATTERN_EXPRESSION = 'pattern+expression'

    @property
    def is_pattern(self) -> bool:
        return self in (RuleKind.PATTERN, RuleKind.PATTERN_MAPPED, RuleKind.PATTERN_EXPRESSION)


@dataclass(frozen=True)
class FilterRule:
    """
    One entry of a variant's tag filter list.

    `value` is the exact tag name or the regular expression, depending on `kind`.
    `mapped` holds the constant (or substitution template for patterns) of the *_MAPPED kinds,
    `expression` the expression of the *_EXPRESSION kinds. The extra_* fields and build_target
    are merged into the build matrix of releases this rule matched.
    """

    kind: RuleKind
    value: str
    mapped: Optional[str] = None
    expression: Optional[str] = None
    extra_tags: Tuple[ValueOrExpression, ...] = ()
    extra_build_args: Mapping[str, ValueOrExpression] = field(default_factory=dict)
    extra_labels: Mapping[str, ValueOrExpression] = field(default_factory=dict)
    build_target: Optional[str] = None
    regex: Optional[re.Pattern] = field(default=None, compare=False, repr=False)

    @classmethod
    def exact(cls, name: str) -> "FilterRule":
        return cls(kind=RuleKind.EXACT, value=name)


@dataclass(frozen=True)
class MatchedImage:
    """One (tag, platform) pair that survived filtering"""

    digest: str
    tag_name: str
    mapped_tag_name: str
    platform: str
    os: str
    architecture: str
    last_pushed: int
    status: str = TAG_STATUS_ACTIVE
    rule: Optional[FilterRule] = field(default=None, compare=False, repr=False)
    raw: Optional[RawImage] = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class MatchedTag:
    """One upstream tag that survived filtering, with its in-scope platform images"""

    name: str
    last_pushed: int
    images: Tuple[MatchedImage, ...]
    rule: Optional[FilterRule] = None
    raw: Optional[RawTag] = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class MergedRelease:
    """
    A cross-platform, digest-consistent group of images sharing one set of upstream tag names.
    Only created by the merger.

    tags maps upstream tag name -> downstream tag name in the order the tags were listed
    by the registry; the first entry is the release's reference tag. The mapping is read-only
    and left out of the hash.
    """

    digests: FrozenSet[str]
    tags: Mapping[str, str] = field(hash=False)
    platforms: str
    os: str
    architecture: str
    last_pushed: int
    release_tag: MatchedTag = field(compare=False, repr=False)
    release_image: MatchedImage = field(compare=False, repr=False)

    @property
    def upstream_tag(self) -> str:
        return next(iter(self.tags))

    @property
    def downstream_tag(self) -> str:
        return self.tags[self.upstream_tag]

    @property
    def sorted_digests(self) -> str:
        return canonical_list(self.digests)

    @property
    def tag_set_key(self) -> str:
        return canonical_list(list(self.tags))


class RebuildReason(Enum):
    IMAGE_NOT_FOUND = 'Image not found'
    REVISION_LABEL_NOT_FOUND = 'Revision label not found'
    DIGEST_LABEL_NOT_FOUND = 'Digest label not found'
    UPSTREAM_IMAGE_CHANGED = 'Upstream image changed'
    IMAGE_LABEL_NOT_FOUND = 'Image label not found'
    UPSTREAM_IMAGE_MISMATCH = 'Upstream Image mismatch'
    TAG_LABEL_NOT_FOUND = 'Tag label not found'
    TAG_MISMATCH = 'Tag mismatch'
    PLATFORM_LABEL_NOT_FOUND = 'Platform label not found'
    PLATFORM_MISMATCH = 'Platform mismatch'
    SOURCE_CHANGED = 'Source changed'
    FORCED = 'Forced'


@dataclass(frozen=True)
class Verdict:
    reason: Optional[RebuildReason] = None

    @property
    def rebuild(self) -> bool:
        return self.reason is not None

    @classmethod
    def skip(cls) -> "Verdict":
        return cls()

    @classmethod
    def rebuild_because(cls, reason: RebuildReason) -> "Verdict":
        return cls(reason=reason)

    def __str__(self):
        return f'Rebuild({self.reason.value})' if self.rebuild else 'Skip'
