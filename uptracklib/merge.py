"""
Merging of matched per-platform images into cross-platform releases.

An upstream release is the set of images, one per platform, that are all
published under the same set of tag names. Merging runs in two passes:
images are first accumulated per platform and digest (a digest published
under several tags collects all of their names), then indexed per platform
by their canonical tag-set key. Every tag-set key of the reference platform must then
be present on every other platform.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from uptracklib import logutil
from uptracklib.model import MatchedImage, MatchedTag, MergedRelease, canonical_list

logger = logutil.get_logger(__name__)


class ReleaseConsistencyError(Exception):
    """The matched images cannot be merged into consistent cross-platform releases"""


class DuplicateReleaseError(ReleaseConsistencyError):
    pass


class MissingPlatformReleaseError(ReleaseConsistencyError):
    pass


@dataclass
class DigestRelease:
    """Accumulates every tag an image digest is published under"""

    digest: str
    platform: str
    os: str
    architecture: str
    last_pushed: int
    release_tag: MatchedTag
    release_image: MatchedImage
    tags: Dict[str, str] = field(default_factory=dict)

    @property
    def tag_set_key(self) -> str:
        return canonical_list(list(self.tags))


# platform -> tag set key -> release
PlatformIndex = Mapping[str, Mapping[str, DigestRelease]]


def group_by_digest(tags: Iterable[MatchedTag]) -> List[DigestRelease]:
    """
    First pass: one accumulator per platform image digest, in order of first appearance.
    The first tag and image a digest is seen with become its reference.
    """
    by_digest: Dict[Tuple[str, str], DigestRelease] = {}
    for tag in tags:
        for image in tag.images:
            key = (image.platform, image.digest)
            release = by_digest.get(key)
            if release is None:
                release = DigestRelease(
                    digest=image.digest,
                    platform=image.platform,
                    os=image.os,
                    architecture=image.architecture,
                    last_pushed=image.last_pushed,
                    release_tag=tag,
                    release_image=image,
                )
                by_digest[key] = release
            release.tags[image.tag_name] = image.mapped_tag_name
    return list(by_digest.values())


def index_by_platform(releases: Iterable[DigestRelease]) -> PlatformIndex:
    """
    Second pass: index the digest accumulators per platform by tag set key.
    :raises DuplicateReleaseError: if two digests of one platform share the same tag set
    """
    index: Dict[str, Dict[str, DigestRelease]] = {}
    for release in releases:
        platform = index.setdefault(release.platform, {})
        key = release.tag_set_key
        if key in platform:
            raise DuplicateReleaseError(f'Duplicate tags for platform {release.platform}: {key}')
        platform[key] = release
    return MappingProxyType({p: MappingProxyType(r) for p, r in index.items()})


def reconcile(index: PlatformIndex, platforms: Iterable[str]) -> List[MergedRelease]:
    """
    Build one MergedRelease per tag set of the reference platform, the lexicographically first one.
    :raises MissingPlatformReleaseError: if a tag set is not published on every platform
    """
    platforms = sorted(platforms)
    if not platforms:
        return []

    reference_platform = platforms[0]
    reference = index.get(reference_platform)
    if reference is None:
        raise MissingPlatformReleaseError(f'No releases for platform {reference_platform}')

    result: List[MergedRelease] = []
    for key, release in reference.items():
        digests = set()
        for platform in platforms:
            platform_releases = index.get(platform)
            if platform_releases is None:
                raise MissingPlatformReleaseError(f'No releases for platform {platform}')
            platform_release = platform_releases.get(key)
            if platform_release is None:
                raise MissingPlatformReleaseError(f'No release for platform {platform} with tags {key}')
            digests.add(platform_release.digest)

        result.append(
            MergedRelease(
                digests=frozenset(digests),
                tags=MappingProxyType(dict(release.tags)),
                platforms=','.join(platforms),
                os=release.os,
                architecture=release.architecture,
                last_pushed=release.last_pushed,
                release_tag=release.release_tag,
                release_image=release.release_image,
            )
        )
    return result


def merge_releases(tags: Iterable[MatchedTag], platforms: Optional[Iterable[str]] = None) -> List[MergedRelease]:
    """
    Merge matched tags into cross-platform releases.
    :param tags: Matched tags in registry listing order
    :param platforms: Platforms every release must cover. Defaults to the platforms seen in the input.
    :return: Releases in order of the reference platform's first appearance. Empty for empty input.
    :raises ReleaseConsistencyError: if the images cannot be merged consistently
    """
    index = index_by_platform(group_by_digest(tags))
    if not index:
        return []
    releases = reconcile(index, index.keys() if platforms is None else platforms)
    logger.debug('Merged %s releases over platforms %s', len(releases), ','.join(sorted(index)))
    return releases
