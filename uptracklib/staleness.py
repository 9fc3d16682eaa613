"""
Decides whether a merged release needs to be rebuilt.

The downstream image published for a release carries provenance labels
written at build time. The checks below compare them, in a fixed order, with
what the release looks like now; the first check that fails decides the
rebuild reason.
"""

from uptracklib import logutil
from uptracklib.constants import (
    DEFAULT_LABEL_PREFIX,
    LABEL_IMAGE_REVISION,
    LABEL_UPSTREAM_DIGESTS,
    LABEL_UPSTREAM_IMAGE,
    LABEL_UPSTREAM_PLATFORMS,
    LABEL_UPSTREAM_TAG,
)
from uptracklib.image_info import ImageInspector
from uptracklib.model import MergedRelease, RebuildReason, Verdict, canonical_list

logger = logutil.get_logger(__name__)


class StalenessChecker:
    def __init__(
        self,
        inspector: ImageInspector,
        label_prefix: str = DEFAULT_LABEL_PREFIX,
        upstream_image: str = '',
        build_hash: str = '',
        force: bool = False,
    ):
        """
        :param inspector: Reads labels of published images
        :param label_prefix: Prefix of the provenance label names
        :param upstream_image: Upstream image name the variant tracks, e.g. "bitnami/redis" or "nginx"
        :param build_hash: Build identity of the current sources
        :param force: Rebuild releases that are otherwise up to date
        """
        self.inspector = inspector
        self.upstream_image = upstream_image
        self.build_hash = build_hash
        self.label_prefix = label_prefix
        self.force = force

    def label(self, name: str) -> str:
        return f'{self.label_prefix}{name}'

    def _rebuild(self, image_name: str, reason: RebuildReason, detail: str) -> Verdict:
        logger.info('Docker image "%s" %s. Adding to build list (%s)', image_name, detail, reason.value)
        return Verdict.rebuild_because(reason)

    async def check(self, release: MergedRelease, image_name: str, platform: str) -> Verdict:
        """
        Check one release against the labels of its published image.
        :param release: The release
        :param image_name: Downstream image reference, name and tag
        :param platform: Platform whose image labels are read
        :return: The verdict of the first failing check, Skip if none fails
        """
        labels = await self.inspector.get_labels(image_name, platform)
        if labels is None:
            return self._rebuild(image_name, RebuildReason.IMAGE_NOT_FOUND, 'not found')

        revision = labels.get(self.label(LABEL_IMAGE_REVISION))
        if revision is None:
            return self._rebuild(image_name, RebuildReason.REVISION_LABEL_NOT_FOUND, 'revision label not found')

        digests = labels.get(self.label(LABEL_UPSTREAM_DIGESTS))
        if digests is None:
            return self._rebuild(image_name, RebuildReason.DIGEST_LABEL_NOT_FOUND, 'source image digest label not found')

        if canonical_list(digests) != release.sorted_digests:
            return self._rebuild(
                image_name,
                RebuildReason.UPSTREAM_IMAGE_CHANGED,
                f'source image digests "{digests}" do not match expected upstream digests "{release.sorted_digests}"',
            )

        upstream_image = labels.get(self.label(LABEL_UPSTREAM_IMAGE))
        if upstream_image is None:
            return self._rebuild(image_name, RebuildReason.IMAGE_LABEL_NOT_FOUND, 'source image label not found')

        if upstream_image != self.upstream_image:
            return self._rebuild(
                image_name,
                RebuildReason.UPSTREAM_IMAGE_MISMATCH,
                f'source image "{upstream_image}" does not match expected upstream image "{self.upstream_image}"',
            )

        upstream_tag = labels.get(self.label(LABEL_UPSTREAM_TAG))
        if upstream_tag is None:
            return self._rebuild(image_name, RebuildReason.TAG_LABEL_NOT_FOUND, 'source image tag label not found')

        if upstream_tag != release.upstream_tag:
            return self._rebuild(
                image_name,
                RebuildReason.TAG_MISMATCH,
                f'source image tag "{upstream_tag}" does not match expected upstream tag "{release.upstream_tag}"',
            )

        platforms = labels.get(self.label(LABEL_UPSTREAM_PLATFORMS))
        if platforms is None or not platforms.strip():
            return self._rebuild(
                image_name, RebuildReason.PLATFORM_LABEL_NOT_FOUND, 'source image platform label not found'
            )

        if canonical_list(platforms) != release.platforms:
            return self._rebuild(
                image_name,
                RebuildReason.PLATFORM_MISMATCH,
                f'source image platforms "{platforms}" do not match expected platforms "{release.platforms}"',
            )

        if revision != self.build_hash:
            return self._rebuild(
                image_name,
                RebuildReason.SOURCE_CHANGED,
                f'is outdated "{revision}", current revision "{self.build_hash}"',
            )

        if self.force:
            return self._rebuild(image_name, RebuildReason.FORCED, 'is up to date but the force flag is set')

        logger.info('Docker image "%s" is up to date. Skipping build', image_name)
        return Verdict.skip()
