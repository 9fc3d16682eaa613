"""Labels of published downstream images, read with ``oc image info``.

Usage::

    inspector = ImageInspector()
    labels = await inspector.get_labels("framjet/nginx:1.27", "linux/amd64")
    if labels is None:
        ...  # image does not exist
    revision = await inspector.get_label("framjet/nginx:1.27", "linux/amd64", "com.framjet.uptrack.image.revision")

Results are cached per image and platform for the lifetime of the inspector.
"""

import json
from typing import Dict, Optional

from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_fixed

from uptracklib import exectools, logutil
from uptracklib.cache import SingleFlightCache
from uptracklib.constants import DEFAULT_CACHE_SIZE

logger = logutil.get_logger(__name__)

_NOT_FOUND_MARKERS = ('not found', 'manifest unknown', 'does not exist')


class ImageInspectionError(Exception):
    """The registry could not be queried"""


class ImageNotFoundError(Exception):
    """The image does not exist in the registry"""


def _is_not_found(stderr: str) -> bool:
    stderr = stderr.lower()
    return any(marker in stderr for marker in _NOT_FOUND_MARKERS)


class ImageInspector:
    def __init__(self, cache: Optional[SingleFlightCache] = None, registry_config: Optional[str] = None):
        """
        :param cache: Cache for label lookups. A new one is created if not given.
        :param registry_config: Path to a registry auth file passed to oc
        """
        self.cache = cache if cache is not None else SingleFlightCache(DEFAULT_CACHE_SIZE)
        self.registry_config = registry_config

    def _build_cmd(self, image: str, platform: str):
        cmd = ['oc', 'image', 'info', '-o', 'json', f'--filter-by-os={platform}']
        if self.registry_config:
            cmd.append(f'--registry-config={self.registry_config}')
        cmd.append(image)
        return cmd

    @retry(
        reraise=True,
        stop=stop_after_attempt(3),
        wait=wait_fixed(10),
        retry=retry_if_exception_type(ImageInspectionError),
    )
    async def _fetch_labels(self, image: str, platform: str) -> Optional[Dict[str, str]]:
        rc, stdout, stderr = await exectools.cmd_gather_async(self._build_cmd(image, platform), check=False)
        if rc != 0:
            if _is_not_found(stderr):
                logger.debug('Image %s (%s) not found', image, platform)
                return None
            raise ImageInspectionError(f'Failed to inspect image {image} ({platform}): {stderr.strip()}')

        try:
            info = json.loads(stdout)
        except json.JSONDecodeError as e:
            raise ImageInspectionError(f'Unexpected output inspecting image {image} ({platform}): {e}') from e
        return dict(((info.get('config') or {}).get('config') or {}).get('Labels') or {})

    async def get_labels(self, image: str, platform: str) -> Optional[Dict[str, str]]:
        """
        Labels of an image for one platform.
        :param image: Image reference, e.g. "namespace/name:tag"
        :param platform: Platform, e.g. "linux/arm64"
        :return: The labels (empty if the image has none), or None if the image does not exist
        :raises ImageInspectionError: if the registry could not be queried
        """
        return await self.cache.compute_if_absent(
            f'labels[{image}:{platform}]', lambda: self._fetch_labels(image, platform)
        )

    async def get_label(self, image: str, platform: str, name: str, default: Optional[str] = None) -> Optional[str]:
        """
        A single label of an image.
        :return: The label value, or default if the image has no such label
        :raises ImageNotFoundError: if the image does not exist
        """
        labels = await self.get_labels(image, platform)
        if labels is None:
            raise ImageNotFoundError(f'Image {image} ({platform}) not found')
        return labels.get(name, default)
