import json
import unittest
from unittest.mock import AsyncMock, patch

from tenacity import wait_none

from uptracklib.image_info import ImageInspectionError, ImageInspector, ImageNotFoundError

IMAGE_INFO = {
    "name": "docker.io/framjet/nginx:1.27",
    "digest": "sha256:abc",
    "config": {
        "architecture": "arm64",
        "os": "linux",
        "config": {
            "Labels": {
                "com.framjet.uptrack.image.revision": "abc123",
                "com.framjet.uptrack.upstream.tag": "1.27",
            }
        },
    },
}


@patch.object(ImageInspector._fetch_labels.retry, "wait", wait_none())
class TestImageInspector(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.inspector = ImageInspector()

    @patch("uptracklib.exectools.cmd_gather_async", new_callable=AsyncMock)
    async def test_get_labels(self, cmd_gather_async):
        cmd_gather_async.return_value = (0, json.dumps(IMAGE_INFO), "")
        labels = await self.inspector.get_labels("framjet/nginx:1.27", "linux/arm64")
        self.assertEqual(labels["com.framjet.uptrack.upstream.tag"], "1.27")
        cmd_gather_async.assert_awaited_once_with(
            ["oc", "image", "info", "-o", "json", "--filter-by-os=linux/arm64", "framjet/nginx:1.27"], check=False
        )

    @patch("uptracklib.exectools.cmd_gather_async", new_callable=AsyncMock)
    async def test_registry_config(self, cmd_gather_async):
        cmd_gather_async.return_value = (0, json.dumps(IMAGE_INFO), "")
        inspector = ImageInspector(registry_config="/tmp/auth.json")
        await inspector.get_labels("framjet/nginx:1.27", "linux/amd64")
        cmd = cmd_gather_async.await_args.args[0]
        self.assertIn("--registry-config=/tmp/auth.json", cmd)
        self.assertEqual(cmd[-1], "framjet/nginx:1.27")

    @patch("uptracklib.exectools.cmd_gather_async", new_callable=AsyncMock)
    async def test_image_without_labels(self, cmd_gather_async):
        cmd_gather_async.return_value = (0, json.dumps({"config": {"config": {"Labels": None}}}), "")
        self.assertEqual(await self.inspector.get_labels("framjet/nginx:1.27", "linux/amd64"), {})

    @patch("uptracklib.exectools.cmd_gather_async", new_callable=AsyncMock)
    async def test_not_found(self, cmd_gather_async):
        cmd_gather_async.return_value = (1, "", "error: manifest unknown: manifest unknown")
        self.assertIsNone(await self.inspector.get_labels("framjet/nginx:missing", "linux/amd64"))
        with self.assertRaises(ImageNotFoundError):
            await self.inspector.get_label("framjet/nginx:missing", "linux/amd64", "any")
        # the negative result is cached too
        cmd_gather_async.assert_awaited_once()

    @patch("uptracklib.exectools.cmd_gather_async", new_callable=AsyncMock)
    async def test_get_label(self, cmd_gather_async):
        cmd_gather_async.return_value = (0, json.dumps(IMAGE_INFO), "")
        value = await self.inspector.get_label("framjet/nginx:1.27", "linux/arm64", "com.framjet.uptrack.image.revision")
        self.assertEqual(value, "abc123")
        self.assertEqual(await self.inspector.get_label("framjet/nginx:1.27", "linux/arm64", "missing", "x"), "x")

    @patch("uptracklib.exectools.cmd_gather_async", new_callable=AsyncMock)
    async def test_results_are_cached_per_platform(self, cmd_gather_async):
        cmd_gather_async.return_value = (0, json.dumps(IMAGE_INFO), "")
        await self.inspector.get_labels("framjet/nginx:1.27", "linux/arm64")
        await self.inspector.get_labels("framjet/nginx:1.27", "linux/arm64")
        self.assertEqual(cmd_gather_async.await_count, 1)
        await self.inspector.get_labels("framjet/nginx:1.27", "linux/amd64")
        self.assertEqual(cmd_gather_async.await_count, 2)
        self.assertIn("labels[framjet/nginx:1.27:linux/amd64]", self.inspector.cache)

    @patch("uptracklib.exectools.cmd_gather_async", new_callable=AsyncMock)
    async def test_failure_is_retried(self, cmd_gather_async):
        cmd_gather_async.side_effect = [
            (1, "", "error: connection reset by peer"),
            (0, json.dumps(IMAGE_INFO), ""),
        ]
        labels = await self.inspector.get_labels("framjet/nginx:1.27", "linux/arm64")
        self.assertEqual(labels["com.framjet.uptrack.image.revision"], "abc123")
        self.assertEqual(cmd_gather_async.await_count, 2)

    @patch("uptracklib.exectools.cmd_gather_async", new_callable=AsyncMock)
    async def test_persistent_failure(self, cmd_gather_async):
        cmd_gather_async.return_value = (1, "", "error: unauthorized")
        with self.assertRaisesRegex(ImageInspectionError, "unauthorized"):
            await self.inspector.get_labels("framjet/nginx:1.27", "linux/arm64")
        self.assertEqual(cmd_gather_async.await_count, 3)
        # failures are not cached
        self.assertNotIn("labels[framjet/nginx:1.27:linux/arm64]", self.inspector.cache)

    @patch("uptracklib.exectools.cmd_gather_async", new_callable=AsyncMock)
    async def test_invalid_output(self, cmd_gather_async):
        cmd_gather_async.return_value = (0, "not json", "")
        with self.assertRaisesRegex(ImageInspectionError, "Unexpected output"):
            await self.inspector.get_labels("framjet/nginx:1.27", "linux/arm64")


if __name__ == "__main__":
    unittest.main()
