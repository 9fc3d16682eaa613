import asyncio
import unittest
from unittest.mock import AsyncMock

from uptracklib.cache import SingleFlightCache


class TestSingleFlightCache(unittest.IsolatedAsyncioTestCase):
    async def test_cached_value_is_returned_without_computing(self):
        cache = SingleFlightCache(maxsize=10)
        compute = AsyncMock(return_value="v1")
        self.assertEqual(await cache.compute_if_absent("k", compute), "v1")
        self.assertEqual(await cache.compute_if_absent("k", compute), "v1")
        compute.assert_awaited_once()
        self.assertIn("k", cache)
        self.assertEqual(len(cache), 1)

    async def test_concurrent_callers_share_one_computation(self):
        cache = SingleFlightCache()
        release = asyncio.Event()
        calls = []

        async def compute():
            calls.append(1)
            await release.wait()
            return 42

        tasks = [asyncio.create_task(cache.compute_if_absent("k", compute)) for _ in range(5)]
        await asyncio.sleep(0)
        release.set()
        results = await asyncio.gather(*tasks)
        self.assertEqual(results, [42] * 5)
        self.assertEqual(len(calls), 1)

    async def test_failure_reaches_every_waiter_and_is_not_cached(self):
        cache = SingleFlightCache()
        release = asyncio.Event()

        async def failing():
            await release.wait()
            raise RuntimeError("boom")

        tasks = [asyncio.create_task(cache.compute_if_absent("k", failing)) for _ in range(3)]
        await asyncio.sleep(0)
        release.set()
        results = await asyncio.gather(*tasks, return_exceptions=True)
        for result in results:
            self.assertIsInstance(result, RuntimeError)
        self.assertNotIn("k", cache)

        compute = AsyncMock(return_value="ok")
        self.assertEqual(await cache.compute_if_absent("k", compute), "ok")
        compute.assert_awaited_once()

    async def test_cancelled_caller_does_not_cancel_other_waiters(self):
        cache = SingleFlightCache()
        release = asyncio.Event()
        calls = []

        async def compute():
            calls.append(1)
            await release.wait()
            return 1

        first = asyncio.create_task(cache.compute_if_absent("k", compute))
        await asyncio.sleep(0)
        waiter = asyncio.create_task(cache.compute_if_absent("k", compute))
        await asyncio.sleep(0)

        first.cancel()
        with self.assertRaises(asyncio.CancelledError):
            await first
        release.set()

        self.assertEqual(await waiter, 1)
        self.assertEqual(len(calls), 1)
        self.assertIn("k", cache)

    async def test_timed_out_caller_still_caches_result(self):
        cache = SingleFlightCache()
        release = asyncio.Event()

        async def compute():
            await release.wait()
            return "late"

        with self.assertRaises(asyncio.TimeoutError):
            await asyncio.wait_for(cache.compute_if_absent("k", compute), timeout=0.01)
        release.set()

        compute_again = AsyncMock(return_value="fresh")
        self.assertEqual(await cache.compute_if_absent("k", compute_again), "late")
        compute_again.assert_not_awaited()
        self.assertIn("k", cache)

    async def test_lru_eviction(self):
        cache = SingleFlightCache(maxsize=2)
        await cache.compute_if_absent("a", AsyncMock(return_value=1))
        await cache.compute_if_absent("b", AsyncMock(return_value=2))
        # touch "a" so "b" is the least recently used
        await cache.compute_if_absent("a", AsyncMock(return_value=100))
        await cache.compute_if_absent("c", AsyncMock(return_value=3))
        self.assertIn("a", cache)
        self.assertNotIn("b", cache)
        self.assertIn("c", cache)

        compute = AsyncMock(return_value=20)
        self.assertEqual(await cache.compute_if_absent("b", compute), 20)
        compute.assert_awaited_once()

    async def test_clear(self):
        cache = SingleFlightCache()
        await cache.compute_if_absent("a", AsyncMock(return_value=1))
        cache.clear()
        self.assertEqual(len(cache), 0)

    def test_invalid_size(self):
        with self.assertRaises(ValueError):
            SingleFlightCache(maxsize=0)


if __name__ == "__main__":
    unittest.main()
