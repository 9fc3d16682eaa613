"""Process-local memoizing cache for coroutine results.

:class:`SingleFlightCache` guarantees that, for a given key, at most one
computation is in flight at any time. Callers racing on the same key await
the same future; once the computation finishes its result is kept in a
bounded LRU store and served to later callers without recomputing.

Failures are never cached: every waiter of the failed flight receives the
exception and the next call for that key computes again. The computation runs in
its own task: a caller that is cancelled stops waiting, the others still get
the result and the result is still cached.

Usage::

    cache = SingleFlightCache(maxsize=100)
    labels = await cache.compute_if_absent(f"labels[{image}:{platform}]", lambda: fetch(image, platform))
"""

import asyncio
import functools
from collections import OrderedDict
from typing import Awaitable, Callable, Dict, Generic, Hashable, TypeVar

from uptracklib import logutil
from uptracklib.constants import DEFAULT_CACHE_SIZE

logger = logutil.get_logger(__name__)

K = TypeVar('K', bound=Hashable)
V = TypeVar('V')


class SingleFlightCache(Generic[K, V]):
    def __init__(self, maxsize: int = DEFAULT_CACHE_SIZE):
        if maxsize <= 0:
            raise ValueError("maxsize must be positive")
        self.maxsize = maxsize
        self._values: "OrderedDict[K, V]" = OrderedDict()
        self._inflight: Dict[K, asyncio.Future] = {}

    def __len__(self):
        return len(self._values)

    def __contains__(self, key: K):
        return key in self._values

    def clear(self):
        """Drop every cached value. Computations in flight are not affected."""
        self._values.clear()

    def _store(self, key: K, value: V):
        self._values[key] = value
        self._values.move_to_end(key)
        while len(self._values) > self.maxsize:
            evicted, _ = self._values.popitem(last=False)
            logger.debug("Evicted %r from cache", evicted)

    def _finish(self, key: K, task: asyncio.Future):
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if task.cancelled():
            return
        # exception() also marks a failure nobody awaited as retrieved
        if task.exception() is None:
            self._store(key, task.result())

    async def compute_if_absent(self, key: K, compute: Callable[[], Awaitable[V]]) -> V:
        """
        Return the value cached for key, computing it with compute() if it is absent.
        :param key: Cache key
        :param compute: Zero-argument coroutine function producing the value.
                        Invoked at most once per key among concurrent callers.
        :return: The cached or freshly computed value
        """
        if key in self._values:
            self._values.move_to_end(key)
            return self._values[key]

        task = self._inflight.get(key)
        if task is None:
            # the flight runs in its own task so no caller owns it
            task = asyncio.ensure_future(compute())
            self._inflight[key] = task
            task.add_done_callback(functools.partial(self._finish, key))
        # a cancelled caller must not cancel the flight the others are waiting on
        return await asyncio.shield(task)
