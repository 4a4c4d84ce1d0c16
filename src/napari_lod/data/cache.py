"""Bounded LRU cache of assembled images with in-flight de-duplication."""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from typing import Awaitable, Callable, Dict, Optional, Sequence

from .pyramid import AssembledImage


logger = logging.getLogger(__name__)


def _fmt(value: float) -> str:
    return repr(float(value))


def bounds_cache_key(scale: int, bounds: Optional[Sequence[float]]) -> str:
    """Canonical ``"{scale}_{bounds}"`` key.

    Each ``(min, max)`` pair is sorted while the axis order is kept, so boxes
    given with swapped edges share an entry. Missing bounds key as the empty
    string (full extent).
    """

    if bounds is None or len(bounds) == 0:
        return f"{int(scale)}_"
    values = [float(v) for v in bounds]
    if len(values) % 2:
        raise ValueError(f"bounds must hold (min, max) pairs, got {len(values)} values")
    parts = []
    for idx in range(0, len(values), 2):
        lo, hi = sorted(values[idx : idx + 2])
        parts.extend([_fmt(lo), _fmt(hi)])
    return f"{int(scale)}_{','.join(parts)}"


class ImageCache:
    """LRU mapping from cache key to ``AssembledImage``.

    Bounded by entry count and, when ``max_bytes`` is non-zero, by the total
    ``nbytes`` of cached images. The most recent entry is always retained even
    if it alone exceeds ``max_bytes``. Concurrent ``get_or_build`` calls for
    the same key share a single build.
    """

    def __init__(self, max_entries: int = 16, max_bytes: int = 0, *, log_cache: bool = False) -> None:
        self._max_entries = max(1, int(max_entries))
        self._max_bytes = max(0, int(max_bytes))
        self._entries: "OrderedDict[str, AssembledImage]" = OrderedDict()
        self._bytes = 0
        self._inflight: Dict[str, asyncio.Future] = {}
        self._log = bool(log_cache)
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    @property
    def total_bytes(self) -> int:
        return self._bytes

    def get(self, key: str) -> Optional[AssembledImage]:
        image = self._entries.get(key)
        if image is None:
            return None
        self._entries.move_to_end(key)
        return image

    def put(self, key: str, image: AssembledImage) -> None:
        previous = self._entries.pop(key, None)
        if previous is not None:
            self._bytes -= previous.nbytes
        self._entries[key] = image
        self._bytes += image.nbytes
        self._evict()

    def clear(self) -> None:
        self._entries.clear()
        self._bytes = 0

    def _evict(self) -> None:
        while len(self._entries) > 1 and (
            len(self._entries) > self._max_entries
            or (self._max_bytes and self._bytes > self._max_bytes)
        ):
            key, image = self._entries.popitem(last=False)
            self._bytes -= image.nbytes
            self.evictions += 1
            if self._log:
                logger.info("cache evict: key=%s bytes=%d", key, image.nbytes)

    async def get_or_build(
        self,
        key: str,
        build: Callable[[], Awaitable[AssembledImage]],
    ) -> AssembledImage:
        """Return the cached image for ``key`` or await ``build()`` once."""

        cached = self.get(key)
        if cached is not None:
            self.hits += 1
            if self._log:
                logger.info("cache hit: key=%s", key)
            return cached
        pending = self._inflight.get(key)
        if pending is not None:
            if self._log:
                logger.info("cache join in-flight: key=%s", key)
            return await asyncio.shield(pending)
        self.misses += 1
        if self._log:
            logger.info("cache miss: key=%s", key)
        task = asyncio.ensure_future(self._build_and_store(key, build))
        self._inflight[key] = task
        return await asyncio.shield(task)

    async def _build_and_store(
        self,
        key: str,
        build: Callable[[], Awaitable[AssembledImage]],
    ) -> AssembledImage:
        try:
            image = await build()
            self.put(key, image)
            return image
        finally:
            self._inflight.pop(key, None)


__all__ = ["ImageCache", "bounds_cache_key"]
