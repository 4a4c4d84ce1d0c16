"""Chunk source contract and a dask-backed implementation."""

from __future__ import annotations

import asyncio
import logging
from concurrent.futures import Executor
from typing import List, NamedTuple, Optional, Protocol, Sequence, runtime_checkable

import dask
import dask.array as da
import numpy as np


logger = logging.getLogger(__name__)


class ChunkCoord(NamedTuple):
    """Chunk index along each of the ``c x y z t`` axes."""

    c: int
    x: int
    y: int
    z: int
    t: int = 0

    def for_dims(self, dims: Sequence[str]) -> tuple[int, ...]:
        """Chunk index in storage order for ``dims``."""

        return tuple(int(getattr(self, dim)) for dim in dims)


class ChunkFetchError(RuntimeError):
    """Raised when a batch of chunks cannot be fetched."""

    def __init__(self, scale: int, count: int, message: str) -> None:
        super().__init__(f"fetching {count} chunk(s) at scale {scale} failed: {message}")
        self.scale = int(scale)
        self.count = int(count)


@runtime_checkable
class ChunkSource(Protocol):
    """Asynchronous provider of raw chunk buffers.

    ``fetch_chunks`` returns one buffer per requested coordinate, in request
    order. Buffers are array-likes in storage axis order (or flat buffers of
    the chunk's element count). A failure raises once for the whole batch.
    """

    async def fetch_chunks(self, scale: int, coords: Sequence[ChunkCoord]) -> Sequence[object]:
        ...


class DaskChunkSource:
    """Serve chunks from per-scale dask arrays (e.g. ``da.from_zarr``).

    Each array is indexed with storage axis labels ``dims``; chunk ``(c, x, y,
    z, t)`` maps to ``array.blocks[...]`` in that order. The batch is computed
    with the threaded scheduler off the event loop.
    """

    def __init__(
        self,
        arrays: Sequence[da.Array],
        dims: Sequence[str],
        *,
        executor: Optional[Executor] = None,
    ) -> None:
        if not arrays:
            raise ValueError("DaskChunkSource requires at least one array")
        self._arrays: List[da.Array] = [
            arr if isinstance(arr, da.Array) else da.from_array(arr) for arr in arrays
        ]
        self._dims = tuple(str(d) for d in dims)
        for idx, arr in enumerate(self._arrays):
            if arr.ndim != len(self._dims):
                raise ValueError(f"array {idx} has ndim={arr.ndim}, expected {len(self._dims)} for dims {self._dims}")
        self._executor = executor

    @property
    def dims(self) -> tuple[str, ...]:
        return self._dims

    @property
    def arrays(self) -> List[da.Array]:
        return list(self._arrays)

    def _compute(self, scale: int, coords: Sequence[ChunkCoord]) -> List[np.ndarray]:
        arr = self._arrays[scale]
        blocks = [arr.blocks[coord.for_dims(self._dims)] for coord in coords]
        computed = dask.compute(*blocks, scheduler="threads")
        return [np.asarray(block) for block in computed]

    async def fetch_chunks(self, scale: int, coords: Sequence[ChunkCoord]) -> List[np.ndarray]:
        if not 0 <= int(scale) < len(self._arrays):
            raise ChunkFetchError(scale, len(coords), f"no array for scale {scale}")
        if not coords:
            return []
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(self._executor, self._compute, int(scale), list(coords))
        except ChunkFetchError:
            raise
        except Exception as exc:
            logger.debug("dask chunk fetch failed: scale=%d count=%d", scale, len(coords), exc_info=True)
            raise ChunkFetchError(scale, len(coords), str(exc)) from exc


__all__ = [
    "ChunkCoord",
    "ChunkFetchError",
    "ChunkSource",
    "DaskChunkSource",
]
