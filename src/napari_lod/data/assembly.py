"""Chunk-range arithmetic and dense assembly of fetched chunks.

Element ranges are half-open ``[start, stop)``. Chunk ranges floor the start
and ceil the stop, so the fetched set may overshoot the element region; only
the element region is copied into the output buffer.
"""

from __future__ import annotations

import itertools
import math
from typing import Dict, List, Mapping, Sequence, Tuple

import numpy as np

from .chunk_source import ChunkCoord
from .pyramid import PyramidLevel


ChunkRanges = Dict[str, Tuple[int, int]]

# Loop order for chunk enumeration, outermost first; component is innermost.
_ENUM_ORDER = ("t", "z", "y", "x", "c")
_OUTPUT_ORDER = ("t", "z", "y", "x", "c")


def chunk_index_range(start: int, stop: int, chunk_size: int) -> Tuple[int, int]:
    """Chunk indices ``[first, last)`` covering elements ``[start, stop)``."""

    size = int(chunk_size)
    if size <= 0:
        raise ValueError(f"chunk size must be positive, got {chunk_size}")
    return int(math.floor(start / size)), int(math.ceil(stop / size))


def chunk_ranges(level: PyramidLevel, index_bounds: Mapping[str, Tuple[int, int]]) -> ChunkRanges:
    """Per-axis chunk ranges for ``index_bounds``, clamped to the chunk grid.

    The component axis always spans the whole grid.
    """

    ranges: ChunkRanges = {}
    for dim in ("c", "x", "y", "z", "t"):
        grid = level.grid_extent(dim)
        if dim == "c":
            ranges[dim] = (0, grid)
            continue
        start, stop = index_bounds.get(dim, (0, level.extent(dim)))
        lo, hi = chunk_index_range(start, stop, level.chunk_size(dim))
        lo = max(0, min(lo, grid))
        hi = max(lo, min(hi, grid))
        ranges[dim] = (lo, hi)
    return ranges


def enumerate_chunk_coords(ranges: Mapping[str, Tuple[int, int]]) -> List[ChunkCoord]:
    """Cartesian product of ``ranges``; time outermost, component innermost."""

    axes = [range(*ranges.get(dim, (0, 1))) for dim in _ENUM_ORDER]
    coords: List[ChunkCoord] = []
    for t, z, y, x, c in itertools.product(*axes):
        coords.append(ChunkCoord(c=c, x=x, y=y, z=z, t=t))
    return coords


def _chunk_extent(level: PyramidLevel, dim: str, index: int) -> int:
    size = level.chunk_size(dim)
    return max(0, min(size, level.extent(dim) - index * size))


def as_chunk_array(buffer: object, level: PyramidLevel, coord: ChunkCoord, dtype: np.dtype) -> np.ndarray:
    """View ``buffer`` as a chunk in storage axis order.

    Array-likes are used as-is. Raw byte buffers and flat arrays are reshaped
    to either the clipped edge-chunk shape or the full chunk shape, whichever
    matches the element count.
    """

    if isinstance(buffer, (bytes, bytearray, memoryview)):
        arr = np.frombuffer(buffer, dtype=dtype)
    else:
        arr = np.asarray(buffer)
    if arr.ndim == len(level.dims):
        return arr
    clipped = tuple(_chunk_extent(level, dim, getattr(coord, dim)) for dim in level.dims)
    full = tuple(level.chunk_size(dim) for dim in level.dims)
    flat = arr.reshape(-1)
    if flat.size == int(np.prod(clipped)):
        return flat.reshape(clipped)
    if flat.size == int(np.prod(full)):
        return flat.reshape(full)
    raise ValueError(
        f"chunk {tuple(coord)} has {flat.size} elements; expected {int(np.prod(clipped))} or {int(np.prod(full))}"
    )


def _to_tzyxc(chunk: np.ndarray, dims: Sequence[str]) -> np.ndarray:
    """Transpose a storage-ordered chunk to ``(t, z, y, x, c)``, adding missing axes."""

    present = [d for d in _OUTPUT_ORDER if d in dims]
    arr = np.transpose(chunk, [list(dims).index(d) for d in present])
    shape: List[int] = []
    it = iter(arr.shape)
    for dim in _OUTPUT_ORDER:
        shape.append(next(it) if dim in dims else 1)
    return arr.reshape(shape)


def assemble_chunks(
    level: PyramidLevel,
    coords: Sequence[ChunkCoord],
    buffers: Sequence[object],
    start: Mapping[str, int],
    stop: Mapping[str, int],
    dtype: np.dtype,
) -> np.ndarray:
    """Copy fetched chunks into a dense ``(t, z, y, x, c)`` buffer.

    The output covers elements ``[start, stop)`` per axis; each chunk
    contributes only its intersection with that region.
    """

    if len(coords) != len(buffers):
        raise ValueError(f"received {len(buffers)} buffers for {len(coords)} chunk coordinates")
    out_shape = tuple(max(0, int(stop[dim]) - int(start[dim])) for dim in _OUTPUT_ORDER)
    out = np.zeros(out_shape, dtype=dtype)
    for coord, buffer in zip(coords, buffers):
        chunk = _to_tzyxc(as_chunk_array(buffer, level, coord, dtype), level.dims)
        dst: List[slice] = []
        src: List[slice] = []
        empty = False
        for axis, dim in enumerate(_OUTPUT_ORDER):
            size = level.chunk_size(dim)
            chunk_start = getattr(coord, dim) * size
            chunk_stop = chunk_start + chunk.shape[axis]
            lo = max(chunk_start, int(start[dim]))
            hi = min(chunk_stop, int(stop[dim]))
            if hi <= lo:
                empty = True
                break
            dst.append(slice(lo - int(start[dim]), hi - int(start[dim])))
            src.append(slice(lo - chunk_start, hi - chunk_start))
        if empty:
            continue
        out[tuple(dst)] = chunk[tuple(src)]
    return out


__all__ = [
    "ChunkRanges",
    "as_chunk_array",
    "assemble_chunks",
    "chunk_index_range",
    "chunk_ranges",
    "enumerate_chunk_coords",
]
