from __future__ import annotations

import numpy as np
import pytest

from napari_lod.data.assembly import (
    as_chunk_array,
    assemble_chunks,
    chunk_index_range,
    chunk_ranges,
    enumerate_chunk_coords,
)
from napari_lod.data.chunk_source import ChunkCoord
from napari_lod.data.pyramid import PyramidLevel


def _level(shape=(10, 12), chunks=(4, 5), dims=("y", "x")) -> PyramidLevel:
    return PyramidLevel(
        dims=dims,
        array_shape=dict(zip(dims, shape)),
        chunk_shape=dict(zip(dims, chunks)),
    )


def _chunks_of(data: np.ndarray, level: PyramidLevel, coords) -> list[np.ndarray]:
    out = []
    for coord in coords:
        index = []
        for dim in level.dims:
            size = level.chunk_size(dim)
            i = getattr(coord, dim)
            index.append(slice(i * size, (i + 1) * size))
        out.append(data[tuple(index)])
    return out


def test_chunk_index_range_floors_and_ceils() -> None:
    assert chunk_index_range(10, 130, 64) == (0, 3)
    assert chunk_index_range(64, 128, 64) == (1, 2)
    assert chunk_index_range(0, 1, 64) == (0, 1)
    with pytest.raises(ValueError):
        chunk_index_range(0, 10, 0)


def test_level_chunk_grid_is_ceiled() -> None:
    level = _level()
    assert level.grid_extent("y") == 3
    assert level.grid_extent("x") == 3
    assert level.grid_extent("z") == 1
    with pytest.raises(ValueError):
        PyramidLevel(dims=("x",), array_shape={"x": 10}, chunk_shape={"x": 4}, chunk_grid_shape={"x": 2})


def test_chunk_ranges_clamp_to_grid_and_keep_all_components() -> None:
    level = PyramidLevel(
        dims=("c", "y", "x"),
        array_shape={"c": 3, "y": 10, "x": 12},
        chunk_shape={"c": 1, "y": 4, "x": 5},
    )
    ranges = chunk_ranges(level, {"x": (3, 100), "y": (4, 8), "z": (0, 1), "c": (1, 2), "t": (0, 1)})
    assert ranges["c"] == (0, 3)
    assert ranges["x"] == (0, 3)
    assert ranges["y"] == (1, 2)
    assert ranges["z"] == (0, 1)


def test_enumerate_chunk_coords_component_innermost() -> None:
    coords = enumerate_chunk_coords({"c": (0, 2), "x": (0, 2), "y": (0, 1), "z": (0, 1), "t": (0, 1)})
    assert coords == [
        ChunkCoord(c=0, x=0, y=0, z=0),
        ChunkCoord(c=1, x=0, y=0, z=0),
        ChunkCoord(c=0, x=1, y=0, z=0),
        ChunkCoord(c=1, x=1, y=0, z=0),
    ]


def test_assemble_partial_edge_chunks() -> None:
    level = _level()
    data = np.arange(120, dtype=np.uint16).reshape(10, 12)
    start = {"x": 3, "y": 2, "z": 0, "c": 0, "t": 0}
    stop = {"x": 12, "y": 9, "z": 1, "c": 1, "t": 1}
    coords = enumerate_chunk_coords(
        chunk_ranges(level, {d: (start[d], stop[d]) for d in start})
    )
    assert len(coords) == 9

    dense = assemble_chunks(level, coords, _chunks_of(data, level, coords), start, stop, np.dtype("uint16"))

    assert dense.shape == (1, 1, 7, 9, 1)
    np.testing.assert_array_equal(dense[0, 0, :, :, 0], data[2:9, 3:12])


def test_assemble_accepts_flat_byte_buffers() -> None:
    level = _level()
    data = np.arange(120, dtype=np.float32).reshape(10, 12)
    coords = [ChunkCoord(c=0, x=2, y=2, z=0)]
    edge = np.ascontiguousarray(data[8:10, 10:12])
    start = {"x": 10, "y": 8, "z": 0, "c": 0, "t": 0}
    stop = {"x": 12, "y": 10, "z": 1, "c": 1, "t": 1}

    dense = assemble_chunks(level, coords, [edge.tobytes()], start, stop, np.dtype("float32"))

    np.testing.assert_array_equal(dense[0, 0, :, :, 0], edge)


def test_as_chunk_array_rejects_wrong_size() -> None:
    level = _level()
    with pytest.raises(ValueError):
        as_chunk_array(np.zeros(7), level, ChunkCoord(c=0, x=0, y=0, z=0), np.dtype("float64"))


def test_assemble_rejects_length_mismatch() -> None:
    level = _level()
    start = {d: 0 for d in "cxyzt"}
    stop = {"c": 1, "x": 5, "y": 4, "z": 1, "t": 1}
    with pytest.raises(ValueError):
        assemble_chunks(level, [ChunkCoord(0, 0, 0, 0)], [], start, stop, np.dtype("uint8"))
