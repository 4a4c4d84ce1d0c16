from __future__ import annotations

import numpy as np
import pytest

from napari_lod.data.transform import (
    index_bounds_to_world_bounds,
    intersect_bounds,
    make_index_to_world,
    normalize_bounds,
    transform_point,
    world_to_index_bounds,
)


_SHAPE = {"x": 100, "y": 80, "z": 40}


def _matrix(spacing=(2.0, 2.0, 4.0), origin=(10.0, 0.0, -5.0)) -> np.ndarray:
    return make_index_to_world(np.eye(3), origin, spacing)


def test_index_to_world_composes_origin_direction_spacing() -> None:
    flip_xy = np.array([[0.0, 1.0, 0.0], [1.0, 0.0, 0.0], [0.0, 0.0, 1.0]])
    matrix = make_index_to_world(flip_xy, (1.0, 2.0, 3.0), (2.0, 3.0, 4.0))
    # index (1, 0, 0) walks along world y by the x spacing
    assert np.allclose(transform_point(matrix, (1, 0, 0)), (1.0, 4.0, 3.0))
    assert np.allclose(transform_point(matrix, (0, 1, 0)), (4.0, 2.0, 3.0))


def test_two_dimensional_geometry_is_padded() -> None:
    matrix = make_index_to_world([1, 0, 0, 1], (5.0, 6.0), (0.5, 0.25))
    assert np.allclose(transform_point(matrix, (2, 4)), (6.0, 7.0, 0.0))


def test_no_bounds_gives_full_extent() -> None:
    result = world_to_index_bounds(None, _SHAPE, np.linalg.inv(_matrix()))
    assert result["x"] == (0, 100)
    assert result["y"] == (0, 80)
    assert result["z"] == (0, 40)
    assert result["c"] == (0, 1)
    assert result["t"] == (0, 1)


def test_inside_bounds_give_strict_subset() -> None:
    matrix = _matrix()
    result = world_to_index_bounds((21.0, 49.0, 11.0, 29.0, 4.0, 18.0), _SHAPE, np.linalg.inv(matrix))
    assert result["x"] == (5, 20)
    assert result["y"] == (5, 15)
    assert result["z"] == (2, 6)
    for dim, size in _SHAPE.items():
        lo, hi = result[dim]
        assert 0 <= lo < hi <= size
        assert (lo, hi) != (0, size)


def test_points_round_trip_through_inverse() -> None:
    c, s = np.cos(np.pi / 6), np.sin(np.pi / 6)
    rotate_z = np.array([[c, -s, 0.0], [s, c, 0.0], [0.0, 0.0, 1.0]])
    matrix = make_index_to_world(rotate_z, (12.5, -3.0, 7.25), (0.5, 1.5, 3.0))
    inverse = np.linalg.inv(matrix)
    points = [(0.0, 0.0, 0.0), (1.0, 2.0, 3.0), (99.0, 79.0, 39.0), (17.5, 0.25, 8.0)]
    for point in points:
        world = transform_point(matrix, point)
        assert not np.allclose(world, point)
        assert np.allclose(transform_point(inverse, world), point)


def test_bounds_round_trip_covers_request() -> None:
    matrix = _matrix()
    requested = (21.0, 49.5, 10.5, 29.0, 3.5, 18.0)
    idx = world_to_index_bounds(requested, _SHAPE, np.linalg.inv(matrix))
    world = index_bounds_to_world_bounds(
        [idx[d][0] for d in ("x", "y", "z")],
        [idx[d][1] for d in ("x", "y", "z")],
        matrix,
    )
    for axis in range(3):
        assert world[2 * axis] <= requested[2 * axis]
        assert world[2 * axis + 1] >= requested[2 * axis + 1]


def test_outside_bounds_are_clamped() -> None:
    result = world_to_index_bounds((-1000, 1000, -1000, 1000, -1000, 1000), _SHAPE, np.linalg.inv(_matrix()))
    assert result["x"] == (0, 100)
    assert result["z"] == (0, 40)


def test_degenerate_bounds_yield_one_element() -> None:
    result = world_to_index_bounds((31.0, 31.0, 0.0, 0.0, 500.0, 500.0), _SHAPE, np.linalg.inv(_matrix()))
    assert result["x"] == (10, 11)
    assert result["y"] == (0, 1)
    assert result["z"] == (39, 40)


def test_normalize_bounds() -> None:
    assert normalize_bounds(None) is None
    assert normalize_bounds([]) is None
    assert normalize_bounds((0, 1, 2, 3)) == (0.0, 1.0, 2.0, 3.0, 0.0, 0.0)
    with pytest.raises(ValueError):
        normalize_bounds((0, 1, 2))
    with pytest.raises(ValueError):
        normalize_bounds((1, 0, 0, 1, 0, 1))
    with pytest.raises(ValueError):
        normalize_bounds((0, float("nan"), 0, 1, 0, 1))


def test_intersect_bounds() -> None:
    a = (0, 10, 0, 10, 0, 10)
    assert intersect_bounds(a, (5, 20, -5, 5, 2, 3)) == (5.0, 10.0, 0.0, 5.0, 2.0, 3.0)
    assert intersect_bounds(a, (11, 20, 0, 1, 0, 1)) is None
