"""Pure helpers for index <-> world coordinate algebra.

Images are described by ``direction`` (row-major cosines, index axis ``j`` is
the column ``direction[:, j]``), ``origin`` and ``spacing``. Everything is
handled as 3-D internally: 2-D inputs are padded with an identity z axis,
origin 0 and spacing 1.

World bounds use the ``(x_min, x_max, y_min, y_max, z_min, z_max)`` layout;
index bounds are half-open ``[start, stop)`` element ranges keyed by axis label.
"""

from __future__ import annotations

import itertools
import math
from typing import Dict, Mapping, Optional, Sequence, Tuple

import numpy as np


__all__ = [
    "Bounds",
    "IndexBounds",
    "bounds_corners",
    "ensure_3d_direction",
    "ensure_3d_vector",
    "index_bounds_to_world_bounds",
    "intersect_bounds",
    "make_index_to_world",
    "normalize_bounds",
    "transform_point",
    "world_to_index_bounds",
]


Bounds = Tuple[float, float, float, float, float, float]
IndexBounds = Dict[str, Tuple[int, int]]

_SPATIAL = ("x", "y", "z")
_NON_SPATIAL = ("c", "t")


def ensure_3d_direction(direction: Sequence[float] | np.ndarray) -> np.ndarray:
    """Return ``direction`` as a 3x3 matrix, padding 2-D input with a z axis."""

    d = np.asarray(direction, dtype=np.float64).reshape(-1)
    if d.size == 9:
        return d.reshape(3, 3).copy()
    if d.size == 4:
        return np.array(
            [
                [d[0], d[1], 0.0],
                [d[2], d[3], 0.0],
                [0.0, 0.0, 1.0],
            ],
            dtype=np.float64,
        )
    raise ValueError(f"direction must have 4 or 9 elements, got {d.size}")


def ensure_3d_vector(values: Sequence[float], fill: float) -> np.ndarray:
    vec = [float(v) for v in values]
    if len(vec) > 3 or not vec:
        raise ValueError(f"expected 1 to 3 values, got {len(vec)}")
    while len(vec) < 3:
        vec.append(float(fill))
    return np.asarray(vec, dtype=np.float64)


def make_index_to_world(
    direction: Sequence[float] | np.ndarray,
    origin: Sequence[float],
    spacing: Sequence[float],
) -> np.ndarray:
    """Build the homogeneous 4x4 index-to-world matrix.

    Composed as ``T(origin) @ R(direction) @ S(spacing)`` so a continuous
    index ``i`` maps to ``origin + direction @ (spacing * i)``.
    """

    rot = ensure_3d_direction(direction)
    org = ensure_3d_vector(origin, 0.0)
    spc = ensure_3d_vector(spacing, 1.0)

    mat = np.eye(4, dtype=np.float64)
    mat[:3, 3] = org
    mat[:3, :3] = rot
    scale = np.diag(np.append(spc, 1.0))
    return mat @ scale


def transform_point(matrix: np.ndarray, point: Sequence[float]) -> np.ndarray:
    """Apply a homogeneous 4x4 ``matrix`` to a 3-D ``point``."""

    vec = np.append(ensure_3d_vector(point, 0.0), 1.0)
    out = np.asarray(matrix, dtype=np.float64) @ vec
    return out[:3] / out[3]


def normalize_bounds(bounds: Optional[Sequence[float]]) -> Optional[Bounds]:
    """Validate ``bounds`` and return a 6-tuple, or None for "no bounds".

    Four values are accepted for planar regions (z is pinned to 0).
    """

    if bounds is None:
        return None
    values = [float(v) for v in bounds]
    if not values:
        return None
    if len(values) == 4:
        values.extend([0.0, 0.0])
    if len(values) != 6:
        raise ValueError(f"bounds must have 4 or 6 values, got {len(values)}")
    for axis in range(3):
        lo, hi = values[2 * axis], values[2 * axis + 1]
        if not (math.isfinite(lo) and math.isfinite(hi)):
            raise ValueError(f"bounds must be finite: {values}")
        if lo > hi:
            raise ValueError(f"bounds min > max on axis {_SPATIAL[axis]}: {lo} > {hi}")
    return tuple(values)  # type: ignore[return-value]


def bounds_corners(bounds: Sequence[float]) -> np.ndarray:
    """Return the 8 corners of an axis-aligned box as an (8, 3) array."""

    x0, x1, y0, y1, z0, z1 = (float(v) for v in bounds)
    return np.array(list(itertools.product((x0, x1), (y0, y1), (z0, z1))), dtype=np.float64)


def _corners_bbox(corners: np.ndarray, matrix: np.ndarray) -> Bounds:
    homo = np.hstack([corners, np.ones((corners.shape[0], 1))])
    mapped = (np.asarray(matrix, dtype=np.float64) @ homo.T).T
    mapped = mapped[:, :3] / mapped[:, 3:4]
    lo = mapped.min(axis=0)
    hi = mapped.max(axis=0)
    return (
        float(lo[0]), float(hi[0]),
        float(lo[1]), float(hi[1]),
        float(lo[2]), float(hi[2]),
    )


def world_to_index_bounds(
    world_bounds: Optional[Sequence[float]],
    array_shape: Mapping[str, int],
    world_to_index: np.ndarray,
) -> IndexBounds:
    """Map a world-space box to clamped, integer index bounds per axis.

    Without bounds the full extent ``[0, array_shape[axis])`` is returned for
    every axis. Otherwise the 8 box corners are mapped through
    ``world_to_index`` and their bounding box is clamped to the array, floored
    on the low edge and ceiled on the high edge. Channel and time axes always
    span their full extent (``[0, 1)`` when absent). A degenerate box still
    yields at least one element per spatial axis.
    """

    def _size(dim: str) -> int:
        return int(array_shape.get(dim, 1))

    bounds = normalize_bounds(world_bounds)
    if bounds is None:
        return {dim: (0, _size(dim)) for dim in ("c", "x", "y", "z", "t")}

    box = _corners_bbox(bounds_corners(bounds), world_to_index)

    result: IndexBounds = {}
    for idx, dim in enumerate(_SPATIAL):
        size = _size(dim)
        bmin, bmax = box[2 * idx], box[2 * idx + 1]
        start = int(math.floor(min(size, max(0, bmin))))
        stop = int(math.ceil(min(size, max(0, bmax))))
        if stop <= start:
            # zero-width region: widen to the element containing it
            if start >= size:
                start = max(0, size - 1)
            stop = min(size, start + 1)
        result[dim] = (start, stop)
    for dim in _NON_SPATIAL:
        result[dim] = (0, _size(dim))
    return result


def index_bounds_to_world_bounds(
    start: Sequence[float],
    stop: Sequence[float],
    index_to_world: np.ndarray,
) -> Bounds:
    """World-space axis-aligned box of the index box ``[start, stop]``."""

    s = ensure_3d_vector(start, 0.0)
    e = ensure_3d_vector(stop, 0.0)
    corners = bounds_corners((s[0], e[0], s[1], e[1], s[2], e[2]))
    return _corners_bbox(corners, index_to_world)


def intersect_bounds(a: Sequence[float], b: Sequence[float]) -> Optional[Bounds]:
    """Intersection of two axis-aligned boxes, or None when they are disjoint.

    Works for world bounds and for index bounds laid out the same way.
    """

    na = normalize_bounds(a)
    nb = normalize_bounds(b)
    if na is None or nb is None:
        return None
    out = []
    for axis in range(3):
        lo = max(na[2 * axis], nb[2 * axis])
        hi = min(na[2 * axis + 1], nb[2 * axis + 1])
        if lo > hi:
            return None
        out.extend([lo, hi])
    return tuple(out)  # type: ignore[return-value]
