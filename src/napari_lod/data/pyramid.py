"""Pyramid metadata: per-scale levels, image type and assembled images."""

from __future__ import annotations

import inspect
import logging
import math
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

from .transform import Bounds, index_bounds_to_world_bounds, make_index_to_world


logger = logging.getLogger(__name__)


CXYZT = ("c", "x", "y", "z", "t")
SPATIAL_DIMS = ("x", "y", "z")

CoordSource = Union[
    Sequence[float],
    np.ndarray,
    Callable[[], Union[Sequence[float], np.ndarray, Awaitable[Sequence[float]]]],
]


@dataclass(frozen=True)
class ImageType:
    """Pixel layout shared by every level of a multiscale image."""

    dimension: int
    component_type: str
    pixel_type: str = "Scalar"
    components: int = 1

    def __post_init__(self) -> None:
        if self.dimension not in (2, 3):
            raise ValueError(f"dimension must be 2 or 3, got {self.dimension}")
        if int(self.components) < 1:
            raise ValueError("components must be >= 1")
        np.dtype(self.component_type)

    @property
    def dtype(self) -> np.dtype:
        return np.dtype(self.component_type)


def _ceil_div(a: int, b: int) -> int:
    return -(-int(a) // int(b))


@dataclass
class PyramidLevel:
    """Storage metadata for one resolution level.

    ``array_shape``/``chunk_shape`` map axis labels (subset of ``c x y z t``) to
    element counts. ``coords`` holds, per spatial axis, the world coordinate of
    each index, either eagerly or as a (possibly async) loader that is
    resolved once and then frozen. ``origin``/``spacing`` are filled on first
    resolution by the owning accessor.
    """

    dims: Tuple[str, ...]
    array_shape: Mapping[str, int]
    chunk_shape: Mapping[str, int]
    chunk_grid_shape: Dict[str, int] = field(default_factory=dict)
    coords: Dict[str, CoordSource] = field(default_factory=dict)
    value_ranges: Optional[Dict[int, Tuple[float, float]]] = None
    name: str = ""
    origin: Optional[Tuple[float, float, float]] = None
    spacing: Optional[Tuple[float, float, float]] = None
    _resolved: Dict[str, np.ndarray] = field(default_factory=dict, init=False, repr=False)

    def __post_init__(self) -> None:
        self.dims = tuple(str(d) for d in self.dims)
        unknown = [d for d in self.dims if d not in CXYZT]
        if unknown:
            raise ValueError(f"unknown axis labels {unknown}; expected a subset of {CXYZT}")
        self.array_shape = {d: int(self.array_shape[d]) for d in self.dims}
        self.chunk_shape = {d: max(1, int(self.chunk_shape.get(d, self.array_shape[d]))) for d in self.dims}
        expected = {d: _ceil_div(self.array_shape[d], self.chunk_shape[d]) for d in self.dims}
        if self.chunk_grid_shape:
            for dim in self.dims:
                got = int(self.chunk_grid_shape.get(dim, expected[dim]))
                if got != expected[dim]:
                    raise ValueError(
                        f"chunk grid for axis {dim} is {got}, expected ceil({self.array_shape[dim]}/"
                        f"{self.chunk_shape[dim]})={expected[dim]}"
                    )
        self.chunk_grid_shape = expected

    def extent(self, dim: str) -> int:
        """Element count along ``dim``; 1 for axes absent from storage."""

        return int(self.array_shape.get(dim, 1))

    def chunk_size(self, dim: str) -> int:
        return int(self.chunk_shape.get(dim, 1))

    def grid_extent(self, dim: str) -> int:
        return int(self.chunk_grid_shape.get(dim, 1))

    def voxel_count(self) -> int:
        total = 1
        for dim in SPATIAL_DIMS:
            total *= self.extent(dim)
        return int(total)

    async def resolve_coords(self, axis: str) -> Optional[np.ndarray]:
        """Return the frozen coordinate array for ``axis`` (None when absent)."""

        cached = self._resolved.get(axis)
        if cached is not None:
            return cached
        source = self.coords.get(axis)
        if source is None:
            return None
        values = source() if callable(source) else source
        if inspect.isawaitable(values):
            values = await values
        arr = np.array(values, dtype=np.float64).reshape(-1)
        arr.setflags(write=False)
        # a concurrent resolution may have finished first; keep the first one
        return self._resolved.setdefault(axis, arr)

    @classmethod
    def from_array_metadata(
        cls,
        dims: Sequence[str],
        shape: Sequence[int],
        chunks: Sequence[int],
        *,
        scale: Optional[Sequence[float]] = None,
        translation: Optional[Sequence[float]] = None,
        value_ranges: Optional[Mapping[int, Tuple[float, float]]] = None,
        name: str = "",
    ) -> "PyramidLevel":
        """Build a level from storage-ordered shape/chunk tuples.

        ``scale``/``translation`` (storage order) become lazily generated
        per-index coordinate arrays for the spatial axes.
        """

        dims = tuple(str(d) for d in dims)
        if len(shape) != len(dims) or len(chunks) != len(dims):
            raise ValueError(f"shape {tuple(shape)} / chunks {tuple(chunks)} do not match dims {dims}")
        array_shape = {d: int(s) for d, s in zip(dims, shape)}
        chunk_shape = {d: int(c) for d, c in zip(dims, chunks)}
        coords: Dict[str, CoordSource] = {}
        for idx, dim in enumerate(dims):
            if dim not in SPATIAL_DIMS:
                continue
            step = float(scale[idx]) if scale is not None else 1.0
            offset = float(translation[idx]) if translation is not None else 0.0
            size = array_shape[dim]
            coords[dim] = (lambda n=size, s=step, o=offset: o + s * np.arange(n, dtype=np.float64))
        ranges = {int(k): (float(v[0]), float(v[1])) for k, v in value_ranges.items()} if value_ranges else None
        return cls(
            dims=dims,
            array_shape=array_shape,
            chunk_shape=chunk_shape,
            coords=coords,
            value_ranges=ranges,
            name=name,
        )


@dataclass(frozen=True)
class AssembledImage:
    """Dense image materialized from one region of one scale.

    ``data`` is laid out ``(z, y, x[, c])`` for 3-D images and ``(y, x[, c])``
    for 2-D ones; the trailing component axis is present only when the image
    has more than one component. ``size`` is ``(x, y, z)`` in voxels and
    ``origin`` is the world position of the region's first voxel.
    """

    image_type: ImageType
    name: str
    origin: Tuple[float, float, float]
    spacing: Tuple[float, float, float]
    direction: np.ndarray
    size: Tuple[int, int, int]
    data: np.ndarray
    scale: int

    @property
    def nbytes(self) -> int:
        return int(self.data.nbytes)

    def index_to_world(self) -> np.ndarray:
        return make_index_to_world(self.direction, self.origin, self.spacing)

    def world_bounds(self) -> Bounds:
        """World-space box of the index region ``[0, size]`` of this image."""

        return index_bounds_to_world_bounds((0, 0, 0), self.size, self.index_to_world())


def log_missing_coords(level_name: str, axis: str) -> None:
    logger.debug("level %s has no coordinates for axis %s; using origin=0 spacing=1", level_name, axis)


def spacing_from_coords(values: Optional[np.ndarray]) -> Tuple[float, float]:
    """Return ``(origin, spacing)`` from a coordinate array with 0/1 fallbacks."""

    if values is None or values.size == 0:
        return 0.0, 1.0
    origin = float(values[0])
    if values.size < 2:
        return origin, 1.0
    spacing = float(values[1] - values[0])
    if not math.isfinite(spacing) or spacing == 0.0:
        return origin, 1.0
    return origin, spacing


__all__ = [
    "AssembledImage",
    "CXYZT",
    "CoordSource",
    "ImageType",
    "PyramidLevel",
    "SPATIAL_DIMS",
    "log_missing_coords",
    "spacing_from_coords",
]
