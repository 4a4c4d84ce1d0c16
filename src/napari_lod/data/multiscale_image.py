"""Multiresolution image accessor.

`MultiscaleImage.get_image(scale, bounds)` maps a world-space box to index
bounds at ``scale``, fetches the covering chunks from a `ChunkSource` as one
batch, assembles them off the event loop and caches the result by
``(scale, canonical bounds)``.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import time
from concurrent.futures import Executor
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from napari_lod.config import LodConfig
from napari_lod.logging_policy import LoggingToggles
from napari_lod.metrics import Metrics

from .assembly import assemble_chunks, chunk_ranges, enumerate_chunk_coords
from .budget import assert_within_voxel_budget, region_voxels
from .cache import ImageCache, bounds_cache_key
from .chunk_source import ChunkCoord, ChunkSource
from .pyramid import (
    SPATIAL_DIMS,
    AssembledImage,
    ImageType,
    PyramidLevel,
    log_missing_coords,
    spacing_from_coords,
)
from .transform import (
    Bounds,
    index_bounds_to_world_bounds,
    make_index_to_world,
    normalize_bounds,
    transform_point,
    world_to_index_bounds,
)


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RegionPlan:
    """Index-space plan for one ``get_image`` request."""

    scale: int
    start: Dict[str, int]
    stop: Dict[str, int]
    chunk_coords: List[ChunkCoord]
    origin: Tuple[float, float, float]
    size: Tuple[int, int, int]
    voxels: int


def _reorder_direction(direction: Optional[np.ndarray], dims: Sequence[str]) -> np.ndarray:
    """Reorder a storage-ordered direction matrix to ``x, y, z`` order."""

    spatial = [d for d in dims if d in SPATIAL_DIMS]
    n = len(spatial)
    if direction is None or n == 0:
        return np.eye(3, dtype=np.float64)
    mat = np.asarray(direction, dtype=np.float64).reshape(n, n)
    order = [spatial.index(d) for d in SPATIAL_DIMS if d in spatial]
    reordered = mat[np.ix_(order, order)]
    out = np.eye(3, dtype=np.float64)
    out[:n, :n] = reordered
    return out


class MultiscaleImage:
    """Pyramid of levels (0 = finest) served through a chunk source."""

    def __init__(
        self,
        levels: Sequence[PyramidLevel],
        image_type: ImageType,
        chunk_source: ChunkSource,
        *,
        name: str = "image",
        direction: Optional[Sequence[float] | np.ndarray] = None,
        config: Optional[LodConfig] = None,
        max_voxels: Optional[int] = None,
        cache: Optional[ImageCache] = None,
        executor: Optional[Executor] = None,
        metrics: Optional[Metrics] = None,
    ) -> None:
        if not levels:
            raise ValueError("MultiscaleImage requires at least one level")
        cfg = config or LodConfig()
        self._levels: List[PyramidLevel] = list(levels)
        self.image_type = image_type
        self.chunk_source = chunk_source
        self.name = str(name)
        self.max_voxels = int(cfg.max_rendered_voxels if max_voxels is None else max_voxels)
        self._log: LoggingToggles = cfg.debug.logging
        self.cache = cache or ImageCache(cfg.cache_entries, cfg.cache_max_bytes, log_cache=self._log.log_cache)
        self._executor = executor
        self.metrics = metrics or Metrics()
        self._direction = _reorder_direction(
            None if direction is None else np.asarray(direction, dtype=np.float64),
            self._levels[0].dims,
        )

    # ---- Level metadata ---------------------------------------------------

    @property
    def levels(self) -> List[PyramidLevel]:
        return list(self._levels)

    @property
    def lowest_scale(self) -> int:
        """Index of the coarsest level."""

        return len(self._levels) - 1

    @property
    def direction(self) -> np.ndarray:
        return self._direction.copy()

    def level(self, scale: int) -> PyramidLevel:
        if not (0 <= int(scale) <= self.lowest_scale):
            raise AssertionError(
                f"scale {scale} outside [0, {self.lowest_scale}] for image {self.name!r}"
            )
        return self._levels[int(scale)]

    async def resolve_geometry(self, scale: int) -> Tuple[Tuple[float, float, float], Tuple[float, float, float]]:
        """Return ``(origin, spacing)`` in ``x, y, z`` order, memoized per level."""

        level = self.level(scale)
        if level.origin is not None and level.spacing is not None:
            return level.origin, level.spacing
        origin: List[float] = []
        spacing: List[float] = []
        for axis in SPATIAL_DIMS:
            values = await level.resolve_coords(axis) if axis in level.dims else None
            if values is None and axis in level.dims:
                log_missing_coords(level.name or str(scale), axis)
            o, s = spacing_from_coords(values)
            origin.append(o)
            spacing.append(s)
        # first resolution wins so repeated calls observe identical values
        if level.origin is None or level.spacing is None:
            level.origin = tuple(origin)  # type: ignore[assignment]
            level.spacing = tuple(spacing)  # type: ignore[assignment]
        return level.origin, level.spacing  # type: ignore[return-value]

    async def index_to_world(self, scale: int) -> np.ndarray:
        origin, spacing = await self.resolve_geometry(scale)
        return make_index_to_world(self._direction, origin, spacing)

    async def full_world_bounds(self, scale: int = 0) -> Bounds:
        """World box of the full index extent ``[0, shape]`` of ``scale``."""

        level = self.level(scale)
        matrix = await self.index_to_world(scale)
        stop = [level.extent(dim) for dim in SPATIAL_DIMS]
        return index_bounds_to_world_bounds((0, 0, 0), stop, matrix)

    def image_meta(self, scale: int = 0) -> AssembledImage:
        """Metadata-only image for ``scale``; origin/spacing stay None until resolved."""

        level = self.level(scale)
        size = tuple(level.extent(dim) for dim in SPATIAL_DIMS)
        return AssembledImage(
            image_type=self.image_type,
            name=self.name,
            origin=level.origin,  # type: ignore[arg-type]
            spacing=level.spacing,  # type: ignore[arg-type]
            direction=self.direction,
            size=size,  # type: ignore[arg-type]
            data=np.empty((0,), dtype=self.image_type.dtype),
            scale=int(scale),
        )

    def voxel_count(self, scale: int) -> int:
        return self.level(scale).voxel_count()

    # ---- Region access ----------------------------------------------------

    async def plan_region(self, scale: int, bounds: Optional[Sequence[float]] = None) -> RegionPlan:
        """Resolve world ``bounds`` at ``scale`` to index bounds and chunk coordinates."""

        level = self.level(scale)
        matrix = await self.index_to_world(scale)
        index_bounds = world_to_index_bounds(bounds, level.array_shape, np.linalg.inv(matrix))
        # only the first time point is materialized
        index_bounds["t"] = (0, min(1, level.extent("t")))
        start = {dim: int(lo) for dim, (lo, _hi) in index_bounds.items()}
        stop = {dim: int(hi) for dim, (_lo, hi) in index_bounds.items()}
        coords = enumerate_chunk_coords(chunk_ranges(level, index_bounds))
        corner = transform_point(matrix, [start[dim] for dim in SPATIAL_DIMS])
        size = tuple(stop[dim] - start[dim] for dim in SPATIAL_DIMS)
        return RegionPlan(
            scale=int(scale),
            start=start,
            stop=stop,
            chunk_coords=coords,
            origin=(float(corner[0]), float(corner[1]), float(corner[2])),
            size=size,  # type: ignore[arg-type]
            voxels=region_voxels(start, stop),
        )

    def _shape_output(self, dense: np.ndarray) -> np.ndarray:
        data = dense[0]
        if self.image_type.components == 1:
            data = data[..., 0]
        if self.image_type.dimension == 2:
            data = data[0]
        return np.ascontiguousarray(data)

    async def build_image(self, scale: int, bounds: Optional[Sequence[float]] = None) -> AssembledImage:
        """Fetch and assemble a region, bypassing the cache.

        The voxel ceiling is enforced before any chunk is requested.
        """

        plan = await self.plan_region(scale, bounds)
        assert_within_voxel_budget(
            plan.voxels,
            limit=self.max_voxels,
            scale=plan.scale,
            log_budget=self._log.log_budget,
            logger_ref=logger,
        )
        level = self.level(scale)

        t0 = time.perf_counter()
        buffers = await self.chunk_source.fetch_chunks(plan.scale, plan.chunk_coords)
        fetch_ms = (time.perf_counter() - t0) * 1000.0
        if len(buffers) != len(plan.chunk_coords):
            raise ValueError(
                f"chunk source returned {len(buffers)} buffers for {len(plan.chunk_coords)} coordinates"
            )
        self.metrics.inc("chunks_fetched", len(plan.chunk_coords))
        self.metrics.observe_ms("fetch_ms", fetch_ms)
        if self._log.log_chunks:
            logger.info(
                "chunk fetch: image=%s scale=%d chunks=%d fetch=%.2fms",
                self.name,
                plan.scale,
                len(plan.chunk_coords),
                fetch_ms,
            )

        loop = asyncio.get_running_loop()
        t1 = time.perf_counter()
        dense = await loop.run_in_executor(
            self._executor,
            functools.partial(
                assemble_chunks,
                level,
                plan.chunk_coords,
                buffers,
                plan.start,
                plan.stop,
                self.image_type.dtype,
            ),
        )
        self.metrics.observe_ms("assemble_ms", (time.perf_counter() - t1) * 1000.0)

        _origin, spacing = await self.resolve_geometry(scale)
        return AssembledImage(
            image_type=self.image_type,
            name=self.name,
            origin=plan.origin,
            spacing=spacing,
            direction=self.direction,
            size=plan.size,
            data=self._shape_output(dense),
            scale=plan.scale,
        )

    async def get_image(self, scale: int, bounds: Optional[Sequence[float]] = None) -> AssembledImage:
        """Return the assembled image for ``bounds`` at ``scale`` (cached).

        ``bounds`` is ``(x_min, x_max, y_min, y_max, z_min, z_max)`` in world
        units; None requests the full extent.
        """

        self.level(scale)
        normalized = normalize_bounds(bounds)
        key = bounds_cache_key(scale, normalized)
        built = False

        async def _build() -> AssembledImage:
            nonlocal built
            built = True
            return await self.build_image(scale, normalized)

        image = await self.cache.get_or_build(key, _build)
        self.metrics.inc("cache_misses" if built else "cache_hits")
        return image


__all__ = ["MultiscaleImage", "RegionPlan"]
