"""Multiresolution data access: transforms, chunk sources, assembly and caching."""

from __future__ import annotations

from .budget import VoxelBudgetError
from .cache import ImageCache, bounds_cache_key
from .chunk_source import ChunkCoord, ChunkFetchError, ChunkSource, DaskChunkSource
from .in_memory import multiscale_from_arrays
from .multiscale_image import MultiscaleImage, RegionPlan
from .pyramid import AssembledImage, ImageType, PyramidLevel
from .zarr_pyramid import ZarrPyramidError, open_zarr_pyramid

__all__ = [
    "AssembledImage",
    "ChunkCoord",
    "ChunkFetchError",
    "ChunkSource",
    "DaskChunkSource",
    "ImageCache",
    "ImageType",
    "MultiscaleImage",
    "PyramidLevel",
    "RegionPlan",
    "VoxelBudgetError",
    "ZarrPyramidError",
    "bounds_cache_key",
    "multiscale_from_arrays",
    "open_zarr_pyramid",
]
