"""Build a `MultiscaleImage` over in-memory numpy or dask arrays."""

from __future__ import annotations

from concurrent.futures import Executor
from typing import List, Mapping, Optional, Sequence, Tuple

import dask.array as da
import numpy as np

from napari_lod.config import LodConfig
from napari_lod.metrics import Metrics

from .chunk_source import DaskChunkSource
from .multiscale_image import MultiscaleImage
from .pyramid import SPATIAL_DIMS, ImageType, PyramidLevel


def multiscale_from_arrays(
    arrays: Sequence[np.ndarray | da.Array],
    dims: Sequence[str],
    *,
    chunks: Optional[Sequence[int]] = None,
    spacing: Optional[Sequence[float]] = None,
    origin: Optional[Sequence[float]] = None,
    value_ranges: Optional[Mapping[int, Tuple[float, float]]] = None,
    name: str = "image",
    config: Optional[LodConfig] = None,
    max_voxels: Optional[int] = None,
    executor: Optional[Executor] = None,
    metrics: Optional[Metrics] = None,
) -> MultiscaleImage:
    """Wrap ``arrays`` (finest first, storage order ``dims``) as a pyramid.

    ``spacing``/``origin`` describe level 0 in storage order; coarser levels
    scale the spacing by the shape ratio to level 0 and keep the origin.
    ``chunks`` rechunks every level; otherwise dask/numpy chunking is kept.
    """

    if not arrays:
        raise ValueError("multiscale_from_arrays requires at least one array")
    dims = tuple(dims)
    base_shape = tuple(int(s) for s in arrays[0].shape)
    base_spacing = tuple(float(s) for s in spacing) if spacing is not None else tuple(1.0 for _ in dims)
    base_origin = tuple(float(o) for o in origin) if origin is not None else tuple(0.0 for _ in dims)

    dask_arrays: List[da.Array] = []
    levels: List[PyramidLevel] = []
    for idx, arr in enumerate(arrays):
        if isinstance(arr, da.Array):
            darr = arr.rechunk(tuple(chunks)) if chunks is not None else arr
        else:
            darr = da.from_array(np.asarray(arr), chunks=tuple(chunks) if chunks is not None else "auto")
        if darr.ndim != len(dims):
            raise ValueError(f"array {idx} has ndim={darr.ndim}, expected {len(dims)} for dims {dims}")
        shape = tuple(int(s) for s in darr.shape)
        scale = []
        for axis, dim in enumerate(dims):
            if dim in SPATIAL_DIMS and shape[axis] > 0:
                scale.append(base_spacing[axis] * base_shape[axis] / shape[axis])
            else:
                scale.append(1.0)
        levels.append(
            PyramidLevel.from_array_metadata(
                dims,
                shape,
                tuple(int(c) for c in darr.chunksize),
                scale=scale,
                translation=base_origin,
                value_ranges=value_ranges,
                name=str(idx),
            )
        )
        dask_arrays.append(darr)

    image_type = ImageType(
        dimension=3 if "z" in dims else 2,
        component_type=str(dask_arrays[0].dtype),
        components=levels[0].extent("c"),
    )
    return MultiscaleImage(
        levels,
        image_type,
        DaskChunkSource(dask_arrays, dims, executor=executor),
        name=name,
        config=config,
        max_voxels=max_voxels,
        executor=executor,
        metrics=metrics,
    )


__all__ = ["multiscale_from_arrays"]
