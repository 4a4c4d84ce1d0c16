"""Open OME-NGFF/OME-Zarr multiscale images as a `MultiscaleImage`.

Only the metadata the accessor needs is read: axes, per-dataset scale and
translation transforms, and ``omero`` channel windows as value ranges.
Chunks are served through `DaskChunkSource` over ``da.from_zarr`` arrays.
"""

from __future__ import annotations

import logging
from concurrent.futures import Executor
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

import dask.array as da
import zarr

from napari_lod.config import LodConfig
from napari_lod.metrics import Metrics

from .chunk_source import DaskChunkSource
from .multiscale_image import MultiscaleImage
from .pyramid import ImageType, PyramidLevel


logger = logging.getLogger(__name__)


DEFAULT_AXES = ("z", "y", "x")

_AXIS_ALIASES = {
    "x": "x",
    "y": "y",
    "z": "z",
    "c": "c",
    "ch": "c",
    "channel": "c",
    "t": "t",
    "time": "t",
}


class ZarrPyramidError(RuntimeError):
    """Raised when a zarr store cannot be opened as a multiscale image."""


def _ome_attrs(attrs: Mapping[str, object]) -> Mapping[str, object]:
    # NGFF 0.5 nests metadata under "ome"
    nested = attrs.get("ome")
    if isinstance(nested, Mapping):
        return nested
    return attrs


def _first_multiscale_entry(meta: Mapping[str, object]) -> Dict[str, object]:
    entries = meta.get("multiscales")
    if isinstance(entries, list) and entries:
        entry = entries[0]
        if isinstance(entry, dict):
            return entry
    return {}


def _parse_axes(multiscale: Mapping[str, object], ndim: int) -> Tuple[str, ...]:
    axes_meta = multiscale.get("axes")
    names: List[str] = []
    if isinstance(axes_meta, list) and axes_meta:
        for entry in axes_meta:
            name = entry.get("name") if isinstance(entry, dict) else entry
            names.append(str(name or "").lower())
    else:
        names = list(DEFAULT_AXES[-ndim:]) if ndim <= len(DEFAULT_AXES) else []
    dims: List[str] = []
    for name in names:
        label = _AXIS_ALIASES.get(name)
        if label is None or label in dims:
            raise ZarrPyramidError(f"unsupported or duplicate axis {name!r} in {names}")
        dims.append(label)
    if len(dims) != ndim:
        raise ZarrPyramidError(f"axes {names} do not match array ndim={ndim}")
    return tuple(dims)


def _extract_transform(dataset_meta: Mapping[str, object], kind: str, ndim: int) -> Optional[Tuple[float, ...]]:
    transforms = dataset_meta.get("coordinateTransformations")
    if not isinstance(transforms, list):
        return None
    for transform in transforms:
        if isinstance(transform, dict) and str(transform.get("type")).lower() == kind:
            values = transform.get(kind)
            if isinstance(values, Iterable):
                out = tuple(float(v) for v in list(values))
                if len(out) != ndim:
                    raise ZarrPyramidError(f"{kind} transform {out} does not match ndim={ndim}")
                return out
    return None


def _omero_ranges(meta: Mapping[str, object]) -> Optional[Dict[int, Tuple[float, float]]]:
    omero = meta.get("omero")
    if not isinstance(omero, dict):
        return None
    channels = omero.get("channels")
    if not isinstance(channels, list):
        return None
    ranges: Dict[int, Tuple[float, float]] = {}
    for idx, channel in enumerate(channels):
        window = channel.get("window") if isinstance(channel, dict) else None
        if not isinstance(window, dict):
            continue
        lo = window.get("min", window.get("start"))
        hi = window.get("max", window.get("end"))
        if lo is None or hi is None:
            continue
        ranges[idx] = (float(lo), float(hi))
    return ranges or None


def open_zarr_pyramid(
    path: str | Path,
    *,
    name: Optional[str] = None,
    config: Optional[LodConfig] = None,
    executor: Optional[Executor] = None,
    metrics: Optional[Metrics] = None,
) -> MultiscaleImage:
    """Open the OME-Zarr group at ``path`` (a bare array is a single-scale pyramid)."""

    root = Path(path)
    if not root.exists():
        raise ZarrPyramidError(f"Zarr root does not exist: {root}")
    try:
        node = zarr.open(str(root), mode="r")
    except Exception as exc:
        raise ZarrPyramidError(f"Failed to open zarr store {root}: {exc}") from exc

    if isinstance(node, zarr.Array):
        arrays = [node]
        multiscale: Dict[str, object] = {}
        datasets_meta: List[Dict[str, object]] = [{"path": ""}]
        meta: Mapping[str, object] = {}
    else:
        meta = _ome_attrs(dict(node.attrs))
        multiscale = _first_multiscale_entry(meta)
        datasets_meta = [d for d in multiscale.get("datasets", []) if isinstance(d, dict)]
        if not datasets_meta:
            raise ZarrPyramidError(f"{root} has no multiscales datasets")
        arrays = []
        for entry in datasets_meta:
            rel_path = str(entry.get("path") or "")
            try:
                arrays.append(node[rel_path])
            except KeyError as exc:
                raise ZarrPyramidError(f"Missing dataset path: {root / rel_path}") from exc

    ndim = arrays[0].ndim
    dims = _parse_axes(multiscale, ndim)
    ranges = _omero_ranges(meta)

    dask_arrays: List[da.Array] = []
    levels: List[PyramidLevel] = []
    for idx, (entry, arr) in enumerate(zip(datasets_meta, arrays)):
        if arr.ndim != ndim:
            raise ZarrPyramidError(f"level {idx} ndim={arr.ndim} does not match level 0 ndim={ndim}")
        darr = da.from_zarr(arr)
        dask_arrays.append(darr)
        levels.append(
            PyramidLevel.from_array_metadata(
                dims,
                tuple(int(s) for s in arr.shape),
                tuple(int(c) for c in darr.chunksize),
                scale=_extract_transform(entry, "scale", ndim),
                translation=_extract_transform(entry, "translation", ndim),
                value_ranges=ranges,
                name=str(entry.get("path") or idx),
            )
        )
        logger.debug(
            "zarr pyramid: level=%d path=%s shape=%s chunks=%s",
            idx,
            entry.get("path"),
            tuple(arr.shape),
            tuple(darr.chunksize),
        )

    components = levels[0].extent("c")
    image_type = ImageType(
        dimension=3 if "z" in dims else 2,
        component_type=str(dask_arrays[0].dtype),
        components=components,
    )
    return MultiscaleImage(
        levels,
        image_type,
        DaskChunkSource(dask_arrays, dims, executor=executor),
        name=name or str(multiscale.get("name") or root.stem),
        config=config,
        executor=executor,
        metrics=metrics,
    )


__all__ = ["DEFAULT_AXES", "ZarrPyramidError", "open_zarr_pyramid"]
