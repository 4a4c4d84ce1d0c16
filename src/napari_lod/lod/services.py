"""Background work invoked by the LOD controller.

`update_rendered_image` fetches the image and label image at the target
scale, fuses them when needed and computes component ranges;
`refresh_histograms` summarises the rendered data. Both run numpy work in an
executor so the controller's event loop stays responsive.
"""

from __future__ import annotations

import asyncio
import dataclasses
import functools
import logging
from concurrent.futures import Executor
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional, Sequence, Tuple

import numpy as np

from napari_lod.data.multiscale_image import MultiscaleImage
from napari_lod.data.pyramid import AssembledImage, ImageType
from napari_lod.data.ranges import compute_histograms, compute_ranges, unique_labels


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RenderRequest:
    image: Optional[MultiscaleImage]
    label_image: Optional[MultiscaleImage]
    scale: int
    bounds: Optional[Tuple[float, ...]]
    visualized_components: Tuple[int, ...]


@dataclass(frozen=True)
class RenderedImage:
    """What the consumer displays after one update."""

    image: AssembledImage
    scale: int
    bounds: Optional[Tuple[float, ...]]
    component_ranges: Dict[int, Tuple[float, float]]
    unique_labels: Tuple[int, ...] = ()
    fused: bool = False
    full_bounds: Optional[Tuple[float, ...]] = None


FuseFn = Callable[[Optional[AssembledImage], Optional[AssembledImage], Sequence[int]], AssembledImage]
HistogramFn = Callable[[RenderedImage], Dict[int, Tuple[np.ndarray, np.ndarray]]]


def _component_stack(image: AssembledImage, components: Sequence[int]) -> list[np.ndarray]:
    if image.image_type.components == 1:
        return [image.data]
    return [image.data[..., int(c)] for c in components]


def fuse_images(
    image: Optional[AssembledImage],
    label: Optional[AssembledImage],
    components: Sequence[int],
) -> AssembledImage:
    """Keep the visualized components of ``image`` and append ``label`` last."""

    if image is None and label is None:
        raise ValueError("fuse_images needs an image or a label image")
    if image is None:
        return label  # type: ignore[return-value]
    if label is not None and tuple(label.size) != tuple(image.size):
        raise ValueError(f"label size {label.size} does not match image size {image.size}")

    selected = list(components) if components else list(range(image.image_type.components))
    planes = _component_stack(image, selected)
    dtype = image.image_type.dtype
    if label is not None:
        dtype = np.result_type(dtype, label.image_type.dtype)
        planes.append(label.data)
    planes = [np.asarray(p, dtype=dtype) for p in planes]
    data = planes[0] if len(planes) == 1 else np.stack(planes, axis=-1)
    image_type = ImageType(
        dimension=image.image_type.dimension,
        component_type=np.dtype(dtype).name,
        pixel_type=image.image_type.pixel_type,
        components=len(planes),
    )
    return dataclasses.replace(image, image_type=image_type, data=np.ascontiguousarray(data))


def _needs_fuse(image: Optional[AssembledImage], label: Optional[AssembledImage], components: Sequence[int]) -> bool:
    if image is None:
        return False
    if label is not None:
        return True
    return bool(components) and image.image_type.components != len(components)


async def _maybe(awaitable: Optional[Awaitable[AssembledImage]]) -> Optional[AssembledImage]:
    if awaitable is None:
        return None
    return await awaitable


async def update_rendered_image(
    request: RenderRequest,
    *,
    fuse: FuseFn = fuse_images,
    executor: Optional[Executor] = None,
) -> RenderedImage:
    """Fetch, fuse and range the layer's images at ``request.scale``."""

    image_src, label_src = request.image, request.label_image
    if image_src is None and label_src is None:
        raise ValueError("layer has neither an image nor a label image")
    label_scale = None if label_src is None else min(int(request.scale), label_src.lowest_scale)
    image, label = await asyncio.gather(
        _maybe(image_src.get_image(request.scale, request.bounds) if image_src is not None else None),
        _maybe(label_src.get_image(label_scale, request.bounds) if label_src is not None else None),
    )

    loop = asyncio.get_running_loop()
    labels: Tuple[int, ...] = ()
    if label is not None:
        labels = tuple(await loop.run_in_executor(executor, unique_labels, label.data))

    components = tuple(request.visualized_components)
    fused = _needs_fuse(image, label, components)
    if fused:
        result = await loop.run_in_executor(executor, fuse, image, label, components)
    else:
        result = image if image is not None else label
    assert result is not None

    primary, primary_scale = (image_src, int(request.scale)) if image_src is not None else (label_src, label_scale)
    precomputed = primary.level(primary_scale).value_ranges
    ncomp = result.image_type.components
    if not fused and precomputed and all(c in precomputed for c in range(ncomp)):
        ranges = {c: precomputed[c] for c in range(ncomp)}
    else:
        ranges = await loop.run_in_executor(executor, compute_ranges, result.data, ncomp)

    full = await primary.full_world_bounds(primary_scale)

    return RenderedImage(
        image=result,
        scale=int(request.scale),
        bounds=request.bounds,
        component_ranges=ranges,
        unique_labels=labels,
        fused=fused,
        full_bounds=full,
    )


def default_histograms(rendered: RenderedImage) -> Dict[int, Tuple[np.ndarray, np.ndarray]]:
    return compute_histograms(
        rendered.image.data,
        rendered.image.image_type.components,
        ranges=rendered.component_ranges,
    )


async def refresh_histograms(
    rendered: Optional[RenderedImage],
    *,
    histogram: HistogramFn = default_histograms,
    executor: Optional[Executor] = None,
) -> Dict[int, Tuple[np.ndarray, np.ndarray]]:
    if rendered is None:
        return {}
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(executor, functools.partial(histogram, rendered))


__all__ = [
    "FuseFn",
    "HistogramFn",
    "RenderRequest",
    "RenderedImage",
    "default_histograms",
    "fuse_images",
    "refresh_histograms",
    "update_rendered_image",
]
