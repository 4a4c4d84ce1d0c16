"""napari adapter for the LOD controller's consumer contract."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional, Sequence, Tuple

import numpy as np

from napari.layers import Image
from napari.utils.colormaps.colormap_utils import ensure_colormap

from napari_lod.lod.events import AppearanceKind
from napari_lod.lod.services import RenderedImage


logger = logging.getLogger(__name__)


def _set_visible(layer: Image, value: Any) -> None:
    layer.visible = bool(value)


def _set_opacity(layer: Image, value: Any) -> None:
    layer.opacity = float(max(0.0, min(1.0, float(value))))


def _set_blending(layer: Image, value: Any) -> None:
    layer.blending = str(value)


def _set_colormap(layer: Image, value: Any) -> None:
    layer.colormap = ensure_colormap(value)


def _set_interpolation(layer: Image, value: Any) -> None:
    if layer.ndim >= 3:
        layer.interpolation3d = str(value)
    else:
        layer.interpolation2d = str(value)


def _set_rendering(layer: Image, value: Any) -> None:
    layer.rendering = str(value)


def _set_contrast_limits(layer: Image, value: Any) -> None:
    if not isinstance(value, (list, tuple)) or len(value) < 2:
        raise ValueError("contrast_limits must be a length-2 sequence")
    lo, hi = float(value[0]), float(value[1])
    if hi < lo:
        lo, hi = hi, lo
    layer.contrast_limits = [lo, hi]


_SETTERS: Dict[AppearanceKind, Callable[[Image, Any], None]] = {
    AppearanceKind.VISIBILITY: _set_visible,
    AppearanceKind.OPACITY: _set_opacity,
    AppearanceKind.BLEND_MODE: _set_blending,
    AppearanceKind.COLORMAP: _set_colormap,
    AppearanceKind.INTERPOLATION: _set_interpolation,
    AppearanceKind.RENDERING: _set_rendering,
    AppearanceKind.CONTRAST_LIMITS: _set_contrast_limits,
}


class NapariLayerConsumer:
    """Show rendered images on a napari ``Image`` layer.

    Multi-component images display ``channel``; the layer's scale, translate
    and rotation follow the image geometry in napari's ``z, y, x`` order.
    Appearance kinds napari has no per-layer equivalent for are kept in
    ``unsupported`` and otherwise ignored.
    """

    def __init__(self, layer: Image, *, channel: int = 0) -> None:
        self.layer = layer
        self.channel = int(channel)
        self.unsupported: Dict[str, Any] = {}
        self.presented = 0

    def _plane(self, rendered: RenderedImage) -> np.ndarray:
        image = rendered.image
        if image.image_type.components == 1:
            return image.data
        channel = min(self.channel, image.image_type.components - 1)
        return image.data[..., channel]

    def present(self, rendered: RenderedImage) -> Optional[Sequence[float]]:
        image = rendered.image
        data = self._plane(rendered)
        ndim = int(data.ndim)
        # xyz -> zyx, trimmed to the layer's dimensionality
        scale = tuple(float(s) for s in reversed(image.spacing))[-ndim:]
        translate = tuple(float(o) for o in reversed(image.origin))[-ndim:]
        rotation = np.asarray(image.direction, dtype=np.float64)[::-1, ::-1][-ndim:, -ndim:]

        layer = self.layer
        layer.data = data
        layer.scale = scale
        layer.translate = translate
        if not np.allclose(rotation, np.eye(ndim)):
            layer.rotate = rotation

        channel = min(self.channel, image.image_type.components - 1)
        lo, hi = rendered.component_ranges.get(channel, (0.0, 1.0))
        if hi <= lo:
            hi = lo + 1.0
        layer.contrast_limits = [float(lo), float(hi)]
        self.presented += 1
        logger.debug(
            "napari consumer: layer=%s scale=%d shape=%s translate=%s",
            layer.name,
            rendered.scale,
            "x".join(str(int(s)) for s in data.shape),
            translate,
        )
        return image.world_bounds()

    def apply_appearance(self, kind: AppearanceKind, value: Any, component: Optional[int]) -> None:
        if component is not None and int(component) != self.channel:
            return
        setter = _SETTERS.get(kind)
        if setter is None:
            key = kind.value if component is None else f"{kind.value}:{int(component)}"
            self.unsupported[key] = value
            logger.debug("napari consumer: layer=%s ignoring %s", self.layer.name, key)
            return
        setter(self.layer, value)

    def apply_histograms(self, histograms: Dict[int, Tuple[np.ndarray, np.ndarray]]) -> None:
        entry = histograms.get(self.channel)
        if entry is None:
            return
        _counts, edges = entry
        lo, hi = float(edges[0]), float(edges[-1])
        if hi <= lo:
            return
        self.layer.contrast_limits_range = (lo, hi)


__all__ = ["NapariLayerConsumer"]
