"""Events consumed by the LOD controller.

External events come from the viewer, the frame-rate sampler and the user;
internal events are posted by the controller's own background work and carry
the generation they were issued under so stale completions can be dropped.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional, Sequence

if TYPE_CHECKING:
    from napari_lod.data.multiscale_image import MultiscaleImage

    from .services import RenderedImage


class AppearanceKind(str, Enum):
    """Display-only properties applied without re-fetching data."""

    VISIBILITY = "visibility"
    COLORMAP = "colormap"
    OPACITY = "opacity"
    BLEND_MODE = "blend_mode"
    SHADOW = "shadow"
    GRADIENT_OPACITY = "gradient_opacity"
    LABEL_LOOKUP_TABLE = "label_lookup_table"
    LABEL_BLEND = "label_blend"
    INTERPOLATION = "interpolation"
    CONTRAST_LIMITS = "contrast_limits"
    RENDERING = "rendering"


# ---- External events -----------------------------------------------------------


@dataclass(frozen=True)
class ImageAssigned:
    """A new image (and/or label image) is shown by the layer."""

    image: Optional["MultiscaleImage"] = None
    label_image: Optional["MultiscaleImage"] = None
    scale: Optional[int] = None


@dataclass(frozen=True)
class UpdateRenderedImage:
    """Re-render at the current target scale."""


@dataclass(frozen=True)
class BoundsChanged:
    """Viewport or crop box changed; ``bounds`` is a world box or None."""

    bounds: Optional[Sequence[float]]


@dataclass(frozen=True)
class FpsUpdated:
    fps: float


@dataclass(frozen=True)
class SetImageScale:
    """Pin the rendered scale and disable frame-rate scale picking."""

    scale: int


@dataclass(frozen=True)
class FramerateScalePickingToggled:
    enabled: bool


@dataclass(frozen=True)
class AdjustScaleForFramerate:
    """Start a frame-rate driven scale search from the current scale."""


@dataclass(frozen=True)
class UpdateHistogram:
    pass


@dataclass(frozen=True)
class AppearanceChanged:
    kind: AppearanceKind
    value: Any
    component: Optional[int] = None


@dataclass(frozen=True)
class IndependentComponentsToggled:
    enabled: bool


@dataclass(frozen=True)
class Finish:
    pass


# ---- Internal events -----------------------------------------------------------


@dataclass(frozen=True)
class UpdateDone:
    generation: int
    result: "RenderedImage"


@dataclass(frozen=True)
class UpdateFailed:
    generation: int
    error: BaseException


@dataclass(frozen=True)
class HistogramDone:
    generation: int
    histograms: dict


@dataclass(frozen=True)
class HistogramFailed:
    generation: int
    error: BaseException


@dataclass(frozen=True)
class DebounceExpired:
    generation: int


LodEvent = Any


__all__ = [
    "AdjustScaleForFramerate",
    "AppearanceChanged",
    "AppearanceKind",
    "BoundsChanged",
    "DebounceExpired",
    "Finish",
    "FpsUpdated",
    "FramerateScalePickingToggled",
    "HistogramDone",
    "HistogramFailed",
    "ImageAssigned",
    "IndependentComponentsToggled",
    "LodEvent",
    "SetImageScale",
    "UpdateDone",
    "UpdateFailed",
    "UpdateHistogram",
    "UpdateRenderedImage",
]
