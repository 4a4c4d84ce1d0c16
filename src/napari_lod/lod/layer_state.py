"""Mutable per-layer state owned by exactly one `LodController`."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence, Tuple

if TYPE_CHECKING:
    from napari_lod.data.multiscale_image import MultiscaleImage
    from napari_lod.data.transform import Bounds

    from .services import RenderedImage


MAX_VISUALIZED_COMPONENTS = 4


@dataclass
class LayerActorState:
    """Scale-selection state of one displayed layer.

    ``target_scale`` is the scale the next update fetches; ``rendered_scale``
    is the scale of the image currently committed to the consumer (None until
    the first commit). ``loaded_bounds`` is the world box the consumer reported
    for that image. Generation counters let the controller discard results of
    superseded requests.
    """

    name: str
    image: Optional["MultiscaleImage"] = None
    label_image: Optional["MultiscaleImage"] = None
    target_scale: int = 0
    rendered_scale: Optional[int] = None
    loaded_bounds: Optional["Bounds"] = None
    full_bounds: Optional["Bounds"] = None
    requested_bounds: Optional["Bounds"] = None
    is_framerate_scale_picking_on: bool = True
    visualized_components: List[int] = field(default_factory=list)
    independent_components: bool = True
    rendered: Optional["RenderedImage"] = None
    component_ranges: Dict[int, Tuple[float, float]] = field(default_factory=dict)
    unique_labels: Sequence[int] = ()
    histograms: Dict[int, Any] = field(default_factory=dict)
    appearance: Dict[str, Any] = field(default_factory=dict)
    fps: Optional[float] = None
    update_generation: int = 0
    pending_update: Optional[int] = None
    histogram_generation: int = 0
    pending_histogram: Optional[int] = None
    bounds_pending: bool = False
    awaiting_fps: bool = False
    last_step: Optional[str] = None
    last_error: Optional[BaseException] = None

    @property
    def primary(self) -> Optional["MultiscaleImage"]:
        """The image driving scale selection (the label image when alone)."""

        return self.image if self.image is not None else self.label_image

    @property
    def lowest_scale(self) -> int:
        primary = self.primary
        return primary.lowest_scale if primary is not None else 0

    def next_finer_voxels(self) -> Optional[int]:
        primary = self.primary
        if primary is None or self.target_scale <= 0:
            return None
        return primary.voxel_count(self.target_scale - 1)

    def default_components(self) -> List[int]:
        if self.image is None:
            return []
        count = min(int(self.image.image_type.components), MAX_VISUALIZED_COMPONENTS)
        return list(range(count))


__all__ = ["LayerActorState", "MAX_VISUALIZED_COMPONENTS"]
