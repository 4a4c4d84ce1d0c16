"""Contracts between the LOD controller and its downstream collaborators."""

from __future__ import annotations

from typing import Any, Dict, Optional, Protocol, Sequence, Tuple, runtime_checkable

import numpy as np

from .events import AppearanceKind
from .services import RenderedImage


@runtime_checkable
class RenderConsumer(Protocol):
    """Displays rendered images for one layer.

    ``present`` returns the world bounds actually displayed, or None to let
    the controller use the image's own world bounds.
    """

    def present(self, rendered: RenderedImage) -> Optional[Sequence[float]]:
        ...

    def apply_appearance(self, kind: AppearanceKind, value: Any, component: Optional[int]) -> None:
        ...

    def apply_histograms(self, histograms: Dict[int, Tuple[np.ndarray, np.ndarray]]) -> None:
        ...


@runtime_checkable
class FramerateSource(Protocol):
    """Provides the most recent measured frames per second."""

    async def sample(self) -> float:
        ...


__all__ = ["FramerateSource", "RenderConsumer"]
