"""Adaptive level-of-detail (LOD) scale selection per displayed layer."""

from . import events, machine
from .consumer import FramerateSource, RenderConsumer
from .controller import LodController
from .layer_state import LayerActorState
from .machine import AdjustPhase, State
from .services import RenderedImage, RenderRequest

__all__ = [
    "AdjustPhase",
    "FramerateSource",
    "LayerActorState",
    "LodController",
    "RenderConsumer",
    "RenderRequest",
    "RenderedImage",
    "State",
    "events",
    "machine",
]
