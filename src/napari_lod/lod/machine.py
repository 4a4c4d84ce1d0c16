"""Per-layer LOD state machine: states, actions and the transition table.

The table maps ``(State, event type)`` to an ordered list of guarded
transitions; the first transition whose guard accepts ``(snapshot, event)``
fires. Guards are pure functions of an immutable `MachineSnapshot` so the
table can be exercised without a controller, a viewer or an event loop.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from . import events as ev


class State(str, Enum):
    IDLE = "idle"
    BOUNDS_DEBOUNCING = "imageBoundsDebouncing"
    UPDATE_RENDERED_IMAGE = "updateRenderedImage"
    ADJUST_SCALE_FOR_FRAMERATE = "adjustScaleForFramerate"
    SET_IMAGE_SCALE = "setImageScale"
    UPDATE_HISTOGRAM = "updateHistogram"
    ACTIVE = "active"
    FINISHED = "finished"


class AdjustPhase(str, Enum):
    """Child states of ``adjustScaleForFramerate``."""

    CHECK_STARTED = "checkStarted"
    # stepped one scale finer
    SCALE_TOO_LOW = "scaleTooLow"
    # stepped one scale coarser
    SCALE_JUST_RIGHT = "scaleJustRight"


class Action(str, Enum):
    ASSIGN_IMAGE = "assign_image"
    START_UPDATE = "start_update"
    PIN_SCALE = "pin_scale"
    BEGIN_ADJUSTMENT = "begin_adjustment"
    REQUEST_FPS = "request_fps"
    CONSUME_FPS = "consume_fps"
    RECORD_FPS = "record_fps"
    STEP_FINER = "step_finer"
    STEP_COARSER = "step_coarser"
    START_HISTOGRAM = "start_histogram"
    APPLY_HISTOGRAM = "apply_histogram"
    SET_PICKING = "set_picking"
    APPLY_APPEARANCE = "apply_appearance"
    TOGGLE_COMPONENTS = "toggle_components"
    RECORD_BOUNDS = "record_bounds"
    ACKNOWLEDGE_BOUNDS = "acknowledge_bounds"
    RESTART_DEBOUNCE = "restart_debounce"
    CANCEL_DEBOUNCE = "cancel_debounce"
    COMMIT_IMAGE = "commit_image"
    RESTORE_SCALE = "restore_scale"
    REPORT_ERROR = "report_error"


@dataclass(frozen=True)
class MachineSnapshot:
    """Everything guards may look at, captured before an event is handled."""

    target_scale: int
    rendered_scale: Optional[int]
    lowest_scale: int
    next_finer_voxels: Optional[int]
    max_voxels: int
    fps_low: float
    fps_high: float
    picking_on: bool
    bounds_covered: bool
    bounds_pending: bool
    awaiting_fps: bool
    last_step: Optional[str] = None


Guard = Callable[[MachineSnapshot, object], bool]


@dataclass(frozen=True)
class Transition:
    """``target`` None keeps the current state and adjust phase."""

    target: Optional[State]
    actions: Tuple[Action, ...] = ()
    phase: Optional[AdjustPhase] = None
    guard: Optional[Guard] = None

    def accepts(self, snapshot: MachineSnapshot, event: object) -> bool:
        return self.guard is None or bool(self.guard(snapshot, event))


# ---- Guards ---------------------------------------------------------------------


def is_too_slow(s: MachineSnapshot, e: object) -> bool:
    return float(getattr(e, "fps")) <= s.fps_low


def is_adjustment_settled(s: MachineSnapshot, e: object) -> bool:
    """True when a frame-rate sample ends the scale search.

    The search stops at the finest scale, when the next finer scale would
    exceed the voxel ceiling, when the frame rate is inside the accepted band,
    when a too-slow sample arrives at the coarsest scale, and when a fast
    sample arrives after the run already stepped coarser.
    """

    fps = float(getattr(e, "fps"))
    if s.target_scale <= 0:
        return True
    if s.max_voxels and s.next_finer_voxels is not None and s.next_finer_voxels > s.max_voxels:
        return True
    if s.fps_low < fps < s.fps_high:
        return True
    if fps <= s.fps_low:
        return s.target_scale >= s.lowest_scale
    return s.last_step == "coarser"


def _unexpected_fps(s: MachineSnapshot, e: object) -> bool:
    return not s.awaiting_fps


def _covered(s: MachineSnapshot, e: object) -> bool:
    return s.bounds_covered


def _picking_on(s: MachineSnapshot, e: object) -> bool:
    return s.picking_on


def _bounds_pending(s: MachineSnapshot, e: object) -> bool:
    return s.bounds_pending


# ---- Table ----------------------------------------------------------------------

A = Action
_STAY = None

_ADJUST_START = Transition(
    State.ADJUST_SCALE_FOR_FRAMERATE,
    (A.BEGIN_ADJUSTMENT, A.START_UPDATE),
    phase=AdjustPhase.CHECK_STARTED,
)

# Responses shared by every non-terminal state except idle.
_COMMON: Dict[type, List[Transition]] = {
    ev.ImageAssigned: [Transition(State.UPDATE_RENDERED_IMAGE, (A.ASSIGN_IMAGE, A.START_UPDATE))],
    ev.UpdateRenderedImage: [Transition(State.UPDATE_RENDERED_IMAGE, (A.START_UPDATE,))],
    ev.SetImageScale: [Transition(State.SET_IMAGE_SCALE, (A.PIN_SCALE, A.START_UPDATE))],
    ev.AdjustScaleForFramerate: [_ADJUST_START],
    ev.UpdateHistogram: [Transition(State.UPDATE_HISTOGRAM, (A.START_HISTOGRAM,))],
    ev.FramerateScalePickingToggled: [Transition(_STAY, (A.SET_PICKING,))],
    ev.AppearanceChanged: [Transition(_STAY, (A.APPLY_APPEARANCE,))],
    ev.IndependentComponentsToggled: [Transition(_STAY, (A.TOGGLE_COMPONENTS,))],
    ev.FpsUpdated: [Transition(_STAY, (A.RECORD_FPS,))],
    ev.BoundsChanged: [Transition(_STAY, (A.RECORD_BOUNDS,))],
    ev.UpdateDone: [Transition(_STAY, (A.COMMIT_IMAGE,))],
    ev.UpdateFailed: [Transition(_STAY, (A.RESTORE_SCALE, A.REPORT_ERROR))],
    ev.HistogramDone: [Transition(_STAY, (A.APPLY_HISTOGRAM,))],
    ev.HistogramFailed: [Transition(_STAY, (A.REPORT_ERROR,))],
    ev.Finish: [Transition(State.FINISHED, (A.CANCEL_DEBOUNCE,))],
}

_TO_DEBOUNCE = [Transition(State.BOUNDS_DEBOUNCING, (A.RECORD_BOUNDS, A.RESTART_DEBOUNCE))]
_UPDATE_FAILED = [
    Transition(State.BOUNDS_DEBOUNCING, (A.RESTORE_SCALE, A.REPORT_ERROR, A.RESTART_DEBOUNCE), guard=_bounds_pending),
    Transition(State.ACTIVE, (A.RESTORE_SCALE, A.REPORT_ERROR)),
]

_OVERRIDES: Dict[State, Dict[type, List[Transition]]] = {
    State.IDLE: {
        ev.ImageAssigned: _COMMON[ev.ImageAssigned],
        ev.BoundsChanged: _COMMON[ev.BoundsChanged],
        ev.FramerateScalePickingToggled: _COMMON[ev.FramerateScalePickingToggled],
        ev.AppearanceChanged: _COMMON[ev.AppearanceChanged],
        ev.IndependentComponentsToggled: _COMMON[ev.IndependentComponentsToggled],
        ev.FpsUpdated: _COMMON[ev.FpsUpdated],
        ev.Finish: _COMMON[ev.Finish],
    },
    State.ACTIVE: {
        ev.BoundsChanged: _TO_DEBOUNCE,
    },
    State.BOUNDS_DEBOUNCING: {
        ev.BoundsChanged: _TO_DEBOUNCE,
        ev.DebounceExpired: [
            Transition(State.UPDATE_HISTOGRAM, (A.ACKNOWLEDGE_BOUNDS, A.START_HISTOGRAM), guard=_covered),
            Transition(
                State.ADJUST_SCALE_FOR_FRAMERATE,
                (A.ACKNOWLEDGE_BOUNDS, A.BEGIN_ADJUSTMENT, A.START_UPDATE),
                phase=AdjustPhase.CHECK_STARTED,
                guard=_picking_on,
            ),
            Transition(State.UPDATE_RENDERED_IMAGE, (A.ACKNOWLEDGE_BOUNDS, A.START_UPDATE)),
        ],
    },
    State.UPDATE_RENDERED_IMAGE: {
        ev.UpdateDone: [
            Transition(
                State.ADJUST_SCALE_FOR_FRAMERATE,
                (A.COMMIT_IMAGE, A.BEGIN_ADJUSTMENT, A.REQUEST_FPS),
                phase=AdjustPhase.CHECK_STARTED,
                guard=_picking_on,
            ),
            Transition(State.UPDATE_HISTOGRAM, (A.COMMIT_IMAGE, A.START_HISTOGRAM)),
        ],
        ev.UpdateFailed: _UPDATE_FAILED,
    },
    State.SET_IMAGE_SCALE: {
        ev.UpdateDone: [Transition(State.UPDATE_HISTOGRAM, (A.COMMIT_IMAGE, A.START_HISTOGRAM))],
        ev.UpdateFailed: _UPDATE_FAILED,
    },
    State.ADJUST_SCALE_FOR_FRAMERATE: {
        ev.UpdateDone: [Transition(_STAY, (A.COMMIT_IMAGE, A.REQUEST_FPS))],
        ev.UpdateFailed: _UPDATE_FAILED,
        ev.FpsUpdated: [
            Transition(_STAY, (A.RECORD_FPS,), guard=_unexpected_fps),
            Transition(
                State.UPDATE_HISTOGRAM,
                (A.RECORD_FPS, A.CONSUME_FPS, A.START_HISTOGRAM),
                guard=is_adjustment_settled,
            ),
            Transition(
                State.ADJUST_SCALE_FOR_FRAMERATE,
                (A.RECORD_FPS, A.CONSUME_FPS, A.STEP_COARSER, A.START_UPDATE),
                phase=AdjustPhase.SCALE_JUST_RIGHT,
                guard=is_too_slow,
            ),
            Transition(
                State.ADJUST_SCALE_FOR_FRAMERATE,
                (A.RECORD_FPS, A.CONSUME_FPS, A.STEP_FINER, A.START_UPDATE),
                phase=AdjustPhase.SCALE_TOO_LOW,
            ),
        ],
    },
    State.UPDATE_HISTOGRAM: {
        ev.HistogramDone: [
            Transition(State.BOUNDS_DEBOUNCING, (A.APPLY_HISTOGRAM, A.RESTART_DEBOUNCE), guard=_bounds_pending),
            Transition(State.ACTIVE, (A.APPLY_HISTOGRAM,)),
        ],
        ev.HistogramFailed: [
            Transition(State.BOUNDS_DEBOUNCING, (A.REPORT_ERROR, A.RESTART_DEBOUNCE), guard=_bounds_pending),
            Transition(State.ACTIVE, (A.REPORT_ERROR,)),
        ],
    },
    State.FINISHED: {},
}


def transitions_for(state: State, event_type: type) -> List[Transition]:
    overrides = _OVERRIDES.get(state, {})
    if event_type in overrides:
        return overrides[event_type]
    if state in (State.IDLE, State.FINISHED):
        return []
    return _COMMON.get(event_type, [])


def next_transition(state: State, event: object, snapshot: MachineSnapshot) -> Optional[Transition]:
    """Return the first transition accepting ``event`` in ``state``, if any."""

    for transition in transitions_for(state, type(event)):
        if transition.accepts(snapshot, event):
            return transition
    return None


__all__ = [
    "Action",
    "AdjustPhase",
    "MachineSnapshot",
    "State",
    "Transition",
    "is_adjustment_settled",
    "is_too_slow",
    "next_transition",
    "transitions_for",
]
