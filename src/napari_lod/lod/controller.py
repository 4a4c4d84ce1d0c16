"""Per-layer LOD controller runtime.

`LodController` drives the transition table in `napari_lod.lod.machine` for
exactly one `LayerActorState`. Events are handled run-to-completion on the
asyncio loop; fetches, histogram refreshes and frame-rate samples run as
background tasks that report back through internal events carrying a
generation number, so results of superseded requests are dropped.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from concurrent.futures import Executor
from typing import TYPE_CHECKING, Callable, Deque, Optional, Set

from napari_lod.config import LodConfig
from napari_lod.data.budget import select_initial_scale
from napari_lod.data.transform import normalize_bounds
from napari_lod.metrics import Metrics

from . import events as ev
from .bounds import are_bounds_bigger
from .consumer import FramerateSource, RenderConsumer
from .debounce import Debouncer
from .layer_state import LayerActorState
from .level_logging import LevelSwitchLogger, format_bounds
from .machine import AdjustPhase, MachineSnapshot, State, next_transition
from .services import (
    FuseFn,
    HistogramFn,
    RenderRequest,
    default_histograms,
    fuse_images,
    refresh_histograms,
    update_rendered_image,
)

if TYPE_CHECKING:
    from napari_lod.data.multiscale_image import MultiscaleImage


logger = logging.getLogger(__name__)


class LodController:
    """Adaptive scale selection for one displayed layer.

    ``send`` must be called from the thread running the asyncio loop.
    Frame-rate samples are pulled from ``framerate`` when given, otherwise
    they are expected as `FpsUpdated` events.
    """

    def __init__(
        self,
        layer: LayerActorState,
        consumer: RenderConsumer,
        *,
        framerate: Optional[FramerateSource] = None,
        config: Optional[LodConfig] = None,
        fuse: FuseFn = fuse_images,
        histogram: HistogramFn = default_histograms,
        on_error: Optional[Callable[[BaseException], None]] = None,
        metrics: Optional[Metrics] = None,
        executor: Optional[Executor] = None,
    ) -> None:
        self.layer = layer
        self.consumer = consumer
        self.config = config or LodConfig()
        self.metrics = metrics or Metrics()
        self._framerate = framerate
        self._fuse = fuse
        self._histogram = histogram
        self._on_error = on_error
        self._executor = executor
        self._log = self.config.debug.logging

        self.state = State.IDLE
        self.phase: Optional[AdjustPhase] = None
        self._queue: Deque[object] = deque()
        self._dispatching = False
        self._tasks: Set[asyncio.Task] = set()
        self._settled = asyncio.Event()
        self._debouncer = Debouncer(self.config.debounce_s, self._on_debounce)
        self._switch_logger = LevelSwitchLogger(logger)
        self._update_started: Optional[float] = None

        layer.is_framerate_scale_picking_on = bool(self.config.framerate_scale_picking)

    # ---- Public API ---------------------------------------------------------

    def send(self, event: object) -> None:
        """Validate ``event`` and handle it (and anything it queues) to completion."""

        self._validate(event)
        self._queue.append(event)
        if self._dispatching:
            return
        self._dispatching = True
        try:
            while self._queue:
                self._dispatch(self._queue.popleft())
        finally:
            self._dispatching = False

    async def wait_until_active(self, timeout: Optional[float] = None) -> State:
        """Wait until the controller settles in ``active`` (or ``finished``)."""

        await asyncio.wait_for(self._settled.wait(), timeout)
        return self.state

    async def close(self) -> None:
        if self.state is not State.FINISHED:
            self.send(ev.Finish())
        self._debouncer.cancel()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def is_image_update_needed(self) -> bool:
        """True when the target scale is not loaded or the view outgrew the loaded region."""

        layer = self.layer
        if layer.rendered is None or layer.rendered_scale != layer.target_scale:
            return True
        return are_bounds_bigger(layer.loaded_bounds, layer.requested_bounds, layer.full_bounds)

    def snapshot(self) -> MachineSnapshot:
        layer = self.layer
        return MachineSnapshot(
            target_scale=int(layer.target_scale),
            rendered_scale=layer.rendered_scale,
            lowest_scale=layer.lowest_scale,
            next_finer_voxels=layer.next_finer_voxels(),
            max_voxels=int(self.config.max_rendered_voxels),
            fps_low=float(self.config.fps_low),
            fps_high=float(self.config.fps_high),
            picking_on=bool(layer.is_framerate_scale_picking_on),
            bounds_covered=not self.is_image_update_needed(),
            bounds_pending=bool(layer.bounds_pending),
            awaiting_fps=bool(layer.awaiting_fps),
            last_step=layer.last_step,
        )

    # ---- Dispatch -----------------------------------------------------------

    def _validate(self, event: object) -> None:
        if isinstance(event, ev.SetImageScale):
            self._check_scale(event.scale, self.layer.primary)
        elif isinstance(event, ev.ImageAssigned):
            if event.image is None and event.label_image is None:
                raise AssertionError("ImageAssigned needs an image or a label image")
            if event.scale is not None:
                primary = event.image if event.image is not None else event.label_image
                self._check_scale(event.scale, primary)
        elif isinstance(event, ev.BoundsChanged):
            normalize_bounds(event.bounds)

    @staticmethod
    def _check_scale(scale: int, image: Optional["MultiscaleImage"]) -> None:
        if image is None:
            raise AssertionError("scale requested before an image was assigned")
        if not (0 <= int(scale) <= image.lowest_scale):
            raise AssertionError(f"scale {scale} outside [0, {image.lowest_scale}]")

    def _is_stale(self, event: object) -> bool:
        layer = self.layer
        if isinstance(event, (ev.UpdateDone, ev.UpdateFailed)):
            return event.generation != layer.pending_update
        if isinstance(event, (ev.HistogramDone, ev.HistogramFailed)):
            return event.generation != layer.pending_histogram
        if isinstance(event, ev.DebounceExpired):
            return event.generation != self._debouncer.generation
        return False

    def _dispatch(self, event: object) -> None:
        if self._is_stale(event):
            logger.debug("lod: layer=%s dropping stale %s", self.layer.name, type(event).__name__)
            return
        transition = next_transition(self.state, event, self.snapshot())
        if transition is None:
            logger.debug("lod: layer=%s state=%s ignores %s", self.layer.name, self.state.value, type(event).__name__)
            return
        try:
            for action in transition.actions:
                getattr(self, f"_do_{action.value}")(event)
        except Exception as exc:
            self._recover(event, exc)
            return
        if transition.target is None:
            return
        self._enter(transition.target, transition.phase, event)

    def _enter(self, target: State, phase: Optional[AdjustPhase], event: object) -> None:
        previous = self.state
        if previous is State.BOUNDS_DEBOUNCING and target is not State.BOUNDS_DEBOUNCING:
            self._debouncer.cancel()
        self.state = target
        self.phase = phase if target is State.ADJUST_SCALE_FOR_FRAMERATE else None
        if self.state in (State.ACTIVE, State.FINISHED):
            self._settled.set()
        else:
            self._settled.clear()
        if self._log.log_transitions:
            logger.info(
                "lod: layer=%s %s -> %s%s on %s",
                self.layer.name,
                previous.value,
                self.state.value,
                f".{self.phase.value}" if self.phase is not None else "",
                type(event).__name__,
            )

    def _recover(self, event: object, error: Exception) -> None:
        """Abandon in-flight work after an action raised and settle the layer."""

        layer = self.layer
        layer.pending_update = None
        layer.pending_histogram = None
        layer.awaiting_fps = False
        if layer.rendered_scale is not None:
            layer.target_scale = layer.rendered_scale
        self._report(error, f"handling {type(event).__name__}")
        if layer.bounds_pending and self.state is not State.FINISHED:
            self._debouncer.restart()
            self._enter(State.BOUNDS_DEBOUNCING, None, event)
        elif self.state is not State.FINISHED:
            self._enter(State.ACTIVE, None, event)

    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _on_debounce(self, generation: int) -> None:
        self.send(ev.DebounceExpired(generation))

    # ---- Background work ----------------------------------------------------

    async def _run_update(self, generation: int, request: RenderRequest) -> None:
        try:
            result = await update_rendered_image(request, fuse=self._fuse, executor=self._executor)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self.send(ev.UpdateFailed(generation, exc))
            return
        self.send(ev.UpdateDone(generation, result))

    async def _run_histogram(self, generation: int) -> None:
        try:
            histograms = await refresh_histograms(
                self.layer.rendered,
                histogram=self._histogram,
                executor=self._executor,
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self.send(ev.HistogramFailed(generation, exc))
            return
        self.send(ev.HistogramDone(generation, histograms))

    async def _sample_fps(self) -> None:
        assert self._framerate is not None
        try:
            fps = float(await self._framerate.sample())
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.warning("lod: layer=%s frame-rate sample failed; ending scale search", self.layer.name, exc_info=True)
            self.layer.awaiting_fps = False
            self.send(ev.UpdateHistogram())
            return
        self.send(ev.FpsUpdated(fps))

    # ---- Actions ------------------------------------------------------------

    def _do_assign_image(self, event: ev.ImageAssigned) -> None:
        layer = self.layer
        if event.image is not None:
            layer.image = event.image
            layer.visualized_components = layer.default_components()
        if event.label_image is not None:
            layer.label_image = event.label_image
        layer.rendered = None
        layer.rendered_scale = None
        layer.loaded_bounds = None
        layer.full_bounds = None
        layer.awaiting_fps = False
        layer.last_step = None
        if event.scale is not None:
            layer.target_scale = int(event.scale)
        else:
            primary = layer.primary
            scale, voxels = select_initial_scale(primary.levels, max_voxels=self.config.max_rendered_voxels)
            if self._log.log_budget:
                logger.info("lod: layer=%s initial scale=%d voxels=%d", layer.name, scale, voxels)
            layer.target_scale = scale

    def _do_start_update(self, event: object) -> None:
        layer = self.layer
        layer.update_generation += 1
        generation = layer.update_generation
        layer.pending_update = generation
        layer.bounds_pending = False
        request = RenderRequest(
            image=layer.image,
            label_image=layer.label_image,
            scale=int(layer.target_scale),
            bounds=layer.requested_bounds,
            visualized_components=tuple(layer.visualized_components),
        )
        self._update_started = time.perf_counter()
        self._spawn(self._run_update(generation, request))

    def _do_pin_scale(self, event: ev.SetImageScale) -> None:
        self.layer.target_scale = int(event.scale)
        self.layer.is_framerate_scale_picking_on = False
        self.layer.awaiting_fps = False

    def _do_begin_adjustment(self, event: object) -> None:
        self.layer.last_step = None
        self.layer.awaiting_fps = False

    def _do_request_fps(self, event: object) -> None:
        self.layer.awaiting_fps = True
        if self._framerate is not None:
            self._spawn(self._sample_fps())

    def _do_consume_fps(self, event: object) -> None:
        self.layer.awaiting_fps = False

    def _do_record_fps(self, event: ev.FpsUpdated) -> None:
        self.layer.fps = float(event.fps)

    def _do_step_finer(self, event: object) -> None:
        self.layer.target_scale = max(0, int(self.layer.target_scale) - 1)
        self.layer.last_step = "finer"

    def _do_step_coarser(self, event: object) -> None:
        self.layer.target_scale = min(self.layer.lowest_scale, int(self.layer.target_scale) + 1)
        self.layer.last_step = "coarser"

    def _do_start_histogram(self, event: object) -> None:
        layer = self.layer
        layer.histogram_generation += 1
        layer.pending_histogram = layer.histogram_generation
        self._spawn(self._run_histogram(layer.histogram_generation))

    def _do_apply_histogram(self, event: ev.HistogramDone) -> None:
        self.layer.pending_histogram = None
        self.layer.histograms = dict(event.histograms)
        self.consumer.apply_histograms(self.layer.histograms)

    def _do_set_picking(self, event: ev.FramerateScalePickingToggled) -> None:
        self.layer.is_framerate_scale_picking_on = bool(event.enabled)

    def _do_apply_appearance(self, event: ev.AppearanceChanged) -> None:
        key = event.kind.value if event.component is None else f"{event.kind.value}:{int(event.component)}"
        self.layer.appearance[key] = event.value
        self.consumer.apply_appearance(event.kind, event.value, event.component)

    def _do_toggle_components(self, event: ev.IndependentComponentsToggled) -> None:
        self.layer.independent_components = bool(event.enabled)

    def _do_record_bounds(self, event: ev.BoundsChanged) -> None:
        self.layer.requested_bounds = normalize_bounds(event.bounds)
        self.layer.bounds_pending = True

    def _do_acknowledge_bounds(self, event: object) -> None:
        self.layer.bounds_pending = False

    def _do_restart_debounce(self, event: object) -> None:
        self._debouncer.restart()

    def _do_cancel_debounce(self, event: object) -> None:
        self._debouncer.cancel()

    def _do_commit_image(self, event: ev.UpdateDone) -> None:
        layer = self.layer
        result = event.result
        previous = layer.rendered_scale
        layer.pending_update = None
        shown = self.consumer.present(result)
        layer.rendered = result
        layer.rendered_scale = int(result.scale)
        layer.loaded_bounds = normalize_bounds(shown) if shown is not None else result.image.world_bounds()
        layer.full_bounds = result.full_bounds
        layer.component_ranges = dict(result.component_ranges)
        if layer.label_image is not None:
            layer.unique_labels = tuple(result.unique_labels)
        if previous != layer.rendered_scale:
            self.metrics.inc("scale_switches")
        self.metrics.set("rendered_scale", float(layer.rendered_scale))
        started = self._update_started
        elapsed_ms = (time.perf_counter() - started) * 1000.0 if started is not None else 0.0
        self._switch_logger.log(
            enabled=self._log.log_level_switch,
            layer=layer.name,
            previous=previous,
            applied=layer.rendered_scale,
            bounds_desc=format_bounds(result.bounds),
            reason=self.state.value if self.phase is None else f"{self.state.value}.{self.phase.value}",
            elapsed_ms=elapsed_ms,
        )

    def _do_restore_scale(self, event: ev.UpdateFailed) -> None:
        layer = self.layer
        layer.pending_update = None
        layer.awaiting_fps = False
        if layer.rendered_scale is not None:
            layer.target_scale = layer.rendered_scale

    def _do_report_error(self, event: object) -> None:
        if isinstance(event, ev.HistogramFailed):
            self.layer.pending_histogram = None
        self._report(getattr(event, "error"), "histogram" if isinstance(event, ev.HistogramFailed) else "update")

    def _report(self, error: BaseException, what: str) -> None:
        self.layer.last_error = error
        if self._on_error is not None:
            self._on_error(error)
            return
        logger.warning(
            "lod: layer=%s %s failed: %s",
            self.layer.name,
            what,
            error,
            exc_info=(type(error), error, error.__traceback__),
        )


__all__ = ["LodController"]
