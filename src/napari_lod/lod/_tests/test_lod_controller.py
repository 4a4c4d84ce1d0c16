from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import pytest

from napari_lod.config import LodConfig
from napari_lod.data import VoxelBudgetError, multiscale_from_arrays
from napari_lod.lod import LayerActorState, LodController, State
from napari_lod.lod import events as ev
from napari_lod.lod.events import AppearanceKind
from napari_lod.lod.services import RenderedImage


class _Consumer:
    def __init__(self) -> None:
        self.presented: List[RenderedImage] = []
        self.appearance: List[tuple[AppearanceKind, Any, Optional[int]]] = []
        self.histograms: List[Dict[int, Any]] = []

    @property
    def scales(self) -> List[int]:
        return [r.scale for r in self.presented]

    def present(self, rendered: RenderedImage) -> Optional[Sequence[float]]:
        self.presented.append(rendered)
        return None

    def apply_appearance(self, kind: AppearanceKind, value: Any, component: Optional[int]) -> None:
        self.appearance.append((kind, value, component))

    def apply_histograms(self, histograms: Dict[int, Any]) -> None:
        self.histograms.append(histograms)


class _Framerate:
    def __init__(self, samples: Sequence[float]) -> None:
        self.samples = list(samples)
        self.calls = 0

    async def sample(self) -> float:
        self.calls += 1
        await asyncio.sleep(0)
        return self.samples.pop(0)


class _BrokenFramerate:
    async def sample(self) -> float:
        raise RuntimeError("no renderer attached")


def _image(levels: int = 5, base: int = 32, config: Optional[LodConfig] = None):
    data = np.random.default_rng(0).random((base, base, base), dtype=np.float32)
    arrays = [data[:: 2 ** i, :: 2 ** i, :: 2 ** i] for i in range(levels)]
    return multiscale_from_arrays(arrays, ("z", "y", "x"), chunks=(8, 8, 8), config=config or LodConfig(max_rendered_voxels=0))


def _controller(config: LodConfig, framerate=None, **kwargs) -> tuple[LodController, _Consumer, LayerActorState]:
    layer = LayerActorState(name="vol")
    consumer = _Consumer()
    controller = LodController(layer, consumer, framerate=framerate, config=config, **kwargs)
    return controller, consumer, layer


def test_slow_frames_step_coarser_until_lowest_scale() -> None:
    cfg = LodConfig(max_rendered_voxels=0)
    framerate = _Framerate([5.0, 5.0, 15.0])

    async def _run() -> None:
        controller, consumer, layer = _controller(cfg, framerate)
        controller.send(ev.ImageAssigned(image=_image(config=cfg), scale=3))
        state = await controller.wait_until_active(timeout=10)

        assert state is State.ACTIVE
        assert consumer.scales == [3, 4]
        assert layer.rendered_scale == 4
        assert layer.target_scale == 4
        assert layer.fps == 5.0
        assert framerate.samples == [15.0]
        assert consumer.histograms, "histograms refreshed after the search"
        await controller.close()

    asyncio.run(_run())


def test_fast_frames_step_finer_until_in_band() -> None:
    cfg = LodConfig(max_rendered_voxels=0)

    async def _run() -> None:
        controller, consumer, layer = _controller(cfg, _Framerate([40.0, 20.0]))
        controller.send(ev.ImageAssigned(image=_image(config=cfg), scale=2))
        await controller.wait_until_active(timeout=10)

        assert consumer.scales == [2, 1]
        assert layer.rendered_scale == 1
        assert controller.metrics.gauge("rendered_scale") == 1.0
        await controller.close()

    asyncio.run(_run())


def test_fast_frames_stop_at_finest_scale() -> None:
    cfg = LodConfig(max_rendered_voxels=0)

    async def _run() -> None:
        controller, consumer, _layer = _controller(cfg, _Framerate([60.0, 60.0, 60.0]))
        controller.send(ev.ImageAssigned(image=_image(config=cfg), scale=1))
        await controller.wait_until_active(timeout=10)

        assert consumer.scales == [1, 0]
        await controller.close()

    asyncio.run(_run())


def test_voxel_ceiling_blocks_finer_step() -> None:
    cfg = LodConfig(max_rendered_voxels=16 ** 3)

    async def _run() -> None:
        controller, consumer, _layer = _controller(cfg, _Framerate([60.0, 60.0]))
        controller.send(ev.ImageAssigned(image=_image(config=cfg), scale=2))
        await controller.wait_until_active(timeout=10)

        # scale 0 (32^3) would exceed the ceiling, so the search stops at 1
        assert consumer.scales == [2, 1]
        await controller.close()

    asyncio.run(_run())


def test_initial_scale_is_finest_within_ceiling() -> None:
    cfg = LodConfig(max_rendered_voxels=10 ** 4, framerate_scale_picking=False)

    async def _run() -> None:
        controller, consumer, layer = _controller(cfg)
        controller.send(ev.ImageAssigned(image=_image(config=cfg)))
        await controller.wait_until_active(timeout=10)

        assert consumer.scales == [1]
        assert layer.is_framerate_scale_picking_on is False
        await controller.close()

    asyncio.run(_run())


def test_bounds_changes_are_debounced_into_one_fetch() -> None:
    cfg = LodConfig(debounce_ms=30, framerate_scale_picking=False, max_rendered_voxels=0)

    async def _run() -> None:
        image = _image(config=cfg)
        controller, consumer, layer = _controller(cfg)
        controller.send(ev.BoundsChanged((0.5, 3.5, 0.5, 3.5, 0.5, 3.5)))
        controller.send(ev.ImageAssigned(image=image, scale=0))
        await controller.wait_until_active(timeout=10)
        assert consumer.presented[0].image.size == (4, 4, 4)

        last = (0.5, 20.5, 0.5, 20.5, 0.5, 20.5)
        for bounds in ((0.5, 8.5, 0.5, 8.5, 0.5, 8.5), (0.5, 12.5, 0.5, 12.5, 0.5, 12.5), last):
            controller.send(ev.BoundsChanged(bounds))
        assert controller.state is State.BOUNDS_DEBOUNCING
        await controller.wait_until_active(timeout=10)

        assert len(consumer.presented) == 2
        assert consumer.presented[-1].bounds == last
        assert consumer.presented[-1].image.size == (21, 21, 21)
        assert image.metrics.counter("cache_misses") == 2
        assert layer.loaded_bounds == (0.0, 21.0, 0.0, 21.0, 0.0, 21.0)
        await controller.close()

    asyncio.run(_run())


def test_bounds_inside_loaded_region_skip_fetch() -> None:
    cfg = LodConfig(debounce_ms=10, framerate_scale_picking=False, max_rendered_voxels=0)

    async def _run() -> None:
        controller, consumer, _layer = _controller(cfg)
        controller.send(ev.ImageAssigned(image=_image(config=cfg), scale=1))
        await controller.wait_until_active(timeout=10)
        assert controller.is_image_update_needed() is False

        controller.send(ev.BoundsChanged((2.0, 10.0, 2.0, 10.0, 2.0, 10.0)))
        await controller.wait_until_active(timeout=10)

        assert consumer.scales == [1]
        assert len(consumer.histograms) == 2
        await controller.close()

    asyncio.run(_run())


def test_set_image_scale_pins_scale() -> None:
    cfg = LodConfig(max_rendered_voxels=0)

    async def _run() -> None:
        framerate = _Framerate([20.0])
        controller, consumer, layer = _controller(cfg, framerate)
        controller.send(ev.ImageAssigned(image=_image(config=cfg), scale=2))
        await controller.wait_until_active(timeout=10)

        controller.send(ev.SetImageScale(0))
        assert controller.state is State.SET_IMAGE_SCALE
        await controller.wait_until_active(timeout=10)

        assert consumer.scales == [2, 0]
        assert layer.is_framerate_scale_picking_on is False
        assert framerate.calls == 1
        await controller.close()

    asyncio.run(_run())


def test_superseded_update_is_dropped() -> None:
    cfg = LodConfig(framerate_scale_picking=False, max_rendered_voxels=0)

    async def _run() -> None:
        controller, consumer, layer = _controller(cfg)
        controller.send(ev.ImageAssigned(image=_image(config=cfg), scale=3))
        await controller.wait_until_active(timeout=10)

        controller.send(ev.SetImageScale(1))
        controller.send(ev.SetImageScale(0))
        await controller.wait_until_active(timeout=10)

        assert consumer.scales == [3, 0]
        assert layer.rendered_scale == 0
        await controller.close()

    asyncio.run(_run())


def test_budget_failure_keeps_previous_image() -> None:
    cfg = LodConfig(framerate_scale_picking=False, max_rendered_voxels=16 ** 3)
    errors: List[BaseException] = []

    async def _run() -> None:
        controller, consumer, layer = _controller(cfg, on_error=errors.append)
        controller.send(ev.ImageAssigned(image=_image(config=cfg), scale=1))
        await controller.wait_until_active(timeout=10)

        controller.send(ev.SetImageScale(0))
        state = await controller.wait_until_active(timeout=10)

        assert state is State.ACTIVE
        assert consumer.scales == [1]
        assert layer.rendered_scale == 1
        assert layer.target_scale == 1
        assert isinstance(layer.last_error, VoxelBudgetError)
        await controller.close()

    asyncio.run(_run())
    assert len(errors) == 1
    assert isinstance(errors[0], VoxelBudgetError)


def test_framerate_failure_ends_search() -> None:
    cfg = LodConfig(max_rendered_voxels=0)

    async def _run() -> None:
        controller, consumer, _layer = _controller(cfg, _BrokenFramerate())
        controller.send(ev.ImageAssigned(image=_image(config=cfg), scale=2))
        state = await controller.wait_until_active(timeout=10)

        assert state is State.ACTIVE
        assert consumer.scales == [2]
        await controller.close()

    asyncio.run(_run())


def test_appearance_and_settings_apply_without_fetch() -> None:
    cfg = LodConfig(framerate_scale_picking=False, max_rendered_voxels=0)

    async def _run() -> None:
        controller, consumer, layer = _controller(cfg)
        controller.send(ev.AppearanceChanged(AppearanceKind.COLORMAP, "magma"))
        controller.send(ev.ImageAssigned(image=_image(config=cfg), scale=4))
        await controller.wait_until_active(timeout=10)

        controller.send(ev.AppearanceChanged(AppearanceKind.OPACITY, 0.5, component=0))
        controller.send(ev.IndependentComponentsToggled(False))
        controller.send(ev.FramerateScalePickingToggled(True))

        assert controller.state is State.ACTIVE
        assert consumer.scales == [4]
        assert consumer.appearance == [
            (AppearanceKind.COLORMAP, "magma", None),
            (AppearanceKind.OPACITY, 0.5, 0),
        ]
        assert layer.appearance == {"colormap": "magma", "opacity:0": 0.5}
        assert layer.independent_components is False
        assert layer.is_framerate_scale_picking_on is True
        await controller.close()

    asyncio.run(_run())


def test_invalid_events_are_rejected_synchronously() -> None:
    cfg = LodConfig(max_rendered_voxels=0)
    controller, _consumer, _layer = _controller(cfg)

    with pytest.raises(AssertionError):
        controller.send(ev.ImageAssigned())
    with pytest.raises(AssertionError):
        controller.send(ev.SetImageScale(0))
    with pytest.raises(ValueError):
        controller.send(ev.BoundsChanged((1.0, 0.0, 0.0, 1.0, 0.0, 1.0)))
    with pytest.raises(AssertionError):
        controller.send(ev.ImageAssigned(image=_image(levels=2), scale=5))
    assert controller.state is State.IDLE


def test_finish_ignores_later_events() -> None:
    cfg = LodConfig(framerate_scale_picking=False, max_rendered_voxels=0)

    async def _run() -> None:
        controller, consumer, _layer = _controller(cfg)
        image = _image(config=cfg)
        controller.send(ev.ImageAssigned(image=image, scale=4))
        await controller.wait_until_active(timeout=10)
        controller.send(ev.Finish())
        assert controller.state is State.FINISHED

        controller.send(ev.SetImageScale(3))
        controller.send(ev.UpdateRenderedImage())
        await asyncio.sleep(0.01)

        assert controller.state is State.FINISHED
        assert consumer.scales == [4]
        await controller.close()

    asyncio.run(_run())


def test_bounds_recorded_during_failed_update_are_fetched() -> None:
    cfg = LodConfig(debounce_ms=30, framerate_scale_picking=False, max_rendered_voxels=20 ** 3)
    errors: List[BaseException] = []

    async def _run() -> None:
        controller, consumer, layer = _controller(cfg, on_error=errors.append)
        # the full scale 0 volume (32^3) is over the ceiling, the crop is not
        controller.send(ev.ImageAssigned(image=_image(config=cfg), scale=0))
        controller.send(ev.BoundsChanged((0.5, 7.5, 0.5, 7.5, 0.5, 7.5)))
        state = await controller.wait_until_active(timeout=10)

        assert state is State.ACTIVE
        assert consumer.scales == [0]
        assert consumer.presented[0].image.size == (8, 8, 8)
        assert layer.bounds_pending is False
        await controller.close()

    asyncio.run(_run())
    assert len(errors) == 1
    assert isinstance(errors[0], VoxelBudgetError)


class _FlakyConsumer(_Consumer):
    def __init__(self) -> None:
        super().__init__()
        self.fail = True

    def present(self, rendered: RenderedImage) -> Optional[Sequence[float]]:
        if self.fail:
            raise RuntimeError("display lost")
        return super().present(rendered)


def test_consumer_failure_is_reported_and_settles() -> None:
    cfg = LodConfig(framerate_scale_picking=False, max_rendered_voxels=0)
    errors: List[BaseException] = []

    async def _run() -> None:
        layer = LayerActorState(name="vol")
        consumer = _FlakyConsumer()
        controller = LodController(layer, consumer, config=cfg, on_error=errors.append)
        controller.send(ev.ImageAssigned(image=_image(config=cfg), scale=4))
        state = await controller.wait_until_active(timeout=10)

        assert state is State.ACTIVE
        assert layer.pending_update is None
        assert layer.rendered is None
        assert isinstance(layer.last_error, RuntimeError)

        consumer.fail = False
        controller.send(ev.UpdateRenderedImage())
        assert controller.state is State.UPDATE_RENDERED_IMAGE
        await controller.wait_until_active(timeout=10)
        assert consumer.scales == [4]
        await controller.close()

    asyncio.run(_run())
    assert len(errors) == 1
    assert str(errors[0]) == "display lost"
