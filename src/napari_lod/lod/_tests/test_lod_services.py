from __future__ import annotations

import asyncio

import numpy as np
import pytest

from napari_lod.config import LodConfig
from napari_lod.data import multiscale_from_arrays
from napari_lod.lod.services import (
    RenderRequest,
    default_histograms,
    fuse_images,
    refresh_histograms,
    update_rendered_image,
)


_CFG = LodConfig(max_rendered_voxels=0)


def _volume(values: np.ndarray, *, name: str = "image", ranges=None):
    coarse = values[::2, ::2, ::2]
    return multiscale_from_arrays([values, coarse], ("z", "y", "x"), chunks=(4, 4, 4), value_ranges=ranges, name=name, config=_CFG)


def test_image_only_uses_precomputed_ranges() -> None:
    data = np.arange(512, dtype=np.float32).reshape(8, 8, 8)
    image = _volume(data, ranges={0: (-1.0, 1.0)})
    request = RenderRequest(image=image, label_image=None, scale=1, bounds=None, visualized_components=(0,))

    rendered = asyncio.run(update_rendered_image(request))

    assert rendered.fused is False
    assert rendered.scale == 1
    assert rendered.component_ranges == {0: (-1.0, 1.0)}
    assert rendered.full_bounds == (0.0, 8.0, 0.0, 8.0, 0.0, 8.0)
    np.testing.assert_array_equal(rendered.image.data, data[::2, ::2, ::2])


def test_label_is_fused_as_last_component() -> None:
    data = np.full((8, 8, 8), 7, dtype=np.uint8)
    labels = np.zeros((8, 8, 8), dtype=np.uint16)
    labels[:4] = 3
    labels[4:, :2] = 9
    image = _volume(data)
    label = _volume(labels, name="labels")
    request = RenderRequest(image=image, label_image=label, scale=0, bounds=None, visualized_components=(0,))

    rendered = asyncio.run(update_rendered_image(request))

    assert rendered.fused is True
    assert rendered.unique_labels == (0, 3, 9)
    assert rendered.image.image_type.components == 2
    assert rendered.image.data.shape == (8, 8, 8, 2)
    assert rendered.image.data.dtype == np.uint16
    assert rendered.component_ranges == {0: (7.0, 7.0), 1: (0.0, 9.0)}


def test_label_scale_is_clamped_to_label_pyramid() -> None:
    data = np.zeros((8, 8, 8), dtype=np.uint8)
    image = multiscale_from_arrays(
        [data, data[::2, ::2, ::2], data[::4, ::4, ::4]], ("z", "y", "x"), chunks=(4, 4, 4), config=_CFG
    )
    label = _volume(np.ones((8, 8, 8), dtype=np.uint8), name="labels")
    request = RenderRequest(image=image, label_image=label, scale=2, bounds=None, visualized_components=(0,))

    # label scale 1 is 4^3 while image scale 2 is 2^3
    with pytest.raises(ValueError):
        asyncio.run(update_rendered_image(request))


def test_label_only_layer() -> None:
    labels = np.zeros((8, 8, 8), dtype=np.uint8)
    labels[0, 0, 0] = 4
    label = _volume(labels, name="labels")
    request = RenderRequest(image=None, label_image=label, scale=0, bounds=None, visualized_components=())

    rendered = asyncio.run(update_rendered_image(request))

    assert rendered.fused is False
    assert rendered.unique_labels == (0, 4)
    assert rendered.component_ranges == {0: (0.0, 4.0)}


def test_component_subset_is_fused() -> None:
    data = np.stack([np.full((4, 4), v, dtype=np.float32) for v in (1, 2, 3)], axis=-1)
    image = multiscale_from_arrays([data], ("y", "x", "c"), chunks=(4, 4, 3), config=_CFG)
    request = RenderRequest(image=image, label_image=None, scale=0, bounds=None, visualized_components=(2, 0))

    rendered = asyncio.run(update_rendered_image(request))

    assert rendered.fused is True
    assert rendered.image.image_type.components == 2
    assert rendered.component_ranges == {0: (3.0, 3.0), 1: (1.0, 1.0)}


def test_empty_request_is_rejected() -> None:
    request = RenderRequest(image=None, label_image=None, scale=0, bounds=None, visualized_components=())
    with pytest.raises(ValueError):
        asyncio.run(update_rendered_image(request))


def test_fuse_rejects_mismatched_sizes() -> None:
    big = _volume(np.zeros((8, 8, 8), dtype=np.uint8))
    a = asyncio.run(big.get_image(0))
    b = asyncio.run(big.get_image(1))
    with pytest.raises(ValueError):
        fuse_images(a, b, (0,))


def test_refresh_histograms() -> None:
    data = np.arange(512, dtype=np.float32).reshape(8, 8, 8)
    image = _volume(data)
    request = RenderRequest(image=image, label_image=None, scale=0, bounds=None, visualized_components=(0,))

    async def _run():
        rendered = await update_rendered_image(request)
        return await refresh_histograms(rendered, histogram=default_histograms)

    histograms = asyncio.run(_run())
    counts, edges = histograms[0]
    assert int(counts.sum()) == 512
    assert edges[0] == 0.0 and edges[-1] == 511.0
    assert asyncio.run(refresh_histograms(None)) == {}
