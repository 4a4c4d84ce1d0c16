"""
Inspect an OME-Zarr pyramid the way the LOD controller sees it.

Usage
-----
- Level table only:
  napari-lod-inspect /data/volume.zarr
- Fetch a region at a given scale and report its size and timing:
  napari-lod-inspect /data/volume.zarr --scale 2 --bounds 0 100 0 100 0 50

Environment toggles (NAPARI_LOD_*) are honoured; see `napari_lod.config`.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import time
from typing import Optional, Sequence

from napari_lod.config import load_lod_config
from napari_lod.data import MultiscaleImage, VoxelBudgetError, ZarrPyramidError, open_zarr_pyramid
from napari_lod.data.budget import select_initial_scale
from napari_lod.data.pyramid import SPATIAL_DIMS


logger = logging.getLogger(__name__)


def _level_rows(image: MultiscaleImage) -> list[str]:
    rows = []
    for scale, level in enumerate(image.levels):
        shape = "x".join(str(level.extent(d)) for d in level.dims)
        chunks = "x".join(str(level.chunk_size(d)) for d in level.dims)
        grid = "x".join(str(level.grid_extent(d)) for d in level.dims)
        rows.append(
            f"  scale={scale} dims={''.join(level.dims)} shape={shape} chunks={chunks} "
            f"grid={grid} voxels={level.voxel_count()}"
        )
    return rows


async def _inspect(path: str, scale: Optional[int], bounds: Optional[Sequence[float]]) -> int:
    cfg = load_lod_config()
    image = open_zarr_pyramid(path, config=cfg)
    print(f"{image.name}: {len(image.levels)} level(s) type={image.image_type}")
    for row in _level_rows(image):
        print(row)
    initial, voxels = select_initial_scale(image.levels, max_voxels=image.max_voxels)
    print(f"initial scale={initial} voxels={voxels} cap={image.max_voxels}")
    full = await image.full_world_bounds(0)
    print("world bounds=[" + ", ".join(f"{v:.3f}" for v in full) + "]")

    if scale is None and bounds is None:
        return 0
    target = initial if scale is None else int(scale)
    t0 = time.perf_counter()
    try:
        region = await image.get_image(target, bounds)
    except VoxelBudgetError as exc:
        logger.error("region rejected: %s", exc)
        return 2
    elapsed_ms = (time.perf_counter() - t0) * 1000.0
    size = "x".join(str(int(s)) for s in region.size)
    print(
        f"region scale={region.scale} size={size} origin={tuple(round(o, 3) for o in region.origin)} "
        f"bytes={region.nbytes} elapsed={elapsed_ms:.2f}ms"
    )
    print(json.dumps(image.metrics.snapshot()["counters"], sort_keys=True))
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Inspect a multiscale OME-Zarr pyramid")
    parser.add_argument("path", help="Path to an OME-Zarr group or a bare Zarr array")
    parser.add_argument("--scale", type=int, default=None, help="Scale to fetch (default: initial scale)")
    parser.add_argument(
        "--bounds",
        type=float,
        nargs=6,
        default=None,
        metavar=tuple(f"{d}{e}" for d in SPATIAL_DIMS for e in ("0", "1")),
        help="World bounds x0 x1 y0 y1 z0 z1 (default: full extent)",
    )
    parser.add_argument("--debug", action="store_true", help="Enable DEBUG logging for napari_lod")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="[%(asctime)s] %(name)s - %(levelname)s - %(message)s")
    if args.debug:
        logging.getLogger("napari_lod").setLevel(logging.DEBUG)

    try:
        return asyncio.run(_inspect(args.path, args.scale, args.bounds))
    except ZarrPyramidError as exc:
        logger.error("cannot open pyramid: %s", exc)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
