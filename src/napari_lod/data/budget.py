"""Voxel budget checks for region fetches and initial scale selection."""

from __future__ import annotations

import logging
from typing import Mapping, Optional, Sequence, Tuple

from .pyramid import SPATIAL_DIMS, PyramidLevel


logger = logging.getLogger(__name__)


class VoxelBudgetError(RuntimeError):
    """Raised when a region's voxel count exceeds the configured ceiling."""

    def __init__(self, voxels: int, limit: int, scale: int) -> None:
        super().__init__(f"voxels={int(voxels)} exceeds cap={int(limit)} at scale={int(scale)}")
        self.voxels = int(voxels)
        self.limit = int(limit)
        self.scale = int(scale)


def region_voxels(start: Mapping[str, int], stop: Mapping[str, int]) -> int:
    total = 1
    for dim in SPATIAL_DIMS:
        total *= max(0, int(stop.get(dim, 1)) - int(start.get(dim, 0)))
    return int(total)


def level_voxels(level: PyramidLevel) -> int:
    return level.voxel_count()


def assert_within_voxel_budget(
    voxels: int,
    *,
    limit: int,
    scale: int,
    log_budget: bool = False,
    logger_ref: logging.Logger = logger,
) -> None:
    """Raise ``VoxelBudgetError`` when ``voxels`` exceeds ``limit`` (0 disables)."""

    cap = int(limit or 0)
    if cap and int(voxels) > cap:
        if log_budget:
            logger_ref.info("budget check: scale=%d voxels=%d cap=%d -> REJECT", scale, voxels, cap)
        raise VoxelBudgetError(voxels, cap, scale)
    if log_budget:
        logger_ref.info("budget check: scale=%d voxels=%d cap=%d -> OK", scale, voxels, cap)


def select_initial_scale(
    levels: Sequence[PyramidLevel],
    *,
    max_voxels: Optional[int],
) -> Tuple[int, int]:
    """Return ``(scale, voxels)`` for the finest level whose full extent fits.

    Falls back to the coarsest level when nothing fits; the caller's budget
    check then decides whether that level may be fetched at all.
    """

    if not levels:
        raise ValueError("select_initial_scale requires at least one level")
    cap = int(max_voxels or 0)
    for scale, level in enumerate(levels):
        voxels = level_voxels(level)
        if not cap or voxels <= cap:
            return scale, voxels
    coarsest = len(levels) - 1
    return coarsest, level_voxels(levels[coarsest])


__all__ = [
    "VoxelBudgetError",
    "assert_within_voxel_budget",
    "level_voxels",
    "region_voxels",
    "select_initial_scale",
]
