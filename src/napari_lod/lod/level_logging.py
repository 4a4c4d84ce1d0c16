"""Logging helpers for scale switches."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional


@dataclass
class LevelSwitchLogger:
    """Log committed scale changes, skipping repeats of the same scale."""

    logger_ref: logging.Logger
    _last_scale: Optional[int] = field(default=None, init=False)

    def log(
        self,
        *,
        enabled: bool,
        layer: str,
        previous: Optional[int],
        applied: int,
        bounds_desc: str,
        reason: str,
        elapsed_ms: float,
    ) -> bool:
        """Return True when a switch was logged."""

        if self._last_scale == int(applied):
            return False
        self._last_scale = int(applied)
        if not enabled or (previous is not None and int(previous) == int(applied)):
            return False
        self.logger_ref.info(
            "lod.switch: layer=%s scale=%s->%d bounds=%s reason=%s elapsed=%.2fms",
            layer,
            "na" if previous is None else int(previous),
            int(applied),
            bounds_desc,
            reason,
            float(elapsed_ms),
        )
        return True


def format_bounds(bounds: Optional[tuple[float, ...]]) -> str:
    if bounds is None:
        return "full"
    return "[" + ", ".join(f"{float(v):.3g}" for v in bounds) + "]"


__all__ = ["LevelSwitchLogger", "format_bounds"]
