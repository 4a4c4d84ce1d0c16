"""Typed configuration for the multiscale accessor and the LOD controller.

Environment parsing is consolidated here: callers build a `LodConfig` once with
`load_lod_config()` and pass it down. No other module reads `os.environ`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping, Optional
import json
import logging
import os

from napari_lod.logging_policy import DebugPolicy, load_debug_policy


logger = logging.getLogger(__name__)


RENDERED_VOXEL_MAX = 2 * 512 * 512 * 512


# ---- Helpers -----------------------------------------------------------------

def _env_bool(env: Mapping[str, str], name: str, default: bool = False) -> bool:
    v = env.get(name)
    if v is None:
        return bool(default)
    v = v.strip().lower()
    return v not in ("0", "", "false", "no", "off")


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    v = env.get(name)
    if v is None:
        return int(default)
    try:
        return int(v)
    except Exception:
        return int(default)


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    v = env.get(name)
    if v is None:
        return float(default)
    try:
        return float(v)
    except Exception:
        return float(default)


def _cfg_int(value: object, default: int) -> int:
    if value is None:
        return int(default)
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        try:
            return int(value)
        except Exception:
            return int(default)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except Exception:
            return int(default)
    return int(default)


def _cfg_float(value: object, default: float) -> float:
    if value is None:
        return float(default)
    if isinstance(value, bool):
        return float(int(value))
    if isinstance(value, (int, float)):
        try:
            return float(value)
        except Exception:
            return float(default)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except Exception:
            return float(default)
    return float(default)


def _load_json_config(env: Mapping[str, str], name: str) -> dict[str, object]:
    raw = env.get(name)
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except Exception:
        logger.warning("Failed to parse %s; ignoring", name, exc_info=True)
        return {}
    if isinstance(data, dict):
        return data
    logger.warning("%s must be a JSON object; ignoring", name)
    return {}


# ---- Types -------------------------------------------------------------------

@dataclass(frozen=True)
class LodConfig:
    """Scale-selection and accessor settings.

    ``fps_low``/``fps_high`` bound the acceptable frame-rate band: a sample at
    or below ``fps_low`` steps one scale coarser, a sample at or above
    ``fps_high`` steps one scale finer. ``max_rendered_voxels`` is the hard
    ceiling on the voxel count of any assembled region; 0 disables it.
    ``cache_max_bytes`` of 0 bounds the image cache by entry count only.
    """

    debounce_ms: float = 500.0
    fps_low: float = 10.0
    fps_high: float = 33.0
    max_rendered_voxels: int = RENDERED_VOXEL_MAX
    cache_entries: int = 16
    cache_max_bytes: int = 0
    framerate_scale_picking: bool = True
    debug: DebugPolicy = field(default_factory=DebugPolicy)

    @property
    def debounce_s(self) -> float:
        return max(0.0, float(self.debounce_ms)) / 1000.0


def load_lod_config(env: Optional[Mapping[str, str]] = None) -> LodConfig:
    """Load configuration from environment (no side effects).

    Environment keys consulted:
    - NAPARI_LOD_DEBOUNCE_MS, NAPARI_LOD_FPS_LOW, NAPARI_LOD_FPS_HIGH
    - NAPARI_LOD_MAX_VOXELS
    - NAPARI_LOD_CACHE_ENTRIES, NAPARI_LOD_CACHE_MAX_BYTES
    - NAPARI_LOD_SCALE_PICKING
    - NAPARI_LOD_POLICY_CONFIG (JSON overrides: debounce_ms, fps_low, fps_high, max_voxels)
    - logging toggles, see `napari_lod.logging_policy`
    """

    env = env if env is not None else os.environ
    defaults = LodConfig()

    debounce_ms = _env_float(env, "NAPARI_LOD_DEBOUNCE_MS", defaults.debounce_ms)
    fps_low = _env_float(env, "NAPARI_LOD_FPS_LOW", defaults.fps_low)
    fps_high = _env_float(env, "NAPARI_LOD_FPS_HIGH", defaults.fps_high)
    max_voxels = _env_int(env, "NAPARI_LOD_MAX_VOXELS", defaults.max_rendered_voxels)

    policy_cfg = _load_json_config(env, "NAPARI_LOD_POLICY_CONFIG")
    debounce_ms = _cfg_float(policy_cfg.get("debounce_ms") if policy_cfg else None, debounce_ms)
    fps_low = _cfg_float(policy_cfg.get("fps_low") if policy_cfg else None, fps_low)
    fps_high = _cfg_float(policy_cfg.get("fps_high") if policy_cfg else None, fps_high)
    max_voxels = _cfg_int(policy_cfg.get("max_voxels") if policy_cfg else None, max_voxels)

    if fps_low >= fps_high:
        logger.warning(
            "fps band [%s, %s] is empty; using defaults [%s, %s]",
            fps_low,
            fps_high,
            defaults.fps_low,
            defaults.fps_high,
        )
        fps_low, fps_high = defaults.fps_low, defaults.fps_high

    cache_entries = max(1, _env_int(env, "NAPARI_LOD_CACHE_ENTRIES", defaults.cache_entries))
    cache_max_bytes = max(0, _env_int(env, "NAPARI_LOD_CACHE_MAX_BYTES", defaults.cache_max_bytes))
    picking = _env_bool(env, "NAPARI_LOD_SCALE_PICKING", defaults.framerate_scale_picking)

    return LodConfig(
        debounce_ms=max(0.0, float(debounce_ms)),
        fps_low=float(fps_low),
        fps_high=float(fps_high),
        max_rendered_voxels=max(0, int(max_voxels)),
        cache_entries=int(cache_entries),
        cache_max_bytes=int(cache_max_bytes),
        framerate_scale_picking=bool(picking),
        debug=load_debug_policy(env),
    )


__all__ = [
    "LodConfig",
    "RENDERED_VOXEL_MAX",
    "load_lod_config",
]
