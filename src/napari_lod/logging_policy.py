from __future__ import annotations

"""Centralised debug/logging policy for napari-lod.

All env var parsing for logging toggles happens here so the accessor and the
controller depend on a structured policy rather than scattered `os.getenv`
calls. Toggles gate INFO-level diagnostics; DEBUG lines are always emitted at
DEBUG level and left to the host application's logging configuration.
"""

import os
from dataclasses import dataclass
from typing import Mapping, Optional


def _env_bool(env: Mapping[str, str], name: str, default: bool = False) -> bool:
    raw = env.get(name)
    if raw is None:
        return default
    val = raw.strip().lower()
    if val in {"1", "true", "yes", "on"}:
        return True
    if val in {"0", "false", "no", "off"}:
        return False
    try:
        return bool(int(raw))
    except Exception:
        return default


@dataclass(frozen=True)
class LoggingToggles:
    """Accessor/controller logging flags."""

    log_transitions: bool = False
    log_chunks: bool = False
    log_cache: bool = False
    log_budget: bool = False
    log_level_switch: bool = True


@dataclass(frozen=True)
class DebugPolicy:
    """Composite debug/logging policy."""

    enabled: bool = False
    logging: LoggingToggles = LoggingToggles()


def load_debug_policy(env: Optional[Mapping[str, str]] = None) -> DebugPolicy:
    """Read debug/logging flags from the provided environment mapping."""

    if env is None:
        env = os.environ

    # The master switch turns every diagnostic on unless explicitly disabled
    debug_enabled = _env_bool(env, "NAPARI_LOD_DEBUG", False)

    logging = LoggingToggles(
        log_transitions=_env_bool(env, "NAPARI_LOD_LOG_TRANSITIONS", debug_enabled),
        log_chunks=_env_bool(env, "NAPARI_LOD_LOG_CHUNKS", debug_enabled),
        log_cache=_env_bool(env, "NAPARI_LOD_LOG_CACHE", debug_enabled),
        log_budget=_env_bool(env, "NAPARI_LOD_LOG_BUDGET", debug_enabled),
        log_level_switch=_env_bool(env, "NAPARI_LOD_LOG_LEVEL_SWITCH", True),
    )

    return DebugPolicy(enabled=debug_enabled, logging=logging)


__all__ = [
    "DebugPolicy",
    "LoggingToggles",
    "load_debug_policy",
]
