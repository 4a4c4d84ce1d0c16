"""World-bounds comparisons used to decide whether a re-fetch is needed."""

from __future__ import annotations

from typing import Optional, Sequence

from napari_lod.data.transform import Bounds, normalize_bounds


EPSILON = 1e-6


def clamp_bounds(bounds: Sequence[float], full: Sequence[float]) -> Bounds:
    """Clamp ``bounds`` into ``full`` axis by axis."""

    b = normalize_bounds(bounds)
    f = normalize_bounds(full)
    if b is None or f is None:
        raise ValueError("clamp_bounds requires both bounds")
    out = []
    for axis in range(3):
        lo_f, hi_f = f[2 * axis], f[2 * axis + 1]
        lo = min(max(b[2 * axis], lo_f), hi_f)
        hi = max(min(b[2 * axis + 1], hi_f), lo_f)
        out.extend([lo, max(lo, hi)])
    return tuple(out)  # type: ignore[return-value]


def are_bounds_bigger(
    loaded: Optional[Sequence[float]],
    requested: Optional[Sequence[float]],
    full: Optional[Sequence[float]],
    *,
    eps: float = EPSILON,
) -> bool:
    """True when ``requested`` (clamped to ``full``) extends past ``loaded``.

    No loaded bounds always needs a fetch. No requested bounds means the full
    image, which is compared the same way.
    """

    if loaded is None:
        return True
    target = requested if requested is not None else full
    if target is None:
        return False
    if full is not None:
        target = clamp_bounds(target, full)
    cur = normalize_bounds(target)
    have = normalize_bounds(loaded)
    if have is None:
        return True
    if cur is None:
        return False
    for axis in range(3):
        if cur[2 * axis] < have[2 * axis] - eps:
            return True
        if cur[2 * axis + 1] > have[2 * axis + 1] + eps:
            return True
    return False


__all__ = ["EPSILON", "are_bounds_bigger", "clamp_bounds"]
