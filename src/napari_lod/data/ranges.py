"""Per-component value ranges, histograms and label sets."""

from __future__ import annotations

from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np


def _components(data: np.ndarray, components: int) -> List[np.ndarray]:
    if components <= 1:
        return [np.asarray(data)]
    return [np.asarray(data[..., idx]) for idx in range(components)]


def compute_ranges(data: np.ndarray, components: int = 1) -> Dict[int, Tuple[float, float]]:
    """Return ``{component: (min, max)}`` ignoring NaNs; empty data gives (0, 1)."""

    out: Dict[int, Tuple[float, float]] = {}
    for idx, values in enumerate(_components(data, components)):
        if values.size == 0:
            out[idx] = (0.0, 1.0)
            continue
        if np.issubdtype(values.dtype, np.floating):
            lo, hi = float(np.nanmin(values)), float(np.nanmax(values))
        else:
            lo, hi = float(values.min()), float(values.max())
        if not (np.isfinite(lo) and np.isfinite(hi)):
            lo, hi = 0.0, 1.0
        out[idx] = (lo, hi)
    return out


def compute_histograms(
    data: np.ndarray,
    components: int = 1,
    *,
    bins: int = 256,
    ranges: Optional[Dict[int, Tuple[float, float]]] = None,
) -> Dict[int, Tuple[np.ndarray, np.ndarray]]:
    """Return ``{component: (counts, edges)}`` over each component's range."""

    out: Dict[int, Tuple[np.ndarray, np.ndarray]] = {}
    limits = ranges or compute_ranges(data, components)
    for idx, values in enumerate(_components(data, components)):
        lo, hi = limits.get(idx, (0.0, 1.0))
        if hi <= lo:
            hi = lo + 1.0
        flat = values.reshape(-1)
        if np.issubdtype(flat.dtype, np.floating):
            flat = flat[np.isfinite(flat)]
        counts, edges = np.histogram(flat, bins=int(bins), range=(float(lo), float(hi)))
        out[idx] = (counts, edges)
    return out


def unique_labels(data: Optional[np.ndarray]) -> Sequence[int]:
    """Sorted distinct label values of a label image."""

    if data is None:
        return ()
    return tuple(int(v) for v in np.unique(np.asarray(data)))


__all__ = ["compute_histograms", "compute_ranges", "unique_labels"]
