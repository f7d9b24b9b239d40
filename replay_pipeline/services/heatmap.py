# replay_pipeline/services/heatmap.py
import math
from typing import Any, Dict, Iterable, List, Tuple

import numpy as np

DEFAULT_GRID_SIZE = 16


def _positions(timeline: Iterable[Any]) -> List[Tuple[float, float]]:
    points = []
    for tick in timeline or []:
        if not isinstance(tick, dict):
            continue
        pos = tick.get("position") or {}
        try:
            x, y = float(pos["x"]), float(pos["y"])
        except (KeyError, TypeError, ValueError):
            continue
        # NaN/Infinity survive float() and json, but have no cell
        if math.isfinite(x) and math.isfinite(y):
            points.append((x, y))
    return points


def generate_heatmap(timeline: Iterable[Any], grid_size: int = DEFAULT_GRID_SIZE) -> Dict[str, Any]:
    """
    Density grid over the x/y positions of a timeline.

    ``density[row][col]`` is the share of samples in that cell (rows follow y,
    columns follow x), so a non-empty grid sums to 1. Ticks without a usable
    (present, numeric, finite) position are ignored.
    """
    points = _positions(timeline)
    if not points:
        return {
            "grid_size": grid_size,
            "samples": 0,
            "bounds": None,
            "density": np.zeros((grid_size, grid_size)).tolist(),
            "peak": None,
        }

    xy = np.asarray(points, dtype=float)
    x_min, y_min = xy.min(axis=0)
    x_max, y_max = xy.max(axis=0)
    # degenerate bounds (all samples on a line) still need a non-empty range
    if x_max == x_min:
        x_max = x_min + 1.0
    if y_max == y_min:
        y_max = y_min + 1.0

    counts, _, _ = np.histogram2d(
        xy[:, 1], xy[:, 0],
        bins=grid_size,
        range=[[y_min, y_max], [x_min, x_max]],
    )
    density = counts / counts.sum()
    peak_row, peak_col = np.unravel_index(int(np.argmax(counts)), counts.shape)

    return {
        "grid_size": grid_size,
        "samples": len(points),
        "bounds": {"x": [float(x_min), float(x_max)], "y": [float(y_min), float(y_max)]},
        "density": density.round(6).tolist(),
        "peak": [int(peak_row), int(peak_col)],
    }
