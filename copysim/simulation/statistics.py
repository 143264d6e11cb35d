"""Distribution statistics over trial outcomes."""

from __future__ import annotations

import math
from typing import Sequence

import numpy as np

from copysim.models import PercentileLadder, SimulationResults

LADDER = (0.05, 0.25, 0.5, 0.75, 0.95)

# Below this the spread is float noise from summing identical outcomes
STD_EPSILON = 1e-12


def sorted_array(values: Sequence[float]) -> np.ndarray:
    arr = np.sort(np.asarray(values, dtype=float))
    if arr.size == 0:
        raise ValueError("cannot summarize an empty set of outcomes")
    return arr


def percentile(sorted_values: np.ndarray, p: float) -> float:
    """Nearest-rank percentile: element floor(n * p) of the sorted outcomes."""
    if not 0.0 <= p <= 1.0:
        raise ValueError(f"p must be in [0, 1], got {p}")
    n = sorted_values.size
    idx = min(int(math.floor(n * p)), n - 1)
    return float(sorted_values[idx])


def percentile_ladder(values: Sequence[float]) -> PercentileLadder:
    arr = sorted_array(values)
    p5, p25, median, p75, p95 = (percentile(arr, p) for p in LADDER)
    return PercentileLadder(p5=p5, p25=p25, median=median, p75=p75, p95=p95)


def mean_and_std(values: Sequence[float]) -> tuple[float, float]:
    """Mean and population standard deviation."""
    arr = np.asarray(values, dtype=float)
    if arr.size == 0:
        raise ValueError("cannot summarize an empty set of outcomes")
    mean = float(np.mean(arr))
    std = float(np.std(arr))
    scale = max(1.0, abs(mean))
    if std <= STD_EPSILON * scale:
        std = 0.0
    return mean, std


def sharpe_like(mean: float, std: float) -> float:
    return mean / std if std > 0 else 0.0


def summarize(values: Sequence[float]) -> SimulationResults:
    mean, std = mean_and_std(values)
    return SimulationResults(
        percentiles=percentile_ladder(values),
        mean=mean,
        std_dev=std,
        sharpe_ratio=sharpe_like(mean, std),
    )
