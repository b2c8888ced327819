from collections.abc import Sequence

import numpy as np


def mean_and_std(values: Sequence[float]) -> tuple[float, float]:
    """Mean and population standard deviation (ddof=0)."""
    samples = np.asarray(values, dtype=float)
    if samples.size == 0:
        return 0.0, 0.0
    return float(samples.mean()), float(samples.std(ddof=0))


def z_score(value: float, mean: float, std: float) -> float:
    if std == 0:
        return 0.0
    return (value - mean) / std


def percentage_change(current: float, previous: float) -> float:
    # A zero baseline reports no change rather than an infinite one.
    if previous == 0:
        return 0.0
    return (current - previous) / abs(previous) * 100.0


def coefficient_of_variation(values: Sequence[float]) -> float:
    mean, std = mean_and_std(values)
    if mean == 0:
        return 0.0
    return std / mean
