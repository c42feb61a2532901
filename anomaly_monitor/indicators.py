from __future__ import annotations

import math
from typing import Sequence


def mean(values: Sequence[float]) -> float:
    if not values:
        return 0.0
    return sum(values) / len(values)


def standard_deviation(values: Sequence[float]) -> float:
    """Population standard deviation (divides by N)."""
    if len(values) < 2:
        return 0.0
    avg = mean(values)
    sum_of_squares = sum((value - avg) ** 2 for value in values)
    return math.sqrt(sum_of_squares / len(values))


def z_score(values: Sequence[float]) -> float:
    """Distance of the newest value from the sample mean, in standard deviations.

    Returns 0.0 when there is nothing to compare against or the series is flat.
    """
    if len(values) < 2:
        return 0.0
    std = standard_deviation(values)
    if std == 0:
        return 0.0
    return (values[-1] - mean(values)) / std


def ema(values: Sequence[float], period: int) -> float:
    """Latest exponential moving average, seeded with the SMA of the first ``period`` values."""
    if period <= 0:
        raise ValueError("period must be positive")
    if len(values) < period:
        return 0.0

    k = 2.0 / (period + 1)
    ema_prev = mean(values[:period])
    for value in values[period:]:
        ema_prev = value * k + ema_prev * (1 - k)
    return ema_prev


def rsi(values: Sequence[float], period: int) -> float:
    """Latest relative strength index using Wilder's smoothing."""
    if period <= 0:
        raise ValueError("period must be positive")
    if len(values) < period + 1:
        return 0.0

    gains: list[float] = []
    losses: list[float] = []
    for i in range(1, len(values)):
        change = values[i] - values[i - 1]
        if change > 0:
            gains.append(change)
            losses.append(0.0)
        else:
            gains.append(0.0)
            losses.append(-change)

    avg_gain = mean(gains[:period])
    avg_loss = mean(losses[:period])

    for i in range(period, len(gains)):
        avg_gain = (avg_gain * (period - 1) + gains[i]) / period
        avg_loss = (avg_loss * (period - 1) + losses[i]) / period

    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return 100.0 - (100.0 / (1.0 + rs))
