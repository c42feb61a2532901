from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence

from market_data.models import Candle, OpenInterestPoint, RatioPoint, to_datetime

from .indicators import mean, z_score
from .signals import Signal, SignalKind


@dataclass(frozen=True)
class DetectorThresholds:
    """Trigger levels shared by the anomaly detectors."""

    z_score_threshold: float = 2.0
    oi_lookback_points: int = 96  # one day of 15m periods
    oi_change_24h_pct: float = 10.0
    oi_run_length: int = 4
    oi_single_period_pct: float = 3.5

    def __post_init__(self) -> None:
        if self.z_score_threshold <= 0:
            raise ValueError("z_score_threshold must be positive")
        if self.oi_lookback_points < 2:
            raise ValueError("oi_lookback_points must be at least 2")
        if self.oi_run_length < 1:
            raise ValueError("oi_run_length must be at least 1")
        if self.oi_change_24h_pct <= 0 or self.oi_single_period_pct <= 0:
            raise ValueError("open interest change thresholds must be positive")


DEFAULT_THRESHOLDS = DetectorThresholds()


def detect_volume_signal(
    candles: Sequence[Candle],
    thresholds: DetectorThresholds = DEFAULT_THRESHOLDS,
) -> Optional[Signal]:
    """Flag the newest candle when its volume is an outlier against the window."""
    if len(candles) < 2:
        return None

    volumes = [candle.volume for candle in candles]
    score = z_score(volumes)
    threshold = thresholds.z_score_threshold
    if abs(score) <= threshold:
        return None

    last = candles[-1]
    return Signal(
        symbol=last.symbol,
        kind=SignalKind.VOLUME,
        timestamp=to_datetime(last.timestamp),
        description=f"Volume Z-Score: {score:.2f} (threshold: {threshold:.1f})",
        metadata={
            "z_score": score,
            "threshold": threshold,
            "mean_volume": mean(volumes),
        },
    )


def detect_open_interest_signals(
    points: Sequence[OpenInterestPoint],
    thresholds: DetectorThresholds = DEFAULT_THRESHOLDS,
) -> List[Signal]:
    """Evaluate the three open interest patterns; each may fire on its own."""
    signals: List[Signal] = []
    if not points:
        return signals

    last = points[-1]
    latest = last.open_interest
    timestamp = to_datetime(last.timestamp)

    # Pattern 1: change against one day ago
    lookback = thresholds.oi_lookback_points
    if len(points) >= lookback:
        reference = points[max(0, len(points) - 1 - lookback)].open_interest
        if reference > 0:
            change_24h = (latest - reference) / reference * 100
            if abs(change_24h) > thresholds.oi_change_24h_pct:
                signals.append(
                    Signal(
                        symbol=last.symbol,
                        kind=SignalKind.OPEN_INTEREST,
                        timestamp=timestamp,
                        description=(
                            f"24h open interest change: {change_24h:.2f}% "
                            f"(threshold: {thresholds.oi_change_24h_pct:g}%)"
                        ),
                        metadata={
                            "pattern": "change_24h",
                            "change_percent_24h": change_24h,
                            "threshold": thresholds.oi_change_24h_pct,
                        },
                    )
                )

    # Pattern 2: uninterrupted run of rises or falls
    run_length = thresholds.oi_run_length
    if len(points) >= run_length + 1:
        window = [point.open_interest for point in points[-(run_length + 1):]]
        deltas = [current - previous for previous, current in zip(window, window[1:])]
        direction = None
        if all(delta > 0 for delta in deltas):
            direction = "rise"
        elif all(delta < 0 for delta in deltas):
            direction = "fall"
        if direction:
            verb = "rose" if direction == "rise" else "fell"
            signals.append(
                Signal(
                    symbol=last.symbol,
                    kind=SignalKind.OPEN_INTEREST,
                    timestamp=timestamp,
                    description=f"Open interest {verb} for {run_length} consecutive periods",
                    metadata={
                        "pattern": "consecutive_run",
                        "consecutive_periods": run_length,
                        "direction": direction,
                    },
                )
            )

    # Pattern 3: single period spike
    if len(points) >= 2:
        previous = points[-2].open_interest
        if previous > 0:
            change_1p = (latest - previous) / previous * 100
            if abs(change_1p) > thresholds.oi_single_period_pct:
                signals.append(
                    Signal(
                        symbol=last.symbol,
                        kind=SignalKind.OPEN_INTEREST,
                        timestamp=timestamp,
                        description=(
                            f"Single-period open interest change: {change_1p:.2f}% "
                            f"(threshold: {thresholds.oi_single_period_pct:g}%)"
                        ),
                        metadata={
                            "pattern": "single_period_change",
                            "change_percent_1p": change_1p,
                            "threshold": thresholds.oi_single_period_pct,
                        },
                    )
                )

    return signals


def detect_long_short_ratio_signal(
    points: Sequence[RatioPoint],
    thresholds: DetectorThresholds = DEFAULT_THRESHOLDS,
) -> Optional[Signal]:
    """Flag an extreme reading of the global long/short account ratio."""
    if len(points) < 2:
        return None

    ratios = [point.long_short_ratio for point in points]
    score = z_score(ratios)
    threshold = thresholds.z_score_threshold
    if abs(score) <= threshold:
        return None

    last = points[-1]
    return Signal(
        symbol=last.symbol,
        kind=SignalKind.LONG_SHORT_RATIO,
        timestamp=to_datetime(last.timestamp),
        description=(
            f"Long/short account ratio Z-Score: {score:.2f} (threshold: {threshold:.1f}), "
            "market sentiment may be extreme."
        ),
        metadata={
            "z_score": score,
            "threshold": threshold,
            "ls_ratio": ratios[-1],
        },
    )
