from __future__ import annotations

from typing import List

from market_data.models import MarketSnapshot

from .detectors import (
    DEFAULT_THRESHOLDS,
    DetectorThresholds,
    detect_long_short_ratio_signal,
    detect_open_interest_signals,
    detect_volume_signal,
)
from .indicators import ema, rsi
from .signals import Signal

CONTEXT_CANDLES = 5


def analyze(snapshot: MarketSnapshot, thresholds: DetectorThresholds = DEFAULT_THRESHOLDS) -> List[Signal]:
    """Run every detector over the snapshot: volume, then open interest, then ratio."""
    signals: List[Signal] = []

    volume_signal = detect_volume_signal(snapshot.candles, thresholds)
    if volume_signal:
        signals.append(volume_signal)

    signals.extend(detect_open_interest_signals(snapshot.open_interest, thresholds))

    ratio_signal = detect_long_short_ratio_signal(snapshot.ratios, thresholds)
    if ratio_signal:
        signals.append(ratio_signal)

    return signals


def build_context(snapshot: MarketSnapshot) -> str:
    """Summarize the snapshot as markdown for the AI analyst prompt."""
    if not snapshot.candles:
        raise ValueError(f"cannot build context for {snapshot.symbol}: no candles")

    closes = [candle.close for candle in snapshot.candles]
    latest_oi = f"{snapshot.open_interest[-1].open_interest:.2f}" if snapshot.open_interest else "n/a"
    latest_ratio = f"{snapshot.ratios[-1].long_short_ratio:.4f}" if snapshot.ratios else "n/a"

    lines = [
        "### Key indicators",
        f"- **Latest close:** {closes[-1]:.4f}",
        f"- **RSI (14):** {rsi(closes, 14):.2f}",
        f"- **EMA (12/26):** {ema(closes, 12):.4f} / {ema(closes, 26):.4f}",
        f"- **Latest open interest:** {latest_oi}",
        f"- **Latest long/short ratio:** {latest_ratio}",
        "",
        "### Recent candles (OHLCV)",
    ]
    for candle in snapshot.candles[-CONTEXT_CANDLES:]:
        lines.append(
            f"  - T: {candle.timestamp}, O: {candle.open:.2f}, H: {candle.high:.2f}, "
            f"L: {candle.low:.2f}, C: {candle.close:.2f}, V: {candle.volume:.2f}"
        )
    return "\n".join(lines) + "\n"
