from __future__ import annotations

import pytest

from anomaly_monitor.analysis import CONTEXT_CANDLES, analyze, build_context
from anomaly_monitor.signals import SignalKind
from market_data.models import MarketSnapshot
from support import (
    alternating,
    build_candles,
    build_open_interest,
    build_ratios,
    quiet_snapshot,
    volume_spike_snapshot,
)


def test_quiet_snapshot_has_no_signals():
    assert analyze(quiet_snapshot()) == []


def test_volume_spike_only_fires_volume():
    signals = analyze(volume_spike_snapshot("BTCUSDT"))

    assert [signal.kind for signal in signals] == [SignalKind.VOLUME]
    assert signals[0].suppression_key == "BTCUSDT:volume"


def test_signals_are_ordered_volume_open_interest_ratio():
    rest = alternating(19)
    volumes = rest + [max(rest) * 3]
    ratio_rest = alternating(19, 1.0, 1.1)
    snapshot = MarketSnapshot(
        symbol="ETHUSDT",
        interval="15m",
        candles=tuple(build_candles("ETHUSDT", volumes)),
        open_interest=tuple(build_open_interest("ETHUSDT", [1000.0, 1010.0, 1020.0, 1030.0, 1040.0])),
        ratios=tuple(build_ratios("ETHUSDT", ratio_rest + [3.0])),
    )

    kinds = [signal.kind for signal in analyze(snapshot)]

    assert kinds == [SignalKind.VOLUME, SignalKind.OPEN_INTEREST, SignalKind.LONG_SHORT_RATIO]


def test_empty_snapshot_is_quiet():
    assert analyze(MarketSnapshot(symbol="BTCUSDT", interval="15m")) == []


class TestBuildContext:
    def test_sections_and_recent_candles(self):
        snapshot = quiet_snapshot("BTCUSDT", length=40)
        context = build_context(snapshot)

        assert context.startswith("### Key indicators\n")
        assert "### Recent candles (OHLCV)" in context
        assert "- **RSI (14):**" in context
        assert "- **EMA (12/26):**" in context
        assert "- **Latest open interest:** 1000.00" in context
        assert "- **Latest long/short ratio:** 1.5000" in context
        assert context.endswith("\n")

        candle_lines = [line for line in context.splitlines() if line.startswith("  - T: ")]
        assert len(candle_lines) == CONTEXT_CANDLES
        last = snapshot.candles[-1]
        assert candle_lines[-1].startswith(f"  - T: {last.timestamp}, O: ")
        assert candle_lines[-1].endswith("V: 100.00")

    def test_fewer_candles_than_window(self):
        snapshot = MarketSnapshot(
            symbol="BTCUSDT",
            interval="15m",
            candles=tuple(build_candles("BTCUSDT", [10.0, 20.0])),
        )
        context = build_context(snapshot)

        assert len([line for line in context.splitlines() if line.startswith("  - T: ")]) == 2
        assert "- **Latest open interest:** n/a" in context
        assert "- **Latest long/short ratio:** n/a" in context

    def test_latest_close_rendered(self):
        closes = [100.0 + i for i in range(30)]
        snapshot = MarketSnapshot(
            symbol="BTCUSDT",
            interval="15m",
            candles=tuple(build_candles("BTCUSDT", [1.0] * 30, closes)),
        )
        context = build_context(snapshot)

        assert "- **Latest close:** 129.0000" in context
        assert "- **RSI (14):** 100.00" in context

    def test_no_candles_raises(self):
        with pytest.raises(ValueError):
            build_context(MarketSnapshot(symbol="BTCUSDT", interval="15m"))
