"""Builders and fakes shared by the tests."""

from __future__ import annotations

from typing import Dict, List, Optional, Sequence

from anomaly_monitor.signals import Signal
from market_data.models import Candle, MarketSnapshot, OpenInterestPoint, RatioPoint

BASE_TS = 1_704_067_200_000  # 2024-01-01T00:00:00Z
STEP_MS = 900_000  # 15m


def build_candles(symbol: str, volumes: Sequence[float], closes: Optional[Sequence[float]] = None) -> List[Candle]:
    closes = closes or [100.0 + (i % 3) for i in range(len(volumes))]
    return [
        Candle(
            symbol=symbol,
            interval="15m",
            timestamp=BASE_TS + i * STEP_MS,
            open=close - 0.5,
            high=close + 1.0,
            low=close - 1.0,
            close=close,
            volume=volume,
            close_timestamp=BASE_TS + (i + 1) * STEP_MS - 1,
        )
        for i, (volume, close) in enumerate(zip(volumes, closes))
    ]


def build_open_interest(symbol: str, values: Sequence[float]) -> List[OpenInterestPoint]:
    return [
        OpenInterestPoint(symbol=symbol, open_interest=value, timestamp=BASE_TS + i * STEP_MS)
        for i, value in enumerate(values)
    ]


def build_ratios(symbol: str, values: Sequence[float]) -> List[RatioPoint]:
    return [
        RatioPoint(
            symbol=symbol,
            long_short_ratio=value,
            long_account=value / (1 + value),
            short_account=1 / (1 + value),
            timestamp=BASE_TS + i * STEP_MS,
        )
        for i, value in enumerate(values)
    ]


def alternating(count: int, low: float = 100.0, high: float = 110.0) -> List[float]:
    return [low if i % 2 == 0 else high for i in range(count)]


def quiet_snapshot(symbol: str = "BTCUSDT", length: int = 96) -> MarketSnapshot:
    """A snapshot on which no detector fires."""
    return MarketSnapshot(
        symbol=symbol,
        interval="15m",
        candles=tuple(build_candles(symbol, [100.0] * length)),
        open_interest=tuple(build_open_interest(symbol, [1000.0] * length)),
        ratios=tuple(build_ratios(symbol, [1.5] * length)),
    )


def volume_spike_snapshot(symbol: str = "BTCUSDT", length: int = 96) -> MarketSnapshot:
    """Flat open interest and ratios; last candle's volume is mean + 6 std of the rest."""
    rest = alternating(length - 1)
    mean = sum(rest) / len(rest)
    std = (sum((v - mean) ** 2 for v in rest) / len(rest)) ** 0.5
    volumes = rest + [mean + 6 * std]
    return MarketSnapshot(
        symbol=symbol,
        interval="15m",
        candles=tuple(build_candles(symbol, volumes)),
        open_interest=tuple(build_open_interest(symbol, [1000.0] * length)),
        ratios=tuple(build_ratios(symbol, [1.5] * length)),
    )


class RecordingSender:
    def __init__(self, error: Optional[Exception] = None) -> None:
        self.sent: List[Signal] = []
        self._error = error

    def send_signal(self, signal: Signal) -> None:
        if self._error is not None:
            raise self._error
        self.sent.append(signal)


class StubAnalyst:
    def __init__(self, text: str = "【核心信号】volume spike", error: Optional[Exception] = None) -> None:
        self.calls: List[tuple] = []
        self._text = text
        self._error = error

    def analyze(self, signal: Signal, context: str) -> str:
        self.calls.append((signal, context))
        if self._error is not None:
            raise self._error
        return self._text


class RecordingStore:
    def __init__(
        self,
        existing: Sequence[str] = (),
        read_error: Optional[Exception] = None,
        write_error: Optional[Exception] = None,
    ) -> None:
        self.keys = set(existing)
        self.puts: List[tuple] = []
        self.lookups: List[str] = []
        self._read_error = read_error
        self._write_error = write_error

    def exists(self, key: str) -> bool:
        self.lookups.append(key)
        if self._read_error is not None:
            raise self._read_error
        return key in self.keys

    def put(self, key: str, ttl_seconds: int) -> None:
        if self._write_error is not None:
            raise self._write_error
        self.puts.append((key, ttl_seconds))
        self.keys.add(key)

    def close(self) -> None:
        pass


class StaticFetcher:
    def __init__(self, snapshots: Dict[str, MarketSnapshot], errors: Optional[Dict[str, Exception]] = None) -> None:
        self._snapshots = snapshots
        self._errors = errors or {}
        self.calls: List[tuple] = []

    def fetch_snapshot(self, symbol: str, interval: str, limit: int) -> MarketSnapshot:
        self.calls.append((symbol, interval, limit))
        if symbol in self._errors:
            raise self._errors[symbol]
        return self._snapshots[symbol]


class FakeResponse:
    def __init__(self, status_code: int = 200, payload: object = None, text: str = "") -> None:
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def json(self) -> object:
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


