from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping, Sequence, Tuple

logger = logging.getLogger(__name__)

# Number of malformed numeric fields replaced by 0.0, keyed by field name.
PARSE_FAILURES: Counter[str] = Counter()


def to_datetime(milliseconds: int) -> datetime:
    """Convert milliseconds since epoch to an aware UTC datetime."""
    return datetime.fromtimestamp(milliseconds / 1000, tz=timezone.utc)


def to_milliseconds(moment: datetime) -> int:
    """Convert a datetime to integer milliseconds since epoch."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return int(moment.timestamp() * 1000)


def normalize_symbol(symbol: str) -> str:
    return symbol.upper().strip()


def lenient_float(value: Any, *, field_name: str, symbol: str = "") -> float:
    """Parse an upstream decimal, falling back to 0.0 for malformed input.

    Binance reports most figures as decimal strings. A single bad field should
    not abort a whole detector run, so failures degrade to zero; each one is
    logged and counted in ``PARSE_FAILURES`` so data-quality problems stay visible.
    """
    try:
        return float(value)
    except (TypeError, ValueError):
        PARSE_FAILURES[field_name] += 1
        logger.warning(
            "Malformed numeric field %s=%r, using 0.0",
            field_name,
            value,
            extra={"symbol": symbol},
        )
        return 0.0


def parse_failure_total() -> int:
    return sum(PARSE_FAILURES.values())


@dataclass(frozen=True, slots=True)
class Candle:
    """Domain model representing a single OHLCV candle."""

    symbol: str
    interval: str
    timestamp: int
    open: float
    high: float
    low: float
    close: float
    volume: float
    close_timestamp: int = 0

    @classmethod
    def from_binance(cls, symbol: str, interval: str, payload: Sequence[Any]) -> "Candle":
        """Build a candle instance from the Binance kline payload."""
        return cls(
            symbol=symbol,
            interval=interval,
            timestamp=int(payload[0]),
            open=lenient_float(payload[1], field_name="open", symbol=symbol),
            high=lenient_float(payload[2], field_name="high", symbol=symbol),
            low=lenient_float(payload[3], field_name="low", symbol=symbol),
            close=lenient_float(payload[4], field_name="close", symbol=symbol),
            volume=lenient_float(payload[5], field_name="volume", symbol=symbol),
            close_timestamp=int(payload[6]) if len(payload) > 6 else 0,
        )

    @property
    def open_time(self) -> datetime:
        return to_datetime(self.timestamp)


@dataclass(frozen=True, slots=True)
class OpenInterestPoint:
    """Open interest history entry (``/futures/data/openInterestHist``)."""

    symbol: str
    open_interest: float
    timestamp: int
    open_interest_value: float = 0.0

    @classmethod
    def from_binance(cls, payload: Mapping[str, Any]) -> "OpenInterestPoint":
        symbol = str(payload.get("symbol", ""))
        return cls(
            symbol=symbol,
            open_interest=lenient_float(
                payload.get("sumOpenInterest"), field_name="sumOpenInterest", symbol=symbol
            ),
            open_interest_value=lenient_float(
                payload.get("sumOpenInterestValue", 0), field_name="sumOpenInterestValue", symbol=symbol
            ),
            timestamp=int(payload.get("timestamp", 0)),
        )

    @property
    def time(self) -> datetime:
        return to_datetime(self.timestamp)


@dataclass(frozen=True, slots=True)
class RatioPoint:
    """Global long/short account ratio entry."""

    symbol: str
    long_short_ratio: float
    long_account: float
    short_account: float
    timestamp: int

    @classmethod
    def from_binance(cls, payload: Mapping[str, Any]) -> "RatioPoint":
        symbol = str(payload.get("symbol", ""))
        return cls(
            symbol=symbol,
            long_short_ratio=lenient_float(
                payload.get("longShortRatio"), field_name="longShortRatio", symbol=symbol
            ),
            long_account=lenient_float(payload.get("longAccount"), field_name="longAccount", symbol=symbol),
            short_account=lenient_float(payload.get("shortAccount"), field_name="shortAccount", symbol=symbol),
            timestamp=int(payload.get("timestamp", 0)),
        )

    @property
    def time(self) -> datetime:
        return to_datetime(self.timestamp)


@dataclass(frozen=True)
class MarketSnapshot:
    """Everything the detectors need for one symbol, oldest entries first."""

    symbol: str
    interval: str
    candles: Tuple[Candle, ...] = field(default_factory=tuple)
    open_interest: Tuple[OpenInterestPoint, ...] = field(default_factory=tuple)
    ratios: Tuple[RatioPoint, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        for series_name in ("candles", "open_interest", "ratios"):
            series = getattr(self, series_name)
            if not isinstance(series, tuple):
                object.__setattr__(self, series_name, tuple(series))
        for entry in (*self.candles, *self.open_interest, *self.ratios):
            if entry.symbol and entry.symbol != self.symbol:
                raise ValueError(
                    f"{type(entry).__name__} for {entry.symbol} does not belong to snapshot {self.symbol}"
                )
