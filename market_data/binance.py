from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List

import requests

from .models import Candle, MarketSnapshot, OpenInterestPoint, RatioPoint, normalize_symbol

BINANCE_FUTURES_BASE_URL = "https://fapi.binance.com"
MAX_KLINES = 1500
MAX_HISTORY = 500


class MarketDataError(RuntimeError):
    """Raised when market data for a symbol cannot be retrieved."""


def interval_to_milliseconds(interval: str) -> int:
    """Translate Binance interval strings into millisecond durations."""
    normalized = interval.strip()
    mapping = {
        "5m": 300_000,
        "15m": 900_000,
        "30m": 1_800_000,
        "1h": 3_600_000,
        "2h": 7_200_000,
        "4h": 14_400_000,
        "6h": 21_600_000,
        "12h": 43_200_000,
        "1d": 86_400_000,
    }
    if normalized not in mapping:
        raise ValueError(f"Unsupported interval: {interval}")
    return mapping[normalized]


@dataclass(frozen=True)
class BinanceClientConfig:
    base_url: str = BINANCE_FUTURES_BASE_URL
    timeout: float = 10.0
    proxies: Dict[str, str] | None = None
    max_retries: int = 3
    initial_retry_delay: float = 1.0  # seconds
    max_retry_delay: float = 30.0  # seconds
    retry_backoff_multiplier: float = 2.0

    def __post_init__(self) -> None:
        if self.timeout <= 0:
            raise ValueError("timeout must be positive")
        if self.max_retries < 1:
            raise ValueError("max_retries must be at least 1")


class BinanceFuturesClient:
    """Binance USDT-M futures REST client for klines, open interest and account ratios."""

    def __init__(
        self,
        config: BinanceClientConfig | None = None,
        logger: logging.Logger | None = None,
        session: requests.Session | None = None,
    ) -> None:
        config = config or BinanceClientConfig()
        self._base_url = config.base_url.rstrip("/")
        self._timeout = config.timeout
        self._max_retries = config.max_retries
        self._initial_retry_delay = config.initial_retry_delay
        self._max_retry_delay = config.max_retry_delay
        self._retry_backoff_multiplier = config.retry_backoff_multiplier
        self._log = logger or logging.getLogger(__name__)

        self._session = session or requests.Session()
        if config.proxies:
            self._session.proxies.update(config.proxies)
            self._log.debug("Binance: using proxies %s", config.proxies)

    def fetch_snapshot(self, symbol: str, interval: str, limit: int) -> MarketSnapshot:
        """Fetch candles, open interest and long/short ratios for the last ``limit`` intervals."""
        symbol = normalize_symbol(symbol)
        try:
            candles = self.fetch_klines(symbol=symbol, interval=interval, limit=limit)
        except MarketDataError as exc:
            raise MarketDataError(f"failed to get klines for {symbol}: {exc}") from exc
        try:
            open_interest = self.fetch_open_interest_history(symbol=symbol, period=interval, limit=limit)
        except MarketDataError as exc:
            raise MarketDataError(f"failed to get open interest for {symbol}: {exc}") from exc
        try:
            ratios = self.fetch_long_short_ratio(symbol=symbol, period=interval, limit=limit)
        except MarketDataError as exc:
            raise MarketDataError(f"failed to get long/short ratio for {symbol}: {exc}") from exc

        return MarketSnapshot(
            symbol=symbol,
            interval=interval,
            candles=tuple(candles),
            open_interest=tuple(open_interest),
            ratios=tuple(ratios),
        )

    def fetch_klines(self, *, symbol: str, interval: str, limit: int) -> List[Candle]:
        if limit <= 0 or limit > MAX_KLINES:
            raise ValueError(f"limit must be in 1..{MAX_KLINES}")
        symbol = normalize_symbol(symbol)
        payload = self._get(
            "/fapi/v1/klines",
            {"symbol": symbol, "interval": interval, "limit": limit},
        )
        if not isinstance(payload, list):
            raise MarketDataError(f"unexpected klines payload: {payload!r}")
        candles = [Candle.from_binance(symbol, interval, kline) for kline in payload]
        candles.sort(key=lambda candle: candle.timestamp)
        return candles

    def fetch_open_interest_history(self, *, symbol: str, period: str, limit: int) -> List[OpenInterestPoint]:
        if limit <= 0 or limit > MAX_HISTORY:
            raise ValueError(f"limit must be in 1..{MAX_HISTORY}")
        payload = self._get(
            "/futures/data/openInterestHist",
            {"symbol": normalize_symbol(symbol), "period": period, "limit": limit},
        )
        if not isinstance(payload, list):
            raise MarketDataError(f"unexpected open interest payload: {payload!r}")
        points = [OpenInterestPoint.from_binance(item) for item in payload]
        points.sort(key=lambda point: point.timestamp)
        return points

    def fetch_long_short_ratio(self, *, symbol: str, period: str, limit: int) -> List[RatioPoint]:
        if limit <= 0 or limit > MAX_HISTORY:
            raise ValueError(f"limit must be in 1..{MAX_HISTORY}")
        payload = self._get(
            "/futures/data/globalLongShortAccountRatio",
            {"symbol": normalize_symbol(symbol), "period": period, "limit": limit},
        )
        if not isinstance(payload, list):
            raise MarketDataError(f"unexpected long/short ratio payload: {payload!r}")
        points = [RatioPoint.from_binance(item) for item in payload]
        points.sort(key=lambda point: point.timestamp)
        return points

    def _get(self, path: str, params: Dict[str, Any]) -> Any:
        url = f"{self._base_url}{path}"
        delay = self._initial_retry_delay
        last_exception: Exception | None = None

        for attempt in range(self._max_retries):
            try:
                response = self._session.get(url, params=params, timeout=self._timeout)
                if response.status_code >= 400:
                    # Client errors other than rate limiting and timeouts will not improve on retry
                    if response.status_code < 500 and response.status_code not in (429, 408):
                        raise MarketDataError(
                            f"Binance request failed with status {response.status_code}: {response.text[:200]}"
                        )
                    raise requests.HTTPError(f"status {response.status_code}", response=response)
                return response.json()
            except MarketDataError:
                raise
            except ValueError as exc:
                raise MarketDataError(f"Binance returned invalid JSON for {path}: {exc}") from exc
            except requests.RequestException as exc:
                last_exception = exc
                if attempt < self._max_retries - 1:
                    self._log.warning(
                        "Binance request error on attempt %s/%s, retrying in %.1fs: %s",
                        attempt + 1,
                        self._max_retries,
                        delay,
                        exc,
                        extra={"path": path, "symbol": params.get("symbol")},
                    )
                    time.sleep(delay)
                    delay = min(delay * self._retry_backoff_multiplier, self._max_retry_delay)

        raise MarketDataError(
            f"Binance request to {path} failed after {self._max_retries} attempts: {last_exception}"
        ) from last_exception

    def close(self) -> None:
        self._session.close()
