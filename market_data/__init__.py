"""Binance futures market data retrieval."""

from .binance import BinanceClientConfig, BinanceFuturesClient, MarketDataError, interval_to_milliseconds
from .models import Candle, MarketSnapshot, OpenInterestPoint, RatioPoint

__all__ = [
    "BinanceClientConfig",
    "BinanceFuturesClient",
    "Candle",
    "MarketDataError",
    "MarketSnapshot",
    "OpenInterestPoint",
    "RatioPoint",
    "interval_to_milliseconds",
]
