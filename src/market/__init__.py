"""Market data — provider interface and the Yahoo Finance client."""

from src.market.base import MarketDataProvider
from src.market.exceptions import (
    MarketDataConnectionError,
    MarketDataError,
    MarketDataParseError,
)
from src.market.yahoo import YahooMarketData

__all__ = [
    "MarketDataConnectionError",
    "MarketDataError",
    "MarketDataParseError",
    "MarketDataProvider",
    "YahooMarketData",
]
