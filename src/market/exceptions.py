"""Exception hierarchy for market-data clients."""

from __future__ import annotations


class MarketDataError(Exception):
    """Base exception for all market-data errors."""


class MarketDataConnectionError(MarketDataError):
    """The data source could not be reached or returned an HTTP error."""


class MarketDataParseError(MarketDataError):
    """The data source returned a payload we could not interpret."""
