"""Watchlist and holdings tracked by the alert engine."""

from src.portfolio.base import PortfolioProvider
from src.portfolio.store import PortfolioStore

__all__ = ["PortfolioProvider", "PortfolioStore"]
