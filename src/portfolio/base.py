"""Watchlist / portfolio provider interface consumed by the trigger engine."""

from __future__ import annotations

from typing import Protocol

from src.core.types import Holding


class PortfolioProvider(Protocol):
    def get_watchlist(self) -> list[str]:
        ...

    def get_holdings(self) -> list[Holding]:
        ...
