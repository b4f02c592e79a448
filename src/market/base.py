"""Market-data provider interface consumed by the trigger engine."""

from __future__ import annotations

from typing import Protocol

from src.core.types import EventsCalendar, Quote


class MarketDataProvider(Protocol):
    """Batched quote and corporate-event lookups."""

    async def get_quotes(self, symbols: list[str]) -> list[Quote]:
        """Return quotes for *symbols*; unknown symbols are omitted."""
        ...

    async def get_events_calendar(self, symbols: list[str]) -> EventsCalendar:
        """Return upcoming earnings and dividend events for *symbols*."""
        ...
