"""Value types exchanged with the market-data and portfolio collaborators."""

from __future__ import annotations

import datetime

from pydantic import BaseModel, Field


class Quote(BaseModel):
    """Latest quote snapshot for one symbol."""

    symbol: str
    price: float
    change_percent: float
    previous_close: float | None = None
    name: str | None = None


class EarningsEvent(BaseModel):
    """Upcoming earnings report."""

    symbol: str
    date: datetime.datetime
    name: str | None = None
    estimate: float | None = None


class DividendEvent(BaseModel):
    """Upcoming ex-dividend date."""

    symbol: str
    date: datetime.datetime
    amount: float | None = None


class EventsCalendar(BaseModel):
    """Upcoming corporate events for a set of symbols."""

    earnings: list[EarningsEvent] = Field(default_factory=list)
    dividends: list[DividendEvent] = Field(default_factory=list)


class Holding(BaseModel):
    """A portfolio position."""

    symbol: str
    shares: float
    cost_basis: float = 0.0
