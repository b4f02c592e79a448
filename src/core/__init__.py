"""Core module — config, types, logging."""

from src.core.config import Settings, get_settings, load_settings, reset_settings
from src.core.logging import setup_logging
from src.core.types import (
    DividendEvent,
    EarningsEvent,
    EventsCalendar,
    Holding,
    Quote,
)

__all__ = [
    "DividendEvent",
    "EarningsEvent",
    "EventsCalendar",
    "Holding",
    "Quote",
    "Settings",
    "get_settings",
    "load_settings",
    "reset_settings",
    "setup_logging",
]
