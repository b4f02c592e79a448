"""Convenience factory for wiring the alert stack."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field

from src.alerts.monitor import AlertMonitor
from src.alerts.store import AlertStore
from src.alerts.triggers import TriggerEngine
from src.alerts.webhooks import WebhookDispatcher
from src.core.config import Settings, get_settings
from src.market.base import MarketDataProvider
from src.portfolio.base import PortfolioProvider


@dataclass
class AlertStack:
    """The wired components. ``close()`` detaches the dispatcher and its session."""

    store: AlertStore
    engine: TriggerEngine
    monitor: AlertMonitor
    dispatcher: WebhookDispatcher
    _unsubscribe: Callable[[], None] | None = field(default=None, repr=False)

    async def close(self) -> None:
        await self.monitor.stop()
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        await self.dispatcher.close()


def create_alert_stack(
    market: MarketDataProvider,
    portfolio: PortfolioProvider,
    settings: Settings | None = None,
    store: AlertStore | None = None,
) -> AlertStack:
    """Build store, trigger engine, webhook dispatcher and monitor from settings.

    The dispatcher is subscribed to the store only when webhooks are enabled.
    """
    settings = settings or get_settings()
    store = store or AlertStore(settings.database.path)
    engine = TriggerEngine(store, market, portfolio)
    dispatcher = WebhookDispatcher(store, settings.webhooks)
    monitor = AlertMonitor(store, engine, settings.monitor)

    unsubscribe: Callable[[], None] | None = None
    if settings.webhooks.enabled:
        unsubscribe = store.subscribe(dispatcher.on_alert_event)

    return AlertStack(
        store=store,
        engine=engine,
        monitor=monitor,
        dispatcher=dispatcher,
        _unsubscribe=unsubscribe,
    )
