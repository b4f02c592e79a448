"""TriggerEngine — condition evaluators that turn market data into alerts.

Each evaluator has the same shape: guard on the shared sweep context and the
type-level dedup window, fetch market data for the tracked symbols in one
batch, and for every symbol that meets its condition re-check the per-symbol
dedup window before asking the store to create an alert. Evaluators run
sequentially within a sweep so the in-memory daily counter on the context
needs no locking.
"""

from __future__ import annotations

import datetime
import math
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

import structlog

from src.alerts.store import AlertStore
from src.alerts.types import (
    AlertConfig,
    AlertSeverity,
    AlertType,
    TriggerCheckResult,
)
from src.core.types import Holding
from src.market.base import MarketDataProvider
from src.portfolio.base import PortfolioProvider

logger = structlog.stdlib.get_logger()

# Dedup window applied per (type, symbol).
DEDUP_WINDOW_HOURS = 24

# Fixed severity tie-break points (percent change).
DROP_CRITICAL_PCT = -10.0
DROP_WARNING_PCT = -7.0
WATCHLIST_WARNING_ABS_PCT = 10.0

_SECONDS_PER_DAY = 86_400


@dataclass
class TriggerContext:
    """State shared by every evaluator in one sweep."""

    config: AlertConfig
    watchlist: list[str]
    holdings: list[Holding]
    today_count: int
    now: datetime.datetime
    holding_symbols: set[str] = field(init=False)

    def __post_init__(self) -> None:
        self.holding_symbols = {h.symbol.upper() for h in self.holdings}

    @property
    def symbols(self) -> list[str]:
        """Watchlist ∪ holdings, de-duplicated, watchlist order first."""
        seen: dict[str, None] = {}
        for sym in [*self.watchlist, *(h.symbol for h in self.holdings)]:
            seen.setdefault(sym.upper(), None)
        return list(seen)

    @property
    def watchlist_only(self) -> list[str]:
        """Watchlist symbols that are not also held."""
        seen: dict[str, None] = {}
        for sym in self.watchlist:
            upper = sym.upper()
            if upper not in self.holding_symbols:
                seen.setdefault(upper, None)
        return list(seen)

    @property
    def cap_reached(self) -> bool:
        return self.today_count >= self.config.max_alerts_per_day

    def is_holding(self, symbol: str) -> bool:
        return symbol.upper() in self.holding_symbols


def price_drop_severity(change_percent: float) -> AlertSeverity:
    """≤ −10% critical, ≤ −7% warning, otherwise info."""
    if change_percent <= DROP_CRITICAL_PCT:
        return AlertSeverity.CRITICAL
    if change_percent <= DROP_WARNING_PCT:
        return AlertSeverity.WARNING
    return AlertSeverity.INFO


def watchlist_severity(change_percent: float) -> AlertSeverity:
    if abs(change_percent) >= WATCHLIST_WARNING_ABS_PCT:
        return AlertSeverity.WARNING
    return AlertSeverity.INFO


def as_utc(value: datetime.datetime) -> datetime.datetime:
    """Aware UTC datetime. Naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.UTC)
    return value.astimezone(datetime.UTC)


def days_until(event_date: datetime.datetime, now: datetime.datetime) -> int:
    """Whole days until *event_date*, rounded up. Naive dates are taken as UTC."""
    event_date = as_utc(event_date)
    return math.ceil((event_date - now).total_seconds() / _SECONDS_PER_DAY)


Evaluator = Callable[[TriggerContext | None], Awaitable[int]]


class TriggerEngine:
    """Evaluates alert conditions against live market data.

    Usage::

        engine = TriggerEngine(store, market, portfolio)
        result = await engine.run_all_triggers()
        if result.errors:
            ...
    """

    def __init__(
        self,
        store: AlertStore,
        market: MarketDataProvider,
        portfolio: PortfolioProvider,
    ) -> None:
        self._store = store
        self._market = market
        self._portfolio = portfolio

    # ── Context & guards ─────────────────────────────────────────

    def build_context(self, config: AlertConfig | None = None) -> TriggerContext:
        return TriggerContext(
            config=config or self._store.get_alert_config(),
            watchlist=self._portfolio.get_watchlist(),
            holdings=self._portfolio.get_holdings(),
            today_count=self._store.get_today_alert_count(),
            now=self._store.now(),
        )

    def type_enabled(self, ctx: TriggerContext, alert_type: AlertType) -> bool:
        """Type-level guard: master switch, daily cap, per-type toggle."""
        if not ctx.config.enabled:
            return False
        if ctx.cap_reached:
            return False
        condition = ctx.config.condition(alert_type)
        return condition is not None and condition.enabled

    def can_create_alert(
        self,
        ctx: TriggerContext,
        alert_type: AlertType,
        symbol: str | None = None,
    ) -> bool:
        """Dedup-aware guard.

        Without *symbol* this is the type-level check an evaluator runs before
        fetching data: any alert of this type inside the window skips the
        whole evaluator. With *symbol* it re-checks that symbol right before
        a create.
        """
        if not self.type_enabled(ctx, alert_type):
            return False
        condition = ctx.config.condition(alert_type)
        if symbol is not None and condition is not None and condition.symbols:
            if symbol.upper() not in {s.upper() for s in condition.symbols}:
                return False
        return not self._store.has_recent_alert(
            alert_type, symbol, DEDUP_WINDOW_HOURS
        )

    # ── Evaluators ───────────────────────────────────────────────

    async def check_price_drops(self, ctx: TriggerContext | None = None) -> int:
        ctx = ctx or self.build_context()
        if not self.can_create_alert(ctx, AlertType.PRICE_DROP):
            return 0
        symbols = ctx.symbols
        if not symbols:
            return 0

        created = 0
        threshold = ctx.config.price_drop_threshold
        for quote in await self._market.get_quotes(symbols):
            if quote.change_percent > -threshold:
                continue
            if not self.can_create_alert(ctx, AlertType.PRICE_DROP, quote.symbol):
                continue
            drop = abs(quote.change_percent)
            await self._store.create_alert(
                AlertType.PRICE_DROP,
                price_drop_severity(quote.change_percent),
                f"{quote.symbol} down {drop:.1f}%",
                f"{quote.symbol} dropped {drop:.2f}% to ${quote.price:.2f}",
                symbol=quote.symbol,
                data={
                    "price": quote.price,
                    "changePercent": quote.change_percent,
                    "isHolding": ctx.is_holding(quote.symbol),
                },
            )
            created += 1
            ctx.today_count += 1
        return created

    async def check_price_spikes(self, ctx: TriggerContext | None = None) -> int:
        ctx = ctx or self.build_context()
        if not self.can_create_alert(ctx, AlertType.PRICE_SPIKE):
            return 0
        symbols = ctx.symbols
        if not symbols:
            return 0

        created = 0
        threshold = ctx.config.price_spike_threshold
        for quote in await self._market.get_quotes(symbols):
            if quote.change_percent < threshold:
                continue
            if not self.can_create_alert(ctx, AlertType.PRICE_SPIKE, quote.symbol):
                continue
            await self._store.create_alert(
                AlertType.PRICE_SPIKE,
                AlertSeverity.INFO,
                f"{quote.symbol} up {quote.change_percent:.1f}%",
                f"{quote.symbol} surged {quote.change_percent:.2f}% to ${quote.price:.2f}",
                symbol=quote.symbol,
                data={
                    "price": quote.price,
                    "changePercent": quote.change_percent,
                    "isHolding": ctx.is_holding(quote.symbol),
                },
            )
            created += 1
            ctx.today_count += 1
        return created

    async def check_upcoming_earnings(self, ctx: TriggerContext | None = None) -> int:
        ctx = ctx or self.build_context()
        if not self.can_create_alert(ctx, AlertType.EARNINGS_SOON):
            return 0
        symbols = ctx.symbols
        if not symbols:
            return 0

        created = 0
        look_ahead = ctx.config.earnings_look_ahead_days
        calendar = await self._market.get_events_calendar(symbols)
        for event in calendar.earnings:
            event_date = as_utc(event.date)
            days = days_until(event_date, ctx.now)
            if not 0 < days <= look_ahead:
                continue
            symbol = event.symbol.upper()
            if not self.can_create_alert(ctx, AlertType.EARNINGS_SOON, symbol):
                continue
            when = "tomorrow" if days == 1 else f"in {days} days"
            await self._store.create_alert(
                AlertType.EARNINGS_SOON,
                AlertSeverity.WARNING if days <= 1 else AlertSeverity.INFO,
                f"{symbol} earnings {when}",
                f"{symbol} reports earnings on {event_date:%Y-%m-%d}",
                symbol=symbol,
                data={
                    "date": event_date.isoformat(),
                    "daysUntil": days,
                    "isHolding": ctx.is_holding(symbol),
                    "estimate": event.estimate,
                },
                expires_at=event_date,
            )
            created += 1
            ctx.today_count += 1
        return created

    async def check_watchlist_events(self, ctx: TriggerContext | None = None) -> int:
        ctx = ctx or self.build_context()
        if not self.can_create_alert(ctx, AlertType.WATCHLIST_EVENT):
            return 0
        symbols = ctx.watchlist_only
        if not symbols:
            return 0

        created = 0
        threshold = ctx.config.price_drop_threshold
        for quote in await self._market.get_quotes(symbols):
            move = abs(quote.change_percent)
            if move < threshold:
                continue
            if not self.can_create_alert(ctx, AlertType.WATCHLIST_EVENT, quote.symbol):
                continue
            direction = "up" if quote.change_percent >= 0 else "down"
            await self._store.create_alert(
                AlertType.WATCHLIST_EVENT,
                watchlist_severity(quote.change_percent),
                f"{quote.symbol} {direction} {move:.1f}%",
                f"Watchlist stock {quote.symbol} moved {direction} {move:.2f}% "
                f"to ${quote.price:.2f}",
                symbol=quote.symbol,
                data={
                    "price": quote.price,
                    "changePercent": quote.change_percent,
                    "direction": direction,
                },
            )
            created += 1
            ctx.today_count += 1
        return created

    # ── Sweep ────────────────────────────────────────────────────

    @property
    def evaluators(self) -> list[tuple[AlertType, Evaluator]]:
        """Evaluators in sweep order."""
        return [
            (AlertType.PRICE_DROP, self.check_price_drops),
            (AlertType.PRICE_SPIKE, self.check_price_spikes),
            (AlertType.EARNINGS_SOON, self.check_upcoming_earnings),
            (AlertType.WATCHLIST_EVENT, self.check_watchlist_events),
        ]

    async def run_all_triggers(self) -> TriggerCheckResult:
        """Run every evaluator once against a shared context.

        A failing evaluator contributes an error string; the rest still run.
        ``checked`` is False only when alerts are globally disabled.
        """
        config = self._store.get_alert_config()
        if not config.enabled:
            return TriggerCheckResult(checked=False)

        result = TriggerCheckResult(checked=True)
        try:
            ctx = self.build_context(config)
        except Exception as exc:
            logger.exception("trigger_context_error")
            result.errors.append(f"context: {exc}")
            return result

        baseline = ctx.today_count
        for alert_type, evaluator in self.evaluators:
            try:
                await evaluator(ctx)
            except Exception as exc:
                logger.exception("trigger_error", trigger=str(alert_type))
                result.errors.append(f"{alert_type}: {exc}")

        result.alerts_created = ctx.today_count - baseline
        logger.info(
            "trigger_sweep_complete",
            alerts_created=result.alerts_created,
            errors=len(result.errors),
            symbols=len(ctx.symbols),
        )
        return result
