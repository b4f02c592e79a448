"""Domain types for the alert subsystem."""

from __future__ import annotations

import datetime
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class AlertType(StrEnum):
    """Kinds of condition an alert can report."""

    PRICE_DROP = "price_drop"
    PRICE_SPIKE = "price_spike"
    EARNINGS_SOON = "earnings_soon"
    NEWS_SENTIMENT = "news_sentiment"
    PORTFOLIO_ANOMALY = "portfolio_anomaly"
    MARKET_REGIME = "market_regime"
    WATCHLIST_EVENT = "watchlist_event"


class AlertSeverity(StrEnum):
    """Alert severity, ordered by ``rank``."""

    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK: dict[AlertSeverity, int] = {
    AlertSeverity.INFO: 1,
    AlertSeverity.WARNING: 2,
    AlertSeverity.CRITICAL: 3,
}


class AlertStatus(StrEnum):
    """Alert lifecycle status. ``pending`` is the only non-terminal state."""

    PENDING = "pending"
    READ = "read"
    DISMISSED = "dismissed"


class Alert(BaseModel):
    """A persisted alert."""

    id: int
    type: AlertType
    severity: AlertSeverity
    status: AlertStatus = AlertStatus.PENDING
    symbol: str | None = None
    title: str
    message: str
    data: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime.datetime
    expires_at: datetime.datetime | None = None


class AlertCondition(BaseModel):
    """Per-type toggle with an optional threshold and symbol scope."""

    type: AlertType
    enabled: bool = True
    threshold: float | None = None
    symbols: list[str] = Field(default_factory=list)


def _default_conditions() -> list[AlertCondition]:
    return [
        AlertCondition(type=AlertType.PRICE_DROP, enabled=True, threshold=5),
        AlertCondition(type=AlertType.PRICE_SPIKE, enabled=True, threshold=8),
        AlertCondition(type=AlertType.EARNINGS_SOON, enabled=True, threshold=3),
        AlertCondition(type=AlertType.WATCHLIST_EVENT, enabled=True, threshold=5),
        AlertCondition(type=AlertType.NEWS_SENTIMENT, enabled=False),
        AlertCondition(type=AlertType.PORTFOLIO_ANOMALY, enabled=False),
        AlertCondition(type=AlertType.MARKET_REGIME, enabled=False),
    ]


class AlertConfig(BaseModel):
    """User alert configuration — a single live record, updated by merge."""

    model_config = ConfigDict(extra="forbid")

    enabled: bool = True
    conditions: list[AlertCondition] = Field(default_factory=_default_conditions)

    # Thresholds
    price_drop_threshold: float = 5.0
    price_spike_threshold: float = 8.0
    earnings_look_ahead_days: int = Field(default=3, ge=0)
    sentiment_threshold: float = -50.0

    # Frequency
    check_interval_ms: int = Field(default=300_000, gt=0)
    max_alerts_per_day: int = Field(default=20, ge=0)

    def condition(self, alert_type: AlertType) -> AlertCondition | None:
        """Return the condition for *alert_type*, if configured."""
        for cond in self.conditions:
            if cond.type == alert_type:
                return cond
        return None


class AlertEvent(BaseModel):
    """Published to store subscribers when an alert is created or updated."""

    kind: Literal["created", "updated"]
    alert: Alert


class WebhookEndpoint(BaseModel):
    """An external delivery target."""

    id: int
    url: str
    name: str | None = None
    enabled: bool = True
    alert_types: list[AlertType] = Field(default_factory=list)
    created_at: datetime.datetime
    last_used_at: datetime.datetime | None = None
    fail_count: int = 0

    def accepts(self, alert_type: AlertType) -> bool:
        """Whether this endpoint's allow-list admits *alert_type* (empty = all)."""
        return not self.alert_types or alert_type in self.alert_types


class TriggerCheckResult(BaseModel):
    """Outcome of one sweep over all trigger evaluators."""

    checked: bool = True
    alerts_created: int = 0
    errors: list[str] = Field(default_factory=list)


class MonitorStatus(BaseModel):
    """Read-only snapshot of the monitor."""

    running: bool
    last_check: datetime.datetime | None = None
    last_result: TriggerCheckResult | None = None
    last_prune: datetime.datetime | None = None


class AlertSummary(BaseModel):
    """Dashboard view of pending alerts."""

    pending: int
    critical: int
    warning: int
    info: int
    alerts: list[Alert] = Field(default_factory=list)


class DispatchResult(BaseModel):
    """Delivery counts for one alert fan-out."""

    sent: int = 0
    failed: int = 0


class WebhookTestResult(BaseModel):
    success: bool
    error: str | None = None


class WebhookStats(BaseModel):
    total: int
    enabled: int
    failing: int
