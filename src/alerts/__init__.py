"""Proactive alerting — store, triggers, monitor and webhook delivery."""

from src.alerts.exceptions import AlertError, AlertStoreError, WebhookDeliveryError
from src.alerts.factory import AlertStack, create_alert_stack
from src.alerts.monitor import AlertMonitor
from src.alerts.store import AlertStore
from src.alerts.triggers import TriggerContext, TriggerEngine
from src.alerts.types import (
    Alert,
    AlertCondition,
    AlertConfig,
    AlertEvent,
    AlertSeverity,
    AlertStatus,
    AlertSummary,
    AlertType,
    DispatchResult,
    MonitorStatus,
    TriggerCheckResult,
    WebhookEndpoint,
    WebhookStats,
    WebhookTestResult,
)
from src.alerts.webhooks import WebhookDispatcher, build_payload

__all__ = [
    "Alert",
    "AlertCondition",
    "AlertConfig",
    "AlertError",
    "AlertEvent",
    "AlertMonitor",
    "AlertSeverity",
    "AlertStack",
    "AlertStatus",
    "AlertStore",
    "AlertStoreError",
    "AlertSummary",
    "AlertType",
    "DispatchResult",
    "MonitorStatus",
    "TriggerCheckResult",
    "TriggerContext",
    "TriggerEngine",
    "WebhookDeliveryError",
    "WebhookDispatcher",
    "WebhookEndpoint",
    "WebhookStats",
    "WebhookTestResult",
    "build_payload",
    "create_alert_stack",
]
