"""WebhookDispatcher — fans alerts out to user-configured HTTP endpoints.

Delivery is best effort: one POST per endpoint, no retry within a dispatch.
Each failure bumps the endpoint's ``fail_count``; once it reaches the
ceiling the endpoint is skipped until the user re-enables it.
"""

from __future__ import annotations

import asyncio
import datetime
import json
from typing import Any

import aiohttp
import structlog

from src.alerts.exceptions import AlertStoreError, WebhookDeliveryError
from src.alerts.store import AlertStore
from src.alerts.types import (
    Alert,
    AlertEvent,
    AlertSeverity,
    AlertType,
    DispatchResult,
    WebhookEndpoint,
    WebhookStats,
    WebhookTestResult,
)
from src.core.config import WebhookConfig, get_settings

logger = structlog.stdlib.get_logger()


def _iso(value: datetime.datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=datetime.UTC)
    return value.astimezone(datetime.UTC).isoformat().replace("+00:00", "Z")


def build_payload(alert: Alert, now: datetime.datetime | None = None) -> dict[str, Any]:
    """Wire shape consumed by external systems — keep stable."""
    return {
        "event": "alert",
        "timestamp": _iso(now or datetime.datetime.now(datetime.UTC)),
        "alert": {
            "id": alert.id,
            "type": str(alert.type),
            "severity": str(alert.severity),
            "symbol": alert.symbol,
            "title": alert.title,
            "message": alert.message,
            "data": alert.data,
            "createdAt": _iso(alert.created_at),
        },
    }


def _test_alert() -> Alert:
    return Alert(
        id=0,
        type=AlertType.WATCHLIST_EVENT,
        severity=AlertSeverity.INFO,
        symbol="TEST",
        title="Test Webhook",
        message="This is a test notification from Folio Sentinel",
        data={"test": True},
        created_at=datetime.datetime.now(datetime.UTC),
    )


class WebhookDispatcher:
    """Delivers alerts to every eligible webhook endpoint in registration order.

    Usage::

        dispatcher = WebhookDispatcher(store)
        unsubscribe = store.subscribe(dispatcher.on_alert_event)
        ...
        await dispatcher.close()
    """

    def __init__(
        self,
        store: AlertStore,
        config: WebhookConfig | None = None,
    ) -> None:
        self._store = store
        self._config = config or get_settings().webhooks
        self._min_severity = AlertSeverity(self._config.min_severity)
        self._session: aiohttp.ClientSession | None = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    # ── Eligibility ──────────────────────────────────────────────

    def is_suspended(self, endpoint: WebhookEndpoint) -> bool:
        return endpoint.fail_count >= self._config.max_fail_count

    def eligible_endpoints(self, alert: Alert) -> list[WebhookEndpoint]:
        """Enabled, non-suspended endpoints whose allow-list admits *alert*."""
        return [
            ep
            for ep in self._store.get_webhooks()
            if ep.enabled and not self.is_suspended(ep) and ep.accepts(alert.type)
        ]

    # ── Delivery ─────────────────────────────────────────────────

    async def _post(self, url: str, payload: dict[str, Any]) -> None:
        """POST *payload* to *url*. Raises WebhookDeliveryError on any failure."""
        headers = {
            "Content-Type": "application/json",
            "User-Agent": self._config.user_agent,
        }
        timeout = aiohttp.ClientTimeout(total=self._config.timeout_secs)
        body = json.dumps(payload, default=str)
        try:
            session = self._get_session()
            async with session.post(
                url, data=body, headers=headers, timeout=timeout
            ) as resp:
                if 200 <= resp.status < 300:
                    return
                raise WebhookDeliveryError(f"HTTP {resp.status}")
        except WebhookDeliveryError:
            raise
        except asyncio.TimeoutError as exc:
            raise WebhookDeliveryError(
                f"timed out after {self._config.timeout_secs:g}s"
            ) from exc
        except (aiohttp.ClientError, OSError, ValueError) as exc:
            raise WebhookDeliveryError(str(exc) or type(exc).__name__) from exc

    def _record(self, endpoint: WebhookEndpoint, success: bool) -> None:
        try:
            self._store.record_webhook_result(endpoint.id, success)
        except AlertStoreError:
            logger.exception("webhook_status_update_error", webhook_id=endpoint.id)

    async def _deliver(self, endpoint: WebhookEndpoint, payload: dict[str, Any]) -> bool:
        try:
            await self._post(endpoint.url, payload)
        except WebhookDeliveryError as exc:
            logger.warning(
                "webhook_send_failed",
                webhook_id=endpoint.id,
                name=endpoint.name,
                error=str(exc),
                fail_count=endpoint.fail_count + 1,
            )
            self._record(endpoint, False)
            return False
        self._record(endpoint, True)
        return True

    async def dispatch_alert(self, alert: Alert) -> DispatchResult:
        """Send *alert* to every eligible endpoint. Never raises on delivery failure."""
        endpoints = self.eligible_endpoints(alert)
        result = DispatchResult()
        if not endpoints:
            return result

        payload = build_payload(alert)
        for endpoint in endpoints:
            if await self._deliver(endpoint, payload):
                result.sent += 1
            else:
                result.failed += 1

        logger.info(
            "alert_dispatched",
            alert_id=alert.id,
            sent=result.sent,
            failed=result.failed,
        )
        return result

    async def on_alert_event(self, event: AlertEvent) -> None:
        """Store subscriber: forward newly created alerts at or above min severity."""
        if event.kind != "created":
            return
        if event.alert.severity.rank < self._min_severity.rank:
            return
        await self.dispatch_alert(event.alert)

    async def test_webhook(self, webhook_id: int) -> WebhookTestResult:
        """Send a fixed test alert to one endpoint.

        Success is recorded like a normal delivery; a failure is reported to
        the caller without counting against the endpoint.
        """
        endpoint = self._store.get_webhook(webhook_id)
        if endpoint is None:
            return WebhookTestResult(success=False, error="Webhook not found")

        try:
            await self._post(endpoint.url, build_payload(_test_alert()))
        except WebhookDeliveryError as exc:
            return WebhookTestResult(success=False, error=str(exc))

        self._record(endpoint, True)
        return WebhookTestResult(success=True)

    def get_webhook_stats(self) -> WebhookStats:
        webhooks = self._store.get_webhooks()
        return WebhookStats(
            total=len(webhooks),
            enabled=sum(1 for w in webhooks if w.enabled),
            failing=sum(
                1 for w in webhooks if w.fail_count >= self._config.failing_threshold
            ),
        )

    # ── Lifecycle ────────────────────────────────────────────────

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None
