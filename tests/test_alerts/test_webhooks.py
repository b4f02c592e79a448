"""Tests for WebhookDispatcher — fan-out, failure ceiling, payload, test sends."""

from __future__ import annotations

import asyncio
import datetime
import json
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import aiohttp

from src.alerts.store import AlertStore
from src.alerts.types import Alert, AlertEvent, AlertSeverity, AlertType
from src.alerts.webhooks import WebhookDispatcher, build_payload
from src.core.config import WebhookConfig

# ── Helpers ─────────────────────────────────────────────────────

_START = datetime.datetime(2026, 3, 10, 12, 0, tzinfo=datetime.UTC)


def _mock_response(status: int = 200) -> AsyncMock:
    resp = AsyncMock()
    resp.status = status
    resp.__aenter__ = AsyncMock(return_value=resp)
    resp.__aexit__ = AsyncMock(return_value=False)
    return resp


def _mock_session(**post_kwargs: Any) -> MagicMock:
    session = MagicMock()
    session.post = MagicMock(**post_kwargs)
    session.closed = False
    return session


def _by_url(statuses: dict[str, int]) -> MagicMock:
    """Session whose POST status depends on the target URL."""
    return _mock_session(side_effect=lambda url, **_: _mock_response(statuses[url]))


def _posted_urls(session: MagicMock) -> list[str]:
    return [c.args[0] for c in session.post.call_args_list]


def _store(tmp_path: Path) -> AlertStore:
    return AlertStore(tmp_path / "alerts.db", clock=lambda: _START)


def _dispatcher(store: AlertStore, session: MagicMock, **config: Any) -> WebhookDispatcher:
    disp = WebhookDispatcher(store, WebhookConfig(**config))
    disp._session = session
    return disp


def _alert(
    alert_type: AlertType = AlertType.PRICE_DROP,
    severity: AlertSeverity = AlertSeverity.WARNING,
) -> Alert:
    return Alert(
        id=7,
        type=alert_type,
        severity=severity,
        symbol="AAPL",
        title="AAPL down 8.2%",
        message="AAPL dropped 8.20% to $171.30",
        data={"price": 171.3, "changePercent": -8.2, "isHolding": True},
        created_at=_START,
    )


# ── Payload ─────────────────────────────────────────────────────


class TestBuildPayload:
    def test_shape(self) -> None:
        payload = build_payload(_alert(), now=_START + datetime.timedelta(seconds=5))
        assert payload == {
            "event": "alert",
            "timestamp": "2026-03-10T12:00:05Z",
            "alert": {
                "id": 7,
                "type": "price_drop",
                "severity": "warning",
                "symbol": "AAPL",
                "title": "AAPL down 8.2%",
                "message": "AAPL dropped 8.20% to $171.30",
                "data": {"price": 171.3, "changePercent": -8.2, "isHolding": True},
                "createdAt": "2026-03-10T12:00:00Z",
            },
        }

    def test_naive_created_at_is_utc(self) -> None:
        alert = _alert().model_copy(update={"created_at": _START.replace(tzinfo=None)})
        assert build_payload(alert)["alert"]["createdAt"] == "2026-03-10T12:00:00Z"


# ── Dispatch ────────────────────────────────────────────────────


class TestDispatch:
    async def test_posts_json_with_headers(self, tmp_path: Path) -> None:
        store = _store(tmp_path)
        store.add_webhook("https://hooks.example.com/a")
        session = _mock_session(return_value=_mock_response(200))
        disp = _dispatcher(store, session)

        result = await disp.dispatch_alert(_alert())

        assert result.sent == 1
        assert result.failed == 0
        call = session.post.call_args
        assert call.args[0] == "https://hooks.example.com/a"
        assert call.kwargs["headers"] == {
            "Content-Type": "application/json",
            "User-Agent": "FolioSentinel-Alerts/1.0",
        }
        assert call.kwargs["timeout"].total == 10.0
        body = json.loads(call.kwargs["data"])
        assert body["event"] == "alert"
        assert body["alert"]["id"] == 7
        assert body["alert"]["type"] == "price_drop"

    async def test_success_records_last_used(self, tmp_path: Path) -> None:
        store = _store(tmp_path)
        hook = store.add_webhook("https://hooks.example.com/a")
        disp = _dispatcher(store, _mock_session(return_value=_mock_response(204)))

        await disp.dispatch_alert(_alert())

        saved = store.get_webhook(hook.id)
        assert saved is not None
        assert saved.last_used_at == _START
        assert saved.fail_count == 0

    async def test_non_2xx_counts_as_failure(self, tmp_path: Path) -> None:
        store = _store(tmp_path)
        hook = store.add_webhook("https://hooks.example.com/a")
        disp = _dispatcher(store, _mock_session(return_value=_mock_response(500)))

        result = await disp.dispatch_alert(_alert())

        assert result.sent == 0
        assert result.failed == 1
        saved = store.get_webhook(hook.id)
        assert saved is not None
        assert saved.fail_count == 1
        assert saved.last_used_at is None

    async def test_redirect_status_is_failure(self, tmp_path: Path) -> None:
        store = _store(tmp_path)
        store.add_webhook("https://hooks.example.com/a")
        disp = _dispatcher(store, _mock_session(return_value=_mock_response(302)))
        assert (await disp.dispatch_alert(_alert())).failed == 1

    async def test_connection_error_counts_as_failure(self, tmp_path: Path) -> None:
        store = _store(tmp_path)
        hook = store.add_webhook("https://hooks.example.com/a")
        session = _mock_session(side_effect=aiohttp.ClientConnectionError("refused"))
        disp = _dispatcher(store, session)

        result = await disp.dispatch_alert(_alert())

        assert result.failed == 1
        assert store.get_webhook(hook.id).fail_count == 1  # type: ignore[union-attr]

    async def test_timeout_counts_as_failure(self, tmp_path: Path) -> None:
        store = _store(tmp_path)
        store.add_webhook("https://hooks.example.com/a")
        disp = _dispatcher(store, _mock_session(side_effect=asyncio.TimeoutError()))
        assert (await disp.dispatch_alert(_alert())).failed == 1

    async def test_success_resets_fail_count(self, tmp_path: Path) -> None:
        store = _store(tmp_path)
        hook = store.add_webhook("https://hooks.example.com/a")
        store.record_webhook_result(hook.id, False)
        store.record_webhook_result(hook.id, False)
        disp = _dispatcher(store, _mock_session(return_value=_mock_response(200)))

        await disp.dispatch_alert(_alert())

        assert store.get_webhook(hook.id).fail_count == 0  # type: ignore[union-attr]

    async def test_registration_order(self, tmp_path: Path) -> None:
        store = _store(tmp_path)
        for name in ("c", "a", "b"):
            store.add_webhook(f"https://hooks.example.com/{name}")
        session = _mock_session(return_value=_mock_response(200))
        disp = _dispatcher(store, session)

        await disp.dispatch_alert(_alert())

        assert _posted_urls(session) == [
            "https://hooks.example.com/c",
            "https://hooks.example.com/a",
            "https://hooks.example.com/b",
        ]

    async def test_no_endpoints(self, tmp_path: Path) -> None:
        store = _store(tmp_path)
        session = _mock_session(return_value=_mock_response(200))
        disp = _dispatcher(store, session)

        result = await disp.dispatch_alert(_alert())

        assert result.sent == 0
        assert result.failed == 0
        session.post.assert_not_called()


class TestEligibility:
    async def test_disabled_endpoint_skipped(self, tmp_path: Path) -> None:
        store = _store(tmp_path)
        off = store.add_webhook("https://hooks.example.com/off")
        store.add_webhook("https://hooks.example.com/on")
        store.toggle_webhook(off.id, False)
        session = _mock_session(return_value=_mock_response(200))
        disp = _dispatcher(store, session)

        await disp.dispatch_alert(_alert())

        assert _posted_urls(session) == ["https://hooks.example.com/on"]

    async def test_allow_list(self, tmp_path: Path) -> None:
        store = _store(tmp_path)
        store.add_webhook("https://hooks.example.com/drops", alert_types=[AlertType.PRICE_DROP])
        store.add_webhook("https://hooks.example.com/earnings", alert_types=[AlertType.EARNINGS_SOON])
        store.add_webhook("https://hooks.example.com/all")
        session = _mock_session(return_value=_mock_response(200))
        disp = _dispatcher(store, session)

        await disp.dispatch_alert(_alert(AlertType.PRICE_DROP))

        assert _posted_urls(session) == [
            "https://hooks.example.com/drops",
            "https://hooks.example.com/all",
        ]

    async def test_suspended_after_max_failures(self, tmp_path: Path) -> None:
        store = _store(tmp_path)
        bad = store.add_webhook("https://hooks.example.com/bad")
        store.add_webhook("https://hooks.example.com/good")
        session = _by_url(
            {"https://hooks.example.com/bad": 500, "https://hooks.example.com/good": 200}
        )
        disp = _dispatcher(store, session)

        for _ in range(5):
            await disp.dispatch_alert(_alert())
        assert store.get_webhook(bad.id).fail_count == 5  # type: ignore[union-attr]

        session.post.reset_mock()
        result = await disp.dispatch_alert(_alert())

        assert _posted_urls(session) == ["https://hooks.example.com/good"]
        assert result.sent == 1
        assert result.failed == 0
        assert store.get_webhook(bad.id).fail_count == 5  # type: ignore[union-attr]

    async def test_reenable_lifts_suspension(self, tmp_path: Path) -> None:
        store = _store(tmp_path)
        hook = store.add_webhook("https://hooks.example.com/a")
        for _ in range(5):
            store.record_webhook_result(hook.id, False)
        session = _mock_session(return_value=_mock_response(200))
        disp = _dispatcher(store, session)

        await disp.dispatch_alert(_alert())
        session.post.assert_not_called()

        store.toggle_webhook(hook.id, True)
        await disp.dispatch_alert(_alert())
        assert session.post.call_count == 1

    async def test_custom_ceiling(self, tmp_path: Path) -> None:
        store = _store(tmp_path)
        hook = store.add_webhook("https://hooks.example.com/a")
        disp = _dispatcher(store, _mock_session(), max_fail_count=2)
        store.record_webhook_result(hook.id, False)
        assert not disp.is_suspended(store.get_webhook(hook.id))  # type: ignore[arg-type]
        store.record_webhook_result(hook.id, False)
        assert disp.is_suspended(store.get_webhook(hook.id))  # type: ignore[arg-type]


# ── Store subscription ──────────────────────────────────────────


class TestOnAlertEvent:
    async def test_created_alerts_are_forwarded(self, tmp_path: Path) -> None:
        store = _store(tmp_path)
        store.add_webhook("https://hooks.example.com/a")
        session = _mock_session(return_value=_mock_response(200))
        disp = _dispatcher(store, session)
        store.subscribe(disp.on_alert_event)

        alert = await store.create_alert(
            AlertType.PRICE_DROP, AlertSeverity.WARNING, "AAPL down 8.2%", "msg", symbol="AAPL"
        )

        assert session.post.call_count == 1
        body = json.loads(session.post.call_args.kwargs["data"])
        assert body["alert"]["id"] == alert.id
        assert body["alert"]["symbol"] == "AAPL"

    async def test_updates_are_ignored(self, tmp_path: Path) -> None:
        store = _store(tmp_path)
        store.add_webhook("https://hooks.example.com/a")
        session = _mock_session(return_value=_mock_response(200))
        disp = _dispatcher(store, session)

        await disp.on_alert_event(AlertEvent(kind="updated", alert=_alert()))

        session.post.assert_not_called()

    async def test_min_severity_filter(self, tmp_path: Path) -> None:
        store = _store(tmp_path)
        store.add_webhook("https://hooks.example.com/a")
        session = _mock_session(return_value=_mock_response(200))
        disp = _dispatcher(store, session, min_severity="warning")

        await disp.on_alert_event(
            AlertEvent(kind="created", alert=_alert(severity=AlertSeverity.INFO))
        )
        session.post.assert_not_called()

        await disp.on_alert_event(
            AlertEvent(kind="created", alert=_alert(severity=AlertSeverity.CRITICAL))
        )
        assert session.post.call_count == 1

    async def test_failure_does_not_break_create(self, tmp_path: Path) -> None:
        store = _store(tmp_path)
        store.add_webhook("https://hooks.example.com/a")
        disp = _dispatcher(store, _mock_session(side_effect=ConnectionError("down")))
        store.subscribe(disp.on_alert_event)

        alert = await store.create_alert(
            AlertType.PRICE_SPIKE, AlertSeverity.INFO, "NVDA up 9.0%", "msg", symbol="NVDA"
        )

        assert store.get_alert(alert.id) is not None


# ── Test sends & stats ──────────────────────────────────────────


class TestWebhookTest:
    async def test_unknown_id(self, tmp_path: Path) -> None:
        disp = _dispatcher(_store(tmp_path), _mock_session())
        result = await disp.test_webhook(999)
        assert result.success is False
        assert result.error == "Webhook not found"

    async def test_success(self, tmp_path: Path) -> None:
        store = _store(tmp_path)
        hook = store.add_webhook("https://hooks.example.com/a")
        store.record_webhook_result(hook.id, False)
        session = _mock_session(return_value=_mock_response(200))
        disp = _dispatcher(store, session)

        result = await disp.test_webhook(hook.id)

        assert result.success is True
        assert result.error is None
        body = json.loads(session.post.call_args.kwargs["data"])
        assert body["alert"]["title"] == "Test Webhook"
        assert body["alert"]["symbol"] == "TEST"
        assert body["alert"]["data"] == {"test": True}
        saved = store.get_webhook(hook.id)
        assert saved is not None
        assert saved.fail_count == 0
        assert saved.last_used_at == _START

    async def test_failure_reports_error_only(self, tmp_path: Path) -> None:
        store = _store(tmp_path)
        hook = store.add_webhook("https://hooks.example.com/a")
        disp = _dispatcher(store, _mock_session(return_value=_mock_response(503)))

        result = await disp.test_webhook(hook.id)

        assert result.success is False
        assert result.error == "HTTP 503"
        assert store.get_webhook(hook.id).fail_count == 0  # type: ignore[union-attr]

    async def test_ignores_allow_list_and_disabled(self, tmp_path: Path) -> None:
        store = _store(tmp_path)
        hook = store.add_webhook(
            "https://hooks.example.com/a", alert_types=[AlertType.EARNINGS_SOON]
        )
        store.toggle_webhook(hook.id, False)
        session = _mock_session(return_value=_mock_response(200))
        disp = _dispatcher(store, session)

        assert (await disp.test_webhook(hook.id)).success is True
        assert session.post.call_count == 1


class TestStats:
    def test_counts(self, tmp_path: Path) -> None:
        store = _store(tmp_path)
        a = store.add_webhook("https://hooks.example.com/a")
        b = store.add_webhook("https://hooks.example.com/b")
        store.add_webhook("https://hooks.example.com/c")
        store.toggle_webhook(a.id, False)
        for _ in range(3):
            store.record_webhook_result(b.id, False)

        stats = _dispatcher(store, _mock_session()).get_webhook_stats()

        assert stats.total == 3
        assert stats.enabled == 2
        assert stats.failing == 1

    def test_empty(self, tmp_path: Path) -> None:
        stats = _dispatcher(_store(tmp_path), _mock_session()).get_webhook_stats()
        assert (stats.total, stats.enabled, stats.failing) == (0, 0, 0)


class TestClose:
    async def test_close_session(self, tmp_path: Path) -> None:
        session = _mock_session()
        session.close = AsyncMock()
        disp = _dispatcher(_store(tmp_path), session)

        await disp.close()

        session.close.assert_awaited_once()
        assert disp._session is None

    async def test_close_without_session(self, tmp_path: Path) -> None:
        disp = WebhookDispatcher(_store(tmp_path), WebhookConfig())
        await disp.close()
