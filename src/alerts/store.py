"""AlertStore — SQLite persistence for alerts, alert config and webhooks.

The store is the single writer of alert, config and webhook state. It also
owns the in-process subscriber registry: every created or updated alert is
published to subscribers after the write commits.

Usage::

    store = AlertStore("data/sentinel.db")
    unsubscribe = store.subscribe(my_callback)

    if not store.has_recent_alert(AlertType.PRICE_DROP, "AAPL"):
        await store.create_alert(
            AlertType.PRICE_DROP, AlertSeverity.WARNING,
            "AAPL down 8.2%", "AAPL dropped 8.20% to $171.30",
            symbol="AAPL",
        )
"""

from __future__ import annotations

import asyncio
import datetime
import json
import sqlite3
from collections.abc import Awaitable, Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import structlog

from src.alerts.exceptions import AlertStoreError
from src.alerts.types import (
    Alert,
    AlertConfig,
    AlertEvent,
    AlertSeverity,
    AlertStatus,
    AlertType,
    WebhookEndpoint,
)

logger = structlog.stdlib.get_logger()

Clock = Callable[[], datetime.datetime]
AlertCallback = Callable[[AlertEvent], Awaitable[None] | None]

_CONFIG_KEY = "config"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS alerts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    type TEXT NOT NULL,
    severity TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    symbol TEXT,
    title TEXT NOT NULL,
    message TEXT NOT NULL,
    data TEXT,
    created_at REAL NOT NULL,
    expires_at REAL
);
CREATE INDEX IF NOT EXISTS idx_alerts_status ON alerts(status);
CREATE INDEX IF NOT EXISTS idx_alerts_created ON alerts(created_at DESC);
CREATE INDEX IF NOT EXISTS idx_alerts_type_symbol ON alerts(type, symbol);

CREATE TABLE IF NOT EXISTS alert_config (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS webhooks (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    url TEXT NOT NULL,
    name TEXT,
    enabled INTEGER NOT NULL DEFAULT 1,
    alert_types TEXT,
    created_at REAL NOT NULL,
    last_used_at REAL,
    fail_count INTEGER NOT NULL DEFAULT 0
);
"""


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


def _from_ts(value: float | None) -> datetime.datetime | None:
    if value is None:
        return None
    return datetime.datetime.fromtimestamp(value, datetime.UTC)


def _row_to_alert(row: sqlite3.Row) -> Alert:
    return Alert(
        id=row["id"],
        type=AlertType(row["type"]),
        severity=AlertSeverity(row["severity"]),
        status=AlertStatus(row["status"]),
        symbol=row["symbol"],
        title=row["title"],
        message=row["message"],
        data=json.loads(row["data"]) if row["data"] else {},
        created_at=_from_ts(row["created_at"]),
        expires_at=_from_ts(row["expires_at"]),
    )


def _row_to_webhook(row: sqlite3.Row) -> WebhookEndpoint:
    return WebhookEndpoint(
        id=row["id"],
        url=row["url"],
        name=row["name"],
        enabled=bool(row["enabled"]),
        alert_types=json.loads(row["alert_types"]) if row["alert_types"] else [],
        created_at=_from_ts(row["created_at"]),
        last_used_at=_from_ts(row["last_used_at"]),
        fail_count=row["fail_count"],
    )


class AlertStore:
    """SQLite-backed alert store with in-process pub/sub."""

    def __init__(self, db_path: str | Path, clock: Clock | None = None) -> None:
        self._db_path = Path(db_path)
        self._clock = clock or _utcnow
        self._subscribers: list[tuple[object, AlertCallback]] = []
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    @property
    def db_path(self) -> Path:
        return self._db_path

    def now(self) -> datetime.datetime:
        """Current time according to the store clock."""
        return self._clock()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """Open a connection, commit on success, roll back on error."""
        try:
            conn = sqlite3.connect(self._db_path)
        except sqlite3.Error as exc:
            raise AlertStoreError(f"cannot open {self._db_path}: {exc}") from exc
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                yield conn
        except sqlite3.Error as exc:
            raise AlertStoreError(str(exc)) from exc
        finally:
            conn.close()

    def _init_schema(self) -> None:
        with self._connect() as conn:
            conn.executescript(_SCHEMA)

    # ── Subscribers ──────────────────────────────────────────────

    def subscribe(self, callback: AlertCallback) -> Callable[[], None]:
        """Register *callback* for alert events.

        Returns a function that removes exactly this registration; calling
        it more than once is harmless.
        """
        token = object()
        self._subscribers.append((token, callback))

        def unsubscribe() -> None:
            self._subscribers = [
                (t, cb) for t, cb in self._subscribers if t is not token
            ]

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def _emit(self, event: AlertEvent) -> None:
        """Dispatch an alert event to all subscribers, isolating failures."""
        for _, cb in list(self._subscribers):
            try:
                result = cb(event)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.exception(
                    "alert_subscriber_error",
                    event_kind=event.kind,
                    alert_id=event.alert.id,
                )

    # ── Alerts ───────────────────────────────────────────────────

    async def create_alert(
        self,
        alert_type: AlertType,
        severity: AlertSeverity,
        title: str,
        message: str,
        *,
        symbol: str | None = None,
        data: dict[str, Any] | None = None,
        expires_at: datetime.datetime | None = None,
    ) -> Alert:
        """Insert a pending alert and publish a ``created`` event."""
        now = self._clock()
        with self._connect() as conn:
            cur = conn.execute(
                """
                INSERT INTO alerts
                    (type, severity, status, symbol, title, message, data,
                     created_at, expires_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    str(alert_type),
                    str(severity),
                    AlertStatus.PENDING.value,
                    symbol,
                    title,
                    message,
                    json.dumps(data, default=str) if data else None,
                    now.timestamp(),
                    expires_at.timestamp() if expires_at else None,
                ),
            )
            alert_id = cur.lastrowid

        alert = Alert(
            id=alert_id,
            type=alert_type,
            severity=severity,
            status=AlertStatus.PENDING,
            symbol=symbol,
            title=title,
            message=message,
            data=data or {},
            created_at=now,
            expires_at=expires_at,
        )
        logger.info(
            "alert_created",
            alert_id=alert.id,
            alert_type=alert.type,
            severity=alert.severity,
            symbol=symbol,
        )
        await self._emit(AlertEvent(kind="created", alert=alert))
        return alert

    def get_alerts(
        self,
        *,
        status: AlertStatus | None = None,
        alert_type: AlertType | None = None,
        symbol: str | None = None,
        limit: int | None = None,
    ) -> list[Alert]:
        """Return alerts matching all given filters, newest first."""
        sql = "SELECT * FROM alerts WHERE 1=1"
        params: list[Any] = []

        if status is not None:
            sql += " AND status = ?"
            params.append(str(status))
        if alert_type is not None:
            sql += " AND type = ?"
            params.append(str(alert_type))
        if symbol is not None:
            sql += " AND symbol = ?"
            params.append(symbol)

        sql += " ORDER BY created_at DESC, id DESC"

        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)

        with self._connect() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [_row_to_alert(row) for row in rows]

    def get_alert(self, alert_id: int) -> Alert | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM alerts WHERE id = ?", (alert_id,)
            ).fetchone()
        return _row_to_alert(row) if row is not None else None

    def get_pending_alerts(self) -> list[Alert]:
        return self.get_alerts(status=AlertStatus.PENDING)

    def get_alert_count(self, status: AlertStatus | None = None) -> int:
        """Count alerts with *status* (pending when omitted)."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS count FROM alerts WHERE status = ?",
                (str(status or AlertStatus.PENDING),),
            ).fetchone()
        return row["count"]

    async def update_alert_status(self, alert_id: int, status: AlertStatus) -> bool:
        """Move a pending alert to *status*.

        Returns True only when a row changed. Read and dismissed alerts are
        terminal, so repeating a transition is a no-op that publishes nothing.
        """
        status = AlertStatus(status)
        if status == AlertStatus.PENDING:
            return False

        with self._connect() as conn:
            cur = conn.execute(
                "UPDATE alerts SET status = ? WHERE id = ? AND status = ?",
                (status.value, alert_id, AlertStatus.PENDING.value),
            )
            changed = cur.rowcount > 0

        if changed:
            alert = self.get_alert(alert_id)
            if alert is not None:
                await self._emit(AlertEvent(kind="updated", alert=alert))
        return changed

    async def dismiss_alert(self, alert_id: int) -> bool:
        return await self.update_alert_status(alert_id, AlertStatus.DISMISSED)

    async def mark_alert_read(self, alert_id: int) -> bool:
        return await self.update_alert_status(alert_id, AlertStatus.READ)

    async def dismiss_all_alerts(self) -> int:
        """Dismiss every pending alert. Returns the number dismissed."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM alerts WHERE status = ? ORDER BY created_at DESC, id DESC",
                (AlertStatus.PENDING.value,),
            ).fetchall()
            pending = [_row_to_alert(row) for row in rows]
            if not pending:
                return 0
            placeholders = ",".join("?" for _ in pending)
            cur = conn.execute(
                f"UPDATE alerts SET status = ? WHERE status = ? AND id IN ({placeholders})",
                [AlertStatus.DISMISSED.value, AlertStatus.PENDING.value]
                + [a.id for a in pending],
            )
            count = cur.rowcount

        logger.info("alerts_dismissed_all", count=count)
        for alert in pending:
            dismissed = alert.model_copy(update={"status": AlertStatus.DISMISSED})
            await self._emit(AlertEvent(kind="updated", alert=dismissed))
        return count

    def delete_old_alerts(self, days_old: int = 30) -> int:
        """Delete alerts created more than *days_old* days ago."""
        cutoff = self._clock() - datetime.timedelta(days=days_old)
        with self._connect() as conn:
            cur = conn.execute(
                "DELETE FROM alerts WHERE created_at < ?", (cutoff.timestamp(),)
            )
            deleted = cur.rowcount
        if deleted:
            logger.info("alerts_pruned", deleted=deleted, days_old=days_old)
        return deleted

    def has_recent_alert(
        self,
        alert_type: AlertType,
        symbol: str | None = None,
        within_hours: float = 24,
    ) -> bool:
        """Whether an alert of this type (and symbol) exists inside the window."""
        cutoff = self._clock() - datetime.timedelta(hours=within_hours)
        sql = "SELECT COUNT(*) AS count FROM alerts WHERE type = ? AND created_at > ?"
        params: list[Any] = [str(alert_type), cutoff.timestamp()]
        if symbol is not None:
            sql += " AND symbol = ?"
            params.append(symbol)

        with self._connect() as conn:
            row = conn.execute(sql, params).fetchone()
        return row["count"] > 0

    def get_today_alert_count(self) -> int:
        """Count alerts created since local midnight."""
        local_now = self._clock().astimezone()
        start_of_day = local_now.replace(hour=0, minute=0, second=0, microsecond=0)
        with self._connect() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS count FROM alerts WHERE created_at >= ?",
                (start_of_day.timestamp(),),
            ).fetchone()
        return row["count"]

    # ── Config ───────────────────────────────────────────────────

    def get_alert_config(self) -> AlertConfig:
        """Return the live config, falling back to defaults on any problem."""
        try:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT value FROM alert_config WHERE key = ?", (_CONFIG_KEY,)
                ).fetchone()
        except AlertStoreError:
            logger.exception("alert_config_read_error")
            return AlertConfig()

        if row is None:
            return AlertConfig()

        try:
            stored = json.loads(row["value"])
            known = {k: v for k, v in stored.items() if k in AlertConfig.model_fields}
            return AlertConfig.model_validate(
                {**AlertConfig().model_dump(), **known}
            )
        except (ValueError, TypeError, AttributeError):
            logger.warning("alert_config_invalid", db_path=str(self._db_path))
            return AlertConfig()

    def update_alert_config(self, **updates: Any) -> AlertConfig:
        """Merge *updates* over the current config and persist the result.

        Raises:
            pydantic.ValidationError: on unknown keys or invalid values.
        """
        current = self.get_alert_config()
        merged = AlertConfig.model_validate({**current.model_dump(), **updates})
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO alert_config (key, value) VALUES (?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value
                """,
                (_CONFIG_KEY, merged.model_dump_json()),
            )
        logger.info("alert_config_updated", keys=sorted(updates))
        return merged

    # ── Webhooks ─────────────────────────────────────────────────

    def add_webhook(
        self,
        url: str,
        name: str | None = None,
        alert_types: list[AlertType] | None = None,
    ) -> WebhookEndpoint:
        now = self._clock()
        types = [AlertType(t) for t in alert_types or []]
        with self._connect() as conn:
            cur = conn.execute(
                """
                INSERT INTO webhooks (url, name, enabled, alert_types, created_at, fail_count)
                VALUES (?, ?, 1, ?, ?, 0)
                """,
                (
                    url,
                    name or None,
                    json.dumps([str(t) for t in types]) if types else None,
                    now.timestamp(),
                ),
            )
            webhook_id = cur.lastrowid
        logger.info("webhook_added", webhook_id=webhook_id, name=name)
        return WebhookEndpoint(
            id=webhook_id,
            url=url,
            name=name or None,
            alert_types=types,
            created_at=now,
        )

    def remove_webhook(self, webhook_id: int) -> bool:
        with self._connect() as conn:
            cur = conn.execute("DELETE FROM webhooks WHERE id = ?", (webhook_id,))
            return cur.rowcount > 0

    def get_webhooks(self) -> list[WebhookEndpoint]:
        """All webhooks in registration order."""
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM webhooks ORDER BY id").fetchall()
        return [_row_to_webhook(row) for row in rows]

    def get_webhook(self, webhook_id: int) -> WebhookEndpoint | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM webhooks WHERE id = ?", (webhook_id,)
            ).fetchone()
        return _row_to_webhook(row) if row is not None else None

    def toggle_webhook(self, webhook_id: int, enabled: bool) -> bool:
        """Enable or disable a webhook. Enabling also clears its failure count."""
        with self._connect() as conn:
            if enabled:
                cur = conn.execute(
                    "UPDATE webhooks SET enabled = 1, fail_count = 0 WHERE id = ?",
                    (webhook_id,),
                )
            else:
                cur = conn.execute(
                    "UPDATE webhooks SET enabled = 0 WHERE id = ?", (webhook_id,)
                )
            return cur.rowcount > 0

    def record_webhook_result(self, webhook_id: int, success: bool) -> None:
        """Record a delivery outcome: success resets fail_count, failure bumps it."""
        with self._connect() as conn:
            if success:
                conn.execute(
                    "UPDATE webhooks SET last_used_at = ?, fail_count = 0 WHERE id = ?",
                    (self._clock().timestamp(), webhook_id),
                )
            else:
                conn.execute(
                    "UPDATE webhooks SET fail_count = fail_count + 1 WHERE id = ?",
                    (webhook_id,),
                )
