"""AlertMonitor — background scheduler for trigger sweeps and housekeeping."""

from __future__ import annotations

import asyncio
import datetime
from collections.abc import Callable
from types import TracebackType

import structlog

from src.alerts.store import AlertCallback, AlertStore
from src.alerts.triggers import TriggerEngine
from src.alerts.types import (
    AlertSeverity,
    AlertSummary,
    MonitorStatus,
    TriggerCheckResult,
)
from src.core.config import MonitorConfig, get_settings

logger = structlog.stdlib.get_logger()

_SUMMARY_LIMIT = 10


class AlertMonitor:
    """Runs trigger sweeps on a fixed interval and prunes old alerts.

    Two background tasks: the sweep loop (every ``check_interval_ms`` from
    the alert config, read at start) and the housekeeping loop (every
    ``prune_interval_secs``). Sweeps never overlap: a scheduled tick that
    finds one in flight is skipped, while ``manual_check`` waits its turn.

    Usage::

        monitor = AlertMonitor(store, engine)
        async with monitor:
            await asyncio.sleep(3600)

        # or explicitly
        await monitor.start()
        result = await monitor.manual_check()
        await monitor.stop()
    """

    def __init__(
        self,
        store: AlertStore,
        engine: TriggerEngine,
        config: MonitorConfig | None = None,
    ) -> None:
        self._store = store
        self._engine = engine
        self._config = config or get_settings().monitor
        self._lock = asyncio.Lock()
        self._check_task: asyncio.Task[None] | None = None
        self._prune_task: asyncio.Task[None] | None = None
        self._running = False
        self._last_check: datetime.datetime | None = None
        self._last_result: TriggerCheckResult | None = None
        self._last_prune: datetime.datetime | None = None

    # ── Properties ───────────────────────────────────────────────

    @property
    def running(self) -> bool:
        return self._running

    @property
    def sweep_in_flight(self) -> bool:
        return self._lock.locked()

    @property
    def status(self) -> MonitorStatus:
        return MonitorStatus(
            running=self._running,
            last_check=self._last_check,
            last_result=self._last_result,
            last_prune=self._last_prune,
        )

    def get_status(self) -> MonitorStatus:
        return self.status

    # ── Lifecycle ────────────────────────────────────────────────

    async def start(self) -> bool:
        """Run one check immediately, then arm the background loops.

        Returns False without doing anything if already running or if alerts
        are disabled in the config.
        """
        if self._running:
            return False

        config = self._store.get_alert_config()
        if not config.enabled:
            logger.info("monitor_not_started", reason="alerts_disabled")
            return False

        self._running = True
        await self._run_check()
        if not self._running:
            # stop() raced the initial check
            return False

        interval_secs = config.check_interval_ms / 1000.0
        self._check_task = asyncio.create_task(self._check_loop(interval_secs))
        self._prune_task = asyncio.create_task(
            self._prune_loop(self._config.prune_interval_secs)
        )
        logger.info(
            "monitor_started",
            check_interval_secs=interval_secs,
            prune_interval_secs=self._config.prune_interval_secs,
        )
        return True

    async def stop(self) -> bool:
        """Cancel the background loops. Returns False if already stopped."""
        if not self._running:
            return False

        self._running = False
        for task in (self._check_task, self._prune_task):
            if task is None:
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._check_task = None
        self._prune_task = None
        logger.info("monitor_stopped")
        return True

    async def __aenter__(self) -> AlertMonitor:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.stop()

    # ── Checks ───────────────────────────────────────────────────

    async def manual_check(self) -> TriggerCheckResult:
        """Run one sweep now, outside the timer cadence."""
        logger.info("monitor_manual_check")
        return await self._run_check()

    async def _run_check(self) -> TriggerCheckResult:
        async with self._lock:
            try:
                result = await self._engine.run_all_triggers()
            except Exception as exc:
                logger.exception("monitor_check_failed")
                result = TriggerCheckResult(
                    checked=False,
                    errors=[f"Monitor check failed: {exc}"],
                )
            self._last_check = self._store.now()
            self._last_result = result
            return result

    async def _tick(self) -> None:
        if self._lock.locked():
            logger.warning("monitor_tick_skipped", reason="sweep_in_flight")
            return
        await self._run_check()

    async def _check_loop(self, interval_secs: float) -> None:
        while self._running:
            try:
                await asyncio.sleep(interval_secs)
            except asyncio.CancelledError:
                break
            await self._tick()

    # ── Housekeeping ─────────────────────────────────────────────

    def prune(self) -> int:
        """Delete alerts older than ``prune_after_days``. Errors are logged."""
        try:
            deleted = self._store.delete_old_alerts(self._config.prune_after_days)
        except Exception:
            logger.exception("monitor_prune_failed")
            return 0
        self._last_prune = self._store.now()
        return deleted

    async def _prune_loop(self, interval_secs: float) -> None:
        while self._running:
            try:
                await asyncio.sleep(interval_secs)
            except asyncio.CancelledError:
                break
            self.prune()

    # ── Subscriptions & summary ──────────────────────────────────

    def on_alert(self, callback: AlertCallback) -> Callable[[], None]:
        """Subscribe to alert events; returns the unsubscribe function."""
        return self._store.subscribe(callback)

    def get_alert_summary(self) -> AlertSummary:
        """Counts of pending alerts by severity plus the newest ten."""
        alerts = self._store.get_pending_alerts()
        return AlertSummary(
            pending=len(alerts),
            critical=sum(1 for a in alerts if a.severity == AlertSeverity.CRITICAL),
            warning=sum(1 for a in alerts if a.severity == AlertSeverity.WARNING),
            info=sum(1 for a in alerts if a.severity == AlertSeverity.INFO),
            alerts=alerts[:_SUMMARY_LIMIT],
        )
