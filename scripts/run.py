#!/usr/bin/env python3
"""Alert monitor entrypoint — wires the alert stack and runs it until stopped.

Usage::

    # Run the background monitor with default config
    python scripts/run.py

    # Custom config file
    python scripts/run.py --config config/settings.yaml

    # Run one sweep and exit
    python scripts/run.py --once

    # Override log level
    python scripts/run.py --log-level DEBUG
"""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys

import structlog

from src.alerts.factory import create_alert_stack
from src.core.config import load_settings
from src.core.logging import setup_logging
from src.market.yahoo import YahooMarketData
from src.portfolio.store import PortfolioStore

logger = structlog.get_logger(__name__)


async def run(args: argparse.Namespace) -> int:
    """Start the monitor and run until interrupted (or once with --once)."""
    settings = load_settings(args.config)
    setup_logging(level=args.log_level)

    market = YahooMarketData(settings.market_data)
    await market.connect()
    portfolio = PortfolioStore(settings.database.path)
    stack = create_alert_stack(market, portfolio, settings=settings)

    logger.info(
        "sentinel_starting",
        database=settings.database.path,
        webhooks=settings.webhooks.enabled,
        watchlist=len(portfolio.get_watchlist()),
        holdings=len(portfolio.get_holdings()),
    )

    # ── One-shot mode ────────────────────────────────────────────
    if args.once:
        result = await stack.monitor.manual_check()
        await stack.close()
        await market.close()
        logger.info(
            "sentinel_check_complete",
            checked=result.checked,
            alerts_created=result.alerts_created,
            errors=result.errors,
        )
        return 0 if not result.errors else 1

    # ── Background monitor ───────────────────────────────────────
    started = await stack.monitor.start()
    if not started:
        logger.error("monitor_not_started")
        print(
            "Alerts are disabled. Enable them with: "
            "python scripts/alerts.py config set enabled true",
            file=sys.stderr,
        )
        await stack.close()
        await market.close()
        return 1

    # ── Wait for shutdown signal ─────────────────────────────────
    stop_event = asyncio.Event()

    def _signal_handler() -> None:
        logger.info("shutdown_signal_received")
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _signal_handler)
        except NotImplementedError:
            # Windows: signal handlers not supported on ProactorEventLoop
            pass

    try:
        await stop_event.wait()
    except KeyboardInterrupt:
        logger.info("keyboard_interrupt")

    # ── Graceful shutdown ────────────────────────────────────────
    logger.info("sentinel_shutting_down")
    await stack.close()
    await market.close()

    status = stack.monitor.status
    logger.info(
        "sentinel_stopped",
        last_check=status.last_check.isoformat() if status.last_check else None,
        pending_alerts=stack.store.get_alert_count(),
    )
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Run the proactive alert monitor.",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to settings YAML (default: config/settings.yaml)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Log level override: DEBUG, INFO, WARNING, ERROR",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single sweep and exit",
    )
    args = parser.parse_args()

    code = asyncio.run(run(args))
    sys.exit(code)


if __name__ == "__main__":
    main()
