#!/usr/bin/env python3
"""Alert admin CLI — inspect alerts, edit alert config, manage webhooks.

Usage::

    # Pending alerts, newest first
    python scripts/alerts.py list

    # Everything for one symbol, as JSON
    python scripts/alerts.py list --status all --symbol AAPL --json

    # Dashboard summary
    python scripts/alerts.py summary

    # Lifecycle
    python scripts/alerts.py read 12
    python scripts/alerts.py dismiss 12
    python scripts/alerts.py dismiss-all

    # Config (values are parsed as YAML scalars)
    python scripts/alerts.py config show
    python scripts/alerts.py config set price_drop_threshold 4.5

    # Webhooks
    python scripts/alerts.py webhook add https://example.com/hook --name ops --type price_drop
    python scripts/alerts.py webhook test 1
    python scripts/alerts.py webhook disable 1

    # Tracked symbols
    python scripts/alerts.py watch AAPL MSFT
    python scripts/alerts.py hold NVDA 10 --cost 450
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys

import yaml
from pydantic import ValidationError

from src.alerts.store import AlertStore
from src.alerts.types import Alert, AlertStatus, AlertType
from src.alerts.webhooks import WebhookDispatcher
from src.core.config import Settings, load_settings
from src.core.logging import setup_logging
from src.portfolio.store import PortfolioStore

_SEVERITY_MARK = {"critical": "!!", "warning": "! ", "info": "  "}


def _render_alerts(alerts: list[Alert]) -> str:
    """Render alerts as an ASCII table."""
    lines: list[str] = []
    header = f"{'ID':>5}  {'':2}  {'Type':<17}  {'Status':<9}  {'Created (UTC)':<16}  Title"
    lines.append(header)
    lines.append("-" * len(header))
    for a in alerts:
        lines.append(
            f"{a.id:>5}  {_SEVERITY_MARK.get(str(a.severity), '  ')}  "
            f"{a.type:<17}  {a.status:<9}  {a.created_at:%Y-%m-%d %H:%M}  {a.title}"
        )
    return "\n".join(lines)


def _cmd_list(store: AlertStore, args: argparse.Namespace) -> int:
    status = None if args.status == "all" else AlertStatus(args.status)
    alert_type = AlertType(args.type) if args.type else None
    alerts = store.get_alerts(
        status=status,
        alert_type=alert_type,
        symbol=args.symbol.upper() if args.symbol else None,
        limit=args.limit,
    )
    if args.json:
        print(json.dumps([a.model_dump(mode="json") for a in alerts], indent=2))
    elif not alerts:
        print("No alerts.", file=sys.stderr)
    else:
        print(_render_alerts(alerts))
    return 0


def _cmd_summary(store: AlertStore) -> int:
    pending = store.get_pending_alerts()
    counts = {s: sum(1 for a in pending if a.severity == s) for s in ("critical", "warning", "info")}
    print(
        f"Pending: {len(pending)}  (critical {counts['critical']}, "
        f"warning {counts['warning']}, info {counts['info']})"
    )
    print(f"Created today: {store.get_today_alert_count()}")
    if pending:
        print()
        print(_render_alerts(pending[:10]))
    return 0


def _cmd_config(store: AlertStore, args: argparse.Namespace) -> int:
    if args.action == "show":
        print(yaml.safe_dump(store.get_alert_config().model_dump(mode="json"), sort_keys=False))
        return 0
    try:
        value = yaml.safe_load(args.value)
        updated = store.update_alert_config(**{args.key: value})
    except (yaml.YAMLError, ValidationError) as exc:
        print(f"Invalid config update: {exc}", file=sys.stderr)
        return 1
    print(f"{args.key} = {getattr(updated, args.key)!r}")
    return 0


async def _cmd_webhook(
    store: AlertStore, settings: Settings, args: argparse.Namespace
) -> int:
    if args.action == "add":
        types = [AlertType(t) for t in args.type or []]
        hook = store.add_webhook(args.url, name=args.name, alert_types=types)
        print(f"Added webhook {hook.id}: {hook.url}")
        return 0

    if args.action == "list":
        for w in store.get_webhooks():
            state = "on " if w.enabled else "off"
            types = ",".join(w.alert_types) or "all"
            print(f"{w.id:>4}  {state}  fails={w.fail_count}  [{types}]  {w.name or ''}  {w.url}")
        return 0

    dispatcher = WebhookDispatcher(store, settings.webhooks)
    try:
        if args.action == "stats":
            stats = dispatcher.get_webhook_stats()
            print(f"Total: {stats.total}  Enabled: {stats.enabled}  Failing: {stats.failing}")
            return 0
        if args.action == "test":
            result = await dispatcher.test_webhook(args.id)
            if result.success:
                print(f"Webhook {args.id} OK")
                return 0
            print(f"Webhook {args.id} failed: {result.error}", file=sys.stderr)
            return 1
    finally:
        await dispatcher.close()

    if args.action == "remove":
        ok = store.remove_webhook(args.id)
    else:
        ok = store.toggle_webhook(args.id, args.action == "enable")
    if not ok:
        print(f"Webhook {args.id} not found", file=sys.stderr)
        return 1
    print(f"Webhook {args.id}: {args.action}d")
    return 0


async def run(args: argparse.Namespace) -> int:
    settings = load_settings(args.config)
    setup_logging(level="WARNING", fmt="console")
    store = AlertStore(settings.database.path)

    if args.command == "list":
        return _cmd_list(store, args)
    if args.command == "summary":
        return _cmd_summary(store)
    if args.command in ("read", "dismiss"):
        ok = (
            await store.mark_alert_read(args.id)
            if args.command == "read"
            else await store.dismiss_alert(args.id)
        )
        if not ok:
            print(f"Alert {args.id} not found or not pending", file=sys.stderr)
            return 1
        return 0
    if args.command == "dismiss-all":
        print(f"Dismissed {await store.dismiss_all_alerts()} alerts")
        return 0
    if args.command == "prune":
        print(f"Deleted {store.delete_old_alerts(args.days)} alerts")
        return 0
    if args.command == "config":
        return _cmd_config(store, args)
    if args.command == "webhook":
        return await _cmd_webhook(store, settings, args)

    portfolio = PortfolioStore(settings.database.path)
    if args.command == "watch":
        print(f"Added: {', '.join(portfolio.add_to_watchlist(args.symbols)) or 'nothing new'}")
    elif args.command == "unwatch":
        print(f"Removed: {', '.join(portfolio.remove_from_watchlist(args.symbols)) or 'nothing'}")
    elif args.command == "hold":
        holding = portfolio.set_holding(args.symbol, args.shares, args.cost)
        print(f"{holding.symbol}: {holding.shares:g} shares @ {holding.cost_basis:g}")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Manage alerts, alert config and webhooks.",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to settings YAML (default: config/settings.yaml)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p_list = sub.add_parser("list", help="List alerts")
    p_list.add_argument(
        "--status",
        default="pending",
        choices=[*(s.value for s in AlertStatus), "all"],
    )
    p_list.add_argument("--type", choices=[t.value for t in AlertType])
    p_list.add_argument("--symbol")
    p_list.add_argument("--limit", type=int, default=50)
    p_list.add_argument("--json", action="store_true", help="JSON output")

    sub.add_parser("summary", help="Pending alert summary")

    for name in ("read", "dismiss"):
        p = sub.add_parser(name, help=f"Mark an alert {name}")
        p.add_argument("id", type=int)
    sub.add_parser("dismiss-all", help="Dismiss all pending alerts")

    p_prune = sub.add_parser("prune", help="Delete old alerts")
    p_prune.add_argument("--days", type=int, default=30)

    p_cfg = sub.add_parser("config", help="Show or update alert config")
    cfg_sub = p_cfg.add_subparsers(dest="action", required=True)
    cfg_sub.add_parser("show")
    p_set = cfg_sub.add_parser("set")
    p_set.add_argument("key")
    p_set.add_argument("value")

    p_hook = sub.add_parser("webhook", help="Manage webhook endpoints")
    hook_sub = p_hook.add_subparsers(dest="action", required=True)
    p_add = hook_sub.add_parser("add")
    p_add.add_argument("url")
    p_add.add_argument("--name")
    p_add.add_argument(
        "--type",
        action="append",
        choices=[t.value for t in AlertType],
        help="Only deliver this alert type (repeatable; default: all)",
    )
    hook_sub.add_parser("list")
    hook_sub.add_parser("stats")
    for action in ("remove", "enable", "disable", "test"):
        p = hook_sub.add_parser(action)
        p.add_argument("id", type=int)

    p_watch = sub.add_parser("watch", help="Add symbols to the watchlist")
    p_watch.add_argument("symbols", nargs="+")
    p_unwatch = sub.add_parser("unwatch", help="Remove symbols from the watchlist")
    p_unwatch.add_argument("symbols", nargs="+")
    p_hold = sub.add_parser("hold", help="Set a holding (0 shares removes it)")
    p_hold.add_argument("symbol")
    p_hold.add_argument("shares", type=float)
    p_hold.add_argument("--cost", type=float, default=0.0)

    args = parser.parse_args()
    code = asyncio.run(run(args))
    sys.exit(code)


if __name__ == "__main__":
    main()
