"""PortfolioStore — SQLite watchlist and holdings."""

from __future__ import annotations

import sqlite3
import time
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from pathlib import Path

import structlog

from src.core.types import Holding

logger = structlog.stdlib.get_logger()

_SCHEMA = """
CREATE TABLE IF NOT EXISTS watchlist (
    symbol TEXT PRIMARY KEY,
    added_at REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS holdings (
    symbol TEXT PRIMARY KEY,
    shares REAL NOT NULL,
    cost_basis REAL NOT NULL DEFAULT 0
);
"""


class PortfolioStore:
    """Tracked symbols for the alert engine: the watchlist and current holdings.

    Symbols are normalised to upper case on the way in.
    """

    def __init__(self, db_path: str | Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.executescript(_SCHEMA)

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    # ── Watchlist ────────────────────────────────────────────────

    def get_watchlist(self) -> list[str]:
        """Watchlist symbols, most recently added first."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT symbol FROM watchlist ORDER BY added_at DESC, rowid DESC"
            ).fetchall()
        return [row["symbol"] for row in rows]

    def add_to_watchlist(self, symbols: Iterable[str]) -> list[str]:
        """Add symbols; returns the ones that were not already present."""
        added: list[str] = []
        now = time.time()
        with self._connect() as conn:
            for symbol in symbols:
                upper = symbol.strip().upper()
                if not upper:
                    continue
                cur = conn.execute(
                    "INSERT OR IGNORE INTO watchlist (symbol, added_at) VALUES (?, ?)",
                    (upper, now),
                )
                if cur.rowcount > 0:
                    added.append(upper)
        if added:
            logger.info("watchlist_added", symbols=added)
        return added

    def remove_from_watchlist(self, symbols: Iterable[str]) -> list[str]:
        removed: list[str] = []
        with self._connect() as conn:
            for symbol in symbols:
                upper = symbol.strip().upper()
                cur = conn.execute("DELETE FROM watchlist WHERE symbol = ?", (upper,))
                if cur.rowcount > 0:
                    removed.append(upper)
        return removed

    def is_in_watchlist(self, symbol: str) -> bool:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT 1 FROM watchlist WHERE symbol = ?", (symbol.upper(),)
            ).fetchone()
        return row is not None

    # ── Holdings ─────────────────────────────────────────────────

    def get_holdings(self) -> list[Holding]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT symbol, shares, cost_basis FROM holdings ORDER BY symbol"
            ).fetchall()
        return [
            Holding(symbol=row["symbol"], shares=row["shares"], cost_basis=row["cost_basis"])
            for row in rows
        ]

    def set_holding(self, symbol: str, shares: float, cost_basis: float = 0.0) -> Holding:
        """Insert or replace a position. Zero shares removes it."""
        upper = symbol.strip().upper()
        if shares <= 0:
            self.remove_holding(upper)
            return Holding(symbol=upper, shares=0, cost_basis=cost_basis)
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO holdings (symbol, shares, cost_basis) VALUES (?, ?, ?)
                ON CONFLICT(symbol) DO UPDATE
                    SET shares = excluded.shares, cost_basis = excluded.cost_basis
                """,
                (upper, shares, cost_basis),
            )
        return Holding(symbol=upper, shares=shares, cost_basis=cost_basis)

    def remove_holding(self, symbol: str) -> bool:
        with self._connect() as conn:
            cur = conn.execute(
                "DELETE FROM holdings WHERE symbol = ?", (symbol.strip().upper(),)
            )
            return cur.rowcount > 0
