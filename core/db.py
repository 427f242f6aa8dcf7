"""
Database Connection Manager

SQLite storage for everything that must survive a run:
- lot_snapshots: open lots per portfolio, used to seed later replays
- fx_rates_ecb: permanent cache of official ECB rates (immutable history)

Decimals are stored as TEXT so values round-trip exactly. Dates are ISO
strings.

Copyright (c) 2026 Andreas Wagner. All rights reserved.
"""

import os
import sqlite3
import threading
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from lib.utils.logging_config import setup_logger
from modules.tax.tax_events import Lot, LotOrigin, Money

logger = setup_logger(__name__)


def default_data_dir() -> Path:
    env_dir = os.getenv("PORTFOLIO_DATA_DIR")
    if env_dir:
        return Path(env_dir)
    return Path(__file__).parent.parent / "data"


class DatabaseManager:
    """Owns the SQLite connection of one thread."""

    def __init__(self, data_dir: Optional[Path] = None):
        """
        Initialize database manager.

        Args:
            data_dir: Path to data directory (defaults to PORTFOLIO_DATA_DIR or ./data)
        """
        self.data_dir = Path(data_dir) if data_dir is not None else default_data_dir()
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.sqlite_path = self.data_dir / "portfolio.db"

        self._sqlite_conn: Optional[sqlite3.Connection] = None

    @property
    def sqlite(self) -> sqlite3.Connection:
        """Get SQLite connection (creates if needed)."""
        if self._sqlite_conn is None:
            self._sqlite_conn = sqlite3.connect(str(self.sqlite_path))
            self._sqlite_conn.row_factory = sqlite3.Row
            self.init_schema()
            logger.debug(f"SQLite connection opened: {self.sqlite_path}")
        return self._sqlite_conn

    def query_sqlite(self, sql: str, params: tuple = ()) -> List[Dict[str, Any]]:
        """Execute a query and return rows as dictionaries."""
        cursor = self.sqlite.execute(sql, params)
        columns = [desc[0] for desc in cursor.description] if cursor.description else []
        return [dict(zip(columns, row)) for row in cursor.fetchall()]

    def execute_sqlite(self, sql: str, params: tuple = ()) -> int:
        """Execute a statement (INSERT, UPDATE, DELETE) and commit."""
        cursor = self.sqlite.execute(sql, params)
        self.sqlite.commit()
        return cursor.rowcount

    def init_schema(self):
        schema_sql = """
        CREATE TABLE IF NOT EXISTS lot_snapshots (
            portfolio TEXT NOT NULL,
            lot_id TEXT NOT NULL,
            symbol TEXT NOT NULL,
            quantity TEXT NOT NULL,
            unit_cost TEXT NOT NULL,
            currency TEXT NOT NULL,
            acquisition_date TEXT NOT NULL,
            settlement_date TEXT NOT NULL,
            sequence_no INTEGER NOT NULL,
            origin TEXT NOT NULL,
            commission TEXT NOT NULL,
            commission_currency TEXT NOT NULL,
            parent_lot_id TEXT,
            PRIMARY KEY (portfolio, lot_id)
        );

        CREATE INDEX IF NOT EXISTS idx_lot_snapshots_symbol ON lot_snapshots(portfolio, symbol);

        CREATE TABLE IF NOT EXISTS fx_rates_ecb (
            from_curr TEXT NOT NULL,
            to_curr TEXT NOT NULL,
            date TEXT NOT NULL,
            rate TEXT NOT NULL,
            source TEXT DEFAULT 'ECB',
            fetched_at TEXT DEFAULT CURRENT_TIMESTAMP,
            PRIMARY KEY (from_curr, to_curr, date)
        );
        """
        self._sqlite_conn.executescript(schema_sql)
        self._sqlite_conn.commit()

    # --- ECB rate cache ------------------------------------------------------

    def get_cached_rate(self, from_curr: str, to_curr: str, on_date: date) -> Optional[Decimal]:
        rows = self.query_sqlite(
            "SELECT rate FROM fx_rates_ecb WHERE from_curr = ? AND to_curr = ? AND date = ?",
            (from_curr, to_curr, on_date.isoformat()),
        )
        return Decimal(rows[0]["rate"]) if rows else None

    def cache_rate(self, from_curr: str, to_curr: str, on_date: date, rate: Decimal):
        self.execute_sqlite(
            "INSERT OR REPLACE INTO fx_rates_ecb (from_curr, to_curr, date, rate) VALUES (?, ?, ?, ?)",
            (from_curr, to_curr, on_date.isoformat(), str(rate)),
        )

    def close(self):
        """Close the database connection."""
        if self._sqlite_conn:
            self._sqlite_conn.close()
            self._sqlite_conn = None
            logger.debug("SQLite connection closed")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


class SnapshotStore:
    """
    Persists the open lots of a portfolio.

    save() replaces the portfolio's rows in one transaction, so a reader
    sees either the previous snapshot or the new one.
    """

    def __init__(self, db: DatabaseManager):
        self.db = db

    def load(self, portfolio: str) -> List[Lot]:
        rows = self.db.query_sqlite(
            "SELECT * FROM lot_snapshots WHERE portfolio = ? "
            "ORDER BY symbol, acquisition_date, sequence_no, lot_id",
            (portfolio,),
        )
        lots = [
            Lot(
                lot_id=row["lot_id"],
                symbol=row["symbol"],
                quantity=Decimal(row["quantity"]),
                unit_cost=Money(Decimal(row["unit_cost"]), row["currency"]),
                acquisition_date=date.fromisoformat(row["acquisition_date"]),
                settlement_date=date.fromisoformat(row["settlement_date"]),
                sequence_no=row["sequence_no"],
                origin=LotOrigin(row["origin"]),
                commission=Money(Decimal(row["commission"]), row["commission_currency"]),
                parent_lot_id=row["parent_lot_id"],
            )
            for row in rows
        ]
        logger.debug(f"Loaded {len(lots)} lot(s) for portfolio {portfolio}")
        return lots

    def save(self, portfolio: str, lots: Iterable[Lot]):
        rows = [
            (
                portfolio,
                lot.lot_id,
                lot.symbol,
                str(lot.quantity),
                str(lot.unit_cost.amount),
                lot.unit_cost.currency,
                lot.acquisition_date.isoformat(),
                lot.settlement_date.isoformat(),
                lot.sequence_no,
                lot.origin.value,
                str(lot.commission.amount),
                lot.commission.currency,
                lot.parent_lot_id,
            )
            for lot in lots
        ]
        conn = self.db.sqlite
        with conn:
            conn.execute("DELETE FROM lot_snapshots WHERE portfolio = ?", (portfolio,))
            conn.executemany(
                "INSERT INTO lot_snapshots VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                rows,
            )
        logger.info(f"Saved snapshot of {len(rows)} lot(s) for portfolio {portfolio}")

    def portfolios(self) -> List[str]:
        rows = self.db.query_sqlite("SELECT DISTINCT portfolio FROM lot_snapshots ORDER BY portfolio")
        return [row["portfolio"] for row in rows]


# Thread-local storage for database connections
_thread_local = threading.local()


def get_db(data_dir: Optional[Path] = None) -> DatabaseManager:
    """
    Get thread-local DatabaseManager instance.

    Each thread gets its own connection to avoid SQLite threading issues.
    """
    if not hasattr(_thread_local, 'db_instance'):
        _thread_local.db_instance = DatabaseManager(data_dir)
    return _thread_local.db_instance
