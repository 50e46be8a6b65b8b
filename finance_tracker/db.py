"""SQLite store engine.

Owns the single in-memory SQLite connection, installs and evolves the schema,
and mirrors the whole database to durable storage as a base64 snapshot after
every mutation. Account balances are always recomputed from transactions on
read; the stored ``balance`` column is only a cache.
"""

from __future__ import annotations

import base64
import binascii
import datetime as dt
import logging
import sqlite3
import threading
from contextlib import contextmanager
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Sequence

from .config import DEFAULT_ACCOUNTS, DEFAULT_CATEGORIES
from .dates import DateLike, end_of_current_month, to_iso
from .ids import IdGenerator
from .storage import CLEARED_KEY, SNAPSHOT_KEY, SnapshotStorage

logger = logging.getLogger(__name__)

TRANSACTIONS_TABLE = """CREATE TABLE IF NOT EXISTS transactions (
    id TEXT PRIMARY KEY,
    accountId TEXT NOT NULL,
    categoryId TEXT NOT NULL,
    type TEXT NOT NULL,
    amount REAL NOT NULL,
    description TEXT,
    date DATETIME NOT NULL,
    toAccountId TEXT,
    createdAt DATETIME DEFAULT CURRENT_TIMESTAMP,
    updatedAt DATETIME,
    FOREIGN KEY (accountId) REFERENCES accounts(id),
    FOREIGN KEY (categoryId) REFERENCES categories(id),
    FOREIGN KEY (toAccountId) REFERENCES accounts(id)
);
"""

SCHEMA = """CREATE TABLE IF NOT EXISTS accounts (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    type TEXT NOT NULL,
    balance REAL NOT NULL,
    currency TEXT NOT NULL,
    createdAt DATETIME DEFAULT CURRENT_TIMESTAMP,
    updatedAt DATETIME
);

CREATE TABLE IF NOT EXISTS categories (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    type TEXT NOT NULL,
    icon TEXT,
    color TEXT,
    createdAt DATETIME DEFAULT CURRENT_TIMESTAMP
);

""" + TRANSACTIONS_TABLE + """
CREATE TABLE IF NOT EXISTS budgets (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    categoryId TEXT NOT NULL,
    limitAmount REAL NOT NULL,
    period TEXT NOT NULL,
    startDate DATETIME,
    createdAt DATETIME DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY (categoryId) REFERENCES categories(id)
);
"""

# Tables in an order safe for deletion under foreign-key enforcement.
TABLES = ("transactions", "budgets", "categories", "accounts")


class EngineState(Enum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"
    CLOSED = "closed"


class EngineUnavailable(RuntimeError):
    """Raised when a transaction is opened on an engine that is not ready."""


def _connect() -> sqlite3.Connection:
    conn = sqlite3.connect(":memory:", check_same_thread=False, isolation_level=None)
    conn.row_factory = sqlite3.Row
    return conn


class StoreEngine:
    """The application's relational store.

    Initialization runs once (``start``); every public operation waits for it
    to settle. If initialization fails the engine stays unavailable and reads
    return empty results instead of raising.
    """

    def __init__(
        self,
        storage: SnapshotStorage,
        ids: Optional[IdGenerator] = None,
        seed_defaults: bool = True,
    ) -> None:
        self.storage = storage
        self.ids = ids or IdGenerator()
        self.seed_defaults = seed_defaults
        self.state = EngineState.UNINITIALIZED
        self.fresh = False
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()
        self._start_lock = threading.Lock()
        self._settled = threading.Event()

    # ----- lifecycle -------------------------------------------------------

    def start(self, background: bool = False) -> None:
        with self._start_lock:
            if self.state is not EngineState.UNINITIALIZED:
                return
            self.state = EngineState.LOADING
        if background:
            threading.Thread(target=self._initialize, name="store-engine-init", daemon=True).start()
        else:
            self._initialize()

    def wait_until_ready(self, timeout: Optional[float] = None) -> bool:
        if self.state is EngineState.UNINITIALIZED:
            self.start()
        self._settled.wait(timeout)
        return self.state is EngineState.READY

    @property
    def is_ready(self) -> bool:
        return self.state is EngineState.READY

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
            self.state = EngineState.CLOSED

    def _initialize(self) -> None:
        try:
            with self._lock:
                self._conn = self._load()
                self._seed_defaults()
            self.state = EngineState.READY
            logger.info("Store engine ready (fresh=%s)", self.fresh)
        except Exception:  # noqa: BLE001
            logger.exception("Failed to initialize store engine")
            if self._conn is not None:
                self._conn.close()
            self._conn = None
            self.state = EngineState.FAILED
        finally:
            self._settled.set()

    def _load(self) -> sqlite3.Connection:
        try:
            stored = self.storage.get(SNAPSHOT_KEY)
            conn = self._restore(stored) if stored else None
        except (binascii.Error, UnicodeDecodeError, ValueError, sqlite3.Error) as exc:
            logger.warning("Stored database snapshot is corrupted, creating new database: %s", exc)
            self.storage.remove(SNAPSHOT_KEY)
        else:
            if conn is not None:
                self._upgrade_schema(conn)
                conn.executescript(SCHEMA)
                conn.execute("PRAGMA foreign_keys = ON")
                self.fresh = False
                self._conn = conn
                self.persist()
                return conn

        conn = _connect()
        conn.executescript(SCHEMA)
        conn.execute("PRAGMA foreign_keys = ON")
        self.fresh = True
        self._conn = conn
        self.persist()
        return conn

    @staticmethod
    def _restore(stored: str) -> sqlite3.Connection:
        data = base64.b64decode(stored, validate=True)
        conn = _connect()
        try:
            conn.deserialize(data)
            conn.execute("SELECT COUNT(*) FROM sqlite_master").fetchone()
        except sqlite3.Error:
            conn.close()
            raise
        return conn

    @staticmethod
    def _upgrade_schema(conn: sqlite3.Connection) -> None:
        """Add ``toAccountId`` to snapshots that predate transfers.

        The table is rebuilt because the column carries a foreign key.
        Every other column is copied unchanged; running it twice is a no-op.
        """
        columns = [row["name"] for row in conn.execute("PRAGMA table_info(transactions)")]
        if not columns or "toAccountId" in columns:
            return

        backup = [dict(row) for row in conn.execute("SELECT * FROM transactions")]
        conn.execute("BEGIN")
        try:
            conn.execute("DROP TABLE transactions")
            conn.execute(TRANSACTIONS_TABLE)
            conn.executemany(
                """
                INSERT INTO transactions
                    (id, accountId, categoryId, type, amount, description, date, toAccountId, createdAt, updatedAt)
                VALUES (?, ?, ?, ?, ?, ?, ?, NULL, ?, ?)
                """,
                [
                    (
                        row["id"],
                        row["accountId"],
                        row["categoryId"],
                        row["type"],
                        row["amount"],
                        row.get("description") or "",
                        row["date"],
                        row.get("createdAt"),
                        row.get("updatedAt"),
                    )
                    for row in backup
                ],
            )
            conn.execute("COMMIT")
        except sqlite3.Error:
            conn.execute("ROLLBACK")
            raise
        logger.info("Updated transactions table schema with toAccountId column (%d rows)", len(backup))

    def _seed_defaults(self) -> None:
        if not self.seed_defaults or self.storage.get(CLEARED_KEY):
            return
        conn = self._conn
        count = conn.execute("SELECT COUNT(*) FROM accounts").fetchone()[0]
        if count:
            return
        with self._atomic() as tx:
            tx.executemany(
                "INSERT INTO accounts (id, name, type, balance, currency) VALUES (?, ?, ?, ?, ?)",
                [(a["id"], a["name"], a["type"], a["balance"], a["currency"]) for a in DEFAULT_ACCOUNTS],
            )
            tx.executemany(
                "INSERT OR IGNORE INTO categories (id, name, type, icon, color) VALUES (?, ?, ?, ?, ?)",
                [(c["id"], c["name"], c["type"], c["icon"], c["color"]) for c in DEFAULT_CATEGORIES],
            )
        logger.info("Seeded %d default accounts and %d categories", len(DEFAULT_ACCOUNTS), len(DEFAULT_CATEGORIES))

    # ----- persistence -----------------------------------------------------

    def persist(self) -> None:
        """Write the full database to storage. Failures are logged only."""
        with self._lock:
            if self._conn is None:
                return
            try:
                encoded = base64.b64encode(self._conn.serialize()).decode("ascii")
                self.storage.set(SNAPSHOT_KEY, encoded)
            except (OSError, sqlite3.Error):
                logger.exception("Failed to save database snapshot")

    @property
    def cleared(self) -> bool:
        return bool(self.storage.get(CLEARED_KEY))

    def mark_cleared(self) -> None:
        self.storage.set(CLEARED_KEY, "true")

    def unmark_cleared(self) -> None:
        self.storage.remove(CLEARED_KEY)

    # ----- statements ------------------------------------------------------

    def execute(self, sql: str, params: Sequence[Any] = ()) -> Optional[int]:
        """Run one mutating statement and persist. Returns the row count."""
        if not self.wait_until_ready():
            return None
        with self._lock:
            cursor = self._conn.execute(sql, params)
            self.persist()
            return cursor.rowcount

    def fetch_all(self, sql: str, params: Sequence[Any] = ()) -> List[sqlite3.Row]:
        if not self.wait_until_ready():
            return []
        with self._lock:
            return self._conn.execute(sql, params).fetchall()

    def fetch_one(self, sql: str, params: Sequence[Any] = ()) -> Optional[sqlite3.Row]:
        if not self.wait_until_ready():
            return None
        with self._lock:
            return self._conn.execute(sql, params).fetchone()

    def transaction(self):
        """Run several statements atomically, persisting once at the end.

        Any exception rolls the whole transaction back and propagates.
        """
        if not self.wait_until_ready():
            raise EngineUnavailable("Store engine is not initialized")
        return self._atomic()

    @contextmanager
    def _atomic(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            if self._conn is None:
                raise EngineUnavailable("Store engine is not initialized")
            conn = self._conn
            conn.execute("BEGIN")
            try:
                yield conn
            except BaseException:
                try:
                    conn.execute("ROLLBACK")
                except sqlite3.Error:
                    logger.warning("Rollback failed", exc_info=True)
                raise
            conn.execute("COMMIT")
            self.persist()

    # ----- derived reads ---------------------------------------------------

    def compute_balances(self, now: Optional[dt.datetime] = None) -> Dict[str, float]:
        """Income minus expense per account, up to the end of this month."""
        cutoff = to_iso(end_of_current_month(now))
        rows = self.fetch_all(
            """
            SELECT accountId,
                   SUM(CASE type WHEN 'income' THEN amount WHEN 'expense' THEN -amount ELSE 0 END) AS net
            FROM transactions
            WHERE date <= ?
            GROUP BY accountId
            """,
            (cutoff,),
        )
        return {row["accountId"]: round(row["net"] or 0.0, 2) for row in rows}

    def get_accounts(self, now: Optional[dt.datetime] = None) -> List[Dict[str, Any]]:
        if not self.wait_until_ready():
            return []
        with self._lock:
            rows = self.fetch_all("SELECT * FROM accounts")
            balances = self.compute_balances(now)
        accounts = []
        for row in rows:
            account = dict(row)
            account["balance"] = balances.get(account["id"], 0.0)
            accounts.append(account)
        return accounts

    def get_transactions(
        self,
        account_id: Optional[str] = None,
        category_id: Optional[str] = None,
        start_date: Optional[DateLike] = None,
        end_date: Optional[DateLike] = None,
        now: Optional[dt.datetime] = None,
    ) -> List[Dict[str, Any]]:
        """Filtered transactions, newest first.

        Without ``end_date`` the result stops at the end of the current month,
        so future-dated rows only appear when asked for explicitly.
        """
        query = "SELECT * FROM transactions WHERE 1=1"
        params: List[Any] = []
        if account_id:
            query += " AND accountId = ?"
            params.append(account_id)
        if category_id:
            query += " AND categoryId = ?"
            params.append(category_id)
        if start_date:
            query += " AND date >= ?"
            params.append(to_iso(start_date))
        query += " AND date <= ?"
        params.append(to_iso(end_date) if end_date else to_iso(end_of_current_month(now)))
        query += " ORDER BY date DESC"
        rows = self.fetch_all(query, params)
        logger.debug("get_transactions returned %d rows", len(rows))
        return [dict(row) for row in rows]
