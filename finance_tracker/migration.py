"""One-shot import of a legacy mobile-app database.

The driver validates the upload, opens it as a separate in-memory SQLite
database, wipes the target store, and then recreates accounts, categories,
transactions and budgets. Transactions go in through the repository's bulk
insert in fixed-size batches, one SQL transaction per batch. A failed batch
is logged and recorded; the import carries on with the next one.

Wiping the store is irreversible. Asking the user to confirm is up to the
caller.
"""

from __future__ import annotations

import datetime as dt
import logging
import sqlite3
import threading
import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional

from .config import DEFAULT_BATCH_SIZE, DEFAULT_BUDGET_PLACEHOLDER_LIMIT
from .dates import utc_now
from .mapper import LegacySchemaMapper
from .repository import Repository
from .transfers import TransferPair
from .validator import LegacyFileError, validate_legacy_file

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Migration was cancelled"


class MigrationState(Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    PARSING = "parsing"
    IMPORTING = "importing"
    DONE = "done"
    CANCELLED = "cancelled"
    FAILED = "failed"


class MigrationCancelled(Exception):
    pass


class CancellationToken:
    """Cooperative cancellation flag, safe to set from another thread."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise MigrationCancelled(CANCELLED_MESSAGE)


@dataclass
class Progress:
    current: int
    total: int
    status: str


ProgressCallback = Callable[[Progress], None]


@dataclass
class MigrationStats:
    accounts: int = 0
    categories: int = 0
    transactions: int = 0
    budgets: int = 0


@dataclass
class MigrationReport:
    batches: int = 0
    failed_batches: List[int] = field(default_factory=list)
    skipped_transactions: int = 0
    skipped_budgets: int = 0
    missing_accounts: List[str] = field(default_factory=list)
    missing_categories: List[str] = field(default_factory=list)


@dataclass
class MigrationResult:
    status: str
    message: str
    stats: Optional[MigrationStats] = None
    report: Optional[MigrationReport] = None

    @property
    def success(self) -> bool:
        return self.status == "succeeded"

    @property
    def cancelled(self) -> bool:
        return self.status == "cancelled"

    def to_dict(self) -> Dict:
        return {
            "status": self.status,
            "success": self.success,
            "message": self.message,
            "stats": asdict(self.stats) if self.stats else None,
            "report": asdict(self.report) if self.report else None,
        }


def _decode_text(value: bytes) -> str:
    # Legacy cells are not guaranteed to be valid UTF-8.
    return value.decode("utf-8", "replace")


def open_legacy_database(data: bytes) -> sqlite3.Connection:
    """Load the uploaded bytes into an independent in-memory connection."""
    conn = sqlite3.connect(":memory:")
    conn.text_factory = _decode_text
    try:
        conn.deserialize(data)
        conn.execute("SELECT COUNT(*) FROM sqlite_master").fetchone()
    except sqlite3.Error:
        conn.close()
        raise
    return conn


class MigrationDriver:
    def __init__(
        self,
        repository: Repository,
        batch_size: int = DEFAULT_BATCH_SIZE,
        budget_limit: float = DEFAULT_BUDGET_PLACEHOLDER_LIMIT,
        now: Optional[Callable[[], dt.datetime]] = None,
    ) -> None:
        self.repository = repository
        self.batch_size = batch_size
        self.budget_limit = budget_limit
        self.now = now or utc_now
        self.state = MigrationState.IDLE

    def migrate(
        self,
        filename: str,
        data: bytes,
        on_progress: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> MigrationResult:
        token = cancel_token or CancellationToken()
        stats = MigrationStats()
        report = MigrationReport()
        legacy: Optional[sqlite3.Connection] = None
        try:
            token.raise_if_cancelled()

            self.state = MigrationState.VALIDATING
            validate_legacy_file(filename, data)

            if not self.repository.engine.wait_until_ready():
                self.state = MigrationState.FAILED
                return MigrationResult("failed", "Migration failed: the local database is not available.")

            self.state = MigrationState.PARSING
            legacy = open_legacy_database(data)

            logger.info("Clearing existing data before migration")
            self.repository.clear_all()
            self.repository.engine.ids.reset()

            now = self.now()
            mapper = LegacySchemaMapper(legacy, self.repository, now=now)
            logger.info("Migrating assets (accounts)")
            stats.accounts = mapper.import_accounts()
            logger.info("Migrating categories")
            stats.categories = mapper.import_categories()

            plan = mapper.map_transactions()
            report.skipped_transactions = plan.skipped
            report.missing_accounts = sorted(plan.missing_accounts)
            report.missing_categories = sorted(plan.missing_categories)

            self.state = MigrationState.IMPORTING
            self._import_batches(plan.pairs, stats, report, on_progress, token)

            logger.info("Migrating budgets")
            budget_plan = mapper.map_budgets()
            report.skipped_budgets = budget_plan.skipped
            for spec in budget_plan.budgets:
                try:
                    budget = self.repository.create_budget(
                        name=f"Budget {now.date().isoformat()}",
                        category_id=spec.category_id,
                        limit_amount=self.budget_limit,
                        period=spec.period,
                        start_date=now,
                    )
                except sqlite3.Error:
                    logger.exception("Failed to create budget for category %s", spec.category_id)
                    continue
                if budget is not None:
                    stats.budgets += 1
        except MigrationCancelled:
            self.state = MigrationState.CANCELLED
            logger.info("Migration cancelled (%d transactions imported)", stats.transactions)
            return MigrationResult("cancelled", CANCELLED_MESSAGE, stats, report)
        except LegacyFileError as exc:
            self.state = MigrationState.FAILED
            return MigrationResult("failed", str(exc))
        except (sqlite3.Error, OSError) as exc:
            self.state = MigrationState.FAILED
            logger.exception("Migration error")
            return MigrationResult("failed", f"Migration failed: {exc}", stats, report)
        finally:
            if legacy is not None:
                legacy.close()

        self.state = MigrationState.DONE
        logger.info("Migration completed: %s", asdict(stats))
        return MigrationResult("succeeded", "Migration completed successfully!", stats, report)

    def _import_batches(
        self,
        pairs: List[TransferPair],
        stats: MigrationStats,
        report: MigrationReport,
        on_progress: Optional[ProgressCallback],
        token: CancellationToken,
    ) -> None:
        """Insert planned transactions batch by batch, counting into ``stats``."""
        total = len(pairs)
        batch_count = -(-total // self.batch_size)
        for index, start in enumerate(range(0, total, self.batch_size), start=1):
            token.raise_if_cancelled()

            end = min(start + self.batch_size, total)
            legs = [leg for pair in pairs[start:end] for leg in pair.legs()]
            report.batches += 1
            try:
                stats.transactions += self.repository.create_transactions_bulk(legs)
            except sqlite3.Error:
                report.failed_batches.append(index)
                logger.exception("Failed to create batch %d at index %d", index, start)
            logger.info("Batch %d/%d", index, batch_count)

            if on_progress is not None:
                on_progress(Progress(current=end, total=total, status="Creating transactions..."))
            # Let other threads (progress readers, cancel requests) run.
            time.sleep(0)
