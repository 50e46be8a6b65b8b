"""CRUD operations for accounts, categories, transactions and budgets.

Transaction writes keep the cached ``accounts.balance`` column in step:
create and delete compensate it, update does not (reads recompute balances
anyway). Every ``create_*`` call also lifts the "cleared" flag so demo data is
never re-seeded once the user has real data again.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .dates import DateLike, to_iso, utc_now
from .db import TABLES, StoreEngine
from .models import Account, Budget, Category, Transaction, TransactionSpec, camel

logger = logging.getLogger(__name__)

_INSERT_TRANSACTION = """
    INSERT INTO transactions (id, accountId, categoryId, type, amount, description, date, toAccountId)
    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
"""


def _signed_amount(txn_type: str, amount: float) -> float:
    if txn_type == "income":
        return amount
    if txn_type == "expense":
        return -amount
    return 0.0


def _merge(row: Mapping[str, Any], changes: Mapping[str, Any], allowed: Iterable[str]) -> Dict[str, Any]:
    allowed = tuple(allowed)
    unknown = set(changes) - set(allowed)
    if unknown:
        raise ValueError(f"Cannot update field(s): {', '.join(sorted(unknown))}")
    merged = {name: row[camel(name)] for name in allowed}
    merged.update(changes)
    return merged


class Repository:
    def __init__(self, engine: StoreEngine) -> None:
        self.engine = engine

    def _ready(self) -> bool:
        return self.engine.wait_until_ready()

    # ----- accounts --------------------------------------------------------

    def get_accounts(self) -> List[Account]:
        return [Account.from_row(row) for row in self.engine.get_accounts()]

    def get_account(self, account_id: str) -> Optional[Account]:
        row = self.engine.fetch_one("SELECT * FROM accounts WHERE id = ?", (account_id,))
        if row is None:
            return None
        account = Account.from_row(row)
        account.balance = self.engine.compute_balances().get(account_id, 0.0)
        return account

    def stored_balance(self, account_id: str) -> Optional[float]:
        """The cached balance column, without recomputation."""
        row = self.engine.fetch_one("SELECT balance FROM accounts WHERE id = ?", (account_id,))
        return row["balance"] if row else None

    def create_account(self, name: str, type: str, currency: str, balance: float = 0.0) -> Optional[Account]:
        if not self._ready():
            return None
        self.engine.unmark_cleared()
        account_id = self.engine.ids.new_id("acc")
        self.engine.execute(
            "INSERT INTO accounts (id, name, type, balance, currency) VALUES (?, ?, ?, ?, ?)",
            (account_id, name, type, balance, currency),
        )
        return self.get_account(account_id)

    def update_account(self, account_id: str, **changes: Any) -> Optional[Account]:
        row = self.engine.fetch_one("SELECT * FROM accounts WHERE id = ?", (account_id,))
        if row is None:
            return None
        updated = _merge(row, changes, ("name", "type", "balance", "currency"))
        self.engine.execute(
            """
            UPDATE accounts
            SET name = ?, type = ?, balance = ?, currency = ?, updatedAt = CURRENT_TIMESTAMP
            WHERE id = ?
            """,
            (updated["name"], updated["type"], updated["balance"], updated["currency"], account_id),
        )
        return self.get_account(account_id)

    def delete_account(self, account_id: str) -> None:
        self.engine.execute("DELETE FROM accounts WHERE id = ?", (account_id,))

    # ----- categories ------------------------------------------------------

    def get_categories(self) -> List[Category]:
        return [Category.from_row(row) for row in self.engine.fetch_all("SELECT * FROM categories")]

    def get_categories_by_type(self, category_type: str) -> List[Category]:
        rows = self.engine.fetch_all("SELECT * FROM categories WHERE type = ?", (category_type,))
        return [Category.from_row(row) for row in rows]

    def get_category(self, category_id: str) -> Optional[Category]:
        row = self.engine.fetch_one("SELECT * FROM categories WHERE id = ?", (category_id,))
        return Category.from_row(row) if row else None

    def create_category(
        self,
        name: str,
        type: str,
        icon: Optional[str] = None,
        color: Optional[str] = None,
    ) -> Optional[Category]:
        if not self._ready():
            return None
        self.engine.unmark_cleared()
        category_id = self.engine.ids.new_id("cat")
        self.engine.execute(
            "INSERT INTO categories (id, name, type, icon, color) VALUES (?, ?, ?, ?, ?)",
            (category_id, name, type, icon, color),
        )
        return self.get_category(category_id)

    def update_category(self, category_id: str, **changes: Any) -> Optional[Category]:
        row = self.engine.fetch_one("SELECT * FROM categories WHERE id = ?", (category_id,))
        if row is None:
            return None
        updated = _merge(row, changes, ("name", "type", "icon", "color"))
        self.engine.execute(
            "UPDATE categories SET name = ?, type = ?, icon = ?, color = ? WHERE id = ?",
            (updated["name"], updated["type"], updated["icon"], updated["color"], category_id),
        )
        return self.get_category(category_id)

    def delete_category(self, category_id: str) -> None:
        self.engine.execute("DELETE FROM categories WHERE id = ?", (category_id,))

    # ----- transactions ----------------------------------------------------

    def get_transactions(
        self,
        account_id: Optional[str] = None,
        category_id: Optional[str] = None,
        start_date: Optional[DateLike] = None,
        end_date: Optional[DateLike] = None,
    ) -> List[Transaction]:
        rows = self.engine.get_transactions(
            account_id=account_id,
            category_id=category_id,
            start_date=start_date,
            end_date=end_date,
        )
        return [Transaction.from_row(row) for row in rows]

    def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        row = self.engine.fetch_one("SELECT * FROM transactions WHERE id = ?", (transaction_id,))
        return Transaction.from_row(row) if row else None

    def count_transactions(self) -> int:
        row = self.engine.fetch_one("SELECT COUNT(*) AS count FROM transactions")
        return row["count"] if row else 0

    def create_transaction(
        self,
        account_id: str,
        category_id: str,
        type: str,
        amount: float,
        date: DateLike,
        description: str = "",
        to_account_id: Optional[str] = None,
    ) -> Optional[Transaction]:
        """Insert a transaction and adjust cached balances.

        The source account moves by +amount (income) or -amount (expense). An
        expense with ``to_account_id`` also credits the destination account.
        """
        if not self._ready():
            return None
        self.engine.unmark_cleared()
        transaction_id = self.engine.ids.new_id("txn")
        with self.engine.transaction() as tx:
            tx.execute(
                _INSERT_TRANSACTION,
                (
                    transaction_id,
                    account_id,
                    category_id,
                    type,
                    amount,
                    description or "",
                    to_iso(date),
                    to_account_id or None,
                ),
            )
            tx.execute(
                "UPDATE accounts SET balance = balance + ?, updatedAt = CURRENT_TIMESTAMP WHERE id = ?",
                (_signed_amount(type, amount), account_id),
            )
            if to_account_id and type == "expense":
                tx.execute(
                    "UPDATE accounts SET balance = balance + ?, updatedAt = CURRENT_TIMESTAMP WHERE id = ?",
                    (amount, to_account_id),
                )
        return self.get_transaction(transaction_id)

    def update_transaction(self, transaction_id: str, **changes: Any) -> Optional[Transaction]:
        """Update fields in place. Cached balances are left untouched."""
        row = self.engine.fetch_one("SELECT * FROM transactions WHERE id = ?", (transaction_id,))
        if row is None:
            return None
        updated = _merge(
            row,
            changes,
            ("account_id", "category_id", "type", "amount", "description", "date"),
        )
        self.engine.execute(
            """
            UPDATE transactions
            SET accountId = ?, categoryId = ?, type = ?, amount = ?, description = ?, date = ?,
                updatedAt = CURRENT_TIMESTAMP
            WHERE id = ?
            """,
            (
                updated["account_id"],
                updated["category_id"],
                updated["type"],
                updated["amount"],
                updated["description"] or "",
                to_iso(updated["date"]),
                transaction_id,
            ),
        )
        return self.get_transaction(transaction_id)

    def delete_transaction(self, transaction_id: str) -> None:
        """Delete a transaction, reversing its effect on the source account only."""
        txn = self.get_transaction(transaction_id)
        if txn is None:
            return
        with self.engine.transaction() as tx:
            tx.execute(
                "UPDATE accounts SET balance = balance - ?, updatedAt = CURRENT_TIMESTAMP WHERE id = ?",
                (_signed_amount(txn.type, txn.amount), txn.account_id),
            )
            tx.execute("DELETE FROM transactions WHERE id = ?", (transaction_id,))

    def create_transactions_bulk(self, specs: Iterable[TransactionSpec]) -> int:
        """Insert many transactions in one SQL transaction.

        Cached balances get one net delta per account. Destination accounts of
        transfers are not credited here; callers supply the inbound legs as
        explicit income rows. On any failure nothing is kept and the error is
        re-raised.
        """
        specs = list(specs)
        if not specs or not self._ready():
            return 0

        balances = self.engine.compute_balances()
        deltas: Dict[str, float] = defaultdict(float)
        count = 0
        with self.engine.transaction() as tx:
            for spec in specs:
                tx.execute(
                    _INSERT_TRANSACTION,
                    (
                        self.engine.ids.new_id("txn"),
                        spec.account_id,
                        spec.category_id,
                        spec.type,
                        spec.amount,
                        spec.description or "",
                        to_iso(spec.date),
                        spec.to_account_id or None,
                    ),
                )
                count += 1
                deltas[spec.account_id] += _signed_amount(spec.type, spec.amount)

            for account_id, delta in deltas.items():
                tx.execute(
                    "UPDATE accounts SET balance = ?, updatedAt = CURRENT_TIMESTAMP WHERE id = ?",
                    (balances.get(account_id, 0.0) + delta, account_id),
                )
        return count

    # ----- budgets ---------------------------------------------------------

    def get_budgets(self) -> List[Budget]:
        return [Budget.from_row(row) for row in self.engine.fetch_all("SELECT * FROM budgets")]

    def get_budget(self, budget_id: str) -> Optional[Budget]:
        row = self.engine.fetch_one("SELECT * FROM budgets WHERE id = ?", (budget_id,))
        return Budget.from_row(row) if row else None

    def create_budget(
        self,
        name: str,
        category_id: str,
        limit_amount: float,
        period: str,
        start_date: Optional[DateLike] = None,
    ) -> Optional[Budget]:
        if not self._ready():
            return None
        self.engine.unmark_cleared()
        budget_id = self.engine.ids.new_id("bud")
        self.engine.execute(
            """
            INSERT INTO budgets (id, name, categoryId, limitAmount, period, startDate)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (budget_id, name, category_id, limit_amount, period, to_iso(start_date or utc_now())),
        )
        return self.get_budget(budget_id)

    def update_budget(self, budget_id: str, **changes: Any) -> Optional[Budget]:
        row = self.engine.fetch_one("SELECT * FROM budgets WHERE id = ?", (budget_id,))
        if row is None:
            return None
        updated = _merge(row, changes, ("name", "category_id", "limit_amount", "period", "start_date"))
        self.engine.execute(
            """
            UPDATE budgets SET name = ?, categoryId = ?, limitAmount = ?, period = ?, startDate = ?
            WHERE id = ?
            """,
            (
                updated["name"],
                updated["category_id"],
                updated["limit_amount"],
                updated["period"],
                to_iso(updated["start_date"]) if updated["start_date"] else None,
                budget_id,
            ),
        )
        return self.get_budget(budget_id)

    def delete_budget(self, budget_id: str) -> None:
        self.engine.execute("DELETE FROM budgets WHERE id = ?", (budget_id,))

    # ----- whole-store operations -----------------------------------------

    def counts(self) -> Dict[str, int]:
        counts = {}
        for table in TABLES:
            row = self.engine.fetch_one(f"SELECT COUNT(*) AS count FROM {table}")
            counts[table] = row["count"] if row else 0
        return counts

    def clear_all(self) -> None:
        """Delete every row and set the flag that suppresses demo seeding."""
        if not self._ready():
            return
        with self.engine.transaction() as tx:
            for table in TABLES:
                tx.execute(f"DELETE FROM {table}")
        self.engine.mark_cleared()
        logger.info("Cleared all data")

    def export_data(self) -> str:
        if not self._ready():
            return ""
        transactions = self.engine.fetch_all("SELECT * FROM transactions ORDER BY date DESC")
        payload = {
            "accounts": [a.to_dict() for a in self.get_accounts()],
            "categories": [c.to_dict() for c in self.get_categories()],
            "transactions": [Transaction.from_row(row).to_dict() for row in transactions],
            "budgets": [b.to_dict() for b in self.get_budgets()],
        }
        return json.dumps(payload, indent=2, ensure_ascii=False)

    def import_data(self, data: str) -> bool:
        """Replace all data with an exported JSON document.

        Clearing and inserting happen in one SQL transaction, so a failed
        import leaves the previous data in place. Missing arrays are empty.
        """
        try:
            parsed = json.loads(data)
        except (TypeError, ValueError) as exc:
            logger.warning("Import rejected, not valid JSON: %s", exc)
            return False
        if not isinstance(parsed, dict) or not self._ready():
            return False

        try:
            with self.engine.transaction() as tx:
                for table in TABLES:
                    tx.execute(f"DELETE FROM {table}")
                for acc in parsed.get("accounts") or []:
                    tx.execute(
                        """
                        INSERT INTO accounts (id, name, type, balance, currency, createdAt, updatedAt)
                        VALUES (?, ?, ?, ?, ?, COALESCE(?, CURRENT_TIMESTAMP), ?)
                        """,
                        (
                            acc["id"],
                            acc["name"],
                            acc["type"],
                            acc.get("balance") or 0,
                            acc["currency"],
                            acc.get("createdAt"),
                            acc.get("updatedAt"),
                        ),
                    )
                for cat in parsed.get("categories") or []:
                    tx.execute(
                        """
                        INSERT INTO categories (id, name, type, icon, color, createdAt)
                        VALUES (?, ?, ?, ?, ?, COALESCE(?, CURRENT_TIMESTAMP))
                        """,
                        (cat["id"], cat["name"], cat["type"], cat.get("icon"), cat.get("color"), cat.get("createdAt")),
                    )
                for txn in parsed.get("transactions") or []:
                    tx.execute(
                        """
                        INSERT INTO transactions
                            (id, accountId, categoryId, type, amount, description, date, toAccountId,
                             createdAt, updatedAt)
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?, COALESCE(?, CURRENT_TIMESTAMP), ?)
                        """,
                        (
                            txn["id"],
                            txn["accountId"],
                            txn["categoryId"],
                            txn["type"],
                            txn["amount"],
                            txn.get("description") or "",
                            txn["date"],
                            txn.get("toAccountId"),
                            txn.get("createdAt"),
                            txn.get("updatedAt"),
                        ),
                    )
                for bud in parsed.get("budgets") or []:
                    tx.execute(
                        """
                        INSERT INTO budgets (id, name, categoryId, limitAmount, period, startDate, createdAt)
                        VALUES (?, ?, ?, ?, ?, ?, COALESCE(?, CURRENT_TIMESTAMP))
                        """,
                        (
                            bud["id"],
                            bud["name"],
                            bud["categoryId"],
                            bud.get("limitAmount", bud.get("limit")),
                            bud["period"],
                            bud.get("startDate"),
                            bud.get("createdAt"),
                        ),
                    )
        except (sqlite3.Error, KeyError, TypeError, AttributeError) as exc:
            logger.error("Import failed, previous data kept: %s", exc)
            return False

        self.engine.unmark_cleared()
        logger.info("Imported data: %s", self.counts())
        return True
