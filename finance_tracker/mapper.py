"""Maps rows of a legacy mobile-app database onto this application's entities.

Legacy tables consumed (column names as the legacy app writes them):

    ASSETS     uid, NIC_NAME, currencyUid, ZDATA, groupUid
    ZCATEGORY  uid, NAME, TYPE, C_IS_DEL
    INOUTCOME  uid, assetUid, toAssetUid, ctgUid, ZMONEY, ZDATE, DO_TYPE, ZCONTENT
    BUDGET     uid, targetUid, PERIOD_TYPE, IS_DEL

Legacy ``DO_TYPE`` codes: 0 income, 1 expense, 3 transfer out, 4 transfer in.
"""

from __future__ import annotations

import datetime as dt
import logging
import math
import sqlite3
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from .currency import get_currency_info
from .dates import parse_legacy_date, utc_now
from .models import TransactionSpec
from .repository import Repository
from .transfers import TransferPair, synthesize_transfer

logger = logging.getLogger(__name__)

CREDIT_CARD_GROUP = "2"
TRANSFER_OUT = "3"
TRANSFER_IN = "4"

_TYPE_BY_CODE = {"0": "income", "1": "expense", TRANSFER_OUT: "expense", TRANSFER_IN: "income"}

LEGACY_CATEGORY_ICON = "📁"
CATEGORY_COLORS = {"income": "#10b981", "expense": "#ef4444"}


@dataclass
class TransactionPlan:
    pairs: List[TransferPair] = field(default_factory=list)
    skipped: int = 0
    missing_accounts: Set[str] = field(default_factory=set)
    missing_categories: Set[str] = field(default_factory=set)

    @property
    def leg_count(self) -> int:
        return sum(len(pair.legs()) for pair in self.pairs)


@dataclass
class BudgetSpec:
    category_id: str
    period: str


@dataclass
class BudgetPlan:
    budgets: List[BudgetSpec] = field(default_factory=list)
    skipped: int = 0


def _code(value: Any) -> Optional[str]:
    """Normalize a legacy enumeration value (int, float or text) to text."""
    if value is None:
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


def _amount(value: Any) -> float:
    try:
        amount = abs(float(value))
    except (TypeError, ValueError):
        return 0.0
    return 0.0 if math.isnan(amount) else amount


class LegacySchemaMapper:
    """Creates accounts and categories, then plans transactions and budgets.

    Accounts and categories are written straight through the repository
    because later rows need their new ids. Transactions and budgets are only
    planned here; the migration driver inserts them.
    """

    def __init__(self, legacy: sqlite3.Connection, repository: Repository, now: Optional[dt.datetime] = None) -> None:
        self.legacy = legacy
        self.legacy.row_factory = sqlite3.Row
        self.repository = repository
        self.now = now
        self.account_ids: Dict[str, str] = {}
        self.account_names: Dict[str, str] = {}
        self.category_ids: Dict[str, str] = {}
        self.category_types: Dict[str, str] = {}
        self.transfer_category_id: Optional[str] = None
        self.uncategorized_category_id: Optional[str] = None

    def import_accounts(self) -> int:
        rows = self.legacy.execute(
            "SELECT uid, NIC_NAME, currencyUid, ID, ZDATA, groupUid FROM ASSETS "
            "WHERE uid IS NOT NULL AND ZDATA = '0'"
        ).fetchall()
        created = 0
        for row in rows:
            name = row["NIC_NAME"] or "Unnamed Account"
            currency = get_currency_info(row["currencyUid"])
            account_type = "credit_card" if _code(row["groupUid"]) == CREDIT_CARD_GROUP else "checking"
            try:
                account = self.repository.create_account(
                    name=name, type=account_type, currency=currency.code, balance=0.0
                )
            except sqlite3.Error:
                logger.exception("Failed to create account %s", name)
                continue
            if account is None:
                continue
            self.account_ids[row["uid"]] = account.id
            self.account_names[account.id] = account.name
            created += 1
            logger.info("Created account %s (currency %s)", name, currency.code)
        return created

    def import_categories(self) -> int:
        """Create legacy categories plus the Transfer and Uncategorized fallbacks.

        Returns the number of legacy categories created.
        """
        rows = self.legacy.execute(
            "SELECT uid, NAME, TYPE FROM ZCATEGORY WHERE uid IS NOT NULL AND C_IS_DEL != 1"
        ).fetchall()
        created = 0
        for row in rows:
            category_type = "income" if _code(row["TYPE"]) == "0" else "expense"
            category_id = self._create_category(
                row["NAME"] or "Uncategorized", category_type, LEGACY_CATEGORY_ICON, CATEGORY_COLORS[category_type]
            )
            if category_id is None:
                continue
            self.category_ids[row["uid"]] = category_id
            created += 1

        self.transfer_category_id = self._create_category("Transfer", "expense", "➡️", "#3b82f6")
        self.uncategorized_category_id = self._create_category("Uncategorized", "expense", "📝", "#8b5cf6")
        return created

    def _create_category(self, name: str, category_type: str, icon: str, color: str) -> Optional[str]:
        try:
            category = self.repository.create_category(name=name, type=category_type, icon=icon, color=color)
        except sqlite3.Error:
            logger.exception("Failed to create category %s", name)
            return None
        if category is None:
            return None
        self.category_types[category.id] = category.type
        return category.id

    def map_transactions(self) -> TransactionPlan:
        rows = self.legacy.execute(
            "SELECT uid, assetUid, toAssetUid, ctgUid, ZMONEY, ZDATE, DO_TYPE, ZCONTENT FROM INOUTCOME "
            "WHERE uid IS NOT NULL"
        ).fetchall()
        logger.info("Found %d legacy transactions", len(rows))

        plan = TransactionPlan()
        for row in rows:
            code = _code(row["DO_TYPE"])
            destination_uid = row["toAssetUid"]
            # The inbound half of a transfer is rebuilt from its outbound row.
            if code == TRANSFER_IN and destination_uid and destination_uid in self.account_ids:
                continue

            account_id = self.account_ids.get(row["assetUid"]) if row["assetUid"] else None
            category_id = self.category_ids.get(row["ctgUid"]) if row["ctgUid"] else None
            to_account_id = None
            if code == TRANSFER_OUT and destination_uid:
                to_account_id = self.account_ids.get(destination_uid)

            if not category_id:
                category_id = (
                    self.transfer_category_id
                    if to_account_id and self.transfer_category_id
                    else self.uncategorized_category_id
                )

            if not account_id or not category_id:
                plan.skipped += 1
                if not account_id and row["assetUid"]:
                    plan.missing_accounts.add(row["assetUid"])
                if not category_id and row["ctgUid"]:
                    plan.missing_categories.add(row["ctgUid"])
                continue

            plan.pairs.append(self._build_pair(row, code, account_id, category_id, to_account_id))

        logger.info("Parsed %d transactions (%d skipped)", len(plan.pairs), plan.skipped)
        if plan.missing_accounts:
            logger.warning("Missing accounts: %s", ", ".join(sorted(plan.missing_accounts)))
        if plan.missing_categories:
            logger.warning("Missing categories: %s", ", ".join(sorted(plan.missing_categories)))
        return plan

    def _build_pair(
        self,
        row: sqlite3.Row,
        code: Optional[str],
        account_id: str,
        category_id: str,
        to_account_id: Optional[str],
    ) -> TransferPair:
        amount = _amount(row["ZMONEY"])
        date = parse_legacy_date(row["ZDATE"], default=self.now or utc_now())
        content = row["ZCONTENT"] or ""

        if to_account_id:
            return synthesize_transfer(
                source_id=account_id,
                destination_id=to_account_id,
                category_id=category_id,
                amount=amount,
                date=date,
                content=content,
                source_name=self.account_names.get(account_id),
                destination_name=self.account_names.get(to_account_id),
            )

        txn_type = _TYPE_BY_CODE.get(code) if code is not None else None
        if txn_type is None:
            txn_type = self.category_types.get(category_id, "expense")
        return TransferPair(
            main=TransactionSpec(
                account_id=account_id,
                category_id=category_id,
                type=txn_type,
                amount=amount,
                date=date,
                description=content,
            )
        )

    def map_budgets(self) -> BudgetPlan:
        rows = self.legacy.execute(
            "SELECT uid, targetUid, PERIOD_TYPE FROM BUDGET WHERE uid IS NOT NULL AND IS_DEL != 1"
        ).fetchall()
        plan = BudgetPlan()
        for row in rows:
            category_id = self.category_ids.get(row["targetUid"])
            if not category_id:
                plan.skipped += 1
                logger.warning("Skipped budget %s: missing category %s", row["uid"], row["targetUid"])
                continue
            period = "yearly" if _code(row["PERIOD_TYPE"]) == "1" else "monthly"
            plan.budgets.append(BudgetSpec(category_id=category_id, period=period))
        return plan
