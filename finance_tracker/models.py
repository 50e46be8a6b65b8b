"""Entity records returned by the repository.

Column names in the database (and keys in exported JSON) are camelCase;
attributes here are snake_case.
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, fields
from typing import Any, Dict, Mapping, Optional, Union

ACCOUNT_TYPES = ("checking", "savings", "credit_card", "investment")
CATEGORY_TYPES = ("income", "expense", "transfer", "savings", "credit_card")
TRANSACTION_TYPES = CATEGORY_TYPES
BUDGET_PERIODS = ("weekly", "monthly", "yearly")


def camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


class _Record:
    @classmethod
    def from_row(cls, row: Mapping[str, Any]):
        keys = set(row.keys())
        values = {}
        for f in fields(cls):
            column = camel(f.name)
            if column in keys:
                values[f.name] = row[column]
        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        return {camel(f.name): getattr(self, f.name) for f in fields(self)}


@dataclass
class Account(_Record):
    id: str
    name: str
    type: str
    balance: float
    currency: str
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


@dataclass
class Category(_Record):
    id: str
    name: str
    type: str
    icon: Optional[str] = None
    color: Optional[str] = None
    created_at: Optional[str] = None


@dataclass
class Transaction(_Record):
    id: str
    account_id: str
    category_id: str
    type: str
    amount: float
    date: str
    description: str = ""
    to_account_id: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


@dataclass
class Budget(_Record):
    id: str
    name: str
    category_id: str
    limit_amount: float
    period: str
    start_date: Optional[str] = None
    created_at: Optional[str] = None


@dataclass
class TransactionSpec:
    """A transaction waiting to be inserted, before it has an id."""

    account_id: str
    category_id: str
    type: str
    amount: float
    date: Union[dt.datetime, str]
    description: str = ""
    to_account_id: Optional[str] = None
