"""Builds both legs of a transfer between two accounts."""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from typing import List, Optional

from .models import TransactionSpec


@dataclass
class TransferPair:
    """A main transaction plus, for transfers, its inbound leg."""

    main: TransactionSpec
    reverse: Optional[TransactionSpec] = None

    def legs(self) -> List[TransactionSpec]:
        return [self.main] if self.reverse is None else [self.main, self.reverse]


def synthesize_transfer(
    source_id: str,
    destination_id: str,
    category_id: str,
    amount: float,
    date: dt.datetime,
    content: str = "",
    source_name: Optional[str] = None,
    destination_name: Optional[str] = None,
) -> TransferPair:
    """Expense on the source, matching income on the destination.

    Both legs share amount, date and category, and point at each other
    through ``to_account_id``.
    """
    content = content or ""
    main = TransactionSpec(
        account_id=source_id,
        category_id=category_id,
        type="expense",
        amount=amount,
        date=date,
        description=f"Transfer To {destination_name or destination_id}: {content}",
        to_account_id=destination_id,
    )
    reverse = TransactionSpec(
        account_id=destination_id,
        category_id=category_id,
        type="income",
        amount=amount,
        date=date,
        description=f"Transfer From {source_name or source_id}: {content}",
        to_account_id=source_id,
    )
    return TransferPair(main=main, reverse=reverse)
