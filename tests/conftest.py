# tests/conftest.py
# Shared fixtures: in-memory storage, a ready engine, and a legacy database builder

import sqlite3
from typing import Dict, Iterable, List, Optional

import pytest

from finance_tracker.db import StoreEngine
from finance_tracker.repository import Repository
from finance_tracker.storage import MemoryStorage

LEGACY_SCHEMA = """
CREATE TABLE ASSETS (uid TEXT, NIC_NAME TEXT, currencyUid TEXT, ID INTEGER, ZDATA TEXT, groupUid TEXT);
CREATE TABLE ZCATEGORY (uid TEXT, NAME TEXT, TYPE INTEGER, C_IS_DEL INTEGER DEFAULT 0);
CREATE TABLE INOUTCOME (
    uid TEXT, assetUid TEXT, toAssetUid TEXT, ctgUid TEXT,
    ZMONEY TEXT, ZDATE TEXT, DO_TYPE TEXT, ZCONTENT TEXT
);
CREATE TABLE BUDGET (uid TEXT, targetUid TEXT, PERIOD_TYPE INTEGER, IS_DEL INTEGER DEFAULT 0);
"""


def build_legacy_db(
    assets: Iterable[Dict] = (),
    categories: Iterable[Dict] = (),
    transactions: Iterable[Dict] = (),
    budgets: Iterable[Dict] = (),
) -> bytes:
    """Create a legacy-format SQLite file in memory and return its bytes."""
    conn = sqlite3.connect(":memory:")
    conn.executescript(LEGACY_SCHEMA)
    for i, a in enumerate(assets, start=1):
        conn.execute(
            "INSERT INTO ASSETS VALUES (?, ?, ?, ?, ?, ?)",
            (a["uid"], a.get("name"), a.get("currency"), i, a.get("zdata", "0"), a.get("group", "1")),
        )
    for c in categories:
        conn.execute(
            "INSERT INTO ZCATEGORY VALUES (?, ?, ?, ?)",
            (c["uid"], c.get("name"), c.get("type", 1), c.get("deleted", 0)),
        )
    for t in transactions:
        conn.execute(
            "INSERT INTO INOUTCOME VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (
                t["uid"],
                t.get("asset"),
                t.get("to_asset"),
                t.get("category"),
                t.get("money", "0"),
                t.get("date"),
                t.get("do_type"),
                t.get("content", ""),
            ),
        )
    for b in budgets:
        conn.execute(
            "INSERT INTO BUDGET VALUES (?, ?, ?, ?)",
            (b["uid"], b.get("target"), b.get("period", 0), b.get("deleted", 0)),
        )
    conn.commit()
    data = conn.serialize()
    conn.close()
    return data


def simple_expenses(count: int, asset: str = "a1", category: str = "c1") -> List[Dict]:
    return [
        {
            "uid": f"t{i}",
            "asset": asset,
            "category": category,
            "money": str(i + 1),
            "date": "2024-03-01T12:00:00Z",
            "do_type": "1",
            "content": f"row {i}",
        }
        for i in range(count)
    ]


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def engine(storage):
    engine = StoreEngine(storage, seed_defaults=False)
    engine.start()
    yield engine
    engine.close()


@pytest.fixture
def repo(engine):
    return Repository(engine)


@pytest.fixture
def account_and_category(repo):
    account = repo.create_account(name="Wallet", type="checking", currency="USD")
    category = repo.create_category(name="Food", type="expense", icon="🍔", color="#ef4444")
    return account, category


@pytest.fixture
def legacy_db():
    return build_legacy_db


def open_engine(storage, seed_defaults: bool = True, ids: Optional[object] = None) -> StoreEngine:
    engine = StoreEngine(storage, ids=ids, seed_defaults=seed_defaults)
    engine.start()
    return engine
