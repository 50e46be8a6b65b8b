import json
import sqlite3

import pytest

from finance_tracker.models import TransactionSpec
from finance_tracker.storage import CLEARED_KEY


def test_account_crud(repo):
    account = repo.create_account(name="Wallet", type="checking", currency="USD")
    assert account.id.startswith("acc_")
    assert account.balance == 0.0

    updated = repo.update_account(account.id, name="Main wallet", currency="EUR")
    assert updated.name == "Main wallet"
    assert updated.currency == "EUR"
    assert updated.type == "checking"
    assert updated.updated_at is not None

    repo.delete_account(account.id)
    assert repo.get_account(account.id) is None
    assert repo.update_account(account.id, name="gone") is None


def test_update_rejects_unknown_fields(repo, account_and_category):
    account, _ = account_and_category
    with pytest.raises(ValueError):
        repo.update_account(account.id, colour="red")


def test_categories_by_type(repo):
    repo.create_category(name="Salary", type="income")
    repo.create_category(name="Rent", type="expense")
    repo.create_category(name="Food", type="expense", icon="🍔")

    assert sorted(c.name for c in repo.get_categories_by_type("expense")) == ["Food", "Rent"]
    assert [c.name for c in repo.get_categories_by_type("income")] == ["Salary"]

    rent = repo.get_categories_by_type("expense")[0]
    renamed = repo.update_category(rent.id, name="Housing", color="#000000")
    assert renamed.name == "Housing"
    assert renamed.color == "#000000"


def test_transaction_crud(repo, account_and_category):
    account, category = account_and_category
    txn = repo.create_transaction(account.id, category.id, "expense", 12.5, "2024-03-01", description="Lunch")
    assert txn.id.startswith("txn_")
    assert txn.date == "2024-03-01T00:00:00.000Z"
    assert txn.description == "Lunch"
    assert txn.to_account_id is None

    changed = repo.update_transaction(txn.id, description="Dinner", date="2024-03-02T19:30:00Z")
    assert changed.description == "Dinner"
    assert changed.date == "2024-03-02T19:30:00.000Z"
    assert changed.updated_at is not None

    repo.delete_transaction(txn.id)
    assert repo.get_transaction(txn.id) is None
    assert repo.count_transactions() == 0


def test_cached_balance_compensation(repo, account_and_category):
    account, category = account_and_category
    txn = repo.create_transaction(account.id, category.id, "income", 100, "2024-03-01")
    assert repo.stored_balance(account.id) == 100

    # Updates leave the cached balance alone.
    repo.update_transaction(txn.id, amount=50)
    assert repo.stored_balance(account.id) == 100

    repo.delete_transaction(txn.id)
    assert repo.stored_balance(account.id) == 50


def test_transfer_credits_destination_but_delete_reverses_source_only(repo, account_and_category):
    source, category = account_and_category
    destination = repo.create_account(name="Savings", type="savings", currency="USD")

    txn = repo.create_transaction(
        source.id, category.id, "expense", 30, "2024-03-01", to_account_id=destination.id
    )
    assert txn.to_account_id == destination.id
    assert repo.stored_balance(source.id) == -30
    assert repo.stored_balance(destination.id) == 30

    repo.delete_transaction(txn.id)
    assert repo.stored_balance(source.id) == 0
    assert repo.stored_balance(destination.id) == 30


def test_create_transaction_with_unknown_account_is_rejected(repo, account_and_category):
    _, category = account_and_category
    with pytest.raises(sqlite3.IntegrityError):
        repo.create_transaction("acc_missing", category.id, "expense", 1, "2024-03-01")
    assert repo.count_transactions() == 0


def test_delete_category_in_use_is_rejected(repo, account_and_category):
    account, category = account_and_category
    repo.create_transaction(account.id, category.id, "expense", 1, "2024-03-01")
    with pytest.raises(sqlite3.IntegrityError):
        repo.delete_category(category.id)
    assert repo.get_category(category.id) is not None


def test_bulk_insert_applies_net_delta(repo, account_and_category):
    account, category = account_and_category
    repo.update_account(account.id, balance=500)
    specs = [
        TransactionSpec(account.id, category.id, "income", 10, "2024-03-01"),
        TransactionSpec(account.id, category.id, "expense", 3, "2024-03-02", description="Coffee"),
    ]
    assert repo.create_transactions_bulk(specs) == 2
    assert repo.count_transactions() == 2
    # Base is the recomputed balance (no prior transactions), not the cached 500.
    assert repo.stored_balance(account.id) == 7
    assert repo.get_account(account.id).balance == 7


def test_bulk_insert_does_not_credit_destination(repo, account_and_category):
    source, category = account_and_category
    destination = repo.create_account(name="Savings", type="savings", currency="USD")
    spec = TransactionSpec(source.id, category.id, "expense", 40, "2024-03-01", to_account_id=destination.id)

    assert repo.create_transactions_bulk([spec]) == 1
    assert repo.stored_balance(source.id) == -40
    assert repo.stored_balance(destination.id) == 0


def test_bulk_insert_is_all_or_nothing(repo, account_and_category):
    account, category = account_and_category
    specs = [
        TransactionSpec(account.id, category.id, "expense", 1, "2024-03-01"),
        TransactionSpec(account.id, "cat_missing", "expense", 2, "2024-03-01"),
    ]
    with pytest.raises(sqlite3.IntegrityError):
        repo.create_transactions_bulk(specs)
    assert repo.count_transactions() == 0
    assert repo.stored_balance(account.id) == 0


def test_bulk_insert_of_nothing(repo):
    assert repo.create_transactions_bulk([]) == 0


def test_budget_crud(repo, account_and_category):
    _, category = account_and_category
    budget = repo.create_budget(name="Food", category_id=category.id, limit_amount=300, period="monthly")
    assert budget.id.startswith("bud_")
    assert budget.start_date.endswith("Z")

    updated = repo.update_budget(budget.id, limit_amount=450, period="yearly")
    assert updated.limit_amount == 450
    assert updated.period == "yearly"
    assert [b.id for b in repo.get_budgets()] == [budget.id]

    repo.delete_budget(budget.id)
    assert repo.get_budgets() == []


def test_clear_all_sets_flag_and_create_lifts_it(repo, storage, account_and_category):
    account, category = account_and_category
    repo.create_transaction(account.id, category.id, "expense", 5, "2024-03-01")
    repo.clear_all()

    assert repo.counts() == {"transactions": 0, "budgets": 0, "categories": 0, "accounts": 0}
    assert storage.get(CLEARED_KEY) == "true"

    repo.create_category(name="Fresh", type="income")
    assert storage.get(CLEARED_KEY) is None


def _populate(repo):
    checking = repo.create_account(name="Checking", type="checking", currency="USD")
    savings = repo.create_account(name="Savings", type="savings", currency="PHP")
    food = repo.create_category(name="Food", type="expense", icon="🍔", color="#ef4444")
    salary = repo.create_category(name="Salary", type="income")
    repo.create_transaction(checking.id, salary.id, "income", 1000, "2024-01-31")
    repo.create_transaction(checking.id, food.id, "expense", 25.5, "2024-02-01", description="Pizza")
    repo.create_transaction(checking.id, food.id, "expense", 100, "2024-02-02", to_account_id=savings.id)
    repo.create_transaction(checking.id, food.id, "expense", 9, "2099-01-01", description="Far future")
    repo.create_budget(name="Food budget", category_id=food.id, limit_amount=200, period="monthly")


def test_export_contains_all_rows_including_future_ones(repo):
    _populate(repo)
    exported = json.loads(repo.export_data())

    assert set(exported) == {"accounts", "categories", "transactions", "budgets"}
    assert len(exported["transactions"]) == 4
    assert exported["transactions"][0]["description"] == "Far future"
    assert {"accountId", "categoryId", "toAccountId", "createdAt"} <= set(exported["transactions"][0])
    assert exported["budgets"][0]["limitAmount"] == 200


def test_export_then_import_restores_everything(repo):
    _populate(repo)
    text = repo.export_data()
    before = json.loads(text)

    repo.clear_all()
    assert repo.import_data(text) is True
    after = json.loads(repo.export_data())

    for key in ("accounts", "categories", "transactions", "budgets"):
        assert {row["id"]: row for row in after[key]} == {row["id"]: row for row in before[key]}
    assert repo.engine.cleared is False


def test_import_treats_missing_arrays_as_empty(repo):
    _populate(repo)
    payload = {"accounts": [{"id": "acc_x", "name": "Only", "type": "checking", "balance": 0, "currency": "USD"}]}

    assert repo.import_data(json.dumps(payload)) is True
    assert [a.id for a in repo.get_accounts()] == ["acc_x"]
    assert repo.counts()["transactions"] == 0
    assert repo.get_categories() == []


def test_import_accepts_legacy_budget_limit_key(repo):
    payload = {
        "categories": [{"id": "c1", "name": "Food", "type": "expense"}],
        "budgets": [{"id": "b1", "name": "Food", "categoryId": "c1", "limit": 150, "period": "monthly"}],
    }
    assert repo.import_data(json.dumps(payload)) is True
    assert repo.get_budget("b1").limit_amount == 150


@pytest.mark.parametrize(
    "text",
    [
        "not json at all",
        "[1, 2, 3]",
        json.dumps({"accounts": [{"name": "no id"}]}),
        json.dumps(
            {
                "categories": [{"id": "c1", "name": "Food", "type": "expense"}],
                "transactions": [
                    {
                        "id": "t1",
                        "accountId": "acc_missing",
                        "categoryId": "c1",
                        "type": "expense",
                        "amount": 1,
                        "date": "2024-01-01T00:00:00.000Z",
                    }
                ],
            }
        ),
    ],
)
def test_failed_import_keeps_previous_data(repo, text):
    _populate(repo)
    before = repo.export_data()

    assert repo.import_data(text) is False
    assert repo.export_data() == before
