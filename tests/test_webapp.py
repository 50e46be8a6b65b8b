import io
import json

import pytest
from conftest import build_legacy_db, simple_expenses

from finance_tracker.config import AppConfig
from finance_tracker.storage import MemoryStorage
from finance_tracker.webapp import MigrationJobs, create_app


@pytest.fixture
def app():
    app = create_app(storage=MemoryStorage())
    app.config.update(TESTING=True)
    yield app
    app.extensions["finance_tracker"]["engine"].close()


@pytest.fixture
def client(app):
    return app.test_client()


def test_lists_seeded_accounts(client):
    response = client.get("/api/accounts")
    assert response.status_code == 200
    assert [a["id"] for a in response.get_json()] == ["acc_1", "acc_2", "acc_3"]


def test_create_account_validates_input(client):
    response = client.post("/api/accounts", json={"name": "", "type": "piggy"})
    assert response.status_code == 400
    errors = response.get_json()["errors"]
    assert "Account name is required." in errors
    assert "Currency is required." in errors
    assert any(e.startswith("Account type must be one of") for e in errors)


def test_account_lifecycle(client):
    created = client.post("/api/accounts", json={"name": "Travel", "type": "savings", "currency": "EUR"})
    assert created.status_code == 201
    account_id = created.get_json()["id"]

    patched = client.patch(f"/api/accounts/{account_id}", json={"name": "Trips"})
    assert patched.get_json()["name"] == "Trips"

    assert client.delete(f"/api/accounts/{account_id}").status_code == 204
    assert client.get(f"/api/accounts/{account_id}").status_code == 404


def test_transaction_flow_updates_balance(client):
    created = client.post(
        "/api/transactions",
        json={
            "accountId": "acc_1",
            "categoryId": "cat_1",
            "type": "income",
            "amount": "250.75",
            "date": "2024-03-01",
            "description": "Pay",
        },
    )
    assert created.status_code == 201
    txn = created.get_json()
    assert txn["amount"] == 250.75
    assert txn["date"] == "2024-03-01T00:00:00.000Z"

    account = client.get("/api/accounts/acc_1").get_json()
    assert account["balance"] == 250.75

    listed = client.get("/api/transactions?accountId=acc_1&startDate=2024-01-01").get_json()
    assert [t["id"] for t in listed] == [txn["id"]]
    assert client.get("/api/transactions?accountId=acc_2").get_json() == []


def test_transaction_validation(client):
    response = client.post(
        "/api/transactions",
        json={"accountId": "acc_1", "categoryId": "cat_1", "type": "gift", "amount": -3, "date": "soon"},
    )
    assert response.status_code == 400
    errors = response.get_json()["errors"]
    assert any(e.startswith("Transaction type must be one of") for e in errors)
    assert "Amount cannot be negative." in errors
    assert any(e.startswith("Date must be an ISO date") for e in errors)

    bad_filter = client.get("/api/transactions?startDate=yesterday")
    assert bad_filter.status_code == 400


def test_partial_update_rejects_null_required_fields(client):
    created = client.post(
        "/api/transactions",
        json={"accountId": "acc_1", "categoryId": "cat_4", "type": "expense", "amount": 7, "date": "2024-03-01"},
    ).get_json()

    response = client.patch(f"/api/transactions/{created['id']}", json={"date": None, "amount": None})
    assert response.status_code == 400
    errors = response.get_json()["errors"]
    assert "Date is required." in errors
    assert "Amount is required." in errors
    assert client.get(f"/api/transactions/{created['id']}").get_json()["date"] == "2024-03-01T00:00:00.000Z"

    assert client.patch("/api/accounts/acc_1", json={"name": None}).status_code == 400
    assert client.patch("/api/budgets/missing", json={"period": None}).status_code == 400

    described = client.patch(f"/api/transactions/{created['id']}", json={"description": None})
    assert described.status_code == 200
    assert described.get_json()["description"] == ""


def test_conflicting_delete_returns_409(client):
    client.post(
        "/api/transactions",
        json={"accountId": "acc_1", "categoryId": "cat_1", "type": "income", "amount": 1, "date": "2024-03-01"},
    )
    response = client.delete("/api/categories/cat_1")
    assert response.status_code == 409
    assert client.get("/api/categories/cat_1").status_code == 200


def test_categories_filtered_by_type(client):
    income = client.get("/api/categories?type=income").get_json()
    assert {c["name"] for c in income} == {"Salary", "Bonus", "Freelance"}
    assert len(client.get("/api/categories").get_json()) == 10


def test_budget_lifecycle(client):
    created = client.post(
        "/api/budgets",
        json={"name": "Food", "categoryId": "cat_4", "limitAmount": 300, "period": "monthly"},
    )
    assert created.status_code == 201
    budget_id = created.get_json()["id"]

    patched = client.patch(f"/api/budgets/{budget_id}", json={"period": "yearly"})
    assert patched.get_json()["period"] == "yearly"
    assert client.patch(f"/api/budgets/{budget_id}", json={"period": "daily"}).status_code == 400


def test_currencies(client):
    codes = [c["code"] for c in client.get("/api/currencies").get_json()]
    assert "PHP" in codes
    assert "USD" in codes


def test_export_import_and_clear(client):
    exported = client.get("/api/export")
    assert exported.status_code == 200
    assert "attachment" in exported.headers["Content-Disposition"]
    document = exported.get_data(as_text=True)

    assert client.post("/api/clear", json={}).status_code == 400
    assert client.post("/api/clear", json={"confirm": True}).status_code == 200
    assert client.get("/api/accounts").get_json() == []

    restored = client.post(
        "/api/import",
        data={"file": (io.BytesIO(document.encode("utf-8")), "export.json")},
        content_type="multipart/form-data",
    )
    assert restored.status_code == 200
    assert len(client.get("/api/accounts").get_json()) == 3

    rejected = client.post("/api/import", data="nope", content_type="application/json")
    assert rejected.status_code == 400
    assert len(client.get("/api/accounts").get_json()) == 3


def _upload(client, data, confirm="true", filename="backup.sqlite"):
    return client.post(
        "/api/migrations",
        data={"file": (io.BytesIO(data), filename), "confirm": confirm},
        content_type="multipart/form-data",
    )


def test_migration_requires_confirmation(client):
    response = _upload(client, build_legacy_db(), confirm="false")
    assert response.status_code == 400
    assert "must be confirmed" in json.dumps(response.get_json())


def test_migration_job_runs_to_completion(app, client):
    data = build_legacy_db(
        [{"uid": "a1", "name": "Imported", "currency": "USD"}],
        [{"uid": "c1", "name": "Food", "type": 1}],
        simple_expenses(120),
    )
    started = _upload(client, data)
    assert started.status_code == 202
    job_id = started.get_json()["id"]

    job = app.extensions["finance_tracker"]["jobs"].get(job_id)
    job.thread.join(10)

    status = client.get(f"/api/migrations/{job_id}").get_json()
    assert status["running"] is False
    assert status["result"]["status"] == "succeeded"
    assert status["result"]["stats"]["transactions"] == 120
    assert status["progress"]["total"] == 120

    assert [a["name"] for a in client.get("/api/accounts").get_json()] == ["Imported"]


def test_migration_of_invalid_file_reports_failure(app, client):
    started = _upload(client, b"not a database at all", filename="backup.db")
    job = app.extensions["finance_tracker"]["jobs"].get(started.get_json()["id"])
    job.thread.join(10)

    status = client.get(f"/api/migrations/{job.id}").get_json()
    assert status["result"]["status"] == "failed"
    assert "valid SQLite database" in status["result"]["message"]


def test_unknown_migration_job(client):
    assert client.get("/api/migrations/nope").status_code == 404
    assert client.post("/api/migrations/nope/cancel").status_code == 404


def test_only_recent_finished_jobs_are_kept(repo):
    jobs = MigrationJobs(repo, AppConfig(), keep=1)

    def finished(job):
        job.thread.join(10)
        assert job.result.status == "failed"
        return job

    first = finished(jobs.start("notes.txt", b"not a database"))
    second = finished(jobs.start("notes.txt", b"not a database"))
    assert jobs.get(first.id) is first

    third = finished(jobs.start("notes.txt", b"not a database"))
    assert jobs.get(first.id) is None
    assert jobs.get(second.id) is second
    assert jobs.get(third.id) is third
