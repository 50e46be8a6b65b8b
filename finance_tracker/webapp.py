"""Flask JSON API for the finance tracker."""

from __future__ import annotations

import logging
import sqlite3
import threading
import uuid
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

from flask import Flask, Response, current_app, jsonify, request
from werkzeug.utils import secure_filename

from .config import AppConfig
from .currency import available_currencies
from .dates import parse_iso
from .db import StoreEngine
from .migration import CancellationToken, MigrationDriver, MigrationResult, Progress
from .models import ACCOUNT_TYPES, BUDGET_PERIODS, CATEGORY_TYPES, TRANSACTION_TYPES
from .repository import Repository
from .storage import FileStorage, SnapshotStorage

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
MAX_FINISHED_JOBS = 20

# camelCase request keys -> repository keyword arguments
ACCOUNT_FIELDS = {"name": "name", "type": "type", "currency": "currency", "balance": "balance"}
CATEGORY_FIELDS = {"name": "name", "type": "type", "icon": "icon", "color": "color"}
TRANSACTION_FIELDS = {
    "accountId": "account_id",
    "categoryId": "category_id",
    "type": "type",
    "amount": "amount",
    "description": "description",
    "date": "date",
    "toAccountId": "to_account_id",
}
BUDGET_FIELDS = {
    "name": "name",
    "categoryId": "category_id",
    "limitAmount": "limit_amount",
    "period": "period",
    "startDate": "start_date",
}


class MigrationJob:
    """A migration running on a background thread."""

    def __init__(self, filename: str) -> None:
        self.id = uuid.uuid4().hex
        self.filename = filename
        self.token = CancellationToken()
        self.progress = Progress(current=0, total=0, status="Preparing migration...")
        self.result: Optional[MigrationResult] = None
        self.thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self.result is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "filename": self.filename,
            "running": self.running,
            "progress": {
                "current": self.progress.current,
                "total": self.progress.total,
                "status": self.progress.status,
            },
            "result": self.result.to_dict() if self.result else None,
        }


class MigrationJobs:
    """Running and recently finished migrations, oldest finished dropped first."""

    def __init__(self, repository: Repository, cfg: AppConfig, keep: int = MAX_FINISHED_JOBS) -> None:
        self.repository = repository
        self.cfg = cfg
        self.keep = keep
        self._jobs: Dict[str, MigrationJob] = {}
        self._lock = threading.Lock()

    def get(self, job_id: str) -> Optional[MigrationJob]:
        return self._jobs.get(job_id)

    def active(self) -> Optional[MigrationJob]:
        return next((job for job in self._jobs.values() if job.running), None)

    def start(self, filename: str, data: bytes) -> Optional[MigrationJob]:
        """Start a migration unless one is already running."""
        with self._lock:
            if self.active() is not None:
                return None
            self._prune()
            job = MigrationJob(filename)
            self._jobs[job.id] = job

        def on_progress(progress: Progress) -> None:
            job.progress = progress

        def run() -> None:
            driver = MigrationDriver(
                self.repository,
                batch_size=self.cfg.batch_size,
                budget_limit=self.cfg.budget_placeholder_limit,
            )
            try:
                result = driver.migrate(filename, data, on_progress=on_progress, cancel_token=job.token)
            except Exception as exc:  # noqa: BLE001
                logger.exception("Migration %s crashed", job.id)
                result = MigrationResult("failed", f"Migration failed: {exc}")
            job.progress = Progress(job.progress.current, job.progress.total, result.message)
            job.result = result

        job.thread = threading.Thread(target=run, name=f"migration-{job.id[:8]}", daemon=True)
        job.thread.start()
        return job

    def _prune(self) -> None:
        finished = [job_id for job_id, job in self._jobs.items() if not job.running]
        for job_id in finished[: max(0, len(finished) - self.keep)]:
            del self._jobs[job_id]


def _repo() -> Repository:
    return current_app.extensions["finance_tracker"]["repository"]


def _jobs() -> MigrationJobs:
    return current_app.extensions["finance_tracker"]["jobs"]


def _payload() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _pick(payload: Mapping[str, Any], mapping: Mapping[str, str]) -> Dict[str, Any]:
    return {mapping[key]: value for key, value in payload.items() if key in mapping}


def _check_choice(errors: List[str], fields: Dict[str, Any], key: str, label: str, choices) -> None:
    if fields.get(key) is not None and fields[key] not in choices:
        errors.append(f"{label} must be one of: {', '.join(choices)}.")


def _check_amount(errors: List[str], fields: Dict[str, Any], key: str, label: str) -> None:
    if fields.get(key) is None:
        return
    try:
        value = float(fields[key])
    except (TypeError, ValueError):
        errors.append(f"{label} must be a valid number.")
        return
    if value < 0:
        errors.append(f"{label} cannot be negative.")
    fields[key] = value


def _check_date(errors: List[str], fields: Dict[str, Any], key: str, label: str) -> None:
    if key in fields and fields[key] is not None:
        if not isinstance(fields[key], str) or parse_iso(fields[key]) is None:
            errors.append(f"{label} must be an ISO date (YYYY-MM-DD or full timestamp).")


def _require(errors: List[str], fields: Dict[str, Any], required: Mapping[str, str], partial: bool) -> None:
    """Partial updates only check the keys they send; those still cannot be blank."""
    for key, label in required.items():
        if partial and key not in fields:
            continue
        if fields.get(key) in (None, ""):
            errors.append(f"{label} is required.")


def _validation_error(errors: List[str]) -> Tuple[Response, int]:
    return jsonify({"errors": errors}), 400


def _not_found(kind: str) -> Tuple[Response, int]:
    return jsonify({"error": f"{kind} not found."}), 404


def _account_fields(partial: bool) -> Tuple[Dict[str, Any], List[str]]:
    fields = _pick(_payload(), ACCOUNT_FIELDS)
    errors: List[str] = []
    _require(errors, fields, {"name": "Account name", "type": "Account type", "currency": "Currency"}, partial)
    _check_choice(errors, fields, "type", "Account type", ACCOUNT_TYPES)
    if "balance" in fields:
        try:
            fields["balance"] = float(fields["balance"])
        except (TypeError, ValueError):
            errors.append("Balance must be a valid number.")
    return fields, errors


def _category_fields(partial: bool) -> Tuple[Dict[str, Any], List[str]]:
    fields = _pick(_payload(), CATEGORY_FIELDS)
    errors: List[str] = []
    _require(errors, fields, {"name": "Category name", "type": "Category type"}, partial)
    _check_choice(errors, fields, "type", "Category type", CATEGORY_TYPES)
    return fields, errors


def _transaction_fields(partial: bool) -> Tuple[Dict[str, Any], List[str]]:
    fields = _pick(_payload(), TRANSACTION_FIELDS)
    errors: List[str] = []
    _require(
        errors,
        fields,
        {
            "account_id": "Account",
            "category_id": "Category",
            "type": "Transaction type",
            "amount": "Amount",
            "date": "Date",
        },
        partial,
    )
    if partial:
        # Transfer links are fixed at creation time.
        fields.pop("to_account_id", None)
    _check_choice(errors, fields, "type", "Transaction type", TRANSACTION_TYPES)
    _check_amount(errors, fields, "amount", "Amount")
    _check_date(errors, fields, "date", "Date")
    return fields, errors


def _budget_fields(partial: bool) -> Tuple[Dict[str, Any], List[str]]:
    fields = _pick(_payload(), BUDGET_FIELDS)
    errors: List[str] = []
    _require(
        errors,
        fields,
        {"name": "Budget name", "category_id": "Category", "limit_amount": "Budget limit", "period": "Period"},
        partial,
    )
    _check_choice(errors, fields, "period", "Period", BUDGET_PERIODS)
    _check_amount(errors, fields, "limit_amount", "Budget limit")
    _check_date(errors, fields, "start_date", "Start date")
    return fields, errors


def create_app(config_path: Optional[str] = None, storage: Optional[SnapshotStorage] = None) -> Flask:
    cfg = AppConfig.load(_resolve_config_path(config_path))
    logging.basicConfig(level=cfg.log_level, format=LOG_FORMAT)

    app = Flask(__name__)
    app.config.setdefault("STORAGE_DIR", str(cfg.storage_dir))

    engine = StoreEngine(storage or FileStorage(app.config["STORAGE_DIR"]), seed_defaults=cfg.seed_defaults)
    engine.start(background=True)
    repository = Repository(engine)
    app.extensions["finance_tracker"] = {
        "engine": engine,
        "repository": repository,
        "jobs": MigrationJobs(repository, cfg),
    }

    @app.errorhandler(sqlite3.IntegrityError)
    def integrity_error(exc: sqlite3.IntegrityError):
        logger.warning("Rejected write: %s", exc)
        return jsonify({"error": f"The change conflicts with existing data: {exc}"}), 409

    # ----- accounts --------------------------------------------------------

    @app.route("/api/accounts", methods=["GET", "POST"])
    def accounts():
        if request.method == "GET":
            return jsonify([a.to_dict() for a in _repo().get_accounts()])
        fields, errors = _account_fields(partial=False)
        if errors:
            return _validation_error(errors)
        account = _repo().create_account(**fields)
        return jsonify(account.to_dict() if account else None), 201

    @app.route("/api/accounts/<account_id>", methods=["GET", "PATCH", "DELETE"])
    def account_detail(account_id: str):
        repo = _repo()
        if request.method == "DELETE":
            repo.delete_account(account_id)
            return "", 204
        if request.method == "PATCH":
            fields, errors = _account_fields(partial=True)
            if errors:
                return _validation_error(errors)
            account = repo.update_account(account_id, **fields)
        else:
            account = repo.get_account(account_id)
        return jsonify(account.to_dict()) if account else _not_found("Account")

    # ----- categories ------------------------------------------------------

    @app.route("/api/categories", methods=["GET", "POST"])
    def categories():
        repo = _repo()
        if request.method == "GET":
            category_type = request.args.get("type")
            found = repo.get_categories_by_type(category_type) if category_type else repo.get_categories()
            return jsonify([c.to_dict() for c in found])
        fields, errors = _category_fields(partial=False)
        if errors:
            return _validation_error(errors)
        category = repo.create_category(**fields)
        return jsonify(category.to_dict() if category else None), 201

    @app.route("/api/categories/<category_id>", methods=["GET", "PATCH", "DELETE"])
    def category_detail(category_id: str):
        repo = _repo()
        if request.method == "DELETE":
            repo.delete_category(category_id)
            return "", 204
        if request.method == "PATCH":
            fields, errors = _category_fields(partial=True)
            if errors:
                return _validation_error(errors)
            category = repo.update_category(category_id, **fields)
        else:
            category = repo.get_category(category_id)
        return jsonify(category.to_dict()) if category else _not_found("Category")

    # ----- transactions ----------------------------------------------------

    @app.route("/api/transactions", methods=["GET", "POST"])
    def transactions():
        repo = _repo()
        if request.method == "GET":
            errors: List[str] = []
            filters = {
                "start_date": request.args.get("startDate") or None,
                "end_date": request.args.get("endDate") or None,
            }
            _check_date(errors, filters, "start_date", "startDate")
            _check_date(errors, filters, "end_date", "endDate")
            if errors:
                return _validation_error(errors)
            found = repo.get_transactions(
                account_id=request.args.get("accountId") or None,
                category_id=request.args.get("categoryId") or None,
                **filters,
            )
            return jsonify([t.to_dict() for t in found])
        fields, errors = _transaction_fields(partial=False)
        if errors:
            return _validation_error(errors)
        txn = repo.create_transaction(**fields)
        return jsonify(txn.to_dict() if txn else None), 201

    @app.route("/api/transactions/<transaction_id>", methods=["GET", "PATCH", "DELETE"])
    def transaction_detail(transaction_id: str):
        repo = _repo()
        if request.method == "DELETE":
            repo.delete_transaction(transaction_id)
            return "", 204
        if request.method == "PATCH":
            fields, errors = _transaction_fields(partial=True)
            if errors:
                return _validation_error(errors)
            txn = repo.update_transaction(transaction_id, **fields)
        else:
            txn = repo.get_transaction(transaction_id)
        return jsonify(txn.to_dict()) if txn else _not_found("Transaction")

    # ----- budgets ---------------------------------------------------------

    @app.route("/api/budgets", methods=["GET", "POST"])
    def budgets():
        repo = _repo()
        if request.method == "GET":
            return jsonify([b.to_dict() for b in repo.get_budgets()])
        fields, errors = _budget_fields(partial=False)
        if errors:
            return _validation_error(errors)
        budget = repo.create_budget(**fields)
        return jsonify(budget.to_dict() if budget else None), 201

    @app.route("/api/budgets/<budget_id>", methods=["GET", "PATCH", "DELETE"])
    def budget_detail(budget_id: str):
        repo = _repo()
        if request.method == "DELETE":
            repo.delete_budget(budget_id)
            return "", 204
        if request.method == "PATCH":
            fields, errors = _budget_fields(partial=True)
            if errors:
                return _validation_error(errors)
            budget = repo.update_budget(budget_id, **fields)
        else:
            budget = repo.get_budget(budget_id)
        return jsonify(budget.to_dict()) if budget else _not_found("Budget")

    # ----- whole store -----------------------------------------------------

    @app.route("/api/currencies")
    def currencies():
        return jsonify([{"code": c.code, "symbol": c.symbol, "name": c.name} for c in available_currencies()])

    @app.route("/api/export")
    def export_data():
        return Response(
            _repo().export_data(),
            mimetype="application/json",
            headers={"Content-Disposition": "attachment; filename=finance-tracker-export.json"},
        )

    @app.route("/api/import", methods=["POST"])
    def import_data():
        upload = request.files.get("file")
        text = upload.read().decode("utf-8-sig", errors="replace") if upload else request.get_data(as_text=True)
        if _repo().import_data(text):
            return jsonify({"success": True, "message": "Data imported."})
        return jsonify({"success": False, "message": "Import failed; existing data was kept."}), 400

    @app.route("/api/clear", methods=["POST"])
    def clear_data():
        if request.form.get("confirm") != "true" and _payload().get("confirm") is not True:
            return _validation_error(["Clearing all data must be confirmed."])
        _repo().clear_all()
        return jsonify({"success": True, "message": "All data cleared."})

    # ----- legacy migration ------------------------------------------------

    @app.route("/api/migrations", methods=["POST"])
    def start_migration():
        errors: List[str] = []
        file = request.files.get("file")
        if not file or not file.filename:
            errors.append("Please choose a .sqlite or .db file to migrate.")
        if request.form.get("confirm") != "true":
            errors.append("Migration erases all existing data and must be confirmed.")
        if errors:
            return _validation_error(errors)
        filename = secure_filename(file.filename) or file.filename
        job = _jobs().start(filename, file.read())
        if job is None:
            return jsonify({"error": "A migration is already running."}), 409
        return jsonify(job.to_dict()), 202

    @app.route("/api/migrations/<job_id>")
    def migration_status(job_id: str):
        job = _jobs().get(job_id)
        return jsonify(job.to_dict()) if job else _not_found("Migration")

    @app.route("/api/migrations/<job_id>/cancel", methods=["POST"])
    def cancel_migration(job_id: str):
        job = _jobs().get(job_id)
        if job is None:
            return _not_found("Migration")
        job.token.cancel()
        return jsonify(job.to_dict()), 202

    return app


def _resolve_config_path(config_path: Optional[str]) -> Optional[Path]:
    if not config_path:
        return None
    path = Path(config_path)
    if path.is_absolute():
        return path
    return Path(__file__).resolve().parent.parent / path


if __name__ == "__main__":
    create_app().run(debug=True)
