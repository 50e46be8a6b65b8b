"""Command-line interface for the finance tracker.

Usage:
  python -m finance_tracker.cli migrate backup.sqlite --yes
  python -m finance_tracker.cli accounts
  python -m finance_tracker.cli export data.json

Options allow a JSON config file and an explicit storage directory.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from .config import AppConfig
from .currency import format_currency
from .db import StoreEngine
from .migration import MigrationDriver, Progress
from .repository import Repository
from .storage import FileStorage

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Personal finance tracker")
    p.add_argument("--config", "-c", help="Path to JSON config")
    p.add_argument("--storage-dir", help="Directory holding the database snapshot")
    sub = p.add_subparsers(dest="command", required=True)

    m = sub.add_parser("migrate", help="Replace all data with a legacy .sqlite/.db backup")
    m.add_argument("file", help="Legacy database file")
    m.add_argument("--yes", action="store_true", help="Confirm that existing data will be erased")

    e = sub.add_parser("export", help="Write all data as JSON")
    e.add_argument("path", nargs="?", help="Output file (default: stdout)")

    i = sub.add_parser("import", help="Replace all data from an exported JSON file")
    i.add_argument("path", help="JSON file produced by export")

    c = sub.add_parser("clear", help="Delete all data")
    c.add_argument("--yes", action="store_true", help="Confirm deletion")

    sub.add_parser("accounts", help="List accounts with current balances")

    t = sub.add_parser("transactions", help="List transactions")
    t.add_argument("--account", help="Account id")
    t.add_argument("--category", help="Category id")
    t.add_argument("--from", dest="date_from", help="Start date (YYYY-MM-DD)")
    t.add_argument("--to", dest="date_to", help="End date (YYYY-MM-DD)")
    return p.parse_args(argv)


def build_repository(cfg: AppConfig) -> Repository:
    engine = StoreEngine(FileStorage(cfg.storage_dir), seed_defaults=cfg.seed_defaults)
    engine.start()
    return Repository(engine)


def _print_progress(progress: Progress) -> None:
    print(f"  {progress.status} {progress.current}/{progress.total}")


def _migrate(repo: Repository, cfg: AppConfig, args: argparse.Namespace) -> int:
    if not args.yes:
        print("Migration erases all existing data. Re-run with --yes to continue.", file=sys.stderr)
        return 2
    path = Path(args.file)
    try:
        data = path.read_bytes()
    except OSError as exc:
        print(f"Cannot read {path}: {exc}", file=sys.stderr)
        return 1
    driver = MigrationDriver(repo, batch_size=cfg.batch_size, budget_limit=cfg.budget_placeholder_limit)
    result = driver.migrate(path.name, data, on_progress=_print_progress)
    print(result.message)
    if result.stats:
        s = result.stats
        print(
            f"Accounts: {s.accounts}  Categories: {s.categories}  "
            f"Transactions: {s.transactions}  Budgets: {s.budgets}"
        )
    if result.report and result.report.failed_batches:
        print(f"Failed batches: {', '.join(map(str, result.report.failed_batches))}")
    return 0 if result.success else 1


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    cfg = AppConfig.load(args.config)
    if args.storage_dir:
        cfg.storage_dir = Path(args.storage_dir)
    logging.basicConfig(level=cfg.log_level, format=LOG_FORMAT)

    repo = build_repository(cfg)
    if not repo.engine.is_ready:
        print("The local database could not be opened.", file=sys.stderr)
        return 1

    if args.command == "migrate":
        return _migrate(repo, cfg, args)

    if args.command == "export":
        text = repo.export_data()
        if args.path:
            Path(args.path).write_text(text, encoding="utf-8")
            print(f"Saved export to: {args.path}")
        else:
            print(text)
        return 0

    if args.command == "import":
        ok = repo.import_data(Path(args.path).read_text(encoding="utf-8"))
        print("Import completed." if ok else "Import failed; existing data was kept.")
        return 0 if ok else 1

    if args.command == "clear":
        if not args.yes:
            print("Re-run with --yes to delete all data.", file=sys.stderr)
            return 2
        repo.clear_all()
        print("All data cleared.")
        return 0

    if args.command == "accounts":
        for acc in repo.get_accounts():
            sign = "-" if acc.balance < 0 else ""
            amount = sign + format_currency(acc.balance, acc.currency)
            print(f"{acc.id:28} {acc.name:24} {acc.type:12} {amount:>15}")
        return 0

    if args.command == "transactions":
        txns = repo.get_transactions(
            account_id=args.account,
            category_id=args.category,
            start_date=args.date_from,
            end_date=args.date_to,
        )
        for t in txns:
            sign = "+" if t.type == "income" else "-"
            print(f"{t.date[:10]}  {t.account_id:28} {sign}{t.amount:>12.2f}  {t.description}")
        return 0
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
