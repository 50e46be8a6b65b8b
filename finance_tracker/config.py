"""Configuration utilities for the finance tracker.

Provides the demonstration data seeded into a brand-new store and a helper to
load user-defined settings (storage location, batch size, ...) from JSON.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

PACKAGE_ROOT = Path(__file__).resolve().parent
PROJECT_ROOT = PACKAGE_ROOT.parent

# Seeded on first start only. Ids are fixed so the seed is recognisable.
DEFAULT_ACCOUNTS: List[Dict] = [
    {"id": "acc_1", "name": "Checking", "type": "checking", "balance": 5000, "currency": "USD"},
    {"id": "acc_2", "name": "Savings", "type": "savings", "balance": 10000, "currency": "USD"},
    {"id": "acc_3", "name": "Credit Card", "type": "credit_card", "balance": 2500, "currency": "USD"},
]

DEFAULT_CATEGORIES: List[Dict] = [
    {"id": "cat_1", "name": "Salary", "type": "income", "icon": "💰", "color": "#10b981"},
    {"id": "cat_2", "name": "Bonus", "type": "income", "icon": "🎉", "color": "#10b981"},
    {"id": "cat_3", "name": "Freelance", "type": "income", "icon": "💻", "color": "#10b981"},
    {"id": "cat_4", "name": "Food & Dining", "type": "expense", "icon": "🍔", "color": "#ef4444"},
    {"id": "cat_5", "name": "Transportation", "type": "expense", "icon": "🚗", "color": "#ef4444"},
    {"id": "cat_6", "name": "Shopping", "type": "expense", "icon": "🛍️", "color": "#ef4444"},
    {"id": "cat_7", "name": "Entertainment", "type": "expense", "icon": "🎬", "color": "#ef4444"},
    {"id": "cat_8", "name": "Utilities", "type": "expense", "icon": "💡", "color": "#ef4444"},
    {"id": "cat_9", "name": "Health", "type": "expense", "icon": "🏥", "color": "#ef4444"},
    {"id": "cat_10", "name": "Transfer Out", "type": "transfer", "icon": "➡️", "color": "#3b82f6"},
]

DEFAULT_STORAGE_DIR = PROJECT_ROOT / ".finance_tracker"
DEFAULT_BATCH_SIZE = 100
# Legacy budgets carry no usable limit, so imported ones get this placeholder.
DEFAULT_BUDGET_PLACEHOLDER_LIMIT = 1000.0


@dataclass
class AppConfig:
    storage_dir: Path = DEFAULT_STORAGE_DIR
    batch_size: int = DEFAULT_BATCH_SIZE
    budget_placeholder_limit: float = DEFAULT_BUDGET_PLACEHOLDER_LIMIT
    seed_defaults: bool = True
    log_level: str = "INFO"

    @staticmethod
    def load(config_path: Optional[str | Path] = None) -> "AppConfig":
        """Load config from JSON if provided, else use defaults.

        JSON format:
        {
          "storage_dir": "data",
          "batch_size": 100,
          "budget_placeholder_limit": 1000,
          "seed_defaults": true,
          "log_level": "INFO"
        }

        A relative ``storage_dir`` is resolved against the config file.
        """

        cfg = AppConfig()
        if not config_path:
            return cfg
        p = Path(config_path)
        if not p.exists():
            return cfg
        with p.open("r", encoding="utf-8") as f:
            raw = json.load(f)
        if not isinstance(raw, dict):
            return cfg

        if raw.get("storage_dir"):
            storage_dir = Path(str(raw["storage_dir"]))
            cfg.storage_dir = storage_dir if storage_dir.is_absolute() else p.parent / storage_dir
        if isinstance(raw.get("batch_size"), int) and raw["batch_size"] > 0:
            cfg.batch_size = raw["batch_size"]
        if isinstance(raw.get("budget_placeholder_limit"), (int, float)):
            cfg.budget_placeholder_limit = float(raw["budget_placeholder_limit"])
        if isinstance(raw.get("seed_defaults"), bool):
            cfg.seed_defaults = raw["seed_defaults"]
        if raw.get("log_level"):
            cfg.log_level = str(raw["log_level"]).upper()
        return cfg
