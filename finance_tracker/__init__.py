"""Personal finance tracker: local SQLite store and legacy-app migration."""

__all__ = [
    "config",
    "currency",
    "dates",
    "db",
    "ids",
    "mapper",
    "migration",
    "models",
    "repository",
    "storage",
    "transfers",
    "validator",
    "webapp",
]

__version__ = "0.1.0"
