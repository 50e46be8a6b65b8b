"""Checks that an uploaded file is a legacy SQLite database before parsing."""

from __future__ import annotations

from pathlib import PurePath

ACCEPTED_EXTENSIONS = (".sqlite", ".db")
# An SQLite header is 100 bytes, but the signature and page size fit in 16.
MIN_FILE_SIZE = 16
SIGNATURE = "SQLite format"


class LegacyFileError(ValueError):
    """The uploaded file cannot be a legacy database. The message is user-facing."""


def validate_legacy_file(filename: str, data: bytes) -> None:
    """Raise ``LegacyFileError`` unless name, size and signature all match."""
    suffix = PurePath(filename or "").suffix.lower()
    if suffix not in ACCEPTED_EXTENSIONS:
        raise LegacyFileError("Invalid file format. Please select a .sqlite or .db file.")
    if len(data) < MIN_FILE_SIZE:
        raise LegacyFileError("File is too small to be a valid SQLite database.")
    header = data[: len(SIGNATURE)].decode("ascii", errors="replace")
    if header != SIGNATURE:
        raise LegacyFileError("File does not appear to be a valid SQLite database.")
