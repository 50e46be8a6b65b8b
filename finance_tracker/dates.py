"""Timestamp helpers.

Stored timestamps are UTC ISO-8601 strings with millisecond precision and a
trailing ``Z``, e.g. ``2025-09-01T10:00:00.000Z``. Keeping a single format
means lexical comparison in SQL is also chronological comparison.
"""

from __future__ import annotations

import calendar
import datetime as dt
import re
from typing import Optional, Union

DateLike = Union[dt.datetime, dt.date, str]

# Unix timestamps below this are seconds, above it milliseconds.
_SECONDS_CUTOFF = 10_000_000_000
_NUMERIC = re.compile(r"^[+-]?\d+(\.\d+)?$")


def utc_now() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def _as_utc(value: dt.datetime) -> dt.datetime:
    # Naive datetimes are local wall-clock time.
    if value.tzinfo is None:
        value = value.astimezone()
    return value.astimezone(dt.timezone.utc)


def parse_iso(value: str) -> Optional[dt.datetime]:
    text = value.strip()
    if not text:
        return None
    try:
        parsed = dt.datetime.fromisoformat(text)
    except ValueError:
        return None
    if len(text) == 10:
        # Date-only strings denote midnight UTC.
        return parsed.replace(tzinfo=dt.timezone.utc)
    return parsed


def to_iso(value: DateLike) -> str:
    """Normalize a datetime, date or ISO string to the stored format."""
    if isinstance(value, str):
        parsed = parse_iso(value)
        if parsed is None:
            raise ValueError(f"Unrecognized timestamp: {value!r}")
        value = parsed
    elif not isinstance(value, dt.datetime):
        value = dt.datetime(value.year, value.month, value.day, tzinfo=dt.timezone.utc)
    value = _as_utc(value)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def end_of_current_month(now: Optional[dt.datetime] = None) -> dt.datetime:
    """Last millisecond of the current local calendar month."""
    local = now or dt.datetime.now()
    if local.tzinfo is None:
        local = local.astimezone()
    last_day = calendar.monthrange(local.year, local.month)[1]
    return local.replace(day=last_day, hour=23, minute=59, second=59, microsecond=999000)


def parse_legacy_date(raw: object, default: Optional[dt.datetime] = None) -> dt.datetime:
    """Parse a legacy date field.

    Tries an ISO string first, then a Unix timestamp (seconds or milliseconds,
    detected by magnitude). Falls back to ``default`` or the current time.
    """
    fallback = default or utc_now()
    if raw is None:
        return fallback
    text = str(raw).strip()
    if not text:
        return fallback

    # Bare numbers are timestamps, never compact ISO dates.
    if not _NUMERIC.match(text):
        parsed = parse_iso(text)
        if parsed is not None:
            return _as_utc(parsed)

    try:
        stamp = int(float(text))
    except (ValueError, OverflowError):
        return fallback
    seconds = stamp if abs(stamp) < _SECONDS_CUTOFF else stamp / 1000
    try:
        return dt.datetime.fromtimestamp(seconds, tz=dt.timezone.utc)
    except (OverflowError, OSError, ValueError):
        return fallback
