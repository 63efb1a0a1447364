#!/usr/bin/env python3
"""
Event-time normalization for raw interaction events.

Exports arrive with timestamps in four encodings: ISO-8601 strings,
epoch seconds, epoch milliseconds and epoch microseconds (GA4's
``event_timestamp``). Every duration, ordering and time-window metric in
the pipeline goes through ``normalize_timestamp`` so they all agree on
what an instant is.
"""

import math
import re
from datetime import datetime, timezone
from typing import Any, Optional, Union

import pandas as pd

MICROSECONDS_THRESHOLD = 1e14  # above: microseconds (16 digits)
SECONDS_THRESHOLD = 1e11       # below: seconds (10 digits)

MIN_YEAR_EXCLUSIVE = 1970
MAX_YEAR_EXCLUSIVE = 2100

# Instants a datetime can represent: 0001-01-01 to 9999-12-31 UTC
MIN_MILLIS = -62135596800000.0
MAX_MILLIS = 253402300799999.0

_NUMERIC_STRING = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?$")

TimestampInput = Union[str, int, float, datetime, None]


def _parse_date_string(value: str) -> Optional[datetime]:
    """Parse a date string, ISO-8601 first and then pandas' parser; None on failure."""
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    elif text.upper().endswith(" UTC"):
        text = text[:-4] + "+00:00"

    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        parsed = None

    if parsed is None:
        # "now" and "today" are relative to the wall clock, not the export
        if text.lower() in ("now", "today"):
            return None
        try:
            stamp = pd.to_datetime(text, utc=True)
        except (ValueError, TypeError, OverflowError):
            return None
        if pd.isna(stamp):
            return None
        return stamp.to_pydatetime()

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _to_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str) and _NUMERIC_STRING.match(value.strip()):
        number = float(value.strip())
    else:
        return None
    if not math.isfinite(number):
        return None
    return number


def normalize_timestamp(value: TimestampInput) -> Optional[float]:
    """
    Normalize a heterogeneous timestamp to epoch milliseconds (UTC).

    Precedence:
        1. A non-numeric string that parses as a date with a year strictly
           between 1970 and 2100 is used as-is. ISO-8601 is tried first,
           then the formats pandas recognizes (``01/15/2025 10:00``,
           ``15 Jan 2025``, RFC 2822).
        2. Otherwise the value is coerced to a number; non-numeric input
           is rejected.
        3. > 1e14 is microseconds, < 1e11 is seconds, anything in between
           is milliseconds.
        4. A result outside the range a datetime can represent is rejected.

    Args:
        value: Raw timestamp (string, number or datetime)

    Returns:
        Milliseconds since epoch, or None if the value cannot be parsed
    """
    if value is None:
        return None

    if isinstance(value, datetime):
        dt = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
        return dt.timestamp() * 1000

    if isinstance(value, str) and value.strip() and not _NUMERIC_STRING.match(value.strip()):
        parsed = _parse_date_string(value)
        if parsed is not None and MIN_YEAR_EXCLUSIVE < parsed.year < MAX_YEAR_EXCLUSIVE:
            return parsed.timestamp() * 1000

    number = _to_number(value)
    if number is None:
        return None

    if number > MICROSECONDS_THRESHOLD:
        millis = number / 1000
    elif number < SECONDS_THRESHOLD:
        millis = number * 1000
    else:
        millis = number

    if not MIN_MILLIS <= millis <= MAX_MILLIS:
        return None
    return millis


def to_datetime(value: TimestampInput) -> Optional[datetime]:
    """Normalize a timestamp and return it as an aware UTC datetime."""
    return _from_millis(normalize_timestamp(value))


def _from_millis(millis: Optional[float]) -> Optional[datetime]:
    if millis is None:
        return None
    try:
        return datetime.fromtimestamp(millis / 1000, tz=timezone.utc)
    except (ValueError, OverflowError, OSError):
        return None


def to_iso(millis: Optional[float]) -> Optional[str]:
    """Format epoch milliseconds as an ISO-8601 UTC string; None when out of range."""
    dt = _from_millis(millis)
    if dt is None:
        return None
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")
