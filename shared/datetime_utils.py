from __future__ import annotations

import re
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from zoneinfo import ZoneInfo

__all__ = [
    "parse_to_utc",
    "ensure_utc",
    "to_iso_utc",
    "to_epoch_ms",
    "matches_date_prefix",
    "STRICT_Z_ISO_PATTERN",
]

# Strict pattern for canonical timestamps: YYYY-MM-DDTHH:MM:SSZ
STRICT_Z_ISO_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}Z$")

# Sanity window (inclusive lower bound, exclusive upper bound)
_MIN_DT = datetime(1970, 1, 1, tzinfo=timezone.utc)
_MAX_DT = datetime(2100, 1, 1, tzinfo=timezone.utc)

_DATE_ONLY = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_US_DATE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})(.*)$")


def _normalize_candidate(s: str) -> str:
    """
    Normalize common date-time quirks without changing semantics.
    Handles:
      - 'YYYY/MM/DD' -> 'YYYY-MM-DD', 'M/D/YYYY' -> 'YYYY-MM-DD'
      - space between date and time -> 'T'
      - adds ':00' seconds if missing (even if followed by Z/offset)
      - '+HHMM' -> '+HH:MM' (removes stray space before offset too)
      - trailing 'Z'/'z' and ' UTC' -> '+00:00' for fromisoformat
    """
    s = s.strip()

    if s.endswith("z"):
        s = s[:-1] + "Z"
    if s.upper().endswith(" UTC"):
        s = s[:-4].rstrip() + "Z"

    s = re.sub(r"^(\d{4})/(\d{2})/(\d{2})", r"\1-\2-\3", s)

    m = _US_DATE.match(s)
    if m:
        month, day, year, rest = m.groups()
        s = f"{year}-{int(month):02d}-{int(day):02d}{rest}"

    s = re.sub(r"^(\d{4}-\d{2}-\d{2})\s+(\d{2}:\d{2}(?::\d{2})?)", r"\1T\2", s, count=1)

    # '...T12:34Z', '...T12:34+0000', '...T12:34 +0000' -> add seconds
    s = re.sub(r"^(\d{4}-\d{2}-\d{2}T\d{2}:\d{2})(?=(Z|[+-]\d{2}:?\d{2}|\s|$))", r"\1:00", s, count=1)

    s = re.sub(r"\s*([+-]\d{2})(\d{2})$", r"\1:\2", s)

    if s.endswith("Z"):
        s = s[:-1] + "+00:00"

    return s


def ensure_utc(dt: datetime, *, naive_tz: str | None = None) -> datetime:
    """Return dt as an aware UTC datetime; naive values are read in naive_tz (default UTC)."""
    if dt.tzinfo is None:
        tz = timezone.utc
        if naive_tz:
            try:
                tz = ZoneInfo(naive_tz)
            except Exception:
                tz = timezone.utc
        dt = dt.replace(tzinfo=tz)
    dt_utc = dt.astimezone(timezone.utc)
    if not (_MIN_DT <= dt_utc < _MAX_DT):
        raise ValueError("out_of_range")
    return dt_utc


def parse_to_utc(dt_str: str, *, naive_tz: str | None = None) -> datetime:
    """
    Parse a datetime string tolerantly and return an aware UTC datetime.
    Tries ISO (after normalization), then RFC-2822.
    Date-only values ('2012-03-01') mean midnight UTC.
    Enforces sanity window [1970-01-01, 2100-01-01).

    Raises ValueError with one of: "missing", "unparseable", "out_of_range".
    Never falls back to the current time.
    """
    if dt_str is None:
        raise ValueError("missing")

    raw = str(dt_str).strip()
    if not raw:
        raise ValueError("missing")

    s = _normalize_candidate(raw)
    try:
        dt = datetime.fromisoformat(s)
    except ValueError:
        try:
            dt = parsedate_to_datetime(raw)
        except (TypeError, ValueError, IndexError):
            raise ValueError("unparseable") from None
        if dt is None:
            raise ValueError("unparseable")

    return ensure_utc(dt, naive_tz=naive_tz)


def to_iso_utc(dt: datetime) -> str:
    """
    Convert aware/naive datetime to strict ISO with trailing 'Z' and no fractions.
    Naive input is treated as UTC.
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    else:
        dt = dt.astimezone(timezone.utc)
    dt = dt.replace(microsecond=0)
    return dt.strftime("%Y-%m-%dT%H:%M:%SZ")


def to_epoch_ms(dt: datetime) -> int:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


def matches_date_prefix(dt: datetime, prefix: str | None) -> bool:
    """Inclusive prefix match of the canonical timestamp ('2012-03' matches all of March)."""
    if not prefix:
        return True
    return to_iso_utc(dt).startswith(prefix.strip())
