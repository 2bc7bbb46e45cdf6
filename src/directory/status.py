"""
Derived call-recency status, search filtering and display helpers.

Everything here is a pure function of its inputs (plus the supplied "now");
status is recomputed on every query and never stored on a record.
"""

from __future__ import annotations

import math
from datetime import date, datetime, timezone
from typing import Dict, Iterable, List, Optional, Union

from .models import RecencyStatus, StoreRecord

RECENT_MAX_DAYS = 7
STALE_MAX_DAYS = 30

_SECONDS_PER_DAY = 24 * 60 * 60


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def today_iso(now: Optional[datetime] = None) -> str:
    """Calendar date (UTC) written to last_called after a successful call."""
    return _as_utc(now or utcnow()).date().isoformat()


def _as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_last_called(value: Optional[str]) -> Optional[datetime]:
    """
    Parse a stored last_called value.

    Date-only strings mean UTC midnight. Returns None for empty or
    unparseable values.
    """
    s = (value or "").strip()
    if not s:
        return None
    try:
        if len(s) == 10:
            d = date.fromisoformat(s)
            return datetime(d.year, d.month, d.day, tzinfo=timezone.utc)
        return _as_utc(datetime.fromisoformat(s.replace("Z", "+00:00")))
    except ValueError:
        return None


def days_since(last_called: Optional[str], now: Optional[datetime] = None) -> Optional[int]:
    """Whole days elapsed since last_called (floored), or None if never/unparseable."""
    called_at = parse_last_called(last_called)
    if called_at is None:
        return None
    delta = _as_utc(now or utcnow()) - called_at
    return math.floor(delta.total_seconds() / _SECONDS_PER_DAY)


def status_of(record: Union[StoreRecord, str, None], now: Optional[datetime] = None) -> RecencyStatus:
    """
    Bucket a record by call recency.

    Pending when never called; Recent up to 7 days; Stale for 8..30 days;
    Old beyond that. A non-empty value that cannot be parsed as a date is Old.
    """
    last_called = record.last_called if isinstance(record, StoreRecord) else record
    if not last_called:
        return RecencyStatus.PENDING

    elapsed = days_since(last_called, now)
    if elapsed is None:
        return RecencyStatus.OLD
    if elapsed <= RECENT_MAX_DAYS:
        return RecencyStatus.RECENT
    if elapsed <= STALE_MAX_DAYS:
        return RecencyStatus.STALE
    return RecencyStatus.OLD


def matches(record: StoreRecord, term: str) -> bool:
    needle = (term or "").casefold()
    if not needle:
        return True
    return (
        needle in str(record.phone_number).casefold()
        or needle in (record.location or "").casefold()
        or needle in (record.store_name or "").casefold()
    )


def search(records: Iterable[StoreRecord], term: Optional[str]) -> List[StoreRecord]:
    """Case-insensitive substring filter over phone, location and store name."""
    return [r for r in records if matches(r, term or "")]


def count_by_status(records: Iterable[StoreRecord], now: Optional[datetime] = None) -> Dict[str, int]:
    counts = {s.value: 0 for s in RecencyStatus}
    for r in records:
        counts[status_of(r, now).value] += 1
    return counts


def format_last_called(value: Optional[str]) -> str:
    """'Never' for an uncalled store, otherwise e.g. 'Jan 05, 2024'."""
    if not value:
        return "Never"
    called_at = parse_last_called(value)
    if called_at is None:
        return value
    return called_at.strftime("%b %d, %Y")
