"""
Timestamps are stored naive and always mean UTC.

Inputs with an offset are converted on the way in; outputs carry a 'Z'.
"""

from __future__ import annotations

from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(dt: datetime) -> datetime:
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def parse_since(value: str | None) -> datetime | None:
    """
    Lower bound for ledger listings, from a query string.

    Blank means no bound. A value without an offset is read as UTC.
    Raises ValueError for anything fromisoformat rejects.
    """
    if value is None or not value.strip():
        return None
    return as_naive_utc(datetime.fromisoformat(value.strip()))


def to_utc_z(dt: datetime | None) -> str | None:
    if dt is None:
        return None
    return as_naive_utc(dt).replace(microsecond=0).isoformat() + "Z"
