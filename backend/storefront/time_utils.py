# Overview: UTC clock helpers shared by tokens, raffle windows and JSON serialization.

"""
Timestamps are stored as naive UTC. Everything that reads the clock or
compares an expiry goes through this module so the convention holds in one
place.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Convert an aware datetime to naive UTC; naive values are assumed UTC already."""
    if dt is None or dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def expires_after(*, minutes: int = 0, days: int = 0, now: Optional[datetime] = None) -> datetime:
    """Expiry timestamp for a token or reset link issued at now."""
    return (now or utcnow()) + timedelta(minutes=minutes, days=days)


def is_expired(expires_at: Optional[datetime], now: Optional[datetime] = None) -> bool:
    if expires_at is None:
        return False
    return as_naive_utc(expires_at) <= (now or utcnow())


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse client-supplied ISO-8601 (raffle windows, admin payloads).

    Blank -> None. A trailing Z or an offset is converted to UTC; a value
    without offset is taken as UTC. Raises ValueError on garbage.
    """
    if value is None or not value.strip():
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return as_naive_utc(datetime.fromisoformat(text))


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """Render as second-precision ISO-8601 with a trailing Z, the format the storefront client expects."""
    if dt is None:
        return None
    dt = as_naive_utc(dt).replace(microsecond=0)
    return dt.isoformat() + "Z"
