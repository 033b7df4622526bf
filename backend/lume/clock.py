# lume/clock.py
from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Optional

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def utcnow_naive() -> datetime:
    return utcnow().replace(tzinfo=None)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Normalize to a timezone-aware UTC datetime.
    - None -> None
    - naive -> assumed UTC (that is how the database stores them)
    - aware -> converted to UTC
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_naive_utc(value: datetime) -> datetime:
    return as_utc(value).replace(tzinfo=None)
