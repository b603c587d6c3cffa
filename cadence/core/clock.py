"""
Wall-clock source for the period engine.

Period boundaries are naive datetimes in the configured TIMEZONE so that
midnight / Monday / first-of-month mean the same thing before and after a
round-trip through the database. Use cases take a `now` callable that
defaults to `now()` below; tests pass a frozen one.
"""
from __future__ import annotations

from datetime import datetime
from typing import Callable
from zoneinfo import ZoneInfo

from cadence.core.config import settings

Clock = Callable[[], datetime]


def now() -> datetime:
    return datetime.now(tz=ZoneInfo(settings.TIMEZONE)).replace(tzinfo=None)


def fixed(moment: datetime) -> Clock:
    """A clock that always returns `moment`."""
    return lambda: moment


def get_clock() -> Clock:
    """FastAPI dependency; overridden in tests with `fixed(...)`."""
    return now
