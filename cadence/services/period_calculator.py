"""
Period calculator — pure date math for recurring entities.

Starts align to calendar boundaries (midnight, next Monday, first of the
month, Jan 1); ends align to calendar-unit ends (end of day, end of the
last week day, last day of the month, Dec 31). Periods therefore map to
"today", "this week", "this month" instead of rolling windows measured
from an arbitrary completion instant.

Public API
----------
validate_rule(repeat_type, frequency)                          -> RepeatType
calculate_period_end(repeat_type, start_date, frequency)       -> datetime
calculate_next_start_date(repeat_type, completed_at, frequency) -> datetime
should_be_available(repeat_type, last_completed, current, frequency) -> bool

No I/O, no clock reads. tzinfo (if any) of the inputs is preserved.
"""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional, Union

from dateutil.relativedelta import relativedelta

from cadence.core.errors import InvalidRuleError
from cadence.models.enums import RepeatType

RuleType = Union[RepeatType, str]

# Portuguese labels accepted as aliases.
_LEGACY_LABELS = {
    "diariamente": RepeatType.daily,
    "semanalmente": RepeatType.weekly,
    "mensalmente": RepeatType.monthly,
    "anualmente": RepeatType.yearly,
}

_END_OF_DAY = dict(hour=23, minute=59, second=59, microsecond=999000)
_MIDNIGHT = dict(hour=0, minute=0, second=0, microsecond=0)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def validate_rule(repeat_type: RuleType, frequency: int) -> RepeatType:
    """Normalise `repeat_type` and reject unknown types or frequency < 1."""
    if isinstance(repeat_type, RepeatType):
        kind: Optional[RepeatType] = repeat_type
    elif isinstance(repeat_type, str):
        key = repeat_type.strip().lower()
        kind = _LEGACY_LABELS.get(key)
        if kind is None:
            try:
                kind = RepeatType(key)
            except ValueError:
                kind = None
    else:
        kind = None

    if (
        kind is None
        or isinstance(frequency, bool)
        or not isinstance(frequency, int)
        or frequency < 1
    ):
        raise InvalidRuleError(repeat_type, frequency)
    return kind


# ---------------------------------------------------------------------------
# Public
# ---------------------------------------------------------------------------

def calculate_period_end(
    repeat_type: RuleType, start_date: datetime, frequency: int
) -> datetime:
    """End of the completion window for a period opened at `start_date`."""
    kind = validate_rule(repeat_type, frequency)

    if kind is RepeatType.daily:
        return start_date.replace(**_END_OF_DAY)

    if kind is RepeatType.weekly:
        end = start_date + timedelta(days=7 * frequency - 1)
        return end.replace(**_END_OF_DAY)

    if kind is RepeatType.monthly:
        # The window covers `frequency` calendar months starting with the
        # start month. A start day missing from the target month (Jan 31 ->
        # "Feb 31") stretches it to the end of the target month instead.
        # relativedelta(day=31) clamps to the last day of the month.
        target = start_date + relativedelta(months=frequency, day=31)
        if start_date.day <= target.day:
            target = start_date + relativedelta(months=frequency - 1, day=31)
        return target.replace(**_END_OF_DAY)

    return start_date + relativedelta(years=frequency, month=12, day=31, **_END_OF_DAY)


def calculate_next_start_date(
    repeat_type: RuleType, completed_at: datetime, frequency: int
) -> datetime:
    """When the next period begins after a completion at `completed_at`."""
    kind = validate_rule(repeat_type, frequency)

    if kind is RepeatType.daily:
        return (completed_at + timedelta(days=frequency)).replace(**_MIDNIGHT)

    if kind is RepeatType.weekly:
        # weekday(): Monday == 0. A Monday completion moves a full week ahead.
        days_to_monday = 7 - completed_at.weekday()
        nxt = completed_at + timedelta(days=days_to_monday + 7 * (frequency - 1))
        return nxt.replace(**_MIDNIGHT)

    if kind is RepeatType.monthly:
        return completed_at + relativedelta(months=frequency, day=1, **_MIDNIGHT)

    return completed_at + relativedelta(years=frequency, month=1, day=1, **_MIDNIGHT)


def should_be_available(
    repeat_type: RuleType,
    last_completed: Optional[datetime],
    current: datetime,
    frequency: int,
) -> bool:
    """True if never completed, or `current` reached the next start (inclusive)."""
    if last_completed is None:
        validate_rule(repeat_type, frequency)
        return True
    return current >= calculate_next_start_date(repeat_type, last_completed, frequency)
