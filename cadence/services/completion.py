"""
Completion Orchestrator — the user-initiated side of the period engine.

complete_entity(entity_id)
--------------------------
  1. load entity                        NotFoundError, EntityArchivedError
  2. load active period (row lock)      synthesize [now, period_end] if none
  3. gate                               AlreadyCompletedError if the period is
                                        completed, or has not started yet and
                                        was opened by the last completion.
                                        A pending period opened after a miss
                                        is moved to [now, period_end] instead
  4. finalize period                    end_date = max(end_date, now)
  5. append "success" log               title / difficulty / tags snapshot
  6. next_available_at                  calculate_next_start_date(now)
  7. open next period                   [next_available_at, period_end]
  8. entity.last_completed_date = now

Steps 2-8 run in one transaction scope. Domain errors propagate unchanged
after the rollback; any other failure once writes have started surfaces as
PartialFailureError.

list_availability(user_id)
--------------------------
Buckets every active entity into `available` or `completed_in_window`.
An entity waiting on a period opened after a miss counts as `available`.

register_occurrence(entity_id)
------------------------------
Counting habits: bump the active period's count and run the completion
transition once the target is reached (or immediately without a target).
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional, TypeVar

from cadence.core import clock
from cadence.core.errors import (
    AlreadyCompletedError,
    ConcurrentTransitionError,
    EntityArchivedError,
    InvalidRuleError,
    NotFoundError,
    PartialFailureError,
)
from cadence.models.enums import LogStatus, RepeatType
from cadence.services.period_calculator import (
    calculate_next_start_date,
    calculate_period_end,
    validate_rule,
)
from cadence.services.stores import (
    CompletionLogEntry,
    LogDraft,
    Period,
    PeriodDraft,
    PeriodPatch,
    RecurringEntity,
    Stores,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Expected outcomes: propagate unchanged, never wrapped as a partial failure.
_DOMAIN_ERRORS = (
    NotFoundError,
    AlreadyCompletedError,
    EntityArchivedError,
    InvalidRuleError,
    ConcurrentTransitionError,
)


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

@dataclass
class CompletionResult:
    entity: RecurringEntity
    period: Period                  # the period that was just closed
    log: CompletionLogEntry
    next_period: Period
    next_available_at: datetime


@dataclass
class CompletedItem:
    entity: RecurringEntity
    next_available_at: datetime


@dataclass
class Availability:
    user_id: str
    available: list[RecurringEntity] = field(default_factory=list)
    completed_in_window: list[CompletedItem] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.available) + len(self.completed_in_window)


@dataclass
class OccurrenceResult:
    entity: RecurringEntity
    period: Period
    count: int
    target: Optional[int]
    completion: Optional[CompletionResult] = None


# ---------------------------------------------------------------------------
# Transaction helper (shared with the reactivation sweep)
# ---------------------------------------------------------------------------

class WriteTracker:
    """Remembers whether the current scope has issued a write yet."""

    def __init__(self) -> None:
        self.started = False

    def __call__(self, fn: Callable[..., T], *args) -> T:
        self.started = True
        return fn(*args)


def run_in_transaction(
    stores: Stores,
    operation: str,
    entity_id: int,
    body: Callable[[WriteTracker], T],
) -> T:
    """
    Run `body` inside one transaction scope. Domain errors are re-raised as
    is; anything else raised after the first write becomes PartialFailureError.
    """
    writes = WriteTracker()
    try:
        with stores.transaction():
            return body(writes)
    except _DOMAIN_ERRORS:
        raise
    except Exception as exc:
        if not writes.started:
            raise
        logger.warning(
            "%s %s rolled back for entity %s: %r",
            stores.kind.value, operation, entity_id, exc,
        )
        raise PartialFailureError(operation, entity_id) from exc


def open_period(
    stores: Stores,
    writes: WriteTracker,
    entity: RecurringEntity,
    rule: RepeatType,
    start_date: datetime,
) -> Period:
    """Create an active, uncompleted period [start_date, period_end]."""
    return writes(stores.periods.create, PeriodDraft(
        entity_id=entity.id,
        period_type=rule.value,
        start_date=start_date,
        end_date=calculate_period_end(rule, start_date, entity.repeat_frequency),
        is_completed=False,
        is_active=True,
        target=entity.target,
    ))


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

class CompletionService:
    def __init__(self, stores: Stores, now: clock.Clock = clock.now):
        self.stores = stores
        self._now = now

    # -- helpers -----------------------------------------------------------

    def _load(self, entity_id: int) -> RecurringEntity:
        entity = self.stores.entities.find_by_id(entity_id)
        if entity is None:
            raise NotFoundError(self.stores.kind.value.capitalize(), entity_id)
        if entity.is_archived:
            raise EntityArchivedError(entity_id)
        return entity

    def _active_or_synthesized(
        self,
        writes: WriteTracker,
        entity: RecurringEntity,
        rule: RepeatType,
        now: datetime,
    ) -> Period:
        period = self.stores.periods.find_active_by_entity_id(entity.id, lock=True)
        if period is None:
            logger.info("%s %s has no active period; opening one at %s",
                        self.stores.kind.value, entity.id, now)
            period = open_period(self.stores, writes, entity, rule, now)
        return period

    @staticmethod
    def _follows_success(entity: RecurringEntity, period: Period) -> bool:
        """
        True when a not-yet-started period was opened by a completion.

        A completion opens the next period exactly at the next start after
        `last_completed_date`; periods opened after a miss start later.
        """
        if entity.last_completed_date is None:
            return False
        resumes_at = calculate_next_start_date(
            entity.repeat_type, entity.last_completed_date, entity.repeat_frequency
        )
        return period.start_date <= resumes_at

    def _claim_window(
        self,
        writes: WriteTracker,
        entity: RecurringEntity,
        rule: RepeatType,
        period: Period,
        now: datetime,
    ) -> Period:
        if period.is_completed:
            raise AlreadyCompletedError(entity.id, period.id)
        if period.start_date <= now:
            return period
        if self._follows_success(entity, period):
            raise AlreadyCompletedError(entity.id, period.id, next_available_at=period.start_date)

        # Pending period after a miss: move it back to cover the current window.
        logger.info("%s %s completing before period %s starts; moving it to %s",
                    self.stores.kind.value, entity.id, period.id, now)
        return writes(self.stores.periods.update, period.id, PeriodPatch(
            start_date=now,
            end_date=calculate_period_end(rule, now, entity.repeat_frequency),
        ))

    def _close_and_advance(
        self,
        writes: WriteTracker,
        entity: RecurringEntity,
        rule: RepeatType,
        period: Period,
        now: datetime,
    ) -> CompletionResult:
        closed = writes(self.stores.periods.complete_and_finalize, period.id, now)
        log = writes(
            self.stores.logs.create,
            LogDraft.snapshot(entity, closed, LogStatus.success, now),
        )
        next_available_at = calculate_next_start_date(rule, now, entity.repeat_frequency)
        next_period = open_period(self.stores, writes, entity, rule, next_available_at)

        entity.last_completed_date = now
        updated = writes(self.stores.entities.update, entity)

        logger.info(
            "%s %s completed (period %s); next period %s opens at %s",
            self.stores.kind.value, entity.id, closed.id, next_period.id, next_available_at,
        )
        return CompletionResult(
            entity=updated,
            period=closed,
            log=log,
            next_period=next_period,
            next_available_at=next_available_at,
        )

    # -- public ------------------------------------------------------------

    def complete_entity(self, entity_id: int) -> CompletionResult:
        now = self._now()

        def body(writes: WriteTracker) -> CompletionResult:
            entity = self._load(entity_id)
            rule = validate_rule(entity.repeat_type, entity.repeat_frequency)
            period = self._active_or_synthesized(writes, entity, rule, now)
            period = self._claim_window(writes, entity, rule, period, now)
            return self._close_and_advance(writes, entity, rule, period, now)

        return run_in_transaction(self.stores, "complete", entity_id, body)

    def register_occurrence(self, entity_id: int) -> OccurrenceResult:
        now = self._now()

        def body(writes: WriteTracker) -> OccurrenceResult:
            entity = self._load(entity_id)
            rule = validate_rule(entity.repeat_type, entity.repeat_frequency)
            period = self._active_or_synthesized(writes, entity, rule, now)
            period = self._claim_window(writes, entity, rule, period, now)

            period = writes(self.stores.periods.increment_count, period.id)
            target = period.target if period.target is not None else entity.target
            completion = None
            if target is None or period.count >= target:
                completion = self._close_and_advance(writes, entity, rule, period, now)
                entity, period = completion.entity, completion.period
            return OccurrenceResult(
                entity=entity,
                period=period,
                count=period.count,
                target=target,
                completion=completion,
            )

        return run_in_transaction(self.stores, "register", entity_id, body)

    def next_available_at(
        self, entity: RecurringEntity, period: Optional[Period], now: datetime
    ) -> Optional[datetime]:
        """None when the entity can be completed right now."""
        if period is None:
            return None
        if period.start_date > now:
            return period.start_date if self._follows_success(entity, period) else None
        if not period.is_completed:
            return None
        if period.end_date is not None and period.end_date < now:
            return None
        return calculate_next_start_date(
            entity.repeat_type, period.end_date or now, entity.repeat_frequency
        )

    def list_availability(self, user_id: str) -> Availability:
        now = self._now()
        result = Availability(user_id=user_id)
        for entity in self.stores.entities.find_by_user_id(user_id):
            if entity.is_archived:
                continue
            period = self.stores.periods.find_active_by_entity_id(entity.id)
            next_at = self.next_available_at(entity, period, now)
            if next_at is None:
                result.available.append(entity)
            else:
                result.completed_in_window.append(CompletedItem(entity, next_at))
        return result
