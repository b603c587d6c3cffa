"""
Reactivation Sweep — the time-driven side of the period engine.

For every active entity of a user whose start_date has been reached:

  active period, expired, not completed  -> MISS
      finalize (end_date kept), append "fail" log with completed_at=end_date,
      open the next period from calculate_next_start_date(end_date)
  active period, otherwise               -> nothing to do
  no active period, due                  -> open a period at start_date
                                            (never completed) or at the next
                                            start after last_completed_date

Each entity is handled in its own transaction scope. A long absence is
caught up one missed period per pass, so a pass is a no-op only once every
active period is live again. An entity with a stale start_date and no
period gets an already expired period first and a miss on the next pass.
"""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime

from cadence.core import clock
from cadence.core.errors import AlreadyCompletedError
from cadence.models.enums import LogStatus
from cadence.services.completion import WriteTracker, open_period, run_in_transaction
from cadence.services.period_calculator import (
    calculate_next_start_date,
    calculate_period_end,
    should_be_available,
    validate_rule,
)
from cadence.services.stores import LogDraft, RecurringEntity, Stores

logger = logging.getLogger(__name__)


class SweepOutcome(str, enum.Enum):
    untouched = "untouched"
    missed = "missed"       # expired period recorded as fail, next one opened
    opened = "opened"       # entity had no active period; one was opened


@dataclass
class ReactivationResult:
    user_id: str
    reactivated_count: int = 0
    failed_periods: int = 0
    # entity_id -> outcome, only for entities that changed
    outcomes: dict[int, SweepOutcome] = field(default_factory=dict)


class ReactivationService:
    def __init__(self, stores: Stores, now: clock.Clock = clock.now):
        self.stores = stores
        self._now = now

    def _sweep_one(self, entity: RecurringEntity, now: datetime) -> SweepOutcome:
        rule = validate_rule(entity.repeat_type, entity.repeat_frequency)
        freq = entity.repeat_frequency

        def body(writes: WriteTracker) -> SweepOutcome:
            period = self.stores.periods.find_active_by_entity_id(entity.id, lock=True)

            if period is not None:
                if period.is_completed:
                    return SweepOutcome.untouched
                end_date = period.end_date or calculate_period_end(rule, period.start_date, freq)
                if end_date >= now:
                    return SweepOutcome.untouched

                closed = writes(self.stores.periods.complete_and_finalize, period.id, end_date)
                writes(
                    self.stores.logs.create,
                    LogDraft.snapshot(entity, closed, LogStatus.fail, closed.end_date),
                )
                next_start = calculate_next_start_date(rule, closed.end_date, freq)
                opened = open_period(self.stores, writes, entity, rule, next_start)
                logger.info(
                    "%s %s missed period %s (ended %s); period %s opens at %s",
                    self.stores.kind.value, entity.id, closed.id, closed.end_date,
                    opened.id, next_start,
                )
                return SweepOutcome.missed

            if not should_be_available(rule, entity.last_completed_date, now, freq):
                return SweepOutcome.untouched

            if entity.last_completed_date is None:
                start = entity.start_date
            else:
                start = calculate_next_start_date(rule, entity.last_completed_date, freq)
            opened = open_period(self.stores, writes, entity, rule, start)
            logger.info(
                "%s %s had no active period; period %s opened at %s",
                self.stores.kind.value, entity.id, opened.id, start,
            )
            return SweepOutcome.opened

        return run_in_transaction(self.stores, "reactivate", entity.id, body)

    def reactivate(self, user_id: str) -> ReactivationResult:
        now = self._now()
        result = ReactivationResult(user_id=user_id)

        for entity in self.stores.entities.find_by_user_id(user_id):
            if entity.is_archived or entity.start_date > now:
                continue
            try:
                outcome = self._sweep_one(entity, now)
            except AlreadyCompletedError:
                # A concurrent completion closed the period first.
                logger.info("%s %s closed concurrently; skipped",
                            self.stores.kind.value, entity.id)
                continue

            if outcome is SweepOutcome.untouched:
                continue
            result.outcomes[entity.id] = outcome
            result.reactivated_count += 1
            if outcome is SweepOutcome.missed:
                result.failed_periods += 1

        if result.reactivated_count:
            logger.info(
                "%s sweep for user %s: reactivated=%d failed=%d",
                self.stores.kind.value, user_id,
                result.reactivated_count, result.failed_periods,
            )
        return result

    def reactivate_all(self) -> list[ReactivationResult]:
        """Sweep every user that owns an active entity of this kind."""
        return [self.reactivate(user_id) for user_id in self.stores.entities.list_user_ids()]
