"""
Entity lifecycle around the period engine.

enroll(draft)          create the entity and open its first period at `now`
                       when it has already started (future ones wait for the sweep)
archive(entity_id)     status -> archived, active period deactivated, no log
prune_logs(days)       delete completion logs older than the retention window
"""
from __future__ import annotations

import logging
from datetime import timedelta
from typing import Optional

from cadence.core import clock
from cadence.core.config import settings
from cadence.core.errors import NotFoundError
from cadence.models.enums import EntityStatus
from cadence.services.completion import WriteTracker, open_period, run_in_transaction
from cadence.services.period_calculator import validate_rule
from cadence.services.stores import EntityDraft, PeriodPatch, RecurringEntity, Stores

logger = logging.getLogger(__name__)


class LifecycleService:
    def __init__(self, stores: Stores, now: clock.Clock = clock.now):
        self.stores = stores
        self._now = now

    def enroll(self, draft: EntityDraft) -> RecurringEntity:
        rule = validate_rule(draft.repeat_type, draft.repeat_frequency)
        draft.repeat_type = rule
        now = self._now()

        with self.stores.transaction():
            entity = self.stores.entities.create(draft)
            if entity.start_date <= now:
                open_period(self.stores, WriteTracker(), entity, rule, now)
        logger.info("%s %s enrolled for user %s (%s x%d)",
                    self.stores.kind.value, entity.id, entity.user_id,
                    rule.value, entity.repeat_frequency)
        return entity

    def archive(self, entity_id: int) -> RecurringEntity:
        def body(writes: WriteTracker) -> RecurringEntity:
            entity = self.stores.entities.find_by_id(entity_id)
            if entity is None:
                raise NotFoundError(self.stores.kind.value.capitalize(), entity_id)
            if entity.is_archived:
                return entity
            period = self.stores.periods.find_active_by_entity_id(entity_id, lock=True)
            if period is not None:
                writes(self.stores.periods.update, period.id, PeriodPatch(is_active=False))
            entity.status = EntityStatus.archived.value
            return writes(self.stores.entities.update, entity)

        entity = run_in_transaction(self.stores, "archive", entity_id, body)
        logger.info("%s %s archived", self.stores.kind.value, entity_id)
        return entity

    def prune_logs(self, retention_days: Optional[int] = None) -> int:
        """Returns the number of deleted log rows. 0 days keeps everything."""
        days = settings.LOG_RETENTION_DAYS if retention_days is None else retention_days
        if days <= 0:
            return 0
        cutoff = self._now() - timedelta(days=days)
        with self.stores.transaction():
            deleted = self.stores.logs.delete_older_than(cutoff)
        if deleted:
            logger.info("pruned %d %s logs older than %s", deleted, self.stores.kind.value, cutoff)
        return deleted
