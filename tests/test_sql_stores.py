"""
Tests for the SQLAlchemy stores: single-active-period guard, conditional
finalize, error translation.
"""
from datetime import datetime

import pytest
from sqlalchemy.exc import OperationalError

from cadence.core.clock import fixed
from cadence.core.errors import (
    AlreadyCompletedError,
    ConcurrentTransitionError,
    StorageFailureError,
)
from cadence.models import DailyPeriod
from cadence.models.enums import EntityKind, RepeatType
from cadence.services.lifecycle import LifecycleService
from cadence.services.sql_stores import build_stores, session_transaction
from cadence.services.stores import EntityDraft, PeriodDraft, PeriodPatch

NOW = datetime(2024, 1, 3, 9, 0)


@pytest.fixture()
def stores(db):
    return build_stores(db, EntityKind.daily)


@pytest.fixture()
def entity(stores):
    return LifecycleService(stores, now=fixed(NOW)).enroll(EntityDraft(
        user_id="user-1",
        title="Journal",
        repeat_type=RepeatType.daily,
        repeat_frequency=1,
        start_date=datetime(2024, 1, 1),
        tags=["evening", "writing"],
        difficulty="hard",
    ))


class TestEntityStore:
    def test_round_trip(self, stores, entity):
        loaded = stores.entities.find_by_id(entity.id)
        assert loaded.tags == ["evening", "writing"]
        assert loaded.difficulty == "hard"
        assert loaded.repeat_type is RepeatType.daily
        assert loaded.status == "active"
        assert loaded.created_at is not None

    def test_find_missing(self, stores):
        assert stores.entities.find_by_id(12345) is None

    def test_list_user_ids_skips_archived(self, stores, entity):
        assert stores.entities.list_user_ids() == ["user-1"]
        LifecycleService(stores, now=fixed(NOW)).archive(entity.id)
        assert stores.entities.list_user_ids() == []


class TestSingleActivePeriod:
    def test_second_active_period_rejected(self, stores, entity, db):
        with pytest.raises(ConcurrentTransitionError):
            with stores.transaction():
                stores.periods.create(PeriodDraft(
                    entity_id=entity.id, period_type="daily",
                    start_date=NOW, end_date=NOW, is_active=True,
                ))
        assert db.query(DailyPeriod).filter(DailyPeriod.daily_id == entity.id).count() == 1

    def test_inactive_periods_unrestricted(self, stores, entity):
        with stores.transaction():
            for _ in range(2):
                stores.periods.create(PeriodDraft(
                    entity_id=entity.id, period_type="daily",
                    start_date=NOW, end_date=NOW, is_active=False,
                ))
        assert len(stores.periods.find_by_entity_id(entity.id)) == 3


class TestCompleteAndFinalize:
    def test_second_finalize_loses(self, stores, entity):
        period = stores.periods.find_active_by_entity_id(entity.id)
        with stores.transaction():
            closed = stores.periods.complete_and_finalize(period.id, NOW)
        assert closed.is_completed and not closed.is_active

        with pytest.raises(AlreadyCompletedError):
            with stores.transaction():
                stores.periods.complete_and_finalize(period.id, NOW)

    def test_end_date_extended_when_completed_late(self, stores, entity):
        period = stores.periods.find_active_by_entity_id(entity.id)
        late = datetime(2024, 1, 4, 1, 0)
        with stores.transaction():
            closed = stores.periods.complete_and_finalize(period.id, late)
        assert closed.end_date == late

    def test_update_never_moves_end_date_back(self, stores, entity):
        period = stores.periods.find_active_by_entity_id(entity.id)
        with stores.transaction():
            updated = stores.periods.update(period.id, PeriodPatch(end_date=datetime(2023, 1, 1), count=2))
        assert updated.end_date == period.end_date
        assert updated.count == 2

    def test_update_moving_start_replaces_window(self, stores, entity):
        period = stores.periods.find_active_by_entity_id(entity.id)
        start, end = datetime(2023, 12, 30), datetime(2023, 12, 31, 23, 59, 59, 999000)
        with stores.transaction():
            updated = stores.periods.update(period.id, PeriodPatch(start_date=start, end_date=end))
        assert (updated.start_date, updated.end_date) == (start, end)
        assert updated.is_active is True


class TestErrorTranslation:
    def test_driver_error_becomes_storage_failure(self, stores, monkeypatch):
        def broken(*args, **kwargs):
            raise OperationalError("SELECT", {}, Exception("connection reset"))

        monkeypatch.setattr(stores.entities.db, "scalars", broken)
        with pytest.raises(StorageFailureError):
            stores.entities.find_by_user_id("user-1")

    def test_commit_failure_becomes_storage_failure(self, db, monkeypatch):
        def broken_commit():
            raise OperationalError("COMMIT", {}, Exception("disk full"))

        monkeypatch.setattr(db, "commit", broken_commit)
        with pytest.raises(StorageFailureError):
            with session_transaction(db):
                pass
