"""
Tests for the completion orchestrator, run against both the in-memory stores
and the SQLAlchemy stores (SQLite).
"""
from datetime import datetime

import pytest

from memory_stores import MemoryBackend

from cadence.core.clock import fixed
from cadence.core.errors import (
    AlreadyCompletedError,
    EntityArchivedError,
    NotFoundError,
    PartialFailureError,
    StorageFailureError,
)
from cadence.models.enums import EntityKind, LogStatus, RepeatType
from cadence.services.completion import CompletionService
from cadence.services.lifecycle import LifecycleService
from cadence.services.reactivation import ReactivationService
from cadence.services.sql_stores import build_stores
from cadence.services.stores import EntityDraft


@pytest.fixture(params=["memory", "sql"])
def make_stores(request, db):
    if request.param == "memory":
        backend = MemoryBackend()
        return backend.stores
    return lambda kind=EntityKind.daily: build_stores(db, kind)


def enroll(stores, at, **overrides):
    fields = dict(
        user_id="user-1",
        title="Read 20 pages",
        repeat_type=RepeatType.weekly,
        repeat_frequency=1,
        start_date=datetime(2024, 1, 1),
        tags=["reading"],
        difficulty="medium",
    )
    fields.update(overrides)
    return LifecycleService(stores, now=fixed(at)).enroll(EntityDraft(**fields))


def complete(stores, entity_id, at):
    return CompletionService(stores, now=fixed(at)).complete_entity(entity_id)


class TestCompleteEntity:
    def test_weekly_scenario(self, make_stores):
        stores = make_stores()
        entity = enroll(stores, at=datetime(2024, 1, 1, 9, 0))

        result = complete(stores, entity.id, at=datetime(2024, 1, 3, 10, 0))
        assert result.next_available_at == datetime(2024, 1, 8)
        assert result.period.is_completed is True
        assert result.period.is_active is False
        assert result.log.status == LogStatus.success
        assert result.log.completed_at == datetime(2024, 1, 3, 10, 0)
        assert result.next_period.start_date == datetime(2024, 1, 8)
        assert result.next_period.end_date == datetime(2024, 1, 14, 23, 59, 59, 999000)
        assert result.next_period.is_active is True
        assert result.entity.last_completed_date == datetime(2024, 1, 3, 10, 0)

        with pytest.raises(AlreadyCompletedError) as exc_info:
            complete(stores, entity.id, at=datetime(2024, 1, 5, 12, 0))
        assert exc_info.value.details["next_available_at"] == "2024-01-08T00:00:00"
        assert len(stores.logs.find_by_entity_id(entity.id)) == 1

        again = complete(stores, entity.id, at=datetime(2024, 1, 9, 8, 0))
        assert again.next_available_at == datetime(2024, 1, 15)
        assert len(stores.logs.find_by_entity_id(entity.id)) == 2

    def test_closed_period_keeps_window_end(self, make_stores):
        stores = make_stores()
        entity = enroll(stores, at=datetime(2024, 1, 1, 9, 0))
        result = complete(stores, entity.id, at=datetime(2024, 1, 3, 10, 0))
        assert result.period.end_date == datetime(2024, 1, 7, 23, 59, 59, 999000)

    def test_log_snapshots_entity_fields(self, make_stores):
        stores = make_stores()
        entity = enroll(stores, at=datetime(2024, 1, 1, 9, 0))
        log = complete(stores, entity.id, at=datetime(2024, 1, 2)).log
        assert log.entity_title == "Read 20 pages"
        assert log.difficulty == "medium"
        assert log.tags == ["reading"]
        assert log.period_id is not None

    def test_exactly_one_active_period_after_completion(self, make_stores):
        stores = make_stores()
        entity = enroll(stores, at=datetime(2024, 1, 1, 9, 0))
        complete(stores, entity.id, at=datetime(2024, 1, 2))
        history = stores.periods.find_by_entity_id(entity.id)
        assert len(history) == 2
        assert sum(1 for p in history if p.is_active) == 1
        assert sum(1 for p in history if p.is_completed) == 1

    def test_entity_without_period_gets_one_synthesized(self, make_stores):
        stores = make_stores()
        entity = enroll(stores, at=datetime(2023, 12, 1), start_date=datetime(2024, 1, 1))
        assert stores.periods.find_active_by_entity_id(entity.id) is None

        result = complete(stores, entity.id, at=datetime(2024, 1, 2, 7, 30))
        assert result.period.start_date == datetime(2024, 1, 2, 7, 30)
        assert result.period.is_completed is True
        assert result.next_available_at == datetime(2024, 1, 8)

    def test_unknown_entity(self, make_stores):
        with pytest.raises(NotFoundError):
            complete(make_stores(), 999, at=datetime(2024, 1, 1))

    def test_daily_completion_opens_tomorrow(self, make_stores):
        stores = make_stores()
        entity = enroll(stores, at=datetime(2024, 1, 1, 9, 0), repeat_type=RepeatType.daily)
        result = complete(stores, entity.id, at=datetime(2024, 1, 1, 21, 0))
        assert result.next_available_at == datetime(2024, 1, 2)
        with pytest.raises(AlreadyCompletedError):
            complete(stores, entity.id, at=datetime(2024, 1, 1, 23, 0))
        assert complete(stores, entity.id, at=datetime(2024, 1, 2, 0, 0)).log is not None


class TestAlreadyCompletedPeriod:
    def test_completed_active_period_rejected(self):
        backend = MemoryBackend()
        entity = backend.add_entity(
            user_id="u", title="t", repeat_type=RepeatType.daily,
            repeat_frequency=1, start_date=datetime(2024, 1, 1),
        )
        backend.add_period(
            entity_id=entity.id, period_type="daily",
            start_date=datetime(2024, 1, 1), end_date=datetime(2024, 1, 1, 23, 59, 59, 999000),
            is_completed=True, is_active=True,
        )
        with pytest.raises(AlreadyCompletedError):
            complete(backend.stores(), entity.id, at=datetime(2024, 1, 1, 12))
        assert backend.logs == {}


class TestRollback:
    def _seed(self):
        backend = MemoryBackend()
        stores = backend.stores()
        entity = enroll(stores, at=datetime(2024, 1, 1, 9, 0))
        return backend, stores, entity

    def test_failure_after_first_write_is_partial_and_rolled_back(self):
        backend, stores, entity = self._seed()
        backend.fail_on.add("logs.create")

        with pytest.raises(PartialFailureError) as exc_info:
            complete(stores, entity.id, at=datetime(2024, 1, 3))
        assert exc_info.value.code == "PARTIAL_FAILURE"
        assert isinstance(exc_info.value.__cause__, StorageFailureError)

        period = stores.periods.find_active_by_entity_id(entity.id)
        assert period.is_completed is False
        assert backend.logs == {}
        assert stores.entities.find_by_id(entity.id).last_completed_date is None
        assert len(backend.periods) == 1

    def test_failure_on_last_write_rolls_back_everything(self):
        backend, stores, entity = self._seed()
        backend.fail_on.add("entities.update")
        with pytest.raises(PartialFailureError):
            complete(stores, entity.id, at=datetime(2024, 1, 3))
        assert backend.logs == {}
        assert len(backend.periods) == 1
        assert backend.active_periods(entity.id)[0].is_completed is False

    def test_failure_before_any_write_is_not_partial(self):
        backend, stores, entity = self._seed()
        backend.fail_on.add("entities.find_by_id")
        with pytest.raises(StorageFailureError) as exc_info:
            complete(stores, entity.id, at=datetime(2024, 1, 3))
        assert type(exc_info.value) is StorageFailureError

    def test_retry_after_failure_succeeds(self):
        backend, stores, entity = self._seed()
        backend.fail_on.add("logs.create")
        with pytest.raises(PartialFailureError):
            complete(stores, entity.id, at=datetime(2024, 1, 3))
        backend.fail_on.clear()
        assert complete(stores, entity.id, at=datetime(2024, 1, 3)).next_available_at == datetime(2024, 1, 8)


class TestRegisterOccurrence:
    def test_counts_up_to_target(self, make_stores):
        stores = make_stores(EntityKind.habit)
        habit = enroll(stores, at=datetime(2024, 1, 1, 9, 0), title="Drink water",
                       repeat_type=RepeatType.daily, target=3)
        svc = CompletionService(stores, now=fixed(datetime(2024, 1, 1, 12, 0)))

        first = svc.register_occurrence(habit.id)
        assert (first.count, first.target, first.completion) == (1, 3, None)
        assert svc.register_occurrence(habit.id).count == 2
        assert stores.logs.find_by_entity_id(habit.id) == []

        third = svc.register_occurrence(habit.id)
        assert third.count == 3
        assert third.completion is not None
        assert third.period.is_completed is True
        assert third.completion.next_available_at == datetime(2024, 1, 2)
        assert len(stores.logs.find_by_entity_id(habit.id)) == 1

        with pytest.raises(AlreadyCompletedError):
            svc.register_occurrence(habit.id)

    def test_without_target_completes_immediately(self, make_stores):
        stores = make_stores(EntityKind.habit)
        habit = enroll(stores, at=datetime(2024, 1, 1, 9, 0), repeat_type=RepeatType.daily)
        result = CompletionService(stores, now=fixed(datetime(2024, 1, 1, 10))).register_occurrence(habit.id)
        assert result.completion is not None
        assert result.count == 1


class TestListAvailability:
    def test_partitions_user_entities(self, make_stores):
        stores = make_stores()
        at = datetime(2024, 1, 3, 10, 0)
        fresh = enroll(stores, at=datetime(2024, 1, 1, 9, 0), title="fresh")
        done = enroll(stores, at=datetime(2024, 1, 1, 9, 0), title="done")
        future = enroll(stores, at=datetime(2024, 1, 1, 9, 0), title="future",
                        start_date=datetime(2024, 3, 1))
        archived = enroll(stores, at=datetime(2024, 1, 1, 9, 0), title="archived")
        enroll(stores, at=datetime(2024, 1, 1, 9, 0), title="someone else", user_id="user-2")

        complete(stores, done.id, at=at)
        LifecycleService(stores, now=fixed(at)).archive(archived.id)

        result = CompletionService(stores, now=fixed(at)).list_availability("user-1")
        available = {e.id for e in result.available}
        in_window = {item.entity.id: item.next_available_at for item in result.completed_in_window}

        assert available == {fresh.id, future.id}
        assert in_window == {done.id: datetime(2024, 1, 8)}
        assert available.isdisjoint(in_window)
        assert result.total == 3

    def test_available_again_once_next_period_starts(self, make_stores):
        stores = make_stores()
        entity = enroll(stores, at=datetime(2024, 1, 1, 9, 0))
        complete(stores, entity.id, at=datetime(2024, 1, 3))

        svc = CompletionService(stores, now=fixed(datetime(2024, 1, 8)))
        assert [e.id for e in svc.list_availability("user-1").available] == [entity.id]

    def test_unknown_user_is_empty(self, make_stores):
        result = CompletionService(make_stores(), now=fixed(datetime(2024, 1, 1))).list_availability("nobody")
        assert result.total == 0


class TestArchivedEntity:
    def test_complete_rejected_without_writes(self, make_stores):
        stores = make_stores()
        entity = enroll(stores, at=datetime(2024, 1, 1, 9, 0))
        LifecycleService(stores, now=fixed(datetime(2024, 1, 1, 12, 0))).archive(entity.id)

        with pytest.raises(EntityArchivedError) as exc_info:
            complete(stores, entity.id, at=datetime(2024, 1, 2))
        assert exc_info.value.http_status == 409
        assert stores.logs.find_by_entity_id(entity.id) == []
        assert stores.periods.find_active_by_entity_id(entity.id) is None
        assert stores.entities.find_by_id(entity.id).last_completed_date is None

    def test_register_rejected(self, make_stores):
        stores = make_stores(EntityKind.habit)
        habit = enroll(stores, at=datetime(2024, 1, 1, 9, 0), repeat_type=RepeatType.daily, target=2)
        LifecycleService(stores, now=fixed(datetime(2024, 1, 1, 10, 0))).archive(habit.id)

        svc = CompletionService(stores, now=fixed(datetime(2024, 1, 1, 11, 0)))
        with pytest.raises(EntityArchivedError):
            svc.register_occurrence(habit.id)
        assert all(not p.is_active and p.count == 0 for p in stores.periods.find_by_entity_id(habit.id))


class TestAfterMissedPeriod:
    def _missed_midweek(self, stores):
        # Wednesday start: the first window closes Tuesday 01-09 and the
        # sweep opens the next one at Monday 01-15.
        entity = enroll(stores, at=datetime(2024, 1, 3, 9, 0), start_date=datetime(2024, 1, 3, 9, 0))
        swept = ReactivationService(stores, now=fixed(datetime(2024, 1, 10, 8, 0))).reactivate("user-1")
        assert swept.failed_periods == 1
        assert stores.periods.find_active_by_entity_id(entity.id).start_date == datetime(2024, 1, 15)
        return entity

    def test_listed_as_available_before_next_period(self, make_stores):
        stores = make_stores()
        entity = self._missed_midweek(stores)

        result = CompletionService(stores, now=fixed(datetime(2024, 1, 11))).list_availability("user-1")
        assert [e.id for e in result.available] == [entity.id]
        assert result.completed_in_window == []

    def test_completion_claims_current_window(self, make_stores):
        stores = make_stores()
        entity = self._missed_midweek(stores)

        result = complete(stores, entity.id, at=datetime(2024, 1, 11, 10, 0))
        assert result.period.start_date == datetime(2024, 1, 11, 10, 0)
        assert result.period.end_date == datetime(2024, 1, 17, 23, 59, 59, 999000)
        assert result.next_available_at == datetime(2024, 1, 15)
        assert result.next_period.start_date == datetime(2024, 1, 15)
        assert [log.status for log in stores.logs.find_by_entity_id(entity.id)] == [
            LogStatus.success, LogStatus.fail,
        ]
        history = stores.periods.find_by_entity_id(entity.id)
        assert len(history) == 3
        assert sum(1 for p in history if p.is_active) == 1

        svc = CompletionService(stores, now=fixed(datetime(2024, 1, 12)))
        in_window = {item.entity.id: item.next_available_at for item in svc.list_availability("user-1").completed_in_window}
        assert in_window == {entity.id: datetime(2024, 1, 15)}
        with pytest.raises(AlreadyCompletedError) as exc_info:
            svc.complete_entity(entity.id)
        assert exc_info.value.details["next_available_at"] == "2024-01-15T00:00:00"

    def test_daily_every_other_day_gap_is_available(self, make_stores):
        stores = make_stores()
        entity = enroll(stores, at=datetime(2024, 1, 1, 9, 0), repeat_type=RepeatType.daily,
                        repeat_frequency=2)
        ReactivationService(stores, now=fixed(datetime(2024, 1, 2, 6, 0))).reactivate("user-1")
        assert stores.periods.find_active_by_entity_id(entity.id).start_date == datetime(2024, 1, 3)

        svc = CompletionService(stores, now=fixed(datetime(2024, 1, 2, 12, 0)))
        assert [e.id for e in svc.list_availability("user-1").available] == [entity.id]
        assert svc.complete_entity(entity.id).next_available_at == datetime(2024, 1, 4)
