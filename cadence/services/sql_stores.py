"""
SQLAlchemy implementations of the store contracts.

One concrete class per entity kind and concern (DailyPeriodStore,
HabitPeriodStore, ...). Stores flush but never commit; the transaction
scope returned by `session_transaction(db)` owns commit / rollback.

Error translation
-----------------
IntegrityError on period insert  -> ConcurrentTransitionError (second active period)
any other SQLAlchemyError        -> StorageFailureError
"""
from __future__ import annotations

import functools
import json
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from cadence.core.errors import (
    AlreadyCompletedError,
    ConcurrentTransitionError,
    NotFoundError,
    StorageFailureError,
)
from cadence.models import Daily, DailyLog, DailyPeriod, Habit, HabitLog, HabitPeriod
from cadence.models.enums import Difficulty, EntityKind, EntityStatus, LogStatus, RepeatType
from cadence.services.stores import (
    CompletionLogEntry,
    EntityDraft,
    LogDraft,
    Period,
    PeriodDraft,
    PeriodPatch,
    RecurringEntity,
    Stores,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _ev(v) -> str:
    """Extract bare string value from a str-enum or plain str."""
    return v.value if hasattr(v, "value") else str(v)


def _load_tags(raw: Optional[str]) -> list[str]:
    if not raw:
        return []
    try:
        tags = json.loads(raw)
    except (ValueError, TypeError):
        return []
    return [str(t) for t in tags] if isinstance(tags, list) else []


def _dump_tags(tags: list[str]) -> str:
    return json.dumps(list(tags))


def _storage_errors(fn):
    """Re-raise driver / ORM errors as StorageFailureError."""
    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except SQLAlchemyError as exc:
            raise StorageFailureError(f"{fn.__qualname__} failed: {exc.__class__.__name__}") from exc
    return wrapper


@contextmanager
def session_transaction(db: Session) -> Iterator[None]:
    """Commit on clean exit, roll back on any exception."""
    try:
        yield
    except BaseException:
        db.rollback()
        raise
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise StorageFailureError("Commit failed; the transaction was rolled back.") from exc


# ---------------------------------------------------------------------------
# Recurring entities
# ---------------------------------------------------------------------------

class _SqlEntityStore:
    model: type = None  # type: ignore[assignment]
    resource: str = ""

    def __init__(self, db: Session):
        self.db = db

    def _to_record(self, row) -> RecurringEntity:
        return RecurringEntity(
            id=row.id,
            user_id=row.user_id,
            title=row.title,
            observations=row.observations,
            difficulty=_ev(row.difficulty),
            tags=_load_tags(row.tags),
            repeat_type=RepeatType(_ev(row.repeat_type)),
            repeat_frequency=row.repeat_frequency,
            target=getattr(row, "target", None),
            start_date=row.start_date,
            last_completed_date=row.last_completed_date,
            status=_ev(row.status),
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    @_storage_errors
    def find_by_id(self, entity_id: int) -> Optional[RecurringEntity]:
        row = self.db.get(self.model, entity_id)
        return self._to_record(row) if row is not None else None

    @_storage_errors
    def find_by_user_id(self, user_id: str) -> list[RecurringEntity]:
        rows = self.db.scalars(
            select(self.model)
            .where(self.model.user_id == user_id)
            .order_by(self.model.id)
        ).all()
        return [self._to_record(r) for r in rows]

    @_storage_errors
    def list_user_ids(self) -> list[str]:
        return list(self.db.scalars(
            select(self.model.user_id)
            .where(self.model.status == EntityStatus.active)
            .distinct()
            .order_by(self.model.user_id)
        ).all())

    @_storage_errors
    def create(self, draft: EntityDraft) -> RecurringEntity:
        row = self.model(
            user_id=draft.user_id,
            title=draft.title,
            observations=draft.observations,
            difficulty=Difficulty(_ev(draft.difficulty)),
            tags=_dump_tags(draft.tags),
            repeat_type=RepeatType(_ev(draft.repeat_type)),
            repeat_frequency=draft.repeat_frequency,
            start_date=draft.start_date,
            status=EntityStatus.active,
        )
        if hasattr(self.model, "target"):
            row.target = draft.target
        self.db.add(row)
        self.db.flush()
        self.db.refresh(row)
        return self._to_record(row)

    @_storage_errors
    def update(self, entity: RecurringEntity) -> RecurringEntity:
        row = self.db.get(self.model, entity.id)
        if row is None:
            raise NotFoundError(self.resource, entity.id)
        row.title = entity.title
        row.observations = entity.observations
        row.difficulty = Difficulty(_ev(entity.difficulty))
        row.tags = _dump_tags(entity.tags)
        row.repeat_type = RepeatType(_ev(entity.repeat_type))
        row.repeat_frequency = entity.repeat_frequency
        row.start_date = entity.start_date
        row.last_completed_date = entity.last_completed_date
        row.status = EntityStatus(_ev(entity.status))
        if hasattr(self.model, "target"):
            row.target = entity.target
        self.db.flush()
        self.db.refresh(row)
        return self._to_record(row)


class DailyStore(_SqlEntityStore):
    model = Daily
    resource = "Daily"


class HabitStore(_SqlEntityStore):
    model = Habit
    resource = "Habit"


# ---------------------------------------------------------------------------
# Periods
# ---------------------------------------------------------------------------

class _SqlPeriodStore:
    model: type = None  # type: ignore[assignment]
    owner: str = ""

    def __init__(self, db: Session):
        self.db = db

    @property
    def _owner_col(self):
        return getattr(self.model, self.owner)

    def _to_record(self, row) -> Period:
        return Period(
            id=row.id,
            entity_id=getattr(row, self.owner),
            period_type=row.period_type,
            start_date=row.start_date,
            end_date=row.end_date,
            is_completed=row.is_completed,
            is_active=row.is_active,
            count=row.count,
            target=row.target,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def _get(self, period_id: int):
        row = self.db.get(self.model, period_id)
        if row is None:
            raise NotFoundError("Period", period_id)
        return row

    @_storage_errors
    def find_active_by_entity_id(self, entity_id: int, lock: bool = False) -> Optional[Period]:
        stmt = (
            select(self.model)
            .where(self._owner_col == entity_id, self.model.is_active.is_(True))
            .order_by(self.model.id.desc())
        )
        if lock:
            # Row lock on backends that support it; SQLite ignores FOR UPDATE.
            stmt = stmt.with_for_update()
        row = self.db.scalars(stmt).first()
        return self._to_record(row) if row is not None else None

    @_storage_errors
    def find_by_entity_id(self, entity_id: int) -> list[Period]:
        rows = self.db.scalars(
            select(self.model)
            .where(self._owner_col == entity_id)
            .order_by(self.model.start_date.desc(), self.model.id.desc())
        ).all()
        return [self._to_record(r) for r in rows]

    @_storage_errors
    def find_by_id(self, period_id: int) -> Optional[Period]:
        row = self.db.get(self.model, period_id)
        return self._to_record(row) if row is not None else None

    @_storage_errors
    def create(self, draft: PeriodDraft) -> Period:
        row = self.model(
            period_type=_ev(draft.period_type),
            start_date=draft.start_date,
            end_date=draft.end_date,
            is_completed=draft.is_completed,
            is_active=draft.is_active,
            count=0,
            target=draft.target,
        )
        setattr(row, self.owner, draft.entity_id)
        self.db.add(row)
        try:
            self.db.flush()
        except IntegrityError as exc:
            raise ConcurrentTransitionError(draft.entity_id) from exc
        self.db.refresh(row)
        return self._to_record(row)

    @_storage_errors
    def update(self, period_id: int, patch: PeriodPatch) -> Period:
        row = self._get(period_id)
        changes = patch.changes()
        new_end = changes.get("end_date")
        rebased = "start_date" in changes
        if new_end is not None and row.end_date is not None and new_end < row.end_date and not rebased:
            # end_date only moves forward unless the whole window is moved.
            changes.pop("end_date")
        for key, value in changes.items():
            setattr(row, key, value)
        try:
            self.db.flush()
        except IntegrityError as exc:
            raise ConcurrentTransitionError(getattr(row, self.owner)) from exc
        self.db.refresh(row)
        return self._to_record(row)

    @_storage_errors
    def complete_and_finalize(self, period_id: int, completed_at: datetime) -> Period:
        row = self._get(period_id)
        entity_id = getattr(row, self.owner)
        end_date = completed_at if row.end_date is None else max(row.end_date, completed_at)
        result = self.db.execute(
            update(self.model)
            .where(
                self.model.id == period_id,
                self.model.is_active.is_(True),
                self.model.is_completed.is_(False),
            )
            .values(is_completed=True, is_active=False, end_date=end_date)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise AlreadyCompletedError(entity_id=entity_id, period_id=period_id)
        self.db.refresh(row)
        return self._to_record(row)

    @_storage_errors
    def increment_count(self, period_id: int) -> Period:
        row = self._get(period_id)
        self.db.execute(
            update(self.model)
            .where(self.model.id == period_id)
            .values(count=self.model.count + 1)
            .execution_options(synchronize_session=False)
        )
        self.db.refresh(row)
        return self._to_record(row)


class DailyPeriodStore(_SqlPeriodStore):
    model = DailyPeriod
    owner = "daily_id"


class HabitPeriodStore(_SqlPeriodStore):
    model = HabitPeriod
    owner = "habit_id"


# ---------------------------------------------------------------------------
# Completion logs
# ---------------------------------------------------------------------------

class _SqlLogStore:
    model: type = None  # type: ignore[assignment]
    owner: str = ""

    def __init__(self, db: Session):
        self.db = db

    @property
    def _owner_col(self):
        return getattr(self.model, self.owner)

    def _to_record(self, row) -> CompletionLogEntry:
        return CompletionLogEntry(
            id=row.id,
            entity_id=getattr(row, self.owner),
            period_id=row.period_id,
            entity_title=row.entity_title,
            difficulty=row.difficulty,
            tags=_load_tags(row.tags),
            status=LogStatus(_ev(row.status)),
            completed_at=row.completed_at,
            created_at=row.created_at,
        )

    @_storage_errors
    def create(self, draft: LogDraft) -> CompletionLogEntry:
        row = self.model(
            period_id=draft.period_id,
            entity_title=draft.entity_title,
            difficulty=_ev(draft.difficulty),
            tags=_dump_tags(draft.tags),
            status=draft.status,
            completed_at=draft.completed_at,
        )
        setattr(row, self.owner, draft.entity_id)
        self.db.add(row)
        self.db.flush()
        self.db.refresh(row)
        return self._to_record(row)

    @_storage_errors
    def find_by_entity_id(self, entity_id: int) -> list[CompletionLogEntry]:
        rows = self.db.scalars(
            select(self.model)
            .where(self._owner_col == entity_id)
            .order_by(self.model.completed_at.desc(), self.model.id.desc())
        ).all()
        return [self._to_record(r) for r in rows]

    @_storage_errors
    def get_last_log_date(self, entity_id: int) -> Optional[datetime]:
        return self.db.scalars(
            select(self.model.completed_at)
            .where(self._owner_col == entity_id)
            .order_by(self.model.completed_at.desc())
            .limit(1)
        ).first()

    @_storage_errors
    def delete_older_than(self, cutoff: datetime) -> int:
        result = self.db.execute(
            delete(self.model)
            .where(self.model.completed_at < cutoff)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0


class DailyLogStore(_SqlLogStore):
    model = DailyLog
    owner = "daily_id"


class HabitLogStore(_SqlLogStore):
    model = HabitLog
    owner = "habit_id"


# ---------------------------------------------------------------------------
# Public — wiring
# ---------------------------------------------------------------------------

_STORE_CLASSES = {
    EntityKind.daily: (DailyStore, DailyPeriodStore, DailyLogStore),
    EntityKind.habit: (HabitStore, HabitPeriodStore, HabitLogStore),
}


def build_stores(db: Session, kind: EntityKind) -> Stores:
    """Bind the three stores of `kind` and a transaction scope to one session."""
    entity_cls, period_cls, log_cls = _STORE_CLASSES[EntityKind(kind)]
    return Stores(
        kind=EntityKind(kind),
        entities=entity_cls(db),
        periods=period_cls(db),
        logs=log_cls(db),
        transaction=lambda: session_transaction(db),
    )
