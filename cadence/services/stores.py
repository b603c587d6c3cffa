"""
Store contracts consumed by the period engine.

The engine never touches the ORM: it reads and writes the plain records
below through three store protocols plus a transaction scope. SQLAlchemy
implementations live in cadence.services.sql_stores; tests substitute
in-memory ones.

Records
-------
RecurringEntity     — a daily or habit (rule, owner, last-completed cache)
Period              — one completion window of an entity
CompletionLogEntry  — immutable success / fail outcome of one period

Contracts
---------
RecurringEntityStore, PeriodStore, CompletionLogStore, TransactionScope
"""
from __future__ import annotations

from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional, Protocol

from cadence.models.enums import Difficulty, EntityKind, EntityStatus, LogStatus, RepeatType


# ---------------------------------------------------------------------------
# Records (plain dataclasses, no ORM, no Pydantic)
# ---------------------------------------------------------------------------

@dataclass
class RecurringEntity:
    id: int
    user_id: str
    title: str
    repeat_type: RepeatType
    repeat_frequency: int
    start_date: datetime
    difficulty: str = Difficulty.easy.value
    tags: list[str] = field(default_factory=list)
    observations: Optional[str] = None
    target: Optional[int] = None            # habits only
    last_completed_date: Optional[datetime] = None
    status: str = EntityStatus.active.value
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_archived(self) -> bool:
        return self.status == EntityStatus.archived.value


@dataclass
class EntityDraft:
    user_id: str
    title: str
    repeat_type: RepeatType
    repeat_frequency: int
    start_date: datetime
    difficulty: str = Difficulty.easy.value
    tags: list[str] = field(default_factory=list)
    observations: Optional[str] = None
    target: Optional[int] = None


@dataclass
class Period:
    id: int
    entity_id: int
    period_type: str
    start_date: datetime
    end_date: Optional[datetime]
    is_completed: bool = False
    is_active: bool = True
    count: int = 0
    target: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class PeriodDraft:
    entity_id: int
    period_type: str
    start_date: datetime
    end_date: Optional[datetime] = None
    is_completed: bool = False
    is_active: bool = True
    target: Optional[int] = None


@dataclass
class PeriodPatch:
    """Fields left as None are not touched."""
    is_completed: Optional[bool] = None
    is_active: Optional[bool] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    count: Optional[int] = None
    target: Optional[int] = None

    def changes(self) -> dict:
        return {k: v for k, v in self.__dict__.items() if v is not None}


@dataclass
class CompletionLogEntry:
    id: int
    entity_id: int
    period_id: Optional[int]
    entity_title: str
    difficulty: str
    tags: list[str]
    status: LogStatus
    completed_at: datetime
    created_at: Optional[datetime] = None


@dataclass
class LogDraft:
    entity_id: int
    period_id: Optional[int]
    entity_title: str
    difficulty: str
    tags: list[str]
    status: LogStatus
    completed_at: datetime

    @classmethod
    def snapshot(
        cls,
        entity: RecurringEntity,
        period: Period,
        status: LogStatus,
        completed_at: datetime,
    ) -> "LogDraft":
        """Freeze the entity's current title / difficulty / tags into a log."""
        return cls(
            entity_id=entity.id,
            period_id=period.id,
            entity_title=entity.title,
            difficulty=entity.difficulty,
            tags=list(entity.tags),
            status=status,
            completed_at=completed_at,
        )


# ---------------------------------------------------------------------------
# Contracts
# ---------------------------------------------------------------------------

class RecurringEntityStore(Protocol):
    def find_by_id(self, entity_id: int) -> Optional[RecurringEntity]: ...

    def find_by_user_id(self, user_id: str) -> list[RecurringEntity]: ...

    def list_user_ids(self) -> list[str]: ...

    def create(self, draft: EntityDraft) -> RecurringEntity: ...

    def update(self, entity: RecurringEntity) -> RecurringEntity: ...


class PeriodStore(Protocol):
    def find_active_by_entity_id(
        self, entity_id: int, lock: bool = False
    ) -> Optional[Period]: ...

    def find_by_entity_id(self, entity_id: int) -> list[Period]:
        """History, newest first."""
        ...

    def find_by_id(self, period_id: int) -> Optional[Period]: ...

    def create(self, draft: PeriodDraft) -> Period: ...

    def update(self, period_id: int, patch: PeriodPatch) -> Period:
        """end_date never moves earlier unless start_date is patched too."""
        ...

    def complete_and_finalize(self, period_id: int, completed_at: datetime) -> Period:
        """
        Close an active, uncompleted period: is_completed=True, is_active=False,
        end_date=max(end_date, completed_at). Raises AlreadyCompletedError when
        the period was already closed (possibly by a concurrent writer).
        """
        ...

    def increment_count(self, period_id: int) -> Period: ...


class CompletionLogStore(Protocol):
    def create(self, draft: LogDraft) -> CompletionLogEntry: ...

    def find_by_entity_id(self, entity_id: int) -> list[CompletionLogEntry]:
        """Newest first."""
        ...

    def get_last_log_date(self, entity_id: int) -> Optional[datetime]: ...

    def delete_older_than(self, cutoff: datetime) -> int: ...


# Zero-arg callable returning a context manager: commit on clean exit,
# rollback (and re-raise) on any exception.
TransactionScope = Callable[[], AbstractContextManager]


@dataclass
class Stores:
    """Everything one entity kind needs, injected into the use cases."""
    kind: EntityKind
    entities: RecurringEntityStore
    periods: PeriodStore
    logs: CompletionLogStore
    transaction: TransactionScope
