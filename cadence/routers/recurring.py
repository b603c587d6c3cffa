"""
Recurring entity routers: one for dailies, one for habits.

Both kinds expose the same surface (built by `_build_router`):

POST /{kind}                      — Create an entity and open its first period
GET  /{kind}/available            — Availability buckets for a user
POST /{kind}/reactivate           — Run the reactivation sweep for a user
GET  /{kind}/{id}                 — Single entity
POST /{kind}/{id}/complete        — Complete the current period
POST /{kind}/{id}/archive         — Archive (stops periods and sweeps)
GET  /{kind}/{id}/periods         — Period history, newest first
GET  /{kind}/{id}/logs            — Completion log, newest first

Habits only:

POST /habits/{id}/register        — Count one occurrence toward the target
"""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from cadence.core.clock import Clock, get_clock
from cadence.core.errors import NotFoundError
from cadence.db.base import get_db
from cadence.models.enums import EntityKind
from cadence.schemas.common import ErrorResponse
from cadence.schemas.recurring import (
    AvailabilityResponse,
    CompletedEntityOut,
    CompletionResponse,
    EntityCreateRequest,
    EntityOut,
    LogListResponse,
    LogOut,
    OccurrenceResponse,
    PeriodListResponse,
    PeriodOut,
    ReactivateRequest,
    ReactivationResponse,
)
from cadence.services.completion import CompletionResult, CompletionService
from cadence.services.lifecycle import LifecycleService
from cadence.services.reactivation import ReactivationService
from cadence.services.sql_stores import build_stores
from cadence.services.stores import (
    CompletionLogEntry,
    EntityDraft,
    Period,
    RecurringEntity,
    Stores,
)


# ---------------------------------------------------------------------------
# Serialization helpers
# ---------------------------------------------------------------------------

def _ev(v) -> str:
    return v.value if hasattr(v, "value") else str(v)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _entity_fields(kind: EntityKind, entity: RecurringEntity) -> dict:
    return dict(
        id=entity.id,
        kind=kind.value,
        user_id=entity.user_id,
        title=entity.title,
        observations=entity.observations,
        difficulty=_ev(entity.difficulty),
        tags=list(entity.tags),
        repeat_type=_ev(entity.repeat_type),
        repeat_frequency=entity.repeat_frequency,
        target=entity.target,
        start_date=entity.start_date.isoformat(),
        last_completed_date=_iso(entity.last_completed_date),
        status=_ev(entity.status),
    )


def _entity_to_response(kind: EntityKind, entity: RecurringEntity) -> EntityOut:
    return EntityOut(**_entity_fields(kind, entity))


def _period_to_response(period: Period) -> PeriodOut:
    return PeriodOut(
        id=period.id,
        entity_id=period.entity_id,
        period_type=period.period_type,
        start_date=period.start_date.isoformat(),
        end_date=_iso(period.end_date),
        is_completed=period.is_completed,
        is_active=period.is_active,
        count=period.count,
        target=period.target,
    )


def _log_to_response(log: CompletionLogEntry) -> LogOut:
    return LogOut(
        id=log.id,
        entity_id=log.entity_id,
        period_id=log.period_id,
        entity_title=log.entity_title,
        difficulty=_ev(log.difficulty),
        tags=list(log.tags),
        status=_ev(log.status),
        completed_at=log.completed_at.isoformat(),
    )


def _completion_to_response(kind: EntityKind, result: CompletionResult) -> CompletionResponse:
    return CompletionResponse(
        entity=_entity_to_response(kind, result.entity),
        period=_period_to_response(result.period),
        log=_log_to_response(result.log),
        next_period=_period_to_response(result.next_period),
        next_available_at=result.next_available_at.isoformat(),
    )


def _require_entity(stores: Stores, entity_id: int) -> RecurringEntity:
    entity = stores.entities.find_by_id(entity_id)
    if entity is None:
        raise NotFoundError(stores.kind.value.capitalize(), entity_id)
    return entity


# ---------------------------------------------------------------------------
# Shared surface
# ---------------------------------------------------------------------------

def _build_router(kind: EntityKind, prefix: str) -> APIRouter:
    router = APIRouter(prefix=prefix, tags=[prefix.strip("/")])
    label = kind.value

    @router.post(
        "",
        response_model=EntityOut,
        status_code=status.HTTP_201_CREATED,
        summary=f"Create a {label}",
        responses={
            201: {"description": "Created. A first period is opened when start_date <= now."},
            422: {"model": ErrorResponse, "description": "Validation error or INVALID_RULE."},
        },
    )
    def create_entity(
        payload: EntityCreateRequest,
        db: Session = Depends(get_db),
        now: Clock = Depends(get_clock),
    ):
        """
        Persist the entity and, when it has already started, open its first
        period at the current instant. Entities starting in the future get
        their first period from the reactivation sweep.
        """
        draft = EntityDraft(
            user_id=payload.user_id,
            title=payload.title,
            observations=payload.observations,
            difficulty=payload.difficulty,
            tags=payload.tags,
            repeat_type=payload.repeat.type,
            repeat_frequency=payload.repeat.frequency,
            start_date=payload.start_date or now(),
            target=payload.target if kind is EntityKind.habit else None,
        )
        entity = LifecycleService(build_stores(db, kind), now=now).enroll(draft)
        return _entity_to_response(kind, entity)

    @router.get(
        "/available",
        response_model=AvailabilityResponse,
        summary=f"List {label} availability for a user",
    )
    def list_available(
        user_id: str = Query(..., min_length=1, max_length=64),
        db: Session = Depends(get_db),
        now: Clock = Depends(get_clock),
    ):
        """
        Every non-archived entity of the user lands in exactly one bucket:
        `available` (can be completed now) or `completed_in_window`
        (with the instant it becomes available again).
        """
        result = CompletionService(build_stores(db, kind), now=now).list_availability(user_id)
        return AvailabilityResponse(
            user_id=user_id,
            total=result.total,
            available=[_entity_to_response(kind, e) for e in result.available],
            completed_in_window=[
                CompletedEntityOut(
                    **_entity_fields(kind, item.entity),
                    next_available_at=item.next_available_at.isoformat(),
                )
                for item in result.completed_in_window
            ],
        )

    @router.post(
        "/reactivate",
        response_model=ReactivationResponse,
        summary=f"Run the {label} reactivation sweep for a user",
    )
    def reactivate(
        payload: ReactivateRequest,
        db: Session = Depends(get_db),
        now: Clock = Depends(get_clock),
    ):
        """
        Close expired, uncompleted periods as misses (one `fail` log each)
        and open the periods that are due. Safe to call repeatedly.
        """
        result = ReactivationService(build_stores(db, kind), now=now).reactivate(payload.user_id)
        return ReactivationResponse(
            user_id=result.user_id,
            reactivated_count=result.reactivated_count,
            failed_periods=result.failed_periods,
        )

    @router.get(
        "/{entity_id}",
        response_model=EntityOut,
        summary=f"Get a {label}",
        responses={404: {"model": ErrorResponse, "description": "Not found."}},
    )
    def get_entity(entity_id: int, db: Session = Depends(get_db)):
        return _entity_to_response(kind, _require_entity(build_stores(db, kind), entity_id))

    @router.post(
        "/{entity_id}/complete",
        response_model=CompletionResponse,
        summary=f"Complete the current {label} period",
        responses={
            200: {"description": "Period closed, success logged, next period opened."},
            404: {"model": ErrorResponse, "description": "Not found."},
            409: {"model": ErrorResponse, "description": "ALREADY_COMPLETED, ENTITY_ARCHIVED or CONCURRENT_TRANSITION."},
        },
    )
    def complete(
        entity_id: int,
        db: Session = Depends(get_db),
        now: Clock = Depends(get_clock),
    ):
        """
        At most one success per period: a second call inside the same window
        returns 409 `ALREADY_COMPLETED` with `next_available_at` in details
        when known.
        """
        result = CompletionService(build_stores(db, kind), now=now).complete_entity(entity_id)
        return _completion_to_response(kind, result)

    @router.post(
        "/{entity_id}/archive",
        response_model=EntityOut,
        summary=f"Archive a {label}",
        responses={404: {"model": ErrorResponse, "description": "Not found."}},
    )
    def archive(
        entity_id: int,
        db: Session = Depends(get_db),
        now: Clock = Depends(get_clock),
    ):
        entity = LifecycleService(build_stores(db, kind), now=now).archive(entity_id)
        return _entity_to_response(kind, entity)

    @router.get(
        "/{entity_id}/periods",
        response_model=PeriodListResponse,
        summary=f"{label.capitalize()} period history",
        responses={404: {"model": ErrorResponse, "description": "Not found."}},
    )
    def list_periods(entity_id: int, db: Session = Depends(get_db)):
        stores = build_stores(db, kind)
        _require_entity(stores, entity_id)
        periods = stores.periods.find_by_entity_id(entity_id)
        return PeriodListResponse(
            total=len(periods),
            items=[_period_to_response(p) for p in periods],
        )

    @router.get(
        "/{entity_id}/logs",
        response_model=LogListResponse,
        summary=f"{label.capitalize()} completion log",
        responses={404: {"model": ErrorResponse, "description": "Not found."}},
    )
    def list_logs(entity_id: int, db: Session = Depends(get_db)):
        stores = build_stores(db, kind)
        _require_entity(stores, entity_id)
        logs = stores.logs.find_by_entity_id(entity_id)
        return LogListResponse(
            total=len(logs),
            last_log_date=_iso(stores.logs.get_last_log_date(entity_id)),
            items=[_log_to_response(log) for log in logs],
        )

    return router


dailies_router = _build_router(EntityKind.daily, "/dailies")
habits_router = _build_router(EntityKind.habit, "/habits")


# ---------------------------------------------------------------------------
# POST /habits/{id}/register
# ---------------------------------------------------------------------------

@habits_router.post(
    "/{entity_id}/register",
    response_model=OccurrenceResponse,
    summary="Register one habit occurrence",
    responses={
        404: {"model": ErrorResponse, "description": "Not found."},
        409: {"model": ErrorResponse, "description": "Current period already fulfilled, or ENTITY_ARCHIVED."},
    },
)
def register_occurrence(
    entity_id: int,
    db: Session = Depends(get_db),
    now: Clock = Depends(get_clock),
):
    """
    Increment the active period's count. When the count reaches the habit's
    target (or immediately, for habits without a target) the period is
    completed exactly like `POST /habits/{id}/complete`.
    """
    result = CompletionService(
        build_stores(db, EntityKind.habit), now=now
    ).register_occurrence(entity_id)
    completion = result.completion
    return OccurrenceResponse(
        entity=_entity_to_response(EntityKind.habit, result.entity),
        period=_period_to_response(result.period),
        count=result.count,
        target=result.target,
        completed=completion is not None,
        next_available_at=_iso(completion.next_available_at) if completion else None,
    )
