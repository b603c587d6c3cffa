"""
Recurring entity request / response schemas (dailies and habits).

POST /{kind}                    EntityCreateRequest   → EntityOut
POST /{kind}/{id}/complete                            → CompletionResponse
GET  /{kind}/available                                → AvailabilityResponse
POST /{kind}/reactivate         ReactivateRequest     → ReactivationResponse
GET  /{kind}/{id}/periods                             → PeriodListResponse
GET  /{kind}/{id}/logs                                → LogListResponse
POST /habits/{id}/register                            → OccurrenceResponse

Timestamps are ISO-8601 wall-clock strings in the server's TIMEZONE.
"""
from __future__ import annotations

from datetime import datetime
from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from cadence.models.enums import Difficulty


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

class RepetitionRuleIn(BaseModel):
    """Type and frequency are checked by the engine (INVALID_RULE on failure)."""
    type: str = Field(
        default="daily",
        description='"daily" | "weekly" | "monthly" | "yearly".',
        examples=["weekly"],
    )
    frequency: int = Field(
        default=1,
        description="Repeat every N units. Must be >= 1.",
        examples=[1],
    )


class EntityCreateRequest(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    user_id: Annotated[str, Field(min_length=1, max_length=64)]
    title: Annotated[str, Field(min_length=1, max_length=256)]
    observations: Optional[str] = None
    difficulty: Difficulty = Difficulty.easy
    tags: list[str] = Field(default_factory=list)
    repeat: RepetitionRuleIn = Field(default_factory=RepetitionRuleIn)
    start_date: Optional[datetime] = Field(
        default=None,
        description="First day the entity is due. Defaults to now.",
        examples=["2024-01-01T00:00:00"],
    )
    target: Optional[int] = Field(
        default=None,
        ge=1,
        description="Habits only: occurrences needed to fulfil one period.",
    )

    @field_validator("title", mode="before")
    @classmethod
    def strip_and_check_empty(cls, v: str) -> str:
        stripped = v.strip() if isinstance(v, str) else v
        if not stripped:
            raise ValueError("title must not be empty after stripping whitespace")
        return stripped

    @field_validator("start_date")
    @classmethod
    def drop_tzinfo(cls, v: Optional[datetime]) -> Optional[datetime]:
        # Periods are stored as naive wall-clock values.
        return v.replace(tzinfo=None) if v is not None else None


class ReactivateRequest(BaseModel):
    user_id: Annotated[str, Field(min_length=1, max_length=64)]


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------

class EntityOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    kind: str = Field(description='"daily" | "habit"')
    user_id: str
    title: str
    observations: Optional[str] = None
    difficulty: str
    tags: list[str]
    repeat_type: str
    repeat_frequency: int
    target: Optional[int] = None
    start_date: str
    last_completed_date: Optional[str] = None
    status: str


class CompletedEntityOut(EntityOut):
    next_available_at: str = Field(description="When the entity can be completed again.")


class PeriodOut(BaseModel):
    id: int
    entity_id: int
    period_type: str
    start_date: str
    end_date: Optional[str] = None
    is_completed: bool
    is_active: bool
    count: int
    target: Optional[int] = None


class LogOut(BaseModel):
    id: int
    entity_id: int
    period_id: Optional[int] = None
    entity_title: str
    difficulty: str
    tags: list[str]
    status: str = Field(description='"success" | "fail"')
    completed_at: str


class CompletionResponse(BaseModel):
    entity: EntityOut
    period: PeriodOut = Field(description="The period that was just closed.")
    log: LogOut
    next_period: PeriodOut
    next_available_at: str


class AvailabilityResponse(BaseModel):
    user_id: str
    total: int
    available: list[EntityOut]
    completed_in_window: list[CompletedEntityOut]


class ReactivationResponse(BaseModel):
    user_id: str
    reactivated_count: int
    failed_periods: int


class PeriodListResponse(BaseModel):
    total: int
    items: list[PeriodOut]


class LogListResponse(BaseModel):
    total: int
    last_log_date: Optional[str] = None
    items: list[LogOut]


class OccurrenceResponse(BaseModel):
    entity: EntityOut
    period: PeriodOut
    count: int
    target: Optional[int] = None
    completed: bool
    next_available_at: Optional[str] = None
