"""
Habit — a recurring entity tracked by occurrences.

A habit period is fulfilled when `target` occurrences are registered in it
(or by the first one when `target` is NULL).
"""
from datetime import datetime
from sqlalchemy import Integer, String, Text, DateTime, Enum, func
from sqlalchemy.orm import Mapped, mapped_column

from cadence.db.base import Base
from cadence.models.enums import Difficulty, EntityStatus, RepeatType


class Habit(Base):
    __tablename__ = "habits"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(256), nullable=False)
    observations: Mapped[str | None] = mapped_column(Text, nullable=True)
    difficulty: Mapped[str] = mapped_column(
        Enum(Difficulty, name="difficulty_enum"),
        nullable=False,
        default=Difficulty.easy,
    )
    tags: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    repeat_type: Mapped[str] = mapped_column(
        Enum(RepeatType, name="repeat_type_enum"),
        nullable=False,
        default=RepeatType.daily,
    )
    repeat_frequency: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    target: Mapped[int | None] = mapped_column(Integer, nullable=True)
    start_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    last_completed_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    status: Mapped[str] = mapped_column(
        Enum(EntityStatus, name="entity_status_enum"),
        nullable=False,
        default=EntityStatus.active,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
