"""
DailyLog — immutable outcome of one closed DailyPeriod.

Append-only. Title, difficulty and tags are copied from the daily at the
moment the period closed so history survives later edits. Rows are only
removed by retention pruning.

status values:
  "success" — completed by the user; completed_at is the completion instant
  "fail"    — expired unfulfilled; completed_at is the period's end_date
"""
from datetime import datetime
from sqlalchemy import Integer, String, Text, DateTime, Enum, func
from sqlalchemy.orm import Mapped, mapped_column

from cadence.db.base import Base
from cadence.models.enums import LogStatus


class DailyLog(Base):
    __tablename__ = "daily_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    daily_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    period_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    entity_title: Mapped[str] = mapped_column(String(256), nullable=False)
    difficulty: Mapped[str] = mapped_column(String(32), nullable=False)
    tags: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    status: Mapped[str] = mapped_column(
        Enum(LogStatus, name="log_status_enum"),
        nullable=False,
        default=LogStatus.success,
    )
    completed_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
