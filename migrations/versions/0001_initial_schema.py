"""initial schema

Revision ID: 0001
Revises:
Create Date: 2026-10-17 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

_DIFFICULTY = ("trivial", "easy", "medium", "hard")
_REPEAT_TYPE = ("daily", "weekly", "monthly", "yearly")
_ENTITY_STATUS = ("active", "archived")
_LOG_STATUS = ("success", "fail")


def _entity_columns() -> list:
    return [
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("title", sa.String(256), nullable=False),
        sa.Column("observations", sa.Text(), nullable=True),
        sa.Column("difficulty", sa.Enum(
            *_DIFFICULTY, name="difficulty_enum", create_type=False
        ), nullable=False),
        sa.Column("tags", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("repeat_type", sa.Enum(
            *_REPEAT_TYPE, name="repeat_type_enum", create_type=False
        ), nullable=False),
        sa.Column("repeat_frequency", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("start_date", sa.DateTime(), nullable=False),
        sa.Column("last_completed_date", sa.DateTime(), nullable=True),
        sa.Column("status", sa.Enum(
            *_ENTITY_STATUS, name="entity_status_enum", create_type=False
        ), nullable=False, server_default="active"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    ]


def _create_periods(table: str, owner: str, owner_table: str) -> None:
    op.create_table(
        table,
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(owner, sa.Integer(), nullable=False),
        sa.Column("period_type", sa.String(16), nullable=False),
        sa.Column("start_date", sa.DateTime(), nullable=False),
        sa.Column("end_date", sa.DateTime(), nullable=True),
        sa.Column("is_completed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("target", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint([owner], [f"{owner_table}.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(f"ix_{table}_id", table, ["id"])
    op.create_index(f"ix_{table}_{owner}", table, [owner])
    # At most one active period per entity.
    op.create_index(
        f"uq_{table}_one_active",
        table,
        [owner],
        unique=True,
        sqlite_where=sa.text("is_active = 1"),
        postgresql_where=sa.text("is_active"),
    )


def _create_logs(table: str, owner: str) -> None:
    op.create_table(
        table,
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(owner, sa.Integer(), nullable=False),
        sa.Column("period_id", sa.Integer(), nullable=True),
        sa.Column("entity_title", sa.String(256), nullable=False),
        sa.Column("difficulty", sa.String(32), nullable=False),
        sa.Column("tags", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("status", sa.Enum(
            *_LOG_STATUS, name="log_status_enum", create_type=False
        ), nullable=False),
        sa.Column("completed_at", sa.DateTime(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(f"ix_{table}_id", table, ["id"])
    op.create_index(f"ix_{table}_{owner}", table, [owner])
    op.create_index(f"ix_{table}_period_id", table, ["period_id"])
    op.create_index(f"ix_{table}_completed_at", table, ["completed_at"])


def upgrade() -> None:
    # --- ENUM types ---
    bind = op.get_bind()
    sa.Enum(*_DIFFICULTY, name="difficulty_enum").create(bind, checkfirst=True)
    sa.Enum(*_REPEAT_TYPE, name="repeat_type_enum").create(bind, checkfirst=True)
    sa.Enum(*_ENTITY_STATUS, name="entity_status_enum").create(bind, checkfirst=True)
    sa.Enum(*_LOG_STATUS, name="log_status_enum").create(bind, checkfirst=True)

    # --- dailies / habits ---
    op.create_table("dailies", *_entity_columns())
    op.create_index("ix_dailies_id", "dailies", ["id"])
    op.create_index("ix_dailies_user_id", "dailies", ["user_id"])

    op.create_table("habits", *_entity_columns(), sa.Column("target", sa.Integer(), nullable=True))
    op.create_index("ix_habits_id", "habits", ["id"])
    op.create_index("ix_habits_user_id", "habits", ["user_id"])

    # --- periods ---
    _create_periods("daily_periods", "daily_id", "dailies")
    _create_periods("habit_periods", "habit_id", "habits")

    # --- logs ---
    _create_logs("daily_logs", "daily_id")
    _create_logs("habit_logs", "habit_id")


def downgrade() -> None:
    for table in ("habit_logs", "daily_logs", "habit_periods", "daily_periods", "habits", "dailies"):
        op.drop_table(table)

    bind = op.get_bind()
    for name in ("log_status_enum", "entity_status_enum", "repeat_type_enum", "difficulty_enum"):
        sa.Enum(name=name).drop(bind, checkfirst=True)
