"""Create users, study_blocks and job_locks tables

Revision ID: a3c91e5d7b20
Revises:
Create Date: 2026-10-16 09:12:44.218305

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "a3c91e5d7b20"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("external_id", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
    )
    op.create_index(
        op.f("ix_users_external_id"), "users", ["external_id"], unique=True
    )

    # Times are stored as naive UTC
    op.create_table(
        "study_blocks",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("owner_id", sa.String(length=255), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("start_time", sa.DateTime(), nullable=False),
        sa.Column("end_time", sa.DateTime(), nullable=False),
        sa.Column("reminder_sent", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("end_time > start_time", name="ck_study_blocks_time_order"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        op.f("ix_study_blocks_owner_id"), "study_blocks", ["owner_id"], unique=False
    )
    op.create_index(
        op.f("ix_study_blocks_start_time"), "study_blocks", ["start_time"], unique=False
    )
    op.create_index(
        op.f("ix_study_blocks_reminder_sent"),
        "study_blocks",
        ["reminder_sent"],
        unique=False,
    )
    op.create_index(
        op.f("ix_study_blocks_is_active"), "study_blocks", ["is_active"], unique=False
    )
    op.create_index(
        "idx_study_blocks_scan",
        "study_blocks",
        ["start_time", "reminder_sent", "is_active"],
        unique=False,
    )
    op.create_index(
        "idx_study_blocks_overlap",
        "study_blocks",
        ["owner_id", "is_active", "start_time", "end_time"],
        unique=False,
    )

    op.create_table(
        "job_locks",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("job_type", sa.String(length=50), nullable=False),
        sa.Column("block_id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=255), nullable=False),
        sa.Column("locked_at", sa.DateTime(), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("job_type", "block_id", "user_id", name="uq_job_locks_key"),
    )
    op.create_index(
        op.f("ix_job_locks_expires_at"), "job_locks", ["expires_at"], unique=False
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index(op.f("ix_job_locks_expires_at"), table_name="job_locks")
    op.drop_table("job_locks")

    op.drop_index("idx_study_blocks_overlap", table_name="study_blocks")
    op.drop_index("idx_study_blocks_scan", table_name="study_blocks")
    op.drop_index(op.f("ix_study_blocks_is_active"), table_name="study_blocks")
    op.drop_index(op.f("ix_study_blocks_reminder_sent"), table_name="study_blocks")
    op.drop_index(op.f("ix_study_blocks_start_time"), table_name="study_blocks")
    op.drop_index(op.f("ix_study_blocks_owner_id"), table_name="study_blocks")
    op.drop_table("study_blocks")

    op.drop_index(op.f("ix_users_external_id"), table_name="users")
    op.drop_table("users")
