"""create_generation_and_quota_tables

Revision ID: 3f1c9a2b7d10
Revises:
Create Date: 2026-10-18 09:12:41.118204

"""

from typing import Sequence, Union

import sqlalchemy as sa
import sqlmodel

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3f1c9a2b7d10"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# Enum columns store member names
GENERATION_KIND = sa.Enum(
    "TEXT_TO_IMAGE",
    "IMAGE_TO_IMAGE",
    "MULTI_IMAGE",
    "REFINE",
    "IMAGE_TO_VIDEO",
    name="generationkind",
)
JOB_STATE = sa.Enum(
    "CREATED", "QUOTA_RESERVED", "SUBMITTED", "POLLING", "COMPLETED", "FAILED", name="jobstate"
)
FAILURE_REASON = sa.Enum(
    "VALIDATION_ERROR",
    "QUOTA_EXCEEDED",
    "QUOTA_UNAVAILABLE",
    "PROVIDER_REJECTED",
    "PROVIDER_UNAVAILABLE",
    "PROVIDER_GENERATION_FAILED",
    "TIMEOUT",
    "NO_OUTPUTS_PRODUCED",
    name="failurereason",
)
RESERVATION_STATUS = sa.Enum("ACTIVE", "COMMITTED", "ROLLED_BACK", name="reservationstatus")


def upgrade() -> None:
    """Create generation_jobs, usage_accounts and quota_reservations."""
    op.create_table(
        "usage_accounts",
        sa.Column("owner_id", sqlmodel.sql.sqltypes.AutoString(length=255), nullable=False),
        sa.Column("tier", sqlmodel.sql.sqltypes.AutoString(length=50), nullable=False),
        sa.Column("monthly_limit", sa.Integer(), nullable=False),
        sa.Column("used_units", sa.Integer(), nullable=False),
        sa.Column("reserved_units", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint(
            "used_units >= 0 AND reserved_units >= 0", name="usage_non_negative"
        ),
        sa.PrimaryKeyConstraint("owner_id"),
    )

    op.create_table(
        "quota_reservations",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("owner_id", sqlmodel.sql.sqltypes.AutoString(length=255), nullable=False),
        sa.Column("job_id", sa.Uuid(), nullable=False),
        sa.Column("units", sa.Integer(), nullable=False),
        sa.Column("status", RESERVATION_STATUS, nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("resolved_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["owner_id"], ["usage_accounts.owner_id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("job_id"),
    )
    op.create_index("ix_quota_reservations_owner_id", "quota_reservations", ["owner_id"])
    op.create_index("ix_quota_reservations_status", "quota_reservations", ["status"])

    op.create_table(
        "generation_jobs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("owner_id", sqlmodel.sql.sqltypes.AutoString(length=255), nullable=False),
        sa.Column("tier", sqlmodel.sql.sqltypes.AutoString(length=50), nullable=False),
        sa.Column("kind", GENERATION_KIND, nullable=False),
        sa.Column("input_prompt", sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column("input_images", sa.JSON(), nullable=True),
        sa.Column("parameters", sa.JSON(), nullable=True),
        sa.Column("state", JOB_STATE, nullable=False),
        sa.Column("provider_name", sqlmodel.sql.sqltypes.AutoString(length=50), nullable=True),
        sa.Column(
            "provider_task_id", sqlmodel.sql.sqltypes.AutoString(length=255), nullable=True
        ),
        sa.Column("outputs", sa.JSON(), nullable=True),
        sa.Column("cost_units", sa.Integer(), nullable=False),
        sa.Column("failure_reason", FAILURE_REASON, nullable=True),
        sa.Column("error_detail", sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column("state_history", sa.JSON(), nullable=True),
        sa.Column("job_metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_generation_jobs_owner_id", "generation_jobs", ["owner_id"])
    op.create_index("ix_generation_jobs_kind", "generation_jobs", ["kind"])
    op.create_index("ix_generation_jobs_state", "generation_jobs", ["state"])
    op.create_index("ix_generation_jobs_created_at", "generation_jobs", ["created_at"])


def downgrade() -> None:
    """Drop generation_jobs, quota_reservations and usage_accounts."""
    op.drop_index("ix_generation_jobs_created_at", table_name="generation_jobs")
    op.drop_index("ix_generation_jobs_state", table_name="generation_jobs")
    op.drop_index("ix_generation_jobs_kind", table_name="generation_jobs")
    op.drop_index("ix_generation_jobs_owner_id", table_name="generation_jobs")
    op.drop_table("generation_jobs")

    op.drop_index("ix_quota_reservations_status", table_name="quota_reservations")
    op.drop_index("ix_quota_reservations_owner_id", table_name="quota_reservations")
    op.drop_table("quota_reservations")

    op.drop_table("usage_accounts")

    bind = op.get_bind()
    for enum in (FAILURE_REASON, JOB_STATE, GENERATION_KIND, RESERVATION_STATUS):
        enum.drop(bind, checkfirst=True)
