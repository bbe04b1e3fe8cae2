"""create pipeline jobs and tenant record tables

Revision ID: 3b7e9d2a41c6
Revises:
Create Date: 2026-10-19 09:12:40.118204

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "3b7e9d2a41c6"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

TENANT_CHECK = "(user_id IS NULL) <> (session_id IS NULL)"
ACTIVE_JOBS = "status IN ('pending', 'processing')"


def _owner_columns() -> list[sa.Column]:
    return [
        sa.Column("user_id", sa.Text, nullable=True, comment="Owning user"),
        sa.Column(
            "session_id", sa.Text, nullable=True, comment="Owning anonymous session"
        ),
        sa.Column(
            "tenant_key",
            sa.Text,
            nullable=False,
            comment="user:<id> or session:<id>",
        ),
    ]


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "jobs",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("type", sa.Text, nullable=False, comment="Job type identifier"),
        *_owner_columns(),
        sa.Column(
            "payload", sa.JSON, nullable=False, comment="Validated job input"
        ),
        sa.Column(
            "status",
            sa.Text,
            nullable=False,
            server_default="pending",
            comment="Job status: pending|processing|succeeded|failed|cancelled",
        ),
        sa.Column(
            "priority",
            sa.SmallInteger,
            nullable=False,
            server_default="0",
            comment="Priority 0-10, higher runs first",
        ),
        sa.Column(
            "attempts",
            sa.SmallInteger,
            nullable=False,
            server_default="0",
            comment="Failed attempts so far",
        ),
        sa.Column(
            "max_attempts",
            sa.SmallInteger,
            nullable=False,
            server_default="3",
            comment="Attempt budget",
        ),
        sa.Column(
            "run_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
            comment="Earliest time the job may be claimed",
        ),
        # Worker coordination fields
        sa.Column(
            "locked_by", sa.Text, nullable=True, comment="Worker ID that claimed the job"
        ),
        sa.Column(
            "heartbeat_at",
            sa.TIMESTAMP(timezone=True),
            nullable=True,
            comment="Last worker heartbeat",
        ),
        # Results and progress
        sa.Column(
            "result", sa.JSON, nullable=True, comment="Result, written once on success"
        ),
        sa.Column(
            "progress",
            sa.JSON,
            nullable=True,
            comment="Progress {step_index, step_label, total_steps, percent}",
        ),
        sa.Column(
            "error_code", sa.Text, nullable=True, comment="Structured error identifier"
        ),
        sa.Column(
            "error_message", sa.Text, nullable=True, comment="Last error message"
        ),
        sa.Column("last_error_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column(
            "request_id",
            sa.Text,
            nullable=True,
            comment="Submitting request ID for tracing",
        ),
        # Timestamps
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("started_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("completed_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        # Constraints
        sa.CheckConstraint(
            "status IN ('pending', 'processing', 'succeeded', 'failed', 'cancelled')",
            name="jobs_status_check",
        ),
        sa.CheckConstraint("priority BETWEEN 0 AND 10", name="jobs_priority_check"),
        sa.CheckConstraint(TENANT_CHECK, name="jobs_owner_check"),
    )

    # At most one pending/processing job per tenant and type
    op.create_index(
        "ix_jobs_tenant_type_active",
        "jobs",
        ["tenant_key", "type"],
        unique=True,
        postgresql_where=sa.text(ACTIVE_JOBS),
        sqlite_where=sa.text(ACTIVE_JOBS),
    )
    op.create_index("ix_jobs_claim", "jobs", ["status", "priority", "created_at"])
    op.create_index(
        "ix_jobs_tenant_key_created_at", "jobs", ["tenant_key", "created_at"]
    )
    op.create_index("ix_jobs_heartbeat_at", "jobs", ["heartbeat_at"])

    op.create_table(
        "tenant_organizations",
        sa.Column("id", sa.Uuid, primary_key=True),
        *_owner_columns(),
        sa.Column("website_url", sa.Text, nullable=True),
        sa.Column("business_name", sa.Text, nullable=True),
        sa.Column("business_type", sa.Text, nullable=True),
        sa.Column(
            "analysis", sa.JSON, nullable=False, comment="Structured analysis"
        ),
        sa.Column("narrative", sa.Text, nullable=True),
        sa.Column("narrative_confidence", sa.Float, nullable=True),
        sa.Column("key_insights", sa.JSON, nullable=True),
        sa.Column(
            "narrative_generated_at", sa.TIMESTAMP(timezone=True), nullable=True
        ),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint(TENANT_CHECK, name="tenant_organizations_owner_check"),
    )
    op.create_index(
        "ix_tenant_organizations_tenant_key_unique",
        "tenant_organizations",
        ["tenant_key"],
        unique=True,
    )

    op.create_table(
        "tenant_audiences",
        sa.Column("id", sa.Uuid, primary_key=True),
        *_owner_columns(),
        sa.Column(
            "organization_id",
            sa.Uuid,
            sa.ForeignKey("tenant_organizations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("segment", sa.Text, nullable=False),
        sa.Column("pitch", sa.Text, nullable=True),
        sa.Column("image_url", sa.Text, nullable=True),
        sa.Column("priority", sa.SmallInteger, nullable=False, server_default="1"),
        sa.Column(
            "scenario", sa.JSON, nullable=False, comment="Full scenario payload"
        ),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint(TENANT_CHECK, name="tenant_audiences_owner_check"),
    )
    op.create_index(
        "ix_tenant_audiences_organization_id", "tenant_audiences", ["organization_id"]
    )
    op.create_index(
        "ix_tenant_audiences_tenant_key", "tenant_audiences", ["tenant_key"]
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table("tenant_audiences")
    op.drop_table("tenant_organizations")
    op.drop_table("jobs")
