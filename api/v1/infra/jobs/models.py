"""
Job model and lifecycle state machine for background pipelines.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    TIMESTAMP,
    CheckConstraint,
    Index,
    SmallInteger,
    Text,
    Uuid,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from api.infra.database import Base
from api.v1.tenants.models import TENANT_CHECK, TenantOwnedMixin


class JobStatus(str, Enum):
    """Job status enumeration."""

    PENDING = "pending"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


class JobType(str, Enum):
    """Job kinds, each backed by a registered pipeline."""

    WEBSITE_ANALYSIS = "website_analysis"
    CONTENT_GENERATION = "content_generation"
    NARRATIVE_GENERATION = "narrative_generation"


ACTIVE_STATUSES = (JobStatus.PENDING, JobStatus.PROCESSING)
TERMINAL_STATUSES = (JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.CANCELLED)

# Every legal status change. A failed job only leaves FAILED through an
# explicit retry; succeeded and cancelled jobs never change again.
ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.PROCESSING, JobStatus.CANCELLED}),
    JobStatus.PROCESSING: frozenset(
        {
            JobStatus.SUCCEEDED,
            JobStatus.PENDING,
            JobStatus.FAILED,
            JobStatus.CANCELLED,
        }
    ),
    JobStatus.FAILED: frozenset({JobStatus.PENDING}),
    JobStatus.SUCCEEDED: frozenset(),
    JobStatus.CANCELLED: frozenset(),
}


def can_transition(source: JobStatus | str, target: JobStatus | str) -> bool:
    return JobStatus(target) in ALLOWED_TRANSITIONS[JobStatus(source)]


def sources_for(target: JobStatus) -> list[str]:
    """Statuses from which ``target`` may be entered."""
    return [
        source.value
        for source, targets in ALLOWED_TRANSITIONS.items()
        if target in targets
    ]


# locked_by holds a lease: the worker id plus a suffix unique to one claim
LEASE_SEPARATOR = "/"


def new_lease(worker_id: str) -> str:
    return f"{worker_id}{LEASE_SEPARATOR}{uuid4().hex[:12]}"


def lease_owner(locked_by: str) -> str:
    """Worker id that took the lease."""
    return locked_by.rsplit(LEASE_SEPARATOR, 1)[0]


_ACTIVE_SQL = "status IN ('pending', 'processing')"


class Job(TenantOwnedMixin, Base):
    """
    Job model for background pipeline processing.

    Provides:
    - At most one pending/processing job per (tenant, type), enforced by a
      partial unique index
    - Worker coordination (locking, heartbeats)
    - Attempt accounting with backoff scheduling
    - Progress tracking and structured errors
    """

    __tablename__ = "jobs"

    # Core fields
    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    type: Mapped[str] = mapped_column(
        Text, nullable=False, comment="Job type identifier"
    )
    payload: Mapped[dict[str, Any]] = mapped_column(
        JSON,
        nullable=False,
        default=dict,
        comment="Validated job input",
    )

    # Job state
    status: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default=JobStatus.PENDING.value,
        comment="Job status: pending|processing|succeeded|failed|cancelled",
    )
    priority: Mapped[int] = mapped_column(
        SmallInteger,
        nullable=False,
        default=0,
        comment="Priority 0-10, higher runs first",
    )
    attempts: Mapped[int] = mapped_column(
        SmallInteger, nullable=False, default=0, comment="Failed attempts so far"
    )
    max_attempts: Mapped[int] = mapped_column(
        SmallInteger, nullable=False, default=3, comment="Attempt budget"
    )
    run_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
        default=lambda: datetime.now(UTC),
        comment="Earliest time the job may be claimed",
    )

    # Worker coordination
    locked_by: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Worker ID that claimed the job"
    )
    heartbeat_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True, comment="Last worker heartbeat"
    )

    # Results and progress
    result: Mapped[dict[str, Any] | None] = mapped_column(
        JSON, nullable=True, comment="Result, written once on success"
    )
    progress: Mapped[dict[str, Any] | None] = mapped_column(
        JSON,
        nullable=True,
        comment="Progress {step_index, step_label, total_steps, percent}",
    )
    error_code: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Structured error identifier"
    )
    error_message: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Last error message"
    )
    last_error_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )

    # Tracing
    request_id: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Submitting request ID for tracing"
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
        default=lambda: datetime.now(UTC),
    )
    started_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
        default=lambda: datetime.now(UTC),
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'processing', 'succeeded', 'failed', 'cancelled')",
            name="jobs_status_check",
        ),
        CheckConstraint("priority BETWEEN 0 AND 10", name="jobs_priority_check"),
        CheckConstraint(TENANT_CHECK, name="jobs_owner_check"),
        Index(
            "ix_jobs_tenant_type_active",
            "tenant_key",
            "type",
            unique=True,
            postgresql_where=text(_ACTIVE_SQL),
            sqlite_where=text(_ACTIVE_SQL),
        ),
        Index("ix_jobs_claim", "status", "priority", "created_at"),
        Index("ix_jobs_tenant_key_created_at", "tenant_key", "created_at"),
        Index("ix_jobs_heartbeat_at", "heartbeat_at"),
    )

    def is_active(self) -> bool:
        """Check if job is pending or processing."""
        return self.status in (s.value for s in ACTIVE_STATUSES)

    def is_terminal(self) -> bool:
        return self.status in (s.value for s in TERMINAL_STATUSES)

    def get_progress_percentage(self) -> float | None:
        """Get progress as percentage if progress data is available."""
        if not self.progress or not isinstance(self.progress, dict):
            return None

        step_index = self.progress.get("step_index", 0)
        total = self.progress.get("total_steps", 0)

        if total <= 0:
            return None

        return min(100.0, (step_index / total) * 100.0)
