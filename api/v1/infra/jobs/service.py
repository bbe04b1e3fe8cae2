"""
Job queue: admission, scheduling and guarded state transitions.
"""

import random
import uuid
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID

from api.config.logging import get_logger
from api.config.settings import Settings
from api.v1.core.exceptions import (
    DuplicateActiveError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from api.v1.core.security import TenantContext
from api.v1.infra.jobs.models import Job, JobStatus, JobType, sources_for
from api.v1.infra.jobs.schemas import (
    JobEnqueueResponse,
    JobStatsResponse,
    dump_payload,
    parse_payload,
)
from api.v1.infra.jobs.store import ActiveJobConflict, JobStore

logger = get_logger(__name__)

WORKER_TIMEOUT_CODE = "WORKER_TIMEOUT"


def calculate_retry_delay(attempt: int, base_ms: int, max_s: int) -> float:
    """Exponential backoff with ±25% jitter, in seconds."""
    base_delay = base_ms / 1000
    delay = min(max_s, base_delay * (2 ** max(0, attempt - 1)))
    jitter = delay * 0.25 * (2 * random.random() - 1)
    return max(0.0, delay + jitter)


class JobQueue:
    """Admission control, scheduling and state transitions over a JobStore."""

    def __init__(self, store: JobStore, settings: Settings):
        self.store = store
        self.settings = settings

    # Admission

    async def submit(
        self,
        job_type: str,
        payload: dict[str, Any] | None,
        tenant: TenantContext | None,
        priority: int | None = None,
        request_id: str | None = None,
    ) -> Job:
        """
        Validate and persist a pending job.

        Raises:
            ValidationError: unknown type, invalid payload, missing tenant
            DuplicateActiveError: the tenant already has an active job of this
                type; carries the existing job
        """
        if tenant is None:
            raise ValidationError("A user or session identity is required")

        parsed = parse_payload(job_type, payload)
        if job_type == JobType.CONTENT_GENERATION.value and not tenant.is_user:
            raise ValidationError("Content generation requires a signed-in user")

        priority = self.settings.job_default_priority if priority is None else priority
        if not 0 <= priority <= 10:
            raise ValidationError(
                "Priority must be between 0 and 10", details={"priority": priority}
            )

        existing = await self.store.find_active(tenant.key, job_type)
        if existing:
            raise DuplicateActiveError(existing)

        now = datetime.now(UTC)
        job = Job(
            id=uuid.uuid4(),
            type=job_type,
            payload=dump_payload(parsed),
            status=JobStatus.PENDING.value,
            priority=priority,
            attempts=0,
            max_attempts=self.settings.job_max_attempts,
            run_at=now,
            request_id=request_id,
            created_at=now,
            updated_at=now,
            **tenant.owner_columns(),
        )

        try:
            job = await self.store.insert(job)
        except ActiveJobConflict:
            # Race - another request admitted the same (tenant, type) first
            existing = await self.store.find_active(tenant.key, job_type)
            if existing is None:
                raise
            raise DuplicateActiveError(existing) from None

        logger.info(
            "Job submitted",
            job_id=str(job.id),
            job_type=job_type,
            tenant=tenant.key,
            priority=priority,
        )
        return job

    async def enqueue(
        self,
        job_type: str,
        payload: dict[str, Any] | None,
        tenant: TenantContext | None,
        priority: int | None = None,
        request_id: str | None = None,
    ) -> JobEnqueueResponse:
        """Submit, returning the existing active job instead of raising."""
        try:
            job = await self.submit(job_type, payload, tenant, priority, request_id)
        except DuplicateActiveError as e:
            logger.info(
                "Job deduplicated",
                job_id=str(e.existing_job.id),
                job_type=job_type,
                tenant=tenant.key if tenant else None,
            )
            return JobEnqueueResponse(
                job_id=e.existing_job.id,
                status=e.existing_job.status,
                deduplicated=True,
            )
        return JobEnqueueResponse(job_id=job.id, status=job.status)

    # Scheduling

    async def claim_next(self, worker_id: str, now: datetime | None = None) -> Job | None:
        """Claim the highest-priority, oldest runnable pending job."""
        job = await self.store.claim(worker_id, now or datetime.now(UTC))
        if job:
            logger.info(
                "Job claimed",
                job_id=str(job.id),
                job_type=job.type,
                worker_id=worker_id,
                attempts=job.attempts,
            )
        return job

    async def complete(
        self, job_id: UUID, result: dict[str, Any], worker_id: str | None = None
    ) -> Job:
        """Move a processing job to succeeded and store its result."""
        now = datetime.now(UTC)
        guards = [Job.locked_by == worker_id] if worker_id else None
        job = await self.store.transition(
            job_id,
            [JobStatus.PROCESSING.value],
            {
                "status": JobStatus.SUCCEEDED.value,
                "result": result,
                "completed_at": now,
                "locked_by": None,
                "heartbeat_at": None,
                "error_code": None,
                "error_message": None,
                "updated_at": now,
            },
            guards=guards,
        )
        if job is None:
            raise InvalidStateError(
                "Job is not processing under this worker", details={"job_id": str(job_id)}
            )

        logger.info("Job succeeded", job_id=str(job_id), job_type=job.type)
        return job

    async def fail(
        self,
        job_id: UUID,
        error_message: str,
        error_code: str = "PROCESSING_ERROR",
        worker_id: str | None = None,
    ) -> Job:
        """
        Record a failed attempt.

        Below the attempt budget the job returns to pending with a backoff
        delay; at the budget it becomes terminal failed.
        """
        current = await self.store.get(job_id)
        if current is None:
            raise NotFoundError("Job not found", details={"job_id": str(job_id)})
        if current.status != JobStatus.PROCESSING.value:
            raise InvalidStateError(
                f"Cannot fail a job in status {current.status}",
                details={"job_id": str(job_id), "status": current.status},
            )

        now = datetime.now(UTC)
        attempts = current.attempts + 1
        values: dict[str, Any] = {
            "attempts": attempts,
            "error_message": error_message,
            "error_code": error_code,
            "last_error_at": now,
            "locked_by": None,
            "heartbeat_at": None,
            "updated_at": now,
        }

        if attempts < current.max_attempts:
            delay = calculate_retry_delay(
                attempts,
                self.settings.job_backoff_base_ms,
                self.settings.job_max_backoff_s,
            )
            values.update(
                status=JobStatus.PENDING.value,
                run_at=now + timedelta(seconds=delay),
            )
        else:
            values.update(status=JobStatus.FAILED.value, completed_at=now)

        guards = [Job.attempts == current.attempts]
        if worker_id:
            guards.append(Job.locked_by == worker_id)
        job = await self.store.transition(
            job_id, [JobStatus.PROCESSING.value], values, guards=guards
        )
        if job is None:
            raise InvalidStateError(
                "Job changed state before the failure was recorded",
                details={"job_id": str(job_id)},
            )

        if job.status == JobStatus.FAILED.value:
            logger.error(
                "Job failed permanently",
                job_id=str(job_id),
                job_type=job.type,
                attempts=attempts,
                error=error_message,
            )
        else:
            logger.warning(
                "Job attempt failed, scheduled for retry",
                job_id=str(job_id),
                job_type=job.type,
                attempts=attempts,
                max_attempts=job.max_attempts,
                next_run_at=job.run_at.isoformat() if job.run_at else None,
                error=error_message,
            )
        return job

    # Caller-initiated transitions

    async def retry(self, job_id: UUID, tenant: TenantContext) -> Job:
        """Re-enable a failed job. The attempt counter keeps climbing."""
        job = await self.status(job_id, tenant)
        if job.status != JobStatus.FAILED.value:
            raise InvalidStateError(
                f"Only failed jobs can be retried (status: {job.status})",
                details={"job_id": str(job_id), "status": job.status},
            )

        now = datetime.now(UTC)
        try:
            updated = await self.store.transition(
                job_id,
                [JobStatus.FAILED.value],
                {
                    "status": JobStatus.PENDING.value,
                    "run_at": now,
                    "progress": None,
                    "result": None,
                    "error_message": None,
                    "error_code": None,
                    "started_at": None,
                    "completed_at": None,
                    "locked_by": None,
                    "heartbeat_at": None,
                    "updated_at": now,
                },
                guards=[Job.tenant_key == tenant.key],
            )
        except ActiveJobConflict:
            existing = await self.store.find_active(tenant.key, job.type)
            if existing is None:
                raise
            raise DuplicateActiveError(
                existing, "Another job of this type is already active"
            ) from None

        if updated is None:
            raise InvalidStateError(
                "Job changed state before it could be retried",
                details={"job_id": str(job_id)},
            )

        logger.info(
            "Job retried",
            job_id=str(job_id),
            job_type=updated.type,
            attempts=updated.attempts,
            tenant=tenant.key,
        )
        return updated

    async def cancel(self, job_id: UUID, tenant: TenantContext) -> Job:
        """Cancel a pending or processing job. Processing jobs stop cooperatively."""
        job = await self.status(job_id, tenant)
        expected = sources_for(JobStatus.CANCELLED)
        if job.status not in expected:
            raise InvalidStateError(
                f"Job cannot be cancelled in status {job.status}",
                details={"job_id": str(job_id), "status": job.status},
            )

        now = datetime.now(UTC)
        updated = await self.store.transition(
            job_id,
            expected,
            {
                "status": JobStatus.CANCELLED.value,
                "completed_at": now,
                "updated_at": now,
            },
            guards=[Job.tenant_key == tenant.key],
        )
        if updated is None:
            current = await self.store.get(job_id)
            raise InvalidStateError(
                "Job reached a terminal state before it could be cancelled",
                details={
                    "job_id": str(job_id),
                    "status": current.status if current else None,
                },
            )

        logger.info(
            "Job cancelled",
            job_id=str(job_id),
            job_type=updated.type,
            previous_status=job.status,
            tenant=tenant.key,
        )
        return updated

    # Reads

    async def status(self, job_id: UUID, tenant: TenantContext) -> Job:
        """Look up a job owned by ``tenant``."""
        job = await self.store.get(job_id)
        if job is None or job.tenant_key != tenant.key:
            raise NotFoundError("Job not found", details={"job_id": str(job_id)})
        return job

    async def list_jobs(
        self,
        tenant: TenantContext,
        statuses: list[str] | None = None,
        job_type: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[Job], int]:
        return await self.store.list_jobs(tenant.key, statuses, job_type, limit, offset)

    async def stats(self, tenant: TenantContext | None = None) -> JobStatsResponse:
        since = datetime.now(UTC) - timedelta(hours=1)
        data = await self.store.stats(tenant.key if tenant else None, since)
        return JobStatsResponse(**data)

    # Executor hooks

    async def report_progress(
        self, job_id: UUID, step_index: int, step_label: str, total_steps: int
    ) -> bool:
        """Persist stage progress; ignored once the job has left processing."""
        percent = round(step_index / total_steps * 100) if total_steps else None
        job = await self.store.transition(
            job_id,
            [JobStatus.PROCESSING.value],
            {
                "progress": {
                    "step_index": step_index,
                    "step_label": step_label,
                    "total_steps": total_steps,
                    "percent": percent,
                },
                "updated_at": datetime.now(UTC),
            },
        )
        return job is not None

    async def is_cancelled(self, job_id: UUID, worker_id: str | None = None) -> bool:
        """
        True once the job should stop running here: it was cancelled, or its
        lock no longer matches ``worker_id`` (recovered and claimed again).
        """
        job = await self.store.get(job_id)
        if job is None or job.status != JobStatus.PROCESSING.value:
            return True
        return worker_id is not None and job.locked_by != worker_id

    # Maintenance

    async def heartbeat(self, job_ids: list[UUID], worker_id: str) -> int:
        return await self.store.heartbeat(job_ids, worker_id, datetime.now(UTC))

    async def recover_stuck(self) -> int:
        """Count processing jobs with stale heartbeats as failed attempts."""
        timeout_seconds = self.settings.job_visibility_timeout_s
        cutoff = datetime.now(UTC) - timedelta(seconds=timeout_seconds)

        recovered = 0
        for job in await self.store.find_stuck(cutoff):
            try:
                await self.fail(
                    job.id,
                    f"Worker timeout after {timeout_seconds}s without heartbeat",
                    error_code=WORKER_TIMEOUT_CODE,
                )
                recovered += 1
            except (InvalidStateError, NotFoundError):
                # Finished or recovered elsewhere in the meantime
                continue

        if recovered:
            logger.warning(
                "Recovered stuck jobs",
                stuck_job_count=recovered,
                timeout_seconds=timeout_seconds,
            )
        return recovered

    async def cleanup(self) -> int:
        """Delete terminal jobs older than the retention window."""
        retention_days = self.settings.job_cleanup_after_days
        cutoff = datetime.now(UTC) - timedelta(days=retention_days)
        deleted_count = await self.store.delete_terminal_before(cutoff)
        if deleted_count > 0:
            logger.info(
                "Cleaned up old jobs",
                deleted_count=deleted_count,
                retention_days=retention_days,
            )
        return deleted_count
