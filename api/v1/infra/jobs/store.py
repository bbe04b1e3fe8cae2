"""
Durable job store.

Every status change is a conditional update keyed on the expected current
status, so concurrent workers and API calls can race safely without any
process-wide lock: the caller whose update matched a row won.
"""

import logging
from datetime import datetime
from typing import Any, Protocol
from uuid import UUID

from sqlalchemy import and_, delete, desc, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from api.v1.infra.jobs.models import (
    ACTIVE_STATUSES,
    LEASE_SEPARATOR,
    TERMINAL_STATUSES,
    Job,
    JobStatus,
)

logger = logging.getLogger(__name__)

CLAIM_BATCH_SIZE = 10


class ActiveJobConflict(Exception):
    """A write would create a second active job for a (tenant, type) pair."""


class JobStore(Protocol):
    """Persistence interface used by the job queue."""

    async def insert(self, job: Job) -> Job:
        """Insert a new job. Raises ActiveJobConflict on a duplicate active job."""
        ...

    async def get(self, job_id: UUID) -> Job | None:
        ...

    async def find_active(self, tenant_key: str, job_type: str) -> Job | None:
        ...

    async def claim(self, worker_id: str, now: datetime) -> Job | None:
        """Atomically move the best runnable pending job to processing."""
        ...

    async def transition(
        self,
        job_id: UUID,
        expected: list[str],
        values: dict[str, Any],
        guards: list[Any] | None = None,
    ) -> Job | None:
        """Apply ``values`` only if the job's status is in ``expected``.

        Returns the updated job, or None if the guard did not match.
        Raises ActiveJobConflict when the update would violate the active-job
        uniqueness rule.
        """
        ...

    async def list_jobs(
        self,
        tenant_key: str,
        statuses: list[str] | None,
        job_type: str | None,
        limit: int,
        offset: int,
    ) -> tuple[list[Job], int]:
        ...

    async def stats(self, tenant_key: str | None, since: datetime) -> dict[str, Any]:
        ...

    async def heartbeat(self, job_ids: list[UUID], worker_id: str, now: datetime) -> int:
        ...

    async def find_stuck(self, cutoff: datetime) -> list[Job]:
        ...

    async def delete_terminal_before(self, cutoff: datetime) -> int:
        ...


class SqlJobStore:
    """SQLAlchemy implementation of JobStore. One session per operation."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def insert(self, job: Job) -> Job:
        async with self.session_factory() as session:
            session.add(job)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise ActiveJobConflict(str(e.orig)) from e
            await session.refresh(job)
            return job

    async def get(self, job_id: UUID) -> Job | None:
        async with self.session_factory() as session:
            return await session.get(Job, job_id)

    async def find_active(self, tenant_key: str, job_type: str) -> Job | None:
        async with self.session_factory() as session:
            return await self._find_active(session, tenant_key, job_type)

    async def _find_active(
        self, session: AsyncSession, tenant_key: str, job_type: str
    ) -> Job | None:
        result = await session.execute(
            select(Job)
            .where(
                and_(
                    Job.tenant_key == tenant_key,
                    Job.type == job_type,
                    Job.status.in_([s.value for s in ACTIVE_STATUSES]),
                )
            )
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def claim(self, worker_id: str, now: datetime) -> Job | None:
        async with self.session_factory() as session:
            # SKIP LOCKED keeps concurrent claimants off each other's rows on
            # PostgreSQL; the status guard below makes the claim exclusive
            # everywhere else.
            candidates = await session.execute(
                select(Job.id)
                .where(
                    and_(
                        Job.status == JobStatus.PENDING.value,
                        Job.run_at <= now,
                    )
                )
                .order_by(desc(Job.priority), Job.created_at)
                .limit(CLAIM_BATCH_SIZE)
                .with_for_update(skip_locked=True)
            )
            candidate_ids = list(candidates.scalars().all())

            for job_id in candidate_ids:
                result = await session.execute(
                    update(Job)
                    .where(
                        and_(Job.id == job_id, Job.status == JobStatus.PENDING.value)
                    )
                    .values(
                        status=JobStatus.PROCESSING.value,
                        started_at=now,
                        locked_by=worker_id,
                        heartbeat_at=now,
                        updated_at=now,
                    )
                )
                if result.rowcount == 1:
                    await session.commit()
                    return await session.get(Job, job_id, populate_existing=True)

                logger.debug(
                    "Lost claim race",
                    extra={"job_id": str(job_id), "worker_id": worker_id},
                )

            await session.commit()
            return None

    async def transition(
        self,
        job_id: UUID,
        expected: list[str],
        values: dict[str, Any],
        guards: list[Any] | None = None,
    ) -> Job | None:
        conditions = [Job.id == job_id, Job.status.in_(expected), *(guards or [])]
        async with self.session_factory() as session:
            try:
                result = await session.execute(
                    update(Job).where(and_(*conditions)).values(**values)
                )
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise ActiveJobConflict(str(e.orig)) from e

            if result.rowcount != 1:
                return None
            return await session.get(Job, job_id, populate_existing=True)

    async def list_jobs(
        self,
        tenant_key: str,
        statuses: list[str] | None,
        job_type: str | None,
        limit: int,
        offset: int,
    ) -> tuple[list[Job], int]:
        base_query = select(Job).where(Job.tenant_key == tenant_key)
        if statuses:
            base_query = base_query.where(Job.status.in_(statuses))
        if job_type:
            base_query = base_query.where(Job.type == job_type)

        async with self.session_factory() as session:
            total_result = await session.execute(
                select(func.count()).select_from(base_query.subquery())
            )
            total = total_result.scalar() or 0

            jobs_result = await session.execute(
                base_query.order_by(desc(Job.created_at)).offset(offset).limit(limit)
            )
            return list(jobs_result.scalars().all()), total

    async def stats(self, tenant_key: str | None, since: datetime) -> dict[str, Any]:
        base_filter = Job.tenant_key == tenant_key if tenant_key else True

        async with self.session_factory() as session:
            status_result = await session.execute(
                select(Job.status, func.count(Job.id))
                .where(base_filter)
                .group_by(Job.status)
            )
            by_status = {status: count for status, count in status_result.all()}

            type_result = await session.execute(
                select(Job.type, func.count(Job.id))
                .where(base_filter)
                .group_by(Job.type)
            )
            by_type = {job_type: count for job_type, count in type_result.all()}

            failed_result = await session.execute(
                select(func.count(Job.id)).where(
                    and_(
                        base_filter,
                        Job.status == JobStatus.FAILED.value,
                        Job.updated_at >= since,
                    )
                )
            )
            failed_since = failed_result.scalar() or 0

        return {
            "total_jobs": sum(by_status.values()),
            "by_status": by_status,
            "by_type": by_type,
            "queue_depth": sum(by_status.get(s.value, 0) for s in ACTIVE_STATUSES),
            "failed_last_hour": failed_since,
        }

    async def heartbeat(self, job_ids: list[UUID], worker_id: str, now: datetime) -> int:
        if not job_ids:
            return 0
        async with self.session_factory() as session:
            result = await session.execute(
                update(Job)
                .where(
                    and_(
                        Job.id.in_(job_ids),
                        or_(
                            Job.locked_by == worker_id,
                            Job.locked_by.startswith(
                                f"{worker_id}{LEASE_SEPARATOR}", autoescape=True
                            ),
                        ),
                        Job.status == JobStatus.PROCESSING.value,
                    )
                )
                .values(heartbeat_at=now)
            )
            await session.commit()
            return result.rowcount

    async def find_stuck(self, cutoff: datetime) -> list[Job]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Job).where(
                    and_(
                        Job.status == JobStatus.PROCESSING.value,
                        Job.heartbeat_at < cutoff,
                    )
                )
            )
            return list(result.scalars().all())

    async def delete_terminal_before(self, cutoff: datetime) -> int:
        async with self.session_factory() as session:
            result = await session.execute(
                delete(Job).where(
                    and_(
                        Job.status.in_([s.value for s in TERMINAL_STATUSES]),
                        Job.updated_at < cutoff,
                    )
                )
            )
            await session.commit()
            return result.rowcount
