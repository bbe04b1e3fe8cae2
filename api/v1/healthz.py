from datetime import UTC, datetime, timedelta

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import func, select, text
from sqlalchemy.ext.asyncio import AsyncSession

from api.config.logging import get_logger
from api.config.settings import Settings, SettingsDep
from api.infra.database import get_session
from api.v1.core.exceptions import create_success_response
from api.v1.infra.jobs.models import Job, JobStatus, lease_owner

logger = get_logger(__name__)
router = APIRouter()


class DatabaseHealth(BaseModel):
    """Database health status."""

    connected: bool
    response_time_ms: float | None = None
    error: str | None = None


class WorkerHealth(BaseModel):
    """Worker health derived from processing jobs' heartbeats."""

    active_workers: int = 0
    last_heartbeat_age_seconds: int | None = None
    stuck_jobs_count: int = 0
    pending_jobs: int = 0
    processing_jobs: int = 0


@router.get("/healthz", response_model=dict)
async def health_check(
    settings: Settings = SettingsDep, session: AsyncSession = Depends(get_session)
):
    """Health check with database connectivity and queue status."""

    db_health = await _check_database_health(session)

    worker_health = WorkerHealth()
    if db_health.connected:
        try:
            worker_health = await _check_worker_health(session, settings)
        except Exception as e:
            # Queue status is informational; it never fails the health check
            logger.warning("Worker health check failed", error=str(e))

    health_data = {
        "ok": db_health.connected,
        "version": settings.version,
        "environment": settings.environment,
        "timestamp": datetime.now(UTC).isoformat(),
        "database": db_health.model_dump(),
        "worker": worker_health.model_dump(),
    }

    return create_success_response(data=health_data)


async def _check_database_health(session: AsyncSession) -> DatabaseHealth:
    """Check database connectivity and response time."""
    start_time = datetime.now(UTC)

    try:
        await session.execute(text("SELECT 1"))

        response_time_ms = (datetime.now(UTC) - start_time).total_seconds() * 1000
        return DatabaseHealth(
            connected=True, response_time_ms=round(response_time_ms, 2)
        )

    except Exception as e:
        return DatabaseHealth(connected=False, error=str(e))


async def _check_worker_health(
    session: AsyncSession, settings: Settings
) -> WorkerHealth:
    """Count live workers and queued work."""
    now = datetime.now(UTC)
    processing = Job.status == JobStatus.PROCESSING.value

    # A worker is live if it heartbeated within two heartbeat intervals
    live_cutoff = now - timedelta(seconds=settings.job_heartbeat_interval_s * 2)
    leases = (
        await session.execute(
            select(Job.locked_by)
            .distinct()
            .where(
                processing,
                Job.heartbeat_at > live_cutoff,
                Job.locked_by.is_not(None),
            )
        )
    ).scalars()
    active_workers = len({lease_owner(lease) for lease in leases})

    last_heartbeat = (
        await session.execute(
            select(func.max(Job.heartbeat_at)).where(
                processing, Job.heartbeat_at.is_not(None)
            )
        )
    ).scalar()

    last_heartbeat_age_seconds = None
    if last_heartbeat:
        if last_heartbeat.tzinfo is None:
            last_heartbeat = last_heartbeat.replace(tzinfo=UTC)
        last_heartbeat_age_seconds = int((now - last_heartbeat).total_seconds())

    stuck_cutoff = now - timedelta(seconds=settings.job_visibility_timeout_s)
    stuck_jobs_count = (
        await session.execute(
            select(func.count(Job.id)).where(processing, Job.heartbeat_at < stuck_cutoff)
        )
    ).scalar() or 0

    counts = dict(
        (
            await session.execute(
                select(Job.status, func.count(Job.id))
                .where(
                    Job.status.in_(
                        [JobStatus.PENDING.value, JobStatus.PROCESSING.value]
                    )
                )
                .group_by(Job.status)
            )
        ).all()
    )

    return WorkerHealth(
        active_workers=active_workers,
        last_heartbeat_age_seconds=last_heartbeat_age_seconds,
        stuck_jobs_count=stuck_jobs_count,
        pending_jobs=counts.get(JobStatus.PENDING.value, 0),
        processing_jobs=counts.get(JobStatus.PROCESSING.value, 0),
    )
