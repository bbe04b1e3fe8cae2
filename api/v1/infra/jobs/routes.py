"""
Job API endpoints.

Submission, status polling, listing and the caller-initiated retry/cancel
transitions. Every lookup is scoped to the calling tenant.
"""

import logging
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from api.config.settings import Settings, SettingsDep
from api.infra.database import get_session_factory
from api.v1.core.exceptions import create_success_response
from api.v1.core.security import TenantContext, TenantDep
from api.v1.infra.jobs.models import Job, JobStatus, JobType
from api.v1.infra.jobs.schemas import (
    JobEnqueueResponse,
    JobListResponse,
    JobResponse,
    JobSubmitRequest,
    WebsiteAnalysisRequest,
)
from api.v1.infra.jobs.service import JobQueue
from api.v1.infra.jobs.store import SqlJobStore

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/jobs", tags=["jobs"])


def get_job_queue(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    settings: Settings = SettingsDep,
) -> JobQueue:
    """Dependency injection for the job queue."""
    return JobQueue(SqlJobStore(session_factory), settings)


JobQueueDep = Depends(get_job_queue)


def _job_response(job: Job) -> JobResponse:
    job_data = JobResponse.model_validate(job)
    job_data.progress_percentage = job.get_progress_percentage()
    return job_data


def _job_data(job: Job) -> dict[str, Any]:
    return _job_response(job).model_dump(mode="json")


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


@router.post("", response_model=dict, status_code=201)
async def submit_job(
    job_request: JobSubmitRequest,
    request: Request,
    tenant: TenantContext = TenantDep,
    queue: JobQueue = JobQueueDep,
) -> dict[str, Any]:
    """
    Submit a job.

    Responds 409 with the existing job's id when the tenant already has an
    active job of the same type.
    """

    job = await queue.submit(
        job_request.type,
        job_request.payload,
        tenant,
        priority=job_request.priority,
        request_id=_request_id(request),
    )

    logger.info(
        "Job submitted via API",
        extra={"job_id": str(job.id), "type": job.type, "tenant": tenant.key},
    )

    response = JobEnqueueResponse(job_id=job.id, status=job.status)
    return create_success_response(
        data=response.model_dump(mode="json"), request_id=_request_id(request)
    )


@router.post("/website-analysis", response_model=dict)
async def analyze_website(
    analysis_request: WebsiteAnalysisRequest,
    request: Request,
    tenant: TenantContext = TenantDep,
    queue: JobQueue = JobQueueDep,
) -> dict[str, Any]:
    """Start a website analysis, or return the tenant's one already in flight."""

    result = await queue.enqueue(
        JobType.WEBSITE_ANALYSIS.value,
        {"url": analysis_request.url, "context": analysis_request.context},
        tenant,
        priority=analysis_request.priority,
        request_id=_request_id(request),
    )

    logger.info(
        "Website analysis requested via API",
        extra={
            "job_id": str(result.job_id),
            "tenant": tenant.key,
            "deduplicated": result.deduplicated,
        },
    )

    return create_success_response(
        data=result.model_dump(mode="json"), request_id=_request_id(request)
    )


@router.get("", response_model=dict)
async def list_jobs(
    status: list[JobStatus] | None = Query(
        default=None, description="Filter by status"
    ),
    type: JobType | None = Query(default=None, description="Filter by job type"),
    limit: int = Query(default=50, ge=1, le=1000, description="Maximum results"),
    offset: int = Query(default=0, ge=0, description="Results offset"),
    tenant: TenantContext = TenantDep,
    queue: JobQueue = JobQueueDep,
) -> dict[str, Any]:
    """List the tenant's jobs, newest first."""

    jobs, total = await queue.list_jobs(
        tenant,
        statuses=[s.value for s in status] if status else None,
        job_type=type.value if type else None,
        limit=limit,
        offset=offset,
    )

    response_data = JobListResponse(
        jobs=[_job_response(job) for job in jobs],
        total=total,
        limit=limit,
        offset=offset,
    )

    return create_success_response(data=response_data.model_dump(mode="json"))


@router.get("/stats/overview", response_model=dict)
async def get_job_stats(
    tenant: TenantContext = TenantDep,
    queue: JobQueue = JobQueueDep,
) -> dict[str, Any]:
    """Get job statistics for the calling tenant."""

    stats = await queue.stats(tenant)

    return create_success_response(data=stats.model_dump())


@router.get("/{job_id}", response_model=dict)
async def get_job(
    job_id: UUID,
    tenant: TenantContext = TenantDep,
    queue: JobQueue = JobQueueDep,
) -> dict[str, Any]:
    """Get a job's status, progress and result."""

    job = await queue.status(job_id, tenant)

    return create_success_response(data=_job_data(job))


@router.post("/{job_id}/retry", response_model=dict)
async def retry_job(
    job_id: UUID,
    tenant: TenantContext = TenantDep,
    queue: JobQueue = JobQueueDep,
) -> dict[str, Any]:
    """Retry a failed job."""

    job = await queue.retry(job_id, tenant)

    logger.info(
        "Job retried via API",
        extra={"job_id": str(job_id), "tenant": tenant.key},
    )

    return create_success_response(
        data={"job_id": str(job.id), **_job_data(job)}
    )


@router.post("/{job_id}/cancel", response_model=dict)
async def cancel_job(
    job_id: UUID,
    tenant: TenantContext = TenantDep,
    queue: JobQueue = JobQueueDep,
) -> dict[str, Any]:
    """Cancel a pending or processing job."""

    await queue.cancel(job_id, tenant)

    logger.info(
        "Job cancelled via API",
        extra={"job_id": str(job_id), "tenant": tenant.key},
    )

    return create_success_response(data={"cancelled": True, "job_id": str(job_id)})
