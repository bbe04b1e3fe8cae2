"""
Job payloads and API schemas.

Payloads form a tagged union keyed by ``job_type`` so each pipeline receives a
typed, validated input instead of an untyped blob.
"""

from datetime import datetime
from typing import Annotated, Any, Literal, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, HttpUrl, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from api.v1.core.exceptions import ValidationError
from api.v1.infra.jobs.models import JobType


class WebsiteAnalysisPayload(BaseModel):
    """Analyze a website and derive audiences, pitches and images."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    job_type: Literal["website_analysis"] = "website_analysis"
    url: HttpUrl
    context: dict[str, Any] = Field(
        default_factory=dict, description="Caller hints passed to analysis"
    )
    scenario_count: int | None = Field(default=None, ge=1, le=10)


class ContentGenerationPayload(BaseModel):
    """Write a post for a topic using the tenant's analysis."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    job_type: Literal["content_generation"] = "content_generation"
    topic: str = Field(..., min_length=1, max_length=500)
    instructions: str | None = Field(default=None, max_length=2000)
    organization_id: UUID | None = None


class NarrativeGenerationPayload(BaseModel):
    """Generate the narrative summary for the tenant's analysis."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    job_type: Literal["narrative_generation"] = "narrative_generation"
    organization_id: UUID | None = None


JobPayload = Annotated[
    Union[WebsiteAnalysisPayload, ContentGenerationPayload, NarrativeGenerationPayload],
    Field(discriminator="job_type"),
]

_payload_adapter: TypeAdapter[JobPayload] = TypeAdapter(JobPayload)


def parse_job_type(job_type: str) -> JobType:
    try:
        return JobType(job_type)
    except ValueError:
        raise ValidationError(
            f"Unknown job type: {job_type}",
            details={"allowed_types": [t.value for t in JobType]},
        ) from None


def parse_payload(job_type: str, raw: dict[str, Any] | None) -> JobPayload:
    """Validate a raw payload against the variant for ``job_type``."""
    parsed_type = parse_job_type(job_type)
    data = {**(raw or {}), "job_type": parsed_type.value}
    try:
        return _payload_adapter.validate_python(data)
    except PydanticValidationError as e:
        raise ValidationError(
            f"Invalid payload for job type {parsed_type.value}",
            details={"errors": e.errors(include_url=False, include_context=False)},
        ) from None


def dump_payload(payload: JobPayload) -> dict[str, Any]:
    """Serialize a payload for storage; the tag lives in the job's type column."""
    return payload.model_dump(mode="json", exclude={"job_type"})


class JobSubmitRequest(BaseModel):
    """Schema for submitting a job via API."""

    type: str = Field(..., description="Job type")
    payload: dict[str, Any] = Field(default_factory=dict, description="Job payload")
    priority: int | None = Field(
        default=None, ge=0, le=10, description="Priority (10=highest)"
    )


class WebsiteAnalysisRequest(BaseModel):
    """Convenience schema for website analysis submissions."""

    url: str = Field(..., description="Website URL (http or https)")
    context: dict[str, Any] = Field(default_factory=dict)
    priority: int | None = Field(default=None, ge=0, le=10)


class JobEnqueueResponse(BaseModel):
    """Schema for job enqueue response."""

    job_id: UUID
    status: str
    deduplicated: bool = Field(
        default=False, description="Whether an existing active job was returned"
    )


class JobResponse(BaseModel):
    """Schema for job API responses."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    type: str
    user_id: str | None = None
    session_id: str | None = None
    payload: dict[str, Any]
    status: str
    priority: int
    attempts: int
    max_attempts: int
    run_at: datetime

    # Results
    result: dict[str, Any] | None = None
    progress: dict[str, Any] | None = None
    progress_percentage: float | None = None
    error_code: str | None = None
    error_message: str | None = None
    last_error_at: datetime | None = None

    # Metadata
    locked_by: str | None = None
    request_id: str | None = None
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    updated_at: datetime


class JobListResponse(BaseModel):
    """Schema for job list API response."""

    jobs: list[JobResponse]
    total: int
    limit: int
    offset: int


class JobStatsResponse(BaseModel):
    """Schema for job statistics."""

    total_jobs: int
    by_status: dict[str, int]
    by_type: dict[str, int]
    queue_depth: int  # pending + processing
    failed_last_hour: int

