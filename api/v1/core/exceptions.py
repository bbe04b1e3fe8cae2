import uuid
from datetime import UTC, datetime
from typing import Any

from fastapi import HTTPException, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from api.config.logging import get_logger

logger = get_logger(__name__)


class PipelineJobsException(Exception):
    """Base exception for the pipeline jobs application."""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(PipelineJobsException):
    """Raised when input validation fails. No job is created."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, status.HTTP_400_BAD_REQUEST, details)


class NotFoundError(PipelineJobsException):
    """Raised when a resource is not found or not owned by the caller."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, status.HTTP_404_NOT_FOUND, details)


class InvalidStateError(PipelineJobsException):
    """Raised when an operation is not legal for the job's current status."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, status.HTTP_400_BAD_REQUEST, details)


class DuplicateActiveError(PipelineJobsException):
    """Raised when the tenant already has an active job of the same type."""

    def __init__(self, existing_job: Any, message: str | None = None):
        self.existing_job = existing_job
        super().__init__(
            message or "An active job of this type already exists",
            status.HTTP_409_CONFLICT,
            {
                "job_id": str(existing_job.id),
                "status": existing_job.status,
                "type": existing_job.type,
            },
        )


# Stage-level errors. These never reach the submitting caller; the worker
# records them on the job through the fail transition.
class StageError(PipelineJobsException):
    """A pipeline stage failed."""

    error_code = "STAGE_ERROR"

    def __init__(
        self,
        message: str,
        stage: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.stage = stage
        super().__init__(message, status.HTTP_502_BAD_GATEWAY, details)

    def __str__(self) -> str:
        if self.stage:
            return f"{self.stage}: {self.message}"
        return self.message


class FetchError(StageError):
    """Content could not be fetched."""

    error_code = "FETCH_ERROR"


class AnalysisError(StageError):
    """The analysis service failed or returned malformed output."""

    error_code = "ANALYSIS_ERROR"


class PersistenceError(StageError):
    """A tenant record could not be read or written."""

    error_code = "PERSISTENCE_ERROR"


class StageTimeoutError(StageError):
    """A stage exceeded its time budget."""

    error_code = "STAGE_TIMEOUT"


class PipelineCancelledError(PipelineJobsException):
    """The job was cancelled; the pipeline stopped at a stage boundary."""

    def __init__(self, message: str = "Job cancelled", stage: str | None = None):
        self.stage = stage
        super().__init__(message, status.HTTP_409_CONFLICT)


def create_error_response(
    status_code: int,
    message: str,
    details: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> dict[str, Any]:
    """Create standardized error response envelope."""
    return {
        "ok": False,
        "error": {
            "message": message,
            "code": status_code,
            "details": details or {},
        },
        "request_id": request_id,
        "timestamp": datetime.now(UTC).isoformat(),
    }


def create_success_response(
    data: Any, message: str | None = None, request_id: str | None = None
) -> dict[str, Any]:
    """Create standardized success response envelope."""
    return {
        "ok": True,
        "data": data,
        "message": message,
        "request_id": request_id,
        "timestamp": datetime.now(UTC).isoformat(),
    }


async def pipeline_jobs_exception_handler(
    request: Request, exc: PipelineJobsException
) -> JSONResponse:
    """Handle application specific exceptions."""
    request_id = getattr(request.state, "request_id", str(uuid.uuid4()))

    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        "Application exception",
        exception=exc.__class__.__name__,
        message=exc.message,
        status_code=exc.status_code,
        details=exc.details,
        request_id=request_id,
    )

    return JSONResponse(
        status_code=exc.status_code,
        content=create_error_response(
            status_code=exc.status_code,
            message=exc.message,
            details=exc.details,
            request_id=request_id,
        ),
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle FastAPI HTTP exceptions."""
    request_id = getattr(request.state, "request_id", str(uuid.uuid4()))

    logger.warning(
        "HTTP exception",
        status_code=exc.status_code,
        detail=exc.detail,
        request_id=request_id,
    )

    return JSONResponse(
        status_code=exc.status_code,
        content=create_error_response(
            status_code=exc.status_code,
            message=str(exc.detail),
            request_id=request_id,
        ),
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Handle request body and parameter validation failures as 400."""
    request_id = getattr(request.state, "request_id", str(uuid.uuid4()))
    errors = jsonable_encoder(exc.errors())

    logger.warning(
        "Request validation failed",
        path=request.url.path,
        errors=errors,
        request_id=request_id,
    )

    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=create_error_response(
            status_code=status.HTTP_400_BAD_REQUEST,
            message="Request validation failed",
            details={"errors": errors},
            request_id=request_id,
        ),
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    request_id = getattr(request.state, "request_id", str(uuid.uuid4()))

    logger.error(
        "Unhandled exception",
        exception=exc.__class__.__name__,
        message=str(exc),
        request_id=request_id,
        exc_info=True,
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=create_error_response(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            message="Internal server error",
            request_id=request_id,
        ),
    )


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Middleware to add request context and correlation IDs."""

    async def dispatch(self, request: Request, call_next):
        # Generate correlation ID for request tracking
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id

        # Add to log context
        from api.config.logging import add_request_context

        add_request_context(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        response = await call_next(request)

        # Add request ID to response headers
        response.headers["X-Request-ID"] = request_id

        return response
