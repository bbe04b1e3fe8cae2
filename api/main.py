from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

# Registry initialization must run before the registries are frozen below
import api.v1.infra.jobs.registry_init  # noqa: F401
from api.config.logging import setup_logging
from api.config.settings import settings
from api.v1.analysis.registry_init import init_analysis_registries
from api.v1.core.exceptions import (
    PipelineJobsException,
    RequestContextMiddleware,
    general_exception_handler,
    http_exception_handler,
    pipeline_jobs_exception_handler,
    validation_exception_handler,
)
from api.v1.core.registries import (
    analysis_registry,
    fetcher_registry,
    pipeline_registry,
)
from api.v1.healthz import router as health_router
from api.v1.infra.jobs.routes import router as jobs_router
from api.v1.tenants.routes import router as session_router


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""

    # Initialize structured logging
    setup_logging()

    init_analysis_registries(settings)

    app = FastAPI(
        title=settings.app_name,
        description="Tenant-scoped job queue for website analysis and content pipelines",
        version=settings.version,
        debug=settings.debug,
        # All endpoints will be under /v1/ prefix
        openapi_url="/v1/openapi.json" if settings.debug else None,
        docs_url="/v1/docs" if settings.debug else None,
        redoc_url="/v1/redoc" if settings.debug else None,
    )

    # Add middleware
    app.add_middleware(RequestContextMiddleware)

    # Add CORS middleware for development
    if settings.debug:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    # Add exception handlers
    app.add_exception_handler(PipelineJobsException, pipeline_jobs_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    # Include routers with /v1 prefix
    app.include_router(health_router, prefix="/v1", tags=["health"])
    app.include_router(jobs_router, prefix="/v1")
    app.include_router(session_router, prefix="/v1")

    # Freeze registries in non-development environments to prevent runtime modifications
    if settings.environment != "development":
        fetcher_registry.freeze()
        analysis_registry.freeze()
        pipeline_registry.freeze()

    return app


# Create the app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "api.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        workers=1 if settings.debug else settings.workers,
    )
