"""API Endpoint Wrappers - Type-safe API calls"""

from typing import Any

from .base import APIClient, PipelineJobsError
from ..utils.config_manager import config

__all__ = ["PipelineJobsClient", "PipelineJobsError"]


class PipelineJobsClient:
    """High-level client with typed endpoint methods"""

    def __init__(
        self,
        base_url: str | None = None,
        headers: dict[str, str] | None = None,
    ):
        # Use config values if not provided
        api_config = config.load_config().get("api", {})
        final_base_url = base_url or api_config.get("base_url", "http://localhost:8000")
        final_headers = headers if headers is not None else identity_headers(api_config)

        self.api = APIClient(
            base_url=final_base_url,
            timeout=int(api_config.get("timeout", 30)),
            headers=final_headers,
        )

    def __enter__(self):
        self.api.__enter__()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.api.__exit__(exc_type, exc_val, exc_tb)

    # Health Check
    def health_check(self) -> dict[str, Any]:
        """Check API health status"""
        return self.api.get("/healthz")

    # Job Endpoints
    def submit_job(
        self, type: str, payload: dict[str, Any], priority: int | None = None
    ) -> dict[str, Any]:
        """Submit a job; raises PipelineJobsError(409) if one is already active"""
        data: dict[str, Any] = {"type": type, "payload": payload}
        if priority is not None:
            data["priority"] = priority
        return self.api.post("/jobs", data)

    def analyze_website(
        self,
        url: str,
        context: dict[str, Any] | None = None,
        priority: int | None = None,
    ) -> dict[str, Any]:
        """Start a website analysis or get the one already running"""
        data: dict[str, Any] = {"url": url, "context": context or {}}
        if priority is not None:
            data["priority"] = priority
        return self.api.post("/jobs/website-analysis", data)

    def get_job(self, job_id: str) -> dict[str, Any]:
        """Get a job by ID"""
        return self.api.get(f"/jobs/{job_id}")

    def list_jobs(
        self,
        status: str | None = None,
        type: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> dict[str, Any]:
        """List jobs with filters"""
        params: dict[str, Any] = {"limit": limit, "offset": offset}
        if status:
            params["status"] = status
        if type:
            params["type"] = type
        return self.api.get("/jobs", params)

    def job_stats(self) -> dict[str, Any]:
        """Get job statistics"""
        return self.api.get("/jobs/stats/overview")

    def retry_job(self, job_id: str) -> dict[str, Any]:
        """Retry a failed job"""
        return self.api.post(f"/jobs/{job_id}/retry")

    def cancel_job(self, job_id: str) -> dict[str, Any]:
        """Cancel a pending or processing job"""
        return self.api.post(f"/jobs/{job_id}/cancel")

    # Session Endpoints
    def adopt_session(self, session_id: str) -> dict[str, Any]:
        """Move an anonymous session's work to the configured user"""
        return self.api.post("/session/adopt", {"session_id": session_id})


def identity_headers(api_config: dict[str, Any]) -> dict[str, str]:
    """Build X-User-ID / X-Session-ID headers from the CLI config"""
    headers = {str(k): str(v) for k, v in (api_config.get("headers") or {}).items()}
    if api_config.get("user_id"):
        headers["X-User-ID"] = str(api_config["user_id"])
    if api_config.get("session_id"):
        headers["X-Session-ID"] = str(api_config["session_id"])
    return headers
