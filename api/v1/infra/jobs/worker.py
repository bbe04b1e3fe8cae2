"""
Database-backed job worker with heartbeats and stuck-job recovery.
"""

import asyncio
import os
import socket
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from api.config.logging import bind_job_context, clear_job_context, get_logger
from api.config.settings import Settings
from api.infra.database import get_database
from api.v1.core.exceptions import (
    InvalidStateError,
    NotFoundError,
    PipelineCancelledError,
    StageError,
)
from api.v1.core.registries import analysis_registry, fetcher_registry
from api.v1.infra.jobs.models import Job, new_lease
from api.v1.infra.jobs.pipeline import Collaborators, PipelineExecutor, progress_labels
from api.v1.infra.jobs.service import JobQueue
from api.v1.infra.jobs.store import SqlJobStore

logger = get_logger(__name__)

CLEANUP_INTERVAL_S = 3600
STOP_TIMEOUT_S = 30


class JobWorker:
    """
    Claims jobs from the queue and runs their pipelines.

    Features:
    - One claim loop per concurrency slot; each slot runs one job at a time
    - Cooperative cancellation checked between pipeline stages
    - Heartbeats so that jobs of a crashed worker are recovered
    - Periodic cleanup of old terminal jobs
    """

    def __init__(self, settings: Settings, queue: JobQueue, executor: PipelineExecutor):
        self.settings = settings
        self.queue = queue
        self.executor = executor
        self.worker_id = f"{socket.gethostname()}-{os.getpid()}-{id(self)}"
        self.running = False
        self.active_jobs: dict[str, UUID] = {}
        self._stop_event = asyncio.Event()

    async def start(self) -> None:
        """Start the worker loops and run until stopped."""
        if self.running:
            raise RuntimeError("Worker is already running")

        self.running = True
        self._stop_event.clear()
        logger.info(
            "Starting job worker",
            worker_id=self.worker_id,
            concurrency=self.settings.job_concurrency,
            poll_interval_ms=self.settings.job_poll_interval_ms,
        )

        try:
            await asyncio.gather(
                *(self._slot_loop(slot) for slot in range(self.settings.job_concurrency)),
                self._heartbeat_loop(),
                self._stuck_job_recovery_loop(),
                self._cleanup_loop(),
            )
        finally:
            self.running = False
            logger.info("Job worker stopped", worker_id=self.worker_id)

    async def stop(self) -> None:
        """Stop claiming new jobs and wait briefly for running ones."""
        logger.info("Stopping job worker", worker_id=self.worker_id)
        self.running = False
        self._stop_event.set()

        waited = 0
        while self.active_jobs and waited < STOP_TIMEOUT_S:
            await asyncio.sleep(1)
            waited += 1

        if self.active_jobs:
            logger.warning(
                "Worker stopped with active jobs",
                worker_id=self.worker_id,
                active_jobs=len(self.active_jobs),
            )

    async def _sleep(self, seconds: float) -> None:
        """Sleep that wakes early when the worker is stopped."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except TimeoutError:
            pass

    # Claiming and processing

    async def run_once(self) -> bool:
        """Claim and process a single job. Returns False if none was runnable."""
        job = await self.queue.claim_next(new_lease(self.worker_id))
        if job is None:
            return False
        await self.process_job(job)
        return True

    async def drain(self) -> int:
        """Process runnable jobs until the queue has none left."""
        processed = 0
        while await self.run_once():
            processed += 1
        return processed

    async def _slot_loop(self, slot: int) -> None:
        poll_interval_s = self.settings.job_poll_interval_ms / 1000
        while self.running:
            try:
                processed = await self.run_once()
            except Exception:
                logger.exception(
                    "Error in worker loop", worker_id=self.worker_id, slot=slot
                )
                await self._sleep(5)  # Back off on errors
                continue

            if not processed:
                await self._sleep(poll_interval_s)

    async def process_job(self, job: Job) -> None:
        """Run a claimed job's pipeline and record the outcome."""
        lease = job.locked_by
        self.active_jobs[lease] = job.id
        bind_job_context(str(job.id), job.type, worker_id=self.worker_id)

        async def cancellation_check() -> bool:
            return await self.queue.is_cancelled(job.id, lease)

        try:
            logger.info("Processing job started", attempts=job.attempts)
            try:
                total_steps = len(progress_labels(self.executor.pipeline_for(job.type)))

                async def on_progress(step_index: int, step_label: str) -> None:
                    await self.queue.report_progress(
                        job.id, step_index, step_label, total_steps
                    )

                result = await self.executor.run(job, cancellation_check, on_progress)

            except PipelineCancelledError as e:
                logger.info("Job processing stopped after cancellation", stage=e.stage)
                return

            except StageError as e:
                logger.warning(
                    "Job stage failed",
                    stage=e.stage,
                    error_code=e.error_code,
                    error=e.message,
                )
                await self._record_failure(job, lease, str(e), e.error_code)
                return

            except Exception as e:
                logger.exception("Job processing failed", error=str(e))
                await self._record_failure(
                    job, lease, f"{e.__class__.__name__}: {e}", "PROCESSING_ERROR"
                )
                return

            try:
                await self.queue.complete(job.id, result, worker_id=lease)
            except InvalidStateError:
                # Cancelled or recovered while the last stage ran
                logger.warning("Job result discarded; job is no longer processing here")
                return

            logger.info("Processing job completed successfully")

        finally:
            self.active_jobs.pop(lease, None)
            clear_job_context()

    async def _record_failure(
        self, job: Job, lease: str, message: str, error_code: str
    ) -> None:
        try:
            await self.queue.fail(
                job.id, message, error_code=error_code, worker_id=lease
            )
        except (InvalidStateError, NotFoundError) as e:
            logger.warning("Job failure not recorded", reason=e.message)

    # Maintenance loops

    async def _heartbeat_loop(self) -> None:
        """Update heartbeats for active jobs."""
        while self.running:
            try:
                if self.active_jobs:
                    await self.queue.heartbeat(
                        list(set(self.active_jobs.values())), self.worker_id
                    )
            except Exception:
                logger.exception("Error updating heartbeats", worker_id=self.worker_id)
            await self._sleep(self.settings.job_heartbeat_interval_s)

    async def _stuck_job_recovery_loop(self) -> None:
        """Recover jobs that are stuck due to worker crashes."""
        interval_s = min(300, self.settings.job_visibility_timeout_s)
        while self.running:
            try:
                await self.queue.recover_stuck()
            except Exception:
                logger.exception("Error in stuck job recovery")
            await self._sleep(interval_s)

    async def _cleanup_loop(self) -> None:
        """Delete old terminal jobs once an hour."""
        while self.running:
            try:
                await self.queue.cleanup()
            except Exception:
                logger.exception("Error cleaning up old jobs")
            await self._sleep(CLEANUP_INTERVAL_S)


def build_worker(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> JobWorker:
    """Wire a worker from the registries and the configured database."""
    # Deferred so importing the worker does not register anything
    from api.v1.analysis.registry_init import init_analysis_registries
    from api.v1.infra.jobs import registry_init  # noqa: F401
    from api.v1.tenants.repository import SqlTenantRecordStore

    init_analysis_registries(settings)
    if session_factory is None:
        session_factory = get_database(settings).SessionLocal

    collaborators = Collaborators(
        fetcher=fetcher_registry.get("http"),
        analysis=analysis_registry.get(settings.analysis_provider.value),
        records=SqlTenantRecordStore(session_factory),
    )
    return JobWorker(
        settings,
        JobQueue(SqlJobStore(session_factory), settings),
        PipelineExecutor(collaborators, settings),
    )

