"""
Pipeline executor.

Runs a job type's stages strictly in order. Before each stage the executor
asks whether the job was cancelled; after each labelled stage it reports
progress. A failing stage aborts the run and surfaces as a StageError naming
the stage, which the worker turns into a fail transition.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

from api.config.logging import bind_stage_context, get_logger
from api.config.settings import Settings
from api.v1.core.exceptions import (
    PipelineCancelledError,
    StageError,
    StageTimeoutError,
)
from api.v1.core.registries import (
    AnalysisService,
    ContentFetcher,
    JobPipeline,
    TenantRecordStore,
    pipeline_registry,
)
from api.v1.core.security import TenantContext
from api.v1.infra.jobs.models import Job
from api.v1.infra.jobs.schemas import JobPayload, parse_payload

logger = get_logger(__name__)

CancellationCheck = Callable[[], Awaitable[bool]]
ProgressSink = Callable[[int, str], Awaitable[None]]


@dataclass
class Collaborators:
    """External services available to stages."""

    fetcher: ContentFetcher
    analysis: AnalysisService
    records: TenantRecordStore


@dataclass
class PipelineContext:
    """Everything a stage may read: the job input plus prior artifacts."""

    job_id: UUID
    job_type: str
    tenant: TenantContext
    payload: JobPayload
    collaborators: Collaborators
    settings: Settings
    artifacts: dict[str, Any] = field(default_factory=dict)

    def __getitem__(self, name: str) -> Any:
        return self.artifacts[name]


StageFn = Callable[[PipelineContext], Awaitable[Any]]


@dataclass(frozen=True)
class Stage:
    """One ordered step. Its return value is stored as artifact ``name``."""

    name: str
    run: StageFn
    progress_label: str | None = None
    error_type: type[StageError] = StageError


class PipelineExecutor:
    """Runs registered pipelines for claimed jobs."""

    def __init__(self, collaborators: Collaborators, settings: Settings):
        self.collaborators = collaborators
        self.settings = settings

    def pipeline_for(self, job_type: str) -> JobPipeline:
        return pipeline_registry.get(job_type)

    def build_context(self, job: Job) -> PipelineContext:
        return PipelineContext(
            job_id=job.id,
            job_type=job.type,
            tenant=TenantContext(user_id=job.user_id, session_id=job.session_id),
            payload=parse_payload(job.type, job.payload),
            collaborators=self.collaborators,
            settings=self.settings,
        )

    async def run(
        self,
        job: Job,
        cancellation_check: CancellationCheck,
        on_progress: ProgressSink,
    ) -> dict[str, Any]:
        """
        Execute every stage of the job's pipeline and return the job result.

        Raises:
            PipelineCancelledError: cancellation observed at a stage boundary;
                partial artifacts are discarded, committed side effects stay
            StageError: a stage failed or timed out
        """
        pipeline = self.pipeline_for(job.type)
        context = self.build_context(job)
        stages = pipeline.stages()

        step_index = 0
        for stage in stages:
            if await cancellation_check():
                logger.info(
                    "Pipeline cancelled before stage",
                    job_id=str(job.id),
                    stage=stage.name,
                    completed_stages=list(context.artifacts),
                )
                context.artifacts.clear()
                raise PipelineCancelledError(stage=stage.name)

            context.artifacts[stage.name] = await self._run_stage(stage, context)

            if stage.progress_label:
                step_index += 1
                await on_progress(step_index, stage.progress_label)

        return pipeline.build_result(context)

    async def _run_stage(self, stage: Stage, context: PipelineContext) -> Any:
        timeout = self.settings.job_stage_timeout_s
        bind_stage_context(stage.name)
        logger.debug("Stage started", job_id=str(context.job_id), stage=stage.name)
        try:
            return await asyncio.wait_for(stage.run(context), timeout=timeout)
        except StageError as e:
            if e.stage is None:
                e.stage = stage.name
            raise
        except TimeoutError as e:
            raise StageTimeoutError(
                f"Stage exceeded {timeout}s timeout", stage=stage.name
            ) from e
        except Exception as e:
            raise stage.error_type(
                f"{e.__class__.__name__}: {e}", stage=stage.name
            ) from e


def progress_labels(pipeline: JobPipeline) -> list[str]:
    """Fixed progress labels a pipeline reports, in order."""
    return [s.progress_label for s in pipeline.stages() if s.progress_label]
