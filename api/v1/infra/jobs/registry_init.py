"""
Pipeline registry initialization.

Registers the pipeline for every job type with the global pipeline registry.
"""

import logging

from api.v1.core.registries import pipeline_registry
from api.v1.infra.jobs.handlers import (
    ContentGenerationPipeline,
    NarrativeGenerationPipeline,
    WebsiteAnalysisPipeline,
)

logger = logging.getLogger(__name__)


def register_pipelines() -> None:
    """Register all job pipelines with the pipeline registry."""

    for pipeline in (
        WebsiteAnalysisPipeline(),
        ContentGenerationPipeline(),
        NarrativeGenerationPipeline(),
    ):
        pipeline_registry.register(pipeline.job_type, pipeline)

    logger.info(
        "Job pipelines registered",
        extra={"registered_pipelines": pipeline_registry.list()},
    )


# Auto-register pipelines when module is imported
register_pipelines()
