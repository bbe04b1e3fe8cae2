"""
Pipelines for each job type.

Each pipeline is an ordered list of stages. Stages are plain async functions
of the pipeline context; every durable write is an idempotent upsert or
replace keyed by tenant so a job-level retry can safely re-run from stage 1.
"""

from typing import Any

from api.v1.analysis.schemas import (
    FetchedContent,
    Scenario,
    StructuredAnalysis,
    TenantRecord,
)
from api.v1.core.exceptions import AnalysisError, FetchError, PersistenceError
from api.v1.infra.jobs.models import JobType
from api.v1.infra.jobs.pipeline import PipelineContext, Stage

# Progress labels are matched by clients; keep them stable.
ANALYZING_WEBSITE = "Analyzing website"
GENERATING_AUDIENCES = "Generating audiences"
GENERATING_PITCHES = "Generating pitches"
GENERATING_IMAGES = "Generating images"

WEBSITE_ANALYSIS_LABELS = (
    ANALYZING_WEBSITE,
    GENERATING_AUDIENCES,
    GENERATING_PITCHES,
    GENERATING_IMAGES,
)


# Shared stages


async def load_analysis(ctx: PipelineContext) -> TenantRecord:
    record = await ctx.collaborators.records.get_tenant_record(ctx.tenant)
    if record is None:
        raise PersistenceError(
            "No website analysis found for this tenant; run website_analysis first"
        )
    expected = getattr(ctx.payload, "organization_id", None)
    if expected is not None and record.organization_id != expected:
        raise PersistenceError(
            f"Organization {expected} does not belong to this tenant"
        )
    return record


# Website analysis


async def fetch_website(ctx: PipelineContext) -> FetchedContent:
    return await ctx.collaborators.fetcher.fetch_content(str(ctx.payload.url))


async def analyze_content(ctx: PipelineContext) -> StructuredAnalysis:
    content: FetchedContent = ctx["fetch"]
    analysis_context = {"url": str(ctx.payload.url), **ctx.payload.context}
    return await ctx.collaborators.analysis.analyze(content, analysis_context)


async def save_analysis(ctx: PipelineContext) -> Any:
    return await ctx.collaborators.records.upsert_tenant_record(
        ctx.tenant, str(ctx.payload.url), ctx["analyze"]
    )


async def generate_scenarios(ctx: PipelineContext) -> list[Scenario]:
    # Regenerated in full each run; save_audiences replaces the stored set
    count = ctx.payload.scenario_count or ctx.settings.scenario_count
    scenarios = await ctx.collaborators.analysis.generate_scenarios(
        ctx["analyze"], count
    )
    if not scenarios:
        raise AnalysisError("No audience scenarios were generated")
    return scenarios


async def generate_pitches(ctx: PipelineContext) -> list[Scenario]:
    scenarios = await ctx.collaborators.analysis.enrich_with_pitch(
        ctx["scenarios"], ctx["analyze"]
    )
    missing = [s.segment for s in scenarios if not s.pitch]
    if missing:
        raise AnalysisError(f"Pitch missing for scenarios: {', '.join(missing)}")
    return scenarios


async def generate_images(ctx: PipelineContext) -> list[Scenario]:
    scenarios = await ctx.collaborators.analysis.enrich_with_image(
        ctx["pitches"], ctx["analyze"]
    )
    missing = [s.segment for s in scenarios if not s.image_url]
    if missing:
        raise AnalysisError(f"Image missing for scenarios: {', '.join(missing)}")
    return scenarios


async def save_audiences(ctx: PipelineContext) -> int:
    return await ctx.collaborators.records.replace_audiences(
        ctx.tenant, ctx["save_analysis"], ctx["images"]
    )


class WebsiteAnalysisPipeline:
    """
    Fetch a site, analyze it, and derive audiences with pitches and images.

    Result:
    {
        "url": str,
        "organization_id": str,
        "analysis": {...},
        "metadata": {"title": str, "links": [...]},
        "scenarios": [{..., "pitch": str, "image_url": str}]
    }
    """

    job_type = JobType.WEBSITE_ANALYSIS.value

    def stages(self) -> list[Stage]:
        return [
            Stage("fetch", fetch_website, error_type=FetchError),
            Stage("analyze", analyze_content, error_type=AnalysisError),
            Stage(
                "save_analysis",
                save_analysis,
                progress_label=ANALYZING_WEBSITE,
                error_type=PersistenceError,
            ),
            Stage(
                "scenarios",
                generate_scenarios,
                progress_label=GENERATING_AUDIENCES,
                error_type=AnalysisError,
            ),
            Stage(
                "pitches",
                generate_pitches,
                progress_label=GENERATING_PITCHES,
                error_type=AnalysisError,
            ),
            Stage(
                "images",
                generate_images,
                progress_label=GENERATING_IMAGES,
                error_type=AnalysisError,
            ),
            Stage("save_audiences", save_audiences, error_type=PersistenceError),
        ]

    def build_result(self, ctx: PipelineContext) -> dict[str, Any]:
        content: FetchedContent = ctx["fetch"]
        return {
            "url": str(ctx.payload.url),
            "organization_id": str(ctx["save_analysis"]),
            "analysis": ctx["analyze"].model_dump(mode="json"),
            "metadata": {
                **content.metadata,
                "title": content.title,
                "links": content.links[:20],
            },
            "scenarios": [s.model_dump(mode="json") for s in ctx["images"]],
        }


# Narrative generation


async def write_narrative(ctx: PipelineContext) -> Any:
    record: TenantRecord = ctx["load_analysis"]
    return await ctx.collaborators.analysis.generate_narrative(record.analysis)


async def save_narrative(ctx: PipelineContext) -> bool:
    await ctx.collaborators.records.save_narrative(ctx.tenant, ctx["narrative"])
    return True


class NarrativeGenerationPipeline:
    """Generate and store the narrative for the tenant's analysis."""

    job_type = JobType.NARRATIVE_GENERATION.value

    def stages(self) -> list[Stage]:
        return [
            Stage(
                "load_analysis",
                load_analysis,
                progress_label="Loading analysis",
                error_type=PersistenceError,
            ),
            Stage(
                "narrative",
                write_narrative,
                progress_label="Writing narrative",
                error_type=AnalysisError,
            ),
            Stage(
                "save_narrative",
                save_narrative,
                progress_label="Saving narrative",
                error_type=PersistenceError,
            ),
        ]

    def build_result(self, ctx: PipelineContext) -> dict[str, Any]:
        record: TenantRecord = ctx["load_analysis"]
        return {
            "organization_id": str(record.organization_id),
            **ctx["narrative"].model_dump(mode="json"),
        }


# Content generation


async def write_post(ctx: PipelineContext) -> Any:
    record: TenantRecord = ctx["load_analysis"]
    return await ctx.collaborators.analysis.generate_post(
        ctx.payload.topic, record.analysis, ctx.payload.instructions
    )


class ContentGenerationPipeline:
    """Write a post for a topic in the tenant's brand voice."""

    job_type = JobType.CONTENT_GENERATION.value

    def stages(self) -> list[Stage]:
        return [
            Stage(
                "load_analysis",
                load_analysis,
                progress_label="Loading analysis",
                error_type=PersistenceError,
            ),
            Stage(
                "post",
                write_post,
                progress_label="Writing post",
                error_type=AnalysisError,
            ),
        ]

    def build_result(self, ctx: PipelineContext) -> dict[str, Any]:
        record: TenantRecord = ctx["load_analysis"]
        return {
            "organization_id": str(record.organization_id),
            "topic": ctx.payload.topic,
            "post": ctx["post"].model_dump(mode="json"),
        }
