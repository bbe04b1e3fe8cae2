from typing import Any, Generic, Protocol, TypeVar
from uuid import UUID

from api.v1.analysis.schemas import (
    FetchedContent,
    GeneratedPost,
    Narrative,
    Scenario,
    StructuredAnalysis,
    TenantRecord,
)

# Base registry implementation
T = TypeVar("T")


class Registry(Generic[T]):
    """Generic registry for pluggable implementations."""

    def __init__(self, name: str):
        self.name = name
        self._implementations: dict[str, T] = {}
        self._frozen = False

    def register(self, name: str, implementation: T) -> None:
        """Register an implementation with a given name."""
        if self._frozen:
            raise RuntimeError(
                f"Cannot register '{name}' in {self.name.lower()} registry: "
                "registry is frozen in production mode"
            )
        self._implementations[name] = implementation

    def get(self, name: str) -> T:
        """Get an implementation by name."""
        if name not in self._implementations:
            raise KeyError(
                f"No {self.name.lower()} implementation registered with name: {name}"
            )
        return self._implementations[name]

    def list(self) -> list[str]:
        """List all registered implementation names."""
        return list(self._implementations.keys())

    def freeze(self) -> None:
        """Freeze the registry to prevent further modifications."""
        self._frozen = True

    def is_frozen(self) -> bool:
        """Check if the registry is frozen."""
        return self._frozen


# Content Fetcher Registry - retrieve page content for analysis
class ContentFetcher(Protocol):
    """Protocol for content fetchers."""

    async def fetch_content(self, url: str) -> FetchedContent:
        """
        Fetch a page and extract its title, visible text, links and metadata.

        Raises FetchError on network failures, bad status codes or
        unsupported content.
        """
        ...


class FetcherRegistry(Registry[ContentFetcher]):
    """Registry for content fetchers (http)."""

    def __init__(self):
        super().__init__("Fetcher")


# Analysis Registry - structured analysis and derived artifact generation
class AnalysisService(Protocol):
    """Protocol for analysis and generation services.

    All methods raise AnalysisError on failure, including malformed
    structured output from an upstream model.
    """

    async def analyze(
        self, content: FetchedContent, context: dict[str, Any]
    ) -> StructuredAnalysis:
        """Derive business attributes (name, type, audience, voice) from content."""
        ...

    async def generate_scenarios(
        self, analysis: StructuredAnalysis, count: int
    ) -> list[Scenario]:
        """Derive up to ``count`` audience segments, best first."""
        ...

    async def enrich_with_pitch(
        self, scenarios: list[Scenario], analysis: StructuredAnalysis
    ) -> list[Scenario]:
        ...

    async def enrich_with_image(
        self, scenarios: list[Scenario], analysis: StructuredAnalysis
    ) -> list[Scenario]:
        ...

    async def generate_narrative(self, analysis: StructuredAnalysis) -> Narrative:
        ...

    async def generate_post(
        self, topic: str, analysis: StructuredAnalysis, instructions: str | None
    ) -> GeneratedPost:
        ...


class AnalysisRegistry(Registry[AnalysisService]):
    """Registry for analysis services (basic, openai)."""

    def __init__(self):
        super().__init__("Analysis")


# Tenant record storage - durable business records written by pipelines
class TenantRecordStore(Protocol):
    """Protocol for tenant record storage. Writes must be idempotent."""

    async def upsert_tenant_record(
        self, tenant: Any, url: str, analysis: StructuredAnalysis
    ) -> UUID:
        """Create or update the tenant's analysis record; returns its id."""
        ...

    async def get_tenant_record(self, tenant: Any) -> TenantRecord | None:
        ...

    async def list_audience_segments(self, tenant: Any) -> list[str]:
        ...

    async def replace_audiences(
        self, tenant: Any, organization_id: UUID, scenarios: list[Scenario]
    ) -> int:
        ...

    async def save_narrative(self, tenant: Any, narrative: Narrative) -> None:
        ...


# Pipeline Registry - ordered stage definitions per job type
class JobPipeline(Protocol):
    """Protocol for job pipelines run by the pipeline executor."""

    job_type: str

    def stages(self) -> list[Any]:
        """Return the ordered stages for one run of this pipeline."""
        ...

    def build_result(self, context: Any) -> dict[str, Any]:
        """Assemble the job result from the accumulated stage artifacts."""
        ...


class PipelineRegistry(Registry[JobPipeline]):
    """Registry for job pipelines (website_analysis, narrative_generation, ...)."""

    def __init__(self):
        super().__init__("Pipeline")


# Global registry instances (singletons)
fetcher_registry = FetcherRegistry()
analysis_registry = AnalysisRegistry()
pipeline_registry = PipelineRegistry()
