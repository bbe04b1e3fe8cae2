"""
Initialize fetcher and analysis registries.

Registers all available collaborator implementations based on settings.
"""

from api.config.settings import AnalysisProvider, Settings, settings
from api.v1.analysis.basic_rules import BasicRulesAnalysisService
from api.v1.analysis.fetcher import HttpContentFetcher
from api.v1.analysis.openai_service import OpenAIAnalysisService
from api.v1.core.registries import analysis_registry, fetcher_registry


def init_analysis_registries(app_settings: Settings = settings) -> None:
    """Initialize fetcher and analysis registries with available implementations."""

    # Already initialized by the API app or worker in this process
    if fetcher_registry.list():
        return

    fetcher_registry.register("http", HttpContentFetcher(app_settings))

    # Always register basic rules (no dependencies)
    analysis_registry.register(
        AnalysisProvider.BASIC.value, BasicRulesAnalysisService(app_settings)
    )

    # Register OpenAI if available
    try:
        import openai  # noqa: F401

        analysis_registry.register(
            AnalysisProvider.OPENAI.value, OpenAIAnalysisService(app_settings)
        )
    except ImportError as e:
        if app_settings.analysis_provider == AnalysisProvider.OPENAI:
            raise RuntimeError(
                "openai package not installed but ANALYSIS_PROVIDER=openai. "
                "Run: pip install 'pipeline-jobs[openai]'"
            ) from e

    # Validate configured analysis provider is available
    try:
        analysis_registry.get(app_settings.analysis_provider.value)
    except KeyError as e:
        available = analysis_registry.list()
        raise RuntimeError(
            f"Configured analysis provider '{app_settings.analysis_provider.value}' "
            f"not available. Available providers: {available}"
        ) from e
