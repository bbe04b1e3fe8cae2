import pytest

from api.config.settings import AnalysisProvider
from api.v1.analysis.basic_rules import BasicRulesAnalysisService
from api.v1.analysis.fetcher import HttpContentFetcher
from api.v1.analysis.registry_init import init_analysis_registries
from api.v1.core.registries import (
    Registry,
    analysis_registry,
    fetcher_registry,
    pipeline_registry,
)
from api.v1.infra.jobs.models import JobType


def test_registry_basic_operations():
    """Test basic registry register, get, list operations."""
    registry = Registry[str]("Test")

    # Test empty registry
    assert registry.list() == []

    # Test register and get
    registry.register("test_impl", "test_value")
    assert registry.get("test_impl") == "test_value"
    assert registry.list() == ["test_impl"]

    # Test KeyError for missing implementation
    with pytest.raises(KeyError, match="No test implementation registered"):
        registry.get("nonexistent")


def test_registry_overwrites_implementation():
    """Test that registering the same name overwrites previous implementation."""
    registry = Registry[str]("Test")

    registry.register("same_name", "first_value")
    registry.register("same_name", "second_value")

    assert registry.get("same_name") == "second_value"
    assert registry.list() == ["same_name"]  # Only one entry


def test_frozen_registry_rejects_registration():
    """A frozen registry keeps serving lookups but refuses new entries."""
    registry = Registry[str]("Test")
    registry.register("kept", "value")
    registry.freeze()

    assert registry.is_frozen()
    assert registry.get("kept") == "value"
    with pytest.raises(RuntimeError, match="registry is frozen"):
        registry.register("late", "value")


def test_pipelines_registered_for_every_job_type():
    """Every job type has a pipeline once the jobs package is imported."""
    import api.v1.infra.jobs.registry_init  # noqa: F401

    for job_type in JobType:
        assert pipeline_registry.get(job_type.value).job_type == job_type.value


def test_analysis_registries_initialized(test_settings):
    """Fetcher and the basic analysis provider are always available."""
    init_analysis_registries(test_settings)

    assert isinstance(fetcher_registry.get("http"), HttpContentFetcher)
    assert isinstance(
        analysis_registry.get(AnalysisProvider.BASIC.value), BasicRulesAnalysisService
    )


def test_analysis_registry_init_is_idempotent(test_settings):
    init_analysis_registries(test_settings)
    before = fetcher_registry.get("http")

    init_analysis_registries(test_settings)

    assert fetcher_registry.get("http") is before
