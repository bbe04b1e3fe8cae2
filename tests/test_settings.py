from unittest.mock import patch

import pytest

from api.config.settings import AnalysisProvider, AuthMode, Settings, get_settings


def test_default_settings():
    """Test default settings values."""
    settings = Settings(_env_file=None)

    assert settings.app_name == "Pipeline Jobs"
    assert settings.version == "1.0.0"
    assert settings.environment == "development"
    assert settings.auth_mode == AuthMode.NONE
    assert settings.analysis_provider == AnalysisProvider.BASIC


def test_job_queue_defaults():
    """Test job queue tuning defaults."""
    settings = Settings(_env_file=None)

    assert settings.job_concurrency == 2
    assert settings.job_max_attempts == 3
    assert settings.job_default_priority == 0
    assert settings.job_backoff_base_ms == 2000
    assert settings.job_max_backoff_s == 300
    assert settings.job_visibility_timeout_s == 600


def test_production_validation_blocks_none_auth():
    """Test that production environment blocks AUTH_MODE=none."""
    with pytest.raises(ValueError, match="AUTH_MODE=none is not allowed in production"):
        Settings(environment="production", auth_mode=AuthMode.NONE)


def test_production_allows_header_auth():
    """Test that production environment allows AUTH_MODE=headers."""
    settings = Settings(environment="production", auth_mode=AuthMode.HEADERS)
    assert settings.environment == "production"
    assert settings.auth_mode == AuthMode.HEADERS


def test_priority_default_is_bounded():
    with pytest.raises(ValueError):
        Settings(job_default_priority=11)


def test_settings_dependency_injection():
    """Test the get_settings dependency function."""
    settings = get_settings()
    assert isinstance(settings, Settings)
    assert settings.app_name == "Pipeline Jobs"


@patch.dict(
    "os.environ",
    {"AUTH_MODE": "headers", "ENVIRONMENT": "production", "JOB_CONCURRENCY": "8"},
)
def test_env_var_loading():
    """Test that environment variables are loaded correctly."""
    settings = Settings()
    assert settings.auth_mode == AuthMode.HEADERS
    assert settings.environment == "production"
    assert settings.job_concurrency == 8
