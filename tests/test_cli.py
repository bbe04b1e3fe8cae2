"""Tests for CLI commands"""

from unittest.mock import Mock, patch

import pytest
from typer.testing import CliRunner

from cli.client.base import PipelineJobsError
from cli.client.endpoints import identity_headers
from cli.main import app
from cli.utils.config_manager import ConfigManager

JOB_ID = "6f1c2b8e-3a0d-4a57-9a6e-2f4b1c9d7e10"


# Test fixtures
@pytest.fixture
def runner():
    """CLI test runner"""
    return CliRunner()


def make_client(**methods) -> Mock:
    """Mock PipelineJobsClient usable as a context manager"""
    client = Mock()
    client.__enter__ = Mock(return_value=client)
    client.__exit__ = Mock(return_value=None)
    for name, value in methods.items():
        setattr(client, name, value)
    return client


def job_data(status: str = "pending", **overrides) -> dict:
    return {
        "id": JOB_ID,
        "type": "website_analysis",
        "status": status,
        "priority": 0,
        "attempts": 0,
        "max_attempts": 3,
        "progress": None,
        "progress_percentage": None,
        "error_code": None,
        "error_message": None,
        "result": None,
        "created_at": "2026-10-19T10:00:00+00:00",
        "completed_at": None,
        **overrides,
    }


class TestMainCommands:
    """Test main CLI commands"""

    def test_version(self, runner):
        """Test --version flag"""
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert "Pipeline Jobs CLI v1.0.0" in result.stdout

    @patch("cli.main.PipelineJobsClient")
    def test_status_success(self, mock_client_class, runner):
        """Test status command with successful connection"""
        mock_client_class.return_value = make_client(
            health_check=Mock(
                return_value={
                    "version": "1.0.0",
                    "environment": "development",
                    "worker": {"active_workers": 2, "pending_jobs": 5},
                }
            )
        )

        result = runner.invoke(app, ["status"])
        assert result.exit_code == 0
        assert "Connected Successfully" in result.stdout
        assert "Active workers" in result.stdout

    @patch("cli.main.PipelineJobsClient")
    def test_status_failure(self, mock_client_class, runner):
        """Test status command with connection failure"""
        mock_client_class.return_value = make_client(
            health_check=Mock(side_effect=PipelineJobsError("Connection failed"))
        )

        result = runner.invoke(app, ["status"])
        assert result.exit_code == 1
        assert "Connection Failed" in result.stdout


class TestJobCommands:
    """Test jobs sub-commands"""

    @patch("cli.commands.jobs.PipelineJobsClient")
    def test_submit(self, mock_client_class, runner):
        client = make_client(
            submit_job=Mock(return_value={"job_id": JOB_ID, "status": "pending"})
        )
        mock_client_class.return_value = client

        result = runner.invoke(
            app,
            ["jobs", "submit", "narrative_generation", "--payload", "{}", "--priority", "5"],
        )

        assert result.exit_code == 0
        assert f"Submitted job {JOB_ID}" in result.stdout
        client.submit_job.assert_called_once_with("narrative_generation", {}, 5)

    @patch("cli.commands.jobs.PipelineJobsClient")
    def test_submit_conflict_names_existing_job(self, mock_client_class, runner):
        mock_client_class.return_value = make_client(
            submit_job=Mock(
                side_effect=PipelineJobsError(
                    "API Error 409",
                    status_code=409,
                    details={"job_id": JOB_ID, "status": "processing"},
                )
            )
        )

        result = runner.invoke(app, ["jobs", "submit", "website_analysis"])

        assert result.exit_code == 1
        assert "already active" in result.stdout
        assert JOB_ID in result.stdout

    def test_submit_rejects_bad_json(self, runner):
        result = runner.invoke(
            app, ["jobs", "submit", "website_analysis", "--payload", "{url"]
        )

        assert result.exit_code == 1
        assert "valid JSON" in result.stdout

    @patch("cli.commands.jobs.PipelineJobsClient")
    def test_analyze_deduplicated(self, mock_client_class, runner):
        client = make_client(
            analyze_website=Mock(
                return_value={"job_id": JOB_ID, "status": "processing", "deduplicated": True}
            )
        )
        mock_client_class.return_value = client

        result = runner.invoke(app, ["jobs", "analyze", "https://example.com"])

        assert result.exit_code == 0
        assert "already in progress" in result.stdout
        client.analyze_website.assert_called_once_with("https://example.com", {}, None)

    @patch("cli.commands.jobs.PipelineJobsClient")
    def test_status_shows_progress(self, mock_client_class, runner):
        mock_client_class.return_value = make_client(
            get_job=Mock(
                return_value=job_data(
                    "processing",
                    progress={
                        "step_index": 2,
                        "step_label": "Generating audiences",
                        "total_steps": 4,
                    },
                    progress_percentage=50.0,
                )
            )
        )

        result = runner.invoke(app, ["jobs", "status", JOB_ID])

        assert result.exit_code == 0
        assert "Generating audiences" in result.stdout

    @patch("cli.commands.jobs.PipelineJobsClient")
    def test_list_empty(self, mock_client_class, runner):
        mock_client_class.return_value = make_client(
            list_jobs=Mock(return_value={"jobs": [], "total": 0})
        )

        result = runner.invoke(app, ["jobs", "list"])

        assert result.exit_code == 0
        assert "No jobs found" in result.stdout

    @patch("cli.commands.jobs.PipelineJobsClient")
    def test_list_passes_filters(self, mock_client_class, runner):
        client = make_client(
            list_jobs=Mock(return_value={"jobs": [job_data("failed")], "total": 1})
        )
        mock_client_class.return_value = client

        result = runner.invoke(
            app, ["jobs", "list", "--status", "failed", "--limit", "5"]
        )

        assert result.exit_code == 0
        assert "Showing" in result.stdout
        client.list_jobs.assert_called_once_with(
            status="failed", type=None, limit=5, offset=0
        )

    @patch("cli.commands.jobs.PipelineJobsClient")
    def test_retry_and_cancel(self, mock_client_class, runner):
        client = make_client(
            retry_job=Mock(return_value=job_data("pending", attempts=3)),
            cancel_job=Mock(return_value={"cancelled": True, "job_id": JOB_ID}),
        )
        mock_client_class.return_value = client

        retried = runner.invoke(app, ["jobs", "retry", JOB_ID])
        cancelled = runner.invoke(app, ["jobs", "cancel", JOB_ID])

        assert retried.exit_code == 0
        assert "pending again" in retried.stdout
        assert cancelled.exit_code == 0
        assert "cancelled" in cancelled.stdout
        client.retry_job.assert_called_once_with(JOB_ID)
        client.cancel_job.assert_called_once_with(JOB_ID)

    @patch("cli.commands.jobs.time.sleep")
    @patch("cli.commands.jobs.PipelineJobsClient")
    def test_watch_until_succeeded(self, mock_client_class, mock_sleep, runner):
        mock_client_class.return_value = make_client(
            get_job=Mock(
                side_effect=[
                    job_data("pending"),
                    job_data(
                        "processing",
                        progress={
                            "step_index": 1,
                            "step_label": "Analyzing website",
                            "total_steps": 4,
                        },
                    ),
                    job_data("succeeded", result={"scenarios": []}),
                ]
            )
        )

        result = runner.invoke(app, ["jobs", "watch", JOB_ID, "--interval", "1"])

        assert result.exit_code == 0
        assert "Analyzing website" in result.stdout
        assert mock_sleep.call_count == 2

    @patch("cli.commands.jobs.time.sleep")
    @patch("cli.commands.jobs.PipelineJobsClient")
    def test_watch_failed_job_exits_nonzero(self, mock_client_class, mock_sleep, runner):
        mock_client_class.return_value = make_client(
            get_job=Mock(
                return_value=job_data(
                    "failed", attempts=3, error_message="fetch: HTTP 404"
                )
            )
        )

        result = runner.invoke(app, ["jobs", "watch", JOB_ID])

        assert result.exit_code == 1
        mock_sleep.assert_not_called()

    @patch("cli.commands.jobs.PipelineJobsClient")
    def test_adopt(self, mock_client_class, runner):
        client = make_client(
            adopt_session=Mock(
                return_value={
                    "jobs_moved": 2,
                    "organizations_moved": 1,
                    "organizations_merged": 0,
                }
            )
        )
        mock_client_class.return_value = client

        result = runner.invoke(app, ["jobs", "adopt", "s1"])

        assert result.exit_code == 0
        assert "2 jobs" in result.stdout
        client.adopt_session.assert_called_once_with("s1")


class TestConfigCommands:
    """Test config commands and the config file"""

    @pytest.fixture
    def temp_config(self, tmp_path):
        manager = ConfigManager(config_dir=tmp_path)
        with patch("cli.commands.config.config", manager):
            yield manager

    def test_set_and_get(self, runner, temp_config):
        result = runner.invoke(app, ["config", "set", "api.user_id", "u1"])
        assert result.exit_code == 0
        assert temp_config.get("api.user_id") == "u1"

        result = runner.invoke(app, ["config", "get", "api.user_id"])
        assert "u1" in result.stdout

    def test_set_rejects_bad_url(self, runner, temp_config):
        result = runner.invoke(app, ["config", "set", "api.base_url", "localhost:8000"])

        assert result.exit_code == 1
        assert temp_config.get("api.base_url") != "localhost:8000"

    def test_set_numeric_value(self, runner, temp_config):
        result = runner.invoke(app, ["config", "set", "watch.interval_s", "5"])

        assert result.exit_code == 0
        assert temp_config.get("watch.interval_s") == 5

    def test_reset(self, runner, temp_config):
        temp_config.set("api.session_id", "s9")

        result = runner.invoke(app, ["config", "reset", "--yes"])

        assert result.exit_code == 0
        assert temp_config.get("api.session_id") is None

    def test_identity_headers(self):
        assert identity_headers({"user_id": "u1", "session_id": None}) == {
            "X-User-ID": "u1"
        }
        assert identity_headers({"session_id": "s1"}) == {"X-Session-ID": "s1"}
        assert identity_headers({}) == {}
