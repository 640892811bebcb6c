"""Tests for CLI commands"""

from unittest.mock import Mock, patch

import pytest
from typer.testing import CliRunner

from cli.client.base import MediaQueueError
from cli.main import app
from cli.utils.config_manager import ConfigManager


@pytest.fixture
def runner():
    """CLI test runner"""
    return CliRunner()


def make_client(**returns) -> Mock:
    """Mock API client usable as a context manager"""
    client = Mock()
    client.__enter__ = Mock(return_value=client)
    client.__exit__ = Mock(return_value=None)
    for name, value in returns.items():
        getattr(client, name).return_value = value
    return client


QUEUE_SNAPSHOT = {
    "queue_length": 2,
    "eligible": 1,
    "capacity": 1000,
    "active_workers": 1,
    "max_workers": 3,
    "downstream_in_flight": 1,
    "downstream_ceiling": 2,
    "breaker": {
        "state": "open",
        "failure_count": 3,
        "threshold": 3,
        "cooldown_s": 60,
        "retry_in_s": 42.0,
    },
    "recent_errors": 3,
    "processed": 10,
    "succeeded": 7,
    "retried": 2,
    "abandoned": 1,
    "running": True,
    "items": [
        {
            "id": "job-a",
            "kind": "image_analysis",
            "media_id": "media-1",
            "priority": 80,
            "attempt": 1,
            "scheduled_for": "2024-01-01T12:00:10+00:00",
        }
    ],
}


class TestMainCommands:
    """Test main CLI commands"""

    def test_version_flag(self, runner):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert "Media Queue CLI" in result.stdout

    def test_quickstart(self, runner):
        result = runner.invoke(app, ["quickstart"])
        assert result.exit_code == 0
        assert "Quick Start Guide" in result.stdout
        assert "media-queue status" in result.stdout

    @patch("cli.main.MediaQueueClient")
    def test_status_success(self, mock_client_class, runner):
        mock_client_class.return_value = make_client(
            health_check={
                "ok": True,
                "version": "1.0.0",
                "environment": "development",
                "pipeline": {"queue_length": 4, "breaker_state": "closed"},
            }
        )

        result = runner.invoke(app, ["status"])
        assert result.exit_code == 0
        assert "Connected Successfully" in result.stdout

    @patch("cli.main.MediaQueueClient")
    def test_status_failure(self, mock_client_class, runner):
        client = make_client()
        client.health_check.side_effect = MediaQueueError("Connection failed")
        mock_client_class.return_value = client

        result = runner.invoke(app, ["status"])
        assert result.exit_code == 1
        assert "Connection Failed" in result.stdout


class TestJobCommands:
    """Test jobs commands"""

    @patch("cli.commands.jobs.MediaQueueClient")
    def test_enqueue(self, mock_client_class, runner):
        client = make_client(enqueue_job={"job_id": "image_analysis-1-abc"})
        mock_client_class.return_value = client

        result = runner.invoke(
            app, ["jobs", "enqueue", "media-1", "--project", "project-1", "--size", "2048"]
        )

        assert result.exit_code == 0
        assert "image_analysis-1-abc" in result.stdout
        client.enqueue_job.assert_called_once_with(
            "image_analysis",
            "media-1",
            "project-1",
            estimated_size=2048,
            frame_timestamp=None,
        )

    def test_enqueue_rejects_unknown_type(self, runner):
        result = runner.invoke(
            app, ["jobs", "enqueue", "media-1", "-p", "project-1", "-t", "audio"]
        )

        assert result.exit_code == 1
        assert "image_analysis or video_frame_analysis" in result.stdout

    @patch("cli.commands.jobs.MediaQueueClient")
    def test_enqueue_queue_full(self, mock_client_class, runner):
        client = make_client()
        client.enqueue_job.side_effect = MediaQueueError(
            "API Error 429: Processing queue is full", status_code=429
        )
        mock_client_class.return_value = client

        result = runner.invoke(app, ["jobs", "enqueue", "media-1", "-p", "project-1"])

        assert result.exit_code == 1
        assert "Queue is full" in result.stdout

    @patch("cli.commands.jobs.MediaQueueClient")
    def test_queue_with_items(self, mock_client_class, runner):
        client = make_client(get_queue=QUEUE_SNAPSHOT)
        mock_client_class.return_value = client

        result = runner.invoke(app, ["jobs", "queue", "--items"])

        assert result.exit_code == 0
        assert "Processing Queue" in result.stdout
        assert "open" in result.stdout
        assert "job-a" in result.stdout
        client.get_queue.assert_called_once_with(include_items=True)

    @patch("cli.commands.jobs.MediaQueueClient")
    def test_transfer_status(self, mock_client_class, runner):
        mock_client_class.return_value = make_client(
            get_transfer_status={
                "total": 2,
                "sent": 1,
                "failed": 1,
                "has_failures": True,
                "all_transferred": True,
                "per_id": {
                    "job-a": {"state": "sent", "error": None},
                    "job-b": {"state": "failed", "error": "timeout"},
                },
                "summary": {
                    "message": "1 of 2 items sent successfully, 1 failed",
                    "can_leave": True,
                },
            }
        )

        result = runner.invoke(app, ["jobs", "transfer-status", "job-a", "job-b"])

        assert result.exit_code == 0
        assert "Transfer Status" in result.stdout
        assert "1 failed" in result.stdout


class TestProjectCommands:
    """Test projects commands"""

    @patch("cli.commands.projects.MediaQueueClient")
    def test_processing_empty(self, mock_client_class, runner):
        mock_client_class.return_value = make_client(
            get_processing={"project_id": "project-1", "items": [], "count": 0}
        )

        result = runner.invoke(app, ["projects", "processing", "project-1"])

        assert result.exit_code == 0
        assert "Nothing in flight" in result.stdout

    @patch("cli.commands.projects.MediaQueueClient")
    def test_processing_lists_items(self, mock_client_class, runner):
        mock_client_class.return_value = make_client(
            get_processing={
                "project_id": "project-1",
                "items": [
                    {
                        "media_id": "media-1",
                        "kind": "image_analysis",
                        "job_id": "job-a",
                        "started_at": "2024-01-01T12:00:00+00:00",
                    }
                ],
                "count": 1,
            }
        )

        result = runner.invoke(app, ["projects", "processing", "project-1"])

        assert result.exit_code == 0
        assert "media-1" in result.stdout
        assert "1 item(s) in flight" in result.stdout

    @patch("cli.commands.projects.MediaQueueClient")
    def test_processing_error(self, mock_client_class, runner):
        client = make_client()
        client.get_processing.side_effect = MediaQueueError("Connection failed")
        mock_client_class.return_value = client

        result = runner.invoke(app, ["projects", "processing", "project-1"])

        assert result.exit_code == 1


class TestConfigCommands:
    """Test config commands"""

    @pytest.fixture(autouse=True)
    def isolated_config(self, tmp_path, monkeypatch):
        manager = ConfigManager(config_dir=tmp_path)
        monkeypatch.setattr("cli.commands.config.config", manager)
        return manager

    def test_set_and_get(self, runner, isolated_config):
        result = runner.invoke(app, ["config", "set", "api.timeout", "60"])
        assert result.exit_code == 0
        assert isolated_config.get("api.timeout") == 60

        result = runner.invoke(app, ["config", "get", "api.timeout"])
        assert "60" in result.stdout

    def test_set_rejects_bad_url(self, runner):
        result = runner.invoke(app, ["config", "set", "api.base_url", "localhost:8000"])

        assert result.exit_code == 1
        assert "must start with http" in result.stdout

    def test_reset(self, runner, isolated_config):
        isolated_config.set("display.show_items", True)

        result = runner.invoke(app, ["config", "reset", "--yes"])

        assert result.exit_code == 0
        assert isolated_config.get("display.show_items") is False

    def test_show(self, runner):
        result = runner.invoke(app, ["config", "show"])

        assert result.exit_code == 0
        assert "base_url" in result.stdout


class TestConfigManager:
    def test_defaults_without_file(self, tmp_path):
        manager = ConfigManager(config_dir=tmp_path / "missing")

        assert manager.get("api.timeout") == 30
        assert manager.get("api.nope", "fallback") == "fallback"
        assert not manager.config_file.exists()

    def test_partial_file_is_merged_with_defaults(self, tmp_path):
        manager = ConfigManager(config_dir=tmp_path)
        manager.config_file.write_text("api:\n  base_url: http://queue.internal\n")

        assert manager.get("api.base_url") == "http://queue.internal"
        assert manager.get("api.timeout") == 30
