"""Tests for the CLI commands."""

from unittest.mock import patch

import pytest
from click.testing import CliRunner

from localhub.cli import cli
from localhub.identity import IdentifierSanitizer
from localhub.storage import DocumentStore

pytestmark = pytest.mark.unit


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def data_dir(tmp_path, monkeypatch):
    """Point LOCALHUB_DATA at a temporary directory with some documents."""
    monkeypatch.setenv("LOCALHUB_DATA", str(tmp_path))
    monkeypatch.delenv("LOCALHUB_PLUGIN_IDS", raising=False)
    store = DocumentStore(tmp_path, IdentifierSanitizer())
    store.put("habits", "items", [])
    store.put("habits", "config", {})
    store.put("habits", "items", ["run"], "alice")
    store.put("habits", "streaks", {}, "bob")
    return tmp_path


class TestVersion:
    def test_version_flag(self, runner):
        result = runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output


class TestKeys:
    def test_shared_keys(self, runner, data_dir):
        result = runner.invoke(cli, ["keys", "habits"])
        assert result.exit_code == 0
        assert result.output.splitlines() == ["config", "items"]

    def test_user_keys(self, runner, data_dir):
        result = runner.invoke(cli, ["keys", "habits", "--user", "bob"])
        assert result.output.splitlines() == ["streaks"]

    def test_empty(self, runner, data_dir):
        result = runner.invoke(cli, ["keys", "journal"])
        assert result.exit_code == 0
        assert "No documents found." in result.output

    def test_invalid_plugin_id(self, runner, data_dir):
        result = runner.invoke(cli, ["keys", "../etc"])
        assert result.exit_code == 1
        assert "Invalid pluginId" in result.output


class TestUsers:
    def test_lists_user_directories(self, runner, data_dir):
        result = runner.invoke(cli, ["users", "habits"])
        assert result.exit_code == 0
        assert result.output.splitlines() == ["alice", "bob"]

    def test_no_users(self, runner, data_dir):
        result = runner.invoke(cli, ["users", "journal"])
        assert "No users found." in result.output


class TestConfigErrors:
    def test_bad_config_exits_with_status_2(self, runner, data_dir, monkeypatch):
        monkeypatch.setenv("PORT", "not-a-port")
        result = runner.invoke(cli, ["keys", "habits"])
        assert result.exit_code == 2
        assert "Configuration error" in result.output


class TestServe:
    def test_serve_passes_overrides_to_uvicorn(self, runner, data_dir):
        with (
            patch("uvicorn.run") as mock_run,
            patch("localhub.cli.configure_logging") as mock_logging,
        ):
            result = runner.invoke(cli, ["serve", "--host", "0.0.0.0", "--port", "4321"])

        assert result.exit_code == 0, result.output
        mock_logging.assert_called_once()
        _, kwargs = mock_run.call_args
        assert kwargs["host"] == "0.0.0.0"
        assert kwargs["port"] == 4321
        assert kwargs["log_config"] is None
