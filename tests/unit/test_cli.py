"""Unit tests for the command line interface."""

import pytest
from typer.testing import CliRunner

from chronomem.cli import app

runner = CliRunner()


@pytest.fixture
def data_dir(temp_dir, monkeypatch):
    monkeypatch.setenv("CHRONOMEM_DATA_DIR", str(temp_dir))
    monkeypatch.setenv("CHRONOMEM_ENV", "testing")
    return temp_dir


class TestCli:
    """Tests for CLI commands that need no remote services."""

    def test_retention_table(self):
        result = runner.invoke(app, ["retention", "--plan", "pro"])

        assert result.exit_code == 0
        assert "Retention (pro)" in result.stdout
        assert "120 hours" in result.stdout
        assert "8 years" in result.stdout

    def test_search_rejects_docs(self, data_dir):
        result = runner.invoke(app, ["search", "agent-1", "--workspace", "ws-1", "--grain", "docs"])

        assert result.exit_code == 1
        assert "Search failed" in result.stdout

    def test_search_empty_memory(self, data_dir):
        result = runner.invoke(app, ["search", "agent-1", "--workspace", "ws-1", "--grain", "weekly"])

        assert result.exit_code == 0
        assert "No results found" in result.stdout

    def test_record_not_found(self, data_dir):
        result = runner.invoke(app, ["record", "agent-1", "rec-1"])

        assert result.exit_code == 1
        assert "not found" in result.stdout

    def test_purge_cancelled(self, data_dir):
        result = runner.invoke(app, ["purge", "agent-1", "--grain", "working"], input="n\n")

        assert result.exit_code == 0
        assert "Purge cancelled" in result.stdout

    def test_summarize_rejects_working(self, data_dir):
        result = runner.invoke(app, ["summarize", "working"], input="User likes React\n")

        assert result.exit_code == 1
        assert "Summarization failed" in result.stdout

    def test_summarize_nothing(self, data_dir):
        result = runner.invoke(app, ["summarize", "daily"], input="\n  \n")

        assert result.exit_code == 0
        assert "Nothing to summarize" in result.stdout
