"""Integration tests for CLI commands."""

from pathlib import Path

import pytest
from typer.testing import CliRunner

from codegraph_rag import __version__
from codegraph_rag.cli import app

from conftest import FakeLLM

runner = CliRunner()

pytest.importorskip("tree_sitter_javascript")


@pytest.fixture
def ingested(sample_project_path: Path, temp_project_manager):
    result = runner.invoke(app, ["ingest", str(sample_project_path), "--name", "TestProj"])
    assert result.exit_code == 0, result.stdout
    return temp_project_manager


def test_version():
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.stdout


class TestIngestCommand:
    """Tests for 'codegraph-rag ingest'."""

    def test_ingest_project(self, sample_project_path: Path, temp_project_manager):
        """Test indexing a project."""
        result = runner.invoke(app, ["ingest", str(sample_project_path), "--name", "TestProj"])

        assert result.exit_code == 0
        assert "Indexed" in result.stdout
        assert "TestProj" in result.stdout
        assert "Nodes:" in result.stdout
        assert "Edges:" in result.stdout
        assert temp_project_manager.get_current_project() == "TestProj"

    def test_ingest_nonexistent_path(self, temp_project_manager):
        """Test indexing a non-existent path."""
        result = runner.invoke(app, ["ingest", "/nonexistent/path", "--name", "Missing"])

        assert result.exit_code == 1
        assert "Error" in result.stdout

    def test_reingest_with_reset(self, sample_project_path: Path, ingested):
        result = runner.invoke(app, ["ingest", str(sample_project_path), "--name", "TestProj", "--reset"])
        assert result.exit_code == 0


class TestStatusCommand:
    def test_status(self, ingested):
        result = runner.invoke(app, ["status"])
        assert result.exit_code == 0
        assert "Function nodes" in result.stdout
        assert "Vectors" in result.stdout

    def test_status_without_project(self, temp_project_manager):
        result = runner.invoke(app, ["status"])
        assert result.exit_code == 1


class TestAskCommand:
    def test_single_question(self, ingested):
        result = runner.invoke(app, ["ask", "--question", "what does add do?"])
        assert result.exit_code == 0, result.stdout
        assert "Mock answer for testing." in result.stdout

    def test_interactive_loop_until_quit(self, ingested):
        result = runner.invoke(app, ["ask"], input="what does add do?\n\nQUIT\nnever asked\n")
        assert result.exit_code == 0
        assert result.stdout.count("Mock answer for testing.") == 1

    def test_interactive_loop_ends_on_eof(self, ingested):
        result = runner.invoke(app, ["ask", "--project", "TestProj"], input="first\nsecond\n")
        assert result.exit_code == 0
        assert result.stdout.count("Mock answer for testing.") == 2

    def test_failed_turn_keeps_loop_running(self, ingested, monkeypatch):
        class _FailingLLM(FakeLLM):
            def __init__(self, **kwargs):
                super().__init__(fail=True)

        monkeypatch.setattr("codegraph_rag.cli.LocalLLM", _FailingLLM)
        result = runner.invoke(app, ["ask"], input="one\ntwo\nexit\n")

        assert result.exit_code == 0
        assert result.stdout.count("Query failed") == 2

    def test_single_question_failure_exits_1(self, ingested, monkeypatch):
        class _FailingLLM(FakeLLM):
            def __init__(self, **kwargs):
                super().__init__(fail=True)

        monkeypatch.setattr("codegraph_rag.cli.LocalLLM", _FailingLLM)
        result = runner.invoke(app, ["ask", "-q", "anything"])
        assert result.exit_code == 1

    def test_unknown_project(self, temp_project_manager):
        result = runner.invoke(app, ["ask", "--project", "Nope", "-q", "hi"])
        assert result.exit_code == 1
        assert "has not been ingested" in result.stdout
