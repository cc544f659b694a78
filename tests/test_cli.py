"""Tests for the faqsearch command line."""

import pytest
from typer.testing import CliRunner

from src import cli
from src.faqsearch.components import build_components
from src.faqsearch.run_store import RunStore
from tests.conftest import requires_faiss

from .factories import FakeEmbeddingProvider

runner = CliRunner()


@pytest.fixture
def cli_env(monkeypatch, settings, test_db):
    """CLI wired to the sample database with a fake provider."""
    for name in ["OPENAI_API_KEY", "EMBEDDING_PROVIDER", "EMBEDDING_MODEL", "EMBEDDING_DIMENSION"]:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("FAQ_RUNS_DIR", settings.runs_dir)
    monkeypatch.setattr(cli.signal, "signal", lambda *args: None)

    def build(cli_settings, load_index=True):
        return build_components(cli_settings, provider=FakeEmbeddingProvider(), load_index=load_index)

    monkeypatch.setattr(cli, "build_components", build)
    return ["--db", settings.db_path], ["--index-dir", settings.index_dir]


def _invoke(*args):
    return runner.invoke(cli.app, [str(a) for a in args])


class TestIndexCommands:

    @requires_faiss
    def test_index_run(self, cli_env, test_db, settings):
        db_args, index_args = cli_env
        result = _invoke("index-run", "--batch-size", 10, *db_args, *index_args)

        assert result.exit_code == 0, result.output
        assert "Indexing complete" in result.output
        assert test_db.get_embedding_stats()["embedded_entries"] == 10

        runs = RunStore(settings.runs_dir).list_runs()
        assert len(runs) == 1
        assert runs[0]["status"] == "completed"

    def test_index_run_dry_run(self, cli_env, test_db):
        db_args, index_args = cli_env
        result = _invoke("index-run", "--dry-run", "--skip-vector-index", *db_args, *index_args)

        assert result.exit_code == 0, result.output
        assert "Dry run" in result.output
        assert test_db.get_embedding_stats()["embedded_entries"] == 0

    def test_invalid_batch_size(self, cli_env):
        db_args, index_args = cli_env
        result = _invoke("index-run", "--batch-size", 0, *db_args, *index_args)
        assert result.exit_code == 1

    def test_index_status(self, cli_env):
        db_args, _ = cli_env
        result = _invoke("index-status", *db_args)
        assert result.exit_code == 0
        assert "Embedding Coverage" in result.output
        assert "No indexer runs yet" in result.output

    def test_index_status_unknown_run(self, cli_env):
        db_args, _ = cli_env
        result = _invoke("index-status", "--run-id", "nope", *db_args)
        assert result.exit_code == 1

    def test_daemon_unknown_action(self, cli_env):
        db_args, index_args = cli_env
        result = _invoke("index-daemon", "restart", *db_args, *index_args)
        assert result.exit_code == 1
        assert "Unknown action" in result.output

    def test_daemon_status(self, cli_env):
        db_args, index_args = cli_env
        result = _invoke("index-daemon", "status", *db_args, *index_args)
        assert result.exit_code == 0
        assert "Stopped" in result.output


class TestSearchCommands:

    def test_keyword_search(self, cli_env, test_db):
        db_args, index_args = cli_env
        word = test_db.get_entry(1).question.split()[-1].strip("?")

        result = _invoke("search", word, "--keyword-only", *db_args, *index_args)

        assert result.exit_code == 0, result.output
        assert "Method: keyword" in result.output

    def test_search_without_index_falls_back(self, cli_env, test_db):
        db_args, index_args = cli_env
        word = test_db.get_entry(1).question.split()[-1].strip("?")

        result = _invoke("search", word, *db_args, *index_args)

        assert result.exit_code == 0, result.output
        assert "keyword results shown" in result.output

    def test_blank_query(self, cli_env):
        db_args, index_args = cli_env
        result = _invoke("search", "   ", *db_args, *index_args)
        assert result.exit_code == 1

    def test_click(self, cli_env, test_db):
        db_args, _ = cli_env
        result = _invoke("click", 7, 1, *db_args)
        assert result.exit_code == 0
        assert test_db.get_entry(7).clicks == 1

    def test_click_unknown_entry(self, cli_env):
        db_args, _ = cli_env
        result = _invoke("click", 999, 1, *db_args)
        assert result.exit_code == 1
        assert "not found" in result.output

    def test_analytics(self, cli_env):
        db_args, _ = cli_env
        result = _invoke("analytics", "--days", 30, *db_args)
        assert result.exit_code == 0
        assert "last 30 days" in result.output

    def test_suggested(self, cli_env):
        db_args, index_args = cli_env
        result = _invoke("suggested", "--limit", 3, *db_args, *index_args)
        assert result.exit_code == 0
        assert "Suggested" in result.output

    def test_cache_clear(self, cli_env):
        db_args, _ = cli_env
        result = _invoke("cache-clear", "--all", *db_args)
        assert result.exit_code == 0
        assert "Removed 0 cached embeddings" in result.output
