"""
Tests for the CLI.
==================

Commands run through typer's CliRunner against a YAML config on the
memory backend; the manager factory is patched to use the stub embedder.
"""

import json
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from tests.conftest import StubEmbedder

runner = CliRunner()

CONFIG = """
indexes:
  - name: clubs
    source:
      kind: memory
      display_columns: [name]
    embedders:
      sbert: 3
store:
  backend: memory
logging:
  rich_console: false
"""


@pytest.fixture
def cli_config(tmp_path):
    path = tmp_path / "settings.yaml"
    path.write_text(CONFIG, encoding="utf-8")
    return path


@pytest.fixture
def cli_env(cli_config):
    """Patch the manager factory; yields (invoke, source, store)."""
    from embedding_index.indexing.sources import InMemoryRecordSource
    from embedding_index.indexing.store_memory import InMemoryVectorStore
    from embedding_index.service.manager import IndexManager

    source = InMemoryRecordSource()
    store = InMemoryVectorStore()
    embedder = StubEmbedder(vectors={"Porto": [0.0, 1.0, 0.0]})

    def build(settings, kinds):
        return IndexManager(settings, store, source, {embedder.kind: embedder})

    def invoke(*args):
        return runner.invoke(
            app,
            ["--config", str(cli_config), "--log-level", "WARNING", *args],
        )

    from embedding_index.cli.main import app

    with patch("embedding_index.cli.main._build_manager", side_effect=build):
        yield invoke, source, store


# ─────────────────────────────────────────────────────────────────────────────
# Command Tests
# ─────────────────────────────────────────────────────────────────────────────


class TestCli:
    """Tests for embindex commands."""

    def test_help(self):
        from embedding_index.cli.main import app

        result = runner.invoke(app, ["--help"])

        assert result.exit_code == 0
        assert "seed" in result.output
        assert "search" in result.output

    def test_seed_reports_partial_failure(self, cli_env):
        from embedding_index.shared.schemas import EmbeddableRecord

        invoke, source, _ = cli_env
        source.add(
            "clubs",
            [
                EmbeddableRecord(id=1, text="Porto", attributes={"name": "FC Porto"}),
                EmbeddableRecord(id=2, text="", attributes={"name": "Unknown"}),
            ],
        )

        result = invoke("seed", "clubs")

        assert result.exit_code == 0
        assert "Attempted: 2" in result.output
        assert "Succeeded: 1" in result.output
        assert "empty source text" in result.output

    def test_search_no_matches(self, cli_env):
        invoke, _, _ = cli_env

        result = invoke("search", "clubs", "anything")

        assert result.exit_code == 0
        assert "No matches found" in result.output

    def test_add_then_search_json(self, cli_env):
        invoke, _, _ = cli_env

        added = invoke("add", "clubs", "--id", "9", "--text", "Porto", "--attr", "name=FC Porto")
        result = invoke("search", "clubs", "Porto", "-k", "1", "--json")

        assert added.exit_code == 0
        assert result.exit_code == 0
        payload = json.loads(result.output[result.output.index("{"):])
        assert payload["no_matches"] is False
        assert payload["results"][0]["record_id"] == "9"
        assert payload["results"][0]["attributes"] == {"name": "FC Porto"}

    def test_search_k_zero_is_rejected(self, cli_env):
        invoke, _, _ = cli_env

        result = invoke("search", "clubs", "anything", "-k", "0")

        assert result.exit_code == 2
        assert "Invalid request" in result.output

    def test_unknown_index(self, cli_env):
        invoke, _, _ = cli_env

        result = invoke("seed", "stadiums")

        assert result.exit_code == 2
        assert "Unknown index" in result.output

    def test_add_bad_attribute(self, cli_env):
        invoke, _, _ = cli_env

        result = invoke("add", "clubs", "--id", "1", "--text", "x", "--attr", "novalue")

        assert result.exit_code == 2

    def test_reindex_missing_record(self, cli_env):
        invoke, _, _ = cli_env

        result = invoke("reindex", "clubs", "77")

        assert result.exit_code == 2
        assert "not found" in result.output

    def test_init_db(self, cli_env):
        invoke, _, _ = cli_env

        result = invoke("init-db")

        assert result.exit_code == 0
        assert "Storage ready for 'clubs'" in result.output

    def test_info(self, cli_env):
        invoke, _, _ = cli_env

        result = invoke("info", "--stats")

        assert result.exit_code == 0
        assert "clubs" in result.output
        assert "GEMINI_API_KEY" in result.output

    def test_infrastructure_error_exits_1(self, cli_env):
        from unittest.mock import AsyncMock

        from embedding_index.shared.errors import StoreConnectionError

        invoke, _, store = cli_env
        store.nearest = AsyncMock(side_effect=StoreConnectionError("server closed the connection"))

        result = invoke("search", "clubs", "anything")

        assert result.exit_code == 1
        assert "server closed the connection" in result.output
