"""Tests for the ragkb ingest command."""

from __future__ import annotations

import json
import os
from pathlib import Path

import pytest
from typer.testing import CliRunner

from ragkb.cli.main import app
from ragkb.db.connection import Database
from ragkb.db.repository import Repository
from ragkb.errors import ConfigurationError
from ragkb.rag.llm_client import ProviderChain

runner = CliRunner(env={"COLUMNS": "200"})


@pytest.fixture
def doc(tmp_path: Path) -> Path:
    path = tmp_path / "notes.md"
    path.write_text("SQLite supports WAL mode. Readers never block writers.", encoding="utf-8")
    return path


def _count_sources(db_path: Path) -> int:
    conn = Database(db_path).connect()
    try:
        return Repository(conn).count_sources()
    finally:
        conn.close()


# ------------------------------------------------------------------
# Success paths
# ------------------------------------------------------------------


def test_ingest_json_success(use_config, doc):
    cfg = use_config()
    result = runner.invoke(app, ["ingest", str(doc), "--tags", "db, sqlite", "--json"])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.stdout)
    assert payload["success"] is True
    assert payload["tags"] == ["db", "sqlite"]
    assert payload["targets"][0]["status"] == "stored"
    assert payload["targets"][0]["succeeded"] is True
    assert _count_sources(cfg.target("t1").database) == 1


def test_ingest_human_output(use_config, doc):
    use_config()
    result = runner.invoke(app, ["ingest", str(doc)])
    assert result.exit_code == 0, result.output
    assert "stored" in result.output
    assert "notes.md" in result.output


def test_ingest_twice_reports_duplicate(use_config, doc):
    use_config()
    runner.invoke(app, ["ingest", str(doc), "--json"])
    result = runner.invoke(app, ["ingest", str(doc), "--json"])
    assert result.exit_code == 0
    assert json.loads(result.stdout)["targets"][0]["status"] == "duplicate"


def test_ingest_missing_archive_warns_but_succeeds(use_config, doc):
    use_config(("t1", "t2"), missing_archive=("t2",))
    result = runner.invoke(app, ["ingest", str(doc), "--targets", "t1,t2"])
    assert result.exit_code == 0, result.output
    assert "skipped" in result.output
    assert "mkdir -p" in result.output


# ------------------------------------------------------------------
# Failure paths
# ------------------------------------------------------------------


def test_ingest_unsupported_source_exits_1(use_config, tmp_path):
    use_config()
    result = runner.invoke(app, ["ingest", str(tmp_path / "nope.xyz"), "--json"])
    assert result.exit_code == 1
    payload = json.loads(result.stdout)
    assert payload["success"] is False
    assert "Unsupported" in payload["error"]


def test_ingest_unknown_target_exits_1(use_config, doc):
    use_config()
    result = runner.invoke(app, ["ingest", str(doc), "--targets", "ghost", "--json"])
    assert result.exit_code == 1
    assert "Unknown target 'ghost'" in json.loads(result.stdout)["error"]


def test_ingest_locked_exits_1(use_config, doc):
    cfg = use_config()
    cfg.ingest.lock_file.write_text(str(os.getpid()), encoding="utf-8")
    result = runner.invoke(app, ["ingest", str(doc)])
    assert result.exit_code == 1
    assert "already running" in result.output
    assert not cfg.target("t1").database.exists()


def test_ingest_without_embedding_credentials(use_config, doc, fake_embedder, monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    use_config()
    fake_embedder.chain = ProviderChain(["openai/text-embedding-3-small"])
    result = runner.invoke(app, ["ingest", str(doc), "--json"])
    assert result.exit_code == 1
    assert "OPENAI_API_KEY" in json.loads(result.stdout)["error"]


def test_ingest_config_error_exits_1(monkeypatch, doc):
    def broken():
        raise ConfigurationError("default_target 'x' is not a configured target.")

    monkeypatch.setattr("ragkb.cli.common.load", broken)
    result = runner.invoke(app, ["ingest", str(doc)])
    assert result.exit_code == 1
    assert "default_target" in result.output
