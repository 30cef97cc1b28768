"""Tests for the ragkb backup command."""

from __future__ import annotations

import json
import os
import tarfile
from pathlib import Path

from typer.testing import CliRunner

from ragkb.cli.main import app

runner = CliRunner(env={"COLUMNS": "200"})


def _ingest(tmp_path: Path) -> None:
    doc = tmp_path / "keep.txt"
    doc.write_text("This document goes into the backup. It has two sentences.", encoding="utf-8")
    result = runner.invoke(app, ["ingest", str(doc), "--json"])
    assert json.loads(result.stdout)["success"] is True


def test_backup_json(use_config, tmp_path):
    use_config()
    _ingest(tmp_path)

    result = runner.invoke(app, ["backup", "--dest", str(tmp_path / "out"), "--json"])

    assert result.exit_code == 0, result.output
    data = json.loads(result.stdout)
    assert data["success"] is True
    archive = Path(data["archive"])
    assert archive.name.startswith("ragkb-backup-") and archive.name.endswith(".tar.gz")
    with tarfile.open(archive, "r:gz") as tar:
        names = tar.getnames()
    assert "targets/t1/knowledge_base.db" in names
    assert "vectors/vectors.db" in names


def test_backup_human_output(use_config, tmp_path):
    use_config()
    _ingest(tmp_path)
    result = runner.invoke(app, ["backup", "--dest", str(tmp_path / "out")])
    assert result.exit_code == 0, result.output
    assert "Backup written" in result.output


def test_backup_reports_missing_items(use_config, tmp_path):
    use_config(targets=("t1", "t2"), missing_archive=("t2",))
    result = runner.invoke(app, ["backup", "--dest", str(tmp_path / "out"), "--json"])
    assert result.exit_code == 0, result.output
    data = json.loads(result.stdout)
    assert any(item.endswith("knowledge_base.db") for item in data["missing"])


def test_backup_locked_exit_1(use_config, tmp_path):
    cfg = use_config()
    cfg.ingest.lock_file.write_text(str(os.getpid()), encoding="utf-8")
    result = runner.invoke(app, ["backup", "--dest", str(tmp_path / "out"), "--json"])
    assert result.exit_code == 1
    data = json.loads(result.stdout)
    assert data["success"] is False
    assert "already running" in data["error"]


def test_backup_inside_archive_exit_1(use_config):
    cfg = use_config()
    result = runner.invoke(app, ["backup", "--dest", str(cfg.target("t1").archive / "b")])
    assert result.exit_code == 1
    assert "Backup failed" in result.output
