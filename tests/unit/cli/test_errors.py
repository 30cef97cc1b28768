"""Tests for ragkb rich error messages."""

from __future__ import annotations

from pathlib import Path

import pytest

from ragkb.cli.errors import (
    err_configuration,
    err_ingestion_failed,
    err_ingestion_locked,
    err_query_failed,
    err_source_not_found,
    warn_missing_archive,
)


def _has_action(msg: str) -> bool:
    """Every error must contain an actionable instruction."""
    lower = msg.lower()
    return any(
        kw in lower
        for kw in ["run:", "check ", "wait ", "re-run", "create it:", "remove", "retry"]
    )


@pytest.mark.parametrize(
    "msg",
    [
        err_configuration("No embedding capability available"),
        err_ingestion_locked("Ingestion already running (pid 1)", Path("/tmp/ingest.lock")),
        err_ingestion_failed("https://example.com", "Unsupported source"),
        err_query_failed("Could not embed query"),
        err_source_not_found("https://example.com", "t1"),
        warn_missing_archive("t2", "/data/t2/storage"),
    ],
)
def test_every_message_has_action(msg):
    assert _has_action(msg)


def test_locked_mentions_lock_file():
    msg = err_ingestion_locked("Ingestion already running", Path("/tmp/ingest.lock"))
    assert "rm /tmp/ingest.lock" in msg


def test_ingestion_failed_includes_cause():
    msg = err_ingestion_failed("doc.md", "No chunks could be embedded")
    assert "doc.md" in msg
    assert "No chunks could be embedded" in msg


def test_missing_archive_suggests_mkdir():
    assert "mkdir -p /data/t2/storage" in warn_missing_archive("t2", "/data/t2/storage")


def test_source_not_found_names_target():
    msg = err_source_not_found("x", "work")
    assert "'work'" in msg
    assert "ragkb status" in msg
