"""Timestamped tar.gz snapshots of every target and the vector index.

Archive layout::

    targets/<name>/<database file>   consistent copy via the SQLite backup API
    targets/<name>/storage/...       the target's archive tree
    vectors/<vector store file>      consistent copy of the vector index

Databases are copied with ``sqlite3.Connection.backup`` into a temporary
directory first, so pages still sitting in the WAL are included. The ingestion
lease is held for the whole run; no ingestion can write mid-snapshot.
"""

from __future__ import annotations

import sqlite3
import tarfile
import tempfile
from collections.abc import Callable
from contextlib import closing
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

import structlog

from ragkb.config import RagKbConfig
from ragkb.errors import BackupError
from ragkb.ingest.lock import IngestionLease

logger = structlog.get_logger(logger_name=__name__)


@dataclass
class BackupResult:
    archive: Path
    included: list[str] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["archive"] = str(self.archive)
        data["success"] = True
        return data


def backup_name(now: datetime) -> str:
    return f"ragkb-backup-{now:%Y%m%d%H%M%S}.tar.gz"


def snapshot_database(src: Path, dest: Path) -> None:
    """Write a consistent copy of the SQLite database *src* to *dest*."""
    with closing(sqlite3.connect(src)) as source, closing(sqlite3.connect(dest)) as target:
        source.backup(target)


def create_backup(
    cfg: RagKbConfig,
    dest: Path | None = None,
    now: Callable[[], datetime] = datetime.now,
) -> BackupResult:
    """Archive every target's database and archive tree plus the vector index.

    Items that do not exist yet are reported in ``missing`` and skipped.

    Raises:
        IngestionLockedError: An ingestion is running.
        BackupError: *dest* lies inside a target archive tree, or writing failed.
    """
    directory = Path(dest or cfg.backup.directory).expanduser().resolve()
    for target in cfg.targets.values():
        root = target.archive.expanduser().resolve()
        if directory == root or root in directory.parents:
            raise BackupError(
                f"Backup directory {directory} is inside the archive tree of target "
                f"'{target.name}' ({root}). Choose a directory outside it."
            )

    archive = directory / backup_name(now())
    result = BackupResult(archive=archive)
    lease = IngestionLease(cfg.ingest.lock_file, stale_after=cfg.ingest.lock_stale_minutes * 60)
    with lease:
        try:
            directory.mkdir(parents=True, exist_ok=True)
            with tempfile.TemporaryDirectory() as tmp, tarfile.open(archive, "w:gz") as tar:
                scratch = Path(tmp)
                for target in cfg.targets.values():
                    prefix = f"targets/{target.name}"
                    _add_database(
                        tar,
                        target.database,
                        scratch / f"{target.name}.db",
                        f"{prefix}/{target.database.name}",
                        result,
                    )
                    if target.archive.is_dir():
                        tar.add(target.archive, arcname=f"{prefix}/storage")
                        result.included.append(str(target.archive))
                    else:
                        _note_missing(result, target.archive)
                vectors = cfg.vector_store.path
                _add_database(
                    tar, vectors, scratch / "vectors.db", f"vectors/{vectors.name}", result
                )
        except (OSError, sqlite3.Error, tarfile.TarError) as exc:
            if archive.exists():
                archive.unlink()
            logger.error("backup_failed", archive=str(archive), error=str(exc))
            raise BackupError(f"Could not write backup {archive}: {exc}") from exc

    logger.info(
        "backup_written", archive=str(archive), items=len(result.included), missing=len(result.missing)
    )
    return result


def _add_database(
    tar: tarfile.TarFile, db: Path, scratch: Path, arcname: str, result: BackupResult
) -> None:
    if not db.is_file():
        _note_missing(result, db)
        return
    snapshot_database(db, scratch)
    tar.add(scratch, arcname=arcname)
    result.included.append(str(db))


def _note_missing(result: BackupResult, path: Path) -> None:
    logger.warning("backup_item_missing", path=str(path))
    result.missing.append(str(path))
