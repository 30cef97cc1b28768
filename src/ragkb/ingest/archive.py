"""Archive of original source artifacts under a target's archive root.

Layout: ``{root}/{CapitalizedType}/{YYYY-MM}/{sourceId}-{sanitizedTitle}{ext}``.
"""

from __future__ import annotations

import re
import shutil
from datetime import datetime
from pathlib import Path

from ragkb.db.models import FILE_BACKED_TYPES

_UNSAFE_CHARS = re.compile(r"[^a-z0-9_\-.]", re.IGNORECASE)
_MAX_NAME_LEN = 100


def sanitize_filename(name: str) -> str:
    """Replace every character outside ``[A-Za-z0-9_-.]`` and cap at 100 chars."""
    return _UNSAFE_CHARS.sub("_", name)[:_MAX_NAME_LEN]


def archive_path(
    root: Path,
    source_type: str,
    source_id: int,
    title: str,
    extension: str,
    now: datetime | None = None,
) -> Path:
    """Return the archive location for a stored source (no I/O)."""
    now = now or datetime.now()
    type_dir = source_type[:1].upper() + source_type[1:]
    filename = f"{source_id}-{sanitize_filename(title)}{extension}"
    return root / type_dir / now.strftime("%Y-%m") / filename


def archive_source(
    root: Path,
    source_type: str,
    source_id: int,
    title: str,
    extension: str,
    original: str | bytes,
    local_path: str | None = None,
    now: datetime | None = None,
) -> Path:
    """Write the original artifact for a stored source and return its path.

    File-backed types (pdf, text) are copied from *local_path* when that file
    still exists; everything else writes *original*.

    Raises:
        OSError: On any filesystem failure.
    """
    dest = archive_path(root, source_type, source_id, title, extension, now)
    dest.parent.mkdir(parents=True, exist_ok=True)

    if source_type in FILE_BACKED_TYPES and local_path and Path(local_path).is_file():
        shutil.copyfile(local_path, dest)
    elif isinstance(original, bytes):
        dest.write_bytes(original)
    else:
        dest.write_text(original, encoding="utf-8")
    return dest
