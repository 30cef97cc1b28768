"""PDF text extraction via pypdf."""

from __future__ import annotations

import io
from pathlib import Path

import pypdf


def extract_pdf(data: bytes | Path) -> tuple[str, str | None]:
    """Extract all page text from a PDF file or in-memory document.

    Pages that yield no text (scanned images, etc.) are skipped.

    Returns:
        ``(text, title)`` where *title* is the document's metadata title, if any.
    """
    stream = io.BytesIO(data) if isinstance(data, bytes) else data
    reader = pypdf.PdfReader(stream)
    parts: list[str] = []
    for page in reader.pages:
        stripped = (page.extract_text() or "").strip()
        if stripped:
            parts.append(stripped)

    title = None
    if reader.metadata is not None and reader.metadata.title:
        title = str(reader.metadata.title).strip() or None
    return "\n\n".join(parts), title
