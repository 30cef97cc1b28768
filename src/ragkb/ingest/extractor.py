"""Source extraction: locator (URL or local path) → ExtractedContent.

Supported inputs:
- downloader JSON files (``{url, reelId?, author?, description?, transcription?, ocrText?}``)
- article URLs (HTML → text)
- PDFs, local or remote
- YouTube videos (transcript API, requires TRANSCRIPT_API_KEY)
- tweets (publish.twitter.com oEmbed)
- Instagram reels (OpenGraph tags)
- local .txt / .md files

Every failure surfaces as ExtractionError.
"""

from __future__ import annotations

import hashlib
import json
import os
import re
import urllib.parse
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import structlog
from bs4 import BeautifulSoup
from pypdf.errors import PyPdfError

from ragkb.errors import ExtractionError
from ragkb.ingest import web
from ragkb.ingest.pdf import extract_pdf

logger = structlog.get_logger(logger_name=__name__)

_TRACKING_PARAMS = frozenset({"utm_source", "utm_medium", "utm_campaign", "ref", "gclid"})
_TEXT_EXTENSIONS = frozenset({".txt", ".md"})
_TRANSCRIPT_API = "https://api.transcriptapi.com/v1/transcript"
_OEMBED_API = "https://publish.twitter.com/oembed"
_YOUTUBE_ID_RE = re.compile(r"(?:v=|/)([A-Za-z0-9_-]{11})")


@dataclass
class ExtractedContent:
    """Result of extracting one source.

    Attributes:
        title: Display title.
        content: Extracted plain text (what gets chunked and hashed).
        original_content: Raw payload to archive (HTML, JSON, PDF bytes, ...).
        source_type: One of ragkb.db.models.SOURCE_TYPES.
        file_extension: Archive file extension, including the dot.
        source: Locator as given (URL or path).
        normalized_source: Dedup key (see normalize_source).
        content_hash: SHA-256 hex digest of *content*.
    """

    title: str
    content: str
    original_content: str | bytes
    source_type: str
    file_extension: str
    source: str
    normalized_source: str
    content_hash: str


# ------------------------------------------------------------------
# Locator helpers
# ------------------------------------------------------------------


def _parse_url(source: str) -> urllib.parse.ParseResult | None:
    parsed = urllib.parse.urlparse(source)
    if parsed.scheme in ("http", "https") and parsed.netloc:
        return parsed
    return None


def _host_matches(host: str, *domains: str) -> bool:
    return any(host == d or host.endswith("." + d) for d in domains)


def _is_youtube(host: str) -> bool:
    return _host_matches(host, "youtube.com", "youtu.be")


def detect_source_type(source: str) -> str:
    """Classify a locator as article, video, pdf, text, tweet, reel or other."""
    parsed = _parse_url(source)
    if parsed is not None:
        host = (parsed.hostname or "").lower()
        if _is_youtube(host):
            return "video"
        if _host_matches(host, "twitter.com", "x.com"):
            return "tweet"
        if _host_matches(host, "instagram.com"):
            return "reel"
        if parsed.path.lower().endswith(".pdf"):
            return "pdf"
        return "article"

    path = Path(source)
    if path.is_file():
        ext = path.suffix.lower()
        if ext == ".pdf":
            return "pdf"
        if ext in _TEXT_EXTENSIONS:
            return "text"
    return "other"


def normalize_source(source: str, source_type: str) -> str:
    """Return the dedup key for a locator.

    URLs lose their fragment and tracking parameters (utm_source, utm_medium,
    utm_campaign, ref, gclid); YouTube URLs keep only ``v``. Anything that is
    not an http(s) URL is treated as a path and resolved to an absolute path.
    """
    parsed = _parse_url(source)
    if parsed is None:
        return str(Path(source).expanduser().resolve())

    scheme = parsed.scheme.lower()
    netloc = parsed.netloc.lower()
    path = parsed.path or "/"

    if source_type == "video" and _is_youtube((parsed.hostname or "").lower()):
        video_id = urllib.parse.parse_qs(parsed.query).get("v")
        if video_id:
            return f"https://www.youtube.com/watch?v={video_id[0]}"
        return f"{scheme}://{netloc}{path}"

    kept = [
        (k, v)
        for k, v in urllib.parse.parse_qsl(parsed.query, keep_blank_values=True)
        if k not in _TRACKING_PARAMS
    ]
    query = urllib.parse.urlencode(kept)
    return urllib.parse.urlunparse((scheme, netloc, path, parsed.params, query, ""))


def hash_content(content: str) -> str:
    """SHA-256 hex digest of *content* (UTF-8)."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def _result(
    *,
    title: str,
    content: str,
    original: str | bytes,
    source_type: str,
    extension: str,
    source: str,
) -> ExtractedContent:
    return ExtractedContent(
        title=title,
        content=content,
        original_content=original,
        source_type=source_type,
        file_extension=extension,
        source=source,
        normalized_source=normalize_source(source, source_type),
        content_hash=hash_content(content),
    )


# ------------------------------------------------------------------
# Downloader JSON
# ------------------------------------------------------------------


def _has_text(value: Any) -> bool:
    return value is not None and bool(str(value).strip())


def is_downloader_json(data: Any) -> bool:
    """True for a dict with a string ``url`` and at least one non-empty text field."""
    if not isinstance(data, dict) or not isinstance(data.get("url"), str):
        return False
    return any(_has_text(data.get(k)) for k in ("description", "transcription", "ocrText"))


def extract_downloader_json(path: Path, raw: str, data: dict[str, Any]) -> ExtractedContent:
    reel_id = data.get("reelId")
    if data.get("author"):
        title = f"{data['author']} - {reel_id or 'video'}"
    else:
        title = reel_id or path.stem

    sections = []
    for heading, key in (
        ("Caption / Description", "description"),
        ("Transcription", "transcription"),
        ("OCR Text", "ocrText"),
    ):
        if _has_text(data.get(key)):
            sections.append(f"# {heading}\n\n{str(data[key]).strip()}")
    content = "\n\n".join(sections)

    url = data["url"]
    source_type = "video" if ("youtube.com" in url or "youtu.be" in url) else "reel"
    return _result(
        title=str(title),
        content=content,
        original=raw,
        source_type=source_type,
        extension=".json",
        source=url,
    )


# ------------------------------------------------------------------
# Per-type extractors
# ------------------------------------------------------------------


def extract_article(url: str) -> ExtractedContent:
    page = web.fetch(url, allowed_types=web.HTML_TYPES | web.TEXT_TYPES)
    html = page.text
    if page.content_type in web.TEXT_TYPES:
        text, title = html.strip(), ""
    else:
        text, title = web.html_to_text(html), web.html_title(html)
    if not text:
        raise ExtractionError(f"Could not extract meaningful content from article: {url}")
    return _result(
        title=title or "Untitled Article",
        content=text,
        original=html,
        source_type="article",
        extension=".html",
        source=url,
    )


def extract_pdf_source(source: str) -> ExtractedContent:
    if _parse_url(source) is not None:
        payload: str | bytes = web.fetch(source, allowed_types=web.PDF_TYPES).body
        filename = Path(urllib.parse.urlparse(source).path).name or "document.pdf"
        text, meta_title = extract_pdf(payload)
    else:
        path = Path(source)
        filename = path.name
        text, meta_title = extract_pdf(path)
        payload = text
    if not text.strip():
        raise ExtractionError(f"Could not extract text from PDF: {source}")
    return _result(
        title=meta_title or filename,
        content=text,
        original=payload,
        source_type="pdf",
        extension=".pdf",
        source=source,
    )


def extract_youtube(url: str) -> ExtractedContent:
    api_key = os.getenv("TRANSCRIPT_API_KEY")
    if not api_key:
        raise ExtractionError(
            "TRANSCRIPT_API_KEY is not set. Export it to ingest YouTube videos."
        )
    if not _YOUTUBE_ID_RE.search(url):
        raise ExtractionError(f"Could not extract video ID from YouTube URL: {url}")

    api_url = f"{_TRANSCRIPT_API}?url={urllib.parse.quote(url, safe='')}"
    response = web.fetch(api_url, allowed_types=web.JSON_TYPES, headers={"X-API-KEY": api_key})
    data = json.loads(response.text)
    segments = data.get("transcript") if isinstance(data, dict) else None
    if not segments:
        raise ExtractionError(f"Could not retrieve transcript for YouTube video: {url}")

    if not isinstance(segments, list) or not all(isinstance(item, dict) for item in segments):
        raise ExtractionError(f"Malformed transcript payload for YouTube video: {url}")

    transcript = " ".join(str(item.get("text", "")) for item in segments).strip()
    return _result(
        title=data.get("title") or "YouTube Video Transcript",
        content=transcript,
        original=response.text,
        source_type="video",
        extension=".json",
        source=url,
    )


def extract_tweet(url: str) -> ExtractedContent:
    oembed_url = f"{_OEMBED_API}?url={urllib.parse.quote(url, safe='')}&omit_script=true"
    data = json.loads(web.fetch(oembed_url, allowed_types=web.JSON_TYPES).text)
    html = data.get("html") if isinstance(data, dict) else None
    if not html:
        raise ExtractionError(f"Could not retrieve oEmbed data for tweet: {url}")

    soup = BeautifulSoup(html, "html.parser")
    paragraph = soup.find("p")
    text = (paragraph or soup).get_text(" ", strip=True)
    if not text:
        raise ExtractionError(f"Could not extract text from tweet: {url}")
    return _result(
        title=f"Tweet by {data.get('author_name') or 'Unknown'}",
        content=text,
        original=html,
        source_type="tweet",
        extension=".html",
        source=url,
    )


def extract_reel(url: str) -> ExtractedContent:
    html = web.fetch(url, allowed_types=web.HTML_TYPES).text
    title = web.meta_property(html, "og:title") or f"Instagram Reel: {url}"
    content = web.meta_property(html, "og:description") or title
    return _result(
        title=title,
        content=content.strip(),
        original=html,
        source_type="reel",
        extension=".html",
        source=url,
    )


def extract_text_file(path: Path) -> ExtractedContent:
    content = path.read_text(encoding="utf-8")
    if not content.strip():
        raise ExtractionError(f"Text file is empty: {path}")
    return _result(
        title=path.name,
        content=content,
        original=content,
        source_type="text",
        extension=path.suffix,
        source=str(path),
    )


# ------------------------------------------------------------------
# Entry point
# ------------------------------------------------------------------


def _try_downloader_json(source: str) -> ExtractedContent | None:
    path = Path(source)
    if path.suffix.lower() != ".json" or not path.is_file():
        return None
    raw = path.read_text(encoding="utf-8")
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        return None
    if not is_downloader_json(data):
        return None
    logger.info("source_type_detected", source=source, source_type="downloader-json")
    return extract_downloader_json(path, raw, data)


def extract_source(source: str) -> ExtractedContent:
    """Extract *source* (URL or local path).

    Raises:
        ExtractionError: Unsupported locator, fetch/parse failure, or no text.
    """
    try:
        downloaded = _try_downloader_json(source)
        if downloaded is not None:
            return downloaded

        source_type = detect_source_type(source)
        logger.info("source_type_detected", source=source, source_type=source_type)

        if source_type == "article":
            return extract_article(source)
        if source_type == "pdf":
            return extract_pdf_source(source)
        if source_type == "video":
            return extract_youtube(source)
        if source_type == "tweet":
            return extract_tweet(source)
        if source_type == "reel":
            return extract_reel(source)
        if source_type == "text":
            return extract_text_file(Path(source))
    except ExtractionError:
        raise
    except (OSError, ValueError, RuntimeError, KeyError, TypeError, PyPdfError) as exc:
        raise ExtractionError(f"Failed to extract '{source}': {exc}") from exc

    raise ExtractionError(
        f"Unsupported source '{source}'. Use an http(s) URL, a .pdf/.txt/.md file, "
        "or a downloader JSON file."
    )
