"""HTTP fetch with SSRF protection, plus HTML → text helpers.

Security requirements:
- SSRF guard: ipaddress module blocks private/loopback/link-local ranges before
  any connection is established.
- Allowed URL schemes: https:// and http:// only.
- Content-Type whitelist per call (HTML, plain text, JSON, PDF).
- Max response body: 20 MB.
- Timeout: 30 seconds (connect + read).
- Max redirects: 3.
"""

from __future__ import annotations

import ipaddress
import socket
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from http.client import HTTPResponse

import html2text
from bs4 import BeautifulSoup

_USER_AGENT = "ragkb/0.1"
_MAX_BYTES = 20 * 1024 * 1024  # 20 MB
_TIMEOUT = 30  # seconds
_MAX_REDIRECTS = 3
_ALLOWED_SCHEMES = {"https", "http"}

HTML_TYPES = frozenset({"text/html", "application/xhtml+xml"})
TEXT_TYPES = frozenset({"text/plain"})
JSON_TYPES = frozenset({"application/json"})
PDF_TYPES = frozenset({"application/pdf", "application/octet-stream"})

# html2text converter
_h2t = html2text.HTML2Text()
_h2t.ignore_links = True
_h2t.ignore_images = True
_h2t.body_width = 0


class SsrfError(ValueError):
    """Raised when a URL resolves to a private or reserved address."""


@dataclass
class FetchedResponse:
    url: str
    body: bytes
    content_type: str

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")


def fetch(
    url: str,
    allowed_types: frozenset[str] = HTML_TYPES | TEXT_TYPES,
    headers: dict[str, str] | None = None,
) -> FetchedResponse:
    """Validate and fetch *url*.

    Raises:
        ValueError: Bad scheme, disallowed Content-Type, or oversized body.
        SsrfError: The host resolves to a private or reserved address.
        RuntimeError: Network failure or too many redirects.
    """
    validate_scheme(url)
    check_ssrf(url)

    request = urllib.request.Request(
        url, headers={"User-Agent": _USER_AGENT, **(headers or {})}
    )
    opener = urllib.request.build_opener(_LimitedRedirectHandler(_MAX_REDIRECTS))

    try:
        response: HTTPResponse = opener.open(request, timeout=_TIMEOUT)
    except urllib.error.URLError as exc:
        raise RuntimeError(f"Failed to fetch URL '{url}': {exc}") from exc

    raw_ct = response.headers.get("Content-Type", "text/html")
    ct = raw_ct.split(";")[0].strip().lower()
    if ct not in allowed_types:
        raise ValueError(
            f"Unsupported Content-Type '{ct}' for URL '{url}'. "
            f"Accepted: {', '.join(sorted(allowed_types))}"
        )

    body = response.read(_MAX_BYTES + 1)
    if len(body) > _MAX_BYTES:
        raise ValueError(
            f"Response body exceeds {_MAX_BYTES // (1024 * 1024)} MB limit for URL '{url}'."
        )
    return FetchedResponse(url=url, body=body, content_type=ct)


def validate_scheme(url: str) -> None:
    parsed = urllib.parse.urlparse(url)
    if parsed.scheme not in _ALLOWED_SCHEMES:
        raise ValueError(
            f"Unsupported URL scheme '{parsed.scheme}'. Only https:// and http:// are allowed."
        )


def check_ssrf(url: str) -> None:
    """Resolve the hostname and block private/reserved IP ranges.

    Raises SsrfError if any resolved address is private, loopback,
    link-local, or otherwise reserved.
    """
    hostname = urllib.parse.urlparse(url).hostname
    if not hostname:
        raise ValueError(f"URL has no hostname: {url}")

    try:
        addrinfos = socket.getaddrinfo(hostname, None)
    except socket.gaierror as exc:
        raise ValueError(f"DNS resolution failed for '{hostname}': {exc}") from exc

    for addrinfo in addrinfos:
        try:
            ip = ipaddress.ip_address(addrinfo[4][0])
        except ValueError:
            continue
        if (
            ip.is_private
            or ip.is_loopback
            or ip.is_link_local
            or ip.is_reserved
            or ip.is_multicast
            or ip.is_unspecified
        ):
            raise SsrfError(
                f"URL resolves to private address ({ip}). "
                "Access to internal network addresses is not allowed."
            )


# ------------------------------------------------------------------
# HTML helpers
# ------------------------------------------------------------------


def html_to_text(html: str) -> str:
    """Strip non-content tags, then convert to plain text with html2text."""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup.find_all(["script", "style", "nav", "footer", "head", "aside"]):
        tag.decompose()
    return _h2t.handle(str(soup)).strip()


def html_title(html: str) -> str:
    soup = BeautifulSoup(html, "html.parser")
    if soup.title and soup.title.string:
        return soup.title.string.strip()
    return ""


def meta_property(html: str, prop: str) -> str | None:
    """Return the content of ``<meta property="{prop}">`` (OpenGraph), if present."""
    soup = BeautifulSoup(html, "html.parser")
    tag = soup.find("meta", attrs={"property": prop})
    if tag is None:
        return None
    content = tag.get("content")
    return str(content).strip() if content else None


class _LimitedRedirectHandler(urllib.request.HTTPRedirectHandler):
    """Raise an error after more than *max_redirects* redirects."""

    def __init__(self, max_redirects: int) -> None:
        self._max_redirects = max_redirects
        self._count = 0

    def redirect_request(self, req, fp, code, msg, headers, newurl):
        self._count += 1
        if self._count > self._max_redirects:
            raise RuntimeError(
                f"Too many redirects (>{self._max_redirects}) for URL '{req.full_url}'."
            )
        return super().redirect_request(req, fp, code, msg, headers, newurl)
