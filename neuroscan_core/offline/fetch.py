# =============================================================================
# neuroscan_core/offline/fetch.py
# Request Model, Cache Keys and Synthesized Responses
# =============================================================================
"""
Request/response helpers shared by the cache tiers and the interceptor.

- FetchRequest: an outbound request plus its destination (document, image, ...)
- canonical_cache_key: the (method, url) -> key function used for cache hits
- response_stored_at: freshness timestamp taken from the response Date header
- offline_api_response / unavailable_response: typed offline fallbacks
"""

from __future__ import annotations
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import format_datetime, parsedate_to_datetime
from pathlib import PurePosixPath
from typing import Dict, Optional

import httpx


EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

DEFAULT_PORTS = {"http": 80, "https": 443}

IMAGE_SUFFIXES = {
    ".png", ".jpg", ".jpeg", ".gif", ".webp", ".svg", ".ico", ".bmp", ".avif",
}

# Body of the structured signal returned for unreachable backend requests
OFFLINE_API_BODY = {"error": "Offline", "offline": True}

# Marks responses whose type is "error" (network-level failures surfaced as
# responses rather than exceptions); such responses are never cached
RESPONSE_TYPE_EXTENSION = "response_type"


@dataclass
class FetchRequest:
    """
    An outbound request seen by the interceptor.

    Attributes:
        url: Absolute URL, or a path resolved against the worker origin
        method: HTTP method
        destination: Request destination ("document", "image", "script", ...);
            inferred from the URL and Accept header when empty
        headers: Request headers
        content: Request body for mutating requests
    """
    url: str
    method: str = "GET"
    destination: str = ""
    headers: Dict[str, str] = field(default_factory=dict)
    content: Optional[bytes] = None

    def __post_init__(self):
        self.method = self.method.upper()

    def resolve(self, origin: str) -> FetchRequest:
        """Return a copy whose URL is absolute, resolved against origin."""
        url = httpx.URL(self.url)
        if not url.is_relative_url:
            return self
        absolute = httpx.URL(origin).join(self.url)
        return FetchRequest(
            url=str(absolute),
            method=self.method,
            destination=self.destination,
            headers=dict(self.headers),
            content=self.content,
        )

    @property
    def cache_key(self) -> str:
        return canonical_cache_key(self.method, self.url)

    @property
    def host(self) -> str:
        return httpx.URL(self.url).host

    @property
    def resolved_destination(self) -> str:
        """Explicit destination, or one inferred from the URL and Accept header."""
        if self.destination:
            return self.destination

        accept = ""
        for name, value in self.headers.items():
            if name.lower() == "accept":
                accept = value.lower()
                break

        suffix = PurePosixPath(httpx.URL(self.url).path).suffix.lower()
        if suffix in IMAGE_SUFFIXES or accept.startswith("image/"):
            return "image"
        if "text/html" in accept:
            return "document"
        return ""

    def build(self, client: httpx.AsyncClient) -> httpx.Request:
        """Build the httpx request to send on the given client."""
        return client.build_request(
            self.method,
            self.url,
            headers=self.headers,
            content=self.content,
        )


def canonical_cache_key(method: str, url: str) -> str:
    """
    Canonicalize a request identity into a cache key.

    Rules:
    - method is upper-cased
    - scheme and host are lower-cased, default ports are dropped
    - the fragment is dropped
    - path (including any trailing slash) and query string are kept verbatim,
      so '/a' and '/a/' or '?x=1&y=2' and '?y=2&x=1' are different keys
    - an empty path becomes '/'

    Examples:
        >>> canonical_cache_key("get", "HTTPS://Example.com:443/app/?b=2#top")
        'GET https://example.com/app/?b=2'
    """
    parsed = httpx.URL(url)
    scheme = parsed.scheme.lower()
    host = parsed.host.lower()
    port = parsed.port
    netloc = host if port is None or DEFAULT_PORTS.get(scheme) == port else f"{host}:{port}"

    path = parsed.raw_path.decode("ascii")
    if "?" in path:
        path, query = path.split("?", 1)
        query = f"?{query}"
    else:
        query = ""
    if not path:
        path = "/"

    return f"{method.upper()} {scheme}://{netloc}{path}{query}"


def response_stored_at(response: httpx.Response) -> datetime:
    """
    Timestamp used for freshness checks: the response Date header.

    Missing or unparseable headers yield the epoch, which makes the entry
    stale on its first lookup.
    """
    value = response.headers.get("date")
    if not value:
        return EPOCH
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return EPOCH
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def http_date(moment: datetime) -> str:
    """Format a datetime as an HTTP Date header value."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return format_datetime(moment.astimezone(timezone.utc), usegmt=True)


def is_error_type(response: httpx.Response) -> bool:
    return response.extensions.get(RESPONSE_TYPE_EXTENSION) == "error"


def offline_api_response(request: Optional[httpx.Request] = None) -> httpx.Response:
    """503 JSON response signalling that the backend is unreachable."""
    return httpx.Response(
        503,
        headers={"Content-Type": "application/json"},
        content=json.dumps(OFFLINE_API_BODY, separators=(",", ":")).encode("utf-8"),
        request=request,
    )


def unavailable_response(
    message: str = "Content not available offline",
    request: Optional[httpx.Request] = None,
) -> httpx.Response:
    """503 plain-text response for content that has no offline copy."""
    return httpx.Response(
        503,
        headers={"Content-Type": "text/plain"},
        content=message.encode("utf-8"),
        extensions={"reason_phrase": b"Service Unavailable"},
        request=request,
    )
