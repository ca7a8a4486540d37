"""
Core data types for the JMA proxy.

This module defines the values passed between the cache, fetcher and router:
- CacheStatus: How a response body was obtained
- FetchRequest: A classified inbound proxy call
- FetchResult: Outcome of one upstream GET
- CacheEntry: One file in the cache directory listing
- ProxyResponse: Transport-independent response envelope
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

XML_CONTENT_TYPE = "application/xml; charset=utf-8"
JSON_CONTENT_TYPE = "application/json"


class CacheStatus(str, Enum):
    HIT = "HIT"
    MISS = "MISS"
    NOCACHE = "NOCACHE"


class RequestKind(str, Enum):
    MAIN_FEED = "main_feed"
    DETAIL_DOCUMENT = "detail_document"


@dataclass
class FetchRequest:
    """A classified proxy call.

    Attributes:
        url: The upstream URL to fetch
        kind: Main feed or detail document
        label: Last path segment of the URL, used in logs and error bodies
        cache_key: Filename inside the cache directory, None for the main feed
        cacheable: Whether a successful fetch is written to the cache
    """
    url: str
    kind: RequestKind
    label: str | None = None
    cache_key: str | None = None
    cacheable: bool = False


@dataclass
class FetchResult:
    """Result of an upstream fetch.

    Either content will be populated (success) or error will be populated
    (failure), but never both. status_code is None for network-level failures
    and is otherwise recorded without being interpreted.

    Attributes:
        url: The URL that was fetched
        status_code: Upstream HTTP status code, or None if no response arrived
        content: The full response body, or None on error
        content_type: Upstream Content-Type header, if any
        error: Error message if the fetch failed, None on success
        error_kind: "NetworkError" or "TimeoutError" on failure
    """
    url: str
    status_code: int | None
    content: bytes | None
    content_type: str | None = None
    error: str | None = None
    error_kind: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.content is not None


@dataclass
class CacheEntry:
    filename: str
    size: int
    created: datetime
    modified: datetime

    def to_dict(self) -> dict[str, object]:
        return {
            "filename": self.filename,
            "size": self.size,
            "created": iso_timestamp(self.created),
            "modified": iso_timestamp(self.modified),
        }


@dataclass
class ProxyResponse:
    status_code: int
    body: bytes
    media_type: str
    headers: dict[str, str] = field(default_factory=dict)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def iso_timestamp(value: datetime | None = None) -> str:
    """Format a datetime as UTC ISO-8601 with milliseconds and a Z suffix."""
    value = value or utc_now()
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")
