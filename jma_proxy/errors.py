"""Error kinds surfaced by the proxy and their JSON error bodies."""

from __future__ import annotations

from typing import Any

from .types import iso_timestamp


class ProxyError(Exception):
    """Base class for errors the proxy reports to clients."""

    title = "Proxy error"

    def to_payload(self, title: str | None = None, **fields: Any) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": title or self.title}
        payload.update(fields)
        payload["message"] = str(self)
        payload["timestamp"] = iso_timestamp()
        return payload


class NetworkError(ProxyError):
    """Connection refused, reset or DNS failure while fetching."""


class FetchTimeoutError(NetworkError):
    """Upstream did not answer within the configured timeout."""


class CacheIOError(ProxyError):
    """Cache directory could not be read or written."""

    title = "Failed to read cache directory"


class MalformedRequestError(ProxyError):
    """The target URL parameter could not be parsed."""

    title = "Invalid detail XML request"
