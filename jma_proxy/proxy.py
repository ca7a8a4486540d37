"""
Caching proxy logic.

ProxyService turns one /api/jma call into a ProxyResponse:

1. No target URL: fetch the main feed fresh, never touching the cache
2. Target URL: derive the cache key, serve from cache on a hit, otherwise
   fetch, write back when cacheable, and report HIT, MISS or NOCACHE
3. Unparseable target URL: error response without any network call

Concurrent misses for the same key each fetch and write independently (last
write wins) unless CacheConfig.coalesce_inflight is enabled, in which case
they share one fetch and one write.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Protocol
from urllib.parse import urlsplit

from .cache import CacheStore, cache_key_for, derive_label, should_cache
from .config import AppConfig
from .errors import (
    CacheIOError,
    FetchTimeoutError,
    MalformedRequestError,
    NetworkError,
)
from .logging_utils import log_event
from .types import (
    JSON_CONTENT_TYPE,
    XML_CONTENT_TYPE,
    CacheStatus,
    FetchRequest,
    FetchResult,
    ProxyResponse,
    RequestKind,
)

logger = logging.getLogger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, PUT, DELETE, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
    "Access-Control-Max-Age": "3600",
}

FEED_ERROR = "Failed to fetch JMA data"
DETAIL_ERROR = "Failed to fetch detail XML"


class SupportsFetch(Protocol):
    async def fetch(self, url: str) -> FetchResult: ...


def json_response(status_code: int, payload: dict[str, Any]) -> ProxyResponse:
    return ProxyResponse(
        status_code=status_code,
        body=json.dumps(payload).encode("utf-8"),
        media_type=JSON_CONTENT_TYPE,
    )


def xml_response(body: bytes, cache_status: CacheStatus | None = None) -> ProxyResponse:
    headers = {}
    if cache_status is not None:
        headers["X-Cache"] = cache_status.value
    return ProxyResponse(status_code=200, body=body, media_type=XML_CONTENT_TYPE, headers=headers)


def fetch_error(result: FetchResult) -> NetworkError:
    if result.error_kind == "TimeoutError":
        return FetchTimeoutError(result.error or "timed out")
    return NetworkError(result.error or "unknown network error")


class ProxyService:
    """Classifies proxy calls and serves them from cache or upstream.

    Attributes:
        cfg: Application configuration
        store: Cache store for detail documents
        fetcher: Anything with an async fetch(url) -> FetchResult
    """

    def __init__(self, cfg: AppConfig, store: CacheStore, fetcher: SupportsFetch):
        self.cfg = cfg
        self.store = store
        self.fetcher = fetcher
        self._inflight: dict[str, asyncio.Task] = {}

    def classify(self, url: str | None) -> FetchRequest:
        """Build a FetchRequest for an optional target URL.

        Raises:
            MalformedRequestError: the target is not an absolute http(s) URL
        """
        if not url:
            return FetchRequest(url=self.cfg.feed.url, kind=RequestKind.MAIN_FEED)

        try:
            parts = urlsplit(url)
        except ValueError as exc:
            raise MalformedRequestError(f"Invalid URL: {url} ({exc})") from exc
        if parts.scheme not in ("http", "https") or not parts.netloc:
            raise MalformedRequestError(f"Invalid URL: {url}")

        label = derive_label(url, self.cfg.cache.fallback_name)
        return FetchRequest(
            url=url,
            kind=RequestKind.DETAIL_DOCUMENT,
            label=label,
            cache_key=cache_key_for(url, label, self.cfg.cache.key_strategy),
            cacheable=should_cache(label, self.cfg.feed),
        )

    async def handle(self, url: str | None) -> ProxyResponse:
        try:
            request = self.classify(url)
        except MalformedRequestError as exc:
            log_event(
                logger,
                "Error handling detail XML request",
                event="malformed_request",
                target=url,
                error=str(exc),
                level=logging.ERROR,
            )
            return json_response(500, exc.to_payload())

        if request.kind is RequestKind.MAIN_FEED:
            return await self.handle_main_feed(request)
        return await self.handle_detail(request)

    async def handle_main_feed(self, request: FetchRequest) -> ProxyResponse:
        log_event(logger, "Fetching JMA data", event="feed_fetch_start", target=request.url)
        result = await self.fetcher.fetch(request.url)
        if not result.ok:
            exc = fetch_error(result)
            log_event(
                logger,
                "Error fetching JMA data",
                event="feed_fetch_error",
                target=request.url,
                error=str(exc),
                level=logging.ERROR,
            )
            return json_response(500, exc.to_payload(title=FEED_ERROR))

        log_event(
            logger,
            f"JMA data received ({len(result.content)} bytes)",
            event="feed_fetch_done",
            target=request.url,
            bytes=len(result.content),
            upstream_status=result.status_code,
        )
        return xml_response(result.content)

    async def handle_detail(self, request: FetchRequest) -> ProxyResponse:
        log_event(logger, f"Detail XML requested: {request.label}", event="detail_requested", label=request.label)

        if request.cacheable and self.store.exists(request.cache_key):
            log_event(logger, f"Serving from cache: {request.label}", event="cache_hit", label=request.label)
            return xml_response(self.store.read(request.cache_key), CacheStatus.HIT)

        log_event(logger, f"Downloading new detail XML: {request.label}", event="cache_miss", label=request.label)
        if request.cacheable and self.cfg.cache.coalesce_inflight:
            result = await self._shared_fetch_and_store(request)
        else:
            result = await self._fetch_and_store(request)

        if not result.ok:
            exc = fetch_error(result)
            log_event(
                logger,
                f"Error fetching detail XML {request.label}",
                event="detail_fetch_error",
                label=request.label,
                target=request.url,
                error=str(exc),
                level=logging.ERROR,
            )
            return json_response(
                500,
                exc.to_payload(title=DETAIL_ERROR, url=request.url, filename=request.label),
            )

        status = CacheStatus.MISS if request.cacheable else CacheStatus.NOCACHE
        return xml_response(result.content, status)

    async def _fetch_and_store(self, request: FetchRequest) -> FetchResult:
        result = await self.fetcher.fetch(request.url)
        if not result.ok:
            return result

        size = len(result.content)
        if not request.cacheable:
            log_event(
                logger,
                f"Served (not cached): {request.label} ({size} bytes)",
                event="served_nocache",
                label=request.label,
                bytes=size,
            )
            return result

        try:
            self.store.write(request.cache_key, result.content)
        except CacheIOError as exc:
            log_event(
                logger,
                f"Failed to cache {request.label}: {exc}",
                event="cache_write_error",
                label=request.label,
                error=str(exc),
                level=logging.WARNING,
            )
        else:
            log_event(
                logger,
                f"Cached detail XML: {request.label} ({size} bytes)",
                event="cache_write",
                label=request.label,
                cache_key=request.cache_key,
                bytes=size,
            )
        return result

    async def _shared_fetch_and_store(self, request: FetchRequest) -> FetchResult:
        task = self._inflight.get(request.cache_key)
        if task is None:
            task = asyncio.ensure_future(self._fetch_and_store(request))
            self._inflight[request.cache_key] = task
            task.add_done_callback(lambda t: self._forget(request.cache_key, t))
        else:
            log_event(
                logger,
                f"Joining in-flight download: {request.label}",
                event="inflight_join",
                label=request.label,
            )
        return await asyncio.shield(task)

    def _forget(self, key: str, task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
