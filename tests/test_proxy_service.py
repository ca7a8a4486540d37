"""Tests for request classification, cache policy and error envelopes."""

import asyncio
import json

import httpx
import pytest
import respx

from jma_proxy.cache import CacheStore
from jma_proxy.errors import CacheIOError, MalformedRequestError
from jma_proxy.fetcher import Fetcher
from jma_proxy.proxy import ProxyService
from jma_proxy.types import FetchResult, RequestKind

from conftest import DETAIL_BODY, DETAIL_URL, FEED_URL


def test_classify_without_url_is_main_feed(service):
    for url in (None, ""):
        request = service.classify(url)
        assert request.kind is RequestKind.MAIN_FEED
        assert request.url == FEED_URL
        assert request.cache_key is None
        assert request.cacheable is False


def test_classify_detail_document(service):
    request = service.classify(DETAIL_URL)

    assert request.kind is RequestKind.DETAIL_DOCUMENT
    assert request.label == "20240101_detailed_report.xml"
    assert request.cache_key == "20240101_detailed_report.xml"
    assert request.cacheable is True


@pytest.mark.parametrize("url", ["not a url", "/xml/report.xml", "ftp://example.test/a_long_report_name.xml", "https://"])
def test_classify_rejects_malformed_urls(service, url):
    with pytest.raises(MalformedRequestError):
        service.classify(url)


@respx.mock
def test_miss_then_hit_serves_identical_bytes(service, store):
    route = respx.get(DETAIL_URL).mock(return_value=httpx.Response(200, content=DETAIL_BODY))

    first = asyncio.run(service.handle(DETAIL_URL))

    assert first.status_code == 200
    assert first.headers["X-Cache"] == "MISS"
    assert first.body == DETAIL_BODY
    assert first.media_type == "application/xml; charset=utf-8"
    assert (store.directory / "20240101_detailed_report.xml").read_bytes() == DETAIL_BODY

    second = asyncio.run(service.handle(DETAIL_URL))

    assert second.status_code == 200
    assert second.headers["X-Cache"] == "HIT"
    assert second.body == first.body
    assert route.call_count == 1


@respx.mock
def test_feed_like_filename_is_never_cached(service, store):
    url = "https://example.test/eqvol.xml"
    route = respx.get(url).mock(return_value=httpx.Response(200, content=b"<feed/>"))
    (store.directory / "eqvol.xml").write_bytes(b"stale")

    for _ in range(2):
        response = asyncio.run(service.handle(url))
        assert response.status_code == 200
        assert response.headers["X-Cache"] == "NOCACHE"
        assert response.body == b"<feed/>"

    assert route.call_count == 2
    assert (store.directory / "eqvol.xml").read_bytes() == b"stale"


@respx.mock
def test_short_filename_is_never_cached(service, store):
    url = "https://example.test/xml/short.xml"
    respx.get(url).mock(return_value=httpx.Response(200, content=b"<short/>"))

    response = asyncio.run(service.handle(url))

    assert response.headers["X-Cache"] == "NOCACHE"
    assert list(store.directory.iterdir()) == []


@respx.mock
def test_main_feed_is_always_fetched_fresh(service, store):
    route = respx.get(FEED_URL).mock(return_value=httpx.Response(200, content=b"<feed/>"))

    for _ in range(3):
        response = asyncio.run(service.handle(None))
        assert response.status_code == 200
        assert response.body == b"<feed/>"
        assert "X-Cache" not in response.headers

    assert route.call_count == 3
    assert list(store.directory.iterdir()) == []


@respx.mock
def test_main_feed_failure_returns_json_error(service):
    respx.get(FEED_URL).mock(side_effect=httpx.ConnectError("Connection refused"))

    response = asyncio.run(service.handle(None))

    assert response.status_code == 500
    assert response.media_type == "application/json"
    payload = json.loads(response.body)
    assert payload["error"] == "Failed to fetch JMA data"
    assert "Connection refused" in payload["message"]
    assert payload["timestamp"].endswith("Z")
    assert "filename" not in payload
    assert "url" not in payload


@respx.mock
def test_detail_failure_echoes_url_and_filename(service, store):
    respx.get(DETAIL_URL).mock(side_effect=httpx.ConnectError("Connection refused"))

    response = asyncio.run(service.handle(DETAIL_URL))

    assert response.status_code == 500
    payload = json.loads(response.body)
    assert payload["error"] == "Failed to fetch detail XML"
    assert payload["url"] == DETAIL_URL
    assert payload["filename"] == "20240101_detailed_report.xml"
    assert "Connection refused" in payload["message"]
    assert not store.exists("20240101_detailed_report.xml")


@respx.mock
def test_malformed_url_makes_no_network_call(service):
    response = asyncio.run(service.handle("not a url"))

    assert response.status_code == 500
    payload = json.loads(response.body)
    assert payload["error"] == "Invalid detail XML request"
    assert "not a url" in payload["message"]
    assert respx.calls.call_count == 0


@respx.mock
def test_cache_write_failure_still_serves_fetched_bytes(service, monkeypatch):
    respx.get(DETAIL_URL).mock(return_value=httpx.Response(200, content=DETAIL_BODY))

    def broken_write(self, key, data):
        raise CacheIOError("disk full")

    monkeypatch.setattr(CacheStore, "write", broken_write)

    response = asyncio.run(service.handle(DETAIL_URL))

    assert response.status_code == 200
    assert response.headers["X-Cache"] == "MISS"
    assert response.body == DETAIL_BODY


@respx.mock
def test_sha256_key_strategy_names_file_by_digest(cfg, store):
    cfg.cache.key_strategy = "sha256"
    service = ProxyService(cfg, store, Fetcher(cfg.fetch))
    respx.get(DETAIL_URL).mock(return_value=httpx.Response(200, content=DETAIL_BODY))

    first = asyncio.run(service.handle(DETAIL_URL))
    second = asyncio.run(service.handle(DETAIL_URL))

    files = [p.name for p in store.directory.iterdir()]
    assert len(files) == 1
    assert files[0] != "20240101_detailed_report.xml"
    assert files[0].endswith(".xml")
    assert first.headers["X-Cache"] == "MISS"
    assert second.headers["X-Cache"] == "HIT"


class CountingFetcher:
    def __init__(self, body: bytes):
        self.body = body
        self.calls = 0

    async def fetch(self, url: str) -> FetchResult:
        self.calls += 1
        await asyncio.sleep(0.01)
        return FetchResult(url=url, status_code=200, content=self.body)


async def _concurrent(service: ProxyService, url: str, n: int):
    return await asyncio.gather(*(service.handle(url) for _ in range(n)))


def test_concurrent_misses_fetch_independently_by_default(cfg, store):
    fetcher = CountingFetcher(DETAIL_BODY)
    service = ProxyService(cfg, store, fetcher)

    responses = asyncio.run(_concurrent(service, DETAIL_URL, 3))

    assert fetcher.calls == 3
    assert all(r.headers["X-Cache"] == "MISS" for r in responses)
    assert store.read("20240101_detailed_report.xml") == DETAIL_BODY


def test_coalescing_shares_one_fetch(cfg, store):
    cfg.cache.coalesce_inflight = True
    fetcher = CountingFetcher(DETAIL_BODY)
    service = ProxyService(cfg, store, fetcher)

    responses = asyncio.run(_concurrent(service, DETAIL_URL, 3))

    assert fetcher.calls == 1
    assert [r.body for r in responses] == [DETAIL_BODY] * 3
    assert all(r.headers["X-Cache"] == "MISS" for r in responses)

    later = asyncio.run(service.handle(DETAIL_URL))
    assert later.headers["X-Cache"] == "HIT"
    assert fetcher.calls == 1

@respx.mock
def test_overlong_filename_is_served_without_caching(service, store):
    url = "https://example.test/xml/" + "a" * 300 + ".xml"
    respx.get(url).mock(return_value=httpx.Response(200, content=DETAIL_BODY))

    assert store.exists("a" * 300 + ".xml") is False

    response = asyncio.run(service.handle(url))

    assert response.status_code == 200
    assert response.headers["X-Cache"] == "MISS"
    assert response.body == DETAIL_BODY
    assert list(store.directory.iterdir()) == []


@respx.mock
def test_timeout_uses_detail_error_title(service):
    respx.get(DETAIL_URL).mock(side_effect=httpx.ReadTimeout("read timed out"))

    response = asyncio.run(service.handle(DETAIL_URL))

    assert response.status_code == 500
    payload = json.loads(response.body)
    assert payload["error"] == "Failed to fetch detail XML"
    assert payload["url"] == DETAIL_URL
