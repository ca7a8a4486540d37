from pathlib import Path

import pytest

from jma_proxy.cache import CacheStore
from jma_proxy.config import AppConfig
from jma_proxy.fetcher import Fetcher
from jma_proxy.proxy import ProxyService

FEED_URL = "https://example.test/developer/xml/feed/eqvol.xml"
DETAIL_URL = "https://example.test/xml/20240101_detailed_report.xml"
DETAIL_BODY = "<Report><Title>震源・震度に関する情報</Title></Report>".encode("utf-8")


@pytest.fixture
def cfg(tmp_path: Path) -> AppConfig:
    cfg = AppConfig()
    cfg.feed.url = FEED_URL
    cfg.cache.directory = str(tmp_path / "cache")
    cfg.page.template_path = str(tmp_path / "main.html")
    cfg.logging.console = False
    return cfg


@pytest.fixture
def store(cfg: AppConfig) -> CacheStore:
    store = CacheStore.from_config(cfg.cache)
    store.ensure_directory()
    return store


@pytest.fixture
def service(cfg: AppConfig, store: CacheStore) -> ProxyService:
    return ProxyService(cfg, store, Fetcher(cfg.fetch))
