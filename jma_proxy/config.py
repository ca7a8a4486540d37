"""
Configuration management using YAML files and dataclasses.

This module defines all configuration dataclasses and provides loading
from YAML files with defaults. Configuration sections:
- ServerConfig: Listen address and public URL
- FeedConfig: Main feed URL and cacheability heuristic
- CacheConfig: Cache directory and key strategy
- FetchConfig: Outbound HTTP settings
- PageConfig: Dashboard template settings
- LoggingConfig: Logging behavior
- AppConfig: Root configuration container

The resulting AppConfig is built once at process start and passed to every
component; nothing reads configuration from module globals.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import yaml

JMA_FEED_URL = "https://www.data.jma.go.jp/developer/xml/feed/eqvol.xml"
CORS_PROXY_PLACEHOLDER = "const CORS_PROXY = 'https://api.allorigins.win/raw?url=';"


@dataclass
class ServerConfig:
    """Configuration for the local HTTP server.

    Attributes:
        host: Interface to bind
        port: TCP port to listen on
        public_url: Base URL browsers use to reach this server; defaults to http://host:port
    """

    host: str = "127.0.0.1"
    port: int = 11311
    public_url: str | None = None

    @property
    def base_url(self) -> str:
        if self.public_url:
            return self.public_url.rstrip("/")
        return f"http://{self.host}:{self.port}"


@dataclass
class FeedConfig:
    """Configuration for the upstream feed.

    Attributes:
        url: The main feed URL fetched when no target URL is given
        main_feed_filename: Filenames containing this are never cached
        min_cacheable_length: Filenames must be longer than this to be cached
    """

    url: str = JMA_FEED_URL
    main_feed_filename: str = "eqvol.xml"
    min_cacheable_length: int = 15


@dataclass
class CacheConfig:
    """Configuration for the detail document cache.

    Attributes:
        directory: Directory holding one file per cached document
        fallback_name: Filename used when a URL has no last path segment
        key_strategy: "basename" to name files after the URL's last segment,
            "sha256" to name them after a digest of the full URL
        coalesce_inflight: Share one upstream fetch between concurrent misses
    """

    directory: str = "./cache"
    fallback_name: str = "unknown.xml"
    key_strategy: str = "basename"
    coalesce_inflight: bool = False


@dataclass
class FetchConfig:
    """Configuration for outbound HTTP fetching.

    Attributes:
        timeout_seconds: Request timeout; None waits forever
        follow_redirects: Whether to follow upstream redirects
        trust_env: Whether to respect system proxy settings
        user_agent: HTTP User-Agent header string
    """

    timeout_seconds: float | None = None
    follow_redirects: bool = False
    trust_env: bool = True
    user_agent: str = "jma-proxy/0.1.0"


@dataclass
class PageConfig:
    """Configuration for the dashboard page.

    Attributes:
        template_path: HTML file served at / and /index.html
        placeholder: Line in the template replaced with this server's endpoint
    """

    template_path: str = "main.html"
    placeholder: str = CORS_PROXY_PLACEHOLDER


@dataclass
class LoggingConfig:
    """Configuration for logging behavior.

    Attributes:
        level: Logging level ("DEBUG", "INFO", "WARNING", "ERROR")
        console: Whether to log to console
        file: Whether to log to file
        format: Log file format ("jsonl" or "plain")
        filename: Name of the log file
        directory: Directory for the log file
    """

    level: str = "INFO"
    console: bool = True
    file: bool = False
    format: str = "jsonl"
    filename: str = "jma_proxy.jsonl"
    directory: str = "./logs"


@dataclass
class AppConfig:
    """Root configuration container aggregating all config sections."""

    server: ServerConfig = field(default_factory=ServerConfig)
    feed: FeedConfig = field(default_factory=FeedConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    fetch: FetchConfig = field(default_factory=FetchConfig)
    page: PageConfig = field(default_factory=PageConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def load_config(path: str | None) -> AppConfig:
    """Load configuration from a YAML file with defaults."""
    if not path:
        return AppConfig()

    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    return _merge_config(AppConfig(), raw)


def _merge_config(base: AppConfig, raw: dict[str, Any]) -> AppConfig:
    """Merge raw YAML config into base AppConfig."""
    data = _asdict(base)
    for key, value in raw.items():
        if key not in data:
            continue
        if isinstance(value, dict) and isinstance(data[key], dict):
            data[key].update(value)
        else:
            data[key] = value
    return _fromdict(data)


def _asdict(cfg: AppConfig) -> dict[str, Any]:
    """Convert AppConfig to nested dictionary."""
    return {
        "server": {
            "host": cfg.server.host,
            "port": cfg.server.port,
            "public_url": cfg.server.public_url,
        },
        "feed": {
            "url": cfg.feed.url,
            "main_feed_filename": cfg.feed.main_feed_filename,
            "min_cacheable_length": cfg.feed.min_cacheable_length,
        },
        "cache": {
            "directory": cfg.cache.directory,
            "fallback_name": cfg.cache.fallback_name,
            "key_strategy": cfg.cache.key_strategy,
            "coalesce_inflight": cfg.cache.coalesce_inflight,
        },
        "fetch": {
            "timeout_seconds": cfg.fetch.timeout_seconds,
            "follow_redirects": cfg.fetch.follow_redirects,
            "trust_env": cfg.fetch.trust_env,
            "user_agent": cfg.fetch.user_agent,
        },
        "page": {
            "template_path": cfg.page.template_path,
            "placeholder": cfg.page.placeholder,
        },
        "logging": {
            "level": cfg.logging.level,
            "console": cfg.logging.console,
            "file": cfg.logging.file,
            "format": cfg.logging.format,
            "filename": cfg.logging.filename,
            "directory": cfg.logging.directory,
        },
    }


def _fromdict(data: dict[str, Any]) -> AppConfig:
    """Reconstruct AppConfig from nested dictionary."""
    return AppConfig(
        server=ServerConfig(**data["server"]),
        feed=FeedConfig(**data["feed"]),
        cache=CacheConfig(**data["cache"]),
        fetch=FetchConfig(**data["fetch"]),
        page=PageConfig(**data["page"]),
        logging=LoggingConfig(**data["logging"]),
    )
