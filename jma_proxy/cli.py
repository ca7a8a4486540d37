"""
Command-line interface for the JMA proxy.

Uses Typer to provide a CLI with options for the most common configuration
settings. Supports loading .env files before reading configuration.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

import typer
import uvicorn
from rich.console import Console
from rich.table import Table

from .app import create_app
from .cache import CacheStore
from .config import AppConfig, load_config
from .logging_utils import setup_logging
from .types import iso_timestamp

try:
    from dotenv import load_dotenv
except Exception:  # noqa: BLE001
    load_dotenv = None

app = typer.Typer(add_completion=False)
console = Console()
logger = logging.getLogger("jma_proxy")


def _load(config: Path | None) -> AppConfig:
    if load_dotenv is not None:
        load_dotenv()
    if config is None and os.getenv("JMA_PROXY_CONFIG"):
        config = Path(os.environ["JMA_PROXY_CONFIG"])
    return load_config(str(config) if config else None)


def _fail_fast(exc: BaseException) -> None:
    console.print(f"[bold red]Uncaught exception:[/] {exc!r}")
    logging.shutdown()
    os._exit(1)


def print_banner(cfg: AppConfig) -> None:
    base = cfg.server.base_url
    console.rule("[bold]JMA Activity Monitor Server Started")
    console.print(f"Server running at: {base}")
    console.print(f"Health check: {base}/health")
    console.print(f"API endpoint: {base}/api/jma")
    console.print(f"Cache info: {base}/cache")
    console.print(f"Cache directory: {cfg.cache.directory}")
    console.print(f"Feed URL: {cfg.feed.url}")
    console.print("")
    console.print("Press Ctrl+C to stop the server")
    console.rule()


@app.command()
def serve(
    config: Path | None = typer.Option(None, "--config", "-c", exists=True, readable=True),
    host: str | None = typer.Option(None, "--host", help="Interface to bind."),
    port: int | None = typer.Option(None, "--port", "-p", help="Port to listen on."),
    public_url: str | None = typer.Option(
        None, "--public-url", help="Base URL browsers use to reach this server."
    ),
    cache_dir: Path | None = typer.Option(None, "--cache-dir", help="Cache directory."),
    feed_url: str | None = typer.Option(None, "--feed-url", help="Main feed URL."),
    page: Path | None = typer.Option(None, "--page", help="Dashboard HTML template."),
    log_level: str | None = typer.Option(None, "--log-level", help="Logging level."),
    log_file: bool | None = typer.Option(
        None, "--log-file/--no-log-file", help="Enable or disable file logging."
    ),
    coalesce: bool | None = typer.Option(
        None,
        "--coalesce/--no-coalesce",
        help="Share one upstream fetch between concurrent misses for the same document.",
    ),
):
    """Run the caching proxy server.

    Serves the dashboard page, proxies the JMA feed and caches detail
    documents on disk until interrupted with Ctrl+C.
    """
    cfg = _load(config)

    if host:
        cfg.server.host = host
    if port is not None:
        cfg.server.port = port
    if public_url:
        cfg.server.public_url = public_url
    if cache_dir is not None:
        cfg.cache.directory = str(cache_dir)
    if feed_url:
        cfg.feed.url = feed_url
    if page is not None:
        cfg.page.template_path = str(page)
    if log_level:
        cfg.logging.level = log_level
    if log_file is not None:
        cfg.logging.file = log_file
    if coalesce is not None:
        cfg.cache.coalesce_inflight = coalesce

    setup_logging(cfg.logging)
    web_app = create_app(cfg, on_fatal=_fail_fast)
    print_banner(cfg)

    uvicorn.run(
        web_app,
        host=cfg.server.host,
        port=cfg.server.port,
        log_level=cfg.logging.level.lower(),
    )
    console.print("Server stopped gracefully")


@app.command()
def cache(
    config: Path | None = typer.Option(None, "--config", "-c", exists=True, readable=True),
    cache_dir: Path | None = typer.Option(None, "--cache-dir", help="Cache directory."),
):
    """List cached detail documents."""
    cfg = _load(config)
    if cache_dir is not None:
        cfg.cache.directory = str(cache_dir)

    store = CacheStore.from_config(cfg.cache)
    if not store.directory.is_dir():
        console.print(f"No cache directory at {store.directory}")
        raise typer.Exit(code=1)

    entries = store.list_entries()
    table = Table(title=f"{store.directory} ({len(entries)} files)")
    table.add_column("Filename")
    table.add_column("Size", justify="right")
    table.add_column("Modified")
    for entry in entries:
        table.add_row(entry.filename, str(entry.size), iso_timestamp(entry.modified))
    console.print(table)


if __name__ == "__main__":
    app()
