"""FastAPI application exposing the proxy, dashboard, cache listing and health check."""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import Any, Callable, Optional

from fastapi import FastAPI, Query, Request
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from .cache import CacheStore
from .config import AppConfig
from .errors import CacheIOError
from .fetcher import Fetcher
from .logging_utils import log_event
from .page import PageNotFound, load_page
from .proxy import CORS_HEADERS, ProxyService, SupportsFetch
from .types import iso_timestamp

logger = logging.getLogger(__name__)

FatalHandler = Callable[[BaseException], None]
LoopHandler = Callable[[asyncio.AbstractEventLoop, dict[str, Any]], None]


def loop_exception_handler(fatal: FatalHandler, previous: Optional[LoopHandler] = None) -> LoopHandler:
    """Event loop exception handler treating unobserved exceptions as fatal.

    Contexts without an exception (e.g. "Task was destroyed but it is pending!")
    go to the previous handler, or the loop's default one.
    """

    def handle(loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
        exc = context.get("exception")
        if exc is not None:
            fatal(exc)
        elif previous is not None:
            previous(loop, context)
        else:
            loop.default_exception_handler(context)

    return handle


def create_app(
    cfg: AppConfig,
    fetcher: Optional[SupportsFetch] = None,
    on_fatal: Optional[FatalHandler] = None,
) -> FastAPI:
    """Build the application.

    Args:
        cfg: Application configuration, shared read-only by every component
        fetcher: Upstream fetcher; defaults to an httpx-backed Fetcher
        on_fatal: Called with any exception escaping a handler or reported
            to the event loop as unhandled. The CLI passes a handler that
            terminates the process.
    """
    store = CacheStore.from_config(cfg.cache)
    store.ensure_directory()
    service = ProxyService(cfg, store, fetcher or Fetcher(cfg.fetch))

    def fatal(exc: BaseException) -> None:
        logger.critical("Uncaught exception: %s", exc, exc_info=exc)
        if on_fatal is not None:
            on_fatal(exc)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        loop = asyncio.get_running_loop()
        previous = loop.get_exception_handler()
        loop.set_exception_handler(loop_exception_handler(fatal, previous))
        log_event(logger, "Server started", event="server_start", cache_dir=str(store.directory))
        try:
            yield
        finally:
            loop.set_exception_handler(previous)
            log_event(logger, "Server stopped", event="server_stop")

    app = FastAPI(title="JMA Proxy", lifespan=lifespan)
    app.state.cfg = cfg
    app.state.store = store
    app.state.service = service
    app.state.started_at = time.monotonic()

    @app.middleware("http")
    async def cors_headers(request: Request, call_next):
        if request.method == "OPTIONS":
            return Response(status_code=200, headers=CORS_HEADERS)
        response = await call_next(request)
        response.headers.update(CORS_HEADERS)
        return response

    @app.exception_handler(StarletteHTTPException)
    async def plain_http_error(request: Request, exc: StarletteHTTPException):
        return PlainTextResponse(str(exc.detail), status_code=exc.status_code, headers=CORS_HEADERS)

    @app.exception_handler(Exception)
    async def uncaught(request: Request, exc: Exception):
        fatal(exc)
        return JSONResponse(
            {"error": "Internal server error", "message": str(exc), "timestamp": iso_timestamp()},
            status_code=500,
            headers=CORS_HEADERS,
        )

    @app.get("/")
    @app.get("/index.html")
    async def index():
        try:
            html = load_page(cfg)
        except PageNotFound as exc:
            return PlainTextResponse(str(exc), status_code=404)
        return HTMLResponse(html)

    @app.get("/api/jma")
    async def proxy_jma(url: Optional[str] = Query(None)):
        result = await service.handle(url)
        return Response(
            content=result.body,
            status_code=result.status_code,
            media_type=result.media_type,
            headers=result.headers,
        )

    @app.get("/cache")
    async def cache_info():
        try:
            entries = store.list_entries()
        except CacheIOError as exc:
            log_event(
                logger,
                "Failed to read cache directory",
                event="cache_list_error",
                error=str(exc),
                level=logging.ERROR,
            )
            return JSONResponse(exc.to_payload(), status_code=500)
        return {
            "cacheDirectory": cfg.cache.directory,
            "totalFiles": len(entries),
            "files": [entry.to_dict() for entry in entries],
            "timestamp": iso_timestamp(),
        }

    @app.get("/health")
    async def health():
        return {
            "status": "healthy",
            "timestamp": iso_timestamp(),
            "uptime": time.monotonic() - app.state.started_at,
        }

    return app
