"""
JMA Proxy - caching CORS proxy for the JMA earthquake and volcano feed.

This package fetches the JMA XML feed and its linked detail documents,
caches detail documents on disk, and serves them with permissive CORS
headers so a browser dashboard on another origin can read them.

Main entry point is the CLI via `jma-proxy serve` command.

Example:
    $ jma-proxy serve --port 11311 --cache-dir ./cache
"""

__all__ = ["__version__", "AppConfig", "CacheStore", "ProxyService", "create_app"]
__version__ = "0.1.0"

from .app import create_app
from .cache import CacheStore
from .config import AppConfig
from .proxy import ProxyService
