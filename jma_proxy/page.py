"""Dashboard page served at / and /index.html."""

from __future__ import annotations

from pathlib import Path

from .config import AppConfig


class PageNotFound(FileNotFoundError):
    pass


def proxy_line(cfg: AppConfig) -> str:
    return f"const CORS_PROXY = '{cfg.server.base_url}/api/jma?url=';"


def load_page(cfg: AppConfig) -> str:
    """Read the dashboard template and point its CORS proxy at this server.

    Raises:
        PageNotFound: the template file is missing or unreadable
    """
    path = Path(cfg.page.template_path)
    try:
        html = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise PageNotFound(
            f"HTML file not found. Make sure {path.name} is in the same directory."
        ) from exc
    return html.replace(cfg.page.placeholder, proxy_line(cfg))
