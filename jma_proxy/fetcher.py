"""
Upstream HTTP fetching.

A single GET per call through httpx.AsyncClient, choosing plaintext or TLS
from the URL scheme. The whole body is buffered in memory before returning.

There are no retries. Unless FetchConfig.timeout_seconds is set there is no
timeout either, so a remote end that never finishes the response keeps the
caller waiting indefinitely.
"""

from __future__ import annotations

import httpx

from .config import FetchConfig
from .types import FetchResult


class Fetcher:
    """Fetches URLs according to a FetchConfig."""

    def __init__(self, cfg: FetchConfig | None = None):
        self.cfg = cfg or FetchConfig()

    async def fetch(self, url: str) -> FetchResult:
        return await fetch_url(
            url,
            timeout=self.cfg.timeout_seconds,
            user_agent=self.cfg.user_agent,
            trust_env=self.cfg.trust_env,
            follow_redirects=self.cfg.follow_redirects,
        )


async def fetch_url(
    url: str,
    timeout: float | None,
    user_agent: str,
    trust_env: bool,
    follow_redirects: bool = False,
) -> FetchResult:
    """Fetch a URL and buffer its full body.

    The upstream status code is recorded but not interpreted: any response
    that arrives in full is a success.

    Args:
        url: The URL to fetch
        timeout: Request timeout in seconds, or None for no timeout
        user_agent: User-Agent header string
        trust_env: Whether to respect system proxy settings from environment
        follow_redirects: Whether to follow 3xx responses

    Returns:
        FetchResult with content on success or error message on failure
    """
    headers = {"User-Agent": user_agent}
    try:
        async with httpx.AsyncClient(
            timeout=timeout,
            headers=headers,
            follow_redirects=follow_redirects,
            trust_env=trust_env,
        ) as client:
            resp = await client.get(url)
            return FetchResult(
                url=url,
                status_code=resp.status_code,
                content=resp.content,
                content_type=resp.headers.get("content-type"),
            )
    except httpx.TimeoutException as exc:
        return FetchResult(
            url=url,
            status_code=None,
            content=None,
            error=f"{type(exc).__name__}: {exc}",
            error_kind="TimeoutError",
        )
    except (httpx.HTTPError, httpx.InvalidURL) as exc:
        return FetchResult(
            url=url,
            status_code=None,
            content=None,
            error=f"{type(exc).__name__}: {exc}",
            error_kind="NetworkError",
        )
