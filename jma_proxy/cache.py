"""
On-disk cache for detail documents.

Each cached document is a single file in the cache directory holding the raw
bytes fetched from upstream. There is no index or manifest: the directory
listing is the index, and nothing here ever expires or evicts a file.

With the default "basename" key strategy the filename is the last path segment
of the source URL, used verbatim. Upstream is assumed to only publish
well-formed, filesystem-safe segments; the "sha256" strategy is available when
that assumption cannot be trusted.
"""

from __future__ import annotations

import hashlib
import logging
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from urllib.parse import urlsplit

from .config import CacheConfig, FeedConfig
from .errors import CacheIOError
from .logging_utils import log_event
from .types import CacheEntry

logger = logging.getLogger(__name__)


def derive_label(url: str, fallback: str = "unknown.xml") -> str:
    """Return the last path segment of a URL, or fallback when it has none.

    Trailing slashes are ignored and percent-escapes are kept as-is.

    Example:
        >>> derive_label("https://example.test/xml/20240101_detailed_report.xml")
        '20240101_detailed_report.xml'
    """
    return PurePosixPath(urlsplit(url).path).name or fallback


def cache_key_for(url: str, label: str, strategy: str = "basename") -> str:
    """Map a URL and its label to the filename used inside the cache directory."""
    if strategy == "basename":
        return label
    if strategy == "sha256":
        digest = hashlib.sha256(url.encode("utf-8")).hexdigest()
        suffix = PurePosixPath(label).suffix or ".xml"
        return f"{digest}{suffix}"
    raise ValueError(f"Unknown cache key strategy: {strategy}")


def should_cache(label: str, feed: FeedConfig) -> bool:
    """Detail documents have long names; feed files are short or named like the main feed."""
    return feed.main_feed_filename not in label and len(label) > feed.min_cacheable_length


class CacheStore:
    """Maps cache keys to files in a single directory.

    Attributes:
        directory: Directory where cached documents are stored
    """

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    @classmethod
    def from_config(cls, cfg: CacheConfig) -> "CacheStore":
        return cls(Path(cfg.directory))

    def path_for(self, key: str) -> Path:
        return self.directory / key

    def ensure_directory(self) -> bool:
        """Create the cache directory and its parents if missing.

        Returns:
            True if the directory exists afterwards. Failure is logged, never raised.
        """
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            log_event(
                logger,
                "Cache directory unavailable",
                event="cache_dir_error",
                directory=str(self.directory),
                error=str(exc),
                level=logging.WARNING,
            )
            return False
        return True

    def exists(self, key: str) -> bool:
        """True iff a cached file for key is present. Never raises."""
        try:
            return self.path_for(key).is_file()
        except OSError:
            return False

    def read(self, key: str) -> bytes:
        try:
            return self.path_for(key).read_bytes()
        except OSError as exc:
            raise CacheIOError(f"Cannot read cached file {key}: {exc}") from exc

    def write(self, key: str, data: bytes) -> None:
        """Create or overwrite the file for key with data in one buffered write."""
        try:
            self.path_for(key).write_bytes(data)
        except OSError as exc:
            raise CacheIOError(f"Cannot write cached file {key}: {exc}") from exc

    def list_entries(self) -> list[CacheEntry]:
        try:
            paths = sorted(self.directory.iterdir())
            entries = []
            for path in paths:
                stat = path.stat()
                entries.append(
                    CacheEntry(
                        filename=path.name,
                        size=stat.st_size,
                        created=datetime.fromtimestamp(stat.st_ctime, tz=timezone.utc),
                        modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                    )
                )
        except OSError as exc:
            raise CacheIOError(str(exc)) from exc
        return entries
