from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from rich.logging import RichHandler

from .config import LoggingConfig


def setup_logging(cfg: LoggingConfig) -> logging.Logger:
    logger = logging.getLogger("jma_proxy")
    logger.setLevel(_level_from_string(cfg.level))
    logger.handlers = []
    logger.propagate = False

    if cfg.console:
        console_handler = RichHandler(rich_tracebacks=True, show_time=True, show_level=True)
        console_handler.setLevel(_level_from_string(cfg.level))
        console_handler.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(console_handler)

    if cfg.file:
        log_dir = Path(cfg.directory)
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_dir / cfg.filename, encoding="utf-8")
        file_handler.setLevel(_level_from_string(cfg.level))
        file_handler.setFormatter(_build_file_formatter(cfg.format))
        logger.addHandler(file_handler)

    return logger


def log_event(
    logger: logging.Logger | None,
    message: str,
    level: int = logging.INFO,
    **fields: Any,
) -> None:
    if logger is None:
        return
    logger.log(level, message, extra=fields)


class JsonlFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(_extract_extras(record))
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=True, default=str)


def _extract_extras(record: logging.LogRecord) -> dict[str, Any]:
    reserved = set(logging.LogRecord("", 0, "", 0, "", None, None).__dict__) | {"message", "asctime"}
    extras = {}
    for key, value in record.__dict__.items():
        if key in reserved:
            continue
        extras[key] = value
    return extras


def _build_file_formatter(fmt: str) -> logging.Formatter:
    if fmt == "jsonl":
        return JsonlFormatter()
    return logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s")


def _level_from_string(level: str) -> int:
    return getattr(logging, level.upper(), logging.INFO)
