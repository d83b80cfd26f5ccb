"""
Logging setup for the storage layer and its command line tools.

Every module logs through ``logging.getLogger(__name__)``; this module only
decides where records go and how they look. Each record carries the id of
the request it was emitted for (``cid``), set with ``request_context``.
"""

from __future__ import annotations

import contextvars
import json
import logging
import sys
import time
from contextlib import contextmanager
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Iterator, Optional

from .config import LogConfig

# Correlation ID context for logs
_cid_ctx: contextvars.ContextVar[str] = contextvars.ContextVar("correlation_id", default="-")

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - cid=%(cid)s - %(message)s"


class CidLogFilter(logging.Filter):
    """Inject correlation id from context into log records as record.cid."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.cid = _cid_ctx.get()
        return True


class LocalTimeFormatter(logging.Formatter):
    def formatTime(self, record, datefmt=None):
        ct = self.converter(record.created)
        if datefmt:
            return time.strftime(datefmt, ct)
        t = time.strftime("%Y-%m-%d %H:%M:%S", ct)
        return f"{t},{record.msecs:03.0f}"


class JSONLogFormatter(logging.Formatter):
    """Simple structured JSON log formatter."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": self.formatTime(record, datefmt="%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "cid": getattr(record, "cid", "-"),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def _make_formatter(log_format: str) -> logging.Formatter:
    if log_format == "json":
        return JSONLogFormatter()
    return LocalTimeFormatter(TEXT_FORMAT)


def configure_logging(config: Optional[LogConfig] = None) -> logging.Logger:
    """
    Attach handlers to the ``oauth_storage`` logger.

    Always logs to stderr; also to a rotating file when ``config.file`` is
    set. Safe to call more than once, previously attached handlers are
    replaced.
    """
    config = config or LogConfig()
    level = getattr(logging, config.level.upper(), logging.INFO)

    package_logger = logging.getLogger("oauth_storage")
    package_logger.setLevel(level)
    for handler in list(package_logger.handlers):
        if getattr(handler, "_oauth_storage_handler", False):
            package_logger.removeHandler(handler)
            handler.close()

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if config.file:
        log_path = Path(config.file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(
            RotatingFileHandler(log_path, maxBytes=10 * 1024 * 1024, backupCount=5, encoding="utf-8")
        )

    formatter = _make_formatter(config.format)
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        handler.addFilter(CidLogFilter())
        handler._oauth_storage_handler = True  # type: ignore[attr-defined]
        package_logger.addHandler(handler)

    return package_logger


@contextmanager
def request_context(request_id: str) -> Iterator[str]:
    """Tag every record logged inside the block with ``request_id``."""
    token = _cid_ctx.set(request_id)
    try:
        yield request_id
    finally:
        _cid_ctx.reset(token)


def current_request_id() -> str:
    return _cid_ctx.get()


__all__ = [
    "CidLogFilter",
    "JSONLogFormatter",
    "configure_logging",
    "current_request_id",
    "request_context",
]
