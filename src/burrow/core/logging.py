# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Logging for Burrow.

Daemon output owns stdout, so log records always go to stderr (and
optionally a file). Two formatters are provided:
- JSON, for the daemon and log files
- plain text with colours, for interactive use

While the pipeline handles a relay event, that event's id is the
correlation id and appears on every record logged meanwhile. Handlers
installed by :func:`configure_logging` shorten 64-character hex keys and
ids and blank out any ``nsec`` that reaches a log message.
"""

from __future__ import annotations

import json
import logging
import re
import secrets
import sys
from collections.abc import Generator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

_correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)

_HEX_KEY = re.compile(r"(?<![0-9a-fA-F])[0-9a-fA-F]{64}(?![0-9a-fA-F])")
_NSEC = re.compile(r"\bnsec1[02-9ac-hj-np-z]+\b")

# Same length as the short ids printed by the CLI and the daemon
SHORT_KEY_LENGTH = 16


def get_correlation_id() -> str | None:
    return _correlation_id.get()


@contextmanager
def correlation_context(correlation_id: str | None = None) -> Generator[str, None, None]:
    """Tag records logged inside the block with ``correlation_id``.

    Example:
        with correlation_context(event.id):
            logger.info("Processing group event")
    """
    cid = correlation_id or secrets.token_hex(8)
    token = _correlation_id.set(cid)
    try:
        yield cid
    finally:
        _correlation_id.reset(token)


def shorten_keys(text: str) -> str:
    """Cut hex keys and ids to their prefix and blank out secret keys."""
    text = _NSEC.sub("nsec1[redacted]", text)
    return _HEX_KEY.sub(lambda m: m.group(0)[:SHORT_KEY_LENGTH] + "...", text)


class KeyShorteningFilter(logging.Filter):
    """Rewrite each record's message with :func:`shorten_keys`."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        shortened = shorten_keys(message)
        if shortened != message:
            record.msg = shortened
            record.args = None
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        correlation_id = get_correlation_id()
        if correlation_id:
            log_data["correlation_id"] = correlation_id

        if record.levelno >= logging.WARNING:
            log_data["source"] = f"{record.module}:{record.lineno}"

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False)


class StandardFormatter(logging.Formatter):
    """Human-readable lines, coloured by level on a terminal."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, use_colors: bool = True):
        super().__init__(fmt="%(asctime)s %(levelname)s %(name)s: %(message)s", datefmt="%H:%M:%S")
        self.use_colors = use_colors and sys.stderr.isatty()

    def format(self, record: logging.LogRecord) -> str:
        # Work on a copy; other handlers see the same record
        record = logging.makeLogRecord(record.__dict__)

        correlation_id = get_correlation_id()
        if correlation_id:
            record.msg = f"[{correlation_id[:8]}] {record.msg}"

        if self.use_colors:
            record.levelname = f"{self.COLORS.get(record.levelname, '')}{record.levelname}{self.RESET}"

        return super().format(record)


def configure_logging(
    level: str | int | None = None,
    json_format: bool | None = None,
    log_file: str | None = None,
) -> None:
    """Install Burrow's handlers on the root logger.

    Unset arguments fall back to ``BURROW_LOG_LEVEL``, ``BURROW_LOG_FORMAT``
    ("json" or "text"; JSON when stderr is not a terminal) and
    ``BURROW_LOG_FILE``. The file, when set, always gets JSON.
    """
    from .config import get_config

    config = get_config()

    if level is None:
        level = config.log_level
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    if json_format is None:
        format_env = config.log_format.lower()
        json_format = format_env == "json" or (format_env != "text" and not sys.stderr.isatty())

    log_file = config.log_file if log_file is None else log_file

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    handlers[0].setFormatter(JSONFormatter() if json_format else StandardFormatter())
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
        handlers[1].setFormatter(JSONFormatter())

    for handler in handlers:
        handler.addFilter(KeyShorteningFilter())
        root_logger.addHandler(handler)

    # aiohttp logs every websocket frame at DEBUG
    logging.getLogger("aiohttp").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)
