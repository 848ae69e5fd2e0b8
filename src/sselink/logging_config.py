"""Structured logging via structlog: JSON lines to stderr, optionally tee'd to an hourly rotating file."""

from __future__ import annotations

import logging
import os
import sys
from logging.handlers import TimedRotatingFileHandler

import structlog


class _TeeWriter:
    """Write structured log lines to stderr and, when given, a rotating file handler's stream."""

    def __init__(self, file_handler: TimedRotatingFileHandler | None) -> None:
        self._file_handler = file_handler

    def write(self, message: str) -> None:
        if self._file_handler is not None:
            # Route through the handler so hourly rotation applies
            self._file_handler.emit(
                logging.makeLogRecord({"msg": message.rstrip("\n"), "levelno": logging.INFO})
            )
        sys.stderr.write(message)

    def flush(self) -> None:
        if self._file_handler is not None:
            self._file_handler.flush()
        sys.stderr.flush()


def setup_logging(log_dir: str | None = None, log_level: str = "INFO") -> None:
    """Configure structlog with JSON output to stderr, plus ``<log_dir>/sselink.jsonl`` if set."""
    file_handler: TimedRotatingFileHandler | None = None
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        file_handler = TimedRotatingFileHandler(
            filename=os.path.join(log_dir, "sselink.jsonl"),
            when="H",
            interval=1,
            backupCount=48,
            utc=True,
        )
        file_handler.setFormatter(logging.Formatter("%(message)s"))

    # Library loggers (httpx, aiohttp) go through stdlib logging
    stderr_handler = logging.StreamHandler()
    stderr_handler.setLevel(log_level.upper())
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level.upper())
    root_logger.addHandler(stderr_handler)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(log_level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.WriteLoggerFactory(file=_TeeWriter(file_handler)),
        cache_logger_on_first_use=True,
    )
