"""Logging configuration for pg-exporter.

The exporter is scraped on a fixed interval, so its log stream is mostly
one line per target per cycle plus warnings about queries that produced
nothing.  Almost every interesting line concerns exactly one database
target, so the target name travels on the record itself rather than in
the message text:

  TargetLogger: a LoggerAdapter bound to one target.  Every record it
    emits carries ``db=<target>``; callers add ``metric``/``status``/
    ``duration_ms`` through ``extra=`` as usual and the two are merged.

Two formatters cover the two ways that stream is read:

  _ContainerFormatter: human-readable, single-line, for local runs and
    `docker logs`.  Target records get a ``db=<name>`` tag after the
    message; WARNING and above carry the source location.

  _JsonFormatter: one JSON object per line, for log aggregation.  The
    scrape context fields become top-level keys so a failing target can
    be filtered with ``db == "reporting"`` instead of a regex.

    Set LOG_JSON=true to switch to JSON output.
"""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import MutableMapping
from typing import Any

# Scrape context a record may carry, in output order.
SCRAPE_CONTEXT_FIELDS = ("db", "metric", "status", "duration_ms")


class TargetLogger(logging.LoggerAdapter):
    """Stamp every record with the database target it concerns."""

    def __init__(self, logger: logging.Logger, db_name: str) -> None:
        super().__init__(logger, {"db": db_name})

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> tuple[Any, MutableMapping[str, Any]]:
        # Merge rather than replace: call sites still pass metric/status.
        kwargs["extra"] = {**self.extra, **(kwargs.get("extra") or {})}  # type: ignore[dict-item]
        return msg, kwargs


def _scrape_context(record: logging.LogRecord) -> dict[str, object]:
    context: dict[str, object] = {}
    for key in SCRAPE_CONTEXT_FIELDS:
        value = getattr(record, key, None)
        if value is not None:
            context[key] = value
    return context


class _ContainerFormatter(logging.Formatter):
    """Single-line formatter for container stdout.

    ``2026-01-05T10:00:00.123+0000 ERROR    pg_exporter.services.scrape
    Failed to scrape reporting: timeout  db=reporting  [scrape.py:201]``
    """

    _BASE_FMT = "%(asctime)s %(levelname)-8s %(name)s  %(message)s"
    _DB_SUFFIX = "  db=%(db)s"
    _LOC_SUFFIX = "  [%(filename)s:%(lineno)d]"

    def __init__(self) -> None:
        super().__init__(datefmt="%Y-%m-%dT%H:%M:%S%z")

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:
        base = super().formatTime(record, datefmt)
        # Milliseconds go before the +0000 offset.
        return f"{base[:-5]}.{int(record.msecs):03d}{base[-5:]}"

    def format(self, record: logging.LogRecord) -> str:
        fmt = self._BASE_FMT
        if getattr(record, "db", None) is not None:
            fmt += self._DB_SUFFIX
        if record.levelno >= logging.WARNING:
            fmt += self._LOC_SUFFIX
        self._style._fmt = fmt
        return super().format(record)


class _JsonFormatter(logging.Formatter):
    """JSON Lines: fixed envelope plus whatever scrape context is present."""

    def __init__(self) -> None:
        super().__init__(datefmt="%Y-%m-%dT%H:%M:%S%z")

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, object] = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **_scrape_context(record),
        }
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def setup_logging(level_name: str, *, json_format: bool = False) -> None:
    """Configure the root logger for container environments.

    Args:
        level_name: Log level string (debug/info/warning/error)
        json_format: If True, emit JSON lines. If False, human-readable.
                     Controlled by LOG_JSON in Settings.
    """
    level = getattr(logging, level_name.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(_JsonFormatter() if json_format else _ContainerFormatter())

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    root.addHandler(handler)

    # SQLAlchemy and asyncpg log every pool checkout at DEBUG
    for name in (
        "uvicorn",
        "uvicorn.access",
        "uvicorn.error",
        "sqlalchemy.engine",
        "sqlalchemy.pool",
        "asyncpg",
    ):
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
