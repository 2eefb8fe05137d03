from __future__ import annotations

import json
import logging
import sys

import pytest

from pg_exporter.core.logging import (
    TargetLogger,
    _ContainerFormatter,
    _JsonFormatter,
    setup_logging,
)


def _record(level: int = logging.INFO, msg: str = "hello", **extra: object) -> logging.LogRecord:
    record = logging.LogRecord(
        name="pg_exporter.services.scrape",
        level=level,
        pathname="scrape.py",
        lineno=42,
        msg=msg,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_setup_logging_sets_root_level() -> None:
    setup_logging("debug")
    assert logging.getLogger().level == logging.DEBUG

    setup_logging("warning")
    assert logging.getLogger().level == logging.WARNING


def test_setup_logging_defaults_to_info_for_unknown_level() -> None:
    setup_logging("nonexistent")
    assert logging.getLogger().level == logging.INFO


def test_setup_logging_quiets_sqlalchemy_at_debug() -> None:
    setup_logging("debug")
    assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING
    assert logging.getLogger("uvicorn").level == logging.WARNING


def test_setup_logging_allows_uvicorn_at_error() -> None:
    setup_logging("error")
    assert logging.getLogger("uvicorn").level == logging.ERROR


def test_setup_logging_installs_json_formatter() -> None:
    setup_logging("info", json_format=True)
    handlers = logging.getLogger().handlers
    assert len(handlers) == 1
    assert isinstance(handlers[0].formatter, _JsonFormatter)


def test_formatter_excludes_location_for_info() -> None:
    output = _ContainerFormatter().format(_record())
    assert "hello" in output
    assert "[scrape.py:" not in output


def test_formatter_includes_location_for_warning() -> None:
    output = _ContainerFormatter().format(_record(logging.WARNING, "bad thing"))
    assert "bad thing" in output
    assert "[scrape.py:42]" in output


def test_container_formatter_is_not_json() -> None:
    output = _ContainerFormatter().format(_record(msg="server started"))
    assert "INFO" in output
    assert "pg_exporter.services.scrape" in output
    try:
        json.loads(output)
        raise AssertionError("Container format should not be valid JSON")
    except json.JSONDecodeError:
        pass  # expected


def test_json_formatter_produces_valid_json() -> None:
    parsed = json.loads(_JsonFormatter().format(_record(msg="Scrape finished")))
    assert parsed["level"] == "INFO"
    assert parsed["logger"] == "pg_exporter.services.scrape"
    assert parsed["message"] == "Scrape finished"
    assert "timestamp" in parsed


def test_json_formatter_includes_scrape_context() -> None:
    """Fields passed via extra= become top-level keys."""
    record = _record(db="reporting", metric="app_orders", status="failed", duration_ms=12.5)
    parsed = json.loads(_JsonFormatter().format(record))
    assert parsed["db"] == "reporting"
    assert parsed["metric"] == "app_orders"
    assert parsed["status"] == "failed"
    assert parsed["duration_ms"] == 12.5


def test_json_formatter_omits_absent_context() -> None:
    parsed = json.loads(_JsonFormatter().format(_record()))
    assert "db" not in parsed
    assert "metric" not in parsed


def test_json_formatter_includes_exception_info() -> None:
    try:
        raise ValueError("test error")
    except ValueError:
        record = _record(logging.ERROR, "Something failed")
        record.exc_info = sys.exc_info()
        output = _JsonFormatter().format(record)

    parsed = json.loads(output)
    assert "ValueError: test error" in parsed["exception"]


def test_container_formatter_tags_target_records() -> None:
    output = _ContainerFormatter().format(_record(msg="Scrape finished", db="reporting"))
    assert output.endswith("Scrape finished  db=reporting")


def test_container_formatter_puts_location_after_target() -> None:
    output = _ContainerFormatter().format(_record(logging.ERROR, "timeout", db="reporting"))
    assert "timeout  db=reporting  [scrape.py:42]" in output


def test_target_logger_stamps_db_and_keeps_extra(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO)
    log = TargetLogger(logging.getLogger("pg_exporter.services.scrape"), "reporting")

    log.info("Set %s", "app_orders", extra={"metric": "app_orders"})

    [record] = caplog.records
    assert record.db == "reporting"  # type: ignore[attr-defined]
    assert record.metric == "app_orders"  # type: ignore[attr-defined]
    parsed = json.loads(_JsonFormatter().format(record))
    assert parsed["db"] == "reporting"
    assert parsed["metric"] == "app_orders"
