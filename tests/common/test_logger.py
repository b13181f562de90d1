# tests/common/test_logger.py
"""
Tests for logging helpers and formatters.
"""

from __future__ import annotations

import json
import logging
import sys

import pytest

from src.common.constants import TypeMsg
from src.common.logger import (
    ColoredFormatter,
    DateBasedRotatingFileHandler,
    JsonFormatter,
    get_logger,
    log_error,
    log_info,
    log_warning,
)


class ListHandler(logging.Handler):
    def __init__(self) -> None:
        super().__init__(level=logging.DEBUG)
        self.records: list[logging.LogRecord] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(record)


@pytest.fixture
def captured():
    handler = ListHandler()
    logger = get_logger("dispatch.tests")
    logger.addHandler(handler)
    yield handler
    logger.removeHandler(handler)


def _record(message: str = "hello", **extra) -> logging.LogRecord:
    record = logging.LogRecord("dispatch", logging.INFO, __file__, 10, message, None, None)
    if extra:
        record.extra_data = extra
    return record


class TestFormatters:

    def test_json_formatter(self) -> None:
        data = json.loads(JsonFormatter().format(_record(booking_id="b1")))

        assert data["level"] == "INFO"
        assert data["message"] == "hello"
        assert data["extra"] == {"booking_id": "b1"}
        assert data["timestamp"].endswith("Z")

    def test_json_formatter_with_exception(self) -> None:
        try:
            raise ValueError("bad")
        except ValueError:
            record = logging.LogRecord("dispatch", logging.ERROR, __file__, 1, "failed", None, sys.exc_info())

        data = json.loads(JsonFormatter().format(record))

        assert "ValueError: bad" in data["exception"]

    def test_colored_formatter_shows_caller(self) -> None:
        record = _record(caller_function="accept", caller_module="svc", caller_file="svc.py", caller_line=7)

        line = ColoredFormatter().format(record)

        assert "[INFO]" in line
        assert "svc.accept() svc.py:7" in line
        assert line.endswith("hello")


class TestHelpers:

    def test_get_logger_is_cached(self) -> None:
        assert get_logger("dispatch.tests") is get_logger("dispatch.tests")

    @pytest.mark.asyncio
    async def test_log_info_levels(self, captured) -> None:
        await log_info("debug line", type_msg=TypeMsg.DEBUG, logger_name="dispatch.tests")
        await log_info("warn line", type_msg=TypeMsg.WARNING, logger_name="dispatch.tests")

        assert [r.levelno for r in captured.records] == [logging.DEBUG, logging.WARNING]

    @pytest.mark.asyncio
    async def test_extra_and_caller_attached(self, captured) -> None:
        await log_warning("slow call", logger_name="dispatch.tests", extra={"target": "driver-directory"})

        data = captured.records[0].extra_data
        assert data["target"] == "driver-directory"
        assert "caller_function" in data

    @pytest.mark.asyncio
    async def test_log_error_with_traceback(self, captured) -> None:
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            await log_error("handler failed", logger_name="dispatch.tests", exc_info=True)

        record = captured.records[0]
        assert record.levelno == logging.ERROR
        assert record.exc_info[0] is RuntimeError


class TestRotatingFileHandler:

    def test_rollover_archives_current_file(self, tmp_path) -> None:
        handler = DateBasedRotatingFileHandler(str(tmp_path), max_bytes=10, logger_name="dispatch")
        handler.setFormatter(logging.Formatter("%(message)s"))
        try:
            handler.emit(_record("first line is long enough"))
            handler.emit(_record("second"))
        finally:
            handler.close()

        assert (tmp_path / "dispatch.log").read_text(encoding="utf-8").strip() == "second"
        assert list(tmp_path.glob("dispatch_*.log"))
