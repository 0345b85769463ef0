"""
tests/test_log_buffer.py — In-Memory Log Tail
==============================================
"""

from __future__ import annotations

import logging

import pytest

from madina.services import log_buffer
from madina.services.log_buffer import LogBuffer, LogEntry, RingBufferHandler


def _entry(level="INFO", logger="madina.services.wallet_service", message="m"):
    return LogEntry(timestamp="2026-01-01T00:00:00+00:00", level=level, logger=logger, message=message)


class TestLogBuffer:
    def test_capacity_drops_oldest(self):
        buf = LogBuffer(capacity=3)
        for i in range(5):
            buf.append(_entry(message=str(i)))
        assert len(buf) == 3
        assert [e["message"] for e in buf.get_entries()] == ["2", "3", "4"]

    def test_filters(self):
        buf = LogBuffer()
        buf.append(_entry("DEBUG", message="d"))
        buf.append(_entry("WARNING", message="w"))
        buf.append(_entry("ERROR", logger="uvicorn.error", message="e"))

        assert [e["message"] for e in buf.get_entries(level="warning")] == ["w", "e"]
        assert [e["message"] for e in buf.get_entries(logger_filter="madina")] == ["d", "w"]
        assert [e["message"] for e in buf.get_entries(tail=1)] == ["e"]
        # unknown level names do not filter
        assert len(buf.get_entries(level="LOUD")) == 3

    def test_clear(self):
        buf = LogBuffer()
        buf.append(_entry())
        buf.clear()
        assert buf.get_entries() == []


class TestHandler:
    def test_records_reach_buffer(self):
        buf = LogBuffer()
        handler = RingBufferHandler(buf, level=logging.WARNING)
        log = logging.getLogger("madina.tests.handler")
        log.addHandler(handler)
        log.setLevel(logging.DEBUG)
        try:
            log.info("ignored")
            log.warning("wallet %s suspended", "ABC123")
        finally:
            log.removeHandler(handler)

        (entry,) = buf.get_entries()
        assert entry["level"] == "WARNING"
        assert entry["logger"] == "madina.tests.handler"
        assert entry["message"] == "wallet ABC123 suspended"


class TestCaptureLevel:
    @pytest.fixture(autouse=True)
    def _detach(self):
        yield
        root = logging.getLogger()
        for h in list(root.handlers):
            if isinstance(h, RingBufferHandler):
                root.removeHandler(h)

    def test_set_level_installs_handler(self):
        assert log_buffer.set_capture_level("debug") == "DEBUG"
        assert log_buffer.get_current_level() == "DEBUG"
        assert log_buffer.set_capture_level("ERROR") == "ERROR"
        assert log_buffer.get_current_level() == "ERROR"

    def test_invalid_level(self):
        with pytest.raises(ValueError, match="Invalid level"):
            log_buffer.set_capture_level("chatty")
