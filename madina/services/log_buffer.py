"""
madina.services.log_buffer — Live log tail for the admin panel
==============================================================

A bounded in-memory buffer attached to the root logger.  Admins read it
with ``GET /api/admin/logs`` and raise or lower the capture level with
``PUT /api/admin/logs/level``.  Nothing is persisted; the buffer starts
empty on every API restart.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import asdict, dataclass
from datetime import UTC, datetime

DEFAULT_CAPACITY = 2000
VALID_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

_buffer: LogBuffer | None = None
_lock = threading.Lock()


@dataclass(slots=True)
class LogEntry:
    timestamp: str
    level: str
    logger: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return asdict(self)


class LogBuffer:
    """Thread-safe ring of the most recent :class:`LogEntry` objects."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        self._entries: deque[LogEntry] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    def append(self, entry: LogEntry) -> None:
        with self._lock:
            self._entries.append(entry)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def get_entries(
        self,
        tail: int = 200,
        level: str | None = None,
        logger_filter: str | None = None,
    ) -> list[dict[str, str]]:
        """Newest *tail* entries at or above *level* whose logger starts with
        *logger_filter*."""
        min_level = logging.getLevelName(level.upper()) if level else 0
        if not isinstance(min_level, int):
            min_level = 0

        with self._lock:
            snapshot = list(self._entries)

        results = [
            e.to_dict()
            for e in snapshot
            if (not min_level or logging.getLevelName(e.level) >= min_level)
            and (not logger_filter or e.logger.startswith(logger_filter))
        ]
        if tail and len(results) > tail:
            results = results[-tail:]
        return results

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class RingBufferHandler(logging.Handler):
    def __init__(self, buffer: LogBuffer, level: int = logging.INFO) -> None:
        super().__init__(level)
        self._buffer = buffer

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self._buffer.append(LogEntry(
                timestamp=datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
                level=record.levelname,
                logger=record.name,
                message=self.format(record),
            ))
        except Exception:
            self.handleError(record)


# ---------------------------------------------------------------------------
# Process-wide access
# ---------------------------------------------------------------------------
def get_buffer() -> LogBuffer:
    global _buffer
    if _buffer is None:
        with _lock:
            if _buffer is None:
                _buffer = LogBuffer()
    return _buffer


def _installed_handler() -> RingBufferHandler | None:
    for h in logging.getLogger().handlers:
        if isinstance(h, RingBufferHandler):
            return h
    return None


def install_handler(level: int = logging.INFO) -> RingBufferHandler:
    """Attach the buffer handler to the root logger (once).

    The ``madina`` logger is opened up to *level* so service messages reach
    the handler, and uvicorn's loggers are made to propagate so request
    lines show up too.
    """
    handler = _installed_handler()
    if handler is None:
        handler = RingBufferHandler(get_buffer(), level=level)
        handler.setFormatter(logging.Formatter("%(message)s"))
        logging.getLogger().addHandler(handler)
    else:
        handler.setLevel(level)

    logging.getLogger("madina").setLevel(min(level, logging.INFO))
    for name in ("uvicorn", "uvicorn.access", "uvicorn.error"):
        log = logging.getLogger(name)
        log.propagate = True
        log.setLevel(logging.INFO)
    return handler


def get_logs(
    tail: int = 200,
    level: str | None = None,
    logger_filter: str | None = None,
) -> list[dict[str, str]]:
    return get_buffer().get_entries(tail=tail, level=level, logger_filter=logger_filter)


def get_current_level() -> str:
    handler = _installed_handler()
    if handler is not None:
        return logging.getLevelName(handler.level)
    return logging.getLevelName(logging.getLogger().level)


def set_capture_level(level_name: str) -> str:
    """Change the capture level; installs the handler if it is missing.

    Raises
    ------
    ValueError
        *level_name* is not one of :data:`VALID_LEVELS`.
    """
    level_name = (level_name or "").upper()
    if level_name not in VALID_LEVELS:
        raise ValueError(f"Invalid level: {level_name}. Must be one of {VALID_LEVELS}")
    install_handler(level=getattr(logging, level_name))
    return level_name
