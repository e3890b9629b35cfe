"""Logging setup for the backend.

The root logger gets a stream handler, an optional rotating file handler
and a :class:`ServiceLogBuffer` that keeps recent lines per service so the
devpanel can show them without reading log files.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from logging.handlers import RotatingFileHandler
from typing import Deque, Dict, List

from .config import Settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
ALL_SERVICES = "all"


class ServiceLogBuffer(logging.Handler):
    """Bounded in-memory log lines grouped by service name."""

    def __init__(self, capacity: int = 500, level: int = logging.NOTSET) -> None:
        super().__init__(level)
        self.capacity = capacity
        self._buffers: Dict[str, Deque[str]] = {}
        self._buffer_lock = threading.Lock()

    @staticmethod
    def service_for(record: logging.LogRecord) -> str:
        service = getattr(record, "service", None)
        if service:
            return str(service)
        return record.name.rsplit(".", 1)[-1]

    def emit(self, record: logging.LogRecord) -> None:
        try:
            line = self.format(record)
        except Exception:
            self.handleError(record)
            return
        service = self.service_for(record)
        with self._buffer_lock:
            for key in (service, ALL_SERVICES):
                buffer = self._buffers.get(key)
                if buffer is None:
                    buffer = deque(maxlen=self.capacity)
                    self._buffers[key] = buffer
                buffer.append(line)

    def records(self, service: str, limit: int = 100) -> List[str]:
        with self._buffer_lock:
            buffer = self._buffers.get(service)
            if not buffer:
                return []
            lines = list(buffer)
        if limit <= 0:
            return []
        return lines[-limit:]

    def services(self) -> List[str]:
        with self._buffer_lock:
            return sorted(self._buffers)

    def clear(self) -> None:
        with self._buffer_lock:
            self._buffers.clear()


_log_buffer = ServiceLogBuffer()
_configured = False
_configure_lock = threading.Lock()


def get_log_buffer() -> ServiceLogBuffer:
    return _log_buffer


def setup_logging(settings: Settings, force: bool = False) -> None:
    global _configured
    with _configure_lock:
        if _configured and not force:
            return

        root = logging.getLogger()
        level = logging.getLevelName(settings.log_level)
        root.setLevel(level if isinstance(level, int) else logging.INFO)

        formatter = logging.Formatter(LOG_FORMAT)
        for handler in list(root.handlers):
            if getattr(handler, "_portfolio_handler", False):
                root.removeHandler(handler)

        handlers: List[logging.Handler] = [logging.StreamHandler()]
        if settings.log_file:
            handlers.append(
                RotatingFileHandler(settings.log_file, maxBytes=5 * 1024 * 1024, backupCount=5)
            )
        handlers.append(_log_buffer)

        for handler in handlers:
            handler.setFormatter(formatter)
            handler._portfolio_handler = True  # type: ignore[attr-defined]
            root.addHandler(handler)

        _configured = True
        logging.getLogger(__name__).info("Logging configured at %s", settings.log_level)

