# debug_log.py - request ids on log records and an in-process debug log buffer

import logging
import threading
from collections import deque
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import List, Optional

from config.limits import DEBUG_LOG

request_id_var: ContextVar[str] = ContextVar("request_id", default="-")


class RequestIdFilter(logging.Filter):
    """Stamps the current request id on every record as `rid`"""

    def filter(self, record: logging.LogRecord) -> bool:
        record.rid = request_id_var.get()
        return True


class DebugLogBuffer:
    """Bounded ring of recent log entries; the oldest entry is evicted first"""

    def __init__(self, max_entries: int = DEBUG_LOG.MAX_ENTRIES):
        self.max_entries = max_entries
        self._entries: deque = deque(maxlen=max_entries)
        self._lock = threading.Lock()

    def append(self, level: str, message: str, logger_name: str = "",
               request_id: Optional[str] = None):
        entry = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": level,
            "logger": logger_name,
            "rid": request_id,
            "message": message,
        }
        with self._lock:
            self._entries.append(entry)

    def recent(self, limit: int = DEBUG_LOG.DEFAULT_LIMIT) -> List[dict]:
        """Newest first"""
        limit = max(1, min(int(limit), self.max_entries))
        with self._lock:
            return list(reversed(self._entries))[:limit]

    def clear(self):
        with self._lock:
            self._entries.clear()

    def __len__(self):
        return len(self._entries)


class DebugLogHandler(logging.Handler):
    def __init__(self, buffer: DebugLogBuffer, level=logging.INFO):
        super().__init__(level)
        self.buffer = buffer

    def emit(self, record: logging.LogRecord):
        try:
            self.buffer.append(
                level=record.levelname,
                message=record.getMessage(),
                logger_name=record.name,
                request_id=getattr(record, "rid", None) or request_id_var.get(),
            )
        except Exception:
            self.handleError(record)


__all__ = [
    'request_id_var',
    'RequestIdFilter',
    'DebugLogBuffer',
    'DebugLogHandler',
]
