"""Structured logging setup and the in-memory recent-log buffer."""
import logging
import sys
import uuid
from collections import deque
from typing import Any, Dict, List, Optional

import structlog

from docqa import config

AVAILABLE_LEVELS = ["debug", "info", "warning", "error", "critical"]


class LogBuffer:
    """structlog processor keeping the most recent log entries in memory.

    Entries are plain dicts ({id, timestamp, level, event, context}) served by
    the development-only /api/logs endpoint.
    """

    def __init__(self, max_entries: int = None):
        self.max_entries = max_entries or config.LOG_BUFFER_SIZE
        self._entries: deque = deque(maxlen=self.max_entries)

    def __call__(self, logger, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
        context = {
            key: value
            for key, value in event_dict.items()
            if key not in ("event", "level", "timestamp")
        }
        self._entries.append({
            "id": uuid.uuid4().hex,
            "timestamp": event_dict.get("timestamp"),
            "level": event_dict.get("level", method_name),
            "event": str(event_dict.get("event", "")),
            "context": {key: _jsonable(value) for key, value in context.items()},
        })
        return event_dict

    def entries(self, level: Optional[str] = None, limit: int = 50) -> List[Dict[str, Any]]:
        """Most recent entries first, optionally filtered by level."""
        selected = [
            entry for entry in reversed(self._entries)
            if level is None or entry["level"] == level
        ]
        return selected[:max(limit, 0)]

    def clear(self) -> int:
        cleared = len(self._entries)
        self._entries.clear()
        return cleared

    def __len__(self) -> int:
        return len(self._entries)


def _jsonable(value: Any) -> Any:
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    return repr(value)


log_buffer = LogBuffer()


def configure_logging(level: str = None) -> None:
    """Configure structlog to render JSON lines through the stdlib logger."""
    level = (level or config.LOG_LEVEL).upper()

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level, logging.INFO),
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            log_buffer,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
