"""
ftplace — status.py
─────────────────────────────────────────────────────────────────
StatusSink — append-only event log the control API reads.

emit() never blocks: bounded deque, oldest events fall off.
Every event is mirrored into the "ftplace.status" logger.
─────────────────────────────────────────────────────────────────
"""

import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional

from ftplace.core.config import cfg

logger = logging.getLogger("ftplace.status")

_LEVELS = {
    "debug":   logging.DEBUG,
    "info":    logging.INFO,
    "warning": logging.WARNING,
    "error":   logging.ERROR,
}


@dataclass(frozen=True)
class StatusEvent:
    timestamp: str
    level:     str
    message:   str

    def to_dict(self) -> dict:
        return {"timestamp": self.timestamp, "level": self.level, "message": self.message}


class StatusLog:
    def __init__(self, maxlen: int = cfg.STATUS_LOG_SIZE):
        self._events = deque(maxlen=maxlen)

    def emit(self, level: str, message: str) -> None:
        level = level if level in _LEVELS else "info"
        self._events.append(StatusEvent(
            timestamp = datetime.now(timezone.utc).isoformat(),
            level     = level,
            message   = message,
        ))
        logger.log(_LEVELS[level], message)

    def info(self, message: str) -> None:
        self.emit("info", message)

    def warning(self, message: str) -> None:
        self.emit("warning", message)

    def error(self, message: str) -> None:
        self.emit("error", message)

    def recent(self, limit: Optional[int] = None) -> List[StatusEvent]:
        events = list(self._events)
        return events[-limit:] if limit else events

    def __len__(self):
        return len(self._events)
