"""
ftplace — models/queue_item.py
─────────────────────────────────────────────────────────────────
Queue item dataclass + status enum + row mapping.
No scheduling logic here, only structure.
─────────────────────────────────────────────────────────────────
"""

import json
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Tuple

from ftplace.models.art import PixelArt

PRIORITY_HIGHEST = 1
PRIORITY_LOWEST  = 5


# ─────────────────────────────────────────────
# Enums
# ─────────────────────────────────────────────
class QueueStatus(str, Enum):
    PENDING   = "pending"
    ACTIVE    = "active"
    PAUSED    = "paused"
    COMPLETED = "completed"
    FAILED    = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = (QueueStatus.COMPLETED, QueueStatus.FAILED, QueueStatus.CANCELLED)


# ─────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────
def _now() -> str:
    return datetime.now(timezone.utc).isoformat()

def new_item_id() -> str:
    return "art_" + secrets.token_urlsafe(9)


# ─────────────────────────────────────────────
# Dataclass
# ─────────────────────────────────────────────
@dataclass
class QueueItem:
    id:            str
    art:           PixelArt
    anchor_x:      int
    anchor_y:      int
    priority:      int                  # 1 = highest .. 5 = lowest
    status:        QueueStatus = QueueStatus.PENDING
    pixels_placed: int = 0
    pixels_total:  int = 0
    fail_reason:   Optional[str] = None
    created_at:    str = ""
    started_at:    Optional[str] = None
    finished_at:   Optional[str] = None

    def __post_init__(self):
        if not self.created_at:
            self.created_at = _now()

    @property
    def anchor(self) -> Tuple[int, int]:
        return (self.anchor_x, self.anchor_y)

    @property
    def progress(self) -> Tuple[int, int]:
        return (self.pixels_placed, self.pixels_total)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_pending(self) -> bool:
        return self.status == QueueStatus.PENDING

    @property
    def name(self) -> str:
        return self.art.name

    def copy(self) -> "QueueItem":
        """Detached copy for readers. The art model is shared (never mutated)."""
        return QueueItem(**{k: getattr(self, k) for k in self.__dataclass_fields__})

    # ─── Row mapping ───────────────────────────

    def to_row(self, position: int) -> tuple:
        return (
            self.id, position, self.art.model_dump_json(),
            self.anchor_x, self.anchor_y, self.priority, self.status.value,
            self.pixels_placed, self.pixels_total, self.fail_reason,
            self.created_at, self.started_at, self.finished_at,
        )

    @classmethod
    def from_row(cls, row) -> "QueueItem":
        return cls(
            id            = row["id"],
            art           = PixelArt.model_validate(json.loads(row["art"])),
            anchor_x      = int(row["anchor_x"]),
            anchor_y      = int(row["anchor_y"]),
            priority      = int(row["priority"]),
            status        = QueueStatus(row["status"]),
            pixels_placed = int(row["pixels_placed"]),
            pixels_total  = int(row["pixels_total"]),
            fail_reason   = row["fail_reason"],
            created_at    = row["created_at"],
            started_at    = row["started_at"],
            finished_at   = row["finished_at"],
        )

    def to_dict(self) -> dict:
        return {
            "id":            self.id,
            "name":          self.art.name,
            "anchor":        [self.anchor_x, self.anchor_y],
            "priority":      self.priority,
            "status":        self.status.value,
            "pixels_placed": self.pixels_placed,
            "pixels_total":  self.pixels_total,
            "fail_reason":   self.fail_reason,
            "created_at":    self.created_at,
            "started_at":    self.started_at,
            "finished_at":   self.finished_at,
        }
