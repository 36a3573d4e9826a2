"""
ftplace — queue_store.py
─────────────────────────────────────────────────────────────────
Art placement queue
- Priority 1 (highest) .. 5 (lowest), FIFO within a priority
- Status tracking (pending → active → completed / failed / ...)
- Exactly ONE active item (one shared pixel buffer)
- Progress per item, never moving backwards while active
- Persisted after every transition (aiosqlite)

Usage:
    store = QueueStore(SqliteQueuePersistence(db_path))
    await store.load()
    item = await store.add(art, (10, 10), priority=2)
    item = await store.activate(item.id)
    await store.update_progress(item.id, 4, 20)
    await store.complete(item.id)
─────────────────────────────────────────────────────────────────
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence, Tuple

from ftplace.core.database import get_db, init_queue_tables
from ftplace.models.art import PixelArt
from ftplace.models.queue_item import (
    PRIORITY_HIGHEST,
    PRIORITY_LOWEST,
    QueueItem,
    QueueStatus,
    new_item_id,
)

logger = logging.getLogger("ftplace.queue")


# ─────────────────────────────────────────────
# Exceptions
# ─────────────────────────────────────────────
class QueueError(Exception):
    """Base queue exception."""

class QueueItemNotFoundError(QueueError):
    """Item ID does not exist."""

class InvalidPriorityError(QueueError):
    """Priority outside 1..5."""

class InvalidTransitionError(QueueError):
    """Status change not allowed from the item's current status."""

class QueueItemAlreadyActiveError(QueueError):
    """Another item already holds the pixel buffer."""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _check_priority(priority: int) -> int:
    if not isinstance(priority, int) or not PRIORITY_HIGHEST <= priority <= PRIORITY_LOWEST:
        raise InvalidPriorityError(
            f"Priority must be {PRIORITY_HIGHEST}..{PRIORITY_LOWEST}, got {priority!r}"
        )
    return priority


# ─────────────────────────────────────────────
# Persistence collaborator
# ─────────────────────────────────────────────
class SqliteQueuePersistence:
    """Durable slot for the whole queue: load() / save(items)."""

    def __init__(self, db_path: str = None):
        self.db_path = db_path
        self._ready  = False

    async def _ensure_tables(self):
        if not self._ready:
            await init_queue_tables(self.db_path)
            self._ready = True

    async def load(self) -> List[QueueItem]:
        await self._ensure_tables()
        async with get_db(self.db_path) as db:
            async with db.execute("SELECT * FROM queue_items ORDER BY position ASC") as cur:
                rows = await cur.fetchall()
        return [QueueItem.from_row(r) for r in rows]

    async def save(self, items: Sequence[QueueItem]) -> None:
        await self._ensure_tables()
        async with get_db(self.db_path) as db:
            await db.execute("DELETE FROM queue_items")
            await db.executemany(
                """INSERT INTO queue_items
                   (id, position, art, anchor_x, anchor_y, priority, status,
                    pixels_placed, pixels_total, fail_reason,
                    created_at, started_at, finished_at)
                   VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?)""",
                [item.to_row(i) for i, item in enumerate(items)],
            )
            await db.commit()


class MemoryQueuePersistence:
    """In-process slot for tests and --no-persist runs."""

    def __init__(self, items: Optional[Sequence[QueueItem]] = None):
        self.saved: List[QueueItem] = [i.copy() for i in items or []]
        self.save_count = 0

    async def load(self) -> List[QueueItem]:
        return [i.copy() for i in self.saved]

    async def save(self, items: Sequence[QueueItem]) -> None:
        self.saved = [i.copy() for i in items]
        self.save_count += 1


# ─────────────────────────────────────────────
# QueueStore
# ─────────────────────────────────────────────
class QueueStore:
    """
    In-memory queue (insertion order) + persistence after each change.
    State is mutated synchronously, then persisted, so two coroutines
    never interleave inside a single transition.
    """

    def __init__(self, persistence=None):
        self.persistence = persistence or MemoryQueuePersistence()
        self._items: List[QueueItem] = []
        self._index: Dict[str, QueueItem] = {}
        self._save_lock = asyncio.Lock()
        self._changed = asyncio.Event()

    # ─── Load / persist ────────────────────────

    async def load(self) -> List[QueueItem]:
        """
        Restore the queue. An item left ACTIVE by a crash goes back to
        PENDING so the worker picks it up again.
        """
        items = await self.persistence.load()
        self._items = list(items)
        self._index = {i.id: i for i in self._items}

        resumed = 0
        for item in self._items:
            if item.status == QueueStatus.ACTIVE:
                item.status = QueueStatus.PENDING
                resumed += 1

        pending = sum(1 for i in self._items if i.is_pending)
        logger.info(f"Queue loaded: {len(self._items)} items ({pending} pending, {resumed} resumed)")
        if resumed:
            await self._persist()
        return self.items()

    async def _persist(self) -> None:
        # Snapshot taken inside the lock → the last write always holds the latest state
        async with self._save_lock:
            await self.persistence.save([i.copy() for i in self._items])

    def _notify(self) -> None:
        changed, self._changed = self._changed, asyncio.Event()
        changed.set()

    def changed(self) -> asyncio.Event:
        """Event set on the next mutation. Fetch a new one after it fires."""
        return self._changed

    async def _commit(self, item: Optional[QueueItem] = None) -> Optional[QueueItem]:
        self._notify()
        await self._persist()
        return item.copy() if item else None

    # ─── Read ──────────────────────────────────

    def _get(self, item_id: str) -> QueueItem:
        item = self._index.get(item_id)
        if item is None:
            raise QueueItemNotFoundError(f"Queue item '{item_id}' not found.")
        return item

    def get(self, item_id: str) -> QueueItem:
        return self._get(item_id).copy()

    def status_of(self, item_id: str) -> Optional[QueueStatus]:
        item = self._index.get(item_id)
        return item.status if item else None

    def items(self) -> List[QueueItem]:
        """Stable snapshot in selection order: priority ASC, created_at ASC."""
        ordered = sorted(self._items, key=lambda i: (i.priority, i.created_at))
        return [i.copy() for i in ordered]

    def active(self) -> Optional[QueueItem]:
        for item in self._items:
            if item.status == QueueStatus.ACTIVE:
                return item.copy()
        return None

    def next_pending(self) -> Optional[QueueItem]:
        for item in self.items():
            if item.is_pending:
                return item
        return None

    def position_of(self, item_id: str) -> int:
        """Pending items ahead of this one. -1 when not pending."""
        item = self._get(item_id)
        if not item.is_pending:
            return -1
        ahead = 0
        for other in self.items():
            if other.id == item_id:
                break
            if other.is_pending:
                ahead += 1
        return ahead

    def stats(self) -> Dict[str, int]:
        counts = {s.value: 0 for s in QueueStatus}
        for item in self._items:
            counts[item.status.value] += 1
        counts["total"] = len(self._items)
        return counts

    def __len__(self):
        return len(self._items)

    # ─── Create ────────────────────────────────

    async def add(self, art: PixelArt, anchor: Tuple[int, int], priority: int = 3) -> QueueItem:
        item = QueueItem(
            id       = new_item_id(),
            art      = art,
            anchor_x = int(anchor[0]),
            anchor_y = int(anchor[1]),
            priority = _check_priority(priority),
        )
        self._items.append(item)
        self._index[item.id] = item
        logger.info(f"📥 Queued '{art.name}' ({item.id}) at {item.anchor} | priority={priority}")
        return await self._commit(item)

    # ─── Lifecycle ─────────────────────────────

    async def activate(self, item_id: str) -> QueueItem:
        """PENDING → ACTIVE. Refuses while another item is active."""
        item = self._get(item_id)
        if item.status != QueueStatus.PENDING:
            raise InvalidTransitionError(f"Cannot activate {item_id}: it is {item.status.value}.")

        current = self.active()
        if current is not None:
            raise QueueItemAlreadyActiveError(f"{current.id} is already active.")

        item.status      = QueueStatus.ACTIVE
        item.started_at  = item.started_at or _now()
        item.fail_reason = None
        logger.info(f"▶️  Activated '{item.name}' ({item_id})")
        return await self._commit(item)

    async def update_progress(self, item_id: str, pixels_placed: int, pixels_total: int) -> bool:
        """
        Only applies while ACTIVE (a late result for a cancelled item is dropped).
        pixels_placed never decreases and never exceeds pixels_total.
        """
        item = self._get(item_id)
        if item.status != QueueStatus.ACTIVE:
            return False

        total  = max(0, int(pixels_total))
        placed = min(max(item.pixels_placed, int(pixels_placed)), total)
        if (placed, total) == item.progress:
            return True

        item.pixels_total  = total
        item.pixels_placed = placed
        await self._commit()
        return True

    async def complete(self, item_id: str) -> QueueItem:
        item = self._get(item_id)
        if item.status != QueueStatus.ACTIVE:
            raise InvalidTransitionError(f"Cannot complete {item_id}: it is {item.status.value}.")

        item.status        = QueueStatus.COMPLETED
        item.pixels_placed = item.pixels_total
        item.finished_at   = _now()
        logger.info(f"✅ Completed '{item.name}' ({item_id}) {item.pixels_placed}/{item.pixels_total}")
        return await self._commit(item)

    async def fail(self, item_id: str, reason: str) -> QueueItem:
        item = self._get(item_id)
        if item.is_terminal:
            raise InvalidTransitionError(f"Cannot fail {item_id}: it is {item.status.value}.")

        item.status      = QueueStatus.FAILED
        item.fail_reason = reason
        item.finished_at = _now()
        logger.warning(f"❌ Failed '{item.name}' ({item_id}): {reason}")
        return await self._commit(item)

    async def pause(self, item_id: str) -> QueueItem:
        item = self._get(item_id)
        if item.status not in (QueueStatus.PENDING, QueueStatus.ACTIVE):
            raise InvalidTransitionError(f"Cannot pause {item_id}: it is {item.status.value}.")

        item.status = QueueStatus.PAUSED
        logger.info(f"⏸️  Paused '{item.name}' ({item_id}) at {item.pixels_placed}/{item.pixels_total}")
        return await self._commit(item)

    async def resume(self, item_id: str) -> QueueItem:
        item = self._get(item_id)
        if item.status != QueueStatus.PAUSED:
            raise InvalidTransitionError(f"Cannot resume {item_id}: it is {item.status.value}.")

        item.status = QueueStatus.PENDING
        logger.info(f"Resumed '{item.name}' ({item_id})")
        return await self._commit(item)

    async def release(self, item_id: str) -> Optional[QueueItem]:
        """ACTIVE → PENDING without touching progress (worker shutdown)."""
        item = self._get(item_id)
        if item.status != QueueStatus.ACTIVE:
            return None
        item.status = QueueStatus.PENDING
        logger.info(f"Released '{item.name}' ({item_id}) back to pending")
        return await self._commit(item)

    async def cancel(self, item_id: str) -> QueueItem:
        """
        Any non-terminal status → CANCELLED. Progress is kept as-is; the
        worker notices at its next state boundary.
        """
        item = self._get(item_id)
        if item.is_terminal:
            raise InvalidTransitionError(f"Cannot cancel {item_id}: it is {item.status.value}.")

        item.status      = QueueStatus.CANCELLED
        item.finished_at = _now()
        logger.info(f"🛑 Cancelled '{item.name}' ({item_id}) at {item.pixels_placed}/{item.pixels_total}")
        return await self._commit(item)

    async def cancel_all(self) -> int:
        cancelled = 0
        for item in self._items:
            if not item.is_terminal:
                item.status      = QueueStatus.CANCELLED
                item.finished_at = _now()
                cancelled += 1
        if cancelled:
            logger.info(f"🛑 Cancelled {cancelled} queue items")
            await self._commit()
        return cancelled

    async def retry(self, item_id: str) -> QueueItem:
        """FAILED / CANCELLED → PENDING (user asked to try again)."""
        item = self._get(item_id)
        if item.status not in (QueueStatus.FAILED, QueueStatus.CANCELLED):
            raise InvalidTransitionError(f"Cannot retry {item_id}: it is {item.status.value}.")

        item.status      = QueueStatus.PENDING
        item.fail_reason = None
        item.finished_at = None
        return await self._commit(item)

    async def requeue(self, item_id: str, reason: str = "") -> QueueItem:
        """COMPLETED → PENDING (art was overwritten on the board)."""
        item = self._get(item_id)
        if item.status != QueueStatus.COMPLETED:
            raise InvalidTransitionError(f"Cannot requeue {item_id}: it is {item.status.value}.")

        item.status        = QueueStatus.PENDING
        item.pixels_placed = 0
        item.finished_at   = None
        logger.info(f"🔁 Requeued '{item.name}' ({item_id}) {reason}".rstrip())
        return await self._commit(item)

    async def set_priority(self, item_id: str, priority: int) -> QueueItem:
        item = self._get(item_id)
        item.priority = _check_priority(priority)
        return await self._commit(item)

    async def remove(self, item_id: str) -> None:
        """Only terminal items leave the queue; failures stay until acknowledged."""
        item = self._get(item_id)
        if not item.is_terminal:
            raise InvalidTransitionError(
                f"Cannot remove {item_id} while {item.status.value}; cancel it first."
            )
        self._items.remove(item)
        del self._index[item_id]
        await self._commit()
