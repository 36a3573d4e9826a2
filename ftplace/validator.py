"""
ftplace — validator.py
─────────────────────────────────────────────────────────────────
CompletionValidator — periodic re-check of COMPLETED arts.

Other players keep drawing. Every `interval` seconds each completed
item is diffed against the latest board; if any target pixel was
overwritten the item goes back to PENDING (progress reset) and the
worker repairs it like any other item.
─────────────────────────────────────────────────────────────────
"""

import asyncio
import logging
from typing import List, Optional

from ftplace.board_refresher import BoardRefresher
from ftplace.core.config import cfg
from ftplace.diff import compute_diff
from ftplace.models.queue_item import QueueStatus
from ftplace.queue_store import QueueError, QueueStore
from ftplace.status import StatusLog

logger = logging.getLogger("ftplace.validator")


class CompletionValidator:

    def __init__(
        self,
        store: QueueStore,
        board: BoardRefresher,
        interval: float = cfg.VALIDATION_INTERVAL,
        status: Optional[StatusLog] = None,
        board_max_age: float = cfg.BOARD_MAX_AGE,
    ):
        self.store         = store
        self.board         = board
        self.interval      = interval
        self.status        = status
        self.board_max_age = board_max_age

    async def validate_once(self) -> List[str]:
        """Requeue every completed item whose pixels were overwritten. Returns their ids."""
        completed = [i for i in self.store.items() if i.status == QueueStatus.COMPLETED]
        if not completed:
            return []

        board = await self.board.get_fresh(self.board_max_age)
        if board is None:
            logger.info("Validation skipped: no board snapshot available")
            return []

        requeued = []
        for item in completed:
            damaged = len(compute_diff(item.art, item.anchor, board))
            if not damaged:
                continue
            try:
                await self.store.requeue(item.id, f"{damaged} pixels overwritten")
            except QueueError as e:
                # Removed or changed by the user since the snapshot above
                logger.debug(f"Could not requeue {item.id}: {e}")
                continue
            requeued.append(item.id)
            if self.status is not None:
                self.status.warning(f"🔧 '{item.name}' damaged ({damaged} pixels), requeued for repair")

        logger.info(f"Validated {len(completed)} completed items, {len(requeued)} requeued")
        return requeued

    async def run(self, stop: asyncio.Event) -> None:
        logger.info(f"Completion validator started (every {self.interval}s)")
        while not stop.is_set():
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass
            if stop.is_set():
                break
            try:
                await self.validate_once()
            except Exception as e:
                logger.error(f"Validation pass failed: {e}", exc_info=True)
        logger.info("Completion validator stopped")
