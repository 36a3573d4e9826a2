"""
ftplace — board_refresher.py
─────────────────────────────────────────────────────────────────
BoardRefresher — keeps the shared BoardSnapshot slot current.

  - fixed interval (default 10s), independent of placement
  - new snapshot is swapped in whole; readers never see a partial grid
  - fetch failure keeps the previous snapshot, logs, and moves on
  - get_fresh() lets the worker force a fetch when the cache is stale
─────────────────────────────────────────────────────────────────
"""

import asyncio
import logging
import time
from typing import Callable, Optional

from ftplace.core.config import cfg
from ftplace.gateway import PlacementGateway
from ftplace.models.board import BoardSnapshot
from ftplace.status import StatusLog
from ftplace.token_refresh import AuthFatalError, TokenRefreshCoordinator

logger = logging.getLogger("ftplace.board")


class BoardRefresher:

    def __init__(
        self,
        gateway: PlacementGateway,
        coordinator: TokenRefreshCoordinator,
        interval: float = cfg.BOARD_REFRESH_INTERVAL,
        status: Optional[StatusLog] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.gateway     = gateway
        self.coordinator = coordinator
        self.interval    = interval
        self.status      = status
        self._clock      = clock
        self._snapshot: Optional[BoardSnapshot] = None
        self.failures    = 0

    @property
    def snapshot(self) -> Optional[BoardSnapshot]:
        return self._snapshot

    def age(self) -> Optional[float]:
        if self._snapshot is None:
            return None
        return self._clock() - self._snapshot.captured_at

    def is_stale(self, max_age: float) -> bool:
        age = self.age()
        return age is None or age > max_age

    def publish(self, snapshot: BoardSnapshot) -> None:
        """Atomic swap. An older capture never replaces a newer one."""
        current = self._snapshot
        if current is not None and snapshot.captured_at < current.captured_at:
            return
        self._snapshot = snapshot

    async def refresh(self) -> Optional[BoardSnapshot]:
        """Fetch once. Returns the snapshot in the slot afterwards (maybe the old one)."""
        try:
            result = await self.coordinator.call(self.gateway.get_board)
        except AuthFatalError as e:
            self.failures += 1
            logger.warning(f"Board refresh skipped: {e}")
            return self._snapshot

        if not result.ok:
            self.failures += 1
            logger.warning(f"Board refresh failed ({result.describe()}), keeping previous snapshot")
            return self._snapshot

        first = self._snapshot is None
        self.publish(result.value)
        self.failures = 0
        if first and self.status is not None:
            board = result.value
            self.status.info(f"Board loaded: {board.width}x{board.height}, {len(board.palette)} colors")
        return self._snapshot

    async def get_fresh(self, max_age: float = cfg.BOARD_MAX_AGE) -> Optional[BoardSnapshot]:
        if self.is_stale(max_age):
            return await self.refresh()
        return self._snapshot

    async def run(self, stop: asyncio.Event) -> None:
        logger.info(f"Board refresher started (every {self.interval}s)")
        while not stop.is_set():
            try:
                await self.refresh()
            except Exception as e:
                self.failures += 1
                logger.error(f"Board refresh crashed: {e}", exc_info=True)
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass
        logger.info("Board refresher stopped")
