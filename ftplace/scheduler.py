"""
ftplace — scheduler.py
─────────────────────────────────────────────────────────────────
Scheduler — builds every component from cfg and owns their tasks.

    Scheduler
      ├─ CredentialStore ← env tokens, else ~/.ftplace_tokens.json
      ├─ PlacementGateway (httpx)
      ├─ TokenRefreshCoordinator
      ├─ BoardRefresher      task: run(stop)
      ├─ CooldownTracker
      ├─ QueueStore (sqlite)
      ├─ PlacementWorker     task: run(stop)
      └─ CompletionValidator task: run(stop)   (VALIDATION_INTERVAL > 0)

One explicit stop Event is shared by all tasks.

Usage:
    scheduler = Scheduler()
    await scheduler.start()
    ...
    await scheduler.stop()
─────────────────────────────────────────────────────────────────
"""

import asyncio
import logging
from typing import List, Optional, Tuple

from ftplace.board_refresher import BoardRefresher
from ftplace.cooldown import CooldownTracker
from ftplace.core.config import cfg
from ftplace.credentials import CredentialState, CredentialStore, TokenStore
from ftplace.gateway import PlacementGateway
from ftplace.models.art import PixelArt
from ftplace.models.queue_item import QueueItem
from ftplace.queue_store import QueueStore, SqliteQueuePersistence
from ftplace.status import StatusLog
from ftplace.token_refresh import TokenRefreshCoordinator
from ftplace.validator import CompletionValidator
from ftplace.worker import PlacementWorker, RetryPolicy

logger = logging.getLogger("ftplace.scheduler")


def initial_credentials(token_store: TokenStore) -> Optional[CredentialState]:
    """Tokens from the environment win over the saved file."""
    if cfg.has_tokens:
        return CredentialState(
            access_token  = cfg.ACCESS_TOKEN,
            refresh_token = cfg.REFRESH_TOKEN or None,
            base_url      = cfg.BASE_URL,
        )
    saved = token_store.load()
    if saved is not None:
        logger.info(f"Loaded saved tokens from {token_store.path}")
    return saved


class Scheduler:

    def __init__(
        self,
        store: Optional[QueueStore] = None,
        gateway: Optional[PlacementGateway] = None,
        credentials: Optional[CredentialStore] = None,
        token_store: Optional[TokenStore] = None,
        status: Optional[StatusLog] = None,
        validation_interval: float = cfg.VALIDATION_INTERVAL,
    ):
        self.status      = status if status is not None else StatusLog()
        self.token_store = token_store or TokenStore()
        self.credentials = credentials or CredentialStore(initial_credentials(self.token_store))
        self.gateway     = gateway or PlacementGateway()
        self.store       = store or QueueStore(SqliteQueuePersistence(cfg.DB_PATH))
        self.cooldown    = CooldownTracker()

        self.coordinator = TokenRefreshCoordinator(
            credentials = self.credentials,
            gateway     = self.gateway,
            token_store = self.token_store,
            status      = self.status,
        )
        self.board = BoardRefresher(
            gateway     = self.gateway,
            coordinator = self.coordinator,
            status      = self.status,
        )
        self.worker = PlacementWorker(
            store       = self.store,
            board       = self.board,
            cooldown    = self.cooldown,
            coordinator = self.coordinator,
            status      = self.status,
            retry       = RetryPolicy(),
        )
        self.validator = CompletionValidator(
            store    = self.store,
            board    = self.board,
            interval = validation_interval,
            status   = self.status,
        )
        self.validation_interval = validation_interval

        self._stop = asyncio.Event()
        self._tasks: List[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return bool(self._tasks) and not self._stop.is_set()

    # ─────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────
    async def start(self) -> None:
        if self._tasks:
            return
        await self.store.load()
        self._stop = asyncio.Event()

        if not self.credentials.has_credentials:
            self.status.warning(
                "No tokens configured — set FTPLACE_ACCESS_TOKEN / FTPLACE_REFRESH_TOKEN "
                "or PUT /api/auth/tokens"
            )

        self._tasks = [
            asyncio.create_task(self.board.run(self._stop),  name="board-refresher"),
            asyncio.create_task(self.worker.run(self._stop), name="placement-worker"),
        ]
        if self.validation_interval > 0:
            self._tasks.append(
                asyncio.create_task(self.validator.run(self._stop), name="completion-validator")
            )
        logger.info(f"✓ Scheduler started ({len(self._tasks)} tasks)")

    async def stop(self, timeout: float = 10.0) -> None:
        """Signal stop, let tasks reach a boundary, cancel anything still stuck."""
        if not self._tasks:
            return
        self._stop.set()
        tasks, self._tasks = self._tasks, []

        done, pending = await asyncio.wait(tasks, timeout=timeout)
        for task in pending:
            task.cancel()
        results = await asyncio.gather(*tasks, return_exceptions=True)
        for task, result in zip(tasks, results):
            if isinstance(result, Exception):
                logger.error(f"Task {task.get_name()} ended with error: {result}")
        logger.info("Scheduler stopped")

    # ─────────────────────────────────────────────
    # Operations used by the control API
    # ─────────────────────────────────────────────
    async def enqueue(self, art: PixelArt, anchor: Tuple[int, int], priority: int = 3) -> QueueItem:
        item = await self.store.add(art, anchor, priority)
        self.status.info(f"➕ Queued '{item.name}' at {item.anchor} (priority {item.priority})")
        return item

    def set_tokens(
        self,
        access_token: str,
        refresh_token: Optional[str] = None,
        base_url: Optional[str] = None,
    ) -> CredentialState:
        """Explicit re-login: replaces credentials and clears the re-auth flag."""
        current = self.credentials.snapshot()
        state = CredentialState(
            access_token  = access_token,
            refresh_token = refresh_token or (current.refresh_token if current else None),
            base_url      = base_url or (current.base_url if current else cfg.BASE_URL),
        )
        self.credentials.replace(state)
        try:
            self.token_store.save(state)
        except OSError as e:
            logger.error(f"Could not persist tokens: {e}")
        self.status.info("🔑 Credentials updated")
        return state

    def status_report(self) -> dict:
        creds = self.credentials.snapshot()
        board = self.board.snapshot
        age   = self.board.age()
        return {
            "running":  self.running,
            "worker":   self.worker.snapshot(),
            "charges":  self.cooldown.snapshot(),
            "queue":    self.store.stats(),
            "board": {
                "loaded":      board is not None,
                "width":       board.width if board else None,
                "height":      board.height if board else None,
                "age_seconds": round(age, 1) if age is not None else None,
                "failures":    self.board.failures,
            },
            "auth": {
                "has_credentials": self.credentials.has_credentials,
                "needs_reauth":    self.credentials.needs_reauth,
                "refresh_count":   self.coordinator.refresh_count,
                "base_url":        creds.base_url if creds else cfg.BASE_URL,
            },
        }
