"""
ftplace — worker.py
─────────────────────────────────────────────────────────────────
PlacementWorker — drains the queue one art at a time.

Per active item:

    ComputingDiff ──(empty)──────────────────────────→ COMPLETED
         │
         ▼
    AwaitingCharge ──(no charge)── sleep ≤ cap, re-observe ──┐
         │  ▲                                                │
         │  └────────────────────────────────────────────────┘
         ▼
      Placing ──success──→ back to ComputingDiff (board may have changed)
         ├─ 426        → single-flight refresh, same pixel once more (free)
         ├─ 425/429/420→ not a failure: back to AwaitingCharge
         ├─ net / 5xx  → exponential backoff, bounded; then skip pixel this pass
         ├─ other 4xx  → skip pixel this pass
         └─ 401/403 or refresh failure → item FAILED, wait for re-login

Pause / cancel / stop are checked at every state boundary and wake
any sleep early. A pass where not a single pixel could be written
fails the item with the last cause.
─────────────────────────────────────────────────────────────────
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Set, Tuple

from ftplace.board_refresher import BoardRefresher
from ftplace.cooldown import CooldownTracker
from ftplace.core.config import cfg
from ftplace.diff import PixelWrite, compute_diff, count_targets
from ftplace.gateway import WAIT_KINDS, ErrorKind, GatewayResult
from ftplace.models.board import BoardSnapshot
from ftplace.models.queue_item import QueueItem, QueueStatus
from ftplace.queue_store import QueueError, QueueStore
from ftplace.status import StatusLog
from ftplace.token_refresh import AuthFatalError, TokenRefreshCoordinator

logger = logging.getLogger("ftplace.worker")


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int   = cfg.MAX_PIXEL_RETRY
    base_delay:   float = cfg.RETRY_BASE_DELAY
    max_delay:    float = cfg.RETRY_MAX_DELAY
    factor:       float = 2.0

    def delay(self, attempt: int) -> float:
        """Backoff before retry number `attempt` (1-based)."""
        return min(self.max_delay, self.base_delay * self.factor ** max(0, attempt - 1))


class PlacementWorker:

    def __init__(
        self,
        store: QueueStore,
        board: BoardRefresher,
        cooldown: CooldownTracker,
        coordinator: TokenRefreshCoordinator,
        status: Optional[StatusLog] = None,
        retry: Optional[RetryPolicy] = None,
        board_max_age: float = cfg.BOARD_MAX_AGE,
        max_cooldown_sleep: float = cfg.MAX_COOLDOWN_SLEEP,
        place_delay: float = cfg.PLACE_DELAY,
        poll_interval: float = cfg.POLL_INTERVAL,
        clock: Callable[[], float] = time.time,
    ):
        self.store              = store
        self.board              = board
        self.cooldown           = cooldown
        self.coordinator        = coordinator
        self.gateway            = coordinator.gateway
        self.credentials        = coordinator.credentials
        self.status             = status if status is not None else StatusLog()
        self.retry              = retry or RetryPolicy()
        self.board_max_age      = board_max_age
        self.max_cooldown_sleep = max_cooldown_sleep
        self.place_delay        = place_delay
        self.poll_interval      = poll_interval
        self._clock             = clock

        self.current_item_id: Optional[str] = None
        self.state = "idle"
        self.pixels_written = 0

        self._paused = False
        self._held: Set[str] = set()     # items parked by a queue-wide pause
        self._control = asyncio.Event()
        self._stop: Optional[asyncio.Event] = None

    # ─────────────────────────────────────────────
    # Control
    # ─────────────────────────────────────────────
    @property
    def paused(self) -> bool:
        return self._paused

    def pause(self) -> None:
        """Queue-wide pause. The active item is parked as PAUSED at the next boundary."""
        self._paused = True
        self._wake()
        self.status.info("⏸️  Queue paused")

    async def resume(self) -> None:
        self._paused = False
        held, self._held = self._held, set()
        for item_id in held:
            if self.store.status_of(item_id) == QueueStatus.PAUSED:
                await self.store.resume(item_id)
        self._wake()
        self.status.info("▶️  Queue resumed")

    def _wake(self) -> None:
        control, self._control = self._control, asyncio.Event()
        control.set()

    def _interrupted(self, item_id: Optional[str] = None) -> bool:
        if self._stop is not None and self._stop.is_set():
            return True
        if item_id is None:
            return False
        return self._paused or self.store.status_of(item_id) != QueueStatus.ACTIVE

    async def _wait_any(self, timeout: float) -> None:
        """Sleep up to `timeout`, waking on queue change, pause/resume or stop."""
        events = [self._control, self.store.changed()]
        if self._stop is not None:
            events.append(self._stop)
        waiters = [asyncio.ensure_future(e.wait()) for e in events]
        try:
            await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for w in waiters:
                w.cancel()

    async def _sleep(self, seconds: float, item_id: Optional[str] = None) -> bool:
        """Interruptible sleep. False if the item/worker was interrupted meanwhile."""
        loop     = asyncio.get_running_loop()
        deadline = loop.time() + max(0.0, seconds)
        while True:
            if self._interrupted(item_id):
                return False
            remaining = deadline - loop.time()
            if remaining <= 0:
                return True
            await self._wait_any(remaining)

    # ─────────────────────────────────────────────
    # Main loop
    # ─────────────────────────────────────────────
    async def run(self, stop: asyncio.Event) -> None:
        self._stop = stop
        logger.info("🚀 Placement worker started — waiting for queue items...")
        reauth_announced = False

        while not stop.is_set():
            if self._paused:
                await self._wait_any(self.poll_interval)
                continue

            if self.credentials.needs_reauth or not self.credentials.has_credentials:
                if not reauth_announced:
                    self.status.warning("Waiting for valid credentials before placing pixels")
                    reauth_announced = True
                await self.credentials.wait_for_update(self.poll_interval)
                continue
            reauth_announced = False

            item = self.store.next_pending()
            if item is None:
                self.state = "idle"
                await self._wait_any(self.poll_interval)
                continue

            await self.process(item.id)
            await asyncio.sleep(0)

        self.state = "stopped"
        logger.info("Placement worker stopped")

    async def process(self, item_id: str) -> Optional[QueueStatus]:
        """Activate one item and drive it until terminal, paused or interrupted."""
        try:
            item = await self.store.activate(item_id)
        except QueueError as e:
            # Lost a race with a user cancel / another activation
            logger.debug(f"Skipping {item_id}: {e}")
            return self.store.status_of(item_id)

        self.current_item_id = item_id
        self.status.info(
            f"▶️  Placing '{item.name}' at {item.anchor} (priority {item.priority})"
        )

        try:
            await self._drive(item)
        except asyncio.CancelledError:
            # Hard shutdown: hand the item back so a restart resumes it
            await self.store.release(item_id)
            raise
        except AuthFatalError as e:
            self.credentials.mark_reauth_required()
            await self._fail(item_id, f"authentication failed: {e}")
        except Exception as e:
            logger.error(f"Item {item_id} crashed in worker: {e}", exc_info=True)
            await self._fail(item_id, f"unexpected error: {e}")
        finally:
            self.current_item_id = None
            self.state = "idle"

        if self.store.status_of(item_id) == QueueStatus.ACTIVE:
            if self._paused and not self._interrupted():
                await self.store.pause(item_id)
                self._held.add(item_id)
            else:
                await self.store.release(item_id)

        final = self.store.status_of(item_id)
        if final == QueueStatus.CANCELLED:
            self.status.info(f"🛑 '{item.name}' cancelled")
        return final

    async def _fail(self, item_id: str, reason: str) -> None:
        if self.store.status_of(item_id) == QueueStatus.ACTIVE:
            item = await self.store.fail(item_id, reason)
            self.status.error(f"❌ '{item.name}' failed: {reason}")

    # ─────────────────────────────────────────────
    # State machine
    # ─────────────────────────────────────────────
    def _board_view(
        self,
        board: BoardSnapshot,
        written: Dict[Tuple[int, int], Tuple[int, float]],
    ) -> BoardSnapshot:
        """Cached board + our own confirmed writes newer than the capture."""
        for coord, (_, written_at) in list(written.items()):
            if written_at <= board.captured_at:
                del written[coord]
        return board.with_pixels({coord: color for coord, (color, _) in written.items()})

    async def _drive(self, item: QueueItem) -> None:
        written: Dict[Tuple[int, int], Tuple[int, float]] = {}
        skipped: Dict[Tuple[int, int], str] = {}
        successes  = 0
        last_cause = ""

        while True:
            # ── ComputingDiff ─────────────────
            self.state = "computing_diff"
            if self._interrupted(item.id):
                return
            board = await self.board.get_fresh(self.board_max_age)
            if self._interrupted(item.id):
                return
            if board is None:
                if self.credentials.needs_reauth:
                    raise AuthFatalError("board unavailable, re-authentication required")
                logger.info("No board snapshot yet, waiting before diffing")
                if not await self._sleep(self.poll_interval, item.id):
                    return
                continue

            view  = self._board_view(board, written)
            total = count_targets(item.art, item.anchor, view)
            diff  = compute_diff(item.art, item.anchor, view)
            await self.store.update_progress(item.id, total - len(diff), total)

            if not diff:
                if self._interrupted(item.id):
                    return
                done = await self.store.complete(item.id)
                self.status.info(
                    f"✅ '{done.name}' complete: {done.pixels_placed}/{done.pixels_total} pixels"
                )
                return

            todo = [w for w in diff if (w.x, w.y) not in skipped]
            if not todo:
                if successes == 0:
                    await self._fail(
                        item.id,
                        f"no pixel could be placed in a full pass "
                        f"({len(skipped)} skipped, last error: {last_cause})",
                    )
                    return
                logger.info(f"New pass for {item.id}: {len(diff)} pixels left, {len(skipped)} retried")
                skipped.clear()
                successes = 0
                continue

            write = todo[0]

            # ── AwaitingCharge ────────────────
            if not await self._await_charge(item):
                return

            # ── Placing ───────────────────────
            result = await self._place(item, write)
            if result is None:
                return

            if result.ok:
                written[(write.x, write.y)] = (write.color, self._clock())
                successes += 1
                self.pixels_written += 1
                placed = total - len(diff) + 1
                self.status.info(
                    f"🎨 '{item.name}' ({write.x},{write.y}) color {write.color} — {placed}/{total}"
                )
                if not await self._sleep(self.place_delay, item.id):
                    return
            elif result.kind in WAIT_KINDS:
                continue
            else:
                skipped[(write.x, write.y)] = result.describe()
                last_cause = result.describe()

    async def _await_charge(self, item: QueueItem) -> bool:
        self.state = "awaiting_charge"
        while True:
            if self._interrupted(item.id):
                return False

            if self.cooldown.needs_observation():
                if not await self._observe_profile():
                    if not await self._sleep(self.retry.base_delay, item.id):
                        return False
                    continue
                if self._interrupted(item.id):
                    return False

            if self.cooldown.try_consume_charge():
                return True

            wait = min(self.cooldown.time_until_next_charge(), self.max_cooldown_sleep)
            if wait >= 1:
                self.status.info(f"⏳ Waiting {wait:.0f}s for a pixel charge ('{item.name}')")
            if not await self._sleep(wait, item.id):
                return False

    async def _observe_profile(self) -> bool:
        result = await self.coordinator.call(self.gateway.get_profile)
        if result.ok or result.kind in WAIT_KINDS:
            self._observe(result)
            return True
        if result.kind == ErrorKind.AUTH_FATAL:
            raise AuthFatalError(result.describe())
        logger.warning(f"Profile check failed: {result.describe()}")
        return False

    def _observe(self, result: GatewayResult) -> None:
        if result.charges is not None:
            self.cooldown.observe_info(result.charges)
        elif result.kind in WAIT_KINDS:
            # "Not now" without timers: assume empty, check again after the fallback wait
            self.cooldown.observe(0)

    async def _place(self, item: QueueItem, write: PixelWrite) -> Optional[GatewayResult]:
        """Place one pixel with bounded retry. None if interrupted (result discarded)."""
        self.state = "placing"
        attempt = 0
        while True:
            await self.coordinator.refresh_if_expiring()
            result = await self.coordinator.call(
                self.gateway.place_pixel, write.x, write.y, write.color,
            )
            self._observe(result)
            if self._interrupted(item.id):
                return None

            if result.ok:
                return result

            if result.kind == ErrorKind.AUTH_FATAL:
                raise AuthFatalError(result.describe())

            if result.kind == ErrorKind.EVENT_CLOSED:
                self.status.warning(f"Event not running, waiting: {result.message or result.status_code}")
                return result

            if result.kind == ErrorKind.RATE_LIMITED:
                logger.info(f"Rate limited at ({write.x},{write.y}), waiting for charge")
                return result

            if result.kind == ErrorKind.CLIENT_REJECTED:
                self.status.warning(
                    f"Pixel ({write.x},{write.y}) rejected for '{item.name}': {result.describe()}"
                )
                return result

            if not result.retryable:
                logger.warning(f"Unhandled result for ({write.x},{write.y}): {result.describe()}")
                return result

            attempt += 1
            if attempt >= self.retry.max_attempts:
                self.status.warning(
                    f"Skipping ({write.x},{write.y}) after {attempt} attempts: {result.describe()}"
                )
                return result

            delay = self.retry.delay(attempt)
            logger.info(
                f"Retry {attempt}/{self.retry.max_attempts} for ({write.x},{write.y}) "
                f"in {delay:.1f}s — {result.describe()}"
            )
            if not await self._sleep(delay, item.id):
                return None

    def snapshot(self) -> dict:
        return {
            "state":           self.state,
            "paused":          self._paused,
            "current_item_id": self.current_item_id,
            "pixels_written":  self.pixels_written,
        }
