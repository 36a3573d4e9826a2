"""Pytest fixtures for ftplace tests."""

import asyncio
import time
from collections import deque
from dataclasses import replace
from types import SimpleNamespace

import pytest

from ftplace.board_refresher import BoardRefresher
from ftplace.cooldown import ChargeInfo, CooldownTracker
from ftplace.credentials import CredentialState, CredentialStore
from ftplace.gateway import ErrorKind, GatewayResult, ProfileInfo, TokenPair
from ftplace.models.art import PixelArt
from ftplace.models.board import BoardSnapshot, ColorInfo
from ftplace.queue_store import MemoryQueuePersistence, QueueStore
from ftplace.status import StatusLog
from ftplace.token_refresh import TokenRefreshCoordinator
from ftplace.worker import PlacementWorker, RetryPolicy

BASE_URL = "http://canvas.test"

PALETTE = (
    ColorInfo(0, "transparent"),
    ColorInfo(1, "white", 255, 255, 255),
    ColorInfo(2, "red", 255, 0, 0),
    ColorInfo(3, "blue", 0, 0, 255),
)


def make_board(width=16, height=16, fill=1, pixels=None, captured_at=None) -> BoardSnapshot:
    board = BoardSnapshot.blank(
        width, height, fill=fill, palette=PALETTE,
        captured_at=time.time() if captured_at is None else captured_at,
    )
    return board.with_pixels(pixels or {})


class FakeGateway:
    """In-memory canvas server. Unscripted calls behave like a healthy server."""

    OPERATIONS = ("get_board", "get_profile", "place_pixel", "refresh_tokens")

    def __init__(self, board=None, charges=100, max_charges=None, recharge=1000.0):
        self.board       = board or make_board()
        self.charges     = charges
        self.max_charges = max_charges if max_charges is not None else max(charges, 1)
        self.recharge    = recharge
        self.scripted    = {name: deque() for name in self.OPERATIONS}
        self.calls       = []
        self.placed      = []
        self.refreshes   = 0
        self.refresh_delay = 0.0

    def script(self, operation, *results):
        self.scripted[operation].extend(results)

    def calls_to(self, operation):
        return [c for c in self.calls if c[0] == operation]

    def _charge_info(self) -> ChargeInfo:
        next_at = None if self.charges >= self.max_charges else time.time() + self.recharge
        return ChargeInfo(self.charges, self.max_charges, next_at)

    def _next(self, operation, creds, *args):
        self.calls.append((operation, creds.access_token) + args)
        queue = self.scripted[operation]
        return queue.popleft() if queue else None

    async def get_board(self, creds):
        await asyncio.sleep(0)
        result = self._next("get_board", creds)
        if result is not None:
            return result
        return GatewayResult(ErrorKind.OK, value=replace(self.board, captured_at=time.time()),
                             status_code=200)

    async def get_profile(self, creds):
        await asyncio.sleep(0)
        result = self._next("get_profile", creds)
        if result is not None:
            return result
        charges = self._charge_info()
        return GatewayResult(ErrorKind.OK, value=ProfileInfo("tester", charges),
                             charges=charges, status_code=200)

    async def place_pixel(self, creds, x, y, color):
        await asyncio.sleep(0)
        result = self._next("place_pixel", creds, x, y, color)
        if result is not None:
            return result
        if self.charges <= 0:
            return GatewayResult(
                ErrorKind.RATE_LIMITED,
                charges     = ChargeInfo(0, None, time.time() + self.recharge),
                status_code = 425,
            )
        self.charges -= 1
        self.board = self.board.with_pixels({(x, y): color})
        self.placed.append((x, y, color))
        return GatewayResult(ErrorKind.OK, value=(x, y, color), charges=self._charge_info(),
                             status_code=200)

    async def refresh_tokens(self, creds):
        self.calls.append(("refresh_tokens", creds.access_token))
        self.refreshes += 1
        await asyncio.sleep(self.refresh_delay)
        queue = self.scripted["refresh_tokens"]
        if queue:
            return queue.popleft()
        return GatewayResult(
            ErrorKind.OK,
            value       = TokenPair(f"access-{self.refreshes}", f"refresh-{self.refreshes}"),
            status_code = 200,
        )


async def wait_until(predicate, timeout=3.0, interval=0.005):
    """Poll `predicate` on the running loop until true."""
    loop     = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(interval)


def build_rig(
    gateway=None,
    items=None,
    retry=None,
    max_cooldown_sleep=5.0,
    board_max_age=60.0,
    fallback_wait=5.0,
    access_token="access-0",
    refresh_token="refresh-0",
):
    """Worker + collaborators wired the way the Scheduler does it, with test timings."""
    gateway     = gateway or FakeGateway()
    status      = StatusLog()
    credentials = CredentialStore(CredentialState(access_token, refresh_token, base_url=BASE_URL))
    coordinator = TokenRefreshCoordinator(credentials, gateway, status=status)
    board       = BoardRefresher(gateway, coordinator, interval=60, status=status)
    store       = QueueStore(MemoryQueuePersistence(items))
    cooldown    = CooldownTracker(fallback_wait=fallback_wait)
    worker      = PlacementWorker(
        store, board, cooldown, coordinator,
        status             = status,
        retry              = retry or RetryPolicy(max_attempts=3, base_delay=0.001, max_delay=0.01),
        board_max_age      = board_max_age,
        max_cooldown_sleep = max_cooldown_sleep,
        place_delay        = 0,
        poll_interval      = 0.01,
    )
    return SimpleNamespace(
        gateway     = gateway,
        status      = status,
        credentials = credentials,
        coordinator = coordinator,
        board       = board,
        store       = store,
        cooldown    = cooldown,
        worker      = worker,
    )


@pytest.fixture
def board_factory():
    return make_board


@pytest.fixture
def fake_gateway_cls():
    return FakeGateway


@pytest.fixture
def rig_factory():
    return build_rig


@pytest.fixture
def eventually():
    return wait_until


@pytest.fixture
def art():
    """Three-pixel art: red, blue, red on one row."""
    return PixelArt.from_tuples([(0, 0, 2), (1, 0, 3), (2, 0, 2)], name="stripe")
