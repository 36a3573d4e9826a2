"""Tests for the BoardRefresher snapshot slot."""

import asyncio
import time

from ftplace.gateway import ErrorKind, GatewayResult


class TestBoardRefresher:

    def test_failure_keeps_previous_snapshot(self, rig_factory) -> None:
        async def scenario():
            rig   = rig_factory()
            first = await rig.board.refresh()
            rig.gateway.script("get_board", GatewayResult(ErrorKind.SERVER_ERROR, status_code=502))
            second = await rig.board.refresh()
            return first, second, rig.board.failures

        first, second, failures = asyncio.run(scenario())
        assert first is not None
        assert second is first
        assert failures == 1

    def test_older_capture_never_replaces_newer(self, rig_factory, board_factory) -> None:
        async def scenario():
            rig   = rig_factory()
            newer = board_factory(captured_at=time.time())
            older = board_factory(fill=2, captured_at=newer.captured_at - 10)
            rig.board.publish(newer)
            rig.board.publish(older)
            return rig.board.snapshot is newer

        assert asyncio.run(scenario())

    def test_get_fresh_fetches_only_when_stale(self, rig_factory) -> None:
        async def scenario():
            rig = rig_factory()
            await rig.board.get_fresh(max_age=60)
            await rig.board.get_fresh(max_age=60)
            cached = len(rig.gateway.calls_to("get_board"))
            await asyncio.sleep(0.01)
            await rig.board.get_fresh(max_age=0.001)
            return cached, len(rig.gateway.calls_to("get_board"))

        assert asyncio.run(scenario()) == (1, 2)

    def test_auth_expired_refreshes_tokens(self, rig_factory) -> None:
        async def scenario():
            rig = rig_factory()
            rig.gateway.script("get_board", GatewayResult(ErrorKind.AUTH_EXPIRED, status_code=426))
            snapshot = await rig.board.refresh()
            return snapshot, rig.gateway.refreshes

        snapshot, refreshes = asyncio.run(scenario())
        assert snapshot is not None
        assert refreshes == 1

    def test_run_stops_on_token(self, rig_factory) -> None:
        async def scenario():
            rig  = rig_factory()
            rig.board.interval = 0.01
            stop = asyncio.Event()
            task = asyncio.ensure_future(rig.board.run(stop))
            await asyncio.sleep(0.05)
            stop.set()
            await asyncio.wait_for(task, timeout=1.0)
            return len(rig.gateway.calls_to("get_board"))

        assert asyncio.run(scenario()) >= 2

    def test_run_survives_unexpected_error(self, rig_factory, eventually) -> None:
        async def scenario():
            rig      = rig_factory()
            original = rig.gateway.get_board
            crashed  = []

            async def flaky(creds):
                if not crashed:
                    crashed.append(True)
                    raise RuntimeError("boom")
                return await original(creds)

            rig.gateway.get_board = flaky
            rig.board.interval = 0.01
            stop = asyncio.Event()
            task = asyncio.ensure_future(rig.board.run(stop))
            await eventually(lambda: rig.board.snapshot is not None)
            alive = not task.done()
            stop.set()
            await asyncio.wait_for(task, timeout=1.0)
            return crashed, alive, rig.board.failures

        crashed, alive, failures = asyncio.run(scenario())
        assert crashed == [True]
        assert alive
        assert failures == 0
