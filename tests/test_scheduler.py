"""Tests for Scheduler wiring and lifecycle."""

import asyncio
from pathlib import Path

from ftplace.core.config import cfg
from ftplace.credentials import CredentialState, CredentialStore, TokenStore
from ftplace.models.art import PixelArt
from ftplace.models.queue_item import QueueStatus
from ftplace.queue_store import MemoryQueuePersistence, QueueStore
from ftplace.scheduler import Scheduler, initial_credentials


def _scheduler(tmp_path, gateway, items=None, validation_interval=0):
    return Scheduler(
        store               = QueueStore(MemoryQueuePersistence(items)),
        gateway             = gateway,
        credentials         = CredentialStore(CredentialState("acc", "ref", base_url="http://canvas.test")),
        token_store         = TokenStore(tmp_path / "tokens.json"),
        validation_interval = validation_interval,
    )


class TestLifecycle:

    def test_start_places_queued_art_and_stops(self, tmp_path: Path, fake_gateway_cls, eventually) -> None:
        async def scenario():
            gateway   = fake_gateway_cls()
            scheduler = _scheduler(tmp_path, gateway)
            await scheduler.start()
            item = await scheduler.enqueue(PixelArt.from_tuples([(0, 0, 2)], name="dot"), (1, 1), 2)
            await eventually(lambda: scheduler.store.status_of(item.id) == QueueStatus.COMPLETED)
            running = scheduler.running
            await scheduler.stop()
            return running, scheduler.running, gateway.placed

        running, after, placed = asyncio.run(scenario())
        assert running is True
        assert after is False
        assert placed == [(1, 1, 2)]

    def test_validator_task_only_when_enabled(self, tmp_path: Path, fake_gateway_cls) -> None:
        async def scenario():
            disabled = _scheduler(tmp_path, fake_gateway_cls())
            await disabled.start()
            disabled_tasks = len(disabled._tasks)
            await disabled.stop()

            enabled = _scheduler(tmp_path, fake_gateway_cls(), validation_interval=60)
            await enabled.start()
            enabled_tasks = len(enabled._tasks)
            await enabled.stop()
            return disabled_tasks, enabled_tasks

        assert asyncio.run(scenario()) == (2, 3)


class TestCredentials:

    def test_environment_tokens_win_over_saved_file(self, tmp_path: Path, monkeypatch) -> None:
        store = TokenStore(tmp_path / "tokens.json")
        store.save(CredentialState("saved-access", "saved-refresh"))

        monkeypatch.setattr(cfg, "ACCESS_TOKEN", "env-access")
        monkeypatch.setattr(cfg, "REFRESH_TOKEN", "env-refresh")
        assert initial_credentials(store).access_token == "env-access"

        monkeypatch.setattr(cfg, "ACCESS_TOKEN", "")
        assert initial_credentials(store).access_token == "saved-access"

    def test_set_tokens_keeps_known_refresh_token(self, tmp_path: Path, fake_gateway_cls) -> None:
        scheduler = _scheduler(tmp_path, fake_gateway_cls())
        state = scheduler.set_tokens("new-access")
        assert state.refresh_token == "ref"
        assert state.base_url == "http://canvas.test"
        assert scheduler.credentials.version == 1


class TestStatusWiring:

    def test_components_share_the_scheduler_status_log(self, tmp_path: Path, fake_gateway_cls) -> None:
        scheduler = _scheduler(tmp_path, fake_gateway_cls())
        assert len(scheduler.status) == 0
        assert scheduler.worker.status is scheduler.status
        assert scheduler.coordinator.status is scheduler.status
        assert scheduler.board.status is scheduler.status

    def test_worker_events_reach_the_status_log(self, tmp_path: Path, fake_gateway_cls, eventually) -> None:
        async def scenario():
            scheduler = _scheduler(tmp_path, fake_gateway_cls())
            await scheduler.start()
            item = await scheduler.enqueue(PixelArt.from_tuples([(0, 0, 2)], name="dot"), (1, 1), 2)
            await eventually(lambda: scheduler.store.status_of(item.id) == QueueStatus.COMPLETED)
            await scheduler.stop()
            return [e.message for e in scheduler.status.recent()]

        messages = asyncio.run(scenario())
        assert any("Placing 'dot'" in m for m in messages)
        assert any("'dot' complete" in m for m in messages)
