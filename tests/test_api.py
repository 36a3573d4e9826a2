"""Tests for the control API."""

import json
from pathlib import Path

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from ftplace.api import router
from ftplace.core.config import cfg
from ftplace.credentials import CredentialState, CredentialStore, TokenStore
from ftplace.queue_store import MemoryQueuePersistence, QueueStore
from ftplace.scheduler import Scheduler

INLINE_ART = {"name": "dot", "pattern": [{"x": 0, "y": 0, "color": 2}, {"x": 1, "y": 0, "color_id": 3}]}


@pytest.fixture
def scheduler(tmp_path: Path, fake_gateway_cls) -> Scheduler:
    return Scheduler(
        store               = QueueStore(MemoryQueuePersistence()),
        gateway             = fake_gateway_cls(),
        credentials         = CredentialStore(CredentialState("acc", "ref", base_url="http://canvas.test")),
        token_store         = TokenStore(tmp_path / "tokens.json"),
        validation_interval = 0,
    )


@pytest.fixture
def client(scheduler, tmp_path: Path, monkeypatch):
    art_dir = tmp_path / "arts"
    art_dir.mkdir()
    (art_dir / "heart.json").write_text(json.dumps({
        "pattern": [{"x": 1, "y": 0, "color": 2}, {"x": 0, "y": 1, "color": 2}],
    }))
    (art_dir / "broken.json").write_text("{")
    monkeypatch.setattr(cfg, "ART_DIR", str(art_dir))

    app = FastAPI()
    app.include_router(router)
    app.state.scheduler = scheduler
    with TestClient(app) as c:
        yield c


def _enqueue(client, priority=3, **body):
    payload = {"art": INLINE_ART, "anchor_x": 10, "anchor_y": 10, "priority": priority}
    payload.update(body)
    return client.post("/api/queue", json=payload)


class TestQueueEndpoints:

    def test_enqueue_inline_art(self, client) -> None:
        response = _enqueue(client)
        assert response.status_code == 201
        body = response.json()
        assert body["name"] == "dot"
        assert body["status"] == "pending"
        assert body["anchor"] == [10, 10]
        assert body["queue_position"] == 0

    def test_enqueue_by_file_name(self, client) -> None:
        response = _enqueue(client, art=None, art_name="heart")
        assert response.status_code == 201
        assert response.json()["name"] == "heart"

    def test_enqueue_unknown_or_missing_art(self, client) -> None:
        assert _enqueue(client, art=None, art_name="nope").status_code == 404
        assert _enqueue(client, art=None).status_code == 422

    def test_enqueue_invalid_priority(self, client) -> None:
        assert _enqueue(client, priority=9).status_code == 422

    def test_list_in_selection_order(self, client) -> None:
        ids = [_enqueue(client, priority=p).json()["id"] for p in (3, 1, 5, 1)]
        listed = [item["id"] for item in client.get("/api/queue").json()]
        assert listed == [ids[1], ids[3], ids[0], ids[2]]

    def test_change_priority(self, client) -> None:
        first  = _enqueue(client, priority=3).json()["id"]
        second = _enqueue(client, priority=3).json()["id"]

        response = client.patch(f"/api/queue/{second}/priority", json={"priority": 1})

        assert response.status_code == 200
        assert [i["id"] for i in client.get("/api/queue").json()] == [second, first]
        assert client.patch(f"/api/queue/{second}/priority", json={"priority": 0}).status_code == 422
        assert client.patch("/api/queue/missing/priority", json={"priority": 2}).status_code == 404

    def test_item_lifecycle_actions(self, client) -> None:
        item_id = _enqueue(client).json()["id"]

        assert client.post(f"/api/queue/{item_id}/pause").json()["status"] == "paused"
        assert client.post(f"/api/queue/{item_id}/resume").json()["status"] == "pending"
        assert client.post(f"/api/queue/{item_id}/resume").status_code == 409
        assert client.post(f"/api/queue/{item_id}/cancel").json()["status"] == "cancelled"
        assert client.post(f"/api/queue/{item_id}/cancel").status_code == 409
        assert client.post(f"/api/queue/{item_id}/retry").json()["status"] == "pending"
        assert client.post(f"/api/queue/{item_id}/explode").status_code == 404

    def test_delete_only_terminal(self, client) -> None:
        item_id = _enqueue(client).json()["id"]
        assert client.delete(f"/api/queue/{item_id}").status_code == 409
        client.post(f"/api/queue/{item_id}/cancel")
        assert client.delete(f"/api/queue/{item_id}").status_code == 204
        assert client.delete(f"/api/queue/{item_id}").status_code == 404

    def test_queue_wide_controls(self, client, scheduler) -> None:
        _enqueue(client)
        _enqueue(client)

        assert client.post("/api/queue/pause").json() == {"paused": True}
        assert scheduler.worker.paused is True
        assert client.post("/api/queue/resume").json() == {"paused": False}
        assert client.post("/api/queue/cancel").json() == {"cancelled": 2}
        assert {i["status"] for i in client.get("/api/queue").json()} == {"cancelled"}


class TestStatusAndAuth:

    def test_status_report(self, client) -> None:
        _enqueue(client)
        body = client.get("/api/status").json()

        assert body["queue"]["pending"] == 1
        assert body["auth"]["has_credentials"] is True
        assert body["board"]["loaded"] is False
        assert any("Queued 'dot'" in e["message"] for e in body["events"])

    def test_arts_listing_skips_broken_files(self, client) -> None:
        arts = client.get("/api/arts").json()
        assert arts == [{"name": "heart", "width": 2, "height": 2, "pixels": 2}]

    def test_set_tokens(self, client, scheduler, tmp_path: Path) -> None:
        scheduler.credentials.mark_reauth_required()

        response = client.put("/api/auth/tokens", json={"access_token": "fresh", "refresh_token": "r2"})

        assert response.status_code == 200
        assert scheduler.credentials.snapshot().access_token == "fresh"
        assert scheduler.credentials.needs_reauth is False
        assert TokenStore(tmp_path / "tokens.json").load().refresh_token == "r2"

    def test_empty_access_token_rejected(self, client) -> None:
        assert client.put("/api/auth/tokens", json={"access_token": ""}).status_code == 422


class TestApp:

    def test_health_without_running_scheduler(self) -> None:
        from ftplace.main import app

        response = TestClient(app).get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_router_without_scheduler_is_unavailable(self) -> None:
        app = FastAPI()
        app.include_router(router)
        assert TestClient(app).get("/api/queue").status_code == 503
