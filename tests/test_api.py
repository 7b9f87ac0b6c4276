"""HTTP and WebSocket surface, driven through FastAPI's TestClient."""

import json
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from livetable.app import create_app
from livetable.config import Settings
from livetable.storage import FileSnapshotStore


class CannedNarrator:
    async def generate(self, context, actor, action):
        return f"The world answers {actor}."


def _app(tmp_path: Path, narrator=None):
    settings = Settings(data_dir=tmp_path, autosave_interval=3600)
    store = FileSnapshotStore(tmp_path / "rp.json")
    return create_app(settings, snapshot_store=store, narrator=narrator)


@pytest.fixture
def client(tmp_path: Path):
    with TestClient(_app(tmp_path)) as c:
        yield c


def _receive_until(ws, event: str) -> dict:
    while True:
        frame = ws.receive_json()
        if frame["event"] == event:
            return frame["data"]


def test_health(client: TestClient) -> None:
    resp = client.get("/api/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "ok"
    assert body["players"] == 0
    assert body["sessions"] == 1
    assert "timestamp" in body


def test_startup_writes_snapshot(tmp_path: Path) -> None:
    with TestClient(_app(tmp_path)):
        pass
    saved = json.loads((tmp_path / "rp.json").read_text(encoding="utf-8"))
    assert set(saved["sessionsById"]["default"]["bestiary"]) == {"Shinigami", "Hollow", "Humans"}


def test_get_snapshot(client: TestClient) -> None:
    body = client.get("/api/snapshot").json()
    assert body["currentSessionId"] == "default"
    assert body["chatLog"] == []
    assert body["turnSystem"]["enabled"] is True
    assert body["clock"]["round"] == 1


def test_post_snapshot_replaces_sessions(client: TestClient) -> None:
    resp = client.post("/api/snapshot", json={
        "arc-2": {"title": "Arrancar arc", "players": [{"name": "Ichigo"}]},
    })
    assert resp.json() == {"ok": True}
    body = client.get("/api/snapshot").json()
    assert list(body["sessionsById"]) == ["arc-2"]
    assert body["currentSessionId"] == "arc-2"
    player = body["sessionsById"]["arc-2"]["players"][0]
    assert player["name"] == "Ichigo"
    assert player["id"]


def test_post_snapshot_merge_keeps_bestiary(client: TestClient) -> None:
    resp = client.post("/api/snapshot?merge=true", json={"title": "Renamed", "bestiary": {"Quincy": []}})
    assert resp.json() == {"ok": True}
    session = client.get("/api/snapshot").json()["sessionsById"]["default"]
    assert session["title"] == "Renamed"
    assert "Quincy" not in session["bestiary"]


def test_get_snapshot_can_be_posted_back(client: TestClient) -> None:
    assert client.post("/api/snapshot?merge=true", json={"title": "Soul Society arc"}).json() == {"ok": True}
    record = client.get("/api/snapshot").json()
    resp = client.post("/api/snapshot", json=record)
    assert resp.status_code == 200
    assert resp.json() == {"ok": True}
    again = client.get("/api/snapshot").json()
    assert again["sessionsById"] == record["sessionsById"]
    assert again["currentSessionId"] == "default"


def test_post_snapshot_invalid_merge_leaves_state(client: TestClient) -> None:
    before = client.get("/api/snapshot").json()
    resp = client.post("/api/snapshot?merge=true", json={"players": "oops"})
    assert resp.status_code == 400
    assert resp.json()["ok"] is False
    assert client.get("/api/snapshot").json()["sessionsById"] == before["sessionsById"]


def test_post_snapshot_invalid_body(client: TestClient) -> None:
    resp = client.post("/api/snapshot", json={})
    assert resp.status_code == 400
    assert resp.json()["ok"] is False
    assert resp.json()["error"]


def test_narrator_test_without_narrator(client: TestClient) -> None:
    resp = client.post("/api/narrator/test", json={"message": "hello"})
    assert resp.status_code == 401


def test_narrator_test_requires_message(tmp_path: Path) -> None:
    with TestClient(_app(tmp_path, narrator=CannedNarrator())) as c:
        assert c.post("/api/narrator/test", json={"message": "  "}).status_code == 400
        resp = c.post("/api/narrator/test", json={"message": "I wave"})
    assert resp.status_code == 200
    assert resp.json() == {"reply": "The world answers Tester."}


def test_websocket_join_and_chat(tmp_path: Path) -> None:
    with TestClient(_app(tmp_path, narrator=CannedNarrator())) as c:
        with c.websocket_connect("/ws") as ws:
            ws.send_json({"event": "join", "data": {"displayName": "Kon"}})
            snapshot = _receive_until(ws, "gameStateSnapshot")
            assert snapshot["connectedPlayers"][0]["displayName"] == "Kon"
            assert _receive_until(ws, "playersUpdated")[0]["displayName"] == "Kon"

            ws.send_json({"event": "addPlayer", "data": {"name": "Ichigo"}})
            assert _receive_until(ws, "playerAdded")["playerIndex"] == 0

            ws.send_json({"event": "sendMessage", "data": {"text": "I draw my sword", "characterIndex": 0}})
            assert _receive_until(ws, "chatMessage")["author"] == "Ichigo"
            assert _receive_until(ws, "aiTyping") is True
            narration = _receive_until(ws, "chatMessage")
            assert narration["kind"] == "narrator"
            assert narration["text"] == "The world answers Ichigo."
            assert _receive_until(ws, "aiTyping") is False

            assert c.get("/api/health").json()["players"] == 1
        saved = json.loads((tmp_path / "rp.json").read_text(encoding="utf-8"))
    assert [m["kind"] for m in saved["chatLog"]] == ["player", "narrator"]


def test_websocket_ignores_garbage_frames(client: TestClient) -> None:
    with client.websocket_connect("/ws") as ws:
        ws.send_text("not json")
        ws.send_json(["not", "a", "frame"])
        ws.send_json({"event": "noSuchCommand"})
        ws.send_json({"event": "join", "data": "Kon"})
        assert ws.receive_json()["event"] == "gameStateSnapshot"
