from pathlib import Path
from typing import Any

import pytest

from livetable.commands import CommandRouter
from livetable.session import SessionStore
from livetable.storage import FileSnapshotStore


class FakeSocket:
    """Stands in for a WebSocket: records every frame sent to it."""

    def __init__(self, fail: bool = False) -> None:
        self.frames: list[dict[str, Any]] = []
        self.fail = fail

    async def send_json(self, data: Any) -> None:
        if self.fail:
            raise RuntimeError("socket closed")
        self.frames.append(data)

    def events(self) -> list[str]:
        return [f["event"] for f in self.frames]

    def of(self, event: str) -> list[Any]:
        return [f["data"] for f in self.frames if f["event"] == event]

    def clear(self) -> None:
        self.frames.clear()


class BrokenSnapshotStore:
    """Adapter whose writes always fail."""

    def __init__(self, record: Any = None) -> None:
        self.record = record

    async def load(self) -> Any:
        return self.record

    async def save(self, record: dict[str, Any]) -> None:
        raise OSError("disk full")

    async def close(self) -> None:
        return None


@pytest.fixture
def snapshot_path(tmp_path: Path) -> Path:
    return tmp_path / "data" / "rp.json"


@pytest.fixture
def file_store(snapshot_path: Path) -> FileSnapshotStore:
    return FileSnapshotStore(snapshot_path)


@pytest.fixture
async def store(file_store: FileSnapshotStore) -> SessionStore:
    return await SessionStore.load(file_store)


@pytest.fixture
def router(store: SessionStore) -> CommandRouter:
    return CommandRouter(store)


@pytest.fixture
def socket_factory(router: CommandRouter):
    """Connect a FakeSocket to the router; returns (connection_id, socket)."""

    def connect(fail: bool = False) -> tuple[str, FakeSocket]:
        sock = FakeSocket(fail=fail)
        return router.connect(sock), sock

    return connect
