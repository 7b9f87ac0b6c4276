"""Snapshot adapter protocol, record parsing, and backend selection."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

from livetable.models import DEFAULT_SESSION_ID, Snapshot, new_session

if TYPE_CHECKING:
    from livetable.config import Settings

SNAPSHOT_FILENAME = "rp.json"
SNAPSHOT_KEY = "livetable:snapshot"


class SnapshotStore(Protocol):
    """Durable home of the full snapshot record.

    ``load`` returns the raw decoded record, or None when nothing has been
    saved yet. It may raise on undecodable data; the session store decides
    what to do about that. ``save`` raises on write failure.
    """

    async def load(self) -> Any: ...

    async def save(self, record: dict[str, Any]) -> None: ...

    async def close(self) -> None: ...


def default_record() -> Snapshot:
    """One empty session called "default", clock at the epoch, round 1."""
    return Snapshot(
        sessions_by_id={DEFAULT_SESSION_ID: new_session()},
        current_session_id=DEFAULT_SESSION_ID,
    )


def parse_record(raw: Any) -> Snapshot:
    """Validate a decoded record.

    A record without the ``sessionsById`` wrapper is the legacy format: the
    whole mapping is the sessions map, logs are empty and turn/clock state
    is default. Raises ValueError (pydantic.ValidationError included) when
    the structure is unusable.
    """
    if not isinstance(raw, dict):
        raise ValueError(f"snapshot must be a mapping, got {type(raw).__name__}")
    if "sessionsById" not in raw and "sessions_by_id" not in raw:
        raw = {"sessionsById": raw}
    snapshot = Snapshot.model_validate(raw)
    if not snapshot.sessions_by_id:
        raise ValueError("snapshot contains no sessions")
    return snapshot


def open_snapshot_store(settings: Settings) -> SnapshotStore:
    """Redis when REDIS_URL is configured, else the local JSON file."""
    if settings.redis_url:
        from .redis_store import RedisSnapshotStore

        return RedisSnapshotStore(settings.redis_url)

    from .files import FileSnapshotStore

    return FileSnapshotStore(Path(settings.data_dir) / SNAPSHOT_FILENAME)
