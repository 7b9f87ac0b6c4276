"""Core domain models.

Messages, the clock, the turn system and presence entries are pydantic
models; they validate everything that crosses a boundary (WebSocket
payloads, the persisted snapshot). Sessions and characters stay plain
dicts because their fields are an open-ended, game-specific bag that is
deep-merged by the session store.

Every model serialises with camelCase aliases (``currentTurn``,
``playedThisRound`` ...) and accepts either spelling on input.
"""

from __future__ import annotations

import time
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

MessageKind = Literal["player", "narrator", "system", "ooc"]

CLOCK_EPOCH = datetime(2024, 4, 1, 12, 0, tzinfo=timezone.utc)
ROUND_CLOCK_STEP = timedelta(minutes=5)

DEFAULT_SESSION_ID = "default"
DEFAULT_FACTIONS = ("Shinigami", "Hollow", "Humans")

# Fields backfilled on every roster entry created through add_character.
CHARACTER_DEFAULTS: dict[str, Any] = {
    "name": "New character",
    "species": "Unknown",
    "faction": "",
    "location": "",
    "hp": 100,
    "maxHp": 100,
}


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def dump(self) -> dict[str, Any]:
        """JSON-ready dict with camelCase keys."""
        return self.model_dump(mode="json", by_alias=True)


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------

_last_message_id = 0


def next_message_id() -> int:
    """Millisecond-based id that never repeats within the process.

    Two messages created within the same millisecond get consecutive ids.
    """
    global _last_message_id
    candidate = int(time.time() * 1000)
    if candidate <= _last_message_id:
        candidate = _last_message_id + 1
    _last_message_id = candidate
    return candidate


class Message(WireModel):
    """A single chat or OOC entry. Immutable once created."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )

    id: int = Field(default_factory=next_message_id)
    kind: MessageKind
    text: str
    author: str = ""
    visitor_name: str | None = None
    character_index: int | None = None
    character_id: str | None = None
    round: int | None = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


# ---------------------------------------------------------------------------
# Clock and turn order
# ---------------------------------------------------------------------------

class Clock(WireModel):
    """In-fiction timestamp plus the round it belongs to."""

    date: datetime = CLOCK_EPOCH
    round: int = Field(default=1, ge=1)

    def advance(self, step: timedelta = ROUND_CLOCK_STEP, round: int | None = None) -> Clock:
        return Clock(date=self.date + step, round=self.round if round is None else round)


class TurnSystem(WireModel):
    enabled: bool = True
    current_turn: int = Field(default=0, ge=0)
    round_number: int = Field(default=1, ge=1)
    played_this_round: list[int] = Field(default_factory=list)

    @field_validator("played_this_round")
    @classmethod
    def _unique_sorted(cls, value: list[int]) -> list[int]:
        return sorted(set(value))


# ---------------------------------------------------------------------------
# Presence
# ---------------------------------------------------------------------------

class PresenceEntry(WireModel):
    connection_id: str
    display_name: str
    character_index: int | None = None
    joined_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


# ---------------------------------------------------------------------------
# Persisted snapshot
# ---------------------------------------------------------------------------

class Snapshot(WireModel):
    """The full durable record: every session plus the shared logs."""

    sessions_by_id: dict[str, dict[str, Any]]
    current_session_id: str | None = None
    chat_log: list[Message] = Field(default_factory=list)
    ooc_log: list[Message] = Field(default_factory=list)
    turn_system: TurnSystem = Field(default_factory=TurnSystem)
    clock: Clock = Field(default_factory=Clock)


# ---------------------------------------------------------------------------
# Dict factories
# ---------------------------------------------------------------------------

def new_character_id() -> str:
    return uuid.uuid4().hex[:12]


def new_character(data: dict[str, Any] | None = None) -> dict[str, Any]:
    """Create a roster entry: defaults, then caller fields, then a fresh id."""
    char: dict[str, Any] = dict(CHARACTER_DEFAULTS)
    for key, value in (data or {}).items():
        if value is not None:
            char[key] = value
    name = char.get("name")
    if not isinstance(name, str) or not name.strip():
        char["name"] = CHARACTER_DEFAULTS["name"]
    char["id"] = new_character_id()
    return char


def new_session(title: str = DEFAULT_SESSION_ID, clock: Clock | None = None) -> dict[str, Any]:
    return {
        "title": title,
        "players": [],
        "npcs": [],
        "bestiary": {faction: [] for faction in DEFAULT_FACTIONS},
        "clock": (clock or Clock()).dump(),
    }
