"""The authoritative in-memory game state.

A SessionStore owns every durable piece of the game: the sessions map
(rosters, NPCs, bestiary), the chat and OOC logs, the turn system and the
clock. Other components read and mutate state only through it.

Logs are bounded deques: appending past MAX_CHAT_HISTORY / MAX_OOC_HISTORY
drops the oldest entries first and never reorders the rest.

Roster entries are addressed by position, but each one also carries a
stable ``id``. Removing an entry renumbers the turn state so that
``current_turn`` stays valid and ``played_this_round`` keeps pointing at
the same characters.

Session merges are recursive for nested dicts; lists and scalars are
replaced wholesale. Keys in PROTECTED_SESSION_FIELDS (the bestiary) are
never touched by a merge; only update_npc() changes them.
"""

from __future__ import annotations

import copy
import logging
from collections import deque
from typing import Any, Iterable, Literal

from livetable.models import (
    DEFAULT_FACTIONS,
    Clock,
    Message,
    Snapshot,
    TurnSystem,
    new_character,
    new_character_id,
)
from livetable.storage import SnapshotStore, default_record, parse_record

logger = logging.getLogger(__name__)

MAX_CHAT_HISTORY = 500
MAX_OOC_HISTORY = 200
JOIN_CHAT_WINDOW = 100
JOIN_OOC_WINDOW = 50

PROTECTED_SESSION_FIELDS: frozenset[str] = frozenset({"bestiary"})

LogName = Literal["chat", "ooc"]


def deep_merge(
    target: dict[str, Any],
    incoming: dict[str, Any],
    protected: Iterable[str] = (),
) -> dict[str, Any]:
    """Merge ``incoming`` into ``target`` in place and return it.

    Protected keys are skipped at the top level only.
    """
    skip = set(protected)
    for key, value in incoming.items():
        if key in skip:
            continue
        existing = target.get(key)
        if isinstance(existing, dict) and isinstance(value, dict):
            deep_merge(existing, value)
        else:
            target[key] = copy.deepcopy(value)
    return target


def normalize_session(session: Any, clock: Clock | None = None) -> dict[str, Any]:
    """Fill in missing session fields and give every character an id.

    Raises ValueError when a field has the wrong shape.
    """
    if not isinstance(session, dict):
        raise ValueError("session must be a mapping")
    session.setdefault("title", "default")
    players = session.setdefault("players", [])
    if not isinstance(players, list) or not all(isinstance(p, dict) for p in players):
        raise ValueError("session players must be a list of mappings")
    for player in players:
        if not player.get("id"):
            player["id"] = new_character_id()
    if not isinstance(session.setdefault("npcs", []), list):
        raise ValueError("session npcs must be a list")
    bestiary = session.setdefault("bestiary", {f: [] for f in DEFAULT_FACTIONS})
    if not isinstance(bestiary, dict) or not all(isinstance(v, list) for v in bestiary.values()):
        raise ValueError("session bestiary must map faction names to lists")
    if "clock" not in session:
        session["clock"] = (clock or Clock()).dump()
    return session


class SessionStore:
    def __init__(self, snapshot: Snapshot, adapter: SnapshotStore | None = None) -> None:
        self._adapter = adapter
        self._sessions: dict[str, dict[str, Any]] = {}
        for session_id, session in snapshot.sessions_by_id.items():
            self._sessions[session_id] = normalize_session(session, snapshot.clock)
        current = snapshot.current_session_id
        if current not in self._sessions:
            current = next(iter(self._sessions))
        self._current_id = current
        self._chat: deque[Message] = deque(snapshot.chat_log, maxlen=MAX_CHAT_HISTORY)
        self._ooc: deque[Message] = deque(snapshot.ooc_log, maxlen=MAX_OOC_HISTORY)
        self.turn_system: TurnSystem = snapshot.turn_system
        self._clock = snapshot.clock
        self._clamp_turn_state()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @classmethod
    async def load(cls, adapter: SnapshotStore) -> SessionStore:
        """Restore the last snapshot, or start from the default bundle.

        Never raises: unreadable or structurally invalid records are logged
        and replaced by the default.
        """
        try:
            raw = await adapter.load()
        except Exception:
            logger.warning("Could not read snapshot, starting from defaults", exc_info=True)
            return cls(default_record(), adapter)

        if raw is None:
            logger.info("No snapshot found, starting from defaults")
            return cls(default_record(), adapter)

        try:
            store = cls(parse_record(raw), adapter)
        except ValueError as e:
            logger.warning("Snapshot failed validation, starting from defaults: %s", e)
            return cls(default_record(), adapter)

        logger.info(
            "Snapshot loaded: %d session(s), %d chat / %d OOC messages",
            len(store._sessions), len(store._chat), len(store._ooc),
        )
        return store

    async def persist(self) -> bool:
        """Write the full snapshot. Returns False (and logs) on failure."""
        if self._adapter is None:
            return False
        record = self.snapshot()
        try:
            await self._adapter.save(record)
        except Exception:
            logger.exception("Snapshot write failed; in-memory state is unchanged")
            return False
        return True

    async def close(self) -> None:
        if self._adapter is not None:
            await self._adapter.close()

    # ------------------------------------------------------------------
    # Read accessors
    # ------------------------------------------------------------------

    @property
    def current_session_id(self) -> str:
        return self._current_id

    @property
    def session(self) -> dict[str, Any]:
        return self._sessions[self._current_id]

    @property
    def sessions(self) -> dict[str, dict[str, Any]]:
        return self._sessions

    @property
    def clock(self) -> Clock:
        return self._clock

    def log(self, name: LogName) -> list[Message]:
        return list(self._log(name))

    def _log(self, name: LogName) -> deque[Message]:
        if name == "chat":
            return self._chat
        if name == "ooc":
            return self._ooc
        raise ValueError(f"Unknown log {name!r}")

    def snapshot(self) -> dict[str, Any]:
        """The persistence record, camelCase keys."""
        return Snapshot(
            sessions_by_id=self._sessions,
            current_session_id=self._current_id,
            chat_log=list(self._chat),
            ooc_log=list(self._ooc),
            turn_system=self.turn_system,
            clock=self._clock,
        ).dump()

    def join_state(self) -> dict[str, Any]:
        """What a newly joined connection receives (trimmed log windows)."""
        return {
            "sessionsById": copy.deepcopy(self._sessions),
            "currentSessionId": self._current_id,
            "chatLog": [m.dump() for m in list(self._chat)[-JOIN_CHAT_WINDOW:]],
            "oocLog": [m.dump() for m in list(self._ooc)[-JOIN_OOC_WINDOW:]],
            "turnSystem": self.turn_system.dump(),
            "clock": self._clock.dump(),
        }

    # ------------------------------------------------------------------
    # Logs
    # ------------------------------------------------------------------

    def append_message(self, log: LogName, message: Message) -> Message:
        self._log(log).append(message)
        return message

    def clear_log(self, log: LogName) -> None:
        self._log(log).clear()

    # ------------------------------------------------------------------
    # Session fields
    # ------------------------------------------------------------------

    def merge_session_fields(
        self,
        partial: dict[str, Any],
        protected: Iterable[str] = PROTECTED_SESSION_FIELDS,
    ) -> dict[str, Any]:
        """Deep-merge ``partial`` into the current session, skipping protected keys.

        The merge is applied to a copy; on ValueError the session is unchanged.
        """
        if not isinstance(partial, dict):
            raise ValueError("session fields must be a mapping")
        session = deep_merge(copy.deepcopy(self.session), partial, protected)
        normalize_session(session, self._clock)
        clock = Clock.model_validate(session["clock"]) if "clock" in partial else self._clock
        self._sessions[self._current_id] = session
        self._clock = clock
        self._clamp_turn_state()
        return session

    def replace_sessions(
        self, sessions: dict[str, Any], current_session_id: str | None = None
    ) -> None:
        """Swap in a whole new sessions map.

        A session that arrives without a bestiary keeps the one it had.
        ``current_session_id`` is honoured when it names one of the new sessions.
        """
        if not isinstance(sessions, dict) or not sessions:
            raise ValueError("sessions map must be a non-empty mapping")
        incoming: dict[str, dict[str, Any]] = {}
        for session_id, session in sessions.items():
            session = copy.deepcopy(session)
            if isinstance(session, dict) and "bestiary" not in session:
                previous = self._sessions.get(session_id)
                if previous is not None:
                    session["bestiary"] = previous["bestiary"]
            incoming[session_id] = normalize_session(session, self._clock)
        self._sessions = incoming
        if current_session_id in self._sessions:
            self._current_id = current_session_id
        elif self._current_id not in self._sessions:
            self._current_id = next(iter(self._sessions))
        self._clamp_turn_state()

    def set_clock(self, clock: Clock) -> None:
        self._clock = clock
        self.session["clock"] = clock.dump()

    # ------------------------------------------------------------------
    # Roster
    # ------------------------------------------------------------------

    def roster(self) -> list[dict[str, Any]]:
        return self.session["players"]

    def character_at(self, index: Any) -> dict[str, Any] | None:
        if isinstance(index, bool) or not isinstance(index, int):
            return None
        players = self.roster()
        if 0 <= index < len(players):
            return players[index]
        return None

    def index_of(self, character_id: str) -> int | None:
        for i, player in enumerate(self.roster()):
            if player.get("id") == character_id:
                return i
        return None

    def resolve_index(self, index: Any = None, character_id: Any = None) -> int | None:
        """Index for a stable id (preferred) or a positional index; None on a miss."""
        if isinstance(character_id, str) and character_id:
            return self.index_of(character_id)
        if self.character_at(index) is not None:
            return index
        return None

    def add_character(self, data: dict[str, Any] | None = None) -> tuple[int, dict[str, Any]]:
        char = new_character(data)
        players = self.roster()
        players.append(char)
        return len(players) - 1, char

    def update_character(self, index: Any, partial: dict[str, Any]) -> dict[str, Any] | None:
        char = self.character_at(index)
        if char is None:
            logger.debug("update_character: no character at index %r", index)
            return None
        for key, value in partial.items():
            if key != "id":
                char[key] = copy.deepcopy(value)
        return char

    def remove_character(self, index: Any) -> dict[str, Any] | None:
        """Remove the character at ``index`` and renumber the turn state."""
        if self.character_at(index) is None:
            logger.debug("remove_character: no character at index %r", index)
            return None
        removed = self.roster().pop(index)
        ts = self.turn_system
        ts.played_this_round = sorted(
            i if i < index else i - 1 for i in ts.played_this_round if i != index
        )
        if ts.current_turn > index:
            ts.current_turn -= 1
        self._clamp_turn_state()
        return removed

    def _clamp_turn_state(self) -> None:
        size = len(self.roster())
        ts = self.turn_system
        if ts.current_turn >= size:
            ts.current_turn = 0
        ts.played_this_round = sorted({i for i in ts.played_this_round if 0 <= i < size})

    # ------------------------------------------------------------------
    # Bestiary
    # ------------------------------------------------------------------

    def update_npc(self, faction: Any, index: Any, npc: Any) -> dict[str, Any] | None:
        """Replace one bestiary entry. Returns None when faction or index is unknown."""
        bestiary = self.session["bestiary"]
        entries = bestiary.get(faction) if isinstance(faction, str) else None
        if entries is None:
            logger.info("update_npc: unknown faction %r", faction)
            return None
        if isinstance(index, bool) or not isinstance(index, int) or not 0 <= index < len(entries):
            logger.info("update_npc: no NPC %r in faction %r", index, faction)
            return None
        if not isinstance(npc, dict):
            return None
        entries[index] = copy.deepcopy(npc)
        return entries[index]
