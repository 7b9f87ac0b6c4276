"""Inbound command handling and ordered event fan-out.

Every command received on a connection is looked up in the handler table,
validated, applied to the session store / turn engine / presence tracker,
persisted, and announced to all connections. Handlers run one at a time
under a single asyncio.Lock, so events leave in exactly the order the
mutations happened and no handler ever sees a half-applied change.

Invalid payloads (wrong type, empty text, unknown index) are dropped
without an error event.

Narration is the only slow operation. It runs as its own task outside the
lock; when the narrator answers, the result re-enters through the lock
like any other command before it touches shared state.

Inbound frame:  {"event": "<command>", "data": <payload>}
Outbound frame: {"event": "<event>",   "data": <payload>}
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

from pydantic import ValidationError

from livetable.hub import Connection, ConnectionHub
from livetable.models import Clock, Message
from livetable.narrator import Narrator, build_context
from livetable.presence import PresenceTracker, clean_display_name
from livetable.session import SessionStore
from livetable.storage import parse_record
from livetable.turns import TurnEngine

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 2000
MAX_OOC_LENGTH = 1000

UNKNOWN_CHARACTER = "unknown character"
NARRATOR_AUTHOR = "🎭 GM (AI)"

# Accepted spellings for sendMessage kinds; "ooc" goes through sendOOC only.
MESSAGE_KINDS = {
    "player": "player",
    "joueur": "player",
    "narrator": "narrator",
    "narrateur": "narrator",
    "system": "system",
}

Handler = Callable[[str, Any], Awaitable[None]]


def _as_index(value: Any) -> int | None:
    """A non-negative int, or None for anything else (-1 included)."""
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        return None
    return value


def _clean_text(value: Any, limit: int) -> str | None:
    if not isinstance(value, str):
        return None
    text = value.strip()[:limit].strip()
    return text or None


class CommandRouter:
    def __init__(
        self,
        store: SessionStore,
        hub: ConnectionHub | None = None,
        presence: PresenceTracker | None = None,
        narrator: Narrator | None = None,
    ) -> None:
        self.store = store
        self.turns = TurnEngine(store)
        self.hub = hub or ConnectionHub()
        self.presence = presence or PresenceTracker()
        self.narrator = narrator
        self._lock = asyncio.Lock()
        self._tasks: set[asyncio.Task] = set()
        self._narrations_pending = 0
        self._handlers: dict[str, Handler] = {
            "join": self._join,
            "joinGame": self._join,
            "selectCharacter": self._select_character,
            "sendMessage": self._send_message,
            "sendOOC": self._send_ooc,
            "nextTurn": self._next_turn,
            "skipTurn": self._skip_turn,
            "setTurn": self._set_turn,
            "resetTurns": self._reset_turns,
            "toggleTurnSystem": self._toggle_turn_system,
            "updatePlayer": self._update_player,
            "addPlayer": self._add_player,
            "deletePlayer": self._delete_player,
            "updateNPC": self._update_npc,
            "updateRPTime": self._update_rp_time,
            "clearChat": self._clear_chat,
            "clearOOC": self._clear_ooc,
        }

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    def connect(self, connection: Connection) -> str:
        return self.hub.add(connection)

    async def disconnect(self, connection_id: str) -> None:
        async with self._lock:
            self.hub.remove(connection_id)
            entry = self.presence.leave(connection_id)
            if entry is not None:
                logger.info("%s left (%d connected)", entry.display_name, len(self.presence))
            await self.hub.broadcast("playersUpdated", self.presence.dump())

    async def dispatch(self, connection_id: str, command: Any, data: Any = None) -> None:
        handler = self._handlers.get(command) if isinstance(command, str) else None
        if handler is None:
            logger.debug("Ignoring unknown command %r from %s", command, connection_id)
            return
        async with self._lock:
            await handler(connection_id, data)

    async def drain(self) -> None:
        """Wait for all in-flight narration tasks."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ------------------------------------------------------------------
    # Admin surface (HTTP)
    # ------------------------------------------------------------------

    async def replace_snapshot(self, body: dict[str, Any], merge: bool = False) -> bool:
        """Replace the sessions map, or merge into the current session.

        A body carrying the ``sessionsById`` wrapper (what GET /api/snapshot
        returns) replaces the sessions map it holds and restores its current
        session id. Raises ValueError on an unusable body. Returns the
        persistence outcome; the in-memory change stands either way.
        """
        async with self._lock:
            if merge:
                self.store.merge_session_fields(body)
            elif isinstance(body, dict) and "sessionsById" in body:
                record = parse_record(body)
                self.store.replace_sessions(record.sessions_by_id, record.current_session_id)
            else:
                self.store.replace_sessions(body)
            await self.hub.broadcast("dataUpdated", {
                "sessionsById": self.store.sessions,
                "currentSessionId": self.store.current_session_id,
            })
            return await self.store.persist()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _display_name(self, connection_id: str) -> str | None:
        entry = self.presence.get(connection_id)
        return entry.display_name if entry else None

    async def _chat(self, message: Message) -> Message:
        self.store.append_message("chat", message)
        await self.hub.broadcast("chatMessage", message.dump())
        return message

    async def _system(self, text: str) -> Message:
        return await self._chat(Message(kind="system", text=text))

    def _turn_payload(self, player_name: str | None = None) -> dict[str, Any]:
        if player_name is None:
            current = self.turns.current_character()
            player_name = current.get("name") if current else None
        return {
            "turnSystem": self.turns.state.dump(),
            "currentPlayerName": player_name,
        }

    # ------------------------------------------------------------------
    # Presence
    # ------------------------------------------------------------------

    async def _join(self, connection_id: str, data: Any) -> None:
        if isinstance(data, dict):
            name = data.get("displayName") or data.get("visitorName")
            index = _as_index(data.get("characterIndex"))
        else:
            name, index = data, None
        if self.store.character_at(index) is None:
            index = None

        entry = self.presence.join(connection_id, clean_display_name(name), index)
        logger.info("%s joined (%d connected)", entry.display_name, len(self.presence))

        await self.hub.send(connection_id, "gameStateSnapshot", {
            **self.store.join_state(),
            "connectedPlayers": self.presence.dump(),
        })
        await self.hub.broadcast("playersUpdated", self.presence.dump())

    async def _select_character(self, connection_id: str, data: Any) -> None:
        value = data.get("characterIndex") if isinstance(data, dict) else data
        index = _as_index(value)
        if index is not None and self.store.character_at(index) is None:
            return
        if not self.presence.select_character(connection_id, index):
            return
        await self.hub.broadcast("playersUpdated", self.presence.dump())

    # ------------------------------------------------------------------
    # Chat
    # ------------------------------------------------------------------

    async def _send_message(self, connection_id: str, data: Any) -> None:
        if not isinstance(data, dict):
            return
        text = _clean_text(data.get("text"), MAX_MESSAGE_LENGTH)
        if text is None:
            return
        kind_value = data.get("kind") or data.get("type") or "player"
        kind = MESSAGE_KINDS.get(kind_value) if isinstance(kind_value, str) else None
        if kind is None:
            return

        index = self.store.resolve_index(data.get("characterIndex"), data.get("characterId"))
        character = self.store.character_at(index) if index is not None else None
        visitor = self._display_name(connection_id)

        character_name = data.get("characterName")
        if not isinstance(character_name, str) or not character_name.strip():
            character_name = (character or {}).get("name") or visitor or UNKNOWN_CHARACTER
        author = character_name if kind == "player" else (visitor or "GM")

        message = await self._chat(Message(
            kind=kind,
            text=text,
            author=author,
            visitor_name=visitor,
            character_index=index,
            character_id=character["id"] if character else None,
            round=self.turns.state.round_number,
        ))
        await self.store.persist()

        if kind == "player" and character is not None and self.narrator is not None:
            context = build_context(character, message.round or 1)
            await self._start_narration(context, character_name, text)

    async def _send_ooc(self, connection_id: str, data: Any) -> None:
        if not isinstance(data, dict):
            return
        text = _clean_text(data.get("text"), MAX_OOC_LENGTH)
        if text is None:
            return
        message = self.store.append_message("ooc", Message(
            kind="ooc",
            text=text,
            author=self._display_name(connection_id) or "Anonymous",
        ))
        await self.hub.broadcast("oocMessage", message.dump())
        await self.store.persist()

    async def _clear_chat(self, connection_id: str, data: Any) -> None:
        self.store.clear_log("chat")
        await self.hub.broadcast("chatCleared")
        await self.store.persist()

    async def _clear_ooc(self, connection_id: str, data: Any) -> None:
        self.store.clear_log("ooc")
        await self.hub.broadcast("oocCleared")
        await self.store.persist()

    # ------------------------------------------------------------------
    # Narration
    # ------------------------------------------------------------------

    async def _start_narration(self, context: str, actor: str, action: str) -> None:
        self._narrations_pending += 1
        await self.hub.broadcast("aiTyping", True)
        task = asyncio.create_task(self._narrate(context, actor, action))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _narrate(self, context: str, actor: str, action: str) -> None:
        reply: str | None = None
        try:
            reply = await self.narrator.generate(context, actor, action)
        except Exception:
            logger.exception("Narrator raised; treating as no narration")
        async with self._lock:
            await self._narration_ready(reply)

    async def _narration_ready(self, reply: str | None) -> None:
        text = _clean_text(reply, MAX_MESSAGE_LENGTH)
        if text is not None:
            await self._chat(Message(
                kind="narrator",
                text=text,
                author=NARRATOR_AUTHOR,
                round=self.turns.state.round_number,
            ))
            await self.store.persist()
        self._narrations_pending -= 1
        if self._narrations_pending == 0:
            await self.hub.broadcast("aiTyping", False)

    # ------------------------------------------------------------------
    # Turn order
    # ------------------------------------------------------------------

    async def _next_turn(self, connection_id: str, data: Any) -> None:
        if not self.turns.state.enabled:
            return
        await self._advance()

    async def _skip_turn(self, connection_id: str, data: Any) -> None:
        if not self.turns.state.enabled:
            return
        current = self.turns.current_character()
        name = (current or {}).get("name") or self._display_name(connection_id) or "A player"
        await self._system(f"⏭️ {name} skips their turn.")
        await self._advance()

    async def _advance(self) -> None:
        result = self.turns.advance()
        if result is None:
            await self.store.persist()
            return
        if result.new_round:
            await self._system(f"═══════════ 🔄 ROUND {result.round_number} ═══════════")
            await self.hub.broadcast("rpTimeUpdated", self.store.clock.dump())
        name = result.current_character.get("name") or "Unknown player"
        await self.hub.broadcast("turnChanged", self._turn_payload(name))
        await self.store.persist()

    async def _set_turn(self, connection_id: str, data: Any) -> None:
        index = data.get("index") if isinstance(data, dict) else data
        if not self.turns.set_turn(index):
            return
        await self.hub.broadcast("turnChanged", self._turn_payload())
        await self.store.persist()

    async def _reset_turns(self, connection_id: str, data: Any) -> None:
        self.turns.reset()
        first = self.store.character_at(0)
        first_name = (first or {}).get("name") or "Player 1"
        await self._system(f"🔄 Turns reset. It is {first_name}'s turn.")
        await self.hub.broadcast("turnChanged", self._turn_payload(first_name))
        await self.store.persist()

    async def _toggle_turn_system(self, connection_id: str, data: Any) -> None:
        enabled = self.turns.toggle_enabled()
        await self._system(
            "✅ Turn system enabled." if enabled else "❌ Turn system disabled (free mode)."
        )
        await self.hub.broadcast("turnChanged", self._turn_payload())
        await self.store.persist()

    async def _update_rp_time(self, connection_id: str, data: Any) -> None:
        if not isinstance(data, dict):
            return
        try:
            clock = Clock.model_validate(data)
        except ValidationError:
            logger.debug("Ignoring invalid clock payload %r", data)
            return
        self.store.set_clock(clock)
        await self.hub.broadcast("rpTimeUpdated", clock.dump())
        await self.store.persist()

    # ------------------------------------------------------------------
    # Roster and bestiary
    # ------------------------------------------------------------------

    def _target_index(self, data: Any) -> int | None:
        if isinstance(data, dict):
            return self.store.resolve_index(data.get("playerIndex"), data.get("characterId"))
        return self.store.resolve_index(data)

    async def _update_player(self, connection_id: str, data: Any) -> None:
        if not isinstance(data, dict) or not isinstance(data.get("updates"), dict):
            return
        index = self._target_index(data)
        if index is None:
            return
        player = self.store.update_character(index, data["updates"])
        if player is None:
            return
        await self.hub.broadcast("playerUpdated", {"playerIndex": index, "player": player})
        await self.store.persist()

    async def _add_player(self, connection_id: str, data: Any) -> None:
        if data is not None and not isinstance(data, dict):
            return
        fields = {k: v for k, v in (data or {}).items() if k != "id"}
        index, player = self.store.add_character(fields)
        logger.info("Character added: %s (#%d)", player["name"], index)
        await self.hub.broadcast("playerAdded", {"playerIndex": index, "player": player})
        await self.store.persist()

    async def _delete_player(self, connection_id: str, data: Any) -> None:
        index = self._target_index(data)
        if index is None:
            return
        removed = self.store.remove_character(index)
        if removed is None:
            return
        logger.info("Character deleted: %s (#%d)", removed.get("name"), index)
        await self.hub.broadcast("playerDeleted", {"playerIndex": index, "playerId": removed["id"]})
        await self.hub.broadcast("turnChanged", self._turn_payload())
        if self.presence.character_removed(index):
            await self.hub.broadcast("playersUpdated", self.presence.dump())
        await self.store.persist()

    async def _update_npc(self, connection_id: str, data: Any) -> None:
        if not isinstance(data, dict):
            return
        faction, index = data.get("faction"), data.get("index")
        npc = self.store.update_npc(faction, index, data.get("npc"))
        if npc is None:
            return
        await self.hub.broadcast("npcUpdated", {"faction": faction, "index": index, "npc": npc})
        await self.hub.broadcast("bestiaireUpdated", self.store.session["bestiary"])
        await self.store.persist()
