"""Who is connected, under which display name, playing which character.

Presence is ephemeral: it is never persisted and starts empty on every
process start. A display name maps to at most one entry; rejoining under
the same name rebinds the existing entry to the new connection.
"""

from __future__ import annotations

from livetable.models import PresenceEntry

MAX_DISPLAY_NAME = 30
DEFAULT_DISPLAY_NAME = "Visitor"


def clean_display_name(name: object) -> str:
    if not isinstance(name, str):
        return DEFAULT_DISPLAY_NAME
    name = name.strip()[:MAX_DISPLAY_NAME].strip()
    return name or DEFAULT_DISPLAY_NAME


class PresenceTracker:
    def __init__(self) -> None:
        self._entries: list[PresenceEntry] = []

    def __len__(self) -> int:
        return len(self._entries)

    def entries(self) -> list[PresenceEntry]:
        return list(self._entries)

    def dump(self) -> list[dict]:
        return [e.dump() for e in self._entries]

    def get(self, connection_id: str) -> PresenceEntry | None:
        for entry in self._entries:
            if entry.connection_id == connection_id:
                return entry
        return None

    def join(
        self, connection_id: str, display_name: str, character_index: int | None = None
    ) -> PresenceEntry:
        for entry in self._entries:
            if entry.display_name == display_name:
                entry.connection_id = connection_id
                entry.character_index = character_index
                return entry
        entry = PresenceEntry(
            connection_id=connection_id,
            display_name=display_name,
            character_index=character_index,
        )
        self._entries.append(entry)
        return entry

    def select_character(self, connection_id: str, character_index: int | None) -> bool:
        entry = self.get(connection_id)
        if entry is None:
            return False
        entry.character_index = character_index
        return True

    def leave(self, connection_id: str) -> PresenceEntry | None:
        entry = self.get(connection_id)
        if entry is not None:
            self._entries.remove(entry)
        return entry

    def character_removed(self, index: int) -> bool:
        """Renumber selections after roster entry ``index`` was deleted.

        Returns True if any entry changed.
        """
        changed = False
        for entry in self._entries:
            if entry.character_index is None:
                continue
            if entry.character_index == index:
                entry.character_index = None
                changed = True
            elif entry.character_index > index:
                entry.character_index -= 1
                changed = True
        return changed
