"""Live WebSocket connections and best-effort fan-out."""

from __future__ import annotations

import logging
import uuid
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class Connection(Protocol):
    async def send_json(self, data: Any) -> None: ...


class ConnectionHub:
    """Registry of connected sockets keyed by connection id.

    Sends never raise: a socket that fails to receive is dropped from the
    hub and the remaining connections still get the event.
    """

    def __init__(self) -> None:
        self._connections: dict[str, Connection] = {}

    def __len__(self) -> int:
        return len(self._connections)

    def __contains__(self, connection_id: str) -> bool:
        return connection_id in self._connections

    def add(self, connection: Connection) -> str:
        connection_id = uuid.uuid4().hex
        self._connections[connection_id] = connection
        logger.info("Connection opened: %s (%d live)", connection_id, len(self._connections))
        return connection_id

    def remove(self, connection_id: str) -> None:
        if self._connections.pop(connection_id, None) is not None:
            logger.info("Connection closed: %s (%d live)", connection_id, len(self._connections))

    async def send(self, connection_id: str, event: str, data: Any = None) -> None:
        connection = self._connections.get(connection_id)
        if connection is None:
            return
        try:
            await connection.send_json({"event": event, "data": data})
        except Exception as e:
            logger.warning("Dropping connection %s after send failure: %s", connection_id, e)
            self.remove(connection_id)

    async def broadcast(self, event: str, data: Any = None) -> None:
        payload = {"event": event, "data": data}
        dead = []
        for connection_id, connection in list(self._connections.items()):
            try:
                await connection.send_json(payload)
            except Exception as e:
                logger.warning("Error broadcasting to %s: %s", connection_id, e)
                dead.append(connection_id)
        for connection_id in dead:
            self.remove(connection_id)
