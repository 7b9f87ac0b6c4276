"""Redis-backed snapshot store (the "document database" option)."""

from __future__ import annotations

import json
import logging
from typing import Any

import redis.asyncio as redis

from .core import SNAPSHOT_KEY

logger = logging.getLogger(__name__)


class RedisSnapshotStore:
    """Stores the snapshot as one JSON string under a single key.

    The connection is opened lazily on first use. Redis executes each
    GET/SET atomically, so no client-side lock is needed.
    """

    def __init__(self, redis_url: str, key: str = SNAPSHOT_KEY) -> None:
        self.redis_url = redis_url
        self.key = key
        self._client: redis.Redis | None = None

    async def connect(self) -> redis.Redis:
        if self._client is None:
            self._client = redis.from_url(self.redis_url, decode_responses=True)
        return self._client

    async def load(self) -> Any:
        client = await self.connect()
        value = await client.get(self.key)
        if value is None:
            return None
        return json.loads(value)

    async def save(self, record: dict[str, Any]) -> None:
        client = await self.connect()
        await client.set(self.key, json.dumps(record, ensure_ascii=False))
        logger.debug("snapshot written to redis key %s", self.key)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
