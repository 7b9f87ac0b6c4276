"""JSON file snapshot store."""

from __future__ import annotations

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class FileSnapshotStore:
    """Keeps the snapshot in one pretty-printed JSON file.

    Writes go to a sibling temp file that is then renamed over the target,
    so a concurrent reader sees either the old record or the new one. One
    asyncio.Lock covers each read and each write.
    """

    def __init__(self, path: Path) -> None:
        self._path = path
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def _read(self) -> Any:
        if not self._path.is_file():
            return None
        return json.loads(self._path.read_text(encoding="utf-8"))

    def _write(self, record: dict[str, Any]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp.write_text(json.dumps(record, indent=2, ensure_ascii=False), encoding="utf-8")
        os.replace(tmp, self._path)

    async def load(self) -> Any:
        async with self._lock:
            return await asyncio.to_thread(self._read)

    async def save(self, record: dict[str, Any]) -> None:
        async with self._lock:
            await asyncio.to_thread(self._write, record)
        logger.debug("snapshot written to %s", self._path)

    async def close(self) -> None:
        return None
