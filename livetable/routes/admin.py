"""Health check, snapshot read/write, and narrator test endpoints."""

import logging
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException
from fastapi.responses import JSONResponse

from livetable.commands import CommandRouter

from .deps import get_commands
from .models import NarratorTestBody

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health")
async def health(commands: CommandRouter = Depends(get_commands)):
    """Health check with live counts."""
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "players": len(commands.presence),
        "sessions": len(commands.store.sessions),
    }


@router.get("/snapshot")
async def get_snapshot(commands: CommandRouter = Depends(get_commands)):
    """The full persisted record (sessions, logs, turn system, clock)."""
    return commands.store.snapshot()


@router.post("/snapshot")
async def save_snapshot(
    body: dict[str, Any] = Body(...),
    merge: bool = False,
    commands: CommandRouter = Depends(get_commands),
):
    """Replace the sessions map, or deep-merge into the current session with ?merge=true."""
    try:
        persisted = await commands.replace_snapshot(body, merge=merge)
    except ValueError as e:
        return JSONResponse({"ok": False, "error": str(e)}, status_code=400)
    if not persisted:
        logger.warning("Snapshot accepted in memory but not persisted")
    return {"ok": True}


@router.post("/narrator/test")
async def narrator_test(body: NarratorTestBody, commands: CommandRouter = Depends(get_commands)):
    """Send one action straight to the narrator and return its reply."""
    if commands.narrator is None:
        raise HTTPException(401, "Narrator is not configured")
    if not body.message.strip():
        raise HTTPException(400, "Message is required")
    reply = await commands.narrator.generate("Test", "Tester", body.message)
    return {"reply": reply or "(no reply)"}
