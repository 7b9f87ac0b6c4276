"""WebSocket command channel."""

import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from livetable.commands import CommandRouter

from .deps import get_ws_commands

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/ws")
async def ws_endpoint(websocket: WebSocket, commands: CommandRouter = Depends(get_ws_commands)):
    await websocket.accept()
    connection_id = commands.connect(websocket)
    try:
        while True:
            try:
                frame = await websocket.receive_json()
            except ValueError:
                logger.debug("Ignoring non-JSON frame from %s", connection_id)
                continue
            if not isinstance(frame, dict):
                continue
            await commands.dispatch(connection_id, frame.get("event"), frame.get("data"))
    except WebSocketDisconnect:
        pass
    finally:
        await commands.disconnect(connection_id)
