"""Request-scoped access to the objects built in the app lifespan."""

from fastapi import Request, WebSocket

from livetable.commands import CommandRouter


def get_commands(request: Request) -> CommandRouter:
    return request.app.state.commands


def get_ws_commands(websocket: WebSocket) -> CommandRouter:
    return websocket.app.state.commands
