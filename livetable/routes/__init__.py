"""FastAPI endpoints.

HTTP (mounted under /api): health check, full snapshot read, snapshot
replace/merge, narrator smoke test.
WebSocket (/ws): the command channel; one JSON frame per command/event.
"""

from fastapi import APIRouter

from .admin import router as admin_router
from .ws import router as ws_router

router = APIRouter()
router.include_router(admin_router)

__all__ = ["router", "ws_router"]
