import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from livetable.commands import CommandRouter
from livetable.config import Settings
from livetable.narrator import EchoNarrator, HttpNarrator, Narrator
from livetable.routes import router, ws_router
from livetable.session import SessionStore
from livetable.storage import SnapshotStore, open_snapshot_store

logger = logging.getLogger(__name__)


async def autosave(store: SessionStore, interval: float) -> None:
    """Persist the full snapshot every ``interval`` seconds, changes or not."""
    while True:
        await asyncio.sleep(interval)
        await store.persist()


def build_narrator(settings: Settings) -> Narrator | None:
    """HttpNarrator when a key is configured; NARRATOR_BACKEND=echo needs no key."""
    if settings.narrator_backend == "echo":
        return EchoNarrator()
    if not settings.narrator_enabled:
        return None
    return HttpNarrator(
        api_key=settings.narrator_api_key,
        url=settings.narrator_url,
        model=settings.narrator_model,
    )


def create_app(
    settings: Settings | None = None,
    snapshot_store: SnapshotStore | None = None,
    narrator: Narrator | None = None,
) -> FastAPI:
    settings = settings or Settings.from_env()
    if narrator is None:
        narrator = build_narrator(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        adapter = snapshot_store or open_snapshot_store(settings)
        store = await SessionStore.load(adapter)
        await store.persist()
        commands = CommandRouter(store, narrator=narrator)
        app.state.commands = commands
        logger.info("Narrator: %s", "enabled" if narrator else "disabled (no API key)")

        saver = asyncio.create_task(autosave(store, settings.autosave_interval))
        try:
            yield
        finally:
            saver.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await saver
            await commands.drain()
            await store.persist()
            await store.close()

    app = FastAPI(title="Live Table", lifespan=lifespan)
    app.include_router(router, prefix="/api")
    app.include_router(ws_router)
    return app


# Default app instance for uvicorn (settings from the environment)
app = create_app()
