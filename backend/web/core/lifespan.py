"""Application lifespan management."""

import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI

from config.loader import ConfigLoader
from core.runtime import LivepatchRuntime

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """FastAPI lifespan context manager for startup and shutdown."""
    settings = getattr(app.state, "settings", None)
    if settings is None:
        settings = ConfigLoader(project_root=Path.cwd()).load()
        app.state.settings = settings

    runtime = LivepatchRuntime.build(settings)
    # @@@init-off-loop - table creation touches disk; keep it off the event loop.
    await asyncio.to_thread(runtime.init)
    app.state.runtime = runtime
    logger.info("livepatch runtime ready (db=%s)", runtime.container.db_path)

    try:
        yield
    finally:
        app.state.runtime = None
        await runtime.close()
