"""livepatch web backend - FastAPI application."""

import logging
import os

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from backend.web.core.lifespan import lifespan
from backend.web.routers import checkpoints, events, turns, workspaces
from config.loader import load_config


def create_app() -> FastAPI:
    app = FastAPI(title="livepatch", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(workspaces.router)
    app.include_router(checkpoints.router)
    app.include_router(turns.router)
    app.include_router(events.router)
    return app


app = create_app()


def _resolve_port() -> int:
    """Resolve backend port: LIVEPATCH_BACKEND_PORT > PORT > 8001."""
    port = os.environ.get("LIVEPATCH_BACKEND_PORT") or os.environ.get("PORT")
    if port:
        return int(port)
    return 8001


if __name__ == "__main__":
    settings = load_config(project_root=os.getcwd())
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    # @@@module-launch-target - Package-qualified target keeps module launch (`python -m backend.web.main`) import-safe.
    uvicorn.run("backend.web.main:app", host="0.0.0.0", port=_resolve_port(), reload=True)
