"""FastAPI dependency injection functions."""

import asyncio
from typing import Annotated

from fastapi import Depends, FastAPI, HTTPException, Request

from core.runtime import LivepatchRuntime
from storage.models import Workspace


async def get_app(request: Request) -> FastAPI:
    """Get FastAPI app instance from request."""
    return request.app


async def get_runtime(app: Annotated[FastAPI, Depends(get_app)]) -> LivepatchRuntime:
    runtime = getattr(app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(503, "Runtime not initialized")
    return runtime


async def get_workspace(
    workspace_id: str,
    runtime: Annotated[LivepatchRuntime, Depends(get_runtime)],
) -> Workspace:
    """Resolve the path's workspace or 404."""
    ws = await asyncio.to_thread(runtime.file_store.get_workspace, workspace_id)
    if ws is None:
        raise HTTPException(404, f"Workspace not found: {workspace_id}")
    return ws
