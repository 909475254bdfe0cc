"""Run a scripted assistant turn against a workspace."""

from collections.abc import AsyncIterator
from typing import Annotated, Any

from fastapi import APIRouter, Depends

from backend.web.core.dependencies import get_runtime, get_workspace
from backend.web.models.requests import RunTurnRequest
from core.runtime import LivepatchRuntime
from storage.models import Workspace

router = APIRouter(prefix="/api/workspaces", tags=["turns"])


async def _iter_chunks(chunks: list[str]) -> AsyncIterator[str]:
    for chunk in chunks:
        yield chunk


@router.post("/{workspace_id}/turns")
async def run_turn_endpoint(
    payload: RunTurnRequest,
    ws: Annotated[Workspace, Depends(get_workspace)],
    runtime: Annotated[LivepatchRuntime, Depends(get_runtime)],
) -> dict[str, Any]:
    """Feed ``chunks`` through the scanner as one stream and wait for every directive."""
    report = await runtime.run_turn(ws.id, payload.message_id, _iter_chunks(payload.chunks))
    return report.to_dict()
