"""Checkpoint, revert and restore endpoints."""

from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException

from backend.web.core.dependencies import get_runtime, get_workspace
from backend.web.models.requests import CreateCheckpointRequest, MessageRequest
from backend.web.utils.serializers import serialize_checkpoint
from core.runtime import LivepatchRuntime
from storage.errors import StorageError
from storage.models import Workspace

router = APIRouter(tags=["checkpoints"])


@router.post("/api/workspaces/{workspace_id}/checkpoints")
async def create_checkpoint_endpoint(
    payload: CreateCheckpointRequest,
    ws: Annotated[Workspace, Depends(get_workspace)],
    runtime: Annotated[LivepatchRuntime, Depends(get_runtime)],
) -> dict[str, Any]:
    try:
        row = await runtime.checkpoints.create_checkpoint(ws.id, payload.message_id)
    except StorageError as e:
        raise HTTPException(503, str(e)) from e
    return serialize_checkpoint(row)


@router.get("/api/workspaces/{workspace_id}/checkpoints")
async def list_checkpoints_endpoint(
    ws: Annotated[Workspace, Depends(get_workspace)],
    runtime: Annotated[LivepatchRuntime, Depends(get_runtime)],
) -> dict[str, Any]:
    rows = await runtime.checkpoints.get_checkpoints(ws.id)
    return {"workspace_id": ws.id, "checkpoints": [serialize_checkpoint(r) for r in rows]}


@router.post("/api/checkpoints/{checkpoint_id}/restore")
async def restore_checkpoint_endpoint(
    checkpoint_id: str,
    runtime: Annotated[LivepatchRuntime, Depends(get_runtime)],
) -> dict[str, Any]:
    row = await runtime.checkpoints.get_checkpoint(checkpoint_id)
    if row is None:
        raise HTTPException(404, f"Checkpoint not found: {checkpoint_id}")
    ok = await runtime.checkpoints.restore_checkpoint(checkpoint_id)
    if not ok:
        raise HTTPException(500, f"Restore of checkpoint {checkpoint_id} failed; workspace left unchanged")
    return {"ok": True, "checkpoint_id": checkpoint_id, "workspace_id": row.workspace_id}


@router.post("/api/workspaces/{workspace_id}/revert")
async def revert_endpoint(
    payload: MessageRequest,
    ws: Annotated[Workspace, Depends(get_workspace)],
    runtime: Annotated[LivepatchRuntime, Depends(get_runtime)],
) -> dict[str, Any]:
    """Revert to the state before ``message_id``; the current state becomes restorable."""
    target = await runtime.checkpoints.find_checkpoint_for_message(ws.id, payload.message_id)
    if target is None:
        raise HTTPException(404, f"No checkpoint for message {payload.message_id}")
    ok = await runtime.checkpoints.revert_to_message(ws.id, payload.message_id)
    if not ok:
        raise HTTPException(500, f"Revert to message {payload.message_id} failed")
    return {"ok": True, "workspace_id": ws.id, "checkpoint_id": target.id}


@router.get("/api/workspaces/{workspace_id}/pre-revert/{message_id}")
async def pre_revert_status_endpoint(
    message_id: str,
    ws: Annotated[Workspace, Depends(get_workspace)],
    runtime: Annotated[LivepatchRuntime, Depends(get_runtime)],
) -> dict[str, Any]:
    available = await runtime.checkpoints.is_restore_available(ws.id, message_id)
    return {"workspace_id": ws.id, "message_id": message_id, "available": available}


@router.post("/api/workspaces/{workspace_id}/pre-revert/restore")
async def restore_pre_revert_endpoint(
    payload: MessageRequest,
    ws: Annotated[Workspace, Depends(get_workspace)],
    runtime: Annotated[LivepatchRuntime, Depends(get_runtime)],
) -> dict[str, Any]:
    if not await runtime.checkpoints.is_restore_available(ws.id, payload.message_id):
        raise HTTPException(404, f"No restorable state for message {payload.message_id}")
    ok = await runtime.checkpoints.restore_pre_revert_state(ws.id, payload.message_id)
    if not ok:
        raise HTTPException(500, f"Restore for message {payload.message_id} failed")
    return {"ok": True, "workspace_id": ws.id, "message_id": payload.message_id}
