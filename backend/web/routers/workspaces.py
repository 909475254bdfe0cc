"""Workspace CRUD and read-only file endpoints."""

import asyncio
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException

from backend.web.core.dependencies import get_runtime, get_workspace
from backend.web.models.requests import CreateWorkspaceRequest
from backend.web.utils.serializers import serialize_file, serialize_workspace
from core.runtime import LivepatchRuntime
from storage.errors import FileNotFoundInStore, InvalidPathError, StorageError
from storage.models import Workspace

router = APIRouter(prefix="/api/workspaces", tags=["workspaces"])


@router.post("")
async def create_workspace_endpoint(
    payload: CreateWorkspaceRequest,
    runtime: Annotated[LivepatchRuntime, Depends(get_runtime)],
) -> dict[str, Any]:
    if payload.workspace_id:
        existing = await asyncio.to_thread(runtime.file_store.get_workspace, payload.workspace_id)
        if existing is not None:
            raise HTTPException(409, f"Workspace already exists: {payload.workspace_id}")
    try:
        ws = await asyncio.to_thread(runtime.file_store.create_workspace, payload.name, payload.workspace_id)
    except StorageError as e:
        raise HTTPException(503, str(e)) from e
    return serialize_workspace(ws)


@router.get("")
async def list_workspaces_endpoint(
    runtime: Annotated[LivepatchRuntime, Depends(get_runtime)],
) -> dict[str, Any]:
    workspaces = await asyncio.to_thread(runtime.file_store.list_workspaces)
    return {"workspaces": [serialize_workspace(ws) for ws in workspaces]}


@router.get("/{workspace_id}")
async def get_workspace_endpoint(ws: Annotated[Workspace, Depends(get_workspace)]) -> dict[str, Any]:
    return serialize_workspace(ws)


@router.delete("/{workspace_id}")
async def delete_workspace_endpoint(
    workspace_id: str,
    runtime: Annotated[LivepatchRuntime, Depends(get_runtime)],
) -> dict[str, Any]:
    """Delete a workspace with its files, checkpoints and audit events."""
    deleted = await runtime.delete_workspace(workspace_id)
    if not deleted:
        raise HTTPException(404, f"Workspace not found: {workspace_id}")
    return {"ok": True, "workspace_id": workspace_id}


@router.get("/{workspace_id}/files")
async def list_files_endpoint(
    ws: Annotated[Workspace, Depends(get_workspace)],
    runtime: Annotated[LivepatchRuntime, Depends(get_runtime)],
) -> dict[str, Any]:
    files = await asyncio.to_thread(runtime.file_store.list_files, ws.id)
    return {"workspace_id": ws.id, "files": [serialize_file(f) for f in files]}


@router.get("/{workspace_id}/files/{path:path}")
async def read_file_endpoint(
    path: str,
    ws: Annotated[Workspace, Depends(get_workspace)],
    runtime: Annotated[LivepatchRuntime, Depends(get_runtime)],
) -> dict[str, Any]:
    try:
        vf = await asyncio.to_thread(runtime.file_store.get_file, ws.id, path)
    except InvalidPathError as e:
        raise HTTPException(400, str(e)) from e
    if vf is None:
        raise HTTPException(404, str(FileNotFoundInStore(ws.id, path)))
    return serialize_file(vf, include_content=True)
