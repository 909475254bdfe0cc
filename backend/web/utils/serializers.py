"""Response serializers for storage models."""

from typing import Any

from storage.models import CheckpointRow, ToolEventRow, VirtualFile, Workspace


def serialize_workspace(ws: Workspace) -> dict[str, Any]:
    return {"id": ws.id, "name": ws.name, "created_at": ws.created_at}


def serialize_file(vf: VirtualFile, include_content: bool = False) -> dict[str, Any]:
    data: dict[str, Any] = {
        "path": vf.path,
        "name": vf.name,
        "kind": vf.kind,
        "size": vf.size,
        "file_type": vf.file_type,
        "created_at": vf.created_at,
        "updated_at": vf.updated_at,
    }
    if include_content:
        data["content"] = vf.content
    return data


def serialize_checkpoint(row: CheckpointRow) -> dict[str, Any]:
    return {
        "id": row.id,
        "workspace_id": row.workspace_id,
        "message_id": row.message_id,
        "created_at": row.created_at,
        "files": [{"path": s.path, "content_hash": s.content_hash, "kind": s.kind} for s in row.files],
    }


def serialize_tool_event(row: ToolEventRow) -> dict[str, Any]:
    return {
        "seq": row.seq,
        "message_id": row.message_id,
        "topic": row.topic,
        "data": row.data,
        "created_at": row.created_at,
    }
