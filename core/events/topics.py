"""Event topic names and payload models."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

FILES_CHANGED = "files-changed"
TOOL_EXECUTED = "tool-executed"

Topic = Literal["files-changed", "tool-executed"]
TOPICS: tuple[str, ...] = (FILES_CHANGED, TOOL_EXECUTED)

FilesChangedReason = Literal["directive", "restore", "pre_revert_restore"]
ToolAction = Literal["created", "updated", "edited", "deleted", "noop", "none"]


class FilesChangedEvent(BaseModel):
    """Coarse invalidation: observers should re-read the workspace."""

    workspace_id: str
    reason: FilesChangedReason = "directive"
    paths: list[str] = Field(default_factory=list)


class ToolExecutedEvent(BaseModel):
    """One directive attempt, success or failure."""

    workspace_id: str
    message_id: str | None = None
    directive: dict[str, Any] = Field(default_factory=dict, description="Directive summary (kind, path, correlation_id)")
    result: dict[str, Any] = Field(default_factory=dict, description="status, message, error")
    action: ToolAction = "none"
    path: str | None = None


PAYLOAD_TYPES: dict[str, type[BaseModel]] = {
    FILES_CHANGED: FilesChangedEvent,
    TOOL_EXECUTED: ToolExecutedEvent,
}
