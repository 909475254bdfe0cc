"""Provider-neutral storage models for workspaces, files, checkpoints and tool events."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

FileKind = Literal["file", "directory"]


@dataclass
class Workspace:
    id: str
    name: str
    created_at: float


@dataclass
class VirtualFile:
    workspace_id: str
    path: str
    content: str
    kind: FileKind = "file"
    size: int = 0
    file_type: str = "text"
    created_at: float = 0.0
    updated_at: float = 0.0

    @property
    def name(self) -> str:
        return self.path.rsplit("/", 1)[-1]

    @property
    def is_directory(self) -> bool:
        return self.kind == "directory"


@dataclass
class WriteOutcome:
    file: VirtualFile
    created: bool


@dataclass(frozen=True)
class FileSnapshot:
    path: str
    content_hash: str
    content: str
    kind: FileKind = "file"
    file_type: str = "text"


@dataclass(frozen=True)
class CheckpointRow:
    id: str
    workspace_id: str
    message_id: str
    created_at: float
    files: tuple[FileSnapshot, ...] = ()
    kind: Literal["turn", "pre_revert"] = "turn"

    def paths(self) -> list[str]:
        return [snap.path for snap in self.files]


@dataclass
class ToolEventRow:
    seq: int
    workspace_id: str
    message_id: str | None
    topic: str
    data: dict
    created_at: float
