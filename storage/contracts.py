"""Repository contracts. Providers satisfy these structurally."""

from __future__ import annotations

from typing import Any, Protocol

from storage.models import CheckpointRow, FileSnapshot, VirtualFile, Workspace, WriteOutcome, ToolEventRow


class FileStore(Protocol):
    """Workspace and virtual file persistence."""

    def init(self) -> None:
        """Create tables; safe to call more than once."""

    def close(self) -> None: ...

    def create_workspace(self, name: str, workspace_id: str | None = None) -> Workspace: ...

    def get_workspace(self, workspace_id: str) -> Workspace | None: ...

    def list_workspaces(self) -> list[Workspace]: ...

    def delete_workspace(self, workspace_id: str) -> bool: ...

    def write_file(self, workspace_id: str, path: str, content: str) -> WriteOutcome: ...

    def create_directory(self, workspace_id: str, path: str) -> VirtualFile: ...

    def delete_file(self, workspace_id: str, path: str) -> bool: ...

    def read_file(self, workspace_id: str, path: str) -> str: ...

    def get_file(self, workspace_id: str, path: str) -> VirtualFile | None: ...

    def list_files(self, workspace_id: str) -> list[VirtualFile]: ...

    def replace_all_files(self, workspace_id: str, files: list[FileSnapshot]) -> None:
        """Make the live file set exactly ``files`` in a single transaction."""


class CheckpointRepo(Protocol):
    """Immutable snapshot persistence."""

    def init(self) -> None: ...

    def close(self) -> None: ...

    def save(
        self,
        workspace_id: str,
        message_id: str,
        files: list[FileSnapshot],
        kind: str = "turn",
    ) -> CheckpointRow: ...

    def get(self, checkpoint_id: str) -> CheckpointRow | None: ...

    def list_for_workspace(self, workspace_id: str, kind: str = "turn") -> list[CheckpointRow]: ...

    def latest_for_message(self, workspace_id: str, message_id: str, kind: str = "turn") -> CheckpointRow | None: ...

    def delete_for_message(self, workspace_id: str, message_id: str, kind: str) -> int: ...

    def delete_workspace_checkpoints(self, workspace_id: str, kind: str | None = None) -> int: ...


class ToolEventRepo(Protocol):
    """Audit trail of tool-executed events."""

    def init(self) -> None: ...

    def close(self) -> None: ...

    def append_event(
        self,
        workspace_id: str,
        topic: str,
        data: dict[str, Any],
        message_id: str | None = None,
    ) -> int: ...

    def list_events(
        self,
        workspace_id: str,
        *,
        after: int = 0,
        limit: int = 200,
        message_id: str | None = None,
    ) -> list[ToolEventRow]: ...

    def latest_seq(self, workspace_id: str) -> int: ...

    def delete_workspace_events(self, workspace_id: str) -> int: ...
