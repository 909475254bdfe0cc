"""Storage error taxonomy shared by every provider."""

from __future__ import annotations


class StorageError(RuntimeError):
    """Underlying store I/O failed."""


class StoreUnavailableError(StorageError):
    """The store cannot be reached at all; callers should stop issuing writes."""


class FileNotFoundInStore(StorageError, LookupError):
    def __init__(self, workspace_id: str, path: str) -> None:
        super().__init__(f"File not found: {path} (workspace {workspace_id})")
        self.workspace_id = workspace_id
        self.path = path


class WorkspaceNotFoundError(StorageError, LookupError):
    def __init__(self, workspace_id: str) -> None:
        super().__init__(f"Workspace not found: {workspace_id}")
        self.workspace_id = workspace_id


class InvalidPathError(StorageError, ValueError):
    pass
