from .container import StorageContainer
from .contracts import CheckpointRepo, FileStore, ToolEventRepo
from .errors import (
    FileNotFoundInStore,
    InvalidPathError,
    StorageError,
    StoreUnavailableError,
    WorkspaceNotFoundError,
)

__all__ = [
    "StorageContainer",
    "FileStore",
    "CheckpointRepo",
    "ToolEventRepo",
    "StorageError",
    "StoreUnavailableError",
    "FileNotFoundInStore",
    "WorkspaceNotFoundError",
    "InvalidPathError",
]
