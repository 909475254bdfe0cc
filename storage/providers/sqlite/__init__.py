"""SQLite storage provider implementations."""

from .checkpoint_repo import SQLiteCheckpointRepo
from .file_store import SQLiteFileStore
from .tool_event_repo import SQLiteToolEventRepo

__all__ = [
    "SQLiteCheckpointRepo",
    "SQLiteFileStore",
    "SQLiteToolEventRepo",
]
