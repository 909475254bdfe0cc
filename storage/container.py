"""Storage container: one database, three repos, one lifecycle."""

from __future__ import annotations

import logging
from pathlib import Path

from .contracts import CheckpointRepo, FileStore, ToolEventRepo
from .providers.sqlite._conn import default_db_path

logger = logging.getLogger(__name__)


class StorageContainer:
    """Composition root for storage repos.

    Repos are built lazily and cached, so every caller shares the same
    store object. ``init()`` must run before first use; ``close()`` tears
    everything down.
    """

    _REPO_NAMES = ("file_store", "checkpoint_repo", "tool_event_repo")

    def __init__(self, db_path: str | Path | None = None) -> None:
        self._db_path = Path(db_path) if db_path else default_db_path()
        self._repos: dict[str, object] = {}

    @property
    def db_path(self) -> Path:
        return self._db_path

    def init(self) -> None:
        for name in self._REPO_NAMES:
            getattr(self, name)().init()
        logger.info("storage initialized at %s", self._db_path)

    def close(self) -> None:
        for repo in self._repos.values():
            repo.close()
        self._repos.clear()

    def file_store(self) -> FileStore:
        return self._build_repo("file_store", self._sqlite_file_store)

    def checkpoint_repo(self) -> CheckpointRepo:
        return self._build_repo("checkpoint_repo", self._sqlite_checkpoint_repo)

    def tool_event_repo(self) -> ToolEventRepo:
        return self._build_repo("tool_event_repo", self._sqlite_tool_event_repo)

    def purge_workspace(self, workspace_id: str) -> bool:
        """Delete all data for a workspace across all repos."""
        # @@@cascade-order - dependents first, workspace row last, so a failed purge can be retried.
        self.checkpoint_repo().delete_workspace_checkpoints(workspace_id)
        self.tool_event_repo().delete_workspace_events(workspace_id)
        return self.file_store().delete_workspace(workspace_id)

    def _build_repo(self, name: str, sqlite_factory):
        repo = self._repos.get(name)
        if repo is None:
            repo = sqlite_factory()
            self._repos[name] = repo
        return repo

    def _sqlite_file_store(self):
        from storage.providers.sqlite.file_store import SQLiteFileStore
        return SQLiteFileStore(db_path=self._db_path)

    def _sqlite_checkpoint_repo(self):
        from storage.providers.sqlite.checkpoint_repo import SQLiteCheckpointRepo
        return SQLiteCheckpointRepo(db_path=self._db_path)

    def _sqlite_tool_event_repo(self):
        from storage.providers.sqlite.tool_event_repo import SQLiteToolEventRepo
        return SQLiteToolEventRepo(db_path=self._db_path)
