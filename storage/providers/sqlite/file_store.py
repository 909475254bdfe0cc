"""SQLite-backed virtual file store (workspaces + files tables)."""

from __future__ import annotations

import logging
import sqlite3
import time
import uuid
from pathlib import Path

from storage.errors import InvalidPathError, FileNotFoundInStore, WorkspaceNotFoundError
from storage.models import FileSnapshot, VirtualFile, Workspace, WriteOutcome
from storage.paths import file_type_for, normalize_path
from storage.providers.sqlite._conn import connect, default_db_path, ensure_parent

logger = logging.getLogger(__name__)


class SQLiteFileStore:
    """Repository boundary for workspaces and their files.

    One connection per call, so the store can be driven from worker threads
    (``asyncio.to_thread``) without sharing a connection.
    """

    def __init__(self, db_path: Path | str | None = None) -> None:
        self.db_path = Path(db_path) if db_path is not None else default_db_path()
        self._initialized = False

    def init(self) -> None:
        if self._initialized:
            return
        ensure_parent(self.db_path)
        with connect(self.db_path, "init") as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS workspaces (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    created_at REAL NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS files (
                    workspace_id TEXT NOT NULL,
                    path TEXT NOT NULL,
                    content TEXT NOT NULL,
                    kind TEXT NOT NULL DEFAULT 'file',
                    size INTEGER NOT NULL DEFAULT 0,
                    file_type TEXT NOT NULL DEFAULT 'text',
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL,
                    PRIMARY KEY (workspace_id, path)
                )
                """
            )
        self._initialized = True

    def close(self) -> None:
        """Compatibility no-op for protocol parity."""
        self._initialized = False

    # ------------------------------------------------------------------
    # Workspaces
    # ------------------------------------------------------------------

    def create_workspace(self, name: str, workspace_id: str | None = None) -> Workspace:
        ws = Workspace(id=workspace_id or str(uuid.uuid4()), name=name, created_at=time.time())
        with connect(self.db_path, "create_workspace") as conn:
            conn.execute(
                "INSERT INTO workspaces (id, name, created_at) VALUES (?, ?, ?)",
                (ws.id, ws.name, ws.created_at),
            )
        return ws

    def get_workspace(self, workspace_id: str) -> Workspace | None:
        with connect(self.db_path, "get_workspace") as conn:
            row = conn.execute("SELECT * FROM workspaces WHERE id = ?", (workspace_id,)).fetchone()
        if row is None:
            return None
        return Workspace(id=row["id"], name=row["name"], created_at=row["created_at"])

    def list_workspaces(self) -> list[Workspace]:
        with connect(self.db_path, "list_workspaces") as conn:
            rows = conn.execute("SELECT * FROM workspaces ORDER BY created_at ASC").fetchall()
        return [Workspace(id=r["id"], name=r["name"], created_at=r["created_at"]) for r in rows]

    def delete_workspace(self, workspace_id: str) -> bool:
        with connect(self.db_path, "delete_workspace") as conn:
            conn.execute("DELETE FROM files WHERE workspace_id = ?", (workspace_id,))
            cursor = conn.execute("DELETE FROM workspaces WHERE id = ?", (workspace_id,))
            return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    def write_file(self, workspace_id: str, path: str, content: str) -> WriteOutcome:
        norm = normalize_path(path)
        now = time.time()
        with connect(self.db_path, "write_file") as conn:
            self._require_workspace(conn, workspace_id)
            existing = conn.execute(
                "SELECT kind FROM files WHERE workspace_id = ? AND path = ?",
                (workspace_id, norm),
            ).fetchone()
            if existing is not None and existing["kind"] == "directory":
                raise InvalidPathError(f"Cannot write file over directory: {norm}")
            self._upsert(conn, workspace_id, norm, content, "file", file_type_for(norm), now)
            row = self._select(conn, workspace_id, norm)
        return WriteOutcome(file=self._row_to_file(row), created=existing is None)

    def create_directory(self, workspace_id: str, path: str) -> VirtualFile:
        norm = normalize_path(path)
        with connect(self.db_path, "create_directory") as conn:
            self._require_workspace(conn, workspace_id)
            self._upsert(conn, workspace_id, norm, "", "directory", "directory", time.time())
            row = self._select(conn, workspace_id, norm)
        return self._row_to_file(row)

    def delete_file(self, workspace_id: str, path: str) -> bool:
        norm = normalize_path(path)
        with connect(self.db_path, "delete_file") as conn:
            cursor = conn.execute(
                "DELETE FROM files WHERE workspace_id = ? AND path = ?",
                (workspace_id, norm),
            )
            return cursor.rowcount > 0

    def read_file(self, workspace_id: str, path: str) -> str:
        vf = self.get_file(workspace_id, path)
        if vf is None or vf.is_directory:
            raise FileNotFoundInStore(workspace_id, path)
        return vf.content

    def get_file(self, workspace_id: str, path: str) -> VirtualFile | None:
        norm = normalize_path(path)
        with connect(self.db_path, "get_file") as conn:
            row = self._select(conn, workspace_id, norm)
        return self._row_to_file(row) if row is not None else None

    def list_files(self, workspace_id: str) -> list[VirtualFile]:
        with connect(self.db_path, "list_files") as conn:
            rows = conn.execute(
                "SELECT * FROM files WHERE workspace_id = ? ORDER BY path ASC",
                (workspace_id,),
            ).fetchall()
        return [self._row_to_file(row) for row in rows]

    def replace_all_files(self, workspace_id: str, files: list[FileSnapshot]) -> None:
        # @@@single-transaction - every delete and upsert shares one connection; any raise rolls all of them back.
        now = time.time()
        keep = {snap.path for snap in files}
        with connect(self.db_path, "replace_all_files") as conn:
            self._require_workspace(conn, workspace_id)
            live = [
                row["path"]
                for row in conn.execute("SELECT path FROM files WHERE workspace_id = ?", (workspace_id,))
            ]
            stale = [p for p in live if p not in keep]
            for stale_path in stale:
                conn.execute(
                    "DELETE FROM files WHERE workspace_id = ? AND path = ?",
                    (workspace_id, stale_path),
                )
            for snap in files:
                self._upsert(conn, workspace_id, snap.path, snap.content, snap.kind, snap.file_type, now)
        logger.debug(
            "replaced file set of %s: %d restored, %d removed", workspace_id, len(files), len(stale)
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _upsert(
        self,
        conn: sqlite3.Connection,
        workspace_id: str,
        path: str,
        content: str,
        kind: str,
        file_type: str,
        now: float,
    ) -> None:
        conn.execute(
            """
            INSERT INTO files
            (workspace_id, path, content, kind, size, file_type, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(workspace_id, path) DO UPDATE SET
                content = excluded.content,
                kind = excluded.kind,
                size = excluded.size,
                file_type = excluded.file_type,
                updated_at = excluded.updated_at
            """,
            (workspace_id, path, content, kind, len(content.encode("utf-8")), file_type, now, now),
        )

    @staticmethod
    def _select(conn: sqlite3.Connection, workspace_id: str, path: str) -> sqlite3.Row | None:
        return conn.execute(
            "SELECT * FROM files WHERE workspace_id = ? AND path = ?",
            (workspace_id, path),
        ).fetchone()

    @staticmethod
    def _require_workspace(conn: sqlite3.Connection, workspace_id: str) -> None:
        row = conn.execute("SELECT 1 FROM workspaces WHERE id = ?", (workspace_id,)).fetchone()
        if row is None:
            raise WorkspaceNotFoundError(workspace_id)

    @staticmethod
    def _row_to_file(row: sqlite3.Row) -> VirtualFile:
        return VirtualFile(
            workspace_id=row["workspace_id"],
            path=row["path"],
            content=row["content"],
            kind=row["kind"],
            size=row["size"],
            file_type=row["file_type"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )
