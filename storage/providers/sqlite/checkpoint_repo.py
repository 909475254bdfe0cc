"""SQLite repository for workspace checkpoints (file-set snapshots)."""

from __future__ import annotations

import sqlite3
import time
import uuid
from pathlib import Path

from storage.models import CheckpointRow, FileSnapshot
from storage.providers.sqlite._conn import connect, default_db_path, ensure_parent


class SQLiteCheckpointRepo:
    """Checkpoint rows plus one checkpoint_files row per snapshotted file.

    Rows are insert-only; the only deletes are workspace purges and
    replacement of an expired pre-revert snapshot.
    """

    def __init__(self, db_path: Path | str | None = None) -> None:
        self.db_path = Path(db_path) if db_path is not None else default_db_path()
        self._initialized = False

    def init(self) -> None:
        if self._initialized:
            return
        ensure_parent(self.db_path)
        with connect(self.db_path, "init") as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS checkpoints (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT NOT NULL UNIQUE,
                    workspace_id TEXT NOT NULL,
                    message_id TEXT NOT NULL,
                    kind TEXT NOT NULL DEFAULT 'turn',
                    created_at REAL NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS checkpoint_files (
                    checkpoint_id TEXT NOT NULL,
                    position INTEGER NOT NULL,
                    path TEXT NOT NULL,
                    content_hash TEXT NOT NULL,
                    content TEXT NOT NULL,
                    kind TEXT NOT NULL DEFAULT 'file',
                    file_type TEXT NOT NULL DEFAULT 'text',
                    PRIMARY KEY (checkpoint_id, position)
                )
                """
            )
            conn.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_checkpoints_workspace
                ON checkpoints (workspace_id, kind, seq)
                """
            )
        self._initialized = True

    def close(self) -> None:
        """Compatibility no-op for protocol parity."""
        self._initialized = False

    def save(
        self,
        workspace_id: str,
        message_id: str,
        files: list[FileSnapshot],
        kind: str = "turn",
    ) -> CheckpointRow:
        row = CheckpointRow(
            id=str(uuid.uuid4()),
            workspace_id=workspace_id,
            message_id=message_id,
            created_at=time.time(),
            files=tuple(files),
            kind=kind,
        )
        with connect(self.db_path, "save_checkpoint") as conn:
            conn.execute(
                """
                INSERT INTO checkpoints (id, workspace_id, message_id, kind, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (row.id, workspace_id, message_id, kind, row.created_at),
            )
            conn.executemany(
                """
                INSERT INTO checkpoint_files
                (checkpoint_id, position, path, content_hash, content, kind, file_type)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (row.id, i, snap.path, snap.content_hash, snap.content, snap.kind, snap.file_type)
                    for i, snap in enumerate(files)
                ],
            )
        return row

    def get(self, checkpoint_id: str) -> CheckpointRow | None:
        with connect(self.db_path, "get_checkpoint") as conn:
            row = conn.execute("SELECT * FROM checkpoints WHERE id = ?", (checkpoint_id,)).fetchone()
            if row is None:
                return None
            return self._hydrate(conn, row)

    def list_for_workspace(self, workspace_id: str, kind: str = "turn") -> list[CheckpointRow]:
        with connect(self.db_path, "list_checkpoints") as conn:
            rows = conn.execute(
                """
                SELECT * FROM checkpoints
                WHERE workspace_id = ? AND kind = ?
                ORDER BY seq ASC
                """,
                (workspace_id, kind),
            ).fetchall()
            return [self._hydrate(conn, row) for row in rows]

    def latest_for_message(self, workspace_id: str, message_id: str, kind: str = "turn") -> CheckpointRow | None:
        with connect(self.db_path, "latest_checkpoint_for_message") as conn:
            row = conn.execute(
                """
                SELECT * FROM checkpoints
                WHERE workspace_id = ? AND message_id = ? AND kind = ?
                ORDER BY seq DESC
                LIMIT 1
                """,
                (workspace_id, message_id, kind),
            ).fetchone()
            if row is None:
                return None
            return self._hydrate(conn, row)

    def delete_for_message(self, workspace_id: str, message_id: str, kind: str) -> int:
        with connect(self.db_path, "delete_checkpoints_for_message") as conn:
            ids = [
                r["id"]
                for r in conn.execute(
                    "SELECT id FROM checkpoints WHERE workspace_id = ? AND message_id = ? AND kind = ?",
                    (workspace_id, message_id, kind),
                )
            ]
            return self._delete_ids(conn, ids)

    def delete_workspace_checkpoints(self, workspace_id: str, kind: str | None = None) -> int:
        with connect(self.db_path, "delete_workspace_checkpoints") as conn:
            if kind is None:
                cursor = conn.execute("SELECT id FROM checkpoints WHERE workspace_id = ?", (workspace_id,))
            else:
                cursor = conn.execute(
                    "SELECT id FROM checkpoints WHERE workspace_id = ? AND kind = ?",
                    (workspace_id, kind),
                )
            ids = [r["id"] for r in cursor]
            return self._delete_ids(conn, ids)

    @staticmethod
    def _delete_ids(conn: sqlite3.Connection, ids: list[str]) -> int:
        if not ids:
            return 0
        placeholders = ",".join("?" * len(ids))
        # @@@param_sql - keep IN-clause values parameterized.
        conn.execute(f"DELETE FROM checkpoint_files WHERE checkpoint_id IN ({placeholders})", ids)
        cursor = conn.execute(f"DELETE FROM checkpoints WHERE id IN ({placeholders})", ids)
        return int(cursor.rowcount)

    @staticmethod
    def _hydrate(conn: sqlite3.Connection, row: sqlite3.Row) -> CheckpointRow:
        file_rows = conn.execute(
            "SELECT * FROM checkpoint_files WHERE checkpoint_id = ? ORDER BY position ASC",
            (row["id"],),
        ).fetchall()
        return CheckpointRow(
            id=row["id"],
            workspace_id=row["workspace_id"],
            message_id=row["message_id"],
            created_at=row["created_at"],
            kind=row["kind"],
            files=tuple(
                FileSnapshot(
                    path=f["path"],
                    content_hash=f["content_hash"],
                    content=f["content"],
                    kind=f["kind"],
                    file_type=f["file_type"],
                )
                for f in file_rows
            ),
        )
