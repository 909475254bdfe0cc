"""SQLite repository for the tool-executed audit trail."""

from __future__ import annotations

import json
import sqlite3
import time
from pathlib import Path
from typing import Any

from storage.models import ToolEventRow
from storage.providers.sqlite._conn import connect, default_db_path, ensure_parent


class SQLiteToolEventRepo:
    """Append-only event rows with a per-database monotonic ``seq`` cursor."""

    def __init__(self, db_path: str | Path | None = None) -> None:
        self.db_path = Path(db_path) if db_path is not None else default_db_path()
        self._initialized = False

    def init(self) -> None:
        if self._initialized:
            return
        ensure_parent(self.db_path)
        with connect(self.db_path, "init") as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS tool_events (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    workspace_id TEXT NOT NULL,
                    message_id TEXT,
                    topic TEXT NOT NULL,
                    data TEXT NOT NULL,
                    created_at REAL NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_tool_events_workspace
                ON tool_events (workspace_id, seq)
                """
            )
        self._initialized = True

    def close(self) -> None:
        self._initialized = False

    def append_event(
        self,
        workspace_id: str,
        topic: str,
        data: dict[str, Any],
        message_id: str | None = None,
    ) -> int:
        payload = json.dumps(data, ensure_ascii=False)
        with connect(self.db_path, "append_event") as conn:
            cursor = conn.execute(
                """
                INSERT INTO tool_events (workspace_id, message_id, topic, data, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (workspace_id, message_id, topic, payload, time.time()),
            )
            return int(cursor.lastrowid)

    def list_events(
        self,
        workspace_id: str,
        *,
        after: int = 0,
        limit: int = 200,
        message_id: str | None = None,
    ) -> list[ToolEventRow]:
        query = "SELECT * FROM tool_events WHERE workspace_id = ? AND seq > ?"
        params: list[Any] = [workspace_id, after]
        if message_id is not None:
            query += " AND message_id = ?"
            params.append(message_id)
        query += " ORDER BY seq ASC LIMIT ?"
        params.append(limit)
        with connect(self.db_path, "list_events") as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_event(row) for row in rows]

    def latest_seq(self, workspace_id: str) -> int:
        with connect(self.db_path, "latest_seq") as conn:
            row = conn.execute(
                "SELECT MAX(seq) FROM tool_events WHERE workspace_id = ?",
                (workspace_id,),
            ).fetchone()
        return int(row[0]) if row and row[0] is not None else 0

    def delete_workspace_events(self, workspace_id: str) -> int:
        with connect(self.db_path, "delete_workspace_events") as conn:
            cursor = conn.execute("DELETE FROM tool_events WHERE workspace_id = ?", (workspace_id,))
            return int(cursor.rowcount)

    @staticmethod
    def _row_to_event(row: sqlite3.Row) -> ToolEventRow:
        return ToolEventRow(
            seq=row["seq"],
            workspace_id=row["workspace_id"],
            message_id=row["message_id"],
            topic=row["topic"],
            data=json.loads(row["data"]) if row["data"] else {},
            created_at=row["created_at"],
        )
