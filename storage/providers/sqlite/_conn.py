"""Connection helpers shared by the SQLite repos."""

from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from storage.errors import StorageError, StoreUnavailableError

_UNAVAILABLE_MARKERS = ("unable to open database", "disk i/o error", "database is locked")


def default_db_path() -> Path:
    return Path.home() / ".livepatch" / "livepatch.db"


def translate_error(exc: sqlite3.Error, operation: str) -> StorageError:
    message = str(exc).lower()
    if isinstance(exc, sqlite3.OperationalError) and any(m in message for m in _UNAVAILABLE_MARKERS):
        return StoreUnavailableError(f"Store unavailable during {operation}: {exc}")
    return StorageError(f"Store failure during {operation}: {exc}")


@contextmanager
def connect(db_path: Path, operation: str) -> Iterator[sqlite3.Connection]:
    """Open a short-lived connection; sqlite errors surface as StorageError."""
    try:
        conn = sqlite3.connect(str(db_path), timeout=30)
    except sqlite3.Error as exc:
        raise translate_error(exc, operation) from exc
    conn.row_factory = sqlite3.Row
    try:
        conn.execute("PRAGMA busy_timeout=30000")
        yield conn
        conn.commit()
    except sqlite3.Error as exc:
        conn.rollback()
        raise translate_error(exc, operation) from exc
    except BaseException:
        conn.rollback()
        raise
    finally:
        conn.close()


def ensure_parent(db_path: Path) -> None:
    try:
        db_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise StoreUnavailableError(f"Cannot create database directory {db_path.parent}: {exc}") from exc
