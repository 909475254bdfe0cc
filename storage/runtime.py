"""Runtime wiring helpers for the storage container."""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path

from storage.container import StorageContainer


def build_storage_container(
    *,
    db_path: str | Path | None = None,
    env: Mapping[str, str] | None = None,
) -> StorageContainer:
    """Build a runtime storage container from config/environment.

    Explicit ``db_path`` wins over ``LIVEPATCH_DB_PATH``; with neither the
    container falls back to ``~/.livepatch/livepatch.db``.
    """
    env_map = env if env is not None else os.environ
    resolved = db_path if db_path is not None else _resolve_db_path(env_map)
    return StorageContainer(db_path=resolved)


def _resolve_db_path(env: Mapping[str, str]) -> Path | None:
    raw = env.get("LIVEPATCH_DB_PATH")
    if raw is None or not raw.strip():
        return None
    return Path(os.path.expandvars(raw.strip())).expanduser()
