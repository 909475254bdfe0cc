"""Virtual path normalization."""

from __future__ import annotations

from pathlib import PurePosixPath

from storage.errors import InvalidPathError


def normalize_path(path: str) -> str:
    """Normalize a workspace-relative path to ``a/b/c.ext`` form.

    Backslashes become slashes, ``./`` and leading ``/`` are dropped.
    Empty paths and ``..`` segments are rejected.
    """
    if not isinstance(path, str):
        raise InvalidPathError(f"Invalid path: {path!r}")
    raw = path.strip().replace("\\", "/")
    parts = [p for p in raw.split("/") if p not in ("", ".")]
    if not parts:
        raise InvalidPathError(f"Invalid path: {path!r}")
    if ".." in parts:
        raise InvalidPathError(f"Path escapes workspace: {path!r}")
    return "/".join(parts)


def file_type_for(path: str) -> str:
    """Type hint derived from the extension (``"text"`` when there is none)."""
    suffix = PurePosixPath(path).suffix
    return suffix.lstrip(".").lower() or "text"
