"""Directive, patch and checkpoint errors.

Storage failures live in ``storage.errors``; everything raised by the
stream/patch/checkpoint pipeline derives from ``LivepatchError``.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from core.directives.types import SearchReplaceHunk


class LivepatchError(Exception):
    """Base class for pipeline errors."""


class ParseErrorReason(str, Enum):
    MALFORMED = "malformed"
    MISSING_FIELD = "missing_field"
    EMPTY_SEARCH = "empty_search"
    UNSUPPORTED_TOOL = "unsupported_tool"
    INVALID_MARKER = "invalid_marker"


class DirectiveParseError(LivepatchError):
    def __init__(self, reason: ParseErrorReason, detail: str, tool: str | None = None, path: str | None = None):
        super().__init__(f"{reason.value}: {detail}")
        self.reason = reason
        self.detail = detail
        self.tool = tool
        self.path = path


class NoMatchError(LivepatchError):
    """Search text of a hunk is not present in the current content."""

    def __init__(self, hunk: SearchReplaceHunk, detail: str | None = None):
        preview = hunk.search if len(hunk.search) <= 80 else hunk.search[:77] + "..."
        super().__init__(detail or f"Search text not found: {preview!r}")
        self.hunk = hunk


class PatchValidationError(LivepatchError):
    def __init__(self, expected: str):
        super().__init__(f"Content after edit does not contain {expected!r}")
        self.expected = expected


class CheckpointNotFoundError(LivepatchError, LookupError):
    def __init__(self, checkpoint_id: str):
        super().__init__(f"Checkpoint not found: {checkpoint_id}")
        self.checkpoint_id = checkpoint_id


class RestoreTransactionError(LivepatchError):
    """Restore failed part-way; the store transaction was rolled back."""


class PreRevertStateExpiredError(LivepatchError):
    def __init__(self, workspace_id: str, message_id: str):
        super().__init__(f"Pre-revert state for message {message_id} in {workspace_id} has expired")
        self.workspace_id = workspace_id
        self.message_id = message_id


class TurnAbortedError(LivepatchError):
    """The turn stopped executing directives (store unavailable)."""
