"""Search/replace patch application.

Pure functions over strings. Matching is verbatim and case-sensitive; when
the search text occurs more than once only the leftmost occurrence is
replaced unless the hunk asks for ``replace_all`` or a specific
``occurrence_index``.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from core.directives.types import SearchReplaceHunk
from core.errors import NoMatchError, PatchValidationError


@dataclass(frozen=True)
class PatchOutcome:
    content: str
    applied: int
    noops: int

    @property
    def changed(self) -> bool:
        return self.applied > 0


def count_occurrences(content: str, search: str) -> int:
    """Non-overlapping occurrences of ``search``."""
    if not search:
        return 0
    return content.count(search)


def find_nth_occurrence(content: str, search: str, n: int) -> int:
    """Index of the n-th (1-based, non-overlapping) occurrence, or -1."""
    if not search or n < 1:
        return -1
    idx = -1
    start = 0
    for _ in range(n):
        idx = content.find(search, start)
        if idx < 0:
            return -1
        start = idx + len(search)
    return idx


def _replace_at(content: str, idx: int, hunk: SearchReplaceHunk) -> str:
    # @@@idempotent - replace already sitting at the match means this hunk ran before.
    if hunk.replace and content.startswith(hunk.replace, idx):
        return content
    return content[:idx] + hunk.replace + content[idx + len(hunk.search) :]


def apply_hunk(content: str, hunk: SearchReplaceHunk) -> str:
    """Apply one hunk; raises ``NoMatchError`` when the search text is absent."""
    search = hunk.search
    if not search:
        raise NoMatchError(hunk, "Empty search text")

    if hunk.replace_all:
        if search not in content:
            raise NoMatchError(hunk)
        result = content.replace(search, hunk.replace)
    elif hunk.occurrence_index is not None:
        idx = find_nth_occurrence(content, search, hunk.occurrence_index)
        if idx < 0:
            found = count_occurrences(content, search)
            raise NoMatchError(
                hunk,
                f"Occurrence {hunk.occurrence_index} requested but search text occurs {found} time(s)",
            )
        result = _replace_at(content, idx, hunk)
    else:
        idx = content.find(search)
        if idx < 0:
            raise NoMatchError(hunk)
        result = _replace_at(content, idx, hunk)

    if hunk.validate_after is not None and hunk.validate_after not in result:
        raise PatchValidationError(hunk.validate_after)
    return result


def apply_hunks(content: str, hunks: Iterable[SearchReplaceHunk]) -> PatchOutcome:
    """Apply hunks in order; each sees the output of the previous one."""
    current = content
    applied = 0
    noops = 0
    for hunk in hunks:
        updated = apply_hunk(current, hunk)
        if updated == current:
            noops += 1
        else:
            applied += 1
        current = updated
    return PatchOutcome(content=current, applied=applied, noops=noops)
