"""Directive extraction: stream scanning, parsing and patch application."""

from .parser import DirectiveParser, canonical_tool, parse_marker
from .patch import PatchOutcome, apply_hunk, apply_hunks, count_occurrences, find_nth_occurrence
from .scanner import StreamScanner
from .types import (
    BlockKind,
    CorrelationId,
    CorrelationMarker,
    DeleteFileDirective,
    DetectedBlock,
    EditFileDirective,
    SearchReplaceHunk,
    ToolDirective,
    WriteFileDirective,
)

__all__ = [
    "BlockKind",
    "CorrelationId",
    "CorrelationMarker",
    "DeleteFileDirective",
    "DetectedBlock",
    "DirectiveParser",
    "EditFileDirective",
    "PatchOutcome",
    "SearchReplaceHunk",
    "StreamScanner",
    "ToolDirective",
    "WriteFileDirective",
    "apply_hunk",
    "apply_hunks",
    "canonical_tool",
    "count_occurrences",
    "find_nth_occurrence",
    "parse_marker",
]
