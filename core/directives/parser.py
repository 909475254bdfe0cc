"""Turn detected blocks into typed directives."""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from core.directives.scanner import DIVIDER, REPLACE_END, SEARCH_START
from core.directives.types import (
    BlockKind,
    CorrelationId,
    CorrelationMarker,
    DeleteFileDirective,
    DetectedBlock,
    DirectiveKind,
    EditFileDirective,
    SearchReplaceHunk,
    ToolDirective,
    WriteFileDirective,
)
from core.errors import DirectiveParseError, ParseErrorReason

logger = logging.getLogger(__name__)

TOOL_ALIASES: dict[str, DirectiveKind] = {
    "write_file": "write_file",
    "pilotwrite": "write_file",
    "edit_file": "edit_file",
    "pilotedit": "edit_file",
    "delete_file": "delete_file",
    "pilotdelete": "delete_file",
}

_MARKER = re.compile(
    r"^<!--\s*tool:(?P<tool>[A-Za-z_][\w-]*):(?P<ts>\d+):(?P<suffix>[A-Za-z0-9]+)"
    r"(?:\s+path=(?P<path>\S+?))?\s*-->$"
)


def canonical_tool(name: str) -> DirectiveKind | None:
    return TOOL_ALIASES.get(name.strip().lower())


def parse_marker(block: DetectedBlock) -> CorrelationMarker:
    m = _MARKER.match(block.text.strip())
    if m is None:
        raise DirectiveParseError(ParseErrorReason.INVALID_MARKER, f"Unrecognized marker: {block.text!r}")
    return CorrelationMarker(
        tool=m.group("tool"),
        timestamp_ms=int(m.group("ts")),
        suffix=m.group("suffix"),
        path=m.group("path"),
    )


def split_hunks(text: str) -> list[tuple[str, str]]:
    """Split edit-fence text into raw ``(search, replace)`` pairs."""
    hunks: list[tuple[str, str]] = []
    search: list[str] = []
    replace: list[str] = []
    mode = "none"
    for line in text.split("\n"):
        marker = line.strip()
        if marker == SEARCH_START:
            mode = "search"
            search, replace = [], []
        elif marker == DIVIDER and mode == "search":
            mode = "replace"
        elif marker == REPLACE_END and mode == "replace":
            hunks.append(("\n".join(search), "\n".join(replace)))
            mode = "none"
        elif mode == "search":
            search.append(line.rstrip("\r"))
        elif mode == "replace":
            replace.append(line.rstrip("\r"))
    return hunks


class DirectiveParser:
    """Stateless; ``parse`` may be called from any consumer loop."""

    def parse(self, block: DetectedBlock, marker: CorrelationMarker | None = None) -> ToolDirective:
        if block.kind is BlockKind.STRUCTURED:
            return self._parse_structured(block, marker)
        if block.kind is BlockKind.EDIT:
            return self._parse_edit(block, marker)
        raise DirectiveParseError(ParseErrorReason.MALFORMED, "Markers are not directives")

    # ------------------------------------------------------------------
    # Structured (JSON) blocks
    # ------------------------------------------------------------------

    def _parse_structured(self, block: DetectedBlock, marker: CorrelationMarker | None) -> ToolDirective:
        try:
            payload = json.loads(block.text.strip())
        except json.JSONDecodeError as exc:
            raise DirectiveParseError(ParseErrorReason.MALFORMED, f"Invalid JSON: {exc.msg}") from exc
        if not isinstance(payload, dict):
            raise DirectiveParseError(ParseErrorReason.MALFORMED, "Payload must be a JSON object")

        tool = payload.get("tool")
        if not isinstance(tool, str) or not tool.strip():
            raise DirectiveParseError(ParseErrorReason.MISSING_FIELD, "Missing required field: tool")
        kind = canonical_tool(tool)
        if kind is None:
            raise DirectiveParseError(ParseErrorReason.UNSUPPORTED_TOOL, f"Unsupported tool: {tool}", tool=tool)

        path = payload.get("path") or payload.get("file") or payload.get("filename")
        if not isinstance(path, str) or not path.strip():
            raise DirectiveParseError(ParseErrorReason.MISSING_FIELD, "Missing required field: path", tool=tool)

        correlation_id = self._correlate(kind, marker)

        if kind == "write_file":
            content = payload.get("content")
            if not isinstance(content, str):
                raise DirectiveParseError(
                    ParseErrorReason.MISSING_FIELD, "Missing required field: content", tool=tool, path=path
                )
            return WriteFileDirective(path=path, content=content, correlation_id=correlation_id)

        if kind == "delete_file":
            return DeleteFileDirective(path=path, correlation_id=correlation_id)

        hunks = self._structured_hunks(payload, tool, path)
        return EditFileDirective(
            path=path,
            hunks=tuple(hunks),
            correlation_id=correlation_id,
            dry_run=bool(payload.get("dryRun", payload.get("dry_run", False))),
            source=BlockKind.STRUCTURED,
        )

    def _structured_hunks(self, payload: dict[str, Any], tool: str, path: str) -> list[SearchReplaceHunk]:
        raw_blocks = payload.get("searchReplaceBlocks") or payload.get("search_replace_blocks")
        if raw_blocks is None:
            if "search" not in payload:
                raise DirectiveParseError(
                    ParseErrorReason.MISSING_FIELD,
                    "Missing required field: search or searchReplaceBlocks",
                    tool=tool,
                    path=path,
                )
            raw_blocks = [payload]
        if not isinstance(raw_blocks, list) or not raw_blocks:
            raise DirectiveParseError(
                ParseErrorReason.MALFORMED, "searchReplaceBlocks must be a non-empty list", tool=tool, path=path
            )

        hunks: list[SearchReplaceHunk] = []
        for i, raw in enumerate(raw_blocks, start=1):
            if not isinstance(raw, dict):
                raise DirectiveParseError(ParseErrorReason.MALFORMED, f"Block {i} is not an object", tool=tool, path=path)
            search = raw.get("search")
            replace = raw.get("replace", "")
            if not isinstance(search, str) or not isinstance(replace, str):
                raise DirectiveParseError(
                    ParseErrorReason.MISSING_FIELD, f"Block {i} needs string search/replace", tool=tool, path=path
                )
            occurrence = raw.get("occurrenceIndex", raw.get("occurrence_index"))
            if occurrence is not None and (not isinstance(occurrence, int) or isinstance(occurrence, bool) or occurrence < 1):
                raise DirectiveParseError(
                    ParseErrorReason.MALFORMED, f"Block {i} occurrenceIndex must be >= 1", tool=tool, path=path
                )
            validate_after = raw.get("validateAfter", raw.get("validate_after"))
            hunk = SearchReplaceHunk(
                search=search,
                replace=replace,
                replace_all=bool(raw.get("replaceAll", raw.get("replace_all", False))),
                occurrence_index=occurrence,
                validate_after=validate_after if isinstance(validate_after, str) and validate_after else None,
            )
            if not hunk.search:
                raise DirectiveParseError(
                    ParseErrorReason.EMPTY_SEARCH, f"Block {i} has an empty search section", tool=tool, path=path
                )
            hunks.append(hunk)
        return hunks

    # ------------------------------------------------------------------
    # Edit fences
    # ------------------------------------------------------------------

    def _parse_edit(self, block: DetectedBlock, marker: CorrelationMarker | None) -> EditFileDirective:
        correlation_id = self._correlate("edit_file", marker)
        paired = marker is not None and correlation_id == marker.correlation_id
        path = (marker.path if paired and marker.path else None) or block.path_hint
        if not path:
            raise DirectiveParseError(ParseErrorReason.MISSING_FIELD, "Edit block has no target path", tool="edit_file")

        raw_hunks = split_hunks(block.text)
        if not raw_hunks:
            raise DirectiveParseError(ParseErrorReason.MALFORMED, "No complete hunk in edit block", path=path)
        hunks: list[SearchReplaceHunk] = []
        for i, (search, replace) in enumerate(raw_hunks, start=1):
            hunk = SearchReplaceHunk(search=search, replace=replace)
            if not hunk.search:
                raise DirectiveParseError(
                    ParseErrorReason.EMPTY_SEARCH, f"Hunk {i} has an empty search section", tool="edit_file", path=path
                )
            hunks.append(hunk)
        return EditFileDirective(path=path, hunks=tuple(hunks), correlation_id=correlation_id)

    # ------------------------------------------------------------------
    # Correlation
    # ------------------------------------------------------------------

    @staticmethod
    def _correlate(kind: DirectiveKind, marker: CorrelationMarker | None) -> CorrelationId:
        if marker is None:
            return CorrelationId.fresh(kind)
        if canonical_tool(marker.tool) != kind:
            logger.warning(
                "marker %s:%s names tool %r but the next directive is %s; using a fresh id",
                marker.timestamp_ms,
                marker.suffix,
                marker.tool,
                kind,
            )
            return CorrelationId.fresh(kind)
        return marker.correlation_id
