"""Directive types: detected raw blocks and the parsed directive variant."""

from __future__ import annotations

import random
import string
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Literal, Union

DirectiveKind = Literal["write_file", "edit_file", "delete_file"]

_BASE36 = string.digits + string.ascii_lowercase


class BlockKind(str, Enum):
    STRUCTURED = "structured"
    EDIT = "edit"
    MARKER = "marker"


@dataclass(frozen=True)
class DetectedBlock:
    """A complete block found in the stream.

    ``text`` is the fenced body for structured blocks, the hunk region for
    edit blocks, and the whole token for markers. ``start``/``end`` are
    absolute stream offsets.
    """

    kind: BlockKind
    text: str
    start: int
    end: int
    path_hint: str | None = None
    language: str | None = None


def strip_blank_lines(text: str) -> str:
    """Drop leading and trailing whitespace-only lines, keep inner text verbatim."""
    lines = text.split("\n")
    while lines and not lines[0].strip():
        lines.pop(0)
    while lines and not lines[-1].strip():
        lines.pop()
    return "\n".join(lines)


@dataclass(frozen=True)
class SearchReplaceHunk:
    search: str
    replace: str
    replace_all: bool = False
    occurrence_index: int | None = None
    validate_after: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "search", strip_blank_lines(self.search))
        object.__setattr__(self, "replace", strip_blank_lines(self.replace))


@dataclass(frozen=True)
class CorrelationId:
    tool: str
    timestamp_ms: int
    suffix: str

    def __str__(self) -> str:
        return f"{self.tool}_{self.timestamp_ms}_{self.suffix}"

    @classmethod
    def fresh(cls, tool: str) -> CorrelationId:
        suffix = "".join(random.choices(_BASE36, k=9))
        return cls(tool=tool, timestamp_ms=int(time.time() * 1000), suffix=suffix)


@dataclass(frozen=True)
class CorrelationMarker:
    tool: str
    timestamp_ms: int
    suffix: str
    path: str | None = None

    @property
    def correlation_id(self) -> CorrelationId:
        return CorrelationId(tool=self.tool, timestamp_ms=self.timestamp_ms, suffix=self.suffix)


@dataclass(frozen=True)
class WriteFileDirective:
    path: str
    content: str
    correlation_id: CorrelationId
    source: BlockKind = BlockKind.STRUCTURED
    kind: Literal["write_file"] = field(default="write_file", init=False)


@dataclass(frozen=True)
class EditFileDirective:
    path: str
    hunks: tuple[SearchReplaceHunk, ...]
    correlation_id: CorrelationId
    dry_run: bool = False
    source: BlockKind = BlockKind.EDIT
    kind: Literal["edit_file"] = field(default="edit_file", init=False)


@dataclass(frozen=True)
class DeleteFileDirective:
    path: str
    correlation_id: CorrelationId
    source: BlockKind = BlockKind.STRUCTURED
    kind: Literal["delete_file"] = field(default="delete_file", init=False)


ToolDirective = Union[WriteFileDirective, EditFileDirective, DeleteFileDirective]


def describe(directive: ToolDirective) -> dict:
    """JSON-safe summary used in tool-executed payloads."""
    data: dict = {
        "kind": directive.kind,
        "path": directive.path,
        "correlation_id": str(directive.correlation_id),
        "source": directive.source.value,
    }
    if isinstance(directive, EditFileDirective):
        data["hunks"] = len(directive.hunks)
        data["dry_run"] = directive.dry_run
    elif isinstance(directive, WriteFileDirective):
        data["size"] = len(directive.content.encode("utf-8"))
    return data
