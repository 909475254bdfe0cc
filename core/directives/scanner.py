"""Incremental scanner that finds directive blocks in a chunked text stream.

The scanner works on complete lines. Text after the last newline stays in
``_pending`` until more text (or ``finish()``) terminates it, so block
boundaries are found correctly no matter where chunks are split. Every
complete line is examined exactly once.

Three shapes are recognized:

* structured fences: ```` ```json ```` (or another configured tag) anywhere
  in a prose line, up to the first ```` ``` ```` after it, which may sit on
  the same line; emitted only when the body mentions a ``"tool"`` key
* edit hunks: ``<<<<<<< SEARCH`` / ``=======`` / ``>>>>>>> REPLACE`` lines,
  bare in prose or inside any other code fence
* correlation markers: ``<!-- tool:... -->`` tokens in prose
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from enum import Enum

from core.directives.types import BlockKind, DetectedBlock

logger = logging.getLogger(__name__)

SEARCH_START = "<<<<<<< SEARCH"
DIVIDER = "======="
REPLACE_END = ">>>>>>> REPLACE"
FENCE = "```"

MARKER_PATTERN = re.compile(r"<!--\s*tool:[^\n]*?-->")
_FENCE_OPEN = re.compile(r"```([\w+.-]*)[ \t]*$")
_TAGGED_FENCE = re.compile(r"```([\w+.-]*)")
_PATH_PREFIX = re.compile(r"^(?:file|path|filename)\s*:\s*", re.IGNORECASE)
_PATH_TOKEN = re.compile(r"[\w./\\-]+\.[A-Za-z0-9]+")


class _State(Enum):
    PROSE = "prose"
    CODE = "code"
    STRUCTURED = "structured"
    SEARCH = "search"
    REPLACE = "replace"
    SKIP_STRUCTURED = "skip_structured"
    SKIP_HUNK = "skip_hunk"


_OPEN_BLOCK_STATES = {_State.STRUCTURED, _State.SEARCH, _State.REPLACE}


def extract_path(line: str | None) -> str | None:
    """Best-effort target path from the line announcing an edit hunk."""
    if not line:
        return None
    text = line.strip().strip("*_#> ").strip()
    text = _PATH_PREFIX.sub("", text)
    text = text.strip("`'\" ").rstrip(":").strip("`'\" ")
    if not text:
        return None
    if not any(ch.isspace() for ch in text):
        return text
    tokens = _PATH_TOKEN.findall(text)
    if not tokens:
        return None
    return tokens[-1].rstrip(".")


class StreamScanner:
    """Turn arbitrary text chunks into complete ``DetectedBlock``s, in order."""

    def __init__(
        self,
        max_buffer_chars: int = 262144,
        fence_languages: Iterable[str] = ("json", "tool"),
    ) -> None:
        self.max_buffer_chars = max_buffer_chars
        self.fence_languages = frozenset(lang.lower() for lang in fence_languages)
        self._reset()

    def _reset(self) -> None:
        self._pending = ""
        self._pending_start = 0
        self._newline_scan = 0
        self._skip_partial_line = False
        self._state = _State.PROSE
        self._hunk_in_code = False
        self._block_lines: list[str] = []
        self._block_chars = 0
        self._block_start = 0
        self._block_language: str | None = None
        self._block_path: str | None = None
        self._hint: str | None = None
        self._continue_edit = False
        self._last_edit_path: str | None = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def offset(self) -> int:
        """Absolute stream offset up to which text has been consumed."""
        return self._pending_start

    @property
    def buffered(self) -> str:
        """Retained partial text: the open block (if any) plus the unterminated line."""
        if self._state in _OPEN_BLOCK_STATES and self._block_lines:
            return "\n".join(self._block_lines) + "\n" + self._pending
        return self._pending

    @property
    def has_partial_block(self) -> bool:
        return self._state in _OPEN_BLOCK_STATES

    def ingest(self, chunk: str) -> list[DetectedBlock]:
        """Append ``chunk`` and return every block completed by it."""
        if not chunk:
            return []
        self._pending += chunk
        blocks: list[DetectedBlock] = []
        while True:
            nl = self._pending.find("\n", self._newline_scan)
            if nl < 0:
                self._newline_scan = len(self._pending)
                break
            line = self._pending[:nl]
            start = self._pending_start
            end = start + nl + 1
            self._pending = self._pending[nl + 1 :]
            self._pending_start = end
            self._newline_scan = 0
            if self._skip_partial_line:
                self._skip_partial_line = False
                continue
            blocks.extend(self._process_line(line, start, end))
        self._enforce_limit()
        return blocks

    def finish(self) -> list[DetectedBlock]:
        """End of stream: terminate the last line, drop any still-open block, reset."""
        blocks: list[DetectedBlock] = []
        if self._pending and not self._skip_partial_line:
            start = self._pending_start
            blocks = self._process_line(self._pending, start, start + len(self._pending))
        if self._state in _OPEN_BLOCK_STATES:
            logger.warning(
                "dropping unterminated %s block at offset %d (%d chars)",
                self._state.value,
                self._block_start,
                self._block_chars,
            )
        self._reset()
        return blocks

    def discard(self) -> None:
        """Stream aborted: forget buffered partial text, keep the consumed offset."""
        if self._pending or self._state in _OPEN_BLOCK_STATES:
            logger.debug("discarding %d buffered chars on abort", len(self.buffered))
        consumed = self._pending_start + len(self._pending)
        self._reset()
        self._pending_start = consumed

    # ------------------------------------------------------------------
    # Line state machine
    # ------------------------------------------------------------------

    def _process_line(self, line: str, start: int, end: int) -> list[DetectedBlock]:
        state = self._state
        stripped = line.strip()

        if state is _State.STRUCTURED:
            idx = line.find(FENCE)
            if idx < 0:
                self._append(line)
                return []
            # @@@first-fence-closes - text after the closing fence is prose again.
            self._append(line[:idx])
            blocks = self._close_structured(start + idx + len(FENCE))
            return blocks + self._rest_of_line(line, idx + len(FENCE), start, end)

        if state is _State.SEARCH:
            if stripped == DIVIDER:
                self._state = _State.REPLACE
            self._append(line)
            return []

        if state is _State.REPLACE:
            self._append(line)
            if stripped == REPLACE_END:
                return self._close_hunk(end)
            return []

        if state is _State.SKIP_STRUCTURED:
            idx = line.find(FENCE)
            if idx < 0:
                return []
            self._state = _State.PROSE
            return self._rest_of_line(line, idx + len(FENCE), start, end)

        if state is _State.SKIP_HUNK:
            if stripped == REPLACE_END:
                self._state = _State.CODE if self._hunk_in_code else _State.PROSE
                self._continue_edit = False
                self._hint = None
            return []

        # PROSE / CODE
        if stripped == SEARCH_START:
            self._open_hunk(line, start, in_code=state is _State.CODE)
            return []

        if state is _State.CODE:
            if stripped == FENCE:
                self._state = _State.PROSE
                return []
            return self._prose_line(line, start)

        opener = self._structured_opener(line)
        if opener is not None:
            blocks = self._prose_line(line[: opener.start()], start)
            self._state = _State.STRUCTURED
            self._block_lines = []
            self._block_chars = 0
            self._block_start = start + opener.start()
            self._block_language = opener.group(1).lower()
            return blocks + self._rest_of_line(line, opener.end(), start, end)

        code = _FENCE_OPEN.search(line.rstrip("\r"))
        if code is not None:
            blocks = self._prose_line(line[: code.start()], start)
            self._state = _State.CODE
            return blocks

        return self._prose_line(line, start)

    def _structured_opener(self, line: str) -> re.Match[str] | None:
        for match in _TAGGED_FENCE.finditer(line):
            if match.group(1).lower() in self.fence_languages:
                return match
        return None

    def _rest_of_line(self, line: str, pos: int, start: int, end: int) -> list[DetectedBlock]:
        rest = line[pos:]
        if not rest.strip():
            return []
        return self._process_line(rest, start + pos, end)

    def _prose_line(self, line: str, start: int) -> list[DetectedBlock]:
        blocks = [
            DetectedBlock(
                kind=BlockKind.MARKER,
                text=m.group(0),
                start=start + m.start(),
                end=start + m.end(),
            )
            for m in MARKER_PATTERN.finditer(line)
        ]
        remainder = MARKER_PATTERN.sub("", line).strip()
        if remainder:
            self._hint = remainder
            self._continue_edit = False
        return blocks

    def _open_hunk(self, line: str, start: int, *, in_code: bool) -> None:
        if self._continue_edit:
            self._block_path = self._last_edit_path
        else:
            self._block_path = extract_path(self._hint)
        self._hunk_in_code = in_code
        self._state = _State.SEARCH
        self._block_lines = []
        self._block_chars = 0
        self._block_start = start
        self._append(line)

    def _close_hunk(self, end: int) -> list[DetectedBlock]:
        block = DetectedBlock(
            kind=BlockKind.EDIT,
            text="\n".join(self._block_lines),
            start=self._block_start,
            end=end,
            path_hint=self._block_path,
        )
        # @@@hunk-chain - a hunk right after another (blank lines only) edits the same file.
        self._last_edit_path = self._block_path
        self._continue_edit = True
        self._state = _State.CODE if self._hunk_in_code else _State.PROSE
        self._clear_block()
        return [block]

    def _close_structured(self, end: int) -> list[DetectedBlock]:
        body = "\n".join(self._block_lines)
        start = self._block_start
        language = self._block_language
        self._state = _State.PROSE
        self._clear_block()
        if '"tool"' not in body:
            logger.debug("ignoring %s fence without a tool key at offset %d", language, start)
            return []
        return [
            DetectedBlock(
                kind=BlockKind.STRUCTURED,
                text=body,
                start=start,
                end=end,
                language=language,
            )
        ]

    def _append(self, line: str) -> None:
        self._block_lines.append(line)
        self._block_chars += len(line) + 1

    def _clear_block(self) -> None:
        self._block_lines = []
        self._block_chars = 0
        self._block_language = None
        self._block_path = None

    def _enforce_limit(self) -> None:
        if self._state in _OPEN_BLOCK_STATES:
            if self._block_chars + len(self._pending) <= self.max_buffer_chars:
                return
            logger.warning(
                "partial %s block at offset %d exceeds %d chars; dropping it",
                self._state.value,
                self._block_start,
                self.max_buffer_chars,
            )
            self._state = _State.SKIP_STRUCTURED if self._state is _State.STRUCTURED else _State.SKIP_HUNK
            self._clear_block()
            self._drop_pending()
        elif len(self._pending) > self.max_buffer_chars:
            logger.warning("unterminated line exceeds %d chars; dropping it", self.max_buffer_chars)
            self._drop_pending()

    def _drop_pending(self) -> None:
        if not self._pending:
            return
        self._pending_start += len(self._pending)
        self._pending = ""
        self._newline_scan = 0
        self._skip_partial_line = True
