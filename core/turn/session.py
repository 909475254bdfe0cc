"""One assistant turn: consume the chunk stream, dispatch directives in order."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterable
from dataclasses import dataclass, field

from config.schema import CheckpointConfig, StreamConfig
from core.checkpoint.manager import CheckpointManager
from core.directives.parser import DirectiveParser, parse_marker
from core.directives.scanner import StreamScanner
from core.directives.types import BlockKind, DetectedBlock, ToolDirective
from core.errors import DirectiveParseError
from core.execution.cursor import StreamCursor
from core.execution.executor import ExecutionResult
from core.execution.queue import QueueRegistry
from storage.errors import StorageError, StoreUnavailableError

logger = logging.getLogger(__name__)


@dataclass
class TurnDeps:
    queues: QueueRegistry
    checkpoints: CheckpointManager
    parser: DirectiveParser = field(default_factory=DirectiveParser)
    stream: StreamConfig = field(default_factory=StreamConfig)
    checkpoint: CheckpointConfig = field(default_factory=CheckpointConfig)


@dataclass
class TurnReport:
    workspace_id: str
    message_id: str
    directives: list[ToolDirective] = field(default_factory=list)
    results: list[ExecutionResult] = field(default_factory=list)
    parse_errors: list[DirectiveParseError] = field(default_factory=list)
    aborted: bool = False
    abort_reason: str | None = None
    checkpoint_id: str | None = None

    def to_dict(self) -> dict:
        return {
            "workspace_id": self.workspace_id,
            "message_id": self.message_id,
            "directives": len(self.directives),
            "results": [r.to_dict() for r in self.results],
            "parse_errors": [{"reason": e.reason.value, "detail": e.detail, "path": e.path} for e in self.parse_errors],
            "aborted": self.aborted,
            "abort_reason": self.abort_reason,
            "checkpoint_id": self.checkpoint_id,
        }


class TurnSession:
    """Single consumer loop over one stream.

    Blocks are handled in detection order; directives go to the
    workspace's FIFO queue, so their events come out in the same order.
    Aborting drops only buffered partial text; anything already queued
    still runs.
    """

    def __init__(self, workspace_id: str, message_id: str, deps: TurnDeps) -> None:
        self.workspace_id = workspace_id
        self.message_id = message_id
        self._deps = deps
        self._queue = deps.queues.get(workspace_id)
        self.cursor = StreamCursor(
            workspace_id=workspace_id,
            message_id=message_id,
            scanner=StreamScanner(
                max_buffer_chars=deps.stream.max_buffer_chars,
                fence_languages=deps.stream.fence_languages,
            ),
        )
        self.report = TurnReport(workspace_id=workspace_id, message_id=message_id)
        self._directive_futures: list[asyncio.Future[ExecutionResult]] = []
        self._report_futures: list[asyncio.Future[ExecutionResult]] = []
        self._abort_requested = False
        self._checkpoint_ready = False

    def abort(self) -> None:
        """Stop consuming after the current chunk."""
        self._abort_requested = True

    async def run(self, chunks: AsyncIterable[str]) -> TurnReport:
        scanner = self.cursor.scanner
        try:
            async for chunk in chunks:
                if self._abort_requested:
                    break
                await self._handle_blocks(scanner.ingest(chunk))
                if self._abort_requested:
                    break
        except asyncio.CancelledError:
            scanner.discard()
            self._mark_aborted("stream cancelled")
            raise

        if self._abort_requested:
            scanner.discard()
            self._mark_aborted("stream aborted")
        else:
            await self._handle_blocks(scanner.finish())
            if self.cursor.pending_marker is not None:
                logger.debug("marker %s never paired with a directive", self.cursor.pending_marker)

        await self._settle()
        return self.report

    # ------------------------------------------------------------------
    # Block handling
    # ------------------------------------------------------------------

    async def _handle_blocks(self, blocks: list[DetectedBlock]) -> None:
        for block in blocks:
            if block.kind is BlockKind.MARKER:
                self._handle_marker(block)
                continue

            marker, self.cursor.pending_marker = self.cursor.pending_marker, None
            try:
                directive = self._deps.parser.parse(block, marker)
            except DirectiveParseError as exc:
                self._report_parse_error(exc, block)
                continue

            if not self._checkpoint_ready:
                await self._ensure_checkpoint()
            self.report.directives.append(directive)
            self._directive_futures.append(self._queue.submit(self.message_id, directive, self.cursor))

    def _handle_marker(self, block: DetectedBlock) -> None:
        try:
            marker = parse_marker(block)
        except DirectiveParseError as exc:
            self._report_parse_error(exc, block)
            return
        if self.cursor.pending_marker is not None:
            logger.info("marker %s replaced by %s before pairing", self.cursor.pending_marker, marker)
        self.cursor.pending_marker = marker

    def _report_parse_error(self, exc: DirectiveParseError, block: DetectedBlock) -> None:
        self.report.parse_errors.append(exc)
        self._report_futures.append(self._queue.submit_parse_error(self.message_id, exc, block))

    async def _ensure_checkpoint(self) -> None:
        self._checkpoint_ready = True
        if not self._deps.checkpoint.auto_create:
            return
        checkpoints = self._deps.checkpoints
        try:
            existing = await checkpoints.find_checkpoint_for_message(self.workspace_id, self.message_id)
            row = existing or await checkpoints.create_checkpoint(self.workspace_id, self.message_id)
        except StoreUnavailableError as exc:
            logger.exception("cannot checkpoint turn %s; aborting its directives", self.message_id)
            self.cursor.abort(str(exc))
            return
        except StorageError:
            logger.exception("checkpoint before turn %s failed; continuing without one", self.message_id)
            return
        self.report.checkpoint_id = row.id

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    async def _settle(self) -> None:
        outcomes = await asyncio.gather(*self._directive_futures, return_exceptions=True)
        for directive, outcome in zip(self.report.directives, outcomes):
            if isinstance(outcome, BaseException):
                outcome = ExecutionResult(
                    status="failed",
                    action="none",
                    path=directive.path,
                    correlation_id=str(directive.correlation_id),
                    message=f"{directive.kind} failed",
                    error=str(outcome),
                )
            self.report.results.append(outcome)
        await asyncio.gather(*self._report_futures, return_exceptions=True)
        if self.cursor.aborted:
            self._mark_aborted(self.cursor.abort_reason or "turn aborted")

    def _mark_aborted(self, reason: str) -> None:
        if not self.report.aborted:
            self.report.aborted = True
            self.report.abort_reason = reason
