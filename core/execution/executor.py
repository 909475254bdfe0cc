"""Apply parsed directives to the file store and publish the outcome."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass
from typing import Literal, assert_never

from core.directives.patch import apply_hunks
from core.directives.types import (
    DeleteFileDirective,
    DetectedBlock,
    EditFileDirective,
    ToolDirective,
    WriteFileDirective,
    describe,
)
from core.errors import DirectiveParseError, NoMatchError, PatchValidationError, TurnAbortedError
from core.events.bus import EventBus
from core.events.topics import FILES_CHANGED, TOOL_EXECUTED, FilesChangedEvent, ToolAction, ToolExecutedEvent
from core.execution.cursor import StreamCursor
from storage.contracts import FileStore
from storage.errors import (
    FileNotFoundInStore,
    InvalidPathError,
    StorageError,
    StoreUnavailableError,
    WorkspaceNotFoundError,
)
from storage.paths import normalize_path

logger = logging.getLogger(__name__)

ExecutionStatus = Literal["applied", "skipped", "failed"]


@dataclass
class ExecutionResult:
    status: ExecutionStatus
    action: ToolAction
    path: str | None
    correlation_id: str | None = None
    message: str = ""
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == "applied"

    def to_dict(self) -> dict:
        return asdict(self)


class DirectiveExecutor:
    """Exhaustive dispatch over the directive variant.

    Per-directive failures become ``failed`` results; nothing raised here
    stops the turn except an unavailable store, which aborts the cursor.
    """

    def __init__(self, file_store: FileStore, bus: EventBus) -> None:
        self._store = file_store
        self._bus = bus

    async def execute(
        self,
        workspace_id: str,
        message_id: str | None,
        directive: ToolDirective,
        cursor: StreamCursor | None = None,
    ) -> ExecutionResult:
        cid = str(directive.correlation_id)

        if cursor is not None and cursor.has_executed(cid):
            logger.info("skipping duplicate directive %s (%s %s)", cid, directive.kind, directive.path)
            return ExecutionResult(
                status="skipped",
                action="none",
                path=directive.path,
                correlation_id=cid,
                message="Already executed in this turn",
            )

        if cursor is not None and cursor.aborted:
            error = TurnAbortedError(cursor.abort_reason or "turn aborted")
            return ExecutionResult(
                status="failed",
                action="none",
                path=directive.path,
                correlation_id=cid,
                message="Not executed: turn aborted",
                error=str(error),
            )

        if cursor is not None:
            cursor.mark_executed(cid)

        try:
            result = await self._dispatch(workspace_id, directive)
        except StoreUnavailableError as exc:
            logger.exception("store unavailable while applying %s to %s", directive.kind, directive.path)
            if cursor is not None:
                cursor.abort(str(exc))
            result = self._failed(directive, exc)
        except (FileNotFoundInStore, InvalidPathError, WorkspaceNotFoundError) as exc:
            logger.warning("%s %s failed: %s", directive.kind, directive.path, exc)
            result = self._failed(directive, exc)
        except StorageError as exc:
            logger.exception("storage failure applying %s to %s", directive.kind, directive.path)
            result = self._failed(directive, exc)
        except (NoMatchError, PatchValidationError) as exc:
            logger.warning("edit %s failed: %s", directive.path, exc)
            result = self._failed(directive, exc)

        if result.ok:
            logger.info("%s %s (%s)", result.action, result.path, cid)
        if result.ok and result.action in ("created", "updated", "edited", "deleted"):
            await self._bus.publish(
                FILES_CHANGED,
                FilesChangedEvent(workspace_id=workspace_id, reason="directive", paths=[result.path]),
            )
        await self._bus.publish(
            TOOL_EXECUTED,
            ToolExecutedEvent(
                workspace_id=workspace_id,
                message_id=message_id,
                directive=describe(directive),
                result={"status": result.status, "message": result.message, "error": result.error},
                action=result.action,
                path=result.path,
            ),
            message_id=message_id,
        )
        return result

    async def report_parse_error(
        self,
        workspace_id: str,
        message_id: str | None,
        error: DirectiveParseError,
        block: DetectedBlock | None = None,
    ) -> ExecutionResult:
        """Publish the failed attempt; the store is not touched."""
        logger.warning("dropping unparseable directive block: %s", error)
        result = ExecutionResult(
            status="failed",
            action="none",
            path=error.path,
            message=f"Parse error ({error.reason.value})",
            error=error.detail,
        )
        directive = {"kind": error.tool, "path": error.path, "reason": error.reason.value}
        if block is not None:
            directive["source"] = block.kind.value
            directive["offset"] = block.start
        await self._bus.publish(
            TOOL_EXECUTED,
            ToolExecutedEvent(
                workspace_id=workspace_id,
                message_id=message_id,
                directive=directive,
                result={"status": result.status, "message": result.message, "error": result.error},
                action="none",
                path=error.path,
            ),
            message_id=message_id,
        )
        return result

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def _dispatch(self, workspace_id: str, directive: ToolDirective) -> ExecutionResult:
        if isinstance(directive, WriteFileDirective):
            return await self._write(workspace_id, directive)
        if isinstance(directive, EditFileDirective):
            return await self._edit(workspace_id, directive)
        if isinstance(directive, DeleteFileDirective):
            return await self._delete(workspace_id, directive)
        assert_never(directive)

    async def _write(self, workspace_id: str, directive: WriteFileDirective) -> ExecutionResult:
        outcome = await asyncio.to_thread(self._store.write_file, workspace_id, directive.path, directive.content)
        action: ToolAction = "created" if outcome.created else "updated"
        return ExecutionResult(
            status="applied",
            action=action,
            path=outcome.file.path,
            correlation_id=str(directive.correlation_id),
            message=f"File {action}: {outcome.file.path} ({outcome.file.size} bytes)",
        )

    async def _edit(self, workspace_id: str, directive: EditFileDirective) -> ExecutionResult:
        current = await asyncio.to_thread(self._store.read_file, workspace_id, directive.path)
        patch = apply_hunks(current, directive.hunks)
        cid = str(directive.correlation_id)

        if directive.dry_run:
            return ExecutionResult(
                status="applied",
                action="noop",
                path=normalize_path(directive.path),
                correlation_id=cid,
                message=f"Dry run: {patch.applied} hunk(s) would apply, {patch.noops} already present",
            )
        if not patch.changed:
            return ExecutionResult(
                status="applied",
                action="noop",
                path=normalize_path(directive.path),
                correlation_id=cid,
                message="Edit already applied",
            )

        outcome = await asyncio.to_thread(self._store.write_file, workspace_id, directive.path, patch.content)
        return ExecutionResult(
            status="applied",
            action="edited",
            path=outcome.file.path,
            correlation_id=cid,
            message=f"Applied {patch.applied} of {len(directive.hunks)} hunk(s) to {outcome.file.path}",
        )

    async def _delete(self, workspace_id: str, directive: DeleteFileDirective) -> ExecutionResult:
        deleted = await asyncio.to_thread(self._store.delete_file, workspace_id, directive.path)
        if not deleted:
            raise FileNotFoundInStore(workspace_id, directive.path)
        return ExecutionResult(
            status="applied",
            action="deleted",
            path=normalize_path(directive.path),
            correlation_id=str(directive.correlation_id),
            message=f"File deleted: {normalize_path(directive.path)}",
        )

    @staticmethod
    def _failed(directive: ToolDirective, exc: Exception) -> ExecutionResult:
        return ExecutionResult(
            status="failed",
            action="none",
            path=directive.path,
            correlation_id=str(directive.correlation_id),
            message=f"{directive.kind} failed",
            error=str(exc),
        )
