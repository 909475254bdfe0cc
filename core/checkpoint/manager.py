"""Checkpoint capture and restore for workspaces.

A checkpoint is an immutable snapshot of every live file, anchored to the
chat message whose turn it precedes. Restore swaps the live file set for
the snapshot in one store transaction while holding the workspace's
execution queue, and announces the change with a single files-changed.

Pre-revert states are snapshots taken right before a revert so the user
can undo the revert ("restore") within a short TTL.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import time
from collections.abc import Callable, Iterable

from config.schema import CheckpointConfig
from core.errors import CheckpointNotFoundError, PreRevertStateExpiredError, RestoreTransactionError
from core.events.bus import EventBus
from core.events.topics import FILES_CHANGED, FilesChangedEvent, FilesChangedReason
from core.execution.queue import QueueRegistry
from storage.contracts import CheckpointRepo, FileStore
from storage.errors import StorageError
from storage.models import CheckpointRow, FileSnapshot

logger = logging.getLogger(__name__)

Checkpoint = CheckpointRow

TURN = "turn"
PRE_REVERT = "pre_revert"


def content_hash(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


class CheckpointManager:
    def __init__(
        self,
        file_store: FileStore,
        checkpoint_repo: CheckpointRepo,
        queues: QueueRegistry,
        bus: EventBus,
        settings: CheckpointConfig | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = file_store
        self._repo = checkpoint_repo
        self._queues = queues
        self._bus = bus
        self._settings = settings or CheckpointConfig()
        self._clock = clock

    # ------------------------------------------------------------------
    # Checkpoints
    # ------------------------------------------------------------------

    async def create_checkpoint(self, workspace_id: str, message_id: str) -> Checkpoint:
        """Snapshot every live file. Store read failures propagate."""
        async with self._queues.get(workspace_id).exclusive():
            row = await self._save_snapshot(workspace_id, message_id, TURN)
        logger.info(
            "checkpoint %s for message %s in %s (%d files)", row.id, message_id, workspace_id, len(row.files)
        )
        return row

    async def get_checkpoints(self, workspace_id: str) -> list[Checkpoint]:
        """Oldest first."""
        return await asyncio.to_thread(self._repo.list_for_workspace, workspace_id, TURN)

    async def get_checkpoint(self, checkpoint_id: str) -> Checkpoint | None:
        row = await asyncio.to_thread(self._repo.get, checkpoint_id)
        if row is None or row.kind != TURN:
            return None
        return row

    async def find_checkpoint_for_message(self, workspace_id: str, message_id: str) -> Checkpoint | None:
        return await asyncio.to_thread(self._repo.latest_for_message, workspace_id, message_id, TURN)

    async def restore_checkpoint(self, checkpoint_id: str) -> bool:
        """Make the live file set exactly the checkpoint's. False on any failure."""
        try:
            row = await self.get_checkpoint(checkpoint_id)
        except StorageError:
            logger.exception("cannot look up checkpoint %s", checkpoint_id)
            return False
        if row is None:
            logger.warning("restore skipped: %s", CheckpointNotFoundError(checkpoint_id))
            return False
        try:
            await self._apply_snapshot(row.workspace_id, row.files, "restore")
        except RestoreTransactionError:
            logger.exception("restore of checkpoint %s failed", checkpoint_id)
            return False
        logger.info("restored checkpoint %s in %s", checkpoint_id, row.workspace_id)
        return True

    async def revert_to_message(self, workspace_id: str, message_id: str) -> bool:
        """Capture a pre-revert state, then restore the message's checkpoint."""
        target = await self.find_checkpoint_for_message(workspace_id, message_id)
        if target is None:
            logger.warning("revert skipped: no checkpoint for message %s in %s", message_id, workspace_id)
            return False
        await self.capture_pre_revert_state(workspace_id, message_id)
        return await self.restore_checkpoint(target.id)

    # ------------------------------------------------------------------
    # Pre-revert states
    # ------------------------------------------------------------------

    async def capture_pre_revert_state(self, workspace_id: str, message_id: str) -> Checkpoint:
        async with self._queues.get(workspace_id).exclusive():
            await asyncio.to_thread(self._repo.delete_for_message, workspace_id, message_id, PRE_REVERT)
            row = await self._save_snapshot(workspace_id, message_id, PRE_REVERT)
        logger.info("captured pre-revert state for message %s in %s", message_id, workspace_id)
        return row

    async def restore_pre_revert_state(self, workspace_id: str, message_id: str) -> bool:
        row = await asyncio.to_thread(self._repo.latest_for_message, workspace_id, message_id, PRE_REVERT)
        if row is None:
            logger.warning("no pre-revert state for message %s in %s", message_id, workspace_id)
            return False
        if self._expired(row):
            logger.warning("%s", PreRevertStateExpiredError(workspace_id, message_id))
            await asyncio.to_thread(self._repo.delete_for_message, workspace_id, message_id, PRE_REVERT)
            return False
        try:
            await self._apply_snapshot(workspace_id, row.files, "pre_revert_restore")
        except RestoreTransactionError:
            logger.exception("restore of pre-revert state for message %s failed", message_id)
            return False
        await asyncio.to_thread(self._repo.delete_for_message, workspace_id, message_id, PRE_REVERT)
        return True

    async def is_restore_available(self, workspace_id: str, message_id: str) -> bool:
        row = await asyncio.to_thread(self._repo.latest_for_message, workspace_id, message_id, PRE_REVERT)
        return row is not None and not self._expired(row)

    async def clear_pre_revert_states(self, workspace_id: str) -> int:
        return await asyncio.to_thread(self._repo.delete_workspace_checkpoints, workspace_id, PRE_REVERT)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _expired(self, row: CheckpointRow) -> bool:
        return self._clock() - row.created_at > self._settings.pre_revert_ttl_seconds

    async def _save_snapshot(self, workspace_id: str, message_id: str, kind: str) -> CheckpointRow:
        files = await asyncio.to_thread(self._store.list_files, workspace_id)
        snapshots = [
            FileSnapshot(
                path=f.path,
                content_hash=content_hash(f.content),
                content=f.content,
                kind=f.kind,
                file_type=f.file_type,
            )
            for f in files
        ]
        return await asyncio.to_thread(self._repo.save, workspace_id, message_id, snapshots, kind)

    async def _apply_snapshot(
        self,
        workspace_id: str,
        files: Iterable[FileSnapshot],
        reason: FilesChangedReason,
    ) -> None:
        snapshots = list(files)
        for snap in snapshots:
            if content_hash(snap.content) != snap.content_hash:
                raise RestoreTransactionError(f"Snapshot of {snap.path} is corrupt (hash mismatch)")
        async with self._queues.get(workspace_id).exclusive():
            try:
                await asyncio.to_thread(self._store.replace_all_files, workspace_id, snapshots)
            except StorageError as exc:
                raise RestoreTransactionError(f"Restore of {workspace_id} rolled back: {exc}") from exc
            # @@@restore-event-order - announced before queued directives resume.
            await self._bus.publish(
                FILES_CHANGED,
                FilesChangedEvent(workspace_id=workspace_id, reason=reason, paths=[s.path for s in snapshots]),
            )
