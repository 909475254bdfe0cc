"""Composition root wiring storage, events, execution and checkpoints."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterable

from config.schema import LivepatchSettings
from core.checkpoint.manager import CheckpointManager
from core.events.bus import EventBus
from core.execution.executor import DirectiveExecutor
from core.execution.queue import QueueRegistry
from core.turn.session import TurnDeps, TurnReport, TurnSession
from storage.container import StorageContainer
from storage.runtime import build_storage_container

logger = logging.getLogger(__name__)


class LivepatchRuntime:
    """Owns one storage container and everything that operates on it.

    Construct once per process (or per test), ``init()`` before use and
    ``close()`` on shutdown.
    """

    def __init__(self, settings: LivepatchSettings, container: StorageContainer) -> None:
        self.settings = settings
        self.container = container
        self.file_store = container.file_store()
        self.bus = EventBus(
            history_limit=settings.events.history_limit,
            tool_event_repo=container.tool_event_repo(),
            persist_tool_events=settings.events.persist_tool_events,
        )
        self.executor = DirectiveExecutor(self.file_store, self.bus)
        self.queues = QueueRegistry(self.executor)
        self.checkpoints = CheckpointManager(
            self.file_store,
            container.checkpoint_repo(),
            self.queues,
            self.bus,
            settings.checkpoint,
        )

    @classmethod
    def build(cls, settings: LivepatchSettings | None = None) -> LivepatchRuntime:
        settings = settings or LivepatchSettings()
        container = build_storage_container(db_path=settings.storage.db_path)
        return cls(settings, container)

    def init(self) -> None:
        self.container.init()

    async def close(self) -> None:
        await self.queues.close()
        await self.bus.close()
        self.container.close()

    def turn(self, workspace_id: str, message_id: str) -> TurnSession:
        deps = TurnDeps(
            queues=self.queues,
            checkpoints=self.checkpoints,
            stream=self.settings.stream,
            checkpoint=self.settings.checkpoint,
        )
        return TurnSession(workspace_id, message_id, deps)

    async def run_turn(self, workspace_id: str, message_id: str, chunks: AsyncIterable[str]) -> TurnReport:
        return await self.turn(workspace_id, message_id).run(chunks)

    async def delete_workspace(self, workspace_id: str) -> bool:
        """Drain the workspace's queue, then cascade-delete all of its data."""
        await self.queues.discard(workspace_id)
        deleted = await asyncio.to_thread(self.container.purge_workspace, workspace_id)
        if deleted:
            logger.info("deleted workspace %s", workspace_id)
        return deleted
