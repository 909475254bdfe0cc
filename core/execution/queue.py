"""Per-workspace FIFO execution queues.

Directives for one workspace run one at a time in submission order.
Each job holds the workspace lock while it runs; checkpoint restore takes
the same lock through ``exclusive()`` so it never interleaves with a
directive. Different workspaces have independent queues and workers.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass

from core.directives.types import DetectedBlock, ToolDirective
from core.errors import DirectiveParseError
from core.execution.cursor import StreamCursor
from core.execution.executor import DirectiveExecutor, ExecutionResult

logger = logging.getLogger(__name__)


@dataclass
class _Job:
    run: Callable[[], Awaitable[ExecutionResult]]
    future: asyncio.Future
    label: str


class WorkspaceQueue:
    def __init__(self, workspace_id: str, executor: DirectiveExecutor) -> None:
        self.workspace_id = workspace_id
        self._executor = executor
        self._queue: asyncio.Queue[_Job | None] = asyncio.Queue()
        self._lock = asyncio.Lock()
        self._worker: asyncio.Task | None = None
        self._closed = False

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def submit(
        self,
        message_id: str | None,
        directive: ToolDirective,
        cursor: StreamCursor | None = None,
    ) -> asyncio.Future[ExecutionResult]:
        """Enqueue a directive; the future resolves with its ExecutionResult."""
        return self._enqueue(
            lambda: self._executor.execute(self.workspace_id, message_id, directive, cursor),
            f"{directive.kind} {directive.path}",
        )

    def submit_parse_error(
        self,
        message_id: str | None,
        error: DirectiveParseError,
        block: DetectedBlock | None = None,
    ) -> asyncio.Future[ExecutionResult]:
        """Report a parse failure in stream order with the directives around it."""
        return self._enqueue(
            lambda: self._executor.report_parse_error(self.workspace_id, message_id, error, block),
            f"parse error {error.reason.value}",
        )

    @asynccontextmanager
    async def exclusive(self) -> AsyncIterator[None]:
        """Hold the workspace: no queued directive runs inside this block."""
        async with self._lock:
            yield

    async def drain(self) -> None:
        """Wait until everything submitted so far has finished."""
        await self._queue.join()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._worker is None:
            return
        self._queue.put_nowait(None)
        await self._worker
        self._worker = None

    def _enqueue(self, run: Callable[[], Awaitable[ExecutionResult]], label: str) -> asyncio.Future[ExecutionResult]:
        if self._closed:
            raise RuntimeError(f"Execution queue for {self.workspace_id} is closed")
        future: asyncio.Future[ExecutionResult] = asyncio.get_running_loop().create_future()
        self._queue.put_nowait(_Job(run=run, future=future, label=label))
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run(), name=f"livepatch-queue-{self.workspace_id}")
        return future

    async def _run(self) -> None:
        while True:
            job = await self._queue.get()
            try:
                if job is None:
                    return
                async with self._lock:
                    result = await job.run()
                if not job.future.done():
                    job.future.set_result(result)
            except Exception as exc:
                logger.exception("queued job %r failed in %s", job.label, self.workspace_id)
                if job is not None and not job.future.done():
                    job.future.set_exception(exc)
            finally:
                self._queue.task_done()


class QueueRegistry:
    """Lazily creates one WorkspaceQueue per workspace id."""

    def __init__(self, executor: DirectiveExecutor) -> None:
        self._executor = executor
        self._queues: dict[str, WorkspaceQueue] = {}

    def get(self, workspace_id: str) -> WorkspaceQueue:
        queue = self._queues.get(workspace_id)
        if queue is None:
            queue = WorkspaceQueue(workspace_id, self._executor)
            self._queues[workspace_id] = queue
        return queue

    async def discard(self, workspace_id: str) -> None:
        queue = self._queues.pop(workspace_id, None)
        if queue is not None:
            await queue.drain()
            await queue.close()

    async def close(self) -> None:
        queues = list(self._queues.values())
        self._queues.clear()
        for queue in queues:
            await queue.close()
