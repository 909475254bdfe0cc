"""In-process typed pub/sub with an ordered, replayable event log."""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel

from core.events.topics import PAYLOAD_TYPES, TOOL_EXECUTED, TOPICS
from storage.contracts import ToolEventRepo

logger = logging.getLogger(__name__)

Handler = Callable[["BusEvent"], Awaitable[None] | None]
ALL_TOPICS = "*"


@dataclass
class BusEvent:
    seq: int
    topic: str
    payload: BaseModel
    created_at: float = field(default_factory=time.time)

    @property
    def workspace_id(self) -> str:
        return getattr(self.payload, "workspace_id", "")

    def to_dict(self) -> dict[str, Any]:
        return {"seq": self.seq, "topic": self.topic, "data": self.payload.model_dump(), "created_at": self.created_at}


class EventBus:
    """Ordered event log plus subscriber fan-out.

    ``publish`` appends to the log (monotonic ``seq``), optionally persists
    tool-executed events, then calls subscribers in subscription order.
    A failing handler is logged and skipped. SSE consumers read the log by
    cursor with ``read`` / ``read_with_timeout``.
    """

    def __init__(
        self,
        history_limit: int = 1000,
        tool_event_repo: ToolEventRepo | None = None,
        persist_tool_events: bool = True,
    ) -> None:
        self.history_limit = history_limit
        self._tool_event_repo = tool_event_repo
        self._persist_tool_events = persist_tool_events and tool_event_repo is not None
        self._events: list[BusEvent] = []
        self._seq = 0
        self._subscribers: dict[str, list[Handler]] = {}
        self._notify = asyncio.Condition()
        self._closed = False

    @property
    def latest_seq(self) -> int:
        return self._seq

    @property
    def closed(self) -> bool:
        return self._closed

    # ------------------------------------------------------------------
    # Publish / subscribe
    # ------------------------------------------------------------------

    def subscribe(self, topic: str, handler: Handler) -> Callable[[], None]:
        """Register ``handler``; returns a callable that unsubscribes it."""
        if topic != ALL_TOPICS and topic not in TOPICS:
            raise ValueError(f"Unknown topic: {topic}. Known topics: {', '.join(TOPICS)}")
        handlers = self._subscribers.setdefault(topic, [])
        handlers.append(handler)

        def _unsubscribe() -> None:
            if handler in handlers:
                handlers.remove(handler)

        return _unsubscribe

    async def publish(self, topic: str, payload: BaseModel, *, message_id: str | None = None) -> BusEvent:
        expected = PAYLOAD_TYPES.get(topic)
        if expected is None:
            raise ValueError(f"Unknown topic: {topic}. Known topics: {', '.join(TOPICS)}")
        if not isinstance(payload, expected):
            raise TypeError(f"{topic} expects {expected.__name__}, got {type(payload).__name__}")

        self._seq += 1
        event = BusEvent(seq=self._seq, topic=topic, payload=payload)
        self._events.append(event)
        if len(self._events) > self.history_limit:
            del self._events[: len(self._events) - self.history_limit]

        if topic == TOOL_EXECUTED and self._persist_tool_events:
            await self._persist(event, message_id)

        for handler in [*self._subscribers.get(topic, ()), *self._subscribers.get(ALL_TOPICS, ())]:
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("event handler %r failed for %s #%d", handler, topic, event.seq)

        async with self._notify:
            self._notify.notify_all()
        return event

    async def _persist(self, event: BusEvent, message_id: str | None) -> None:
        try:
            await asyncio.to_thread(
                self._tool_event_repo.append_event,
                event.workspace_id,
                event.topic,
                event.payload.model_dump(),
                message_id,
            )
        except Exception:
            logger.exception("failed to persist %s event #%d", event.topic, event.seq)

    async def close(self) -> None:
        self._closed = True
        async with self._notify:
            self._notify.notify_all()

    # ------------------------------------------------------------------
    # Cursor reads
    # ------------------------------------------------------------------

    def events_since(self, cursor: int, workspace_id: str | None = None) -> list[BusEvent]:
        return [
            e
            for e in self._events
            if e.seq > cursor and (workspace_id is None or e.workspace_id == workspace_id)
        ]

    async def read(self, cursor: int, workspace_id: str | None = None) -> tuple[list[BusEvent], int]:
        """Return (new_events, new_cursor). Waits until something new arrives or the bus closes."""
        async with self._notify:
            while True:
                new = self.events_since(cursor, workspace_id)
                cursor = max(cursor, self._seq)
                if new or self._closed:
                    return new, cursor
                await self._notify.wait()

    async def read_with_timeout(
        self,
        cursor: int,
        timeout: float = 30,
        workspace_id: str | None = None,
    ) -> tuple[list[BusEvent] | None, int]:
        """Same as read() but returns (None, cursor) on timeout instead of blocking forever."""
        try:
            return await asyncio.wait_for(self.read(cursor, workspace_id), timeout)
        except TimeoutError:
            return None, cursor
