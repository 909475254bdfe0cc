"""Live event stream (SSE) and persisted audit trail."""

import asyncio
import json
from collections.abc import AsyncGenerator
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Request
from sse_starlette.sse import EventSourceResponse

from backend.web.core.dependencies import get_runtime, get_workspace
from backend.web.utils.serializers import serialize_tool_event
from core.events.bus import EventBus
from core.runtime import LivepatchRuntime
from storage.models import Workspace

router = APIRouter(prefix="/api/workspaces", tags=["events"])

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "X-Accel-Buffering": "no",
}


async def observe_bus_events(
    bus: EventBus,
    workspace_id: str,
    after: int = 0,
    request: Request | None = None,
    follow: bool = True,
) -> AsyncGenerator[dict[str, str], None]:
    """Yield SSE event dicts for one workspace, starting after bus seq ``after``.

    Sends a keepalive comment when nothing arrives for 30s. Each event
    carries its bus seq as ``id`` for Last-Event-ID reconnection.
    """
    yield {"retry": 5000}

    cursor = after
    while True:
        if request is not None and await request.is_disconnected():
            break
        if follow:
            events, cursor = await bus.read_with_timeout(cursor, timeout=30, workspace_id=workspace_id)
        else:
            events = bus.events_since(cursor, workspace_id)
            cursor = bus.latest_seq
        if events is None:
            yield {"comment": "keepalive"}
            continue
        for event in events:
            yield {"event": event.topic, "data": json.dumps(event.payload.model_dump()), "id": str(event.seq)}
        if not follow or (not events and bus.closed):
            break


@router.get("/{workspace_id}/events")
async def stream_events(
    request: Request,
    ws: Annotated[Workspace, Depends(get_workspace)],
    runtime: Annotated[LivepatchRuntime, Depends(get_runtime)],
    after: int = 0,
    follow: bool = True,
) -> EventSourceResponse:
    """SSE stream of files-changed / tool-executed for one workspace.

    Supports reconnection via ``?after=N`` or ``Last-Event-ID`` header.
    ``follow=false`` replays the buffered history and closes.
    """
    last_id = request.headers.get("Last-Event-ID")
    if last_id:
        try:
            after = max(after, int(last_id))
        except ValueError:
            pass
    return EventSourceResponse(
        observe_bus_events(runtime.bus, ws.id, after=after, request=request, follow=follow),
        headers=SSE_HEADERS,
    )


@router.get("/{workspace_id}/audit")
async def list_audit_events(
    ws: Annotated[Workspace, Depends(get_workspace)],
    runtime: Annotated[LivepatchRuntime, Depends(get_runtime)],
    after: int = 0,
    limit: int = 200,
    message_id: str | None = None,
) -> dict[str, Any]:
    """Persisted tool-executed rows, oldest first."""
    repo = runtime.container.tool_event_repo()
    rows = await asyncio.to_thread(repo.list_events, ws.id, after=after, limit=limit, message_id=message_id)
    return {"workspace_id": ws.id, "events": [serialize_tool_event(r) for r in rows]}
