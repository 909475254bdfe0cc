"""Tests for core.events.bus."""

import asyncio

import pytest

from core.events.bus import EventBus
from core.events.topics import FILES_CHANGED, TOOL_EXECUTED, FilesChangedEvent, ToolExecutedEvent
from storage.providers.sqlite.tool_event_repo import SQLiteToolEventRepo


@pytest.mark.asyncio
async def test_subscribers_called_in_order():
    bus = EventBus()
    seen = []

    async def async_handler(event):
        seen.append(("async", event.seq))

    bus.subscribe(FILES_CHANGED, lambda e: seen.append(("sync", e.seq)))
    bus.subscribe(FILES_CHANGED, async_handler)
    bus.subscribe("*", lambda e: seen.append(("all", e.topic)))

    await bus.publish(FILES_CHANGED, FilesChangedEvent(workspace_id="ws"))
    assert seen == [("sync", 1), ("async", 1), ("all", FILES_CHANGED)]


@pytest.mark.asyncio
async def test_failing_handler_does_not_block_others():
    bus = EventBus()
    seen = []

    def boom(event):
        raise RuntimeError("subscriber bug")

    bus.subscribe(TOOL_EXECUTED, boom)
    bus.subscribe(TOOL_EXECUTED, lambda e: seen.append(e.seq))
    event = await bus.publish(TOOL_EXECUTED, ToolExecutedEvent(workspace_id="ws"))
    assert seen == [event.seq]


@pytest.mark.asyncio
async def test_unsubscribe():
    bus = EventBus()
    seen = []
    unsubscribe = bus.subscribe(FILES_CHANGED, seen.append)
    await bus.publish(FILES_CHANGED, FilesChangedEvent(workspace_id="ws"))
    unsubscribe()
    await bus.publish(FILES_CHANGED, FilesChangedEvent(workspace_id="ws"))
    assert len(seen) == 1


@pytest.mark.asyncio
async def test_topic_and_payload_are_checked():
    bus = EventBus()
    with pytest.raises(ValueError):
        bus.subscribe("nope", print)
    with pytest.raises(ValueError):
        await bus.publish("nope", FilesChangedEvent(workspace_id="ws"))
    with pytest.raises(TypeError):
        await bus.publish(FILES_CHANGED, ToolExecutedEvent(workspace_id="ws"))


@pytest.mark.asyncio
async def test_history_is_bounded_and_filterable():
    bus = EventBus(history_limit=3)
    for ws in ["a", "b", "a", "b", "a"]:
        await bus.publish(FILES_CHANGED, FilesChangedEvent(workspace_id=ws))
    assert [e.seq for e in bus.events_since(0)] == [3, 4, 5]
    assert [e.seq for e in bus.events_since(0, workspace_id="a")] == [3, 5]
    assert bus.latest_seq == 5


@pytest.mark.asyncio
async def test_read_waits_for_new_events():
    bus = EventBus()
    reader = asyncio.create_task(bus.read(0, workspace_id="ws"))
    await asyncio.sleep(0)
    assert not reader.done()
    await bus.publish(FILES_CHANGED, FilesChangedEvent(workspace_id="ws"))
    events, cursor = await asyncio.wait_for(reader, 1)
    assert [e.seq for e in events] == [1]
    assert cursor == 1


@pytest.mark.asyncio
async def test_read_with_timeout_returns_none():
    bus = EventBus()
    events, cursor = await bus.read_with_timeout(0, timeout=0.05)
    assert events is None
    assert cursor == 0


@pytest.mark.asyncio
async def test_close_wakes_readers():
    bus = EventBus()
    reader = asyncio.create_task(bus.read(0))
    await asyncio.sleep(0)
    await bus.close()
    events, _ = await asyncio.wait_for(reader, 1)
    assert events == []
    assert bus.closed


@pytest.mark.asyncio
async def test_tool_events_are_persisted(tmp_path):
    repo = SQLiteToolEventRepo(db_path=tmp_path / "livepatch.db")
    repo.init()
    bus = EventBus(tool_event_repo=repo)
    await bus.publish(FILES_CHANGED, FilesChangedEvent(workspace_id="ws"))
    await bus.publish(
        TOOL_EXECUTED,
        ToolExecutedEvent(workspace_id="ws", message_id="m1", action="created", path="a.txt"),
        message_id="m1",
    )
    rows = repo.list_events("ws")
    assert len(rows) == 1
    assert rows[0].topic == TOOL_EXECUTED
    assert rows[0].message_id == "m1"
    assert rows[0].data["path"] == "a.txt"


@pytest.mark.asyncio
async def test_persistence_failure_is_logged_not_raised(tmp_path, caplog):
    repo = SQLiteToolEventRepo(db_path=tmp_path / "livepatch.db")
    # no init(): the table does not exist
    bus = EventBus(tool_event_repo=repo)
    event = await bus.publish(TOOL_EXECUTED, ToolExecutedEvent(workspace_id="ws"))
    assert event.seq == 1
    assert "failed to persist" in caplog.text
