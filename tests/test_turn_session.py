"""End-to-end turn tests: chunk stream -> directives -> store + events."""

import asyncio
import json

import pytest

from config.schema import CheckpointConfig, LivepatchSettings, StorageConfig
from core.events.topics import FILES_CHANGED, TOOL_EXECUTED
from core.runtime import LivepatchRuntime
from storage.errors import StorageError, StoreUnavailableError


async def stream(*chunks: str, delay: float = 0):
    for chunk in chunks:
        if delay:
            await asyncio.sleep(delay)
        yield chunk


def _runtime(tmp_path, **overrides) -> LivepatchRuntime:
    settings = LivepatchSettings(storage=StorageConfig(db_path=str(tmp_path / "livepatch.db")), **overrides)
    runtime = LivepatchRuntime.build(settings)
    runtime.init()
    runtime.file_store.create_workspace("demo", workspace_id="ws")
    return runtime


def _record(runtime: LivepatchRuntime) -> list:
    events = []
    runtime.bus.subscribe("*", events.append)
    return events


def _files(runtime: LivepatchRuntime) -> dict[str, str]:
    return {f.path: f.content for f in runtime.file_store.list_files("ws")}


WRITE_A = json.dumps({"tool": "write_file", "path": "a.txt", "content": "hi"})


@pytest.mark.asyncio
async def test_structured_write_split_across_chunks(tmp_path):
    runtime = _runtime(tmp_path)
    events = _record(runtime)
    try:
        report = await runtime.run_turn("ws", "m1", stream("...", "```json\n" + WRITE_A + "\n", "```"))
    finally:
        await runtime.close()

    assert _files(runtime) == {"a.txt": "hi"}
    assert [r.action for r in report.results] == ["created"]
    assert [e.topic for e in events] == [FILES_CHANGED, TOOL_EXECUTED]
    assert not report.aborted


@pytest.mark.asyncio
async def test_edit_hunk_in_prose(tmp_path):
    runtime = _runtime(tmp_path)
    runtime.file_store.write_file("ws", "src/app.ts", 'console.log("Hello World");\n')
    try:
        report = await runtime.run_turn(
            "ws",
            "m1",
            stream(
                "Let me update src/app.ts:\n<<<<<<< SEA",
                'RCH\nconsole.log("Hello World");\n=====',
                '==\nconsole.log("Hi World");\n>>>>>>> REPLACE\nDone!',
            ),
        )
    finally:
        await runtime.close()

    assert [r.action for r in report.results] == ["edited"]
    assert _files(runtime)["src/app.ts"] == 'console.log("Hi World");\n'


@pytest.mark.asyncio
async def test_malformed_block_does_not_stop_later_directives(tmp_path):
    runtime = _runtime(tmp_path)
    events = _record(runtime)
    text = (
        '```json\n{"tool": "write_file", "path": "bad.txt", content: }\n```\n'
        "```json\n" + WRITE_A + "\n```\n"
    )
    try:
        report = await runtime.run_turn("ws", "m1", stream(text))
    finally:
        await runtime.close()

    assert _files(runtime) == {"a.txt": "hi"}
    assert [e.reason.value for e in report.parse_errors] == ["malformed"]
    tool_events = [e.payload for e in events if e.topic == TOOL_EXECUTED]
    assert [p.result["status"] for p in tool_events] == ["failed", "applied"]


@pytest.mark.asyncio
async def test_unterminated_json_mutates_nothing(tmp_path):
    runtime = _runtime(tmp_path)
    events = _record(runtime)
    try:
        report = await runtime.run_turn(
            "ws", "m1", stream('```json\n{"tool": "write_file", "path": "a.txt", "content": "hi"\n```\n')
        )
    finally:
        await runtime.close()

    assert _files(runtime) == {}
    assert [e.reason.value for e in report.parse_errors] == ["malformed"]
    assert [e.topic for e in events] == [TOOL_EXECUTED]


@pytest.mark.asyncio
async def test_checkpoint_then_update_then_restore(tmp_path):
    runtime = _runtime(tmp_path)
    runtime.file_store.write_file("ws", "file1", "A")
    try:
        checkpoint = await runtime.checkpoints.create_checkpoint("ws", "m1")
        await runtime.run_turn(
            "ws", "m2", stream("```json\n" + json.dumps({"tool": "write_file", "path": "file1", "content": "B"}) + "\n```\n")
        )
        assert _files(runtime) == {"file1": "B"}
        assert await runtime.checkpoints.restore_checkpoint(checkpoint.id)
    finally:
        await runtime.close()
    assert _files(runtime) == {"file1": "A"}


@pytest.mark.asyncio
async def test_repeated_correlation_id_executes_once(tmp_path):
    runtime = _runtime(tmp_path)
    events = _record(runtime)
    marker = "<!-- tool:write_file:1700000000000:abc123xyz -->\n"
    block = "```json\n" + WRITE_A + "\n```\n"
    try:
        report = await runtime.run_turn("ws", "m1", stream(marker + block, marker + block))
    finally:
        await runtime.close()

    assert [r.status for r in report.results] == ["applied", "skipped"]
    assert report.results[0].correlation_id == "write_file_1700000000000_abc123xyz"
    assert len([e for e in events if e.topic == TOOL_EXECUTED]) == 1


@pytest.mark.asyncio
async def test_directives_apply_in_stream_order(tmp_path):
    runtime = _runtime(tmp_path)
    events = _record(runtime)
    text = (
        "```json\n" + json.dumps({"tool": "write_file", "path": "n.txt", "content": "1"}) + "\n```\n"
        "n.txt\n<<<<<<< SEARCH\n1\n=======\n2\n>>>>>>> REPLACE\n"
        "```json\n"
        + json.dumps({"tool": "edit_file", "path": "n.txt", "searchReplaceBlocks": [{"search": "2", "replace": "3"}]})
        + "\n```\n"
        "```json\n" + json.dumps({"tool": "write_file", "path": "m.txt", "content": "x"}) + "\n```\n"
        "```json\n" + json.dumps({"tool": "delete_file", "path": "m.txt"}) + "\n```\n"
    )
    size = 5
    try:
        report = await runtime.run_turn("ws", "m1", stream(*[text[i : i + size] for i in range(0, len(text), size)]))
    finally:
        await runtime.close()

    assert [r.action for r in report.results] == ["created", "edited", "edited", "created", "deleted"]
    assert _files(runtime) == {"n.txt": "3"}
    executed = [e.payload.directive["kind"] for e in events if e.topic == TOOL_EXECUTED]
    assert executed == ["write_file", "edit_file", "edit_file", "write_file", "delete_file"]


@pytest.mark.asyncio
async def test_auto_checkpoint_before_first_directive(tmp_path):
    runtime = _runtime(tmp_path)
    runtime.file_store.write_file("ws", "a.txt", "original")
    try:
        report = await runtime.run_turn(
            "ws", "m1", stream("```json\n" + json.dumps({"tool": "write_file", "path": "a.txt", "content": "changed"}) + "\n```\n")
        )
        assert report.checkpoint_id is not None
        checkpoints = await runtime.checkpoints.get_checkpoints("ws")
        assert [c.id for c in checkpoints] == [report.checkpoint_id]

        assert await runtime.checkpoints.restore_checkpoint(report.checkpoint_id)
        assert _files(runtime) == {"a.txt": "original"}

        # a second turn for the same message reuses its checkpoint
        again = await runtime.run_turn("ws", "m1", stream("```json\n" + WRITE_A + "\n```\n"))
        assert again.checkpoint_id == report.checkpoint_id
    finally:
        await runtime.close()


@pytest.mark.asyncio
async def test_no_checkpoint_without_directives(tmp_path):
    runtime = _runtime(tmp_path)
    try:
        report = await runtime.run_turn("ws", "m1", stream("Just chatting, no edits.\n"))
        assert report.checkpoint_id is None
        assert await runtime.checkpoints.get_checkpoints("ws") == []
    finally:
        await runtime.close()


@pytest.mark.asyncio
async def test_auto_checkpoint_can_be_disabled(tmp_path):
    runtime = _runtime(tmp_path, checkpoint=CheckpointConfig(auto_create=False))
    try:
        report = await runtime.run_turn("ws", "m1", stream("```json\n" + WRITE_A + "\n```\n"))
        assert report.checkpoint_id is None
        assert _files(runtime) == {"a.txt": "hi"}
    finally:
        await runtime.close()


@pytest.mark.asyncio
async def test_abort_drops_partial_block_keeps_completed(tmp_path):
    runtime = _runtime(tmp_path)
    session = runtime.turn("ws", "m1")

    async def chunks():
        yield "```json\n" + WRITE_A + "\n```\n"
        yield '```json\n{"tool": "write_file", "path": "partial.txt", '
        session.abort()
        yield '"content": "never"}\n```\n'

    try:
        report = await session.run(chunks())
    finally:
        await runtime.close()

    assert report.aborted
    assert report.abort_reason == "stream aborted"
    assert _files(runtime) == {"a.txt": "hi"}
    assert session.cursor.buffer == ""


@pytest.mark.asyncio
async def test_cancelled_stream_discards_buffer(tmp_path):
    runtime = _runtime(tmp_path)
    session = runtime.turn("ws", "m1")
    try:
        task = asyncio.create_task(
            session.run(
                stream(
                    "```json\n" + WRITE_A + "\n```\n",
                    '```json\n{"tool": "write_file", "path": "partial.txt", ',
                    '"content": "never"}\n```\n',
                    delay=0.05,
                )
            )
        )
        await asyncio.sleep(0.125)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        await runtime.queues.get("ws").drain()
        assert session.report.aborted
        assert session.report.abort_reason == "stream cancelled"
        assert session.cursor.buffer == ""
        assert runtime.file_store.get_file("ws", "partial.txt") is None
    finally:
        await runtime.close()


@pytest.mark.asyncio
async def test_unterminated_block_at_end_is_dropped(tmp_path):
    runtime = _runtime(tmp_path)
    try:
        report = await runtime.run_turn("ws", "m1", stream("```json\n" + WRITE_A + "\n"))
    finally:
        await runtime.close()
    assert report.results == []
    assert _files(runtime) == {}


@pytest.mark.asyncio
async def test_workspaces_are_isolated(tmp_path):
    runtime = _runtime(tmp_path)
    runtime.file_store.create_workspace("other", workspace_id="ws-2")
    try:
        await asyncio.gather(
            runtime.run_turn("ws", "m1", stream("```json\n" + WRITE_A + "\n```\n")),
            runtime.run_turn(
                "ws-2",
                "m1",
                stream("```json\n" + json.dumps({"tool": "write_file", "path": "b.txt", "content": "2"}) + "\n```\n"),
            ),
        )
        assert [f.path for f in runtime.file_store.list_files("ws")] == ["a.txt"]
        assert [f.path for f in runtime.file_store.list_files("ws-2")] == ["b.txt"]
    finally:
        await runtime.close()


@pytest.mark.asyncio
async def test_delete_workspace_purges_everything(tmp_path):
    runtime = _runtime(tmp_path)
    try:
        await runtime.run_turn("ws", "m1", stream("```json\n" + WRITE_A + "\n```\n"))
        assert await runtime.delete_workspace("ws") is True
        assert runtime.file_store.get_workspace("ws") is None
        assert await runtime.checkpoints.get_checkpoints("ws") == []
        assert runtime.container.tool_event_repo().list_events("ws") == []
    finally:
        await runtime.close()


@pytest.mark.asyncio
async def test_unavailable_store_at_checkpoint_aborts_turn(tmp_path, monkeypatch):
    runtime = _runtime(tmp_path)

    async def unavailable(workspace_id, message_id):
        raise StoreUnavailableError("database is locked")

    monkeypatch.setattr(runtime.checkpoints, "create_checkpoint", unavailable)
    try:
        report = await runtime.run_turn("ws", "m1", stream("```json\n" + WRITE_A + "\n```\n"))
    finally:
        await runtime.close()

    assert report.aborted
    assert report.abort_reason == "database is locked"
    assert report.checkpoint_id is None
    assert [r.status for r in report.results] == ["failed"]
    assert _files(runtime) == {}


@pytest.mark.asyncio
async def test_failed_checkpoint_lets_turn_continue(tmp_path, monkeypatch):
    runtime = _runtime(tmp_path)

    async def broken(workspace_id, message_id):
        raise StorageError("snapshot insert failed")

    monkeypatch.setattr(runtime.checkpoints, "create_checkpoint", broken)
    try:
        report = await runtime.run_turn("ws", "m1", stream("```json\n" + WRITE_A + "\n```\n"))
    finally:
        await runtime.close()

    assert not report.aborted
    assert report.checkpoint_id is None
    assert [r.status for r in report.results] == ["applied"]
    assert _files(runtime) == {"a.txt": "hi"}
