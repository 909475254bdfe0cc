"""Tests for core.checkpoint.manager."""

import asyncio
import sqlite3
import threading
import time
from dataclasses import replace

import pytest

from config.schema import CheckpointConfig
from core.checkpoint.manager import CheckpointManager, content_hash
from core.directives.types import CorrelationId, WriteFileDirective
from core.events.bus import EventBus
from core.events.topics import FILES_CHANGED, TOOL_EXECUTED
from core.execution.executor import DirectiveExecutor
from core.execution.queue import QueueRegistry
from storage.container import StorageContainer
from storage.errors import StoreUnavailableError
from storage.providers.sqlite.file_store import SQLiteFileStore


class FakeClock:
    def __init__(self, now: float = 1_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class Harness:
    def __init__(self, tmp_path, clock=None, ttl: float = 300) -> None:
        self.container = StorageContainer(db_path=tmp_path / "livepatch.db")
        self.container.init()
        self.store = self.container.file_store()
        self.repo = self.container.checkpoint_repo()
        self.bus = EventBus()
        self.events = []
        self.bus.subscribe(FILES_CHANGED, self.events.append)
        self.queues = QueueRegistry(DirectiveExecutor(self.store, self.bus))
        self.manager = CheckpointManager(
            self.store,
            self.repo,
            self.queues,
            self.bus,
            CheckpointConfig(pre_revert_ttl_seconds=ttl),
            clock=clock or time.time,
        )
        self.store.create_workspace("w", workspace_id="ws")

    def files(self) -> dict[str, str]:
        return {f.path: f.content for f in self.store.list_files("ws")}

    async def close(self) -> None:
        await self.queues.close()
        self.container.close()


@pytest.mark.asyncio
async def test_create_and_list_checkpoints(tmp_path):
    h = Harness(tmp_path)
    try:
        h.store.write_file("ws", "a.txt", "A")
        first = await h.manager.create_checkpoint("ws", "m1")
        second = await h.manager.create_checkpoint("ws", "m2")

        listed = await h.manager.get_checkpoints("ws")
        assert [c.id for c in listed] == [first.id, second.id]
        assert first.files[0].content_hash == content_hash("A")
        assert (await h.manager.get_checkpoint(first.id)).message_id == "m1"
        assert (await h.manager.find_checkpoint_for_message("ws", "m2")).id == second.id
        assert await h.manager.get_checkpoint("missing") is None
    finally:
        await h.close()


@pytest.mark.asyncio
async def test_restore_returns_exact_file_set(tmp_path):
    h = Harness(tmp_path)
    try:
        h.store.write_file("ws", "index.html", "<h1>v1</h1>")
        h.store.write_file("ws", "style.css", "body {}")
        checkpoint = await h.manager.create_checkpoint("ws", "m1")

        h.store.write_file("ws", "index.html", "<h1>v2</h1>")
        h.store.delete_file("ws", "style.css")
        h.store.write_file("ws", "new.js", "console.log(1)")

        assert await h.manager.restore_checkpoint(checkpoint.id) is True
        assert h.files() == {"index.html": "<h1>v1</h1>", "style.css": "body {}"}
        assert len(h.events) == 1
        assert h.events[0].payload.reason == "restore"
        assert sorted(h.events[0].payload.paths) == ["index.html", "style.css"]
    finally:
        await h.close()


@pytest.mark.asyncio
async def test_restore_is_byte_identical(tmp_path):
    h = Harness(tmp_path)
    try:
        tricky = "line one\r\n\ttabbed  \n\n  trailing spaces   \nunicode: ✓ é 中文\n"
        h.store.write_file("ws", "tricky.txt", tricky)
        h.store.write_file("ws", "empty.txt", "")
        checkpoint = await h.manager.create_checkpoint("ws", "m1")
        h.store.write_file("ws", "tricky.txt", "clobbered")

        assert await h.manager.restore_checkpoint(checkpoint.id)
        assert h.store.read_file("ws", "tricky.txt") == tricky
        assert h.store.read_file("ws", "empty.txt") == ""
    finally:
        await h.close()


@pytest.mark.asyncio
async def test_restore_unknown_checkpoint(tmp_path):
    h = Harness(tmp_path)
    try:
        assert await h.manager.restore_checkpoint("does-not-exist") is False
        assert h.events == []
    finally:
        await h.close()


@pytest.mark.asyncio
async def test_failed_restore_leaves_live_files(tmp_path, monkeypatch):
    h = Harness(tmp_path)
    try:
        h.store.write_file("ws", "a.txt", "old-a")
        h.store.write_file("ws", "b.txt", "old-b")
        checkpoint = await h.manager.create_checkpoint("ws", "m1")
        h.store.write_file("ws", "a.txt", "new-a")
        h.store.write_file("ws", "c.txt", "new-c")

        original = SQLiteFileStore._upsert
        calls = {"n": 0}

        def fail_second(self, conn, *args):
            calls["n"] += 1
            if calls["n"] == 2:
                raise sqlite3.OperationalError("simulated failure mid-restore")
            return original(self, conn, *args)

        monkeypatch.setattr(SQLiteFileStore, "_upsert", fail_second)
        assert await h.manager.restore_checkpoint(checkpoint.id) is False
        monkeypatch.undo()

        assert h.files() == {"a.txt": "new-a", "b.txt": "old-b", "c.txt": "new-c"}
        assert h.events == []
    finally:
        await h.close()


@pytest.mark.asyncio
async def test_corrupt_snapshot_is_not_applied(tmp_path, monkeypatch):
    h = Harness(tmp_path)
    try:
        h.store.write_file("ws", "a.txt", "old")
        checkpoint = await h.manager.create_checkpoint("ws", "m1")
        h.store.write_file("ws", "a.txt", "new")

        corrupt = replace(checkpoint, files=(replace(checkpoint.files[0], content="tampered"),))
        monkeypatch.setattr(h.repo, "get", lambda checkpoint_id: corrupt)

        assert await h.manager.restore_checkpoint(checkpoint.id) is False
        assert h.files() == {"a.txt": "new"}
    finally:
        await h.close()


@pytest.mark.asyncio
async def test_restore_returns_false_when_lookup_fails(tmp_path, monkeypatch):
    h = Harness(tmp_path)
    try:
        h.store.write_file("ws", "a.txt", "A")
        checkpoint = await h.manager.create_checkpoint("ws", "m1")

        def unavailable(checkpoint_id):
            raise StoreUnavailableError("database is locked")

        monkeypatch.setattr(h.repo, "get", unavailable)
        assert await h.manager.restore_checkpoint(checkpoint.id) is False
        assert h.events == []
    finally:
        await h.close()


@pytest.mark.asyncio
async def test_restore_event_precedes_directives_queued_during_restore(tmp_path, monkeypatch):
    h = Harness(tmp_path)
    topics = []

    def record(event):
        detail = event.payload.path if event.topic == TOOL_EXECUTED else event.payload.reason
        topics.append((event.topic, detail))

    h.bus.subscribe("*", record)
    try:
        h.store.write_file("ws", "a.txt", "A")
        checkpoint = await h.manager.create_checkpoint("ws", "m1")

        entered = threading.Event()
        release = threading.Event()
        real_replace = h.store.replace_all_files

        def slow_replace(workspace_id, files):
            entered.set()
            release.wait(5)
            real_replace(workspace_id, files)

        monkeypatch.setattr(h.store, "replace_all_files", slow_replace)
        restore = asyncio.create_task(h.manager.restore_checkpoint(checkpoint.id))
        assert await asyncio.to_thread(entered.wait, 5)

        directive = WriteFileDirective(
            path="b.txt", content="B", correlation_id=CorrelationId(tool="write_file", timestamp_ms=1, suffix="q1")
        )
        queued = h.queues.get("ws").submit("m2", directive)
        await asyncio.sleep(0.05)
        release.set()

        assert await restore is True
        assert (await queued).action == "created"
        assert topics == [
            (FILES_CHANGED, "restore"),
            (FILES_CHANGED, "directive"),
            (TOOL_EXECUTED, "b.txt"),
        ]
    finally:
        await h.close()


@pytest.mark.asyncio
async def test_revert_and_restore_pre_revert_state(tmp_path):
    h = Harness(tmp_path)
    try:
        h.store.write_file("ws", "a.txt", "before turn")
        await h.manager.create_checkpoint("ws", "m1")
        h.store.write_file("ws", "a.txt", "after turn")

        assert await h.manager.revert_to_message("ws", "m1") is True
        assert h.files() == {"a.txt": "before turn"}
        assert await h.manager.is_restore_available("ws", "m1") is True

        assert await h.manager.restore_pre_revert_state("ws", "m1") is True
        assert h.files() == {"a.txt": "after turn"}
        assert [e.payload.reason for e in h.events] == ["restore", "pre_revert_restore"]
        # a pre-revert state is consumed by restoring it
        assert await h.manager.is_restore_available("ws", "m1") is False
        # and never shows up as a regular checkpoint
        assert len(await h.manager.get_checkpoints("ws")) == 1
    finally:
        await h.close()


@pytest.mark.asyncio
async def test_revert_without_checkpoint(tmp_path):
    h = Harness(tmp_path)
    try:
        assert await h.manager.revert_to_message("ws", "unknown") is False
        assert await h.manager.is_restore_available("ws", "unknown") is False
    finally:
        await h.close()


@pytest.mark.asyncio
async def test_pre_revert_state_expires(tmp_path):
    clock = FakeClock()
    h = Harness(tmp_path, clock=clock, ttl=60)
    try:
        h.store.write_file("ws", "a.txt", "current")
        row = await h.manager.capture_pre_revert_state("ws", "m1")
        clock.now = row.created_at + 30
        assert await h.manager.is_restore_available("ws", "m1") is True

        clock.now = row.created_at + 61
        assert await h.manager.is_restore_available("ws", "m1") is False
        assert await h.manager.restore_pre_revert_state("ws", "m1") is False
        # expired state is discarded
        clock.now = row.created_at
        assert await h.manager.is_restore_available("ws", "m1") is False
    finally:
        await h.close()


@pytest.mark.asyncio
async def test_capture_replaces_previous_pre_revert_state(tmp_path):
    h = Harness(tmp_path)
    try:
        h.store.write_file("ws", "a.txt", "one")
        await h.manager.capture_pre_revert_state("ws", "m1")
        h.store.write_file("ws", "a.txt", "two")
        await h.manager.capture_pre_revert_state("ws", "m1")
        h.store.write_file("ws", "a.txt", "three")

        assert await h.manager.restore_pre_revert_state("ws", "m1") is True
        assert h.files() == {"a.txt": "two"}
    finally:
        await h.close()


@pytest.mark.asyncio
async def test_clear_pre_revert_states(tmp_path):
    h = Harness(tmp_path)
    try:
        await h.manager.capture_pre_revert_state("ws", "m1")
        await h.manager.capture_pre_revert_state("ws", "m2")
        await h.manager.create_checkpoint("ws", "m3")
        assert await h.manager.clear_pre_revert_states("ws") == 2
        assert len(await h.manager.get_checkpoints("ws")) == 1
    finally:
        await h.close()
