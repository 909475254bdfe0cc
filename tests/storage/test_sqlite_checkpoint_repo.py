import pytest

from storage.models import FileSnapshot
from storage.providers.sqlite.checkpoint_repo import SQLiteCheckpointRepo


@pytest.fixture
def repo(tmp_path):
    r = SQLiteCheckpointRepo(db_path=tmp_path / "livepatch.db")
    r.init()
    try:
        yield r
    finally:
        r.close()


def _snap(path: str, content: str) -> FileSnapshot:
    return FileSnapshot(path=path, content_hash=f"hash-{path}", content=content)


def test_save_and_get_preserves_file_order(repo):
    files = [_snap("b.txt", "B"), _snap("a.txt", "A")]
    saved = repo.save("ws-1", "msg-1", files)
    loaded = repo.get(saved.id)
    assert loaded is not None
    assert loaded.files == tuple(files)
    assert loaded.paths() == ["b.txt", "a.txt"]
    assert loaded.kind == "turn"
    assert loaded.message_id == "msg-1"


def test_get_unknown_returns_none(repo):
    assert repo.get("nope") is None


def test_empty_snapshot(repo):
    saved = repo.save("ws-1", "msg-1", [])
    assert repo.get(saved.id).files == ()


def test_list_is_creation_ordered_and_kind_filtered(repo):
    first = repo.save("ws-1", "m1", [])
    repo.save("ws-1", "m1", [], kind="pre_revert")
    second = repo.save("ws-1", "m2", [])
    repo.save("ws-2", "m1", [])
    assert [c.id for c in repo.list_for_workspace("ws-1")] == [first.id, second.id]
    assert len(repo.list_for_workspace("ws-1", kind="pre_revert")) == 1


def test_latest_for_message(repo):
    repo.save("ws-1", "m1", [_snap("a.txt", "1")])
    newer = repo.save("ws-1", "m1", [_snap("a.txt", "2")])
    assert repo.latest_for_message("ws-1", "m1").id == newer.id
    assert repo.latest_for_message("ws-1", "m2") is None


def test_delete_for_message_only_touches_kind(repo):
    keep = repo.save("ws-1", "m1", [_snap("a.txt", "1")])
    repo.save("ws-1", "m1", [_snap("a.txt", "2")], kind="pre_revert")
    assert repo.delete_for_message("ws-1", "m1", "pre_revert") == 1
    assert repo.latest_for_message("ws-1", "m1", kind="pre_revert") is None
    assert repo.get(keep.id) is not None


def test_delete_workspace_checkpoints(repo):
    repo.save("ws-1", "m1", [_snap("a.txt", "1")])
    repo.save("ws-1", "m2", [], kind="pre_revert")
    other = repo.save("ws-2", "m1", [])
    assert repo.delete_workspace_checkpoints("ws-1") == 2
    assert repo.list_for_workspace("ws-1") == []
    assert repo.get(other.id) is not None
    assert repo.delete_workspace_checkpoints("ws-1") == 0
