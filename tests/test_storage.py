import json
import os
import stat

import pytest

from workout_calendar.storage import JsonFileStore, MemoryStore


def test_json_file_store_round_trip(tmp_path):
    path = tmp_path / "nested" / "storage.json"
    store = JsonFileStore(path)

    assert store.get("missing") is None
    store.set("a", "1")
    store.set("b", "2")

    assert store.get("a") == "1"
    assert json.loads(path.read_text(encoding="utf-8")) == {"a": "1", "b": "2"}
    assert not path.with_suffix(".tmp").exists()


@pytest.mark.skipif(os.name == "nt", reason="POSIX permissions only")
def test_json_file_store_restricts_permissions(tmp_path):
    path = tmp_path / "storage.json"
    JsonFileStore(path).set("token", "secret")
    mode = stat.S_IMODE(path.stat().st_mode)
    assert mode == 0o600


def test_json_file_store_sees_writes_from_other_instance(tmp_path):
    path = tmp_path / "storage.json"
    first = JsonFileStore(path)
    second = JsonFileStore(path)

    first.set("strava_refresh_token", "old")
    second.set("strava_refresh_token", "rotated")

    assert first.get("strava_refresh_token") == "rotated"


def test_json_file_store_multi_remove(tmp_path):
    store = JsonFileStore(tmp_path / "storage.json")
    store.set("a", "1")
    store.set("b", "2")
    store.set("c", "3")

    store.multi_remove(["a", "c", "not-there"])

    assert store.get("a") is None
    assert store.get("b") == "2"
    assert store.get("c") is None


def test_json_file_store_ignores_corrupt_file(tmp_path, caplog):
    path = tmp_path / "storage.json"
    path.write_text("{not json", encoding="utf-8")
    store = JsonFileStore(path)

    with caplog.at_level("ERROR"):
        assert store.get("a") is None
    assert "Failed reading storage file" in caplog.text

    store.set("a", "1")
    assert store.get("a") == "1"


def test_json_file_store_ignores_non_object_document(tmp_path):
    path = tmp_path / "storage.json"
    path.write_text("[1, 2, 3]", encoding="utf-8")
    assert JsonFileStore(path).get("0") is None


def test_memory_store_snapshot_is_a_copy():
    store = MemoryStore({"a": "1"})
    snap = store.snapshot()
    snap["b"] = "2"

    store.multi_remove(["a"])

    assert store.get("a") is None
    assert store.get("b") is None
    assert snap == {"a": "1", "b": "2"}


def test_json_file_store_leaves_no_temp_files_and_ignores_stale_ones(tmp_path):
    path = tmp_path / "storage.json"
    stale = tmp_path / "storage.tmp"
    stale.write_text("left over by a crashed writer", encoding="utf-8")
    store = JsonFileStore(path)

    store.set("a", "1")
    store.multi_remove(["a"])
    store.set("b", "2")

    assert sorted(p.name for p in tmp_path.iterdir()) == ["storage.json", "storage.tmp"]
    assert stale.read_text(encoding="utf-8") == "left over by a crashed writer"


def test_json_file_store_failed_write_keeps_previous_file(tmp_path, monkeypatch):
    path = tmp_path / "storage.json"
    store = JsonFileStore(path)
    store.set("a", "1")

    def broken_dump(*args, **kwargs):
        raise OSError("disk full")

    monkeypatch.setattr("workout_calendar.storage.json.dump", broken_dump)
    with pytest.raises(OSError):
        store.set("b", "2")

    assert [p.name for p in tmp_path.iterdir()] == ["storage.json"]
    assert json.loads(path.read_text(encoding="utf-8")) == {"a": "1"}
