"""Tests for the read-only state.vscdb reader."""

import sqlite3

import pytest

from agent_history.errors import StoreError
from agent_history.store import KVStore

from conftest import make_vscdb


@pytest.fixture
def vscdb(tmp_path):
    return make_vscdb(
        tmp_path / "state.vscdb",
        items={"composer.composerData": {"allComposers": []}},
        blobs={
            "bubbleId:c1:b1": {"text": "Fix the 100% CPU bug"},
            "bubbleId:c1:b2": {"text": "fix the 100x cpu bug"},
            "bubbleId:c1:b3": {"text": "unrelated"},
            "composerData:c1": {"text": "Fix the 100% CPU bug"},
        },
    )


class TestKVStore:
    def test_get_item_and_blob(self, vscdb):
        with KVStore(vscdb) as store:
            assert store.get_item("composer.composerData") == '{"allComposers": []}'
            assert "100% CPU" in store.get_blob("bubbleId:c1:b1")
            assert store.get_blob("missing") is None

    def test_bytes_values_decoded(self, tmp_path):
        db = make_vscdb(tmp_path / "state.vscdb")
        conn = sqlite3.connect(str(db))
        conn.execute("INSERT INTO cursorDiskKV VALUES (?, ?)", ("k", b'{"text": "caf\xc3\xa9 \xff"}'))
        conn.commit()
        conn.close()
        with KVStore(db) as store:
            value = store.get_blob("k")
        assert value.startswith('{"text": "café')
        assert "�" in value

    def test_missing_file(self, tmp_path):
        with pytest.raises(StoreError):
            KVStore(tmp_path / "nope.vscdb").open()

    def test_not_a_database(self, tmp_path):
        bogus = tmp_path / "state.vscdb"
        bogus.write_text("this is not sqlite", encoding="utf-8")
        with pytest.raises(StoreError):
            with KVStore(bogus) as store:
                store.get_item("anything")

    def test_read_only(self, vscdb):
        with KVStore(vscdb) as store:
            with pytest.raises(sqlite3.OperationalError):
                store._conn.execute("DELETE FROM cursorDiskKV")

    def test_scan_blobs_escapes_wildcards(self, vscdb):
        with KVStore(vscdb) as store:
            rows = store.scan_blobs("bubbleId:", "100% cpu", 10)
        assert [key for key, _ in rows] == ["bubbleId:c1:b1"]

    def test_scan_blobs_prefix_and_limit(self, vscdb):
        with KVStore(vscdb) as store:
            rows = store.scan_blobs("bubbleId:", "the", 1)
            assert len(rows) == 2
            assert all(key.startswith("bubbleId:") for key, _ in rows)
            assert store.scan_blobs("bubbleId:", "the", 0) == []
