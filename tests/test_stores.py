"""Tests for blob stores and the session event bus."""

import pytest

from termai.runtime.event_bus import EventBus, SessionEvent, SessionEventKind
from termai.runtime.stores import BlobStoreError, FileBlobStore, MemoryBlobStore


class TestFileBlobStore:
    def test_save_and_load(self, tmp_path):
        store = FileBlobStore(tmp_path / "state")
        store.save_blob("messages-s1", {"turns": [{"content": "héllo"}]})

        assert store.load_blob("messages-s1") == {"turns": [{"content": "héllo"}]}
        assert (tmp_path / "state" / "messages-s1.json").exists()
        assert not (tmp_path / "state" / "messages-s1.json.tmp").exists()
        assert store.list_blobs("messages-") == ["messages-s1"]

    def test_missing_blob(self, tmp_path):
        assert FileBlobStore(tmp_path).load_blob("nothing") is None

    def test_rejects_path_like_names(self, tmp_path):
        with pytest.raises(BlobStoreError):
            FileBlobStore(tmp_path).save_blob("../escape", {})

    def test_corrupt_json_raises(self, tmp_path):
        (tmp_path / "bad.json").write_text("{not json", encoding="utf-8")
        with pytest.raises(BlobStoreError):
            FileBlobStore(tmp_path).load_blob("bad")

    def test_lone_surrogates_are_replaced(self, tmp_path):
        store = FileBlobStore(tmp_path)
        store.save_blob("s", {"text": "a\ud800b"})
        assert store.load_blob("s") == {"text": "a�b"}


class TestMemoryBlobStore:
    def test_returns_copies(self):
        store = MemoryBlobStore()
        data = {"items": [1]}
        store.save_blob("x", data)
        data["items"].append(2)
        assert store.load_blob("x") == {"items": [1]}


class TestEventBus:
    def _event(self, kind=SessionEventKind.TURN_CHANGED):
        return SessionEvent(kind=kind, session_id="s1")

    def test_kind_filter_and_unsubscribe(self):
        bus = EventBus()
        all_events, approvals = [], []
        bus.subscribe(all_events.append)
        unsubscribe = bus.subscribe(approvals.append, kinds={SessionEventKind.APPROVAL_REQUESTED})

        bus.publish(self._event())
        bus.publish(self._event(SessionEventKind.APPROVAL_REQUESTED))
        unsubscribe()
        unsubscribe()
        bus.publish(self._event(SessionEventKind.APPROVAL_REQUESTED))

        assert len(all_events) == 3
        assert len(approvals) == 1

    def test_failing_handler_does_not_block_others(self):
        bus = EventBus()
        seen = []

        def boom(event):
            raise RuntimeError("handler bug")

        bus.subscribe(boom)
        bus.subscribe(seen.append)
        bus.publish(self._event())
        assert len(seen) == 1
