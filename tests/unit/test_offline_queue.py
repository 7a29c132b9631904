# =============================================================================
# tests/unit/test_offline_queue.py
# Unit Tests for the Offline Write Queue
# =============================================================================

import json
import logging
import uuid
from datetime import datetime

import numpy as np
import pandas as pd
import pytest

from neuroscan_core.errors import StorageError
from neuroscan_core.offline.config import DEFAULT_QUEUE_KEY
from neuroscan_core.offline.local_database import LocalDatabase
from neuroscan_core.offline.offline_queue import (
    OfflineQueue,
    OperationType,
    QueuedOperation,
    clean_payload,
)


class TestEnqueue:
    """Test adding operations"""

    def test_enqueue_assigns_id_and_timestamp(self, offline_queue):
        op = offline_queue.enqueue(OperationType.INSERT, "screenings", {"child_id": 7})

        uuid.UUID(op.id)
        assert op.type is OperationType.INSERT
        assert op.target == "screenings"
        assert op.enqueued_at > 0
        assert offline_queue.size() == 1

    def test_ids_are_unique(self, offline_queue):
        ids = {offline_queue.enqueue("insert", "goals", {"n": i}).id for i in range(20)}
        assert len(ids) == 20

    def test_string_types_accepted(self, offline_queue):
        assert offline_queue.enqueue("UPDATE", "goals", {}).type is OperationType.UPDATE

    def test_unknown_type_rejected(self, offline_queue):
        with pytest.raises(ValueError):
            offline_queue.enqueue("upsert", "goals", {})

    def test_list_all_in_enqueue_order(self, offline_queue):
        first = offline_queue.enqueue("insert", "diary", {"n": 1})
        second = offline_queue.enqueue("update", "diary", {"n": 2})
        third = offline_queue.enqueue("delete", "diary", {"id": 3})

        assert [op.id for op in offline_queue.list_all()] == [first.id, second.id, third.id]

    def test_list_all_has_no_side_effects(self, offline_queue):
        offline_queue.enqueue("insert", "diary", {})
        listing = offline_queue.list_all()
        listing.clear()
        assert offline_queue.size() == 1


class TestDurability:
    """Queue contents survive a restart"""

    def test_enqueue_survives_restart(self, offline_queue, local_db):
        """A reloaded queue holds the same type, target and payload"""
        op = offline_queue.enqueue("insert", "screenings", {"child_id": 7, "answers": [1, 0, 1]})

        restarted_db = LocalDatabase(local_db.db_path)
        restarted = OfflineQueue(restarted_db)

        [reloaded] = restarted.list_all()
        assert reloaded.id == op.id
        assert reloaded.type is OperationType.INSERT
        assert reloaded.target == "screenings"
        assert reloaded.payload == {"child_id": 7, "answers": [1, 0, 1]}
        restarted_db.close()

    def test_single_storage_key(self, offline_queue, local_db):
        offline_queue.enqueue("insert", "goals", {"a": 1})
        offline_queue.enqueue("insert", "goals", {"a": 2})

        stored = json.loads(local_db.get_item(DEFAULT_QUEUE_KEY))

        assert [item["payload"] for item in stored] == [{"a": 1}, {"a": 2}]

    def test_removal_persisted(self, offline_queue, local_db):
        keep = offline_queue.enqueue("insert", "goals", {})
        drop = offline_queue.enqueue("insert", "goals", {})

        assert offline_queue.remove_by_id(drop.id) is True

        assert [op.id for op in OfflineQueue(local_db).list_all()] == [keep.id]

    def test_remove_unknown_id_is_noop(self, offline_queue):
        offline_queue.enqueue("insert", "goals", {})
        assert offline_queue.remove_by_id("does-not-exist") is False
        assert offline_queue.size() == 1

    def test_clear(self, offline_queue, local_db):
        offline_queue.enqueue("insert", "goals", {})
        offline_queue.clear()

        assert offline_queue.size() == 0
        assert local_db.get_item(DEFAULT_QUEUE_KEY) is None
        assert OfflineQueue(local_db).size() == 0

    def test_separate_keys_are_independent(self, local_db):
        first = OfflineQueue(local_db, key="queue:a")
        second = OfflineQueue(local_db, key="queue:b")
        first.enqueue("insert", "goals", {})
        assert second.size() == 0

    def test_queues_sharing_a_key_keep_each_others_operations(self, local_db):
        """Two queues on the same store append to one log"""
        first = OfflineQueue(local_db)
        second = OfflineQueue(local_db)

        first.enqueue("insert", "goals", {"n": 1})
        second.enqueue("insert", "goals", {"n": 2})

        assert [op.payload for op in OfflineQueue(local_db).list_all()] == [{"n": 1}, {"n": 2}]
        assert first.size() == 2

    def test_removal_through_another_queue(self, local_db):
        first = OfflineQueue(local_db)
        second = OfflineQueue(local_db)
        op = first.enqueue("delete", "diary", {"id": 4})
        second.enqueue("insert", "diary", {"n": 5})

        assert second.remove_by_id(op.id) is True

        assert [item.payload for item in first.list_all()] == [{"n": 5}]


class TestStorageFailures:
    """Storage failures are logged, never raised"""

    def test_save_failure_keeps_operation(self, offline_queue, local_db, monkeypatch, caplog):
        def broken(key, value):
            raise StorageError("database or disk is full", operation="set_item", key=key)

        monkeypatch.setattr(local_db, "set_item", broken)

        with caplog.at_level(logging.ERROR):
            op = offline_queue.enqueue("insert", "screenings", {"child_id": 1})

        assert offline_queue.list_all() == [op]
        assert "Failed to save offline queue" in caplog.text

    def test_unsaved_operation_written_with_next_change(self, offline_queue, local_db, monkeypatch):
        original = local_db.set_item

        def broken(key, value):
            raise StorageError("database is locked", operation="set_item", key=key)

        monkeypatch.setattr(local_db, "set_item", broken)
        first = offline_queue.enqueue("insert", "screenings", {"child_id": 1})
        monkeypatch.setattr(local_db, "set_item", original)
        second = offline_queue.enqueue("insert", "screenings", {"child_id": 2})

        assert [op.id for op in OfflineQueue(local_db).list_all()] == [first.id, second.id]

    def test_unserializable_payload_dropped(self, offline_queue, local_db, caplog):
        """A payload JSON cannot hold is logged and the queue keeps working"""
        with caplog.at_level(logging.ERROR):
            dropped = offline_queue.enqueue("insert", "photos", {"blob": object()})
        kept = offline_queue.enqueue("insert", "goals", {"title": "ok"})

        assert dropped is None
        assert "not JSON-serializable" in caplog.text
        assert [op.id for op in offline_queue.list_all()] == [kept.id]
        assert [op.payload for op in OfflineQueue(local_db).list_all()] == [{"title": "ok"}]

    def test_corrupt_storage_starts_empty(self, local_db, caplog):
        local_db.set_item(DEFAULT_QUEUE_KEY, "{not json")

        with caplog.at_level(logging.WARNING):
            queue = OfflineQueue(local_db)

        assert queue.size() == 0
        assert "unreadable" in caplog.text


class TestPayloadCleaning:
    """Payloads built with pandas/numpy are stored as plain JSON"""

    def test_clean_values(self):
        payload = {
            "count": np.int64(3),
            "score": np.float64(0.5),
            "flag": np.bool_(True),
            "missing": np.nan,
            "no_time": pd.NaT,
            "at": datetime(2024, 6, 1, 9, 30),
            "ts": pd.Timestamp("2024-06-01 10:00"),
            "nested": [{"x": np.int32(1)}],
        }

        cleaned = clean_payload(payload)

        assert cleaned == {
            "count": 3,
            "score": 0.5,
            "flag": True,
            "missing": None,
            "no_time": None,
            "at": "2024-06-01T09:30:00",
            "ts": "2024-06-01T10:00:00",
            "nested": [{"x": 1}],
        }
        json.dumps(cleaned)

    def test_collections_and_bytes(self):
        cleaned = clean_payload({
            "tags": {"b", "a"},
            "scores": np.array([1.5, np.nan]),
            "grid": np.array([[1, 2], [3, 4]]),
            "signature": b"\x00\xffsig",
        })

        assert cleaned == {
            "tags": ["a", "b"],
            "scores": [1.5, None],
            "grid": [[1, 2], [3, 4]],
            "signature": "AP9zaWc=",
        }
        json.dumps(cleaned)

    def test_set_payload_persisted(self, offline_queue, local_db):
        offline_queue.enqueue("insert", "photos", {"tags": {"a", "b"}})
        offline_queue.enqueue("insert", "goals", {"title": "ok"})

        stored = [op.payload for op in OfflineQueue(local_db).list_all()]
        assert stored == [{"tags": ["a", "b"]}, {"title": "ok"}]

    def test_enqueue_cleans_payload(self, offline_queue, local_db):
        offline_queue.enqueue("insert", "goals", {"value": np.int64(4)})
        [reloaded] = OfflineQueue(local_db).list_all()
        assert reloaded.payload == {"value": 4}


class TestInspection:
    """Test queue views"""

    def test_to_dataframe(self, offline_queue):
        offline_queue.enqueue("insert", "screenings", {})
        offline_queue.enqueue("delete", "goals", {"id": 2})

        df = offline_queue.to_dataframe()

        assert list(df.columns) == ["id", "type", "target", "enqueued_at"]
        assert df["type"].tolist() == ["insert", "delete"]
        assert pd.api.types.is_datetime64_any_dtype(df["enqueued_at"])

    def test_empty_dataframe(self, offline_queue):
        df = offline_queue.to_dataframe()
        assert df.empty
        assert list(df.columns) == ["id", "type", "target", "enqueued_at"]

    def test_status_display(self, offline_queue):
        offline_queue.enqueue("insert", "screenings", {})
        offline_queue.enqueue("insert", "goals", {})
        offline_queue.enqueue("update", "goals", {"id": 1})

        status = offline_queue.get_status_display()

        assert status["pending_count"] == 3
        assert status["by_type"] == {"insert": 2, "update": 1}

    def test_operation_dict_round_trip(self):
        op = QueuedOperation(id="a", type=OperationType.DELETE, target="goals", payload={"id": 1}, enqueued_at=5)
        assert QueuedOperation.from_dict(op.to_dict()) == op
