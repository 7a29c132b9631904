# =============================================================================
# neuroscan_core/offline/offline_queue.py
# Durable Offline Write Queue
# =============================================================================
"""
OfflineQueue - ordered local log of mutations waiting for the backend.

The whole queue is serialized as one JSON list under a single key of the
local store. Every operation re-reads that list and writes it back, so an
operation is on disk before enqueue() returns and queues sharing a key see
each other's writes. Storage failures are logged and never raised into
the caller; an operation whose write failed is kept in memory and written
with the next successful change. A payload that cannot be stored as JSON
is logged and dropped.
"""

from __future__ import annotations
import base64
import json
import time
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union
import logging

import numpy as np
import pandas as pd

from neuroscan_core.errors import StorageError
from neuroscan_core.offline.config import DEFAULT_QUEUE_KEY, get_settings
from neuroscan_core.offline.local_database import LocalDatabase, get_local_database

logger = logging.getLogger(__name__)


class OperationType(str, Enum):
    """Kind of queued mutation."""
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


@dataclass
class QueuedOperation:
    """One mutation pending delivery to the backend."""
    id: str
    type: OperationType
    target: str
    payload: Any
    enqueued_at: int = field(default_factory=lambda: int(time.time() * 1000))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "target": self.target,
            "payload": self.payload,
            "enqueued_at": self.enqueued_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> QueuedOperation:
        return cls(
            id=str(data["id"]),
            type=OperationType(str(data["type"]).lower()),
            target=data["target"],
            payload=data.get("payload"),
            enqueued_at=int(data.get("enqueued_at", 0)),
        )


def clean_payload(value: Any) -> Any:
    """
    Make a payload JSON-serializable.

    Datetimes become ISO strings, numpy scalars become Python numbers and
    missing values (NaN, NaT, None) become None. Dicts, lists, tuples,
    sets and numpy arrays are cleaned recursively into lists and dicts.
    Bytes become base64 text.
    """
    if isinstance(value, dict):
        return {str(k): clean_payload(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [clean_payload(v) for v in value]
    if isinstance(value, (set, frozenset)):
        try:
            items = sorted(value)
        except TypeError:
            items = list(value)
        return [clean_payload(v) for v in items]
    if isinstance(value, np.ndarray):
        return clean_payload(value.tolist())
    if isinstance(value, (bytes, bytearray)):
        return base64.b64encode(bytes(value)).decode("ascii")
    if pd.api.types.is_scalar(value) and pd.isna(value):
        return None
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, np.bool_):
        return bool(value)
    if isinstance(value, np.integer):
        return int(value)
    if isinstance(value, np.floating):
        return float(value)
    return value


class OfflineQueue:
    """
    Durable write queue over the local store.

    Every operation re-reads the stored list, so several queues opened on
    the same database and key share one log.

    Usage:
        queue = OfflineQueue(get_local_database())
        queue.enqueue(OperationType.INSERT, "screenings", {"child_id": 7, "score": 12})
        for op in queue.list_all():
            ...
    """

    def __init__(self, database: LocalDatabase, key: str = DEFAULT_QUEUE_KEY):
        """
        Initialize the queue and load any persisted operations.

        Args:
            database: Local store holding the serialized queue
            key: Storage key of the queue
        """
        self._db = database
        self._db.initialize()
        self.key = key
        # Last known contents, used while the store cannot be read
        self._operations: List[QueuedOperation] = []
        # Enqueued operations whose write failed
        self._unsaved: List[QueuedOperation] = []
        self._read()

    def _read(self) -> List[QueuedOperation]:
        """Stored operations followed by any not yet written."""
        try:
            stored = self._db.get_item(self.key)
        except StorageError as e:
            logger.error(f"Failed to read offline queue: {e}")
            return list(self._operations)

        operations: List[QueuedOperation] = []
        if stored:
            try:
                operations = [QueuedOperation.from_dict(item) for item in json.loads(stored)]
            except (ValueError, TypeError, KeyError) as e:
                logger.warning(f"Discarding unreadable offline queue under '{self.key}': {e}")
                operations = []

        stored_ids = {op.id for op in operations}
        operations.extend(op for op in self._unsaved if op.id not in stored_ids)
        self._operations = operations
        return list(operations)

    def _write(self, operations: List[QueuedOperation]) -> bool:
        try:
            data = json.dumps([op.to_dict() for op in operations])
            self._db.set_item(self.key, data)
        except (TypeError, ValueError) as e:
            logger.error(f"Failed to serialize offline queue: {e}")
            return False
        except StorageError as e:
            logger.error(f"Failed to save offline queue: {e}")
            return False
        return True

    # =========================================================================
    # OPERATIONS
    # =========================================================================

    def enqueue(
        self,
        type: Union[OperationType, str],
        target: str,
        payload: Any,
    ) -> Optional[QueuedOperation]:
        """
        Append a mutation and persist the queue.

        Args:
            type: INSERT, UPDATE or DELETE
            target: Backend table the mutation applies to
            payload: Mutation data

        Returns:
            The queued operation, or None if the payload cannot be stored
            as JSON
        """
        operation = QueuedOperation(
            id=str(uuid.uuid4()),
            type=OperationType(type.value if isinstance(type, OperationType) else str(type).lower()),
            target=target,
            payload=clean_payload(payload),
        )
        try:
            json.dumps(operation.to_dict())
        except (TypeError, ValueError) as e:
            logger.error(f"Dropping {operation.type.value} on {target}: payload is not JSON-serializable ({e})")
            return None

        operations = self._read()
        operations.append(operation)
        if self._write(operations):
            self._unsaved = []
        else:
            self._unsaved.append(operation)
        self._operations = operations
        logger.debug(f"Queued {operation.type.value} on {target} ({operation.id})")
        return operation

    def list_all(self) -> List[QueuedOperation]:
        """Every queued operation in stored order."""
        return self._read()

    def remove_by_id(self, operation_id: str) -> bool:
        """
        Remove an operation. Removing an unknown id is a no-op.

        Returns:
            True if an operation was removed
        """
        operations = self._read()
        remaining = [op for op in operations if op.id != operation_id]
        if len(remaining) == len(operations):
            return False
        self._unsaved = [op for op in self._unsaved if op.id != operation_id]
        if self._write(remaining):
            self._unsaved = []
        self._operations = remaining
        return True

    def clear(self) -> None:
        """Empty the queue."""
        self._operations = []
        self._unsaved = []
        try:
            self._db.remove_item(self.key)
        except StorageError as e:
            logger.error(f"Failed to clear offline queue: {e}")

    def size(self) -> int:
        return len(self._read())

    def __len__(self) -> int:
        return self.size()

    def to_dataframe(self) -> pd.DataFrame:
        """Pending operations as a DataFrame (id, type, target, enqueued_at)."""
        df = pd.DataFrame(
            [
                {
                    "id": op.id,
                    "type": op.type.value,
                    "target": op.target,
                    "enqueued_at": op.enqueued_at,
                }
                for op in self._read()
            ],
            columns=["id", "type", "target", "enqueued_at"],
        )
        if not df.empty:
            df["enqueued_at"] = pd.to_datetime(df["enqueued_at"], unit="ms", utc=True)
        return df

    def get_status_display(self) -> Dict[str, Any]:
        """Get queue status for display."""
        operations = self._read()
        by_type: Dict[str, int] = {}
        for op in operations:
            by_type[op.type.value] = by_type.get(op.type.value, 0) + 1
        return {
            "pending_count": len(operations),
            "by_type": by_type,
            "oldest": operations[0].enqueued_at if operations else None,
        }


# Singleton accessor
_offline_queue: Optional[OfflineQueue] = None


def get_offline_queue() -> OfflineQueue:
    """Get the global OfflineQueue instance."""
    global _offline_queue
    if _offline_queue is None:
        settings = get_settings()
        _offline_queue = OfflineQueue(get_local_database(settings.db_path), settings.queue_key)
    return _offline_queue
