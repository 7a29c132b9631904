# =============================================================================
# neuroscan_core/offline/sync_engine.py
# Offline Queue Replay and Backend Writes
# =============================================================================
"""
SyncEngine - Delivers queued offline mutations to the backend.

Features:
- Sequential replay in enqueue order, removing only confirmed operations
- Failures are counted and retained for the next replay; one failing
  operation never blocks the ones after it
- Write-or-enqueue for mutations attempted while connectivity is uncertain
- Supabase-backed default processor

Replay does not group or order dependent operations (an update that needs
the server id of a not-yet-synced insert fails until that insert lands).
"""

from __future__ import annotations
import asyncio
import inspect
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional, Union
import logging

import httpx

from neuroscan_core.errors import handle_error
from neuroscan_core.offline.config import get_settings
from neuroscan_core.offline.offline_queue import (
    OfflineQueue,
    OperationType,
    QueuedOperation,
    get_offline_queue,
)

logger = logging.getLogger(__name__)

# A processor reports delivery of one operation; it may be sync or async
Processor = Callable[[QueuedOperation], Union[bool, Awaitable[bool]]]

# Errors meaning "the backend could not be reached" rather than "it said no"
CONNECTIVITY_ERRORS = (httpx.TransportError, ConnectionError, OSError)


@dataclass
class ReplayResult:
    """Outcome of one replay pass."""
    processed: int = 0
    failed: int = 0
    # Set when another replay was already running and this one did nothing
    skipped: bool = False

    def to_dict(self) -> Dict[str, int]:
        return {"processed": self.processed, "failed": self.failed}


@dataclass
class SyncState:
    """Current replay state."""
    is_replaying: bool = False
    last_replay: Optional[datetime] = None
    last_replay_success: Optional[datetime] = None
    failed_count: int = 0
    total_synced: int = 0


class SupabaseProcessor:
    """
    Writes queued operations to Supabase tables.

    INSERT  -> table.insert(payload)
    UPDATE  -> table.update(payload).eq("id", id), or upsert when there is no id
    DELETE  -> table.delete().eq("id", id)

    List payloads are passed through as bulk rows. An operation that cannot
    be mapped (a DELETE without an id, an UPDATE without row data) reports
    failure and stays queued.

    The Supabase client is blocking, so each call runs in a worker thread.
    """

    def __init__(self, url: Optional[str] = None, key: Optional[str] = None, client: Any = None):
        self._url = url
        self._key = key
        self._client = client

    def _get_client(self):
        """Lazy load Supabase client."""
        if self._client is None:
            if not self._url or not self._key:
                raise ValueError("Supabase url and key are required to replay operations")
            from supabase import create_client
            self._client = create_client(self._url, self._key)
        return self._client

    async def __call__(self, operation: QueuedOperation) -> bool:
        return await asyncio.to_thread(self._write, operation)

    def _write(self, operation: QueuedOperation) -> bool:
        payload = operation.payload
        table = self._get_client().table(operation.target)

        if operation.type is OperationType.INSERT:
            if not isinstance(payload, (dict, list)):
                logger.warning(f"INSERT on {operation.target} has no row data ({operation.id})")
                return False
            table.insert(payload).execute()
            return True

        record_id = payload.get("id") if isinstance(payload, dict) else None

        if operation.type is OperationType.UPDATE:
            if record_id is not None:
                data = {k: v for k, v in payload.items() if k != "id"}
                table.update(data).eq("id", record_id).execute()
            elif isinstance(payload, (dict, list)) and payload:
                table.upsert(payload).execute()
            else:
                logger.warning(f"UPDATE on {operation.target} has no row data ({operation.id})")
                return False
            return True

        if record_id is None:
            logger.warning(f"DELETE on {operation.target} without id, keeping it queued ({operation.id})")
            return False
        table.delete().eq("id", record_id).execute()
        return True


class SyncEngine:
    """
    Replays the offline queue through a processor.

    Usage:
        engine = SyncEngine(queue, processor)
        result = await engine.replay()
        print(result.processed, result.failed)
    """

    def __init__(self, queue: Optional[OfflineQueue] = None, processor: Optional[Processor] = None):
        """
        Initialize sync engine.

        Args:
            queue: Offline queue to drain (the global queue if None)
            processor: Default processor for replay() and submit()
        """
        self.queue = queue if queue is not None else get_offline_queue()
        self.processor = processor
        self._state = SyncState()

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def is_replaying(self) -> bool:
        return self._state.is_replaying

    def _resolve_processor(self, processor: Optional[Processor]) -> Processor:
        processor = processor or self.processor
        if processor is None:
            raise ValueError("No processor configured for the sync engine")
        return processor

    @staticmethod
    async def _call(processor: Processor, operation: QueuedOperation) -> bool:
        result = processor(operation)
        if inspect.isawaitable(result):
            result = await result
        return bool(result)

    async def replay(self, processor: Optional[Processor] = None) -> ReplayResult:
        """
        Attempt delivery of every queued operation, one at a time.

        Args:
            processor: Delivery function (the engine's default if None)

        Returns:
            ReplayResult with processed and failed counts; skipped is set
            if a replay is already running
        """
        processor = self._resolve_processor(processor)

        if self._state.is_replaying:
            logger.info("Replay already in progress, skipping")
            return ReplayResult(skipped=True)

        self._state.is_replaying = True
        self._state.last_replay = datetime.now()
        result = ReplayResult()

        try:
            operations = self.queue.list_all()
            if operations:
                logger.info(f"Replaying {len(operations)} queued operations")

            for operation in operations:
                try:
                    delivered = await self._call(processor, operation)
                except Exception as e:
                    handle_error(e, context=f"Replaying {operation.type.value} on {operation.target} ({operation.id})")
                    delivered = False

                if delivered:
                    self.queue.remove_by_id(operation.id)
                    result.processed += 1
                else:
                    result.failed += 1

            self._state.total_synced += result.processed
            self._state.failed_count = result.failed
            if result.failed == 0:
                self._state.last_replay_success = datetime.now()

            if operations:
                logger.info(f"Replay complete: {result.processed} processed, {result.failed} failed")
            return result

        finally:
            self._state.is_replaying = False

    async def submit(
        self,
        type: Union[OperationType, str],
        target: str,
        payload: Any,
        processor: Optional[Processor] = None,
    ) -> bool:
        """
        Attempt a mutation now, queueing it if the backend is unreachable.

        Returns:
            True if delivered now, False if it was queued or rejected

        Raises:
            Exception: Errors other than connectivity failures propagate
        """
        processor = self._resolve_processor(processor)
        operation_type = type if isinstance(type, OperationType) else OperationType(str(type).lower())
        operation = QueuedOperation(id="", type=operation_type, target=target, payload=payload)

        try:
            return await self._call(processor, operation)
        except CONNECTIVITY_ERRORS as e:
            queued = self.queue.enqueue(operation_type, target, payload)
            if queued is None:
                logger.error(f"Backend unreachable ({e}); could not queue {operation_type.value} on {target}")
                return False
            logger.info(f"Backend unreachable ({e}); queued {operation_type.value} on {target} as {queued.id}")
            return False

    def get_status_display(self) -> Dict[str, Any]:
        """Get sync status for display."""
        return {
            "is_replaying": self._state.is_replaying,
            "last_replay": self._state.last_replay.isoformat() if self._state.last_replay else None,
            "last_success": self._state.last_replay_success.isoformat() if self._state.last_replay_success else None,
            "pending_count": self.queue.size(),
            "failed_count": self._state.failed_count,
            "total_synced": self._state.total_synced,
        }


async def process_offline_queue(
    processor: Processor,
    queue: Optional[OfflineQueue] = None,
) -> Dict[str, int]:
    """
    Drain the offline queue once.

    Returns:
        {"processed": n, "failed": m}
    """
    engine = SyncEngine(queue)
    result = await engine.replay(processor)
    return result.to_dict()


# Singleton accessor
_sync_engine: Optional[SyncEngine] = None


def get_sync_engine() -> SyncEngine:
    """Get the global SyncEngine, delivering through Supabase."""
    global _sync_engine
    if _sync_engine is None:
        settings = get_settings()
        _sync_engine = SyncEngine(
            get_offline_queue(),
            SupabaseProcessor(settings.supabase_url, settings.supabase_key),
        )
    return _sync_engine
