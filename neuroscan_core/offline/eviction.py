# =============================================================================
# neuroscan_core/offline/eviction.py
# Oldest-First Eviction for Bounded Cache Partitions
# =============================================================================
"""
EvictionController - keeps a bounded partition at or under its entry cap.

After every write into a bounded partition the controller re-reads the
partition's keys (storage order is insertion order) and deletes the single
oldest key, repeating until the bound holds. Deleting a key that an
overlapping eviction already removed is a no-op.
"""

from __future__ import annotations
import asyncio
import logging

from neuroscan_core.offline.local_database import LocalDatabase

logger = logging.getLogger(__name__)


class EvictionController:
    """Oldest-first, one-entry-at-a-time eviction over the local store."""

    def __init__(self, database: LocalDatabase):
        self._db = database
        self.evictions = 0

    async def enforce(self, partition: str, max_entries: int) -> int:
        """
        Delete oldest entries until the partition holds at most max_entries.

        Args:
            partition: Partition name
            max_entries: Entry cap

        Returns:
            Number of entries this call removed
        """
        removed = 0
        while True:
            keys = await asyncio.to_thread(self._db.entry_keys, partition)
            if len(keys) <= max_entries:
                break

            oldest = keys[0]
            if await asyncio.to_thread(self._db.delete_entry, partition, oldest):
                removed += 1
                self.evictions += 1
                logger.debug(f"Evicted {oldest} from {partition}")

        return removed
