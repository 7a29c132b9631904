# =============================================================================
# neuroscan_core/offline/cache_manager.py
# Cache Tier Manager for Static, Dynamic and Image Partitions
# =============================================================================
"""
CacheTierManager - Owns the three named cache partitions of one release.

Partitions:
-----------
- STATIC  (static-<release>)  : pre-populated at install, unbounded
- DYNAMIC (dynamic-<release>) : general GET responses, bounded, freshness-checked
- IMAGE   (images-<release>)  : image responses, bounded, never revalidated

Lifecycle:
----------
- initialize_static(): all-or-nothing pre-population at install
- activate_version(): destroys partitions that belong to other releases
- clear_all(): destroys every partition (cache reset)

All storage calls run through asyncio.to_thread so each one is a suspension
point on the event loop.
"""

from __future__ import annotations
import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple
import logging

import httpx

from neuroscan_core.errors import InstallError
from neuroscan_core.offline.config import DEFAULT_MAX_ENTRIES, VersionConfig
from neuroscan_core.offline.eviction import EvictionController
from neuroscan_core.offline.fetch import FetchRequest, canonical_cache_key, response_stored_at
from neuroscan_core.offline.local_database import LocalDatabase

logger = logging.getLogger(__name__)

# Headers describing the wire encoding; stored bodies are already decoded
WIRE_HEADERS = {"content-encoding", "content-length", "transfer-encoding"}


class CachePolicy(Enum):
    """Caching policy of a partition."""
    STATIC = "static"
    DYNAMIC = "dynamic"
    IMAGE = "image"


@dataclass(frozen=True)
class CachePartition:
    """A named cache partition and its size bound."""
    name: str
    policy: CachePolicy
    max_entries: Optional[int] = None

    @property
    def bounded(self) -> bool:
        return self.max_entries is not None


@dataclass
class CacheEntry:
    """One cached GET response."""
    key: str
    url: str
    status: int
    headers: List[Tuple[str, str]]
    body: bytes
    stored_at: datetime

    @classmethod
    def from_row(cls, row: Dict) -> CacheEntry:
        return cls(
            key=row["key"],
            url=row["url"],
            status=row["status"],
            headers=row["headers"],
            body=row["body"],
            stored_at=datetime.fromtimestamp(row["stored_at"], tz=timezone.utc),
        )

    def to_response(self, request: Optional[httpx.Request] = None) -> httpx.Response:
        """Rebuild an httpx response from the stored copy."""
        return httpx.Response(
            self.status,
            headers=self.headers,
            content=self.body,
            request=request,
            extensions={"from_cache": True},
        )


class CacheTierManager:
    """
    Manages the static, dynamic and image partitions for one release.

    Usage:
        manager = CacheTierManager(VersionConfig.for_release("v2.1"), database)
        await manager.initialize_static(["/", "/index.html"], client, origin)
        await manager.activate_version()
    """

    def __init__(
        self,
        version: VersionConfig,
        database: LocalDatabase,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        eviction: Optional[EvictionController] = None,
    ):
        """
        Initialize the tier manager.

        Args:
            version: Partition names for the current release
            database: Local store holding the partitions
            max_entries: Entry cap for the dynamic and image partitions
            eviction: Eviction controller (one over the same database by default)
        """
        self.version = version
        self._db = database
        self._db.initialize()
        self.eviction = eviction or EvictionController(database)
        self._partitions = {
            CachePolicy.STATIC: CachePartition(version.static, CachePolicy.STATIC),
            CachePolicy.DYNAMIC: CachePartition(version.dynamic, CachePolicy.DYNAMIC, max_entries),
            CachePolicy.IMAGE: CachePartition(version.image, CachePolicy.IMAGE, max_entries),
        }

    def partition(self, policy: CachePolicy) -> CachePartition:
        return self._partitions[policy]

    @property
    def partitions(self) -> List[CachePartition]:
        return list(self._partitions.values())

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def initialize_static(
        self,
        asset_list: Sequence[str],
        client: httpx.AsyncClient,
        origin: str,
    ) -> int:
        """
        Fetch every asset and store it in the static partition.

        Nothing is stored unless every fetch succeeds with a 2xx status.

        Args:
            asset_list: Asset paths (or absolute URLs) to pre-cache
            client: HTTP client used for the fetches
            origin: Origin that relative asset paths are resolved against

        Returns:
            Number of entries stored

        Raises:
            InstallError: If any asset cannot be fetched
        """
        requests = [FetchRequest(asset).resolve(origin) for asset in asset_list]
        responses: List[Tuple[FetchRequest, httpx.Response]] = []

        for request in requests:
            try:
                response = await client.send(request.build(client))
            except httpx.TransportError as e:
                raise InstallError(
                    f"Failed to fetch static asset {request.url}: {e}",
                    asset=request.url,
                ) from e
            if not response.is_success:
                raise InstallError(
                    f"Static asset {request.url} returned HTTP {response.status_code}",
                    asset=request.url,
                    status=response.status_code,
                )
            responses.append((request, response))

        static = self.partition(CachePolicy.STATIC)
        await asyncio.to_thread(self._db.open_partition, static.name)
        for request, response in responses:
            await self._store(static, request, response)

        logger.info(f"[SW] Cached {len(responses)} static assets in {static.name}")
        return len(responses)

    async def activate_version(self, version: Optional[VersionConfig] = None) -> List[str]:
        """
        Destroy every partition that is not part of the current release.

        Args:
            version: Release whose partitions are kept (defaults to this manager's)

        Returns:
            Names of the destroyed partitions
        """
        keep = set((version or self.version).names)
        existing = await asyncio.to_thread(self._db.list_partitions)

        deleted = []
        for name in existing:
            if name in keep:
                continue
            logger.info(f"[SW] Deleting old cache: {name}")
            if await asyncio.to_thread(self._db.delete_partition, name):
                deleted.append(name)

        return deleted

    async def clear_all(self) -> List[str]:
        """
        Destroy every partition unconditionally.

        Returns:
            Names of the destroyed partitions
        """
        existing = await asyncio.to_thread(self._db.list_partitions)
        for name in existing:
            await asyncio.to_thread(self._db.delete_partition, name)
        logger.info(f"Cache cleared ({len(existing)} partitions)")
        return existing

    # =========================================================================
    # ENTRY ACCESS
    # =========================================================================

    async def partition_names(self) -> List[str]:
        return await asyncio.to_thread(self._db.list_partitions)

    async def keys(self, partition: CachePartition) -> List[str]:
        """Entry keys of a partition in storage order."""
        return await asyncio.to_thread(self._db.entry_keys, partition.name)

    async def count(self, partition: CachePartition) -> int:
        return await asyncio.to_thread(self._db.count_entries, partition.name)

    async def match(
        self,
        request: FetchRequest,
        policies: Sequence[CachePolicy] = (CachePolicy.DYNAMIC, CachePolicy.STATIC, CachePolicy.IMAGE),
    ) -> Optional[CacheEntry]:
        """
        Find a cached entry for a request.

        Args:
            request: Request to look up (absolute URL)
            policies: Partitions to search, in order

        Returns:
            The first matching entry, or None
        """
        key = request.cache_key
        for policy in policies:
            row = await asyncio.to_thread(self._db.get_entry, self.partition(policy).name, key)
            if row is not None:
                return CacheEntry.from_row(row)
        return None

    async def match_url(self, url: str, policies: Sequence[CachePolicy] = (CachePolicy.STATIC,)) -> Optional[CacheEntry]:
        return await self.match(FetchRequest(url), policies)

    async def put(self, policy: CachePolicy, request: FetchRequest, response: httpx.Response) -> None:
        """
        Store a copy of a GET response and enforce the partition bound.

        Raises:
            ValueError: If the request is not a GET
            StorageError: If the entry cannot be written
        """
        if request.method != "GET":
            raise ValueError(f"Only GET responses are cached, got {request.method}")

        partition = self.partition(policy)
        await self._store(partition, request, response)

        if partition.bounded:
            await self.eviction.enforce(partition.name, partition.max_entries)

    async def delete(self, policy: CachePolicy, request: FetchRequest) -> bool:
        return await asyncio.to_thread(
            self._db.delete_entry, self.partition(policy).name, request.cache_key
        )

    async def _store(self, partition: CachePartition, request: FetchRequest, response: httpx.Response) -> None:
        headers = [
            (name, value)
            for name, value in response.headers.multi_items()
            if name.lower() not in WIRE_HEADERS
        ]
        await asyncio.to_thread(
            self._db.put_entry,
            partition.name,
            canonical_cache_key(request.method, request.url),
            request.url,
            response.status_code,
            headers,
            response.content,
            response_stored_at(response).timestamp(),
        )

    async def get_stats(self) -> Dict[str, Dict[str, int]]:
        """Entry counts per partition of the current release."""
        stats = {}
        for partition in self.partitions:
            stats[partition.name] = {
                "entries": await self.count(partition),
                "max_entries": partition.max_entries or 0,
            }
        return stats
