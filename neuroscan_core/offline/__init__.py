# =============================================================================
# neuroscan_core/offline/__init__.py
# Offline Caching & Resync Layer for NeuroScan
# =============================================================================
"""
Offline Caching & Resync Module

Keeps the screening app usable without a connection: responses are served
from tiered local caches, and writes made while offline are queued and
replayed once the backend is reachable again.

Architecture:
------------
┌─────────────────────────────────────────────────────────────────┐
│                      OFFLINE CACHING LAYER                       │
├─────────────────────────────────────────────────────────────────┤
│                                                                  │
│   ┌──────────────────────────────────────────────────────────┐  │
│   │                     OfflineWorker                         │  │
│   │          (install / activate / fetch / messages)          │  │
│   └──────────────────────────────────────────────────────────┘  │
│                            │                                     │
│                            ▼                                     │
│   ┌──────────────────────────────────────────────────────────┐  │
│   │                  RequestInterceptor                       │  │
│   │   backend: network only │ images: cache first │ rest:     │  │
│   │                         │                     │ network   │  │
│   │                         │                     │ first     │  │
│   └──────────────────────────────────────────────────────────┘  │
│                            │                                     │
│              ┌─────────────┴─────────────┐                      │
│              ▼                           ▼                      │
│   ┌──────────────────┐        ┌──────────────────┐             │
│   │ CacheTierManager │───────►│EvictionController│             │
│   │ static/dyn/image │        │  (oldest first)  │             │
│   └──────────────────┘        └──────────────────┘             │
│              │                                                   │
│              ▼                                                   │
│        ┌──────────┐        ┌──────────────┐    ┌────────────┐   │
│        │  SQLite  │◄───────│ OfflineQueue │◄───│ SyncEngine │   │
│        │ (Local)  │        │   (writes)   │    │  (replay)  │──►Supabase
│        └──────────┘        └──────────────┘    └────────────┘   │
└─────────────────────────────────────────────────────────────────┘

Usage:
------
from neuroscan_core.offline import OfflineWorker, get_offline_queue, get_sync_engine

async with httpx.AsyncClient() as client:
    worker = OfflineWorker(client=client)
    await worker.install()
    response = await worker.fetch("/index.html")

queue = get_offline_queue()
queue.enqueue("insert", "screenings", {"child_id": 7, "score": 12})

result = await get_sync_engine().replay()
print(result.processed, result.failed)
"""

from neuroscan_core.offline.config import (
    OfflineSettings,
    VersionConfig,
    get_settings,
    set_settings,
)

from neuroscan_core.offline.local_database import (
    LocalDatabase,
    get_local_database,
)

from neuroscan_core.offline.fetch import (
    FetchRequest,
    canonical_cache_key,
)

from neuroscan_core.offline.eviction import EvictionController

from neuroscan_core.offline.cache_manager import (
    CacheEntry,
    CachePartition,
    CachePolicy,
    CacheTierManager,
)

from neuroscan_core.offline.interceptor import (
    RequestInterceptor,
    RequestStrategy,
)

from neuroscan_core.offline.offline_queue import (
    OfflineQueue,
    OperationType,
    QueuedOperation,
    get_offline_queue,
)

from neuroscan_core.offline.sync_engine import (
    ReplayResult,
    SupabaseProcessor,
    SyncEngine,
    get_sync_engine,
    process_offline_queue,
)

from neuroscan_core.offline.service_worker import (
    ControlMessage,
    OfflineWorker,
    WorkerState,
    clear_worker_cache,
)

__all__ = [
    # Configuration
    "OfflineSettings",
    "VersionConfig",
    "get_settings",
    "set_settings",
    # Local Database
    "LocalDatabase",
    "get_local_database",
    # Requests
    "FetchRequest",
    "canonical_cache_key",
    # Cache Tiers
    "CacheEntry",
    "CachePartition",
    "CachePolicy",
    "CacheTierManager",
    "EvictionController",
    # Interception
    "RequestInterceptor",
    "RequestStrategy",
    # Offline Queue
    "OfflineQueue",
    "OperationType",
    "QueuedOperation",
    "get_offline_queue",
    # Replay
    "ReplayResult",
    "SupabaseProcessor",
    "SyncEngine",
    "get_sync_engine",
    "process_offline_queue",
    # Worker
    "ControlMessage",
    "OfflineWorker",
    "WorkerState",
    "clear_worker_cache",
]
