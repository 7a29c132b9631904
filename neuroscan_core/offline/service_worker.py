# =============================================================================
# neuroscan_core/offline/service_worker.py
# Offline Worker Lifecycle - Install, Activate, Fetch, Control Messages
# =============================================================================
"""
OfflineWorker - lifecycle wrapper around the cache tiers and interceptor.

States:
-------
PARSED -> INSTALLING -> INSTALLED -> ACTIVATING -> ACTIVATED
                    +-> REDUNDANT (install failed; previous release stays active)

- install(): all-or-nothing static pre-population, then activation when
  skip_waiting is enabled
- activate(): purges partitions of other releases; fetches are only served
  through the caches once this completes
- fetch(): before activation requests go straight to the network
- handle_message(): SKIP_WAITING and CLEAR_CACHE control messages
"""

from __future__ import annotations
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional, Union
import logging

import httpx

from neuroscan_core.errors import InstallError, WorkerStateError
from neuroscan_core.logging import LogContext
from neuroscan_core.offline.cache_manager import CacheTierManager
from neuroscan_core.offline.config import OfflineSettings, get_settings
from neuroscan_core.offline.fetch import FetchRequest
from neuroscan_core.offline.interceptor import RequestInterceptor
from neuroscan_core.offline.local_database import LocalDatabase

logger = logging.getLogger(__name__)


class WorkerState(Enum):
    """Lifecycle states of the offline worker."""
    PARSED = "parsed"
    INSTALLING = "installing"
    INSTALLED = "installed"
    ACTIVATING = "activating"
    ACTIVATED = "activated"
    REDUNDANT = "redundant"


class ControlMessage(str, Enum):
    """Control signals accepted by handle_message()."""
    SKIP_WAITING = "SKIP_WAITING"
    CLEAR_CACHE = "CLEAR_CACHE"


class OfflineWorker:
    """
    Offline worker for one release of the application.

    Usage:
        async with httpx.AsyncClient() as client:
            worker = OfflineWorker(settings, client)
            await worker.install()          # activates too when skip_waiting
            response = await worker.fetch(FetchRequest("/", destination="document"))
    """

    def __init__(
        self,
        settings: Optional[OfflineSettings] = None,
        client: Optional[httpx.AsyncClient] = None,
        database: Optional[LocalDatabase] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize the worker.

        Args:
            settings: Offline settings (process-wide settings if None)
            client: HTTP client for all network traffic (a default one if None)
            database: Local store for the cache partitions
            clock: Source of "now" for freshness checks
        """
        self.settings = settings or get_settings()
        self._client = client or httpx.AsyncClient()
        self._owns_client = client is None
        self._db = database or LocalDatabase(self.settings.db_path)
        self.cache = CacheTierManager(
            self.settings.version,
            self._db,
            max_entries=self.settings.max_entries,
        )
        self.interceptor = RequestInterceptor(self.cache, self._client, self.settings, clock=clock)
        self._state = WorkerState.PARSED
        self._last_error: Optional[Dict[str, Any]] = None

    @property
    def state(self) -> WorkerState:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._state is WorkerState.ACTIVATED

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def install(self) -> None:
        """
        Pre-populate the static partition.

        Raises:
            InstallError: If any pre-cache asset fails; the worker becomes
                REDUNDANT and never activates
            WorkerStateError: If the worker was already installed
        """
        if self._state is not WorkerState.PARSED:
            raise WorkerStateError(
                "Worker can only be installed once",
                state=self._state.value,
                expected=WorkerState.PARSED.value,
            )

        self._state = WorkerState.INSTALLING
        try:
            with LogContext(logger, "[SW] Installing service worker"):
                logger.info("[SW] Caching static assets")
                await self.cache.initialize_static(
                    self.settings.precache_assets,
                    self._client,
                    self.settings.origin,
                )
        except InstallError as e:
            self._state = WorkerState.REDUNDANT
            self._last_error = e.to_dict()
            raise

        self._state = WorkerState.INSTALLED

        if self.settings.skip_waiting:
            await self.skip_waiting()

    async def skip_waiting(self) -> bool:
        """
        Activate a waiting (installed) worker immediately.

        Returns:
            True if the worker was activated by this call
        """
        if self._state is not WorkerState.INSTALLED:
            logger.debug(f"skip_waiting ignored in state {self._state.value}")
            return False
        await self.activate()
        return True

    async def activate(self) -> None:
        """
        Purge partitions from other releases and start serving from cache.

        Raises:
            WorkerStateError: If the worker is not installed
        """
        if self._state is not WorkerState.INSTALLED:
            raise WorkerStateError(
                "Only an installed worker can be activated",
                state=self._state.value,
                expected=WorkerState.INSTALLED.value,
            )

        self._state = WorkerState.ACTIVATING
        with LogContext(logger, "[SW] Activating service worker"):
            await self.cache.activate_version(self.settings.version)
        self._state = WorkerState.ACTIVATED
        logger.info("[SW] Service worker activated")

    # =========================================================================
    # REQUESTS AND MESSAGES
    # =========================================================================

    async def fetch(self, request: Union[FetchRequest, str]) -> httpx.Response:
        """
        Serve a request through the caches once active.

        Before activation the worker does not control requests and they go
        straight to the network.
        """
        if isinstance(request, str):
            request = FetchRequest(request)

        if not self.is_active:
            resolved = request.resolve(self.settings.origin)
            return await self._client.send(resolved.build(self._client))

        return await self.interceptor.handle(request)

    async def handle_message(self, message: Union[Mapping[str, Any], str, None]) -> bool:
        """
        Handle a control message.

        Args:
            message: {"type": "SKIP_WAITING"} / {"type": "CLEAR_CACHE"} or the bare type

        Returns:
            True if the message was recognised
        """
        if isinstance(message, Mapping):
            message_type = message.get("type")
        else:
            message_type = message

        if message_type == ControlMessage.SKIP_WAITING.value:
            await self.skip_waiting()
            return True

        if message_type == ControlMessage.CLEAR_CACHE.value:
            await self.cache.clear_all()
            return True

        logger.warning(f"Ignoring unknown control message: {message!r}")
        return False

    async def close(self) -> None:
        """Close the HTTP client if this worker created it."""
        if self._owns_client:
            await self._client.aclose()

    async def get_status_display(self) -> Dict[str, Any]:
        """Get worker status for display."""
        return {
            "state": self._state.value,
            "version": list(self.settings.version.names),
            "partitions": await self.cache.get_stats(),
            "requests": self.interceptor.get_stats(),
            "evictions": self.cache.eviction.evictions,
            "last_error": self._last_error,
        }


async def clear_worker_cache(worker: OfflineWorker) -> None:
    """Destroy every cache partition (used by the cache-reset flow)."""
    await worker.handle_message({"type": ControlMessage.CLEAR_CACHE.value})
