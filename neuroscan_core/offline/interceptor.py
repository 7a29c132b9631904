# =============================================================================
# neuroscan_core/offline/interceptor.py
# Request Interceptor - Cache Strategy Selection per Request
# =============================================================================
"""
RequestInterceptor - classifies outbound requests and serves them through
one of the caching strategies.

Strategies (checked in this order for GET requests):
---------------------------------------------------
1. Backend API (host matches the backend host)
   -> network only; on transport failure a 503 JSON {"error": "Offline", "offline": true}
2. Images (destination == "image")
   -> cache first, no freshness check; misses fetched and stored in IMAGE
3. Everything else
   -> cached copy if younger than max_age, otherwise network with fallback
      to the stale copy, the app shell (documents), or a 503 text response

Non-GET requests are passed straight to the network and never cached.
"""

from __future__ import annotations
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, Optional, Sequence
import logging

import httpx

from neuroscan_core.errors import StorageError, handle_error
from neuroscan_core.offline.cache_manager import CacheEntry, CachePolicy, CacheTierManager
from neuroscan_core.offline.config import OfflineSettings
from neuroscan_core.offline.fetch import (
    FetchRequest,
    is_error_type,
    offline_api_response,
    unavailable_response,
)

logger = logging.getLogger(__name__)


class RequestStrategy(Enum):
    """How a request is served."""
    PASS_THROUGH = "pass_through"      # non-GET
    NETWORK_ONLY = "network_only"      # backend API
    CACHE_FIRST = "cache_first"        # images
    NETWORK_FIRST = "network_first"    # everything else, with freshness window


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RequestInterceptor:
    """
    Serves requests through the cache tiers of one release.

    Usage:
        interceptor = RequestInterceptor(cache, client, settings)
        response = await interceptor.handle(FetchRequest("/app.js"))
    """

    def __init__(
        self,
        cache: CacheTierManager,
        client: httpx.AsyncClient,
        settings: OfflineSettings,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.cache = cache
        self._client = client
        self.settings = settings
        self._clock = clock or utc_now
        self._stats = {
            "cache_hits": 0,
            "network_fetches": 0,
            "stale_fallbacks": 0,
            "offline_responses": 0,
        }

    # =========================================================================
    # CLASSIFICATION
    # =========================================================================

    def is_backend_request(self, request: FetchRequest) -> bool:
        """True if the request targets the hosted backend."""
        host = request.host.lower()
        backend = self.settings.backend_host.lower()
        return bool(host) and (host == backend or host.endswith("." + backend))

    def classify(self, request: FetchRequest) -> RequestStrategy:
        """Pick the strategy for a request (URL must already be absolute)."""
        if request.method != "GET":
            return RequestStrategy.PASS_THROUGH
        if self.is_backend_request(request):
            return RequestStrategy.NETWORK_ONLY
        if request.resolved_destination == "image":
            return RequestStrategy.CACHE_FIRST
        return RequestStrategy.NETWORK_FIRST

    async def handle(self, request: FetchRequest) -> httpx.Response:
        """
        Serve a request.

        Reads never raise on transport failure; they degrade to cached or
        synthesized responses. Pass-through requests propagate transport
        errors to the caller.
        """
        request = request.resolve(self.settings.origin)
        strategy = self.classify(request)

        if strategy is RequestStrategy.PASS_THROUGH:
            return await self._send(request)
        if strategy is RequestStrategy.NETWORK_ONLY:
            return await self._network_only(request)
        if strategy is RequestStrategy.CACHE_FIRST:
            return await self._cache_first(request)
        return await self._network_first(request)

    # =========================================================================
    # STRATEGIES
    # =========================================================================

    async def _network_only(self, request: FetchRequest) -> httpx.Response:
        try:
            return await self._send(request)
        except httpx.TransportError as e:
            logger.info(f"Backend unreachable for {request.url}: {e}")
            self._stats["offline_responses"] += 1
            return offline_api_response()

    async def _cache_first(self, request: FetchRequest) -> httpx.Response:
        cached = await self._match(request, (CachePolicy.IMAGE, CachePolicy.STATIC))
        if cached is not None:
            self._stats["cache_hits"] += 1
            return cached.to_response()

        try:
            response = await self._send(request)
        except httpx.TransportError as e:
            logger.info(f"Image unavailable offline {request.url}: {e}")
            self._stats["offline_responses"] += 1
            return unavailable_response("Image not available offline")

        if response.is_success and not is_error_type(response):
            await self._put(CachePolicy.IMAGE, request, response)
        return response

    async def _network_first(self, request: FetchRequest) -> httpx.Response:
        cached = await self._match(request, (CachePolicy.DYNAMIC, CachePolicy.STATIC))
        if cached is not None and self._is_fresh(cached):
            self._stats["cache_hits"] += 1
            return cached.to_response()

        try:
            response = await self._send(request)
        except httpx.TransportError as e:
            logger.info(f"Network failed for {request.url}: {e}")
            return await self._offline_fallback(request, cached)

        if response.status_code != 200 or is_error_type(response):
            return response

        await self._put(CachePolicy.DYNAMIC, request, response)
        return response

    async def _offline_fallback(self, request: FetchRequest, cached: Optional[CacheEntry]) -> httpx.Response:
        if cached is not None:
            self._stats["stale_fallbacks"] += 1
            return cached.to_response()

        if request.resolved_destination == "document":
            shell = FetchRequest(self.settings.app_shell).resolve(self.settings.origin)
            entry = await self._match(shell, (CachePolicy.STATIC, CachePolicy.DYNAMIC))
            if entry is not None:
                self._stats["stale_fallbacks"] += 1
                return entry.to_response()

        self._stats["offline_responses"] += 1
        return unavailable_response()

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _is_fresh(self, entry: CacheEntry) -> bool:
        return self._clock() - entry.stored_at < self.settings.max_age

    async def _send(self, request: FetchRequest) -> httpx.Response:
        self._stats["network_fetches"] += 1
        return await self._client.send(request.build(self._client))

    async def _match(self, request: FetchRequest, policies: Sequence[CachePolicy]) -> Optional[CacheEntry]:
        try:
            return await self.cache.match(request, policies)
        except StorageError as e:
            handle_error(e, context=f"Cache lookup for {request.url}")
            return None

    async def _put(self, policy: CachePolicy, request: FetchRequest, response: httpx.Response) -> None:
        try:
            await self.cache.put(policy, request, response)
        except StorageError as e:
            handle_error(e, context=f"Caching {request.url}")

    def get_stats(self) -> Dict[str, int]:
        return dict(self._stats)
