# =============================================================================
# tests/conftest.py
# Pytest Configuration and Fixtures
# =============================================================================

import pytest
import httpx
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple
from unittest.mock import MagicMock

from neuroscan_core.offline.cache_manager import CacheTierManager
from neuroscan_core.offline.config import OfflineSettings, set_settings
from neuroscan_core.offline.fetch import http_date
from neuroscan_core.offline.interceptor import RequestInterceptor
from neuroscan_core.offline.local_database import LocalDatabase
from neuroscan_core.offline.offline_queue import OfflineQueue


ORIGIN = "https://app.neuroscan.test"
BACKEND = "https://abcd1234.supabase.co"


# =============================================================================
# NETWORK DOUBLES
# =============================================================================

class FrozenClock:
    """Callable clock that only moves when told to"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeNetwork:
    """
    Routing table behind an httpx.MockTransport.

    Unknown URLs answer 404. While offline (or for URLs marked as failing)
    every request raises httpx.ConnectError, like a dropped connection.
    Responses carry a Date header from the clock unless told otherwise.
    """

    def __init__(self, clock: FrozenClock):
        self.clock = clock
        self.offline = False
        self.failing: set = set()
        self.routes: Dict[str, Tuple[int, bytes, Dict[str, str], Dict]] = {}
        self.calls: List[httpx.Request] = []

    def add(
        self,
        url: str,
        body: bytes = b"ok",
        status: int = 200,
        headers: Optional[Dict[str, str]] = None,
        extensions: Optional[Dict] = None,
    ) -> None:
        if url.startswith("/"):
            url = ORIGIN + url
        self.routes[url] = (status, body, dict(headers or {}), dict(extensions or {}))

    def fail(self, url: str) -> None:
        if url.startswith("/"):
            url = ORIGIN + url
        self.failing.add(url)

    def count(self, url: str) -> int:
        """Number of requests made for a URL"""
        if url.startswith("/"):
            url = ORIGIN + url
        return sum(1 for request in self.calls if str(request.url) == url)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        url = str(request.url)

        if self.offline or url in self.failing:
            raise httpx.ConnectError("Network unreachable", request=request)

        if url not in self.routes:
            return httpx.Response(404, content=b"not found")

        status, body, headers, extensions = self.routes[url]
        headers = dict(headers)
        headers.setdefault("Date", http_date(self.clock()))
        return httpx.Response(status, headers=headers, content=body, extensions=extensions)


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture(autouse=True)
def reset_settings():
    """Keep the process-wide settings from leaking between tests"""
    set_settings(None)
    yield
    set_settings(None)


@pytest.fixture
def clock():
    """Clock frozen at 2024-06-01 12:00 UTC"""
    return FrozenClock(datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def network(clock):
    """Fake network serving the pre-cached app shell"""
    net = FakeNetwork(clock)
    net.add("/", b"<html>root</html>", headers={"Content-Type": "text/html"})
    net.add("/index.html", b"<html>shell</html>", headers={"Content-Type": "text/html"})
    net.add("/manifest.json", b'{"name":"NeuroScan"}', headers={"Content-Type": "application/json"})
    return net


@pytest.fixture
def client(network):
    """httpx client whose transport is the fake network"""
    return httpx.AsyncClient(transport=httpx.MockTransport(network.handler))


@pytest.fixture
def local_db(tmp_path):
    """Initialized local database in a temp directory"""
    db = LocalDatabase(tmp_path / "neuroscan.db")
    db.initialize()
    yield db
    db.close()


@pytest.fixture
def settings(tmp_path):
    """Offline settings pointing at the fake origin"""
    return OfflineSettings(
        origin=ORIGIN,
        db_path=tmp_path / "neuroscan.db",
        supabase_url=BACKEND,
        supabase_key="test-anon-key",
    )


@pytest.fixture
def cache_manager(settings, local_db):
    """Cache tiers for the v2.1 release"""
    return CacheTierManager(settings.version, local_db, max_entries=settings.max_entries)


@pytest.fixture
def interceptor(cache_manager, client, settings, clock):
    """Request interceptor over the fake network"""
    return RequestInterceptor(cache_manager, client, settings, clock=clock)


@pytest.fixture
def offline_queue(local_db):
    """Empty offline queue"""
    return OfflineQueue(local_db)


# =============================================================================
# MOCK FIXTURES
# =============================================================================

@pytest.fixture
def mock_supabase():
    """Mock Supabase client"""
    mock_client = MagicMock()
    mock_client.table.return_value.select.return_value.execute.return_value.data = []
    mock_client.table.return_value.insert.return_value.execute.return_value = MagicMock()
    return mock_client
