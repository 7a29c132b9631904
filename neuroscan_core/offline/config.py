# =============================================================================
# neuroscan_core/offline/config.py
# Offline Layer Configuration
# =============================================================================
"""
Configuration for the offline caching and resync layer.

Settings come from, in order of precedence:
1. An explicit OfflineSettings instance (tests, embedding applications)
2. A TOML file with an [offline] table (and optional [supabase] table)
3. NEUROSCAN_* / SUPABASE_* environment variables
4. Defaults matching the v2.1 release

Example TOML:
-------------
[offline]
origin = "https://app.neuroscan.example"
release = "v2.1"
max_entries = 50
max_age_days = 7

[supabase]
url = "https://your-project.supabase.co"
key = "your-anon-key"
"""

from __future__ import annotations
import os
from dataclasses import dataclass, field, replace
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, Optional, Tuple
from urllib.parse import urlparse
import logging

from neuroscan_core.errors import ConfigurationError

logger = logging.getLogger(__name__)

try:
    import tomllib
except ImportError:  # Python < 3.11
    import tomli as tomllib


DEFAULT_RELEASE = "v2.1"
DEFAULT_PRECACHE_ASSETS = ("/", "/index.html", "/manifest.json")
DEFAULT_APP_SHELL = "/index.html"
DEFAULT_MAX_ENTRIES = 50
DEFAULT_MAX_AGE = timedelta(days=7)  # 604,800,000 ms
DEFAULT_DB_PATH = Path("local_data") / "neuroscan.db"
DEFAULT_QUEUE_KEY = "neuroscan:offline_queue"


@dataclass(frozen=True)
class VersionConfig:
    """Names of the three cache partitions for one deployed release."""
    static: str = f"static-{DEFAULT_RELEASE}"
    dynamic: str = f"dynamic-{DEFAULT_RELEASE}"
    image: str = f"images-{DEFAULT_RELEASE}"

    @classmethod
    def for_release(cls, release: str) -> VersionConfig:
        """Build the partition names for a release tag such as 'v2.1'."""
        if not release:
            raise ConfigurationError("Release tag must not be empty", config_key="release")
        return cls(
            static=f"static-{release}",
            dynamic=f"dynamic-{release}",
            image=f"images-{release}",
        )

    @property
    def names(self) -> Tuple[str, str, str]:
        return (self.static, self.dynamic, self.image)


@dataclass
class OfflineSettings:
    """
    Settings for the offline worker, cache tiers and write queue.

    Attributes:
        origin: Origin the application is served from; relative asset paths
            are resolved against it
        backend_host: Host (or parent domain) of the hosted backend; GET
            requests to it are never cached
        version: Cache partition names for the current release
        precache_assets: Paths fetched into the static partition at install
        app_shell: Path served for document requests that fail offline
        max_entries: Entry cap for the dynamic and image partitions
        max_age: Freshness window for dynamic entries
        db_path: SQLite file backing cache partitions and local storage
        queue_key: Storage key holding the serialized offline queue
        skip_waiting: Activate right after a successful install
        supabase_url: Backend URL used by the replay processor
        supabase_key: Backend anon key used by the replay processor
    """

    origin: str = "http://localhost:5173"
    backend_host: str = "supabase.co"
    version: VersionConfig = field(default_factory=VersionConfig)
    precache_assets: Tuple[str, ...] = DEFAULT_PRECACHE_ASSETS
    app_shell: str = DEFAULT_APP_SHELL
    max_entries: int = DEFAULT_MAX_ENTRIES
    max_age: timedelta = DEFAULT_MAX_AGE
    db_path: Path = DEFAULT_DB_PATH
    queue_key: str = DEFAULT_QUEUE_KEY
    skip_waiting: bool = True
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None

    def __post_init__(self):
        self.db_path = Path(self.db_path).expanduser()
        self.precache_assets = tuple(self.precache_assets)
        self.origin = self.origin.rstrip("/")

        if self.max_entries <= 0:
            raise ConfigurationError(
                "max_entries must be positive",
                config_key="max_entries",
                expected_type="int > 0",
            )
        if self.max_age <= timedelta(0):
            raise ConfigurationError(
                "max_age must be positive",
                config_key="max_age",
                expected_type="timedelta > 0",
            )
        if not urlparse(self.origin).scheme:
            raise ConfigurationError(
                f"origin must be an absolute URL, got '{self.origin}'",
                config_key="origin",
            )

    @classmethod
    def from_env(cls) -> OfflineSettings:
        """
        Create settings from environment variables.

        Environment variables:
            NEUROSCAN_ORIGIN: Application origin
            NEUROSCAN_RELEASE: Release tag used for cache names (e.g. v2.1)
            NEUROSCAN_DB_PATH: Local SQLite database path
            NEUROSCAN_MAX_ENTRIES: Entry cap for bounded partitions
            NEUROSCAN_MAX_AGE_DAYS: Freshness window in days
            SUPABASE_URL: Backend URL (its host becomes the backend host)
            SUPABASE_KEY: Backend anon key

        Returns:
            OfflineSettings instance
        """
        values: Dict[str, Any] = {}

        if os.getenv("NEUROSCAN_ORIGIN"):
            values["origin"] = os.getenv("NEUROSCAN_ORIGIN")

        if os.getenv("NEUROSCAN_RELEASE"):
            values["version"] = VersionConfig.for_release(os.getenv("NEUROSCAN_RELEASE"))

        if os.getenv("NEUROSCAN_DB_PATH"):
            values["db_path"] = Path(os.getenv("NEUROSCAN_DB_PATH"))

        if os.getenv("NEUROSCAN_MAX_ENTRIES"):
            values["max_entries"] = _to_int("NEUROSCAN_MAX_ENTRIES", os.getenv("NEUROSCAN_MAX_ENTRIES"))

        if os.getenv("NEUROSCAN_MAX_AGE_DAYS"):
            days = _to_int("NEUROSCAN_MAX_AGE_DAYS", os.getenv("NEUROSCAN_MAX_AGE_DAYS"))
            values["max_age"] = timedelta(days=days)

        supabase_url = os.getenv("SUPABASE_URL")
        if supabase_url:
            values["supabase_url"] = supabase_url
            host = urlparse(supabase_url).hostname
            if host:
                values["backend_host"] = host
        if os.getenv("SUPABASE_KEY"):
            values["supabase_key"] = os.getenv("SUPABASE_KEY")

        return cls(**values)

    @classmethod
    def load(cls, config_path: Path) -> OfflineSettings:
        """
        Load settings from a TOML file.

        Args:
            config_path: Path to the TOML file

        Returns:
            OfflineSettings instance (defaults when the file does not exist)

        Raises:
            ConfigurationError: If the file cannot be parsed or holds invalid values
        """
        config_path = Path(config_path)
        if not config_path.exists():
            logger.debug(f"No offline config at {config_path}, using defaults")
            return cls()

        try:
            with open(config_path, "rb") as f:
                data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigurationError(f"Invalid TOML in {config_path}: {e}") from e

        offline = dict(data.get("offline", {}))
        values: Dict[str, Any] = {}

        for key in ("origin", "backend_host", "app_shell", "queue_key"):
            if key in offline:
                values[key] = str(offline.pop(key))

        if "release" in offline:
            values["version"] = VersionConfig.for_release(str(offline.pop("release")))
        if "precache_assets" in offline:
            assets = offline.pop("precache_assets")
            if not isinstance(assets, list):
                raise ConfigurationError(
                    "precache_assets must be a list of paths",
                    config_key="precache_assets",
                    expected_type="list[str]",
                )
            values["precache_assets"] = tuple(str(a) for a in assets)
        if "max_entries" in offline:
            values["max_entries"] = _to_int("max_entries", offline.pop("max_entries"))
        if "max_age_days" in offline:
            values["max_age"] = timedelta(days=_to_int("max_age_days", offline.pop("max_age_days")))
        if "db_path" in offline:
            values["db_path"] = Path(offline.pop("db_path"))
        if "skip_waiting" in offline:
            values["skip_waiting"] = bool(offline.pop("skip_waiting"))

        if offline:
            logger.warning(f"Ignoring unknown offline settings: {sorted(offline)}")

        supabase = data.get("supabase", {})
        if "url" in supabase:
            values["supabase_url"] = supabase["url"]
            if "backend_host" not in values:
                host = urlparse(supabase["url"]).hostname
                if host:
                    values["backend_host"] = host
        if "key" in supabase:
            values["supabase_key"] = supabase["key"]

        return cls(**values)

    def with_version(self, version: VersionConfig) -> OfflineSettings:
        """Return a copy of these settings pointing at another release."""
        return replace(self, version=version)


def _to_int(name: str, value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(
            f"{name} must be an integer, got {value!r}",
            config_key=name,
            expected_type="int",
        ) from e


# Global settings instance
_settings: Optional[OfflineSettings] = None


def get_settings() -> OfflineSettings:
    """
    Get the process-wide offline settings.

    Loads NEUROSCAN_CONFIG (a TOML file) when set, otherwise environment
    variables and defaults.
    """
    global _settings
    if _settings is None:
        config_file = os.getenv("NEUROSCAN_CONFIG")
        if config_file:
            _settings = OfflineSettings.load(Path(config_file))
        else:
            _settings = OfflineSettings.from_env()
    return _settings


def set_settings(settings: Optional[OfflineSettings]) -> None:
    """Replace the process-wide offline settings (None resets to lazy loading)."""
    global _settings
    _settings = settings
