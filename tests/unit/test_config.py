# =============================================================================
# tests/unit/test_config.py
# Unit Tests for Offline Settings
# =============================================================================

import logging
from datetime import timedelta
from pathlib import Path

import pytest

from neuroscan_core.errors import ConfigurationError
from neuroscan_core.offline.config import (
    DEFAULT_MAX_AGE,
    OfflineSettings,
    VersionConfig,
    get_settings,
    set_settings,
)


class TestVersionConfig:
    """Test cache partition naming"""

    def test_default_names(self):
        version = VersionConfig()
        assert version.names == ("static-v2.1", "dynamic-v2.1", "images-v2.1")

    def test_for_release(self):
        version = VersionConfig.for_release("v3.0")
        assert version.static == "static-v3.0"
        assert version.dynamic == "dynamic-v3.0"
        assert version.image == "images-v3.0"

    def test_empty_release_rejected(self):
        with pytest.raises(ConfigurationError):
            VersionConfig.for_release("")

    def test_is_immutable(self):
        version = VersionConfig()
        with pytest.raises(AttributeError):
            version.static = "static-v9"


class TestOfflineSettings:
    """Test settings defaults and validation"""

    def test_defaults(self):
        settings = OfflineSettings()
        assert settings.max_entries == 50
        assert settings.max_age == timedelta(days=7)
        assert DEFAULT_MAX_AGE.total_seconds() * 1000 == 604_800_000
        assert settings.precache_assets == ("/", "/index.html", "/manifest.json")
        assert settings.app_shell == "/index.html"
        assert settings.skip_waiting is True

    def test_non_positive_max_entries_rejected(self):
        with pytest.raises(ConfigurationError) as exc_info:
            OfflineSettings(max_entries=0)
        assert exc_info.value.details["config_key"] == "max_entries"

    def test_non_positive_max_age_rejected(self):
        with pytest.raises(ConfigurationError):
            OfflineSettings(max_age=timedelta(0))

    def test_relative_origin_rejected(self):
        with pytest.raises(ConfigurationError):
            OfflineSettings(origin="not-a-url")

    def test_trailing_slash_stripped_from_origin(self):
        assert OfflineSettings(origin="https://app.test/").origin == "https://app.test"

    def test_with_version(self):
        settings = OfflineSettings()
        upgraded = settings.with_version(VersionConfig.for_release("v2.2"))
        assert upgraded.version.static == "static-v2.2"
        assert settings.version.static == "static-v2.1"


class TestSettingsFromEnv:
    """Test environment variable loading"""

    def test_from_env(self, monkeypatch, tmp_path):
        monkeypatch.setenv("NEUROSCAN_ORIGIN", "https://app.example")
        monkeypatch.setenv("NEUROSCAN_RELEASE", "v2.2")
        monkeypatch.setenv("NEUROSCAN_DB_PATH", str(tmp_path / "x.db"))
        monkeypatch.setenv("NEUROSCAN_MAX_ENTRIES", "10")
        monkeypatch.setenv("NEUROSCAN_MAX_AGE_DAYS", "2")
        monkeypatch.setenv("SUPABASE_URL", "https://proj.supabase.co")
        monkeypatch.setenv("SUPABASE_KEY", "anon")

        settings = OfflineSettings.from_env()

        assert settings.origin == "https://app.example"
        assert settings.version.dynamic == "dynamic-v2.2"
        assert settings.db_path == tmp_path / "x.db"
        assert settings.max_entries == 10
        assert settings.max_age == timedelta(days=2)
        assert settings.backend_host == "proj.supabase.co"
        assert settings.supabase_key == "anon"

    def test_invalid_integer(self, monkeypatch):
        monkeypatch.setenv("NEUROSCAN_MAX_ENTRIES", "fifty")
        with pytest.raises(ConfigurationError):
            OfflineSettings.from_env()


class TestSettingsFromToml:
    """Test TOML file loading"""

    def test_missing_file_gives_defaults(self, tmp_path):
        settings = OfflineSettings.load(tmp_path / "missing.toml")
        assert settings == OfflineSettings()

    def test_load_file(self, tmp_path):
        config = tmp_path / "offline.toml"
        config.write_text(
            '[offline]\n'
            'origin = "https://neuroscan.example"\n'
            'release = "v2.5"\n'
            'precache_assets = ["/", "/index.html"]\n'
            'max_entries = 20\n'
            'max_age_days = 3\n'
            'skip_waiting = false\n'
            '\n'
            '[supabase]\n'
            'url = "https://proj.supabase.co"\n'
            'key = "anon"\n'
        )

        settings = OfflineSettings.load(config)

        assert settings.origin == "https://neuroscan.example"
        assert settings.version.image == "images-v2.5"
        assert settings.precache_assets == ("/", "/index.html")
        assert settings.max_entries == 20
        assert settings.max_age == timedelta(days=3)
        assert settings.skip_waiting is False
        assert settings.backend_host == "proj.supabase.co"

    def test_invalid_toml(self, tmp_path):
        config = tmp_path / "broken.toml"
        config.write_text("[offline\norigin = ")
        with pytest.raises(ConfigurationError):
            OfflineSettings.load(config)

    def test_unknown_keys_warned(self, tmp_path, caplog):
        config = tmp_path / "offline.toml"
        config.write_text('[offline]\ncolour = "blue"\n')

        with caplog.at_level(logging.WARNING):
            OfflineSettings.load(config)

        assert "colour" in caplog.text


class TestGlobalSettings:
    """Test the process-wide settings accessor"""

    def test_set_and_get(self):
        custom = OfflineSettings(max_entries=5)
        set_settings(custom)
        assert get_settings() is custom

    def test_loads_config_file_from_env(self, monkeypatch, tmp_path):
        config = tmp_path / "offline.toml"
        config.write_text('[offline]\nmax_entries = 7\n')
        monkeypatch.setenv("NEUROSCAN_CONFIG", str(config))

        assert get_settings().max_entries == 7
