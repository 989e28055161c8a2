"""Tests for configuration loading and validation"""
import importlib

import pytest

from achievement_sync import config


@pytest.fixture
def reload_config():
    """Reload the config module with the current environment, restoring it afterwards"""
    yield lambda: importlib.reload(config)
    importlib.reload(config)


class TestDefaults:
    """Default reconciliation windows"""

    def test_window_defaults(self, monkeypatch, reload_config):
        """Test the documented defaults when nothing is configured"""
        for name in ("CACHE_VALID_SECONDS", "APP_TIME_FLUSH_SECONDS",
                     "INTEGRITY_FRESHNESS_SECONDS", "AUTHORITATIVE_SCAN_LIMIT",
                     "SNAPSHOT_RETAIN_SECONDS"):
            monkeypatch.delenv(name, raising=False)

        module = reload_config()

        assert module.CACHE_VALID_SECONDS == 300
        assert module.APP_TIME_FLUSH_SECONDS == 300
        assert module.INTEGRITY_FRESHNESS_SECONDS == 3600
        assert module.AUTHORITATIVE_SCAN_LIMIT == 1000
        assert module.SNAPSHOT_RETAIN_SECONDS == 3600

    def test_message_tables_parsed(self, monkeypatch, reload_config):
        """Test MESSAGE_SOURCE_TABLES is split and trimmed"""
        monkeypatch.setenv("MESSAGE_SOURCE_TABLES", " messages , group_messages,,")

        module = reload_config()

        assert module.MESSAGE_SOURCE_TABLES == ["messages", "group_messages"]

    def test_enable_cache_flag(self, monkeypatch, reload_config):
        """Test ENABLE_CACHE only accepts 'true' as enabled"""
        monkeypatch.setenv("ENABLE_CACHE", "False")

        module = reload_config()

        assert module.ENABLE_CACHE is False


class TestValidateConfig:
    """validate_config()"""

    def test_valid_configuration(self):
        """Test the default configuration validates"""
        config.validate_config()

    def test_missing_database_url(self, monkeypatch):
        """Test DATABASE_URL is required"""
        monkeypatch.setattr(config, "DATABASE_URL", "")

        with pytest.raises(ValueError, match="DATABASE_URL"):
            config.validate_config()

    @pytest.mark.parametrize("name", [
        "CACHE_VALID_SECONDS",
        "APP_TIME_FLUSH_SECONDS",
        "AUTHORITATIVE_SCAN_LIMIT",
        "PROGRESS_HISTORY_LIMIT",
    ])
    def test_non_positive_values_rejected(self, monkeypatch, name):
        """Test windows and limits must be positive"""
        monkeypatch.setattr(config, name, 0)

        with pytest.raises(ValueError, match=name):
            config.validate_config()

    def test_negative_freshness_rejected(self, monkeypatch):
        """Test the integrity window cannot be negative"""
        monkeypatch.setattr(config, "INTEGRITY_FRESHNESS_SECONDS", -1)

        with pytest.raises(ValueError, match="INTEGRITY_FRESHNESS_SECONDS"):
            config.validate_config()

    def test_retention_shorter_than_cache_window_rejected(self, monkeypatch):
        """Test last good snapshots are kept at least as long as the cache window"""
        monkeypatch.setattr(config, "SNAPSHOT_RETAIN_SECONDS", 60)

        with pytest.raises(ValueError, match="SNAPSHOT_RETAIN_SECONDS"):
            config.validate_config()


class TestParseList:
    """parse_list()"""

    def test_splits_and_trims(self):
        """Test comma-separated settings are split and blanks dropped"""
        assert config.parse_list(" a, b ,,c ") == ["a", "b", "c"]

    def test_empty(self):
        """Test an empty setting gives an empty list"""
        assert config.parse_list("") == []
