"""
Unit tests for server configuration.
"""

import pytest

from catalog.lrm_server.api.config import ApiSettings
from catalog.lrm_server.config import ObservabilityConfig, ServerConfig, StorageConfig


class TestServerConfig:
    """Tests for ServerConfig."""

    def test_defaults(self, monkeypatch):
        for name in ("DATABASE_PATH", "SQLITE_WAL_MODE", "LOG_FORMAT", "TRAVERSE_BATCH_SIZE"):
            monkeypatch.delenv(name, raising=False)
        config = ServerConfig.from_env()
        assert config.storage.database_path == "./data/catalog.db"
        assert config.storage.wal_mode is True
        assert config.storage.traverse_batch_size == 256
        assert config.observability.log_format == "json"

    def test_from_env(self, monkeypatch, tmp_path):
        monkeypatch.setenv("DATABASE_PATH", str(tmp_path / "catalog.db"))
        monkeypatch.setenv("SQLITE_WAL_MODE", "false")
        monkeypatch.setenv("SQLITE_BUSY_TIMEOUT_MS", "100")
        monkeypatch.setenv("TRAVERSE_BATCH_SIZE", "10")
        monkeypatch.setenv("LOG_LEVEL", "debug")
        monkeypatch.setenv("LOG_FORMAT", "text")

        config = ServerConfig.from_env()

        assert config.storage.database_path == str(tmp_path / "catalog.db")
        assert config.storage.wal_mode is False
        assert config.storage.busy_timeout_ms == 100
        assert config.storage.traverse_batch_size == 10
        assert config.observability.log_format == "text"

    def test_invalid_log_format(self):
        config = ServerConfig(observability=ObservabilityConfig(log_format="xml"))
        with pytest.raises(ValueError, match="Invalid LOG_FORMAT"):
            config.validate()

    def test_invalid_log_level(self):
        config = ServerConfig(observability=ObservabilityConfig(log_level="LOUD"))
        with pytest.raises(ValueError, match="Invalid LOG_LEVEL"):
            config.validate()

    def test_invalid_batch_size(self):
        config = ServerConfig(storage=StorageConfig(traverse_batch_size=0))
        with pytest.raises(ValueError, match="TRAVERSE_BATCH_SIZE"):
            config.validate()

    def test_storage_config_is_frozen(self):
        with pytest.raises(AttributeError):
            StorageConfig().database_path = "other.db"


class TestApiSettings:
    """Tests for ApiSettings."""

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("CATALOG_API_PORT", "9000")
        monkeypatch.setenv("CATALOG_API_MAX_PAGE_SIZE", "20")
        settings = ApiSettings()
        assert settings.port == 9000
        assert settings.max_page_size == 20
        assert settings.default_page_size == 50
