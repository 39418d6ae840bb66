"""
Configuration management for the LRM catalog server.

All configuration is done via environment variables.
This module provides typed configuration classes with validation.
HTTP transport settings live in api/config.py (pydantic-settings).

Invariants:
    - All settings have sensible defaults for local development
    - Configuration objects are immutable once loaded

How to change safely:
    - Add new settings with defaults that keep existing deployments working
    - Validate cross-field constraints in ServerConfig.validate()
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StorageConfig:
    """Local storage configuration.

    Attributes:
        database_path: SQLite database file
        wal_mode: SQLite WAL mode enabled
        busy_timeout_ms: SQLite busy timeout in milliseconds
        cache_size_pages: SQLite cache size in pages (negative = KB)
        traverse_batch_size: Rows fetched per round trip while traversing
    """

    database_path: str = "./data/catalog.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000
    cache_size_pages: int = -64000  # 64MB
    traverse_batch_size: int = 256

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables."""
        return cls(
            database_path=os.getenv("DATABASE_PATH", "./data/catalog.db"),
            wal_mode=os.getenv("SQLITE_WAL_MODE", "true").lower() == "true",
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
            cache_size_pages=int(os.getenv("SQLITE_CACHE_SIZE", "-64000")),
            traverse_batch_size=int(os.getenv("TRAVERSE_BATCH_SIZE", "256")),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass
class ServerConfig:
    """Complete server configuration.

    Attributes:
        storage: Local storage configuration
        observability: Logging configuration
    """

    storage: StorageConfig = field(default_factory=StorageConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> ServerConfig:
        """Load complete configuration from environment variables.

        Raises:
            ValueError: If a setting is missing or invalid.
        """
        config = cls(
            storage=StorageConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )
        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if not self.storage.database_path:
            raise ValueError("DATABASE_PATH must not be empty")
        if self.storage.busy_timeout_ms < 0:
            raise ValueError("SQLITE_BUSY_TIMEOUT_MS must be >= 0")
        if self.storage.traverse_batch_size <= 0:
            raise ValueError("TRAVERSE_BATCH_SIZE must be positive")
        if self.observability.log_format not in ("json", "text"):
            raise ValueError(
                f"Invalid LOG_FORMAT '{self.observability.log_format}'. Must be one of: json, text"
            )
        if not isinstance(logging.getLevelName(self.observability.log_level.upper()), int):
            raise ValueError(f"Invalid LOG_LEVEL '{self.observability.log_level}'")

        parent = os.path.dirname(os.path.abspath(self.storage.database_path))
        if not os.path.exists(parent):
            logger.warning(
                f"Database directory does not exist: {parent}. "
                "It will be created on startup."
            )

    def log_config(self) -> None:
        """Log the effective configuration."""
        logger.info(
            "Server configuration loaded",
            extra={
                "database_path": self.storage.database_path,
                "wal_mode": self.storage.wal_mode,
                "busy_timeout_ms": self.storage.busy_timeout_ms,
                "traverse_batch_size": self.storage.traverse_batch_size,
                "log_level": self.observability.log_level,
                "log_format": self.observability.log_format,
            },
        )
