"""
Configuration management for the Schema Registry change feed.

All configuration is done via environment variables - no config files inside containers.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - The retention floor is never below one day
    - Secrets are never logged or exposed in error messages

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Deprecate settings by logging warnings but continuing to support them
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
        data_dir: Directory for registry SQLite databases
        wal_mode: SQLite WAL mode enabled
        busy_timeout_ms: SQLite busy timeout in milliseconds
        cache_size_pages: SQLite cache size in pages (negative = KB)
    """

    data_dir: str = "/var/lib/schemareg"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000
    cache_size_pages: int = -16000  # 16MB

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables."""
        return cls(
            data_dir=os.getenv("DATA_DIR", "/var/lib/schemareg"),
            wal_mode=os.getenv("SQLITE_WAL_MODE", "true").lower() == "true",
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
            cache_size_pages=int(os.getenv("SQLITE_CACHE_SIZE", "-16000")),
        )


@dataclass(frozen=True)
class RetentionConfig:
    """Change-log retention configuration.

    The effective window is max(floor_days, min(retention_days of every user)),
    falling back to default_days when no user configured a value.

    Attributes:
        floor_days: Never purge changes younger than this
        default_days: Window used when no preference exists
        cleanup_on_write: Run cleanup after every recorded change
    """

    floor_days: int = 30
    default_days: int = 30
    cleanup_on_write: bool = True

    @classmethod
    def from_env(cls) -> RetentionConfig:
        """Load configuration from environment variables."""
        return cls(
            floor_days=int(os.getenv("RETENTION_FLOOR_DAYS", "30")),
            default_days=int(os.getenv("RETENTION_DEFAULT_DAYS", "30")),
            cleanup_on_write=os.getenv("RETENTION_CLEANUP_ON_WRITE", "true").lower() == "true",
        )


@dataclass(frozen=True)
class VisibilityConfig:
    """Change visibility configuration.

    Attributes:
        legacy_show_all_without_subscriptions: Show every change to every user
            while the subscription tables are not provisioned
    """

    legacy_show_all_without_subscriptions: bool = True

    @classmethod
    def from_env(cls) -> VisibilityConfig:
        """Load configuration from environment variables."""
        return cls(
            legacy_show_all_without_subscriptions=os.getenv(
                "LEGACY_SHOW_ALL_WITHOUT_SUBSCRIPTIONS", "true"
            ).lower()
            == "true",
        )


@dataclass(frozen=True)
class PushConfig:
    """Real-time push relay configuration.

    Attributes:
        enabled: Whether notification intents are POSTed to the relay
        host: Relay host (empty = local development relay)
        tenant_id: Tenant part of the relay room id
        registry_id: Registry part of the relay room id
        timeout_seconds: HTTP timeout per notification
    """

    enabled: bool = False
    host: str = ""
    tenant_id: str = "default-tenant"
    registry_id: str = "default-registry"
    timeout_seconds: float = 5.0

    @property
    def room_id(self) -> str:
        return f"{self.tenant_id}-{self.registry_id}"

    @property
    def endpoint(self) -> str:
        """Full relay URL for this registry's room."""
        if self.host:
            return f"https://{self.host}/parties/main/{self.room_id}"
        return f"http://localhost:1999/parties/main/{self.room_id}"

    @classmethod
    def from_env(cls) -> PushConfig:
        """Load configuration from environment variables."""
        return cls(
            enabled=os.getenv("PUSH_ENABLED", "false").lower() == "true",
            host=os.getenv("PUSH_HOST", ""),
            tenant_id=os.getenv("TENANT_ID", "default-tenant"),
            registry_id=os.getenv("REGISTRY_ID", "default-registry"),
            timeout_seconds=float(os.getenv("PUSH_TIMEOUT_SECONDS", "5.0")),
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
    """Complete configuration.

    Attributes:
        storage: Local storage configuration
        retention: Retention configuration
        visibility: Visibility configuration
        push: Push relay configuration
        observability: Logging configuration
    """

    storage: StorageConfig = field(default_factory=StorageConfig)
    retention: RetentionConfig = field(default_factory=RetentionConfig)
    visibility: VisibilityConfig = field(default_factory=VisibilityConfig)
    push: PushConfig = field(default_factory=PushConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> ServerConfig:
        """Load complete configuration from environment variables.

        Returns:
            ServerConfig with all sections populated from environment.

        Raises:
            ValueError: If configuration is invalid.
        """
        config = cls(
            storage=StorageConfig.from_env(),
            retention=RetentionConfig.from_env(),
            visibility=VisibilityConfig.from_env(),
            push=PushConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if self.retention.floor_days < 1:
            raise ValueError("RETENTION_FLOOR_DAYS must be at least 1")
        if self.retention.default_days < 1:
            raise ValueError("RETENTION_DEFAULT_DAYS must be at least 1")
        if self.observability.log_format not in ("json", "text"):
            raise ValueError(
                f"Invalid LOG_FORMAT '{self.observability.log_format}'. Must be one of: json, text"
            )
        if self.push.timeout_seconds <= 0:
            raise ValueError("PUSH_TIMEOUT_SECONDS must be positive")

        if not os.path.exists(self.storage.data_dir):
            logger.warning(
                f"Data directory does not exist: {self.storage.data_dir}. "
                "It will be created on first write."
            )

    def log_config(self) -> None:
        """Log configuration."""
        logger.info(
            "Change feed configuration loaded",
            extra={
                "data_dir": self.storage.data_dir,
                "retention_floor_days": self.retention.floor_days,
                "retention_default_days": self.retention.default_days,
                "cleanup_on_write": self.retention.cleanup_on_write,
                "legacy_show_all": self.visibility.legacy_show_all_without_subscriptions,
                "push_enabled": self.push.enabled,
                "push_room": self.push.room_id if self.push.enabled else None,
                "log_level": self.observability.log_level,
            },
        )
