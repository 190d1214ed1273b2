"""
Schema Registry change feed - process setup.

This module turns environment configuration into a running ChangeFeed:
- Logging (JSON or text) on the root logger
- RegistryStore with the configured SQLite settings
- Push notifier when PUSH_ENABLED is set, in-memory otherwise

Usage:
    config = ServerConfig.from_env()
    setup_logging(config)
    feed = create_change_feed(config)

Configuration is entirely via environment variables.
See config.py for all available settings.
"""

from __future__ import annotations

import logging

import json_log_formatter

from .changes import ChangeFeed, HttpPushNotifier, InMemoryNotifier, Notifier
from .config import ServerConfig

logger = logging.getLogger(__name__)


def setup_logging(config: ServerConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Server configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def create_notifier(config: ServerConfig) -> Notifier:
    """Build the notifier selected by the push configuration."""
    if config.push.enabled:
        logger.info(f"Push notifications enabled: {config.push.endpoint}")
        return HttpPushNotifier(config.push)
    return InMemoryNotifier()


def create_change_feed(config: ServerConfig | None = None, registry_id: str | None = None) -> ChangeFeed:
    """Build a ChangeFeed for one registry.

    Args:
        config: Configuration (loaded from env if not provided)
        registry_id: Registry to serve (default: REGISTRY_ID)

    Returns:
        A ChangeFeed; call ``close()`` when done
    """
    config = config or ServerConfig.from_env()
    config.log_config()
    return ChangeFeed.from_config(
        config,
        registry_id or config.push.registry_id,
        notifier=create_notifier(config),
    )
