"""Core module exports."""
from __future__ import annotations

from core.config import (
    ConfigurationBundle,
    Settings,
    get_settings,
    normalize_path_prefix,
    reload_settings,
    resolve_config,
)
from core.db import ConnectionPool, open_pool
from core.exceptions import (
    # Base
    RiverUIError,
    # Configuration
    ConfigurationError,
    ConfigError,
    # Database
    DatabaseError,
    ConnectionError,
    # Application server
    ConstructionError,
    ListenerError,
    RuntimeListenerError,
)
from core.logging_config import (
    setup_logging,
    get_logger,
    is_debug_enabled,
    JSONFormatter,
    KeyValueFormatter,
)
from core.queue_client import QueueClient

__all__ = [
    # Config
    "ConfigurationBundle",
    "Settings",
    "get_settings",
    "reload_settings",
    "normalize_path_prefix",
    "resolve_config",
    # Database
    "ConnectionPool",
    "open_pool",
    "QueueClient",
    # Exceptions
    "RiverUIError",
    "ConfigurationError",
    "ConfigError",
    "DatabaseError",
    "ConnectionError",
    "ConstructionError",
    "ListenerError",
    "RuntimeListenerError",
    # Logging
    "setup_logging",
    "get_logger",
    "is_debug_enabled",
    "JSONFormatter",
    "KeyValueFormatter",
]
