"""Custom exceptions for the River UI server bootstrap."""
from __future__ import annotations

from typing import Optional


class RiverUIError(Exception):
    """Base exception for all bootstrap errors."""

    pass


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(RiverUIError):
    """
    Raised when required configuration is missing or invalid.

    Attributes:
        field: Name of the flag or environment variable at fault.
        reason: Short machine-readable reason (``invalid-prefix``,
            ``missing``, ``parse-failed``).
    """

    def __init__(self, message: str, *, field: str, reason: str) -> None:
        super().__init__(message)
        self.field = field
        self.reason = reason


# Alias used by callers that think in terms of the configuration stage
ConfigError = ConfigurationError


# =============================================================================
# Database Errors
# =============================================================================


class DatabaseError(RiverUIError):
    """Base exception for database-related errors."""

    pass


class ConnectionError(DatabaseError):
    """Raised when the connection pool cannot be opened."""

    def __init__(self, message: str, *, reason: str = "open-failed") -> None:
        super().__init__(message)
        self.reason = reason


# =============================================================================
# Application Server Errors
# =============================================================================


class ConstructionError(RiverUIError):
    """Raised when the queue client or application server cannot be built or started."""

    def __init__(self, message: str, *, stage: Optional[str] = None) -> None:
        super().__init__(message)
        self.stage = stage


class ListenerError(RiverUIError):
    """Raised when the HTTP listener stops for any reason other than a clean shutdown."""

    pass


RuntimeListenerError = ListenerError


__all__ = [
    "RiverUIError",
    "ConfigurationError",
    "ConfigError",
    "DatabaseError",
    "ConnectionError",
    "ConstructionError",
    "ListenerError",
    "RuntimeListenerError",
]
