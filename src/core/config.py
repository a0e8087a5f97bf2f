"""Configuration management for the River UI server.

Raw values are loaded from environment variables (a local .env file is loaded
into the environment by the CLI before settings are read). ``resolve_config``
turns them, together with the command-line path prefix, into the immutable
``ConfigurationBundle`` handed to every downstream component.
"""
from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Tuple

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError


DEFAULT_PATH_PREFIX = "/"
DEFAULT_PORT = "8080"


class Settings(BaseSettings):
    """
    Runtime configuration powered by environment variables.

    Values are kept close to their raw form; interpretation that the rest of
    the process depends on (prefix rules, required variables) happens in
    ``resolve_config``.
    """

    model_config = SettingsConfigDict(
        env_file=None,
        extra="ignore",
        case_sensitive=False,
        populate_by_name=True,
    )

    # -------------------------------------------------------------------------
    # Database
    # -------------------------------------------------------------------------
    database_url: str = Field(
        default="",
        alias="DATABASE_URL",
        description="Connection string for the job queue database.",
    )
    db_pool_size: int = Field(default=5, alias="DB_POOL_SIZE", ge=1)
    db_max_overflow: int = Field(default=10, alias="DB_MAX_OVERFLOW", ge=0)
    db_pool_timeout: int = Field(default=30, alias="DB_POOL_TIMEOUT", ge=1)

    # -------------------------------------------------------------------------
    # HTTP
    # -------------------------------------------------------------------------
    port: str = Field(default=DEFAULT_PORT, alias="PORT")
    cors_origins: str = Field(
        default="",
        alias="CORS_ORIGINS",
        description="Comma-separated list of allowed CORS origins.",
    )
    shutdown_timeout: int = Field(default=10, alias="SHUTDOWN_TIMEOUT", ge=0)

    # -------------------------------------------------------------------------
    # Basic auth (both empty disables it)
    # -------------------------------------------------------------------------
    basic_auth_user: str = Field(default="", alias="BASIC_AUTH_USER")
    basic_auth_password: str = Field(default="", alias="BASIC_AUTH_PASSWORD")

    # -------------------------------------------------------------------------
    # Observability
    # -------------------------------------------------------------------------
    otel_enabled: bool = Field(default=False, alias="OTEL_ENABLED")
    log_format: str = Field(default="text", alias="LOG_FORMAT")  # "text" or "json"

    @field_validator("port", mode="before")
    @classmethod
    def default_empty_port(cls, v: Any) -> Any:
        """An empty PORT falls back to the default."""
        if v is None or v == "":
            return DEFAULT_PORT
        return v

    @field_validator("otel_enabled", mode="before")
    @classmethod
    def parse_otel_enabled(cls, v: Any) -> bool:
        """Only the exact string "true" enables OpenTelemetry fields."""
        if isinstance(v, bool):
            return v
        return v == "true"

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        """Ensure log format is valid."""
        lower = v.lower()
        if lower not in {"text", "json"}:
            raise ValueError("log_format must be 'text' or 'json'")
        return lower


@dataclass(frozen=True)
class ConfigurationBundle:
    """Validated, immutable configuration built once per process."""

    path_prefix: str
    cors_origins: Tuple[str, ...]
    database_url: str
    port: str
    otel_enabled: bool
    basic_auth_user: str = ""
    basic_auth_password: str = ""
    db_pool_size: int = 5
    db_max_overflow: int = 10
    db_pool_timeout: int = 30
    shutdown_timeout: int = 10

    @property
    def basic_auth_enabled(self) -> bool:
        """Basic auth is only enforced when both user and password are set."""
        return bool(self.basic_auth_user and self.basic_auth_password)


def normalize_path_prefix(prefix: str) -> str:
    """
    Normalize a route prefix.

    The result always starts with "/" and never ends with "/" unless it is
    exactly "/".

    Examples:
        >>> normalize_path_prefix("/admin/")
        '/admin'
        >>> normalize_path_prefix("/")
        '/'
    """
    if prefix == "":
        return "/"
    if prefix.endswith("/"):
        prefix = prefix[:-1]
    if not prefix.startswith("/"):
        return "/" + prefix
    return prefix


def split_cors_origins(raw: str) -> Tuple[str, ...]:
    """
    Split CORS_ORIGINS on commas without trimming or filtering.

    An empty value yields a single empty origin, which matches no real origin.
    """
    return tuple(raw.split(","))


def resolve_config(path_prefix: str, settings: Settings) -> ConfigurationBundle:
    """
    Validate raw inputs and build the configuration bundle.

    Args:
        path_prefix: Value of the -prefix command-line flag.
        settings: Environment-backed settings.

    Returns:
        Fully validated ConfigurationBundle.

    Raises:
        ConfigurationError: On an invalid prefix or a missing DATABASE_URL.
    """
    if path_prefix == "" or not path_prefix.startswith("/"):
        raise ConfigurationError(
            f"invalid path prefix: {path_prefix!r}",
            field="prefix",
            reason="invalid-prefix",
        )

    if not settings.database_url:
        raise ConfigurationError(
            "missing required env var DATABASE_URL",
            field="DATABASE_URL",
            reason="missing",
        )

    return ConfigurationBundle(
        path_prefix=normalize_path_prefix(path_prefix),
        cors_origins=split_cors_origins(settings.cors_origins),
        database_url=settings.database_url,
        port=settings.port,
        otel_enabled=settings.otel_enabled,
        basic_auth_user=settings.basic_auth_user,
        basic_auth_password=settings.basic_auth_password,
        db_pool_size=settings.db_pool_size,
        db_max_overflow=settings.db_max_overflow,
        db_pool_timeout=settings.db_pool_timeout,
        shutdown_timeout=settings.shutdown_timeout,
    )


@lru_cache
def get_settings() -> Settings:
    """Environment-backed settings, read once per process."""
    return Settings()


def reload_settings() -> Settings:
    """Re-read the environment, e.g. after a ``.env`` file was loaded late."""
    get_settings.cache_clear()
    return get_settings()
