"""Database connection pool management."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import URL, Engine, make_url
from sqlalchemy.exc import ArgumentError, NoSuchModuleError, SQLAlchemyError
from sqlalchemy.pool import NullPool

from .exceptions import ConfigurationError, ConnectionError
from .logging_config import get_logger

LOGGER = get_logger(__name__)

# Bare Postgres schemes are served by psycopg 3
POSTGRES_DRIVER = "postgresql+psycopg"
_BARE_POSTGRES_SCHEMES = {"postgres", "postgresql"}


class ConnectionPool:
    """
    Owned handle around a SQLAlchemy engine and its connection pool.

    The pool is released with ``close()``, which disposes the engine exactly
    once; later calls are no-ops. Usable as a context manager so the owner
    releases it on every exit path.
    """

    def __init__(self, engine: Engine, logger: Optional[logging.Logger] = None) -> None:
        self.engine = engine
        self.logger = logger or LOGGER
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def dialect(self) -> str:
        return self.engine.dialect.name

    def ping(self) -> None:
        """Run a trivial query; raises SQLAlchemyError if the database is unreachable."""
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.engine.dispose()
        self.logger.debug("Database pool closed")

    def __enter__(self) -> "ConnectionPool":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.close()
        return False


def parse_database_url(database_url: str) -> URL:
    """
    Parse a connection string into a SQLAlchemy URL.

    Raises:
        ConfigurationError: If the string cannot be parsed.
    """
    try:
        url = make_url(database_url)
    except ArgumentError as exc:
        raise ConfigurationError(
            f"error parsing db config: {exc}",
            field="DATABASE_URL",
            reason="parse-failed",
        ) from exc

    if url.drivername in _BARE_POSTGRES_SCHEMES:
        url = url.set(drivername=POSTGRES_DRIVER)
    return url


def _engine_options(url: URL, pool_size: int, max_overflow: int, pool_timeout: int) -> Dict[str, Any]:
    if url.get_backend_name() == "sqlite":
        # SQLite with NullPool - no connection pooling to avoid exhaustion issues
        return {
            "connect_args": {"check_same_thread": False},
            "poolclass": NullPool,
        }
    return {
        "pool_size": pool_size,
        "max_overflow": max_overflow,
        "pool_timeout": pool_timeout,
        "pool_pre_ping": True,  # Verify connection before usage
    }


def open_pool(
    database_url: str,
    logger: Optional[logging.Logger] = None,
    *,
    pool_size: int = 5,
    max_overflow: int = 10,
    pool_timeout: int = 30,
) -> ConnectionPool:
    """
    Open a connection pool and verify the database is reachable.

    Args:
        database_url: Connection string (``postgres://`` URLs are accepted).
        logger: Logger for pool lifecycle events.
        pool_size: Persistent connections kept by the pool.
        max_overflow: Extra connections allowed above pool_size.
        pool_timeout: Seconds to wait for a free connection.

    Returns:
        A ConnectionPool owned by the caller.

    Raises:
        ConfigurationError: If the connection string is malformed or names an
            unknown database dialect.
        ConnectionError: If the driver is unavailable or the database cannot
            be reached.
    """
    logger = logger or LOGGER
    url = parse_database_url(database_url)

    try:
        engine = create_engine(url, **_engine_options(url, pool_size, max_overflow, pool_timeout))
    except NoSuchModuleError as exc:
        raise ConfigurationError(
            f"error parsing db config: {exc}",
            field="DATABASE_URL",
            reason="parse-failed",
        ) from exc
    except (ArgumentError, ImportError) as exc:
        raise ConnectionError(f"error connecting to db: {exc}") from exc

    pool = ConnectionPool(engine, logger)
    try:
        pool.ping()
    except SQLAlchemyError as exc:
        pool.close()
        raise ConnectionError(f"error connecting to db: {exc}") from exc

    logger.info(
        "Database pool opened",
        extra={"extra_data": {"dialect": pool.dialect, "host": url.host or ""}},
    )
    return pool


__all__ = ["ConnectionPool", "open_pool", "parse_database_url", "POSTGRES_DRIVER"]
