"""Pytest configuration and fixtures."""
from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Callable

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

from core.config import ConfigurationBundle, Settings, get_settings
from core.db import ConnectionPool, open_pool
from core.queue_client import QueueClient
from api.app import HandlerOpts

# Every variable the server reads; cleared so the host environment cannot leak in
SERVER_ENV_VARS = (
    "DATABASE_URL",
    "PORT",
    "CORS_ORIGINS",
    "OTEL_ENABLED",
    "BASIC_AUTH_USER",
    "BASIC_AUTH_PASSWORD",
    "RIVER_DEBUG",
    "LOG_FORMAT",
    "DB_POOL_SIZE",
    "DB_MAX_OVERFLOW",
    "DB_POOL_TIMEOUT",
    "SHUTDOWN_TIMEOUT",
)

# Use in-memory SQLite for testing
SQLITE_MEMORY_URL = "sqlite:///:memory:"


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Start every test from an empty server environment."""
    for name in SERVER_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def make_settings() -> Callable[..., Settings]:
    """Build Settings from keyword overrides (by env var name) on top of the environment."""

    def _make(**env: str) -> Settings:
        return Settings(**env)

    return _make


@pytest.fixture
def logger() -> logging.Logger:
    """Logger used as the process logger in tests."""
    test_logger = logging.getLogger("riverui.test")
    test_logger.setLevel(logging.DEBUG)
    return test_logger


@pytest.fixture
def pool(logger):
    """An open connection pool against in-memory SQLite."""
    sqlite_pool = open_pool(SQLITE_MEMORY_URL, logger)
    yield sqlite_pool
    sqlite_pool.close()


@pytest.fixture
def handler_opts(pool, logger) -> HandlerOpts:
    """Options for the default application server."""
    return HandlerOpts(
        client=QueueClient(pool, logger),
        pool=pool,
        logger=logger,
        prefix="/",
    )


@pytest.fixture
def bundle() -> ConfigurationBundle:
    """A valid configuration bundle."""
    return ConfigurationBundle(
        path_prefix="/",
        cors_origins=("http://localhost:3000",),
        database_url=SQLITE_MEMORY_URL,
        port="8080",
        otel_enabled=False,
    )


class FakeDialect:
    name = "fake"


class FakeEngine:
    """Stands in for a SQLAlchemy engine; counts dispose() calls."""

    def __init__(self) -> None:
        self.dialect = FakeDialect()
        self.dispose_calls = 0

    def dispose(self) -> None:
        self.dispose_calls += 1


@pytest.fixture
def fake_engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def fake_pool(fake_engine, logger) -> ConnectionPool:
    """A pool whose engine never touches a database."""
    return ConnectionPool(fake_engine, logger)
