"""Server bootstrap: configuration, database pool, application server, listener.

``init_and_serve`` runs every startup stage in order and is the single place
where failures are logged and turned into a process exit code. Each stage
completes before the next begins; the first failure stops startup.
"""
from __future__ import annotations

import logging
from typing import Callable, Optional

from pydantic import ValidationError
from starlette.types import ASGIApp

from api.app import HandlerOpts, ServerFactory, create_server
from api.middleware import compose_middleware
from api.server import run_server
from core.config import DEFAULT_PATH_PREFIX, Settings, get_settings, resolve_config
from core.db import open_pool
from core.exceptions import ConfigurationError, ConnectionError, ConstructionError
from core.logging_config import get_logger
from core.queue_client import QueueClient

LOGGER = get_logger("riverui")

ServerRunner = Callable[[ASGIApp, str, logging.Logger, int], int]


def _config_error(logger: logging.Logger, exc: ConfigurationError, path_prefix: str) -> int:
    if exc.reason == "missing":
        logger.error("missing required env var", extra={"extra_data": {"name": exc.field}})
    elif exc.reason == "invalid-prefix":
        logger.error("invalid path prefix", extra={"extra_data": {"prefix": path_prefix}})
    else:
        logger.error(
            "invalid configuration",
            extra={"extra_data": {"field": exc.field, "error": str(exc)}},
        )
    return 1


def init_and_serve(
    path_prefix: str = DEFAULT_PATH_PREFIX,
    settings: Optional[Settings] = None,
    logger: Optional[logging.Logger] = None,
    server_factory: ServerFactory = create_server,
    runner: ServerRunner = run_server,
) -> int:
    """
    Start the River UI server and block until it stops.

    Args:
        path_prefix: Raw value of the -prefix flag.
        settings: Environment-backed settings (loaded when omitted).
        logger: Process logger, already configured.
        server_factory: Builds the application server from HandlerOpts.
        runner: Serves the composed handler and returns an exit code.

    Returns:
        Process exit code: 0 on clean shutdown, 1 on any failure.
    """
    logger = logger or LOGGER

    # 1. Configuration (validated before any connection is attempted)
    try:
        if settings is None:
            settings = get_settings()
        config = resolve_config(path_prefix, settings)
    except ValidationError as exc:
        logger.error("invalid configuration", extra={"extra_data": {"error": str(exc)}})
        return 1
    except ConfigurationError as exc:
        return _config_error(logger, exc, path_prefix)

    # 2. Database pool
    try:
        pool = open_pool(
            config.database_url,
            logger,
            pool_size=config.db_pool_size,
            max_overflow=config.db_max_overflow,
            pool_timeout=config.db_pool_timeout,
        )
    except ConfigurationError as exc:
        return _config_error(logger, exc, path_prefix)
    except ConnectionError as exc:
        logger.error("error connecting to db", extra={"extra_data": {"error": str(exc)}})
        return 1

    # The pool is released on every path from here on
    with pool:
        # 3. Application server
        try:
            client = QueueClient(pool, logger)
        except ConstructionError as exc:
            logger.error("error creating queue client", extra={"extra_data": {"error": str(exc)}})
            return 1

        opts = HandlerOpts(
            client=client,
            pool=pool,
            logger=logger,
            prefix=config.path_prefix,
            basic_auth_user=config.basic_auth_user,
            basic_auth_password=config.basic_auth_password,
        )
        try:
            server = server_factory(opts)
        except Exception as exc:
            logger.error("error creating handler", extra={"extra_data": {"error": str(exc)}})
            return 1

        try:
            server.start()
        except Exception as exc:
            logger.error("error starting UI server", extra={"extra_data": {"error": str(exc)}})
            return 1

        # 4. Middleware and listener
        handler = compose_middleware(server.handler(), config, logger)
        return runner(handler, config.port, logger, config.shutdown_timeout)


__all__ = ["init_and_serve"]
