"""Job queue client handle passed to the application server."""
from __future__ import annotations

import logging
from typing import Optional

from .db import ConnectionPool
from .exceptions import ConstructionError
from .logging_config import get_logger

LOGGER = get_logger(__name__)


class QueueClient:
    """
    Client handle for the job queue backed by a connection pool.

    The bootstrap only builds it and hands it to the application server,
    which owns all queue semantics.
    """

    def __init__(self, pool: ConnectionPool, logger: Optional[logging.Logger] = None) -> None:
        if pool is None:
            raise ConstructionError("error creating queue client: no connection pool", stage="client")
        if pool.closed:
            raise ConstructionError("error creating queue client: connection pool is closed", stage="client")
        self.pool = pool
        self.logger = logger or LOGGER

    @property
    def driver(self) -> str:
        return self.pool.dialect

    def __repr__(self) -> str:
        return f"QueueClient(driver={self.driver!r})"
