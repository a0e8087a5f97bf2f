"""Application server boundary and the default River UI server.

The bootstrap only relies on the ``ApplicationServer`` contract: build it from
``HandlerOpts``, call ``start()`` once, then serve ``handler()``. The default
``RiverUIServer`` is a FastAPI application exposing health checks under the
configured prefix, with optional HTTP basic auth.
"""
from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Protocol, runtime_checkable

from fastapi import APIRouter, Depends, FastAPI, HTTPException, status
from fastapi.responses import JSONResponse
from fastapi.security import HTTPBasic, HTTPBasicCredentials
from sqlalchemy.exc import SQLAlchemyError
from starlette.types import ASGIApp

from core.db import ConnectionPool
from core.exceptions import ConstructionError
from core.queue_client import QueueClient


HEALTH_CHECK_MINIMAL = "minimal"
HEALTH_CHECK_COMPLETE = "complete"


@dataclass(frozen=True)
class HandlerOpts:
    """Everything the application server needs from the bootstrap."""

    client: Optional[QueueClient]
    pool: Optional[ConnectionPool]
    logger: Optional[logging.Logger]
    prefix: str = "/"
    basic_auth_user: str = ""
    basic_auth_password: str = ""


@runtime_checkable
class ApplicationServer(Protocol):
    """Contract the bootstrap expects from an application server."""

    def start(self) -> None:
        """Warm up; raise ConstructionError if the server cannot serve traffic."""
        ...

    def handler(self) -> ASGIApp:
        """Return the ASGI application that serves requests."""
        ...


ServerFactory = Callable[[HandlerOpts], ApplicationServer]


class RiverUIServer:
    """Default application server."""

    def __init__(self, opts: HandlerOpts) -> None:
        if opts.client is None:
            raise ConstructionError("client is required", stage="construct")
        if opts.pool is None:
            raise ConstructionError("pool is required", stage="construct")
        if opts.logger is None:
            raise ConstructionError("logger is required", stage="construct")
        if not opts.prefix.startswith("/"):
            raise ConstructionError(f"invalid prefix {opts.prefix!r}", stage="construct")

        self.opts = opts
        self.logger = opts.logger
        self._started = False
        self._app = self._create_app()

    @property
    def started(self) -> bool:
        return self._started

    def start(self) -> None:
        """Verify the database answers before accepting traffic."""
        try:
            self.opts.pool.ping()
        except SQLAlchemyError as exc:
            raise ConstructionError(f"database readiness check failed: {exc}", stage="start") from exc
        self._started = True
        self.logger.debug("UI server started", extra={"extra_data": {"prefix": self.opts.prefix}})

    def handler(self) -> ASGIApp:
        if not self._started:
            raise ConstructionError("server must be started before serving", stage="start")
        return self._app

    # -------------------------------------------------------------------------
    # FastAPI application
    # -------------------------------------------------------------------------

    def _basic_auth_dependency(self) -> Callable[..., None]:
        security = HTTPBasic(auto_error=False)
        expected_user = self.opts.basic_auth_user.encode("utf-8")
        expected_password = self.opts.basic_auth_password.encode("utf-8")

        def require_basic_auth(
            credentials: Optional[HTTPBasicCredentials] = Depends(security),
        ) -> None:
            if credentials is not None:
                user_ok = secrets.compare_digest(credentials.username.encode("utf-8"), expected_user)
                password_ok = secrets.compare_digest(credentials.password.encode("utf-8"), expected_password)
                if user_ok and password_ok:
                    return
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Unauthorized",
                headers={"WWW-Authenticate": "Basic"},
            )

        return require_basic_auth

    def _create_app(self) -> FastAPI:
        application = FastAPI(
            title="River UI",
            docs_url=None,
            redoc_url=None,
            openapi_url=None,
        )

        dependencies = []
        if self.opts.basic_auth_user and self.opts.basic_auth_password:
            dependencies.append(Depends(self._basic_auth_dependency()))

        router_prefix = "" if self.opts.prefix == "/" else self.opts.prefix
        router = APIRouter(prefix=router_prefix, dependencies=dependencies)
        pool = self.opts.pool
        logger = self.logger

        @router.get("/api/health-checks/{name}")
        def health_check(name: str):
            """Minimal check always passes; complete check also pings the database."""
            if name == HEALTH_CHECK_MINIMAL:
                return {"status": "ok"}
            if name == HEALTH_CHECK_COMPLETE:
                try:
                    pool.ping()
                except SQLAlchemyError as exc:
                    logger.error(
                        "Database health check failed",
                        extra={"extra_data": {"error": str(exc)}},
                    )
                    body: Dict[str, Any] = {"status": "unhealthy", "error": "database unavailable"}
                    return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=body)
                return {"status": "ok"}
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="health check not found")

        application.include_router(router)
        return application


def create_server(opts: HandlerOpts) -> RiverUIServer:
    """
    Build the default application server.

    Raises:
        ConstructionError: If required options are missing.
    """
    return RiverUIServer(opts)


__all__ = [
    "ApplicationServer",
    "HandlerOpts",
    "RiverUIServer",
    "ServerFactory",
    "create_server",
]
