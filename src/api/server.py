"""HTTP listener for the composed application."""
from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
import threading
from typing import Iterator, Optional

import h11
import uvicorn
from starlette.types import ASGIApp
from uvicorn.protocols.http.h11_impl import H11Protocol

from core.exceptions import ListenerError

# IPv4 wildcard; binding "::" fails on hosts with IPv6 disabled
LISTEN_HOST = "0.0.0.0"
READ_HEADER_TIMEOUT = 5.0  # seconds
SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class HeaderTimeoutH11Protocol(H11Protocol):
    """
    h11 protocol that drops connections which do not send a full request head
    within ``read_header_timeout`` seconds of connecting (slowloris guard).
    """

    read_header_timeout = READ_HEADER_TIMEOUT

    def connection_made(self, transport: asyncio.Transport) -> None:  # type: ignore[override]
        super().connection_made(transport)
        self._header_timer: Optional[asyncio.TimerHandle] = self.loop.call_later(
            self.read_header_timeout, self._on_header_timeout
        )

    def data_received(self, data: bytes) -> None:
        super().data_received(data)
        if self._header_timer is not None and self.conn.their_state is not h11.IDLE:
            self._cancel_header_timer()

    def connection_lost(self, exc: Optional[Exception]) -> None:
        self._cancel_header_timer()
        super().connection_lost(exc)

    def _cancel_header_timer(self) -> None:
        timer = getattr(self, "_header_timer", None)
        if timer is not None:
            timer.cancel()
            self._header_timer = None

    def _on_header_timeout(self) -> None:
        self._header_timer = None
        if not self.transport.is_closing():
            self.logger.debug("Closing connection: request headers not received in time")
            self.transport.close()


class GracefulServer(uvicorn.Server):
    """
    uvicorn server whose SIGINT/SIGTERM handling ends in a normal return.

    Stock uvicorn re-raises the captured signal once shutdown completes, which
    kills the process before callers can release their resources. Here a
    signal only requests the graceful shutdown and ``run()`` returns.
    """

    @contextlib.contextmanager
    def capture_signals(self) -> Iterator[None]:
        if threading.current_thread() is not threading.main_thread():
            yield
            return
        previous = {sig: signal.signal(sig, self.handle_exit) for sig in SHUTDOWN_SIGNALS}
        try:
            yield
        finally:
            for sig, handler in previous.items():
                signal.signal(sig, handler)


def build_server_config(app: ASGIApp, port: int, shutdown_timeout: int = 10) -> uvicorn.Config:
    """
    Create the uvicorn configuration for the listener.

    ``:<port>`` is served on every IPv4 interface (``LISTEN_HOST``); IPv6
    clients need a dual-stack proxy in front.
    """
    return uvicorn.Config(
        app,
        host=LISTEN_HOST,
        port=port,
        http=HeaderTimeoutH11Protocol,
        lifespan="off",
        log_config=None,  # Process logging is configured by setup_logging
        access_log=False,  # Requests are logged by RequestLoggingMiddleware
        timeout_graceful_shutdown=shutdown_timeout,
    )


def _parse_port(port: str) -> int:
    try:
        value = int(port)
    except ValueError as exc:
        raise ListenerError(f"invalid port {port!r}") from exc
    if not 0 <= value <= 65535:
        raise ListenerError(f"port out of range: {port!r}")
    return value


def serve(app: ASGIApp, port: str, logger: logging.Logger, shutdown_timeout: int = 10) -> None:
    """
    Bind the listener and block until it stops.

    Returns normally on a clean shutdown.

    Raises:
        ListenerError: If the port is invalid, the listener cannot bind, or it
            stops with an error.
    """
    server = GracefulServer(build_server_config(app, _parse_port(port), shutdown_timeout))
    logger.info(f"starting server on :{port}")

    try:
        server.run()
    except SystemExit as exc:
        # uvicorn exits the process when it cannot bind
        raise ListenerError(f"listener exited during startup (code {exc.code})") from exc
    except Exception as exc:
        raise ListenerError(f"error from listener: {exc}") from exc

    if not server.started:
        raise ListenerError("listener stopped before it started serving")


def run_server(app: ASGIApp, port: str, logger: logging.Logger, shutdown_timeout: int = 10) -> int:
    """
    Serve ``app`` on ``:<port>`` and translate the outcome into an exit code.

    Returns:
        0 after a clean shutdown, 1 on any listener failure.
    """
    try:
        serve(app, port, logger, shutdown_timeout)
    except ListenerError as exc:
        logger.error("error from listener", extra={"extra_data": {"error": str(exc)}})
        return 1
    logger.info("server stopped")
    return 0


__all__ = [
    "GracefulServer",
    "HeaderTimeoutH11Protocol",
    "READ_HEADER_TIMEOUT",
    "build_server_config",
    "run_server",
    "serve",
]
