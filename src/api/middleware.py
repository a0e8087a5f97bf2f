"""HTTP middleware chain wrapped around the application server.

Layering is fixed, outermost first:

1. ``RecoveryMiddleware`` - turns any unhandled exception into a 500 response.
2. ``RequestLoggingMiddleware`` - one structured log entry per request.
3. ``CORSMiddleware`` - restricts origins and methods.

Recovery is outermost so failures in the logging or CORS layers cannot escape
to the server; logging wraps CORS so rejected cross-origin requests are still
logged; CORS wraps the application so disallowed origins never reach it.
"""
from __future__ import annotations

import logging
import time
import uuid
from typing import Any, Dict, List, Optional, Tuple

from opentelemetry import trace
from starlette.middleware.cors import CORSMiddleware
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from core.config import ConfigurationBundle

CORS_ALLOWED_METHODS = ["GET", "HEAD", "POST", "PUT"]
CORS_ALLOWED_HEADERS = ["Origin", "Accept", "Content-Type", "X-Requested-With"]

REQUEST_ID_HEADER = "x-request-id"


class RecoveryMiddleware:
    """Contain exceptions raised while handling a request."""

    def __init__(self, app: ASGIApp, logger: logging.Logger) -> None:
        self.app = app
        self.logger = logger

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        response_started = False

        async def send_wrapper(message: Message) -> None:
            nonlocal response_started
            if message["type"] == "http.response.start":
                response_started = True
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        except Exception as exc:
            self.logger.error(
                "Recovered from panic in request handler",
                exc_info=True,
                extra={"extra_data": {
                    "method": scope.get("method", ""),
                    "path": scope.get("path", ""),
                    "error": str(exc),
                }},
            )
            if response_started:
                # Headers are already on the wire; the connection is closed by the server
                return
            await send({
                "type": "http.response.start",
                "status": 500,
                "headers": [(b"content-type", b"text/plain; charset=utf-8")],
            })
            await send({"type": "http.response.body", "body": b"Internal Server Error"})


class RequestLoggingMiddleware:
    """
    Log every request/response pair with structured fields.

    Fields: method, path, query, ip, user_agent, status, latency_ms and
    request_id. With ``with_trace`` enabled, the OpenTelemetry trace_id and
    span_id of the current span are added when a valid span is active.
    """

    def __init__(self, app: ASGIApp, logger: logging.Logger, with_trace: bool = False) -> None:
        self.app = app
        self.logger = logger
        self.with_trace = with_trace

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        start = time.perf_counter()
        headers = _headers(scope)
        request_id = headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        status_code = 500

        async def send_wrapper(message: Message) -> None:
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message["status"]
                response_headers = list(message.get("headers", []))
                response_headers.append((b"x-request-id", request_id.encode("latin-1")))
                message = {**message, "headers": response_headers}
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        except Exception as exc:
            self._log(scope, headers, request_id, 500, start, error=exc)
            raise
        self._log(scope, headers, request_id, status_code, start)

    def _log(
        self,
        scope: Scope,
        headers: Dict[str, str],
        request_id: str,
        status_code: int,
        start: float,
        error: Optional[BaseException] = None,
    ) -> None:
        client = scope.get("client")
        fields: Dict[str, Any] = {
            "method": scope.get("method", ""),
            "path": scope.get("path", ""),
            "query": scope.get("query_string", b"").decode("latin-1"),
            "ip": client[0] if client else "",
            "user_agent": headers.get("user-agent", ""),
            "status": status_code,
            "latency_ms": round((time.perf_counter() - start) * 1000, 2),
            "request_id": request_id,
        }
        if self.with_trace:
            fields.update(_trace_fields())
        if error is not None:
            fields["error"] = str(error)

        if error is not None or status_code >= 500:
            level = logging.ERROR
        elif status_code >= 400:
            level = logging.WARNING
        else:
            level = logging.INFO
        self.logger.log(level, "Incoming request", extra={"extra_data": fields})


def _headers(scope: Scope) -> Dict[str, str]:
    raw: List[Tuple[bytes, bytes]] = scope.get("headers", [])
    return {key.decode("latin-1").lower(): value.decode("latin-1") for key, value in raw}


def _trace_fields() -> Dict[str, str]:
    ctx = trace.get_current_span().get_span_context()
    if not ctx.is_valid:
        return {}
    return {
        "trace_id": f"{ctx.trace_id:032x}",
        "span_id": f"{ctx.span_id:016x}",
    }


def compose_middleware(
    app: ASGIApp,
    config: ConfigurationBundle,
    logger: logging.Logger,
) -> ASGIApp:
    """
    Wrap the application handler in the fixed middleware chain.

    Args:
        app: The application server's request handler (innermost).
        config: Validated configuration (CORS origins, OTEL flag).
        logger: Process logger shared by the logging and recovery layers.

    Returns:
        The outermost ASGI application to hand to the server.
    """
    handler: ASGIApp = CORSMiddleware(
        app,
        allow_origins=list(config.cors_origins),
        allow_methods=CORS_ALLOWED_METHODS,
        allow_headers=CORS_ALLOWED_HEADERS,
    )
    handler = RequestLoggingMiddleware(handler, logger=logger, with_trace=config.otel_enabled)
    return RecoveryMiddleware(handler, logger=logger)


__all__ = [
    "CORS_ALLOWED_METHODS",
    "RecoveryMiddleware",
    "RequestLoggingMiddleware",
    "compose_middleware",
]
