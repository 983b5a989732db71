"""Request pipeline shared by every route: ids, access log, recovery, timeout."""
from __future__ import annotations

import logging
import os
import time
import uuid
from typing import List

import anyio
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response
from starlette.types import ASGIApp, Message, Receive, Scope, Send
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from .models import ErrorResponse

access_logger = logging.getLogger("agencycrm.access")
logger = logging.getLogger("agencycrm.middleware")

REQUEST_ID_HEADER = "X-Request-ID"


def _trusted_proxy_hosts() -> List[str] | str:
    raw = os.getenv("TRUSTED_PROXIES")
    if not raw:
        return "*"
    hosts = [item.strip() for item in raw.split(",") if item.strip()]
    return hosts or "*"


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=ErrorResponse(error=message).model_dump())


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Tag each request with an id, log it, and turn crashes into a 500."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        request.state.request_id = request_id
        client_host = request.client.host if request.client else "-"
        started = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception:
            logger.exception(
                "Unhandled error while serving %s %s (request_id=%s)",
                request.method,
                request.url.path,
                request_id,
            )
            response = error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")

        response.headers[REQUEST_ID_HEADER] = request_id
        elapsed_ms = (time.perf_counter() - started) * 1000
        access_logger.info(
            '%s "%s %s" %s %.1fms request_id=%s',
            client_host,
            request.method,
            request.url.path,
            response.status_code,
            elapsed_ms,
            request_id,
        )
        return response


class TimeoutMiddleware:
    """Abort handlers that have not produced a response within ``timeout`` seconds.

    Cancellation reaches the awaiting handler, so work offloaded with
    ``anyio.to_thread.run_sync(..., abandon_on_cancel=True)`` stops blocking it.
    """

    def __init__(self, app: ASGIApp, *, timeout: float) -> None:
        self.app = app
        self.timeout = timeout

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
            with anyio.fail_after(self.timeout):
                await self.app(scope, receive, send_wrapper)
        except TimeoutError:
            logger.warning(
                "%s %s exceeded the %ss request timeout",
                scope.get("method"),
                scope.get("path"),
                self.timeout,
            )
            if response_started:
                return
            response = error_response(status.HTTP_504_GATEWAY_TIMEOUT, "Request timed out")
            await response(scope, receive, send)


def install_middleware(app: FastAPI, *, request_timeout: float) -> None:
    """Register the middleware stack; the last one added runs first."""

    app.add_middleware(TimeoutMiddleware, timeout=request_timeout)
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=_trusted_proxy_hosts())


__all__ = [
    "REQUEST_ID_HEADER",
    "RequestContextMiddleware",
    "TimeoutMiddleware",
    "error_response",
    "install_middleware",
]
