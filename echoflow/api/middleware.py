"""HTTP middleware chain.

Registered so that requests flow, outermost first:
request id -> access log -> panic containment -> authentication -> routes.

Each layer is a plain ASGI callable that hands the server's ``receive``
through untouched, so ``Request.is_disconnected()`` in a handler observes
the real connection.
"""

from __future__ import annotations

import secrets
import time

from fastapi import FastAPI, Request
from starlette.datastructures import Headers, MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from echoflow.api.errors import REQUEST_ID_HEADER, error_response, request_id_of
from echoflow.auth import extract_bearer_token, is_public_path
from echoflow.core.logging import bind_request_id, get_logger, reset_request_id
from echoflow.core.metrics import Metrics


logger = get_logger(__name__)


def new_request_id() -> str:
    return secrets.token_hex(12)


def route_label(scope: Scope) -> str:
    route = scope.get("route")
    path = getattr(route, "path", "")
    return path or scope.get("path", "")


def _state(scope: Scope) -> dict:
    # Request.state is backed by this dict, so handlers see what is set here
    return scope.setdefault("state", {})


class RequestIdMiddleware:
    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request_id = (Headers(scope=scope).get(REQUEST_ID_HEADER) or "").strip() or new_request_id()
        _state(scope)["request_id"] = request_id

        async def send_with_request_id(message: Message) -> None:
            if message["type"] == "http.response.start":
                MutableHeaders(scope=message)[REQUEST_ID_HEADER] = request_id
            await send(message)

        token = bind_request_id(request_id)
        try:
            await self.app(scope, receive, send_with_request_id)
        finally:
            reset_request_id(token)


class AccessLogMiddleware:
    def __init__(self, app: ASGIApp, metrics: Metrics) -> None:
        self.app = app
        self.metrics = metrics

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        started = time.monotonic()
        status = 500
        sent_bytes = 0

        async def send_and_count(message: Message) -> None:
            nonlocal status, sent_bytes
            if message["type"] == "http.response.start":
                status = message["status"]
            elif message["type"] == "http.response.body":
                sent_bytes += len(message.get("body", b""))
            await send(message)

        try:
            await self.app(scope, receive, send_and_count)
        finally:
            duration = time.monotonic() - started
            route = route_label(scope)
            self.metrics.observe_http(route, scope["method"], status, duration)
            logger.info(
                "http_request",
                extra={
                    "component": "api",
                    "request_id": _state(scope).get("request_id", ""),
                    "method": scope["method"],
                    "route": route,
                    "path": scope.get("path", ""),
                    "status": status,
                    "bytes": sent_bytes,
                    "duration_ms": int(duration * 1000),
                },
            )


class PanicMiddleware:
    """Turn any exception escaping the routes into a bare 500 envelope."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        response_started = False

        async def send_tracking_start(message: Message) -> None:
            nonlocal response_started
            if message["type"] == "http.response.start":
                response_started = True
            await send(message)

        try:
            await self.app(scope, receive, send_tracking_start)
        except Exception:
            request = Request(scope, receive)
            logger.exception(
                "panic recovered",
                extra={"component": "api", "request_id": request_id_of(request), "path": scope.get("path", "")},
            )
            if response_started:
                raise
            response = error_response(request, 500, "internal_error", "internal server error")
            await response(scope, receive, send)


class AuthenticationMiddleware:
    def __init__(self, app: ASGIApp, fallback_api_key: str = "") -> None:
        self.app = app
        self.fallback_api_key = fallback_api_key

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        token, has_header, ok = extract_bearer_token(Headers(scope=scope).get("Authorization"))
        if not is_public_path(scope.get("path", "")):
            rejection = None
            if has_header and not ok:
                rejection = "Authorization must be Bearer <upstream_api_token>"
            elif not token and not self.fallback_api_key:
                rejection = "missing upstream bearer token"
            if rejection is not None:
                response = error_response(Request(scope, receive), 401, "unauthorized", rejection)
                await response(scope, receive, send)
                return

        _state(scope)["upstream_api_key"] = token or None
        await self.app(scope, receive, send)


def install_middleware(app: FastAPI, fallback_api_key: str, metrics: Metrics) -> None:
    # Starlette wraps each newly added middleware around the existing stack,
    # so these are added innermost first.
    app.add_middleware(AuthenticationMiddleware, fallback_api_key=fallback_api_key)
    app.add_middleware(PanicMiddleware)
    app.add_middleware(AccessLogMiddleware, metrics=metrics)
    app.add_middleware(RequestIdMiddleware)
