from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional

import httpx
from fastapi import Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from echoflow.services.upstream import UpstreamError
from echoflow.types import APIError, ErrorResponse


REQUEST_ID_HEADER = "X-Request-Id"
STATUS_CLIENT_CLOSED_REQUEST = 499


class ClientDisconnected(Exception):
    """The caller went away before the response was ready."""


def request_id_of(request: Request) -> str:
    return getattr(request.state, "request_id", "") or ""


def json_response(status_code: int, body: BaseModel, headers: Optional[Dict[str, str]] = None) -> JSONResponse:
    response = JSONResponse(
        status_code=status_code,
        content=body.model_dump(exclude_none=True),
        headers=headers,
    )
    response.headers["X-Content-Type-Options"] = "nosniff"
    return response


def error_response(
    request: Request,
    status_code: int,
    code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
) -> JSONResponse:
    request_id = request_id_of(request)
    headers = {REQUEST_ID_HEADER: request_id} if request_id else None
    body = ErrorResponse(
        error=APIError(code=code, message=message, details=details),
        request_id=request_id or None,
    )
    return json_response(status_code, body, headers=headers)


def details_for_error(err: Optional[BaseException]) -> Optional[Dict[str, Any]]:
    if err is None:
        return None
    details: Dict[str, Any] = {"error": str(err) or type(err).__name__}
    if isinstance(err, UpstreamError):
        details["upstream_status"] = err.status_code
        if err.body:
            details["upstream_body"] = err.body
    return details


def is_timeout(err: BaseException) -> bool:
    return isinstance(err, (asyncio.TimeoutError, httpx.TimeoutException))


def mapped_error_response(request: Request, err: Exception) -> JSONResponse:
    """Translate a service-layer failure into the error envelope."""
    if isinstance(err, UpstreamError):
        status_code, code, message = 502, "upstream_request_failed", "upstream request failed"
    elif is_timeout(err):
        status_code, code, message = 504, "timeout", "request timed out"
    elif isinstance(err, ClientDisconnected):
        status_code, code, message = STATUS_CLIENT_CLOSED_REQUEST, "canceled", "request canceled"
    else:
        status_code, code, message = 500, "internal_error", "request failed"
    return error_response(request, status_code, code, message, details_for_error(err))
