from __future__ import annotations

import asyncio

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.responses import Response

from echoflow.api.dependencies import Dependencies
from echoflow.api.errors import details_for_error, error_response, json_response
from echoflow.api.transcription_routes import request_context
from echoflow.core.config import AppSettings
from echoflow.core.logging import get_logger
from echoflow.types import HealthResponse, ReadyResponse


logger = get_logger(__name__)

SERVICE_NAME = "EchoFlow"
READINESS_TIMEOUT_SECONDS = 2.0


async def healthz() -> JSONResponse:
    return json_response(200, HealthResponse(ok=True))


async def readyz(request: Request, deps: Dependencies, settings: AppSettings) -> JSONResponse:
    ctx = request_context(request)
    # Without any credential there is nothing to probe with; report ready.
    if not settings.upstream_api_key and not ctx.api_key:
        return json_response(200, ReadyResponse(ok=True, service_name=SERVICE_NAME))

    try:
        await asyncio.wait_for(deps.upstream.check_models(ctx), timeout=READINESS_TIMEOUT_SECONDS)
    except Exception as e:
        logger.warning(
            "readiness check failed",
            extra={"component": "readyz", "request_id": ctx.request_id, "error": str(e) or type(e).__name__},
        )
        return error_response(request, 503, "not_ready", "upstream check failed", details_for_error(e))
    return json_response(200, ReadyResponse(ok=True, service_name=SERVICE_NAME))


async def metrics_exposition(deps: Dependencies) -> Response:
    body, content_type = deps.metrics.render()
    return Response(content=body, media_type=content_type)
