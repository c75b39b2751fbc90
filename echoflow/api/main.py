from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.responses import Response

from echoflow.api.dependencies import Dependencies, build_dependencies
from echoflow.api.errors import error_response
from echoflow.api.middleware import install_middleware
from echoflow.api.routes import (
    healthz,
    metrics_exposition,
    post_process_text,
    process_pipeline,
    readyz,
    transcribe_upload,
)
from echoflow.core.config import AppSettings, get_settings
from echoflow.core.logging import configure_logging, get_logger


logger = get_logger(__name__)


def create_app(settings: Optional[AppSettings] = None, deps: Optional[Dependencies] = None) -> FastAPI:
    settings = settings or get_settings()
    owns_deps = deps is None
    deps = deps or build_dependencies(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings.log_level)
        logger.info(
            "starting app",
            extra={
                "component": "api",
                "upstream_base_url": settings.upstream_base_url,
                "fallback_credential": bool(settings.upstream_api_key),
                "transcription_model": settings.transcription_model,
                "postprocess_model": settings.postprocess_model,
            },
        )
        try:
            yield
        finally:
            # Close the shared upstream connection pool if we created it
            close = getattr(deps.upstream, "aclose", None)
            if owns_deps and callable(close):
                await close()
            logger.info("shutdown complete", extra={"component": "api"})

    app = FastAPI(title="echoflow", lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url=None)
    app.state.settings = settings
    app.state.deps = deps

    install_middleware(app, settings.upstream_api_key, deps.metrics)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        if exc.status_code == 404:
            return error_response(request, 404, "not_found", "route not found")
        if exc.status_code == 405:
            return error_response(request, 405, "method_not_allowed", "method not allowed")
        return error_response(request, exc.status_code, "invalid_request", str(exc.detail))

    @app.get("/healthz")
    async def healthz_endpoint() -> JSONResponse:
        return await healthz()

    @app.get("/readyz")
    async def readyz_endpoint(request: Request) -> JSONResponse:
        return await readyz(request, deps, settings)

    @app.get("/metrics")
    async def metrics_endpoint() -> Response:
        return await metrics_exposition(deps)

    @app.post("/v1/transcriptions")
    async def transcriptions_endpoint(request: Request) -> JSONResponse:
        return await transcribe_upload(request, deps, settings)

    @app.post("/v1/post-process")
    async def post_process_endpoint(request: Request) -> JSONResponse:
        return await post_process_text(request, deps)

    @app.post("/v1/pipeline/process")
    async def pipeline_process_endpoint(request: Request) -> JSONResponse:
        return await process_pipeline(request, deps, settings)

    return app
