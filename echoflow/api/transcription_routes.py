from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional, Tuple

from fastapi import Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.datastructures import FormData, UploadFile
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.formparsers import MultiPartException
from starlette.requests import ClientDisconnect
from starlette.types import Message, Receive

from echoflow.api.cancellation import run_until_disconnected
from echoflow.api.dependencies import Dependencies
from echoflow.api.errors import (
    ClientDisconnected,
    error_response,
    json_response,
    mapped_error_response,
    request_id_of,
)
from echoflow.core.config import AppSettings
from echoflow.core.logging import get_logger
from echoflow.types import (
    PipelineProcessResponse,
    PipelineTimings,
    PostProcessRequest,
    PostProcessResponse,
    RequestContext,
    TokenUsagePayload,
    TranscriptionResponse,
)


logger = get_logger(__name__)

MAX_JSON_BODY_BYTES = 1 << 20
POST_PROCESS_STATUS = "post-processing succeeded"

_TRUE_VALUES = {"1", "t", "T", "TRUE", "true", "True"}
_FALSE_VALUES = {"0", "f", "F", "FALSE", "false", "False"}


class RequestTooLarge(Exception):
    pass


class InvalidMultipart(Exception):
    pass


class MissingFile(Exception):
    pass


def request_context(request: Request) -> RequestContext:
    return RequestContext(
        request_id=request_id_of(request),
        api_key=getattr(request.state, "upstream_api_key", None),
    )


def parse_optional_bool(value: Optional[str]) -> bool:
    value = (value or "").strip()
    if not value:
        return False
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ValueError(f"invalid boolean: {value!r}")


def form_text(form: FormData, key: str) -> str:
    value = form.get(key)
    return value if isinstance(value, str) else ""


def _content_length(request: Request) -> Optional[int]:
    raw = request.headers.get("content-length")
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def limit_body(receive: Receive, max_bytes: int) -> Receive:
    """Wrap an ASGI ``receive`` so reading stops once ``max_bytes`` is exceeded."""
    received = 0

    async def limited_receive() -> Message:
        nonlocal received
        message = await receive()
        if message["type"] == "http.request":
            received += len(message.get("body", b""))
            if received > max_bytes:
                raise RequestTooLarge()
        return message

    return limited_receive


@asynccontextmanager
async def multipart_audio(request: Request, max_bytes: int) -> AsyncIterator[Tuple[UploadFile, FormData]]:
    """Parse a multipart upload carrying a ``file`` part.

    The body is cut off at ``max_bytes`` whether or not the caller sent a
    Content-Length. The parsed form is always closed on exit, whether the
    handler succeeds, fails validation, or raises.
    """
    length = _content_length(request)
    if length is not None and length > max_bytes:
        raise RequestTooLarge()

    limited = Request(request.scope, limit_body(request.receive, max_bytes))
    try:
        form = await limited.form()
    except (MultiPartException, StarletteHTTPException) as e:
        raise InvalidMultipart(str(e)) from e
    except ClientDisconnect as e:
        raise ClientDisconnected("client closed request") from e

    try:
        upload = form.get("file")
        if not isinstance(upload, UploadFile):
            raise MissingFile()
        yield upload, form
    finally:
        await form.close()


async def read_upload(upload: UploadFile) -> bytes:
    # Large uploads are spooled to disk; UploadFile reads those in a worker thread
    await upload.seek(0)
    return await upload.read()


def multipart_error_response(request: Request, err: Exception, max_bytes: int) -> JSONResponse:
    if isinstance(err, RequestTooLarge):
        return error_response(request, 413, "request_too_large", f"request exceeds {max_bytes} bytes")
    if isinstance(err, MissingFile):
        return error_response(request, 400, "invalid_request", "multipart field 'file' is required")
    return error_response(request, 400, "invalid_request", "invalid multipart form data")


async def transcribe_upload(request: Request, deps: Dependencies, settings: AppSettings) -> JSONResponse:
    ctx = request_context(request)
    max_bytes = settings.max_upload_bytes
    try:
        async with multipart_audio(request, max_bytes) as (upload, form):
            try:
                audio = await read_upload(upload)
                text = await run_until_disconnected(
                    request,
                    deps.transcription.transcribe(
                        ctx, audio, upload.filename or "", form_text(form, "model").strip()
                    ),
                )
            except Exception as e:
                return mapped_error_response(request, e)
    except (RequestTooLarge, InvalidMultipart, MissingFile) as e:
        return multipart_error_response(request, e, max_bytes)
    except ClientDisconnected as e:
        return mapped_error_response(request, e)

    return json_response(200, TranscriptionResponse(text=text))


async def _read_json_body(request: Request) -> bytes:
    length = _content_length(request)
    if length is not None and length > MAX_JSON_BODY_BYTES:
        raise RequestTooLarge()
    chunks = []
    size = 0
    async for chunk in request.stream():
        size += len(chunk)
        if size > MAX_JSON_BODY_BYTES:
            raise RequestTooLarge()
        chunks.append(chunk)
    return b"".join(chunks)


async def post_process_text(request: Request, deps: Dependencies) -> JSONResponse:
    ctx = request_context(request)
    try:
        raw = await _read_json_body(request)
    except RequestTooLarge:
        return error_response(request, 413, "request_too_large", "JSON body too large")
    except ClientDisconnect:
        return mapped_error_response(request, ClientDisconnected("client closed request"))

    try:
        req = PostProcessRequest.model_validate_json(raw)
    except ValidationError as e:
        logger.info(
            "rejected post-process body",
            extra={"component": "api", "request_id": ctx.request_id, "error_count": e.error_count()},
        )
        return error_response(request, 400, "invalid_request", "invalid JSON body")
    if not req.transcript.strip():
        return error_response(request, 400, "invalid_request", "transcript is required")

    try:
        result = await run_until_disconnected(
            request,
            deps.post_process.process(
                ctx,
                req.transcript,
                context_summary=req.context_summary,
                vocabulary=req.custom_vocabulary,
                custom_system_prompt=req.custom_system_prompt,
                model=req.model,
                include_debug_prompt=req.include_debug_prompt,
            ),
        )
    except Exception as e:
        return mapped_error_response(request, e)

    return json_response(
        200,
        PostProcessResponse(
            transcript=result.transcript,
            status=POST_PROCESS_STATUS,
            usage=TokenUsagePayload.from_usage(result.usage),
        ),
    )


async def process_pipeline(request: Request, deps: Dependencies, settings: AppSettings) -> JSONResponse:
    ctx = request_context(request)
    max_bytes = settings.max_upload_bytes
    try:
        async with multipart_audio(request, max_bytes) as (upload, form):
            try:
                include_debug = parse_optional_bool(form_text(form, "include_debug"))
            except ValueError:
                return error_response(request, 400, "invalid_request", "include_debug must be a boolean")

            try:
                audio = await read_upload(upload)
                result = await run_until_disconnected(
                    request,
                    deps.pipeline.process(
                        ctx,
                        audio,
                        filename=upload.filename or "",
                        context_summary=form_text(form, "context_summary"),
                        vocabulary=form_text(form, "custom_vocabulary"),
                        custom_system_prompt=form_text(form, "custom_system_prompt"),
                        transcription_model=form_text(form, "transcription_model"),
                        post_process_model=form_text(form, "post_process_model"),
                        include_debug=include_debug,
                    ),
                )
            except Exception as e:
                return mapped_error_response(request, e)
    except (RequestTooLarge, InvalidMultipart, MissingFile) as e:
        return multipart_error_response(request, e, max_bytes)
    except ClientDisconnected as e:
        return mapped_error_response(request, e)

    if result.fell_back:
        deps.metrics.inc_pipeline_fallback()

    return json_response(
        200,
        PipelineProcessResponse(
            raw_transcript=result.raw_transcript,
            final_transcript=result.final_transcript,
            post_processing_status=result.status,
            post_processing_usage=TokenUsagePayload.from_usage(result.usage),
            timings_ms=PipelineTimings(
                transcription=int(result.timings.transcription * 1000),
                post_processing=int(result.timings.post_processing * 1000),
                total=int(result.timings.total * 1000),
            ),
        ),
    )
