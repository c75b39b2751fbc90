from __future__ import annotations

import json
import re
import time
from dataclasses import dataclass
from typing import IO, Callable, Dict, List, Optional, Union

import httpx
from pydantic import BaseModel, ValidationError

from echoflow.core.logging import get_logger
from echoflow.types import RequestContext, TokenUsage


logger = get_logger(__name__)

MAX_ERROR_BODY_CHARS = 4096

ObserverFunc = Callable[[str, int, float], None]
AudioInput = Union[bytes, IO[bytes]]


class UpstreamError(Exception):
    """Non-2xx response from the OpenAI-compatible upstream."""

    def __init__(self, status_code: int, body: str = "") -> None:
        super().__init__(f"upstream request failed with status {status_code}")
        self.status_code = status_code
        self.body = body


class UpstreamResponseError(ValueError):
    """A 2xx upstream response whose body could not be interpreted."""


class MissingCredentialError(RuntimeError):
    pass


@dataclass(frozen=True)
class ChatMessage:
    role: str
    content: str


@dataclass(frozen=True)
class ChatCompletion:
    content: str
    usage: Optional[TokenUsage] = None


class _Message(BaseModel):
    content: Optional[str] = None


class _Choice(BaseModel):
    message: _Message = _Message()


class _Usage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class _ChatCompletionPayload(BaseModel):
    choices: List[_Choice] = []
    usage: Optional[_Usage] = None


class UpstreamClient:
    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        http_client: Optional[httpx.AsyncClient] = None,
        observer: Optional[ObserverFunc] = None,
        timeout: float = 25.0,
    ) -> None:
        self.base_url = base_url.strip().rstrip("/")
        self.api_key = (api_key or "").strip()
        self.http_client = http_client or httpx.AsyncClient(timeout=timeout)
        self.observer = observer

    async def aclose(self) -> None:
        await self.http_client.aclose()

    async def transcribe(self, ctx: RequestContext, audio: AudioInput, filename: str, model: str) -> str:
        started = time.monotonic()
        status = 0
        try:
            headers = self._auth_headers(ctx)
            response = await self.http_client.post(
                f"{self.base_url}/audio/transcriptions",
                headers=headers,
                data={"model": model},
                files={"file": (filename, audio)},
            )
            status = response.status_code
            if not response.is_success:
                raise UpstreamError(status, truncate_body(response.text))
            return parse_transcript(response.text)
        finally:
            self._observe("audio_transcriptions", status, time.monotonic() - started, ctx)

    async def chat_completion(
        self,
        ctx: RequestContext,
        model: str,
        temperature: float,
        messages: List[ChatMessage],
    ) -> ChatCompletion:
        started = time.monotonic()
        status = 0
        try:
            headers = self._auth_headers(ctx)
            payload = {
                "model": model,
                "temperature": temperature,
                "messages": [{"role": m.role, "content": m.content} for m in messages],
            }
            response = await self.http_client.post(
                f"{self.base_url}/chat/completions",
                headers=headers,
                json=payload,
            )
            status = response.status_code
            if not response.is_success:
                raise UpstreamError(status, truncate_body(response.text))
            return parse_chat_completion(response.content)
        finally:
            self._observe("chat_completions", status, time.monotonic() - started, ctx)

    async def check_models(self, ctx: RequestContext) -> None:
        started = time.monotonic()
        status = 0
        try:
            headers = self._auth_headers(ctx)
            response = await self.http_client.get(f"{self.base_url}/models", headers=headers)
            status = response.status_code
            if not response.is_success:
                raise UpstreamError(status, truncate_body(response.text))
        finally:
            self._observe("models", status, time.monotonic() - started, ctx)

    def resolve_api_key(self, ctx: RequestContext) -> str:
        return (ctx.api_key or "").strip() or self.api_key

    def _auth_headers(self, ctx: RequestContext) -> Dict[str, str]:
        key = self.resolve_api_key(ctx)
        if not key:
            raise MissingCredentialError("no upstream credential available for this request")
        return {"Authorization": f"Bearer {key}"}

    def _observe(self, endpoint: str, status: int, duration: float, ctx: RequestContext) -> None:
        logger.debug(
            "upstream call",
            extra={
                "component": "upstream",
                "request_id": ctx.request_id,
                "endpoint": endpoint,
                "status": status,
                "duration_ms": int(duration * 1000),
            },
        )
        if self.observer is not None:
            self.observer(endpoint, status, duration)


def parse_transcript(body: str) -> str:
    try:
        parsed = json.loads(body)
    except ValueError:
        parsed = None
    if isinstance(parsed, dict):
        text = parsed.get("text")
        if isinstance(text, str) and text:
            return text

    plain_text = join_lines(body).strip()
    if not plain_text:
        raise UpstreamResponseError("invalid transcription response")
    return plain_text


def parse_chat_completion(body: bytes) -> ChatCompletion:
    try:
        parsed = _ChatCompletionPayload.model_validate_json(body)
    except ValidationError as e:
        raise UpstreamResponseError(f"invalid chat completion response: {e}") from e
    if not parsed.choices:
        raise UpstreamResponseError("missing choices")
    content = parsed.choices[0].message.content
    if not content:
        raise UpstreamResponseError("missing choices[0].message.content")

    usage = None
    if parsed.usage is not None:
        usage = TokenUsage(
            prompt_tokens=parsed.usage.prompt_tokens,
            completion_tokens=parsed.usage.completion_tokens,
            total_tokens=parsed.usage.total_tokens,
        )
    return ChatCompletion(content=content, usage=usage)


_LINE_BREAKS = re.compile(r"[\r\n]+")


def join_lines(s: str) -> str:
    return " ".join(part for part in _LINE_BREAKS.split(s) if part)


def truncate_body(s: str) -> str:
    s = s.strip()
    if len(s) <= MAX_ERROR_BODY_CHARS:
        return s
    return s[:MAX_ERROR_BODY_CHARS] + "..."
