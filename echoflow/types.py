from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, StrictBool


@dataclass(frozen=True)
class RequestContext:
    """Per-request values threaded explicitly from the gateway to the upstream client."""

    request_id: str
    # Caller-supplied upstream credential; overrides the server fallback for this request only.
    api_key: Optional[str] = None


@dataclass(frozen=True)
class TokenUsage:
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


# Wire models


class APIError(BaseModel):
    code: str
    message: str
    details: Optional[Dict[str, Any]] = None


class ErrorResponse(BaseModel):
    error: APIError
    request_id: Optional[str] = None


class HealthResponse(BaseModel):
    ok: bool


class ReadyResponse(BaseModel):
    ok: bool
    service_name: Optional[str] = None


class TokenUsagePayload(BaseModel):
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int

    @classmethod
    def from_usage(cls, usage: Optional[TokenUsage]) -> Optional["TokenUsagePayload"]:
        if usage is None:
            return None
        return cls(
            prompt_tokens=usage.prompt_tokens,
            completion_tokens=usage.completion_tokens,
            total_tokens=usage.total_tokens,
        )


class TranscriptionResponse(BaseModel):
    text: str


class PostProcessRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    transcript: str = ""
    context_summary: str = ""
    custom_vocabulary: str = ""
    custom_system_prompt: str = ""
    model: str = ""
    # Deprecated: accepted for backwards compatibility, never reflected in responses.
    include_debug_prompt: StrictBool = False


class PostProcessResponse(BaseModel):
    transcript: str
    status: str
    usage: Optional[TokenUsagePayload] = None


class PipelineTimings(BaseModel):
    transcription: int
    post_processing: int
    total: int


class PipelineProcessResponse(BaseModel):
    raw_transcript: str
    final_transcript: str
    post_processing_status: str
    post_processing_usage: Optional[TokenUsagePayload] = None
    timings_ms: PipelineTimings
