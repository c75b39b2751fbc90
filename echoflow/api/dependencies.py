from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol

import httpx

from echoflow.core.config import AppSettings
from echoflow.core.metrics import Metrics
from echoflow.services.pipeline import PipelineResult, PipelineService
from echoflow.services.postprocess import PostProcessResult, PostProcessService
from echoflow.services.transcribe import TranscriptionService
from echoflow.services.upstream import AudioInput, UpstreamClient
from echoflow.types import RequestContext


class TranscriptionAPI(Protocol):
    async def transcribe(
        self, ctx: RequestContext, audio: AudioInput, filename: str = "", model: Optional[str] = None
    ) -> str: ...


class PostProcessAPI(Protocol):
    async def process(
        self,
        ctx: RequestContext,
        transcript: str,
        context_summary: str = "",
        vocabulary: str = "",
        custom_system_prompt: Optional[str] = None,
        model: Optional[str] = None,
        include_debug_prompt: bool = False,
    ) -> PostProcessResult: ...


class PipelineAPI(Protocol):
    async def process(
        self,
        ctx: RequestContext,
        audio: AudioInput,
        filename: str = "",
        context_summary: str = "",
        vocabulary: str = "",
        custom_system_prompt: Optional[str] = None,
        transcription_model: Optional[str] = None,
        post_process_model: Optional[str] = None,
        include_debug: bool = False,
    ) -> PipelineResult: ...


class UpstreamChecker(Protocol):
    async def check_models(self, ctx: RequestContext) -> None: ...


@dataclass
class Dependencies:
    """Shared, read-mostly collaborators used by every request."""

    transcription: TranscriptionAPI
    post_process: PostProcessAPI
    pipeline: PipelineAPI
    upstream: UpstreamChecker
    metrics: Metrics


def build_dependencies(settings: AppSettings, metrics: Optional[Metrics] = None) -> Dependencies:
    metrics = metrics or Metrics()
    http_client = httpx.AsyncClient(
        timeout=httpx.Timeout(float(settings.request_timeout_seconds)),
        limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
    )
    upstream = UpstreamClient(
        settings.upstream_base_url,
        settings.upstream_api_key,
        http_client=http_client,
        observer=metrics.observe_upstream,
    )
    transcription = TranscriptionService(
        upstream, settings.transcription_model, float(settings.transcription_timeout_seconds)
    )
    post_process = PostProcessService(
        upstream, settings.postprocess_model, float(settings.postprocess_timeout_seconds)
    )
    pipeline = PipelineService(
        transcription, post_process, settings.transcription_model, settings.postprocess_model
    )
    return Dependencies(
        transcription=transcription,
        post_process=post_process,
        pipeline=pipeline,
        upstream=upstream,
        metrics=metrics,
    )
