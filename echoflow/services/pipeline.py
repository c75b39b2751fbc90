from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Optional, Protocol

from echoflow.core.logging import get_logger
from echoflow.services.postprocess import PostProcessResult
from echoflow.services.upstream import AudioInput
from echoflow.types import RequestContext, TokenUsage


logger = get_logger(__name__)

STATUS_SUCCEEDED = "Post-processing succeeded"
STATUS_FALLBACK = "Post-processing failed, using raw transcript"


class Transcriber(Protocol):
    async def transcribe(
        self, ctx: RequestContext, audio: AudioInput, filename: str = "", model: Optional[str] = None
    ) -> str: ...


class PostProcessor(Protocol):
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


@dataclass(frozen=True)
class PipelineTimings:
    """Stage durations in seconds."""

    transcription: float
    post_processing: float
    total: float


@dataclass(frozen=True)
class PipelineResult:
    raw_transcript: str
    final_transcript: str
    status: str
    timings: PipelineTimings
    usage: Optional[TokenUsage] = None

    @property
    def fell_back(self) -> bool:
        return self.status == STATUS_FALLBACK


class PipelineService:
    """Transcribe, then post-process, falling back to the raw transcript.

    Only the transcription stage is fatal. A post-processing failure of any
    kind yields the raw transcript with ``STATUS_FALLBACK`` and no usage.
    """

    def __init__(
        self,
        transcriber: Transcriber,
        post_processor: PostProcessor,
        default_transcription_model: str,
        default_post_process_model: str,
    ) -> None:
        self.transcriber = transcriber
        self.post_processor = post_processor
        self.default_transcription_model = default_transcription_model.strip()
        self.default_post_process_model = default_post_process_model.strip()

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
    ) -> PipelineResult:
        started = time.monotonic()

        transcription_model = (transcription_model or "").strip() or self.default_transcription_model
        post_process_model = (post_process_model or "").strip() or self.default_post_process_model

        transcription_started = time.monotonic()
        raw_transcript = await self.transcriber.transcribe(ctx, audio, filename, transcription_model)
        transcription_duration = time.monotonic() - transcription_started
        raw_transcript = raw_transcript.strip()

        post_processing_started = time.monotonic()
        try:
            post_result = await self.post_processor.process(
                ctx,
                raw_transcript,
                context_summary=(context_summary or "").strip(),
                vocabulary=vocabulary or "",
                custom_system_prompt=custom_system_prompt,
                model=post_process_model,
                include_debug_prompt=include_debug,
            )
        except Exception as e:
            post_processing_duration = time.monotonic() - post_processing_started
            logger.warning(
                "post-processing failed, using raw transcript",
                extra={"component": "pipeline", "request_id": ctx.request_id, "error": str(e), "error_type": type(e).__name__},
            )
            return PipelineResult(
                raw_transcript=raw_transcript,
                final_transcript=raw_transcript,
                status=STATUS_FALLBACK,
                timings=PipelineTimings(
                    transcription=transcription_duration,
                    post_processing=post_processing_duration,
                    total=time.monotonic() - started,
                ),
            )
        post_processing_duration = time.monotonic() - post_processing_started

        return PipelineResult(
            raw_transcript=raw_transcript,
            final_transcript=post_result.transcript.strip(),
            status=STATUS_SUCCEEDED,
            usage=post_result.usage,
            timings=PipelineTimings(
                transcription=transcription_duration,
                post_processing=post_processing_duration,
                total=time.monotonic() - started,
            ),
        )
