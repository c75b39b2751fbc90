from __future__ import annotations

import asyncio
from typing import Optional, Protocol

from echoflow.core.logging import get_logger
from echoflow.services.upstream import AudioInput
from echoflow.types import RequestContext


logger = get_logger(__name__)

DEFAULT_FILENAME = "audio.wav"


class TranscriptionClient(Protocol):
    async def transcribe(self, ctx: RequestContext, audio: AudioInput, filename: str, model: str) -> str: ...


class TranscriptionService:
    def __init__(self, client: TranscriptionClient, default_model: str, timeout: float) -> None:
        self.client = client
        self.default_model = default_model.strip()
        self.timeout = timeout

    async def transcribe(
        self,
        ctx: RequestContext,
        audio: AudioInput,
        filename: str = "",
        model: Optional[str] = None,
    ) -> str:
        """Transcribe audio via the upstream, bounded by the configured timeout.

        Raises ``asyncio.TimeoutError`` when the bound is hit, so callers can
        tell a deadline apart from an upstream failure.
        """
        selected_model = (model or "").strip() or self.default_model
        filename = filename or DEFAULT_FILENAME
        logger.debug(
            "transcription start",
            extra={"component": "transcribe", "request_id": ctx.request_id, "model": selected_model, "upload_name": filename},
        )

        text = await asyncio.wait_for(
            self.client.transcribe(ctx, audio, filename, selected_model),
            timeout=self.timeout,
        )
        text = text.strip()
        logger.info(
            "transcription complete",
            extra={"component": "transcribe", "request_id": ctx.request_id, "model": selected_model, "text_len": len(text)},
        )
        return text
