import asyncio

import pytest

from echoflow.services.transcribe import DEFAULT_FILENAME, TranscriptionService
from echoflow.types import RequestContext


CTX = RequestContext(request_id="rid-tr")


class FakeUpstream:
    def __init__(self, text="  hello world \n", delay=0.0):
        self.text = text
        self.delay = delay
        self.calls = []

    async def transcribe(self, ctx, audio, filename, model):
        self.calls.append({"ctx": ctx, "audio": audio, "filename": filename, "model": model})
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.text


@pytest.mark.asyncio
async def test_defaults_model_and_filename_and_trims():
    upstream = FakeUpstream()
    service = TranscriptionService(upstream, default_model="whisper-large-v3", timeout=5)

    text = await service.transcribe(CTX, b"audio")

    assert text == "hello world"
    assert upstream.calls[0]["model"] == "whisper-large-v3"
    assert upstream.calls[0]["filename"] == DEFAULT_FILENAME
    assert upstream.calls[0]["audio"] == b"audio"


@pytest.mark.asyncio
async def test_explicit_model_and_filename_win():
    upstream = FakeUpstream()
    service = TranscriptionService(upstream, default_model="whisper-large-v3", timeout=5)
    await service.transcribe(CTX, b"audio", filename="clip.m4a", model=" distil ")
    assert upstream.calls[0]["model"] == "distil"
    assert upstream.calls[0]["filename"] == "clip.m4a"


@pytest.mark.asyncio
async def test_timeout_is_enforced():
    service = TranscriptionService(FakeUpstream(delay=1.0), default_model="m", timeout=0.01)
    with pytest.raises(asyncio.TimeoutError):
        await service.transcribe(CTX, b"audio")
