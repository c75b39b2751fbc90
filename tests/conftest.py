from __future__ import annotations

import os
from typing import Any, Dict, List, Optional

import httpx
import pytest

os.environ.setdefault("ENVIRONMENT", "test")

from echoflow.api.dependencies import Dependencies
from echoflow.api.main import create_app
from echoflow.core.config import AppSettings
from echoflow.core.metrics import Metrics
from echoflow.services.pipeline import PipelineResult, PipelineTimings, STATUS_SUCCEEDED
from echoflow.services.postprocess import PostProcessResult


class StubTranscription:
    def __init__(self, text: str = "", error: Optional[BaseException] = None) -> None:
        self.text = text
        self.error = error
        self.calls: List[Dict[str, Any]] = []

    async def transcribe(self, ctx, audio, filename="", model=None) -> str:
        self.calls.append({"ctx": ctx, "file_body": audio, "filename": filename, "model": model})
        if self.error is not None:
            raise self.error
        return self.text


class StubPostProcess:
    def __init__(self, result: Optional[PostProcessResult] = None, error: Optional[BaseException] = None) -> None:
        self.result = result or PostProcessResult(transcript="cleaned")
        self.error = error
        self.calls: List[Dict[str, Any]] = []

    async def process(self, ctx, transcript, context_summary="", vocabulary="", custom_system_prompt=None,
                      model=None, include_debug_prompt=False) -> PostProcessResult:
        self.calls.append({
            "ctx": ctx,
            "transcript": transcript,
            "context_summary": context_summary,
            "vocabulary": vocabulary,
            "custom_system_prompt": custom_system_prompt,
            "model": model,
            "include_debug_prompt": include_debug_prompt,
        })
        if self.error is not None:
            raise self.error
        return self.result


class StubPipeline:
    def __init__(self, result: Optional[PipelineResult] = None, error: Optional[BaseException] = None) -> None:
        self.result = result or PipelineResult(
            raw_transcript="raw",
            final_transcript="final",
            status=STATUS_SUCCEEDED,
            timings=PipelineTimings(transcription=0.1, post_processing=0.2, total=0.3),
        )
        self.error = error
        self.calls: List[Dict[str, Any]] = []

    async def process(self, ctx, audio, filename="", context_summary="", vocabulary="",
                      custom_system_prompt=None, transcription_model=None, post_process_model=None,
                      include_debug=False) -> PipelineResult:
        self.calls.append({
            "ctx": ctx,
            "file_body": audio,
            "filename": filename,
            "context_summary": context_summary,
            "vocabulary": vocabulary,
            "custom_system_prompt": custom_system_prompt,
            "transcription_model": transcription_model,
            "post_process_model": post_process_model,
            "include_debug": include_debug,
        })
        if self.error is not None:
            raise self.error
        return self.result


class StubUpstream:
    def __init__(self, error: Optional[BaseException] = None) -> None:
        self.error = error
        self.calls: List[Any] = []

    async def check_models(self, ctx) -> None:
        self.calls.append(ctx)
        if self.error is not None:
            raise self.error


def make_settings(**overrides: Any) -> AppSettings:
    values: Dict[str, Any] = {
        "environment": "test",
        "upstream_base_url": "http://example.com",
        "upstream_api_key": "x",
        "max_upload_bytes": 1024 * 1024,
    }
    values.update(overrides)
    return AppSettings(**values)


def make_deps(**overrides: Any) -> Dependencies:
    values: Dict[str, Any] = {
        "transcription": StubTranscription(),
        "post_process": StubPostProcess(),
        "pipeline": StubPipeline(),
        "upstream": StubUpstream(),
        "metrics": Metrics(),
    }
    values.update(overrides)
    return Dependencies(**values)


def client_for(app) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")


@pytest.fixture
def deps() -> Dependencies:
    return make_deps()


@pytest.fixture
def app(deps):
    return create_app(make_settings(), deps)
