from echoflow.services.pipeline import PipelineResult, PipelineService
from echoflow.services.postprocess import PostProcessResult, PostProcessService
from echoflow.services.transcribe import TranscriptionService
from echoflow.services.upstream import UpstreamClient, UpstreamError

__all__ = [
    "PipelineResult",
    "PipelineService",
    "PostProcessResult",
    "PostProcessService",
    "TranscriptionService",
    "UpstreamClient",
    "UpstreamError",
]
