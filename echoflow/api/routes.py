from __future__ import annotations

# Re-export all route callables from the split modules
from echoflow.api.health_routes import healthz, metrics_exposition, readyz
from echoflow.api.transcription_routes import post_process_text, process_pipeline, transcribe_upload

# This module acts as a stable re-export aggregator for route callables to avoid duplicate imports

__all__ = [
    "healthz",
    "metrics_exposition",
    "post_process_text",
    "process_pipeline",
    "readyz",
    "transcribe_upload",
]
