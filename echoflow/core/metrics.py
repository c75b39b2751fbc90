"""Prometheus metrics for the gateway.

Every ``Metrics`` instance owns its own ``CollectorRegistry`` so that apps
built in the same process (tests, workers) never collide on registration.
"""

from __future__ import annotations

from typing import Optional

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    PlatformCollector,
    ProcessCollector,
    generate_latest,
)


class Metrics:
    def __init__(self, registry: Optional[CollectorRegistry] = None) -> None:
        self.registry = registry if registry is not None else CollectorRegistry()

        ProcessCollector(registry=self.registry)
        PlatformCollector(registry=self.registry)

        self.http_requests_total = Counter(
            "echoflow_http_requests_total",
            "Total number of HTTP requests handled.",
            labelnames=["route", "method", "status"],
            registry=self.registry,
        )
        self.http_request_duration_seconds = Histogram(
            "echoflow_http_request_duration_seconds",
            "HTTP request duration in seconds.",
            labelnames=["route", "method", "status"],
            registry=self.registry,
        )
        self.upstream_requests_total = Counter(
            "echoflow_upstream_requests_total",
            "Total upstream OpenAI-compatible API requests.",
            labelnames=["endpoint", "status"],
            registry=self.registry,
        )
        self.upstream_request_duration_seconds = Histogram(
            "echoflow_upstream_request_duration_seconds",
            "Upstream request duration in seconds.",
            labelnames=["endpoint", "status"],
            registry=self.registry,
        )
        self.pipeline_fallbacks_total = Counter(
            "echoflow_pipeline_postprocess_fallback_total",
            "Number of pipeline requests that fell back to raw transcript due to post-process failure.",
            registry=self.registry,
        )

    def observe_http(self, route: str, method: str, status: int, duration: float) -> None:
        labels = (route or "unknown", method or "UNKNOWN", str(status))
        self.http_requests_total.labels(*labels).inc()
        self.http_request_duration_seconds.labels(*labels).observe(duration)

    def observe_upstream(self, endpoint: str, status: int, duration: float) -> None:
        labels = (endpoint or "unknown", str(status))
        self.upstream_requests_total.labels(*labels).inc()
        self.upstream_request_duration_seconds.labels(*labels).observe(duration)

    def inc_pipeline_fallback(self) -> None:
        self.pipeline_fallbacks_total.inc()

    def render(self) -> tuple[bytes, str]:
        return generate_latest(self.registry), CONTENT_TYPE_LATEST
