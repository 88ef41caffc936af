"""Prometheus metrics instrumentation."""

from __future__ import annotations

from fastapi import Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

REGISTRY = CollectorRegistry()

REQUEST_COUNT = Counter(
    "ags_requests_total",
    "Total HTTP requests",
    labelnames=("endpoint", "method", "status"),
    registry=REGISTRY,
)

REQUEST_LATENCY = Histogram(
    "ags_request_latency_seconds",
    "Latency of HTTP requests",
    labelnames=("endpoint", "method"),
    registry=REGISTRY,
)

PRESIGNED_URLS = Counter(
    "ags_presigned_urls_generated_total",
    "Download URLs issued",
    labelnames=("status", "storage_type"),
    registry=REGISTRY,
)

PRESIGN_DURATION = Histogram(
    "ags_presigned_url_generation_duration_seconds",
    "Duration of signed URL generation",
    labelnames=("status",),
    buckets=(0.01, 0.05, 0.1, 0.5, 1, 2, 5),
    registry=REGISTRY,
)

ACCESS_DENIED = Counter(
    "ags_file_access_denied_total",
    "File access denials",
    labelnames=("reason",),
    registry=REGISTRY,
)

PREFETCH_CACHE_HITS = Counter(
    "ags_prefetch_cache_hits_total",
    "Link requests served from the prefetch cache",
    registry=REGISTRY,
)

PREFETCH_RESOLUTIONS = Counter(
    "ags_prefetch_resolutions_total",
    "Prefetch resolutions by outcome",
    labelnames=("status",),
    registry=REGISTRY,
)

CITATION_PERSIST_FAILURES = Counter(
    "ags_citation_persist_failures_total",
    "Citation record writes that failed",
    registry=REGISTRY,
)


def metrics_response() -> Response:
    """Return Prometheus metrics as an HTTP response."""
    payload = generate_latest(REGISTRY)
    return Response(content=payload, media_type=CONTENT_TYPE_LATEST)


__all__ = [
    "REGISTRY",
    "REQUEST_COUNT",
    "REQUEST_LATENCY",
    "PRESIGNED_URLS",
    "PRESIGN_DURATION",
    "ACCESS_DENIED",
    "PREFETCH_CACHE_HITS",
    "PREFETCH_RESOLUTIONS",
    "CITATION_PERSIST_FAILURES",
    "metrics_response",
]
