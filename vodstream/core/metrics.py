"""Prometheus metrics.

All collectors live in a dedicated registry served at ``/metrics``. When
``PROMETHEUS_MULTIPROC_DIR`` is set (several uvicorn or Celery worker
processes), samples are aggregated from the shared directory instead.
"""

import os

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
    multiprocess,
)

REGISTRY = CollectorRegistry()

if os.environ.get("PROMETHEUS_MULTIPROC_DIR"):
    multiprocess.MultiProcessCollector(REGISTRY)

APP_INFO = Info("vodstream_app", "Build and environment of the running service", registry=REGISTRY)

# HTTP
HTTP_REQUESTS_TOTAL = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
    registry=REGISTRY,
)
HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
    registry=REGISTRY,
)
HTTP_REQUESTS_IN_PROGRESS = Gauge(
    "http_requests_in_progress",
    "HTTP requests currently being served",
    ["method", "endpoint"],
    registry=REGISTRY,
)

# Chunked upload
UPLOAD_CHUNKS_TOTAL = Counter(
    "upload_chunks_total",
    "Chunks received, by outcome (accepted, completed, rejected, unknown_session)",
    ["outcome"],
    registry=REGISTRY,
)
UPLOAD_BYTES_TOTAL = Counter(
    "upload_bytes_total",
    "Bytes written to chunk part files",
    registry=REGISTRY,
)
UPLOAD_SESSIONS_ACTIVE = Gauge(
    "upload_sessions_active",
    "Upload sessions held by the in-process session store",
    registry=REGISTRY,
)

# Transcoding
TRANSCODE_JOBS_TOTAL = Counter(
    "transcode_jobs_total",
    "Transcode jobs by final status (completed, failed, timeout, cancelled)",
    ["status"],
    registry=REGISTRY,
)
TRANSCODE_JOBS_IN_PROGRESS = Gauge(
    "transcode_jobs_in_progress",
    "Transcode jobs currently running in this process",
    registry=REGISTRY,
)
TRANSCODE_RUNG_DURATION_SECONDS = Histogram(
    "transcode_rung_duration_seconds",
    "Wall-clock encode time per rung",
    ["rung"],
    buckets=[1, 5, 15, 30, 60, 120, 300, 600, 1800],
    registry=REGISTRY,
)

# Blob Store
STORAGE_UPLOADS_TOTAL = Counter(
    "storage_uploads_total",
    "Files published to the Blob Store, by backend and outcome",
    ["backend", "outcome"],
    registry=REGISTRY,
)

# Playlist relay
RELAY_FETCHES_TOTAL = Counter(
    "relay_fetches_total",
    "Upstream playlist fetches by outcome",
    ["outcome"],
    registry=REGISTRY,
)
RELAY_FETCH_DURATION_SECONDS = Histogram(
    "relay_fetch_duration_seconds",
    "Upstream playlist fetch time in seconds",
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
    registry=REGISTRY,
)


def get_metrics() -> bytes:
    """Render the registry in the Prometheus text format."""
    return generate_latest(REGISTRY)


def get_content_type() -> str:
    return CONTENT_TYPE_LATEST


def set_app_info(version: str, environment: str) -> None:
    APP_INFO.info({"version": version, "environment": environment})
