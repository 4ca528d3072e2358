"""Prometheus metrics for job status tracking."""

from __future__ import annotations

from prometheus_client import CollectorRegistry, Counter, Histogram

# Custom registry so embedding applications decide what to expose
REGISTRY = CollectorRegistry()

# Store round trips are expected in the low milliseconds
STORE_LATENCY_BUCKETS = (
    0.001,
    0.0025,
    0.005,
    0.01,
    0.025,
    0.05,
    0.1,
    0.25,
    0.5,
    1.0,
)

job_status_transitions_total = Counter(
    "job_status_transitions_total",
    "Total number of job status writes",
    ["status"],
    registry=REGISTRY,
)

job_status_progress_updates_total = Counter(
    "job_status_progress_updates_total",
    "Total number of in-job progress updates",
    ["persisted"],
    registry=REGISTRY,
)

job_status_termination_writes_total = Counter(
    "job_status_termination_writes_total",
    "Best-effort interrupted writes issued from the termination hook",
    ["outcome"],
    registry=REGISTRY,
)

job_status_store_duration_seconds = Histogram(
    "job_status_store_duration_seconds",
    "Duration of status store writes in seconds",
    ["operation"],
    buckets=STORE_LATENCY_BUCKETS,
    registry=REGISTRY,
)
