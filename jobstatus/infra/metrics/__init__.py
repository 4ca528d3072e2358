"""Prometheus metrics for the status tracking layer."""

from jobstatus.infra.metrics.prometheus import (
    REGISTRY,
    job_status_progress_updates_total,
    job_status_store_duration_seconds,
    job_status_termination_writes_total,
    job_status_transitions_total,
)

__all__ = [
    "REGISTRY",
    "job_status_progress_updates_total",
    "job_status_store_duration_seconds",
    "job_status_termination_writes_total",
    "job_status_transitions_total",
]
