"""Job status tracking for taskiq, backed by Redis.

Worker and client setup:

    from jobstatus import StatusMiddleware, track_status

    broker.add_middlewares(StatusMiddleware())

    @broker.task
    @track_status(expiration=3600)
    async def export_orders(account_id: int) -> None: ...

Querying from an application (after ``await start_status_client()``):

    import jobstatus

    task = await export_orders.kiq(42)
    await jobstatus.status(task.task_id)        # JobStatus.QUEUED
    await jobstatus.wait_for(task.task_id, 60)  # JobStatus.COMPLETE
"""

from __future__ import annotations

from jobstatus.core.exceptions import (
    JobStatusError,
    StatusClientNotStartedError,
    StoreUnavailableError,
)
from jobstatus.core.settings.status import DEFAULT_EXPIRY
from jobstatus.infra.tasks.middleware import StatusMiddleware, progress_reporter, track_status
from jobstatus.status.client import (
    delete,
    get_all,
    get_query,
    get_reporter,
    get_state_machine,
    is_complete,
    is_failed,
    is_interrupted,
    is_queued,
    is_started,
    is_working,
    message,
    pct_complete,
    start_status_client,
    status,
    stop_status_client,
    subscribe,
    update_time,
    wait_for,
)
from jobstatus.status.enums import JobStatus
from jobstatus.status.events import StatusEvent
from jobstatus.status.progress import ProgressReporter

__version__ = "0.1.0"

__all__ = [
    "DEFAULT_EXPIRY",
    "JobStatus",
    "JobStatusError",
    "ProgressReporter",
    "StatusClientNotStartedError",
    "StatusEvent",
    "StatusMiddleware",
    "StoreUnavailableError",
    "delete",
    "get_all",
    "get_query",
    "get_reporter",
    "get_state_machine",
    "is_complete",
    "is_failed",
    "is_interrupted",
    "is_queued",
    "is_started",
    "is_working",
    "message",
    "pct_complete",
    "progress_reporter",
    "start_status_client",
    "status",
    "stop_status_client",
    "subscribe",
    "track_status",
    "update_time",
    "wait_for",
]
