"""Taskiq integration.

Add the middleware to your broker and mark the tasks to track:

    from jobstatus.infra.tasks import StatusMiddleware, track_status

    broker.add_middlewares(StatusMiddleware())

    @broker.task
    @track_status
    async def generate_report(report_id: int) -> None: ...

The ``taskiq status`` command (cli.py) is registered through the
``taskiq_cli`` entry point.
"""

from __future__ import annotations

from jobstatus.infra.tasks.middleware import (
    EXPIRATION_LABEL,
    StatusMiddleware,
    progress_reporter,
    track_status,
)

__all__ = [
    "EXPIRATION_LABEL",
    "StatusMiddleware",
    "progress_reporter",
    "track_status",
]
