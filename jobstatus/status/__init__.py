"""Job status tracking: state machine, queries, progress and termination."""

from __future__ import annotations

from jobstatus.status.enums import JobStatus
from jobstatus.status.events import StatusEvent
from jobstatus.status.keys import JobKeys, StatusKeys
from jobstatus.status.machine import ExpirationProvider, StatusStateMachine
from jobstatus.status.progress import ProgressReporter
from jobstatus.status.query import StatusQuery
from jobstatus.status.termination import TerminationGuard

__all__ = [
    "ExpirationProvider",
    "JobKeys",
    "JobStatus",
    "ProgressReporter",
    "StatusEvent",
    "StatusKeys",
    "StatusQuery",
    "StatusStateMachine",
    "TerminationGuard",
]
