"""Job status values.

State Machine:
    QUEUED → WORKING → COMPLETE
                │
                ├→ FAILED
                │
                └→ INTERRUPTED

COMPLETE, FAILED and INTERRUPTED are terminal: once written, the record
is never moved to another state again.
"""

from __future__ import annotations

import enum


class JobStatus(str, enum.Enum):
    """5-state job lifecycle status.

    States:
        QUEUED: Enqueued, no worker has picked it up yet
        WORKING: A worker is executing the job body
        COMPLETE: The job body returned normally
        FAILED: The job body raised an exception
        INTERRUPTED: The worker process was told to exit (SIGTERM, SIGINT,
            SystemExit, KeyboardInterrupt, cancellation) while the job ran
    """

    QUEUED = "queued"
    WORKING = "working"
    COMPLETE = "complete"
    FAILED = "failed"
    INTERRUPTED = "interrupted"

    @classmethod
    def terminal_states(cls) -> set[JobStatus]:
        """Return states after which no further transition happens."""
        return {cls.COMPLETE, cls.FAILED, cls.INTERRUPTED}

    @classmethod
    def parse(cls, value: str | None) -> JobStatus | None:
        """Parse a stored status value, None for absent or unknown values."""
        if value is None:
            return None
        try:
            return cls(value)
        except ValueError:
            return None

    def is_terminal(self) -> bool:
        """Check if this status represents a terminal state."""
        return self in self.terminal_states()
