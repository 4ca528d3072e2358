"""Custom exception classes for job status tracking."""

from __future__ import annotations

from typing import Any


class JobStatusError(Exception):
    """Base exception for the status tracking layer.

    All custom exceptions should inherit from this class.

    Attributes:
        detail: Human-readable error message.
        extra: Additional context-specific information about the error.
    """

    def __init__(self, detail: str, extra: dict[str, Any] | None = None) -> None:
        self.detail = detail
        self.extra = extra or {}
        super().__init__(detail)


class StoreUnavailableError(JobStatusError):
    """Raised when the status store cannot be reached.

    On the enqueue and execution paths this propagates to the job
    framework, so a store outage fails the enqueue or the job instead of
    leaving a stale status behind.

    Example:
        raise StoreUnavailableError(
            "Redis unavailable while writing job status",
            extra={"key": "jobstatus:status:abc123", "operation": "hset"},
        )
    """

    def __init__(
        self,
        detail: str = "Status store unavailable",
        extra: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(detail, extra)


class StatusClientNotStartedError(JobStatusError):
    """Raised when the global status client is used before start_status_client()."""

    def __init__(self) -> None:
        super().__init__("Status client not started. Call start_status_client() first.")
