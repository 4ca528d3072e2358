"""Context management for structured logging.

Provides automatic context injection into log records using contextvars,
so the job id and task name bound by the status middleware show up in
every log line emitted while a job runs.

This approach is:
- Async-safe: Works correctly across async/await boundaries
- Thread-safe: Each async task gets its own context
- Implicit: No need to modify existing logging calls
"""

from __future__ import annotations

import logging
from contextvars import ContextVar
from typing import Any

# Each async task gets its own copy automatically
_log_context: ContextVar[dict[str, Any]] = ContextVar("log_context", default={})


def set_log_context(**kwargs: Any) -> None:
    """Set logging context for current async task/thread.

    All subsequent log calls in this context will automatically include
    these fields in the log record.

    Args:
        **kwargs: Key-value pairs to add to logging context.

    Example:
        ```python
        set_log_context(job_id="abc123", task_name="reports:build")
        logger.info("Building report")  # Includes job_id and task_name
        ```
    """
    current = _log_context.get().copy()
    current.update(kwargs)
    _log_context.set(current)


def get_log_context() -> dict[str, Any]:
    """Get current logging context.

    Returns:
        Dictionary of current context key-value pairs.
    """
    return _log_context.get().copy()


def clear_log_context() -> None:
    """Clear all logging context for current async task/thread."""
    _log_context.set({})


def remove_from_log_context(*keys: str) -> None:
    """Remove specific keys from logging context.

    Args:
        *keys: Keys to remove from context.
    """
    current = _log_context.get().copy()
    for key in keys:
        current.pop(key, None)
    _log_context.set(current)


class ContextInjectingFilter(logging.Filter):
    """Logging filter that automatically injects context into LogRecord.

    setup_logging() attaches it to the root QueueHandler, so records from
    every logger pick up the context of the thread or task that emitted them.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        """Inject context into log record.

        Args:
            record: The log record to enhance with context.

        Returns:
            True (always allow the record to be logged).
        """
        for key, value in _log_context.get().items():
            # Don't overwrite existing attributes
            if not hasattr(record, key):
                setattr(record, key, value)

        return True
