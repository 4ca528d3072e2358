"""Logging infrastructure.

Structured logging with:
- JSONL format for log aggregation systems
- Automatic context injection (job_id, task_name, ...)
- QueueHandler + QueueListener for non-blocking I/O

Basic usage:
    from jobstatus.infra.logging import set_log_context, setup_logging
    import logging

    setup_logging()
    logger = logging.getLogger(__name__)

    set_log_context(job_id="abc123")
    logger.info("Processing job")  # Automatically includes job_id
"""

from jobstatus.infra.logging.config import configure_logging, setup_logging, shutdown
from jobstatus.infra.logging.context import (
    ContextInjectingFilter,
    clear_log_context,
    get_log_context,
    remove_from_log_context,
    set_log_context,
)
from jobstatus.infra.logging.formatters import JSONFormatter

__all__ = [
    "ContextInjectingFilter",
    "JSONFormatter",
    "clear_log_context",
    "configure_logging",
    "get_log_context",
    "remove_from_log_context",
    "set_log_context",
    "setup_logging",
    "shutdown",
]
