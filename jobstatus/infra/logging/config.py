"""Logging configuration setup.

Provides production-ready logging configuration using:
- dictConfig for flexible configuration
- QueueHandler + QueueListener for non-blocking I/O
- ContextInjectingFilter for automatic context propagation
- All handlers on root logger (child loggers propagate)
- JSONL format for machine parsing
"""

from __future__ import annotations

import atexit
import logging
import logging.config
from logging.handlers import QueueHandler, QueueListener, RotatingFileHandler
from pathlib import Path
from queue import Queue
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from jobstatus.core.settings.logs import LoggingSettings

_log_queue: Queue[logging.LogRecord] | None = None
_listener: QueueListener | None = None
_LOGGING_INITIALIZED = False

logger = logging.getLogger(__name__)

_TEXT_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def shutdown() -> None:
    """Stop the QueueListener and flush pending records.

    Registered with atexit when queue logging is configured.
    """
    global _log_queue, _listener

    if _listener is not None:
        _listener.stop()
        _listener = None

    _log_queue = None


def setup_logging(
    log_settings: LoggingSettings | None = None,
    *,
    force: bool = False,
    **configure_kwargs: Any,
) -> None:
    """Ensure logging is configured once across entrypoints.

    Args:
        log_settings: Optional logging settings instance. If omitted, settings
            are loaded via get_logging_settings().
        force: Reconfigure logging even if it was already initialized.
        **configure_kwargs: Explicit overrides for configure_logging().
    """
    global _LOGGING_INITIALIZED

    if _LOGGING_INITIALIZED and not force:
        return

    settings_obj = log_settings
    if settings_obj is None:
        from jobstatus.core.settings import get_logging_settings

        settings_obj = get_logging_settings()

    log_config = settings_obj.to_logging_kwargs()
    if configure_kwargs:
        log_config = {**log_config, **configure_kwargs}

    configure_logging(**log_config)
    _LOGGING_INITIALIZED = True


def configure_logging(
    log_level: str = "INFO",
    *,
    service_name: str = "jobstatus",
    json_logs: bool = True,
    console_enabled: bool = True,
    file_path: str | Path | None = None,
    file_max_bytes: int = 10 * 1024 * 1024,
    file_backup_count: int = 5,
    include_context: bool = True,
) -> None:
    """Configure logging with dictConfig and the QueueHandler pattern.

    All handlers hang off a QueueListener thread; the root logger only
    gets a QueueHandler, so logging calls on the worker's event loop never
    block on I/O.

    Args:
        log_level: Root logger level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        service_name: Static "service" field of JSON records.
        json_logs: Enable JSONL (JSON Lines) structured logging.
        console_enabled: Enable console/stderr logging.
        file_path: Path to log file. None disables file logging.
        file_max_bytes: Maximum log file size before rotation.
        file_backup_count: Number of rotated log files to keep.
        include_context: Enable ContextInjectingFilter for auto context.
    """
    global _log_queue, _listener

    # Replace a previous listener instead of stacking handlers
    shutdown()
    root = logging.getLogger()
    for handler in list(root.handlers):
        if isinstance(handler, QueueHandler):
            root.removeHandler(handler)

    path = Path(file_path) if file_path else None
    if path:
        path.parent.mkdir(parents=True, exist_ok=True)

    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "root": {"level": log_level.upper(), "handlers": []},
    })

    handlers = _build_handlers(
        service_name=service_name,
        json_logs=json_logs,
        console_enabled=console_enabled,
        file_path=path,
        file_max_bytes=file_max_bytes,
        file_backup_count=file_backup_count,
    )

    _log_queue = Queue()
    if handlers:
        _listener = QueueListener(_log_queue, *handlers, respect_handler_level=True)
        _listener.start()
        atexit.register(shutdown)

    queue_handler = QueueHandler(_log_queue)
    if include_context:
        # Context must be captured on the emitting thread, not the listener's
        from jobstatus.infra.logging.context import ContextInjectingFilter

        queue_handler.addFilter(ContextInjectingFilter())
    root.addHandler(queue_handler)

    logger.debug(
        "Logging configured",
        extra={"log_level": log_level, "json_logs": json_logs, "file_path": str(path) if path else None},
    )


def _build_handlers(
    *,
    service_name: str,
    json_logs: bool,
    console_enabled: bool,
    file_path: Path | None,
    file_max_bytes: int,
    file_backup_count: int,
) -> list[logging.Handler]:
    """Create the handlers driven by the QueueListener."""
    from jobstatus.infra.logging.formatters import JSONFormatter

    def make_formatter() -> logging.Formatter:
        if json_logs:
            return JSONFormatter(static={"service": service_name})
        return logging.Formatter(fmt=_TEXT_FORMAT, datefmt=_DATE_FORMAT)

    handlers: list[logging.Handler] = []

    if console_enabled:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(make_formatter())
        handlers.append(console_handler)

    if file_path:
        file_handler = RotatingFileHandler(
            file_path,
            maxBytes=file_max_bytes,
            backupCount=file_backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(make_formatter())
        handlers.append(file_handler)

    return handlers
