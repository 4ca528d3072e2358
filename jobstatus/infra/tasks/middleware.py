"""Taskiq middleware recording job status in Redis.

Hooks into Taskiq's lifecycle:

- startup: connect the global status client; inside worker processes,
  install the termination guard (SIGTERM/SIGINT handlers + atexit)
- pre_send (client side): create the ``queued`` record for tracked tasks
  and pass the resolved expiration to the worker through a label
- pre_execute (worker side): ``working``
- post_execute (worker side): ``complete``, ``failed`` or ``interrupted``
- shutdown: close the client and restore signal handlers

A task is tracked when its function is decorated with ``track_status``,
when it carries a ``track_status`` label, or when STATUS_ALL_JOBS is on.

Example usage:
    broker = AioPikaBroker(...)
    broker.add_middlewares(StatusMiddleware())

    @broker.task
    @track_status(expiration=3600)
    async def rebuild_index() -> None: ...

Place StatusMiddleware after retry middleware so each attempt is recorded.
Status writes on this path are not optional: if Redis is down, the enqueue
or the execution fails instead of leaving a stale status behind.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, TypeVar, overload

from taskiq import Context, TaskiqDepends, TaskiqMiddleware

from jobstatus.core.settings import get_status_settings
from jobstatus.infra.logging.context import remove_from_log_context, set_log_context
from jobstatus.status.client import (
    get_guard,
    get_reporter,
    get_state_machine,
    start_status_client,
    stop_status_client,
)
from jobstatus.status.machine import TRACK_ATTRIBUTE

if TYPE_CHECKING:
    from collections.abc import Callable

    from taskiq import TaskiqMessage, TaskiqResult

    from jobstatus.infra.store.redis_store import RedisStatusStore
    from jobstatus.status.progress import ProgressReporter

logger = logging.getLogger(__name__)

F = TypeVar("F")

# Set by pre_send: resolved expiration in seconds, 0 when the task is untracked
EXPIRATION_LABEL = "status_expiration"


@overload
def track_status(func: F, *, expiration: int | Callable[[], int] | None = None) -> F: ...


@overload
def track_status(
    func: None = None, *, expiration: int | Callable[[], int] | None = None,
) -> Callable[[F], F]: ...


def track_status(
    func: Any = None,
    *,
    expiration: int | Callable[[], int] | None = None,
) -> Any:
    """Opt a task function into status tracking.

    Args:
        func: Task function (when used without parentheses).
        expiration: Record TTL in seconds, or a callable returning it. Takes
            precedence over STATUS_EXPIRATION.

    Example:
        @broker.task
        @track_status
        async def send_report() -> None: ...

        @broker.task
        @track_status(expiration=lambda: 24 * 3600)
        async def nightly_export() -> None: ...
    """

    def decorate(target: F) -> F:
        targets: list[Any] = [target]
        # Also reach the plain function when applied on top of @broker.task
        original = getattr(target, "original_func", None)
        if original is not None:
            targets.append(original)

        for obj in targets:
            setattr(obj, TRACK_ATTRIBUTE, True)
            if expiration is not None:
                provider = expiration if callable(expiration) else (lambda: expiration)
                obj.expiration = provider

        return target

    if func is None:
        return decorate
    return decorate(func)


class StatusMiddleware(TaskiqMiddleware):
    """Middleware that tracks job status for Taskiq tasks.

    Example usage:
        broker = AioPikaBroker(...)
        broker.add_middlewares(StatusMiddleware())

    Statuses can then be queried from any process that started the status
    client (``await jobstatus.status(task.task_id)``).
    """

    def __init__(
        self,
        *,
        store: RedisStatusStore | None = None,
        install_termination_guard: bool | None = None,
    ) -> None:
        """Initialize the status middleware.

        Args:
            store: Store to use instead of one built from REDIS_* settings.
            install_termination_guard: Override STATUS_INSTALL_SIGNAL_HANDLERS.
        """
        super().__init__()
        self._store = store
        self._install_guard = install_termination_guard
        self._expirations: dict[str, int] = {}

    async def startup(self) -> None:
        """Start the status client; guard worker processes against termination."""
        logger.info("StatusMiddleware starting up")
        await start_status_client(store=self._store)

        install = self._install_guard
        if install is None:
            install = get_status_settings().install_signal_handlers

        if install and self.broker.is_worker_process:
            get_guard().install()

    async def shutdown(self) -> None:
        """Stop the status client; jobs still running are marked interrupted."""
        logger.info("StatusMiddleware shutting down")
        await stop_status_client()
        self._expirations.clear()

    def _job_type(self, task_name: str) -> Any:
        task = self.broker.find_task(task_name)
        if task is None:
            return None
        return getattr(task, "original_func", task)

    async def pre_send(self, message: TaskiqMessage) -> TaskiqMessage:
        """Create the ``queued`` record for a tracked task.

        Args:
            message: The task message about to be sent.

        Returns:
            The message, with the resolved expiration label.
        """
        machine = get_state_machine()

        expiration = await machine.on_enqueue(
            message.task_id,
            self._job_type(message.task_name),
            args=message.args,
            kwargs=message.kwargs,
            task_name=message.task_name,
            labels=message.labels,
        )

        message.labels[EXPIRATION_LABEL] = expiration or 0
        return message

    def _execution_expiration(self, message: TaskiqMessage) -> int | None:
        """Expiration for a message about to run, None when untracked."""
        labels = message.labels or {}

        if EXPIRATION_LABEL in labels:
            try:
                expiration = int(labels[EXPIRATION_LABEL])
            except (TypeError, ValueError):
                logger.warning(
                    "Invalid status expiration label, resolving locally",
                    extra={"task_id": message.task_id, "label": labels[EXPIRATION_LABEL]},
                )
            else:
                return expiration if expiration > 0 else None

        # Sent by a client without StatusMiddleware
        machine = get_state_machine()
        job_type = self._job_type(message.task_name)
        if not machine.is_tracked(job_type, labels):
            return None
        return machine.resolve_expiration(job_type)

    async def pre_execute(self, message: TaskiqMessage) -> TaskiqMessage:
        """Record the ``working`` transition.

        Args:
            message: The task message containing task_id and task_name.

        Returns:
            The message, unmodified.
        """
        expiration = self._execution_expiration(message)
        if expiration is None:
            return message

        set_log_context(job_id=message.task_id, task_name=message.task_name)
        await get_state_machine().begin(message.task_id, expiration)
        self._expirations[message.task_id] = expiration
        return message

    async def post_execute(
        self,
        message: TaskiqMessage,
        result: TaskiqResult[Any],
    ) -> None:
        """Record the terminal transition.

        Args:
            message: The task message containing task_id and task_name.
            result: The task result containing return value or error.
        """
        expiration = self._expirations.pop(message.task_id, None)
        if expiration is None:
            return

        error = result.error if result.is_err else None
        try:
            status = await get_state_machine().finish(message.task_id, error, expiration)
        finally:
            remove_from_log_context("job_id", "task_name")

        logger.debug(
            "Task status recorded",
            extra={"task_id": message.task_id, "task_name": message.task_name, "status": status.value},
        )


def progress_reporter(context: Context = TaskiqDepends()) -> ProgressReporter:  # noqa: B008
    """Taskiq dependency providing a ProgressReporter for the running task.

    Example:
        @broker.task
        @track_status
        async def crunch(
            progress: ProgressReporter = TaskiqDepends(progress_reporter),
        ) -> None:
            await progress.at(10, "warming up")
    """
    return get_reporter(context.message.task_id)
