"""Job status state machine.

Wraps the job lifecycle and drives a job's status record through
``queued → working → complete | failed | interrupted``:

1. Enqueue: create the record (``queued``) with the resolved expiration
2. Execution start: ``working``, register with the termination guard
3. Execution end: ``complete`` on return, ``failed`` on exception,
   ``interrupted`` on exit requests (SystemExit, KeyboardInterrupt,
   cancellation)

Each transition is one HSET + EXPIRE + PUBLISH round trip issued in program
order by the coroutine running the job, so concurrent readers can observe
any intermediate state but never a skipped one.

Expiration resolution order:
    job type ``expiration()`` > STATUS_EXPIRATION > DEFAULT_EXPIRY
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import TYPE_CHECKING, Any, Protocol, TypeVar, runtime_checkable

from jobstatus.core.exceptions import StoreUnavailableError
from jobstatus.core.settings.status import DEFAULT_EXPIRY
from jobstatus.infra.metrics.prometheus import job_status_transitions_total
from jobstatus.status.enums import JobStatus
from jobstatus.status.events import encode_event

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping, Sequence

    from jobstatus.core.settings.status import StatusSettings
    from jobstatus.infra.store.redis_store import RedisStatusStore
    from jobstatus.status.keys import StatusKeys
    from jobstatus.status.termination import TerminationGuard

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRACK_ATTRIBUTE = "track_status"
TRACK_LABEL = "track_status"

# Errors meaning "the process was told to stop", not "the job is broken"
INTERRUPT_ERRORS: tuple[type[BaseException], ...] = (
    SystemExit,
    KeyboardInterrupt,
    asyncio.CancelledError,
)


@runtime_checkable
class ExpirationProvider(Protocol):
    """Capability a job type implements to choose its own record TTL."""

    def expiration(self) -> int:
        """Return the status record TTL in seconds."""
        ...


def as_bool(value: Any) -> bool:
    """Interpret flags coming from attributes or (possibly stringified) labels."""
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


class StatusStateMachine:
    """Records job lifecycle transitions in the status store.

    Example:
        machine = StatusStateMachine(store, StatusKeys(), settings, guard=guard)

        # Client side, at enqueue time
        expiration = await machine.on_enqueue(job_id, job_type, args=(1, 2))

        # Worker side, around the job body
        if expiration is not None:
            result = await machine.around_execution(job_id, body, expiration=expiration)
    """

    def __init__(
        self,
        store: RedisStatusStore,
        keys: StatusKeys,
        settings: StatusSettings,
        *,
        guard: TerminationGuard | None = None,
    ) -> None:
        self.store = store
        self.keys = keys
        self.settings = settings
        self.guard = guard

    # ──────────────────────────────────────────────────────────────
    # Policy
    # ──────────────────────────────────────────────────────────────

    def resolve_expiration(self, job_type: Any = None) -> int:
        """Pick the record TTL for a job type.

        The job type's own ``expiration()`` wins, then an explicitly
        configured STATUS_EXPIRATION, then DEFAULT_EXPIRY.
        """
        if isinstance(job_type, ExpirationProvider) and callable(job_type.expiration):
            expiration = int(job_type.expiration())
            if expiration > 0:
                return expiration
            logger.warning(
                "Ignoring non-positive job type expiration",
                extra={"job_type": repr(job_type), "expiration": expiration},
            )

        if self.settings.expiration is not None:
            return self.settings.expiration

        return DEFAULT_EXPIRY

    def is_tracked(self, job_type: Any = None, labels: Mapping[str, Any] | None = None) -> bool:
        """Decide whether a job gets a status record.

        An explicit opt-in or opt-out on the job type (``track_status``
        attribute) or on the message labels takes precedence; otherwise the
        global ``all_jobs`` policy decides.
        """
        explicit = getattr(job_type, TRACK_ATTRIBUTE, None)
        if explicit is None and labels:
            explicit = labels.get(TRACK_LABEL)

        if explicit is not None:
            return as_bool(explicit)

        return self.settings.all_jobs

    @staticmethod
    def classify(error: BaseException | None) -> JobStatus:
        """Map the outcome of a job body to its terminal status."""
        if error is None:
            return JobStatus.COMPLETE
        if isinstance(error, INTERRUPT_ERRORS):
            return JobStatus.INTERRUPTED
        return JobStatus.FAILED

    # ──────────────────────────────────────────────────────────────
    # Transitions
    # ──────────────────────────────────────────────────────────────

    async def on_enqueue(
        self,
        job_id: str,
        job_type: Any = None,
        args: Sequence[Any] | None = None,
        kwargs: Mapping[str, Any] | None = None,
        *,
        task_name: str | None = None,
        labels: Mapping[str, Any] | None = None,
    ) -> int | None:
        """Create the ``queued`` record for a tracked job.

        Returns:
            The resolved expiration, or None when the job is not tracked.

        Raises:
            StoreUnavailableError: If Redis cannot be reached (the enqueue fails).
        """
        if not self.is_tracked(job_type, labels):
            return None

        expiration = self.resolve_expiration(job_type)

        extra: dict[str, Any] = {"jid": job_id}
        if task_name:
            extra["task_name"] = task_name
        if args or kwargs:
            extra["args"] = json.dumps(
                {"args": list(args or ()), "kwargs": dict(kwargs or {})},
                default=str,
            )

        await self._transition(job_id, JobStatus.QUEUED, expiration, extra=extra)
        return expiration

    async def mark_working(self, job_id: str, expiration: int) -> None:
        await self._transition(job_id, JobStatus.WORKING, expiration)

    async def mark_finished(self, job_id: str, status: JobStatus, expiration: int) -> None:
        """Write a terminal status, re-applying the same expiration window."""
        if not status.is_terminal():
            msg = f"{status.value!r} is not a terminal status"
            raise ValueError(msg)
        await self._transition(job_id, status, expiration)

    async def begin(self, job_id: str, expiration: int) -> None:
        """Execution start: ``working`` plus termination guard registration."""
        await self.mark_working(job_id, expiration)
        if self.guard is not None:
            self.guard.register(job_id, expiration)

    async def finish(
        self,
        job_id: str,
        error: BaseException | None,
        expiration: int,
    ) -> JobStatus:
        """Execution end: write the terminal status for the job's outcome.

        If the termination hook already recorded the job as interrupted,
        nothing is written.

        Returns:
            The terminal status now held by the record.
        """
        status = self.classify(error)

        if self.guard is not None and self.guard.unregister(job_id):
            logger.info(
                "Job already marked interrupted by termination hook",
                extra={"job_id": job_id, "outcome": status.value},
            )
            return JobStatus.INTERRUPTED

        await self.mark_finished(job_id, status, expiration)
        return status

    async def around_execution(
        self,
        job_id: str,
        body: Callable[[], Awaitable[T]],
        *,
        expiration: int,
    ) -> T:
        """Run a job body with status tracking around it.

        The body's exception, if any, is re-raised unchanged after the
        terminal status is recorded.

        Raises:
            StoreUnavailableError: If a status write fails on the success path.
        """
        await self.begin(job_id, expiration)

        try:
            result = await body()
        except BaseException as exc:
            try:
                await self.finish(job_id, exc, expiration)
            except StoreUnavailableError:
                logger.exception(
                    "Failed to record terminal status, re-raising job error",
                    extra={"job_id": job_id, "error_type": type(exc).__name__},
                )
            raise

        await self.finish(job_id, None, expiration)
        return result

    async def _transition(
        self,
        job_id: str,
        status: JobStatus,
        expiration: int,
        *,
        extra: Mapping[str, Any] | None = None,
    ) -> None:
        job_keys = self.keys.for_job(job_id)
        fields: dict[str, Any] = {"status": status.value, "update_time": int(time.time())}
        if extra:
            fields.update(extra)

        await self.store.write(
            job_keys.status_key,
            fields,
            ttl=expiration,
            channels=job_keys.channels,
            message=encode_event(job_id, fields),
        )

        job_status_transitions_total.labels(status=status.value).inc()
        logger.debug(
            "Job status updated",
            extra={"job_id": job_id, "status": status.value, "expiration": expiration},
        )
