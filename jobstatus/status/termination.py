"""Process-termination hook for jobs that never return.

When a worker process is told to stop, the coroutine running a job may
never get back to the code that records its terminal status. The guard
keeps a registry of the jobs currently executing in this process and, at
termination time, marks every one of them ``interrupted`` with a blocking,
short-timeout Redis write.

The hook is attached in two places, independent of any job's call stack:

- signal handlers for SIGTERM and SIGINT. When the previous handler is the
  default action (the process dies right away) the write happens before
  the signal is re-delivered. When a framework installed its own handler
  (graceful shutdown), the handler is chained and the write only happens
  if it raises, so jobs allowed to finish still record ``complete``.
- an ``atexit`` callback covering jobs still registered when the
  interpreter shuts down.

Writes are best effort and go out in one pipelined round trip: failures
are logged and swallowed, and the records may stay at ``working`` if Redis
is unreachable at that moment.
"""

from __future__ import annotations

import atexit
import logging
import os
import signal
import threading
import time
from typing import TYPE_CHECKING, Any

from jobstatus.infra.metrics.prometheus import (
    job_status_termination_writes_total,
    job_status_transitions_total,
)
from jobstatus.infra.store.redis_store import StatusWrite
from jobstatus.status.enums import JobStatus
from jobstatus.status.events import encode_event

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable
    from types import FrameType

    from jobstatus.infra.store.redis_store import BlockingStatusStore
    from jobstatus.status.keys import StatusKeys

logger = logging.getLogger(__name__)

DEFAULT_SIGNALS = (signal.SIGTERM, signal.SIGINT)


class TerminationGuard:
    """Registry of in-flight jobs plus the termination-time finalizer.

    Example:
        guard = TerminationGuard(
            store_factory=lambda: BlockingStatusStore(redis_url, timeout=0.5),
            keys=StatusKeys(),
        )
        guard.install()

        guard.register("abc123", expiration=1800)
        ...  # job runs
        guard.unregister("abc123")
    """

    def __init__(
        self,
        store_factory: Callable[[], BlockingStatusStore],
        keys: StatusKeys,
        *,
        signals: Iterable[signal.Signals] = DEFAULT_SIGNALS,
    ) -> None:
        self._store_factory = store_factory
        self._store: BlockingStatusStore | None = None
        self._keys = keys
        self._signals = tuple(signals)

        # Reentrant: a signal handler may run while the main thread holds it
        self._lock = threading.RLock()
        self._in_flight: dict[str, int] = {}
        self._interrupted: set[str] = set()

        self._previous_handlers: dict[int, Any] = {}
        self._installed = False

    # ──────────────────────────────────────────────────────────────
    # Registry
    # ──────────────────────────────────────────────────────────────

    def register(self, job_id: str, expiration: int) -> None:
        """Mark a job as executing in this process."""
        with self._lock:
            self._in_flight[job_id] = expiration
            self._interrupted.discard(job_id)

    def unregister(self, job_id: str) -> bool:
        """Forget a job once its execution path is done.

        Returns:
            True if the termination hook already recorded the job as
            interrupted, in which case no other terminal status may be
            written for it.
        """
        with self._lock:
            self._in_flight.pop(job_id, None)
            if job_id in self._interrupted:
                self._interrupted.discard(job_id)
                return True
            return False

    def was_interrupted(self, job_id: str) -> bool:
        with self._lock:
            return job_id in self._interrupted

    @property
    def in_flight(self) -> dict[str, int]:
        """Snapshot of job id → expiration for jobs currently executing."""
        with self._lock:
            return dict(self._in_flight)

    # ──────────────────────────────────────────────────────────────
    # Installation
    # ──────────────────────────────────────────────────────────────

    @property
    def is_installed(self) -> bool:
        return self._installed

    def install(self) -> None:
        """Attach signal handlers and the atexit hook (idempotent).

        Signal handlers can only be set from the main thread; elsewhere only
        the atexit hook is attached.
        """
        if self._installed:
            return

        if threading.current_thread() is threading.main_thread():
            for sig in self._signals:
                self._previous_handlers[int(sig)] = signal.getsignal(sig)
                signal.signal(sig, self._handle_signal)
        else:
            logger.warning("Termination guard installed off the main thread, signal handlers skipped")

        atexit.register(self._at_exit)
        self._installed = True

        logger.info(
            "Termination guard installed",
            extra={"signals": [signal.Signals(s).name for s in self._previous_handlers]},
        )

    def uninstall(self) -> None:
        """Restore previous signal handlers and drop the atexit hook."""
        if not self._installed:
            return

        if threading.current_thread() is threading.main_thread():
            for signum, previous in self._previous_handlers.items():
                signal.signal(signum, previous if previous is not None else signal.SIG_DFL)
        self._previous_handlers.clear()

        atexit.unregister(self._at_exit)
        self._installed = False

        if self._store is not None:
            try:
                self._store.close()
            except Exception as e:
                logger.debug("Failed to close termination store", extra={"error": str(e)})
            self._store = None

    # ──────────────────────────────────────────────────────────────
    # Finalizer
    # ──────────────────────────────────────────────────────────────

    def flush(self, reason: str) -> int:
        """Mark every in-flight job interrupted, best effort.

        Never raises; the process is going away and must not be held up.

        Args:
            reason: What triggered the flush (signal name, "atexit", ...).

        Returns:
            Number of jobs successfully marked interrupted.
        """
        with self._lock:
            pending = {
                job_id: expiration
                for job_id, expiration in self._in_flight.items()
                if job_id not in self._interrupted
            }

        if not pending:
            return 0

        try:
            store = self._get_store()
        except Exception as e:
            logger.warning(
                "Termination store unavailable, in-flight jobs left as working",
                extra={"reason": reason, "job_ids": list(pending), "error": str(e)},
            )
            job_status_termination_writes_total.labels(outcome="failed").inc(len(pending))
            return 0

        fields = {"status": JobStatus.INTERRUPTED.value, "update_time": int(time.time())}
        writes = []
        for job_id, expiration in pending.items():
            job_keys = self._keys.for_job(job_id)
            writes.append(
                StatusWrite(
                    job_keys.status_key,
                    fields,
                    ttl=expiration,
                    channels=job_keys.channels,
                    message=encode_event(job_id, fields),
                ),
            )

        # One round trip for every job, so a hung Redis costs one timeout
        try:
            store.write_many(writes)
        except Exception as e:
            job_status_termination_writes_total.labels(outcome="failed").inc(len(pending))
            logger.warning(
                "Failed to mark in-flight jobs interrupted",
                extra={"job_ids": list(pending), "reason": reason, "error": str(e)},
            )
            return 0

        with self._lock:
            self._interrupted.update(pending)
        job_status_termination_writes_total.labels(outcome="written").inc(len(pending))
        job_status_transitions_total.labels(status=JobStatus.INTERRUPTED.value).inc(len(pending))

        logger.info(
            "In-flight jobs marked interrupted",
            extra={"reason": reason, "marked": len(pending)},
        )
        return len(pending)

    def _get_store(self) -> BlockingStatusStore:
        if self._store is None:
            self._store = self._store_factory()
        return self._store

    def _handle_signal(self, signum: int, frame: FrameType | None) -> None:
        reason = signal.Signals(signum).name
        previous = self._previous_handlers.get(signum)

        if callable(previous):
            try:
                previous(signum, frame)
            except BaseException:
                # The previous handler is tearing the process down
                self.flush(reason)
                raise
            return

        if previous == signal.SIG_IGN:
            return

        # Default action terminates the process immediately
        self.flush(reason)
        signal.signal(signum, signal.SIG_DFL)
        os.kill(os.getpid(), signum)

    def _at_exit(self) -> None:
        self.flush("atexit")
