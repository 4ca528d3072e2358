"""Process-global status client and convenience functions.

The worker (through StatusMiddleware) and applications querying status
share one store connection per process, created from settings:

    # In your application lifespan
    async def lifespan(app):
        await start_status_client()
        yield
        await stop_status_client()

    # Anywhere afterwards
    from jobstatus import is_complete, status

    await status(job_id)       # JobStatus.COMPLETE
    await is_complete(job_id)  # True
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from jobstatus.core.exceptions import StatusClientNotStartedError
from jobstatus.core.settings import get_redis_settings, get_status_settings
from jobstatus.infra.store.redis_store import BlockingStatusStore, RedisStatusStore
from jobstatus.status.keys import StatusKeys
from jobstatus.status.machine import StatusStateMachine
from jobstatus.status.progress import ProgressReporter
from jobstatus.status.query import StatusQuery
from jobstatus.status.termination import TerminationGuard

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from datetime import datetime

    from jobstatus.status.enums import JobStatus
    from jobstatus.status.events import StatusEvent

logger = logging.getLogger(__name__)

_store: RedisStatusStore | None = None
_keys: StatusKeys | None = None
_guard: TerminationGuard | None = None
_machine: StatusStateMachine | None = None
_query: StatusQuery | None = None


def create_store() -> RedisStatusStore:
    """Create a (not yet connected) store from REDIS_* settings."""
    redis_settings = get_redis_settings()
    return RedisStatusStore(
        redis_url=redis_settings.url,
        pool_kwargs=redis_settings.connection_pool_kwargs(),
    )


def create_guard(keys: StatusKeys) -> TerminationGuard:
    """Create a termination guard writing through a short-timeout blocking client."""
    redis_url = get_redis_settings().url
    timeout = get_status_settings().termination_timeout

    return TerminationGuard(
        store_factory=lambda: BlockingStatusStore(redis_url, timeout=timeout),
        keys=keys,
    )


async def start_status_client(*, store: RedisStatusStore | None = None) -> None:
    """Initialize the global status client.

    Idempotent. Unlike optional tracking backends, a failure to reach Redis
    is raised: status writes on the job path must not be silently dropped.

    Args:
        store: Pre-built store to use instead of one created from settings.

    Raises:
        StoreUnavailableError: If Redis cannot be reached.
    """
    global _store, _keys, _guard, _machine, _query

    if _store is not None:
        return

    settings = get_status_settings()
    new_store = store or create_store()
    await new_store.connect()

    _store = new_store
    _keys = StatusKeys.from_settings(settings)
    _guard = create_guard(_keys)
    _machine = StatusStateMachine(_store, _keys, settings, guard=_guard)
    _query = StatusQuery(_store, _keys)

    logger.info(
        "Job status client started",
        extra={
            "all_jobs": settings.all_jobs,
            "expiration": settings.effective_expiration,
            "key_prefix": settings.key_prefix,
        },
    )


async def stop_status_client() -> None:
    """Close the global status client and uninstall the termination guard.

    Jobs still executing at this point will not get to record a terminal
    status through this client, so they are marked interrupted first.
    """
    global _store, _keys, _guard, _machine, _query

    if _guard is not None:
        if _guard.in_flight:
            _guard.flush("shutdown")
        _guard.uninstall()

    if _store is not None:
        try:
            await _store.disconnect()
        except Exception as e:
            logger.exception("Error stopping job status client", extra={"error": str(e)})

    _store = _keys = _guard = _machine = _query = None
    logger.info("Job status client stopped")


def is_started() -> bool:
    return _store is not None


def get_store() -> RedisStatusStore:
    if _store is None:
        raise StatusClientNotStartedError
    return _store


def get_keys() -> StatusKeys:
    if _keys is None:
        raise StatusClientNotStartedError
    return _keys


def get_guard() -> TerminationGuard:
    if _guard is None:
        raise StatusClientNotStartedError
    return _guard


def get_state_machine() -> StatusStateMachine:
    if _machine is None:
        raise StatusClientNotStartedError
    return _machine


def get_query() -> StatusQuery:
    if _query is None:
        raise StatusClientNotStartedError
    return _query


def get_reporter(job_id: str) -> ProgressReporter:
    """Progress reporter bound to ``job_id`` on the global store."""
    return ProgressReporter(job_id, get_store(), get_keys())


# ──────────────────────────────────────────────────────────────
# Query shortcuts
# ──────────────────────────────────────────────────────────────


async def status(job_id: str) -> JobStatus | None:
    return await get_query().status(job_id)


async def is_queued(job_id: str) -> bool:
    return await get_query().is_queued(job_id)


async def is_working(job_id: str) -> bool:
    return await get_query().is_working(job_id)


async def is_complete(job_id: str) -> bool:
    return await get_query().is_complete(job_id)


async def is_failed(job_id: str) -> bool:
    return await get_query().is_failed(job_id)


async def is_interrupted(job_id: str) -> bool:
    return await get_query().is_interrupted(job_id)


async def get_all(job_id: str) -> dict[str, str]:
    return await get_query().get_all(job_id)


async def pct_complete(job_id: str) -> int:
    return await get_query().pct_complete(job_id)


async def message(job_id: str) -> str | None:
    return await get_query().message(job_id)


async def update_time(job_id: str) -> datetime | None:
    return await get_query().update_time(job_id)


async def delete(job_id: str) -> bool:
    return await get_query().delete(job_id)


def subscribe(job_id: str | None = None) -> AsyncIterator[StatusEvent]:
    """Live updates for one job, or all jobs when job_id is None."""
    return get_query().subscribe(job_id)


async def wait_for(job_id: str, timeout: float | None = None) -> JobStatus | None:
    return await get_query().wait_for(job_id, timeout=timeout)
