"""Read side of job status tracking.

Queries never treat a missing record as an error: a job that was not
tracked, or whose record expired, simply has no status and every
predicate answers False.

Subscriptions are live and lossy. Events published before the
subscription starts are not replayed, and a consumer that falls behind
may miss updates. Use ``wait_for()`` when only the terminal status matters:
it re-reads the record after subscribing, so an update that happened
before the call is not lost.
"""

from __future__ import annotations

import asyncio
from contextlib import aclosing
from datetime import UTC, datetime
import json
import logging
from typing import TYPE_CHECKING, Any

from jobstatus.status.enums import JobStatus
from jobstatus.status.events import StatusEvent, decode_event

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from jobstatus.infra.store.redis_store import RedisStatusStore
    from jobstatus.status.keys import StatusKeys

logger = logging.getLogger(__name__)


def _as_int(value: str | None) -> int:
    if value in (None, ""):
        return 0
    try:
        return int(float(value))
    except ValueError:
        return 0


class StatusQuery:
    """Status, progress and subscription queries for job records.

    Example:
        query = StatusQuery(store, StatusKeys())

        await query.status("abc123")        # JobStatus.WORKING
        await query.is_complete("abc123")   # False
        await query.pct_complete("abc123")  # 40

        async with aclosing(query.subscribe("abc123")) as events:
            async for event in events:
                print(event.status, event.fields)
    """

    def __init__(self, store: RedisStatusStore, keys: StatusKeys) -> None:
        self.store = store
        self.keys = keys

    # ──────────────────────────────────────────────────────────────
    # Status and predicates
    # ──────────────────────────────────────────────────────────────

    async def status(self, job_id: str) -> JobStatus | None:
        """Current status, None when the job has no record."""
        value = await self.store.get_field(self.keys.status_key(job_id), "status")
        return JobStatus.parse(value)

    async def _is(self, job_id: str, expected: JobStatus) -> bool:
        return await self.status(job_id) == expected

    async def is_queued(self, job_id: str) -> bool:
        return await self._is(job_id, JobStatus.QUEUED)

    async def is_working(self, job_id: str) -> bool:
        return await self._is(job_id, JobStatus.WORKING)

    async def is_complete(self, job_id: str) -> bool:
        return await self._is(job_id, JobStatus.COMPLETE)

    async def is_failed(self, job_id: str) -> bool:
        return await self._is(job_id, JobStatus.FAILED)

    async def is_interrupted(self, job_id: str) -> bool:
        return await self._is(job_id, JobStatus.INTERRUPTED)

    # ──────────────────────────────────────────────────────────────
    # Record fields
    # ──────────────────────────────────────────────────────────────

    async def get_all(self, job_id: str) -> dict[str, str]:
        """The whole record as a plain dict, empty when absent."""
        return await self.store.get_all(self.keys.status_key(job_id))

    async def get(self, job_id: str, field: str) -> str | None:
        """One record field, None when the record or the field is absent."""
        return await self.store.get_field(self.keys.status_key(job_id), field)

    async def retrieve(self, job_id: str, field: str) -> Any:
        """One custom field decoded from JSON when possible."""
        raw = await self.get(job_id, field)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            return raw

    async def pct_complete(self, job_id: str) -> int:
        return _as_int(await self.get(job_id, "pct_complete"))

    async def at(self, job_id: str) -> int:
        return _as_int(await self.get(job_id, "at"))

    async def total(self, job_id: str) -> int:
        return _as_int(await self.get(job_id, "total"))

    async def message(self, job_id: str) -> str | None:
        return await self.get(job_id, "message")

    async def update_time(self, job_id: str) -> datetime | None:
        """Time of the last write, None when absent."""
        value = await self.get(job_id, "update_time")
        if not value:
            return None
        return datetime.fromtimestamp(_as_int(value), tz=UTC)

    async def ttl(self, job_id: str) -> int | None:
        """Seconds until the record expires, None when absent."""
        return await self.store.ttl(self.keys.status_key(job_id))

    async def delete(self, job_id: str) -> bool:
        """Drop a record ahead of its expiry.

        Returns:
            True if a record was removed.
        """
        return await self.store.delete(self.keys.status_key(job_id))

    # ──────────────────────────────────────────────────────────────
    # Subscriptions
    # ──────────────────────────────────────────────────────────────

    def _channel_for(self, job_id: str | None) -> str:
        if job_id is None:
            return self.keys.global_channel
        return self.keys.job_channel(job_id)

    async def subscribe(self, job_id: str | None = None) -> AsyncIterator[StatusEvent]:
        """Stream live updates for one job, or for every job when job_id is None.

        Runs until the consumer stops iterating. Close the generator (or use
        ``contextlib.aclosing``) to release the pub/sub connection promptly.
        """
        async with self.store.subscribe(self._channel_for(job_id)) as subscription:
            async for channel, data in subscription:
                try:
                    event = decode_event(channel, data)
                except ValueError as e:
                    logger.warning(
                        "Skipping malformed status event",
                        extra={"channel": channel, "error": str(e)},
                    )
                    continue
                yield event

    async def wait_for(self, job_id: str, timeout: float | None = None) -> JobStatus | None:
        """Wait until a job reaches a terminal status.

        Args:
            job_id: Job to wait for.
            timeout: Maximum seconds to wait; None waits indefinitely.

        Returns:
            The terminal status, or None if the job has no record.

        Raises:
            TimeoutError: If the job is still running after ``timeout``.
        """
        async with asyncio.timeout(timeout):
            async with self.store.subscribe(self.keys.job_channel(job_id)) as subscription:
                current = await self.status(job_id)
                if current is None or current.is_terminal():
                    return current

                async with aclosing(aiter(subscription)) as messages:
                    async for channel, data in messages:
                        try:
                            event = decode_event(channel, data)
                        except ValueError:
                            continue
                        status = JobStatus.parse(event.status)
                        if status is not None and status.is_terminal():
                            return status

        # Subscription ended without a terminal update
        return await self.status(job_id)
