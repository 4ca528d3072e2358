"""Progress reporting from inside a running job.

A reporter is bound to the job id of the job it runs in. Updates are merged
into the existing status record and announced on the job's channels.
Reporting for an untracked job (no record) is a silent no-op, and store
errors are logged rather than raised, so progress calls can never fail a
job.

Usage from a taskiq task:

    from taskiq import TaskiqDepends

    from jobstatus import ProgressReporter, progress_reporter, track_status

    @broker.task
    @track_status
    async def import_rows(
        rows: list[dict],
        progress: ProgressReporter = TaskiqDepends(progress_reporter),
    ) -> None:
        await progress.total(len(rows))
        for index, row in enumerate(rows, start=1):
            ...
            await progress.at(index, f"Imported row {index}")
"""

from __future__ import annotations

import json
import logging
import time
from typing import TYPE_CHECKING, Any

from jobstatus.core.exceptions import StoreUnavailableError
from jobstatus.infra.metrics.prometheus import job_status_progress_updates_total
from jobstatus.status.events import encode_event

if TYPE_CHECKING:
    from collections.abc import Mapping

    from jobstatus.infra.store.redis_store import RedisStatusStore
    from jobstatus.status.keys import StatusKeys

logger = logging.getLogger(__name__)

# Fields owned by the state machine; progress updates cannot overwrite them
RESERVED_FIELDS = frozenset({"status", "update_time", "jid"})


def _encode(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, default=str)


class ProgressReporter:
    """Progress updates for one job.

    Example:
        reporter = ProgressReporter("abc123", store, StatusKeys())
        await reporter.total(200)
        await reporter.at(50, "A quarter done")   # pct_complete = 25
        await reporter.store({"rows_skipped": 3})
        await reporter.retrieve("rows_skipped")   # 3
    """

    def __init__(self, job_id: str, store: RedisStatusStore, keys: StatusKeys) -> None:
        self.job_id = job_id
        self._store = store
        self._keys = keys.for_job(job_id)

    async def update(self, fields: Mapping[str, Any]) -> bool:
        """Merge fields into the job's record and publish the update.

        Non-string values are stored JSON-encoded. Reserved fields
        (status, update_time, jid) are ignored. The record keeps whatever
        expiration it has; a record that expires mid-update is not revived.

        Returns:
            True if the update was persisted, False if the job has no
            record or the store could not be reached.
        """
        payload = {k: _encode(v) for k, v in fields.items() if k not in RESERVED_FIELDS}
        if not payload:
            return False
        payload["update_time"] = str(int(time.time()))

        try:
            persisted = await self._store.exists(self._keys.status_key) and (
                await self._store.update_existing(
                    self._keys.status_key,
                    payload,
                    channels=self._keys.channels,
                    message=encode_event(self.job_id, payload),
                )
            )
        except StoreUnavailableError as e:
            job_status_progress_updates_total.labels(persisted="false").inc()
            logger.warning(
                "Failed to record job progress",
                extra={"job_id": self.job_id, "error": str(e)},
            )
            return False

        job_status_progress_updates_total.labels(persisted=str(persisted).lower()).inc()
        return persisted

    async def total(self, num: int) -> bool:
        """Set the number of work units ``at()`` counts against."""
        return await self.update({"total": int(num)})

    async def at(self, num: int, message: str | None = None) -> bool:
        """Report that ``num`` work units are done.

        ``pct_complete`` is computed against the stored total (100 when no
        total was set) and capped to 0..100.
        """
        total = 100
        try:
            raw_total = await self._store.get_field(self._keys.status_key, "total")
        except StoreUnavailableError as e:
            logger.warning(
                "Failed to read job total",
                extra={"job_id": self.job_id, "error": str(e)},
            )
            raw_total = None
        if raw_total:
            try:
                total = int(float(raw_total)) or 100
            except ValueError:
                total = 100

        pct_complete = max(0, min(100, round(num / total * 100)))
        fields: dict[str, Any] = {"at": int(num), "pct_complete": pct_complete}
        if message is not None:
            fields["message"] = message
        return await self.update(fields)

    async def store(self, data: Mapping[str, Any]) -> bool:
        """Store arbitrary application fields in the record."""
        return await self.update(data)

    async def retrieve(self, name: str) -> Any:
        """Read back a field written with ``store()``, JSON-decoded when possible."""
        try:
            raw = await self._store.get_field(self._keys.status_key, name)
        except StoreUnavailableError as e:
            logger.warning(
                "Failed to read job field",
                extra={"job_id": self.job_id, "field": name, "error": str(e)},
            )
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            return raw
