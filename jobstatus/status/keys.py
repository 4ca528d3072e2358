"""Redis key and channel layout for job status records.

Key Structure:
- {prefix}:status:{job_id} - Hash with the status record (carries the TTL)
- {job_channel_prefix}{job_id} - Pub/sub channel with updates for one job
- {global_channel} - Pub/sub channel with updates for every job
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from jobstatus.core.settings.status import StatusSettings


@dataclass(frozen=True, slots=True)
class JobKeys:
    """All store names belonging to one job."""

    status_key: str
    job_channel: str
    global_channel: str

    @property
    def channels(self) -> tuple[str, str]:
        """Channels an update for this job is published to."""
        return (self.global_channel, self.job_channel)


@dataclass(frozen=True, slots=True)
class StatusKeys:
    """Deterministic mapping from job identifier to store names.

    Job identifiers are generated by the job framework and assumed unique,
    so distinct jobs never share a key or a channel.

    Example:
        keys = StatusKeys()
        keys.status_key("abc123")   # "jobstatus:status:abc123"
        keys.job_channel("abc123")  # "job_messages_abc123"
    """

    prefix: str = "jobstatus"
    global_channel: str = "status_updates"
    job_channel_prefix: str = "job_messages_"

    @classmethod
    def from_settings(cls, settings: StatusSettings) -> StatusKeys:
        return cls(
            prefix=settings.key_prefix,
            global_channel=settings.global_channel,
            job_channel_prefix=settings.job_channel_prefix,
        )

    def status_key(self, job_id: str) -> str:
        return f"{self.prefix}:status:{job_id}"

    def job_channel(self, job_id: str) -> str:
        return f"{self.job_channel_prefix}{job_id}"

    def for_job(self, job_id: str) -> JobKeys:
        return JobKeys(
            status_key=self.status_key(job_id),
            job_channel=self.job_channel(job_id),
            global_channel=self.global_channel,
        )
