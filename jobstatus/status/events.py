"""Notification events published on every status record write."""

from __future__ import annotations

from dataclasses import dataclass, field
import json
from typing import Any


@dataclass(frozen=True, slots=True)
class StatusEvent:
    """One update of one job's status record.

    Attributes:
        job_id: Job the update belongs to.
        fields: Record fields written by the update (string values).
        channel: Channel the event was received on.
    """

    job_id: str
    fields: dict[str, str] = field(default_factory=dict)
    channel: str | None = None

    @property
    def status(self) -> str | None:
        """Status written by this update, None for progress-only updates."""
        return self.fields.get("status")


def encode_event(job_id: str, fields: dict[str, Any]) -> str:
    """Serialize an update as the JSON payload published to the channels."""
    return json.dumps({"job_id": job_id, "fields": fields}, default=str)


def decode_event(channel: str, data: str) -> StatusEvent:
    """Parse a published payload.

    Raises:
        ValueError: If the payload is not a status event.
    """
    payload = json.loads(data)
    if not isinstance(payload, dict) or "job_id" not in payload:
        msg = f"Not a status event: {data!r}"
        raise ValueError(msg)

    fields = payload.get("fields") or {}
    return StatusEvent(
        job_id=str(payload["job_id"]),
        fields={str(k): str(v) for k, v in fields.items()},
        channel=channel,
    )
