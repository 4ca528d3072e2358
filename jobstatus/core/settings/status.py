"""Job status tracking settings.

Environment variables use STATUS_ prefix.
Example: STATUS_EXPIRATION=3600, STATUS_ALL_JOBS=true
"""

from __future__ import annotations

from typing import Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ._sanitizers import sanitize_inline_numeric

# Expiration applied when neither the job type nor the settings provide one.
DEFAULT_EXPIRY = 60 * 30


class StatusSettings(BaseSettings):
    """Status tracking configuration.

    Read once per process through ``get_status_settings()`` and treated as
    immutable afterwards (the model is frozen).
    """

    # ──────────────────────────────────────────────────────────────
    # Tracking policy
    # ──────────────────────────────────────────────────────────────

    expiration: int | None = Field(
        default=None,
        ge=1,
        description="TTL of status records in seconds. None falls back to DEFAULT_EXPIRY.",
    )

    all_jobs: bool = Field(
        default=False,
        description="Track every job, not only the ones that opt in with track_status",
    )

    # ──────────────────────────────────────────────────────────────
    # Key layout
    # ──────────────────────────────────────────────────────────────

    key_prefix: str = Field(
        default="jobstatus",
        min_length=1,
        max_length=50,
        pattern=r"^[a-zA-Z0-9_:-]+$",
        description="Namespace for status hash keys",
    )

    global_channel: str = Field(
        default="status_updates",
        min_length=1,
        description="Pub/sub channel receiving updates for every job",
    )

    job_channel_prefix: str = Field(
        default="job_messages_",
        min_length=1,
        description="Prefix of the per-job pub/sub channel",
    )

    # ──────────────────────────────────────────────────────────────
    # Abnormal termination
    # ──────────────────────────────────────────────────────────────

    install_signal_handlers: bool = Field(
        default=True,
        description="Mark in-flight jobs as interrupted on SIGTERM/SIGINT and at exit",
    )

    termination_timeout: float = Field(
        default=0.5,
        ge=0.05,
        le=10.0,
        description="Socket timeout in seconds for the best-effort termination write",
    )

    @field_validator("expiration", "termination_timeout", mode="before")
    @classmethod
    def _normalize_numeric(cls, value: Any) -> Any:
        """Allow numeric env vars with inline comments (e.g., "3600  # 1 hour")."""
        return sanitize_inline_numeric(value)

    @property
    def effective_expiration(self) -> int:
        """Configured expiration, or DEFAULT_EXPIRY when unset."""
        return self.expiration if self.expiration is not None else DEFAULT_EXPIRY

    model_config = SettingsConfigDict(
        env_prefix="STATUS_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
        env_ignore_empty=True,
    )
