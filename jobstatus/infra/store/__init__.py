"""Status store adapters."""

from jobstatus.infra.store.redis_store import (
    BlockingStatusStore,
    RedisStatusStore,
    Subscription,
)

__all__ = [
    "BlockingStatusStore",
    "RedisStatusStore",
    "Subscription",
]
