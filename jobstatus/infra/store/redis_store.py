"""Redis adapter for job status records.

Thin wrapper over the handful of Redis primitives the status layer relies
on: hash field sets, key expiration and pub/sub. Calls are pipelined
rather than transactional; there are no cross-key transactions.

Two flavours exist:

- ``RedisStatusStore`` (redis.asyncio) serves the enqueue/execution path,
  the query API and the progress reporter.
- ``BlockingStatusStore`` (redis) serves the termination hook, which runs
  inside a signal handler or atexit callback where no event loop can be
  awaited.
"""

from __future__ import annotations

from contextlib import contextmanager
import logging
import time
from typing import TYPE_CHECKING, Any, NamedTuple, cast

import redis
from redis.asyncio import ConnectionPool, Redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from jobstatus.core.exceptions import StoreUnavailableError
from jobstatus.infra.metrics.prometheus import job_status_store_duration_seconds

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterator, Mapping, Sequence
    from types import TracebackType

    from redis.asyncio.client import PubSub

logger = logging.getLogger(__name__)

FieldValue = str | int | float | bytes

_UNAVAILABLE = (RedisConnectionError, RedisTimeoutError)


class StatusWrite(NamedTuple):
    """One record write: HSET, optional EXPIRE, then PUBLISH per channel."""

    key: str
    mapping: Mapping[str, FieldValue]
    ttl: int | None = None
    channels: Sequence[str] = ()
    message: str = ""


def _queue_write(pipe: Any, write: StatusWrite) -> None:
    pipe.hset(write.key, mapping=dict(write.mapping))
    if write.ttl is not None:
        pipe.expire(write.key, write.ttl)
    for channel in write.channels:
        pipe.publish(channel, write.message)


@contextmanager
def _store_errors(operation: str, target: str) -> Iterator[None]:
    """Translate Redis connectivity errors into StoreUnavailableError."""
    try:
        yield
    except _UNAVAILABLE as e:
        raise StoreUnavailableError(
            f"Redis unavailable during {operation}",
            extra={"operation": operation, "target": target, "error": str(e)},
        ) from e


class Subscription:
    """Live pub/sub subscription to one or more channels.

    The subscription is active once ``__aenter__`` returns, so callers can
    subscribe first and read current state afterwards without missing an
    update published in between.

    Example:
        async with store.subscribe("status_updates") as sub:
            async for channel, data in sub:
                print(channel, data)
    """

    def __init__(self, client: Redis, channels: Sequence[str]) -> None:
        self._client = client
        self.channels = tuple(channels)
        self._pubsub: PubSub | None = None

    async def __aenter__(self) -> Subscription:
        self._pubsub = self._client.pubsub(ignore_subscribe_messages=True)
        with _store_errors("subscribe", ",".join(self.channels)):
            await self._pubsub.subscribe(*self.channels)
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    async def close(self) -> None:
        """Unsubscribe and release the pubsub connection."""
        if self._pubsub is None:
            return

        pubsub, self._pubsub = self._pubsub, None
        try:
            await pubsub.unsubscribe(*self.channels)
        except _UNAVAILABLE as e:
            logger.debug("Unsubscribe failed", extra={"channels": self.channels, "error": str(e)})

        close_method = getattr(pubsub, "aclose", None)
        if close_method is not None:
            await close_method()
        else:
            await pubsub.close()

    @property
    def pubsub(self) -> PubSub:
        if self._pubsub is None:
            msg = "Subscription is not active. Use 'async with store.subscribe(...)'."
            raise RuntimeError(msg)
        return self._pubsub

    async def __aiter__(self) -> AsyncIterator[tuple[str, str]]:
        with _store_errors("listen", ",".join(self.channels)):
            async for message in self.pubsub.listen():
                if message["type"] != "message":
                    continue
                yield _decode(message["channel"]), _decode(message["data"])

    async def get(self, timeout: float | None = None) -> tuple[str, str] | None:
        """Wait up to ``timeout`` seconds for the next message.

        Returns:
            ``(channel, data)`` or None if nothing arrived in time.
        """
        with _store_errors("get_message", ",".join(self.channels)):
            message = await self.pubsub.get_message(
                ignore_subscribe_messages=True,
                timeout=timeout,
            )
        if not message or message.get("type") != "message":
            return None
        return _decode(message["channel"]), _decode(message["data"])


def _decode(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode()
    return str(value)


class RedisStatusStore:
    """Async status store backed by Redis.

    Example:
        store = RedisStatusStore(redis_url="redis://localhost:6379/0")
        await store.connect()

        await store.write(
            "jobstatus:status:abc123",
            {"status": "queued"},
            ttl=1800,
            channels=("status_updates",),
            message='{"job_id": "abc123"}',
        )
        await store.get_field("jobstatus:status:abc123", "status")  # "queued"

        await store.disconnect()
    """

    def __init__(
        self,
        redis_url: str | None = None,
        *,
        client: Redis | None = None,
        pool_kwargs: dict[str, Any] | None = None,
    ) -> None:
        """Initialize the store.

        Args:
            redis_url: Redis connection URL. Required unless a client is given.
            client: Pre-built client (connection lifecycle stays with the caller).
            pool_kwargs: Extra ConnectionPool.from_url() arguments.
        """
        self.redis_url = redis_url
        self.pool_kwargs = pool_kwargs or {"decode_responses": True, "encoding": "utf-8"}

        self._pool: ConnectionPool | None = None
        self._client: Redis | None = client
        self._owns_client = client is None

    async def connect(self) -> None:
        """Establish connection to Redis.

        Raises:
            StoreUnavailableError: If Redis does not answer the initial PING.
        """
        if self._client is not None:
            return
        if not self.redis_url:
            msg = "redis_url is required when no client is provided"
            raise ValueError(msg)

        logger.info("Connecting to Redis for job status tracking")

        self._pool = ConnectionPool.from_url(self.redis_url, **self.pool_kwargs)
        self._client = Redis(connection_pool=self._pool)

        try:
            with _store_errors("ping", self.redis_url):
                await self._client.ping()
        except StoreUnavailableError:
            logger.exception("Failed to connect to Redis for job status tracking")
            await self.disconnect()
            raise

        logger.info("Job status Redis connection established")

    async def disconnect(self) -> None:
        """Close Redis connection."""
        if self._client is not None and self._owns_client:
            await cast("Any", self._client).aclose()
        self._client = None

        if self._pool is not None:
            await self._pool.disconnect()
            self._pool = None

    @property
    def is_connected(self) -> bool:
        """Check if connected to Redis."""
        return self._client is not None

    @property
    def client(self) -> Redis:
        """Get the Redis client instance."""
        if self._client is None:
            msg = "Status store not connected. Call connect() first."
            raise RuntimeError(msg)
        return self._client

    # ──────────────────────────────────────────────────────────────
    # Hash operations
    # ──────────────────────────────────────────────────────────────

    async def set_fields(self, key: str, mapping: Mapping[str, FieldValue]) -> None:
        """Set several hash fields at once (HSET)."""
        with _store_errors("hset", key):
            await self.client.hset(key, mapping=dict(mapping))

    async def get_field(self, key: str, field: str) -> str | None:
        """Get one hash field, None if the key or field is absent."""
        with _store_errors("hget", key):
            return await self.client.hget(key, field)

    async def get_all(self, key: str) -> dict[str, str]:
        """Get the whole hash, empty if the key is absent."""
        with _store_errors("hgetall", key):
            return dict(await self.client.hgetall(key))

    async def exists(self, key: str) -> bool:
        with _store_errors("exists", key):
            return bool(await self.client.exists(key))

    async def delete(self, key: str) -> bool:
        with _store_errors("delete", key):
            return bool(await self.client.delete(key))

    # ──────────────────────────────────────────────────────────────
    # Expiration
    # ──────────────────────────────────────────────────────────────

    async def expire(self, key: str, ttl_seconds: int) -> None:
        with _store_errors("expire", key):
            await self.client.expire(key, ttl_seconds)

    async def ttl(self, key: str) -> int | None:
        """Remaining TTL in seconds.

        Returns:
            Seconds left, or None when the key is absent or never expires.
        """
        with _store_errors("ttl", key):
            remaining = await self.client.ttl(key)
        if remaining is None or remaining < 0:
            return None
        return int(remaining)

    # ──────────────────────────────────────────────────────────────
    # Pub/sub
    # ──────────────────────────────────────────────────────────────

    async def publish(self, channel: str, message: str) -> int:
        """Publish a message, returning the number of receivers."""
        with _store_errors("publish", channel):
            return int(await self.client.publish(channel, message))

    def subscribe(self, *channels: str) -> Subscription:
        """Create a subscription; enter it with ``async with`` to start listening."""
        return Subscription(self.client, channels)

    async def write(
        self,
        key: str,
        mapping: Mapping[str, FieldValue],
        *,
        ttl: int | None = None,
        channels: Sequence[str] = (),
        message: str = "",
    ) -> None:
        """HSET, optional EXPIRE and PUBLISH in one pipelined round trip.

        The pipeline is not a transaction: each command stays atomic on its
        own, which is all the status record needs.
        """
        start_time = time.perf_counter()

        pipe = self.client.pipeline(transaction=False)
        _queue_write(pipe, StatusWrite(key, mapping, ttl, channels, message))

        with _store_errors("write", key):
            await pipe.execute()

        job_status_store_duration_seconds.labels(operation="write").observe(
            time.perf_counter() - start_time,
        )

    async def update_existing(
        self,
        key: str,
        mapping: Mapping[str, FieldValue],
        *,
        channels: Sequence[str] = (),
        message: str = "",
    ) -> bool:
        """HSET into a record that is expected to exist, keeping its TTL.

        HSET and TTL go out in one pipeline. If the record expired before the
        HSET landed, HSET recreated it without an expiration: that hash is
        deleted again and nothing is published.

        Returns:
            True if the fields were written to a live record.
        """
        start_time = time.perf_counter()

        pipe = self.client.pipeline(transaction=False)
        pipe.hset(key, mapping=dict(mapping))
        pipe.ttl(key)

        with _store_errors("update_existing", key):
            _, remaining = await pipe.execute()
            if remaining is not None and remaining < 0:
                await self.client.delete(key)
                return False
            if channels:
                pipe = self.client.pipeline(transaction=False)
                for channel in channels:
                    pipe.publish(channel, message)
                await pipe.execute()

        job_status_store_duration_seconds.labels(operation="update_existing").observe(
            time.perf_counter() - start_time,
        )
        return True


class BlockingStatusStore:
    """Synchronous status store used from signal handlers and atexit hooks.

    Socket timeouts are kept short so a dead Redis cannot hold up process
    teardown for long.
    """

    def __init__(
        self,
        redis_url: str | None = None,
        *,
        timeout: float = 0.5,
        client: redis.Redis | None = None,
    ) -> None:
        if client is None:
            if not redis_url:
                msg = "redis_url is required when no client is provided"
                raise ValueError(msg)
            client = redis.Redis.from_url(
                redis_url,
                socket_timeout=timeout,
                socket_connect_timeout=timeout,
                decode_responses=True,
            )
        self.client = client
        self.timeout = timeout

    def write(
        self,
        key: str,
        mapping: Mapping[str, FieldValue],
        *,
        ttl: int | None = None,
        channels: Sequence[str] = (),
        message: str = "",
    ) -> None:
        """Same contract as RedisStatusStore.write(), blocking."""
        self.write_many([StatusWrite(key, mapping, ttl, channels, message)])

    def write_many(self, writes: Sequence[StatusWrite]) -> None:
        """Apply several record writes in a single pipelined round trip.

        A hung Redis costs one socket timeout however many records are
        written.
        """
        if not writes:
            return
        start_time = time.perf_counter()

        pipe = self.client.pipeline(transaction=False)
        for write in writes:
            _queue_write(pipe, write)

        with _store_errors("write", ", ".join(write.key for write in writes)):
            pipe.execute()

        job_status_store_duration_seconds.labels(operation="blocking_write").observe(
            time.perf_counter() - start_time,
        )

    def close(self) -> None:
        self.client.close()
