"""Pytest configuration and shared fixtures.

Fixtures are organized by category to make them easy to discover and extend.

Organization:
    - Environment Fixtures: settings isolation
    - Redis Fixtures: in-memory Redis replacement (hashes, TTLs, pipelines,
      pub/sub) for the async and blocking clients
    - Status Fixtures: store, keys, termination guard, state machine, query

When adding new features:
    1. Add fixtures to the appropriate section below
    2. Use @pytest.fixture with clear docstrings
    3. Make fixtures composable (fixtures can depend on other fixtures)
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
import os
from typing import Any

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from jobstatus.core.settings import StatusSettings, clear_all_caches
from jobstatus.infra.store.redis_store import BlockingStatusStore, RedisStatusStore
from jobstatus.status.keys import StatusKeys
from jobstatus.status.machine import StatusStateMachine
from jobstatus.status.query import StatusQuery
from jobstatus.status.termination import TerminationGuard

_ENV_PREFIXES = ("STATUS_", "REDIS_", "LOG_")


# ============================================================================
# Environment Fixtures
# ============================================================================


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch):
    """Run every test against default settings, whatever the shell exports."""
    for name in list(os.environ):
        if name.upper().startswith(_ENV_PREFIXES):
            monkeypatch.delenv(name, raising=False)
    clear_all_caches()
    yield
    clear_all_caches()


# ============================================================================
# Redis Fixtures
# ============================================================================


class FakePubSub:
    """Pub/sub connection receiving messages published on FakeRedis."""

    def __init__(self, server: FakeRedis) -> None:
        self.server = server
        self.channels: set[str] = set()
        self.queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
        self.closed = False

    def deliver(self, channel: str, data: str) -> None:
        self.queue.put_nowait({"type": "message", "channel": channel, "data": data})

    async def subscribe(self, *channels: str) -> None:
        self.server._check()
        for channel in channels:
            self.channels.add(channel)
            self.server.subscribers[channel].add(self)

    async def unsubscribe(self, *channels: str) -> None:
        for channel in channels:
            self.channels.discard(channel)
            self.server.subscribers[channel].discard(self)

    async def listen(self):
        while True:
            yield await self.queue.get()

    async def get_message(self, ignore_subscribe_messages: bool = True, timeout: float | None = None):
        try:
            return await asyncio.wait_for(self.queue.get(), timeout=timeout)
        except TimeoutError:
            return None

    async def aclose(self) -> None:
        self.closed = True


class FakePipeline:
    """Pipeline queuing commands and applying them on execute()."""

    def __init__(self, client: FakeRedis) -> None:
        self.client = client
        self.commands: list[tuple[str, tuple[Any, ...]]] = []

    def hset(self, key: str, mapping: dict[str, Any]) -> FakePipeline:
        self.commands.append(("hset", (key, mapping)))
        return self

    def expire(self, key: str, ttl: int) -> FakePipeline:
        self.commands.append(("expire", (key, ttl)))
        return self

    def publish(self, channel: str, message: str) -> FakePipeline:
        self.commands.append(("publish", (channel, message)))
        return self

    def ttl(self, key: str) -> FakePipeline:
        self.commands.append(("ttl", (key,)))
        return self

    def _run(self) -> list[Any]:
        self.client._check()
        self.client.pipelines.append([name for name, _ in self.commands])
        return [getattr(self.client, f"_{name}_sync")(*args) for name, args in self.commands]

    async def execute(self) -> list[Any]:
        return self._run()


class FakeSyncPipeline(FakePipeline):
    def execute(self) -> list[Any]:  # type: ignore[override]
        return self._run()


class FakeRedis:
    """Very small in-memory Redis replacement for status tests.

    TTLs do not tick: ``expirations`` holds the last TTL set per key, which
    is what the status layer controls.
    """

    def __init__(self, connection_pool: Any | None = None) -> None:
        self.connection_pool = connection_pool
        self.hashes: dict[str, dict[str, str]] = {}
        self.expirations: dict[str, int] = {}
        self.published: list[tuple[str, str]] = []
        self.subscribers: dict[str, set[FakePubSub]] = defaultdict(set)
        self.pipelines: list[list[str]] = []
        self.fail = False
        self.closed = False

    def _check(self) -> None:
        if self.fail:
            msg = "Connection refused"
            raise RedisConnectionError(msg)

    # Sync helpers used by pipelines
    def _hset_sync(self, key: str, mapping: dict[str, Any]) -> int:
        existing = self.hashes.setdefault(key, {})
        added = len(set(mapping) - set(existing))
        for k, v in mapping.items():
            existing[k] = str(v)
        return added

    def _expire_sync(self, key: str, ttl: int) -> bool:
        if key not in self.hashes:
            return False
        self.expirations[key] = ttl
        return True

    def _publish_sync(self, channel: str, message: str) -> int:
        self.published.append((channel, message))
        receivers = self.subscribers.get(channel, set())
        for pubsub in receivers:
            pubsub.deliver(channel, message)
        return len(receivers)

    def _delete_sync(self, key: str) -> int:
        self.expirations.pop(key, None)
        return 1 if self.hashes.pop(key, None) is not None else 0

    def _ttl_sync(self, key: str) -> int:
        if key not in self.hashes:
            return -2
        return self.expirations.get(key, -1)

    # Async API used by RedisStatusStore
    async def ping(self):
        self._check()
        return True

    async def aclose(self):
        self.closed = True

    async def hset(self, key: str, mapping: dict[str, Any]):
        self._check()
        return self._hset_sync(key, mapping)

    async def hget(self, key: str, field: str):
        self._check()
        return self.hashes.get(key, {}).get(field)

    async def hgetall(self, key: str):
        self._check()
        return dict(self.hashes.get(key, {}))

    async def exists(self, key: str):
        self._check()
        return 1 if key in self.hashes else 0

    async def delete(self, key: str):
        self._check()
        return self._delete_sync(key)

    async def expire(self, key: str, ttl: int):
        self._check()
        return self._expire_sync(key, ttl)

    async def ttl(self, key: str):
        self._check()
        return self._ttl_sync(key)

    async def publish(self, channel: str, message: str):
        self._check()
        return self._publish_sync(channel, message)

    def pubsub(self, ignore_subscribe_messages: bool = False) -> FakePubSub:
        return FakePubSub(self)

    def pipeline(self, transaction: bool = True) -> FakePipeline:
        return FakePipeline(self)

    def messages_on(self, channel: str) -> list[str]:
        """Payloads published on one channel, in order."""
        return [message for ch, message in self.published if ch == channel]


class FakeSyncRedis:
    """Blocking client view over a FakeRedis server state."""

    def __init__(self, server: FakeRedis) -> None:
        self.server = server
        self.closed = False

    def pipeline(self, transaction: bool = True) -> FakeSyncPipeline:
        return FakeSyncPipeline(self.server)

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_redis() -> FakeRedis:
    """In-memory Redis shared by the async and blocking fixtures of a test."""
    return FakeRedis()


@pytest.fixture
def fake_redis_factory():
    """Build additional FakeRedis instances (e.g., for patched constructors)."""
    return FakeRedis


@pytest.fixture
def sync_redis(fake_redis) -> FakeSyncRedis:
    return FakeSyncRedis(fake_redis)


# ============================================================================
# Status Fixtures
# ============================================================================


@pytest.fixture
def keys() -> StatusKeys:
    return StatusKeys()


@pytest.fixture
def store(fake_redis) -> RedisStatusStore:
    """RedisStatusStore wired to FakeRedis."""
    return RedisStatusStore(client=fake_redis)


@pytest.fixture
def blocking_store(sync_redis) -> BlockingStatusStore:
    return BlockingStatusStore(client=sync_redis)


@pytest.fixture
def guard(blocking_store, keys):
    """Termination guard writing through the blocking fake; never installed."""
    guard = TerminationGuard(store_factory=lambda: blocking_store, keys=keys)
    yield guard
    guard.uninstall()


@pytest.fixture
def status_settings() -> StatusSettings:
    return StatusSettings()


@pytest.fixture
def make_machine(store, keys, guard):
    """Build a state machine with custom settings (``make_machine(all_jobs=True)``)."""

    def _make(**settings: Any) -> StatusStateMachine:
        return StatusStateMachine(store, keys, StatusSettings(**settings), guard=guard)

    return _make


@pytest.fixture
def machine(make_machine) -> StatusStateMachine:
    return make_machine()


@pytest.fixture
def query(store, keys) -> StatusQuery:
    return StatusQuery(store, keys)
