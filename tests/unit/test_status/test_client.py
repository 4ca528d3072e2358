"""Unit tests for the process-global status client."""

from __future__ import annotations

from types import SimpleNamespace

import pytest

import jobstatus
from jobstatus.core.exceptions import StatusClientNotStartedError, StoreUnavailableError
from jobstatus.infra.store.redis_store import BlockingStatusStore
from jobstatus.status import client
from jobstatus.status.enums import JobStatus
from jobstatus.status.termination import TerminationGuard


@pytest.fixture
async def started(store):
    await client.start_status_client(store=store)
    yield
    await client.stop_status_client()


def test_accessors_require_start():
    assert client.is_started() is False
    for accessor in (client.get_store, client.get_keys, client.get_guard, client.get_query):
        with pytest.raises(StatusClientNotStartedError):
            accessor()


@pytest.mark.asyncio
async def test_start_is_idempotent(started, store, fake_redis_factory):
    from jobstatus.infra.store.redis_store import RedisStatusStore

    await client.start_status_client(store=RedisStatusStore(client=fake_redis_factory()))

    assert client.get_store() is store


@pytest.mark.asyncio
async def test_start_fails_when_redis_is_down(fake_redis):
    from jobstatus.infra.store.redis_store import RedisStatusStore

    class DownStore(RedisStatusStore):
        async def connect(self) -> None:
            raise StoreUnavailableError

    with pytest.raises(StoreUnavailableError):
        await client.start_status_client(store=DownStore(client=fake_redis))

    assert client.is_started() is False


@pytest.mark.asyncio
async def test_shortcuts_use_global_client(started):
    """Top-level helpers answer from the started client."""
    machine = client.get_state_machine()
    await machine.mark_working("job-1", 60)
    await client.get_reporter("job-1").at(30, "a third")

    assert await jobstatus.status("job-1") is JobStatus.WORKING
    assert await jobstatus.is_working("job-1") is True
    assert await jobstatus.is_queued("job-1") is False
    assert await jobstatus.is_complete("job-1") is False
    assert await jobstatus.is_failed("job-1") is False
    assert await jobstatus.is_interrupted("job-1") is False
    assert await jobstatus.pct_complete("job-1") == 30
    assert await jobstatus.message("job-1") == "a third"
    assert await jobstatus.update_time("job-1") is not None
    assert (await jobstatus.get_all("job-1"))["status"] == "working"

    await machine.mark_finished("job-1", JobStatus.COMPLETE, 60)
    assert await jobstatus.wait_for("job-1", timeout=1) is JobStatus.COMPLETE

    assert await jobstatus.delete("job-1") is True
    assert await jobstatus.status("job-1") is None


@pytest.mark.asyncio
async def test_stop_marks_running_jobs_interrupted(monkeypatch, store, blocking_store, fake_redis, keys):
    """Jobs still executing when the client stops do not stay working."""
    monkeypatch.setattr(
        client,
        "create_guard",
        lambda keys: TerminationGuard(store_factory=lambda: blocking_store, keys=keys),
    )
    await client.start_status_client(store=store)
    machine = client.get_state_machine()
    await machine.on_enqueue("job-x", SimpleNamespace(track_status=True))
    await machine.begin("job-x", 60)
    await machine.mark_working("job-done", 60)

    await client.stop_status_client()

    assert fake_redis.hashes[keys.status_key("job-x")]["status"] == "interrupted"
    assert fake_redis.expirations[keys.status_key("job-x")] == 60
    assert fake_redis.hashes[keys.status_key("job-done")]["status"] == "working"


@pytest.mark.asyncio
async def test_stop_without_running_jobs_writes_nothing(started, fake_redis):
    await client.stop_status_client()

    assert fake_redis.hashes == {}


@pytest.mark.asyncio
async def test_guard_uses_blocking_store_from_settings(started):
    guard = client.create_guard(client.get_keys())
    store = guard._get_store()

    assert isinstance(store, BlockingStatusStore)
    assert store.timeout == 0.5
    store.close()


def test_create_store_from_settings(monkeypatch):
    monkeypatch.setenv("REDIS_URL", "redis://cache:6380/3")

    store = client.create_store()

    assert store.redis_url == "redis://cache:6380/3"
    assert store.pool_kwargs["decode_responses"] is True
    assert store.is_connected is False
