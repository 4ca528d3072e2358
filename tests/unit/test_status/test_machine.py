"""Unit tests for StatusStateMachine."""

from __future__ import annotations

import asyncio
import json
from types import SimpleNamespace

import pytest

from jobstatus.core.exceptions import StoreUnavailableError
from jobstatus.core.settings import DEFAULT_EXPIRY
from jobstatus.infra.metrics.prometheus import REGISTRY
from jobstatus.status.enums import JobStatus
from jobstatus.status.machine import StatusStateMachine, as_bool

JOB_ID = "job-1"


def job_type(*, track: bool | None = True, expiration: int | None = None) -> SimpleNamespace:
    """Job type stand-in carrying the opt-in flag and an optional expiration()."""
    attrs = {}
    if track is not None:
        attrs["track_status"] = track
    if expiration is not None:
        attrs["expiration"] = lambda: expiration
    return SimpleNamespace(**attrs)


def statuses_on(fake_redis, channel: str) -> list[str | None]:
    return [json.loads(m)["fields"].get("status") for m in fake_redis.messages_on(channel)]


async def succeed() -> str:
    return "done"


# ──────────────────────────────────────────────────────────────
# Policy
# ──────────────────────────────────────────────────────────────


def test_resolve_expiration_defaults(machine):
    """Without job type or settings the default expiry applies."""
    assert machine.resolve_expiration(None) == DEFAULT_EXPIRY
    assert machine.resolve_expiration(job_type()) == DEFAULT_EXPIRY


def test_resolve_expiration_prefers_settings_then_job_type(make_machine):
    """Job type expiration() beats STATUS_EXPIRATION, which beats the default."""
    machine = make_machine(expiration=60)

    assert machine.resolve_expiration(job_type()) == 60
    assert machine.resolve_expiration(job_type(expiration=15)) == 15


def test_resolve_expiration_ignores_non_positive_job_type_value(make_machine):
    machine = make_machine(expiration=60)
    assert machine.resolve_expiration(job_type(expiration=0)) == 60


def test_is_tracked_policy(make_machine):
    """Explicit opt-in/opt-out wins; otherwise all_jobs decides."""
    default = make_machine()
    everything = make_machine(all_jobs=True)

    assert default.is_tracked(job_type(track=True)) is True
    assert default.is_tracked(job_type(track=None)) is False
    assert default.is_tracked(None, {"track_status": "true"}) is True

    assert everything.is_tracked(job_type(track=None)) is True
    assert everything.is_tracked(None) is True
    assert everything.is_tracked(job_type(track=False)) is False
    assert everything.is_tracked(None, {"track_status": "false"}) is False


def test_classify():
    assert StatusStateMachine.classify(None) is JobStatus.COMPLETE
    assert StatusStateMachine.classify(ValueError("x")) is JobStatus.FAILED
    assert StatusStateMachine.classify(SystemExit()) is JobStatus.INTERRUPTED
    assert StatusStateMachine.classify(KeyboardInterrupt()) is JobStatus.INTERRUPTED
    assert StatusStateMachine.classify(asyncio.CancelledError()) is JobStatus.INTERRUPTED


@pytest.mark.parametrize(
    ("value", "expected"),
    [(True, True), (False, False), ("true", True), ("1", True), ("no", False), (0, False)],
)
def test_as_bool(value, expected):
    assert as_bool(value) is expected


# ──────────────────────────────────────────────────────────────
# Enqueue
# ──────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_on_enqueue_creates_queued_record(machine, fake_redis, keys):
    """A tracked job gets a queued record with TTL, args and a notification."""
    expiration = await machine.on_enqueue(
        JOB_ID,
        job_type(),
        args=[1, "a"],
        kwargs={"k": "v"},
        task_name="reports:build",
    )

    key = keys.status_key(JOB_ID)
    record = fake_redis.hashes[key]
    assert expiration == DEFAULT_EXPIRY
    assert record["status"] == "queued"
    assert record["jid"] == JOB_ID
    assert record["task_name"] == "reports:build"
    assert json.loads(record["args"]) == {"args": [1, "a"], "kwargs": {"k": "v"}}
    assert int(record["update_time"]) > 0
    assert 0 < fake_redis.expirations[key] <= DEFAULT_EXPIRY

    assert statuses_on(fake_redis, keys.job_channel(JOB_ID)) == ["queued"]
    assert statuses_on(fake_redis, keys.global_channel) == ["queued"]


@pytest.mark.asyncio
async def test_on_enqueue_skips_untracked_jobs(machine, fake_redis):
    """Jobs that did not opt in get no record and no notification."""
    assert await machine.on_enqueue(JOB_ID, job_type(track=None)) is None
    assert fake_redis.hashes == {}
    assert fake_redis.published == []


@pytest.mark.asyncio
async def test_on_enqueue_all_jobs(make_machine, fake_redis, keys):
    machine = make_machine(all_jobs=True)

    assert await machine.on_enqueue(JOB_ID, job_type(track=None)) == DEFAULT_EXPIRY
    assert fake_redis.hashes[keys.status_key(JOB_ID)]["status"] == "queued"


@pytest.mark.asyncio
async def test_on_enqueue_without_args_omits_field(machine, fake_redis, keys):
    await machine.on_enqueue(JOB_ID, job_type())
    assert "args" not in fake_redis.hashes[keys.status_key(JOB_ID)]


@pytest.mark.asyncio
async def test_on_enqueue_propagates_store_errors(machine, fake_redis):
    fake_redis.fail = True
    with pytest.raises(StoreUnavailableError):
        await machine.on_enqueue(JOB_ID, job_type())


# ──────────────────────────────────────────────────────────────
# Execution
# ──────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_around_execution_complete(machine, fake_redis, keys, guard):
    """Normal return records working then complete, and returns the result."""
    await machine.on_enqueue(JOB_ID, job_type())

    result = await machine.around_execution(JOB_ID, succeed, expiration=DEFAULT_EXPIRY)

    assert result == "done"
    assert fake_redis.hashes[keys.status_key(JOB_ID)]["status"] == "complete"
    assert statuses_on(fake_redis, keys.job_channel(JOB_ID)) == ["queued", "working", "complete"]
    assert guard.in_flight == {}


@pytest.mark.asyncio
async def test_around_execution_failed_reraises(machine, fake_redis, keys):
    """An exception records failed and propagates unchanged."""
    error = ValueError("boom")

    async def body():
        raise error

    with pytest.raises(ValueError) as exc_info:
        await machine.around_execution(JOB_ID, body, expiration=60)

    assert exc_info.value is error
    assert fake_redis.hashes[keys.status_key(JOB_ID)]["status"] == "failed"


@pytest.mark.asyncio
@pytest.mark.parametrize("error_type", [SystemExit, KeyboardInterrupt, asyncio.CancelledError])
async def test_around_execution_interrupted(machine, fake_redis, keys, error_type):
    """Exit requests record interrupted and propagate."""

    async def body():
        raise error_type

    with pytest.raises(error_type):
        await machine.around_execution(JOB_ID, body, expiration=60)

    assert fake_redis.hashes[keys.status_key(JOB_ID)]["status"] == "interrupted"


@pytest.mark.asyncio
async def test_transitions_refresh_ttl_to_fixed_window(machine, fake_redis, keys):
    """Each transition resets the TTL to the same window; it never accumulates."""
    key = keys.status_key(JOB_ID)
    await machine.on_enqueue(JOB_ID, job_type(expiration=120))
    fake_redis.expirations[key] = 5  # time passes

    await machine.around_execution(JOB_ID, succeed, expiration=120)

    assert fake_redis.expirations[key] == 120


@pytest.mark.asyncio
async def test_transition_is_single_round_trip(machine, fake_redis):
    await machine.mark_working(JOB_ID, 60)
    assert fake_redis.pipelines == [["hset", "expire", "publish", "publish"]]


@pytest.mark.asyncio
async def test_store_error_on_failure_path_keeps_job_error(machine, fake_redis):
    """If the failed write itself fails, the job's own error still surfaces."""

    async def body():
        fake_redis.fail = True
        raise ValueError("boom")

    with pytest.raises(ValueError, match="boom"):
        await machine.around_execution(JOB_ID, body, expiration=60)


@pytest.mark.asyncio
async def test_store_error_on_success_path_propagates(machine, fake_redis):
    async def body():
        fake_redis.fail = True
        return 1

    with pytest.raises(StoreUnavailableError):
        await machine.around_execution(JOB_ID, body, expiration=60)


@pytest.mark.asyncio
async def test_finish_skips_write_after_termination_hook(machine, fake_redis, keys, guard):
    """Once the hook wrote interrupted, the job's own outcome is not recorded."""
    await machine.begin(JOB_ID, 60)
    assert guard.flush("SIGTERM") == 1

    status = await machine.finish(JOB_ID, None, 60)

    assert status is JobStatus.INTERRUPTED
    assert fake_redis.hashes[keys.status_key(JOB_ID)]["status"] == "interrupted"
    assert statuses_on(fake_redis, keys.job_channel(JOB_ID)) == ["working", "interrupted"]


@pytest.mark.asyncio
async def test_mark_finished_rejects_non_terminal_status(machine):
    with pytest.raises(ValueError, match="not a terminal status"):
        await machine.mark_finished(JOB_ID, JobStatus.WORKING, 60)


@pytest.mark.asyncio
async def test_transitions_are_counted(machine):
    before = REGISTRY.get_sample_value("job_status_transitions_total", {"status": "working"}) or 0

    await machine.mark_working(JOB_ID, 60)

    after = REGISTRY.get_sample_value("job_status_transitions_total", {"status": "working"})
    assert after == before + 1
