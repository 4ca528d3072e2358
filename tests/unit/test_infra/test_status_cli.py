"""Unit tests for the ``taskiq status`` command."""

from __future__ import annotations

import json

import pytest

from jobstatus.infra.store.redis_store import RedisStatusStore
from jobstatus.infra.tasks.cli import EXIT_FAILED, EXIT_NOT_FOUND, EXIT_OK, StatusCommand
from jobstatus.status import client

KEY = "jobstatus:status:job-1"


@pytest.fixture
def command(monkeypatch, fake_redis):
    """StatusCommand reading from FakeRedis, with logging setup disabled."""
    monkeypatch.setattr(client, "create_store", lambda: RedisStatusStore(client=fake_redis))
    monkeypatch.setattr("jobstatus.infra.logging.setup_logging", lambda: None)
    return StatusCommand()


def run(command: StatusCommand, *args: str) -> int:
    with pytest.raises(SystemExit) as exc_info:
        command.exec(list(args))
    return exc_info.value.code


def test_prints_record(command, fake_redis, capsys):
    fake_redis.hashes[KEY] = {"status": "complete", "pct_complete": "100"}

    assert run(command, "job-1") == EXIT_OK

    out = capsys.readouterr().out
    assert "Job job-1" in out
    assert "status" in out
    assert "complete" in out
    assert client.is_started() is False


def test_json_output(command, fake_redis, capsys):
    fake_redis.hashes[KEY] = {"status": "failed", "update_time": "1700000000"}

    assert run(command, "job-1", "--json") == EXIT_FAILED

    assert json.loads(capsys.readouterr().out) == {
        "job_id": "job-1",
        "status": "failed",
        "update_time": "1700000000",
    }


def test_missing_record(command, capsys):
    assert run(command, "nope") == EXIT_NOT_FOUND
    assert "No status record" in capsys.readouterr().out


def test_watch_returns_immediately_for_finished_job(command, fake_redis):
    fake_redis.hashes[KEY] = {"status": "interrupted"}
    assert run(command, "job-1", "--watch", "--timeout", "1") == EXIT_FAILED


def test_exit_codes():
    from jobstatus.status.enums import JobStatus

    assert StatusCommand._exit_code(JobStatus.QUEUED) == EXIT_OK
    assert StatusCommand._exit_code(JobStatus.WORKING) == EXIT_OK
    assert StatusCommand._exit_code(JobStatus.COMPLETE) == EXIT_OK
    assert StatusCommand._exit_code(JobStatus.FAILED) == EXIT_FAILED
    assert StatusCommand._exit_code(JobStatus.INTERRUPTED) == EXIT_FAILED
    assert StatusCommand._exit_code(None) == EXIT_NOT_FOUND
