"""Custom TaskIQ CLI commands.

Commands registered here can be invoked via:

    taskiq <command-name> [options]

Commands are registered in pyproject.toml via entry points:

    [project.entry-points.taskiq_cli]
    status = "jobstatus.infra.tasks.cli:StatusCommand"

Usage:
    taskiq status 3f2c9a...             # Print the job's status record
    taskiq status 3f2c9a... --watch     # Follow updates until a terminal status
    taskiq status 3f2c9a... --json
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import TYPE_CHECKING

from taskiq.abc.cmd import TaskiqCMD

from jobstatus.status.enums import JobStatus

if TYPE_CHECKING:
    from argparse import Namespace
    from collections.abc import Mapping, Sequence

# Exit codes
EXIT_OK = 0
EXIT_FAILED = 1
EXIT_NOT_FOUND = 2
EXIT_TIMEOUT = 3


class StatusCommand(TaskiqCMD):
    """Show the status record of a tracked job.

    Exits with 0 when the job exists (and, with --watch, completed), 1 when
    it failed or was interrupted, 2 when there is no record and 3 when
    --watch timed out.
    """

    short_help = "Show tracked job status"

    def exec(self, args: Sequence[str]) -> None:
        """Execute the status command.

        Args:
            args: Command-line arguments passed to the command.
        """
        parser = argparse.ArgumentParser(
            prog="taskiq status",
            description="Display the status record of a tracked job.",
        )
        parser.add_argument("job_id", help="Id of the job (taskiq task_id)")
        parser.add_argument(
            "--json",
            action="store_true",
            help="Output as JSON instead of formatted text",
        )
        parser.add_argument(
            "--watch",
            action="store_true",
            help="Wait until the job reaches a terminal status",
        )
        parser.add_argument(
            "--timeout",
            type=float,
            default=None,
            help="Maximum seconds to wait with --watch (default: no limit)",
        )

        parsed_args = parser.parse_args(args)

        try:
            code = asyncio.run(self._show_status(parsed_args))
        except KeyboardInterrupt:
            sys.exit(EXIT_FAILED)
        sys.exit(code)

    async def _show_status(self, args: Namespace) -> int:
        """Fetch and display the job record.

        Args:
            args: Parsed command-line arguments.

        Returns:
            Process exit code.
        """
        from jobstatus.infra.logging import setup_logging
        from jobstatus.status.client import (
            get_query,
            start_status_client,
            stop_status_client,
        )

        setup_logging()
        await start_status_client()
        query = get_query()

        try:
            if args.watch:
                try:
                    await query.wait_for(args.job_id, timeout=args.timeout)
                except TimeoutError:
                    self._write(f"Timed out waiting for job {args.job_id}")
                    return EXIT_TIMEOUT

            record = await query.get_all(args.job_id)
            if not record:
                if args.json:
                    self._write(json.dumps({"job_id": args.job_id, "status": None}))
                else:
                    self._write(f"No status record for job {args.job_id}")
                return EXIT_NOT_FOUND

            if args.json:
                self._write(json.dumps({"job_id": args.job_id, **record}, sort_keys=True))
            else:
                self._print_record(args.job_id, record)

            status = JobStatus.parse(record.get("status"))
            return self._exit_code(status)
        finally:
            await stop_status_client()

    @staticmethod
    def _exit_code(status: JobStatus | None) -> int:
        if status is None:
            return EXIT_NOT_FOUND
        if status in {JobStatus.FAILED, JobStatus.INTERRUPTED}:
            return EXIT_FAILED
        return EXIT_OK

    def _print_record(self, job_id: str, record: Mapping[str, str]) -> None:
        """Print a record in a human-readable format.

        Args:
            job_id: Id of the job.
            record: Raw record fields.
        """
        self._write(f"Job {job_id}")
        width = max(len(name) for name in record)
        for name in sorted(record):
            self._write(f"  {name.ljust(width)}  {record[name]}")

    @staticmethod
    def _write(line: str) -> None:
        sys.stdout.write(f"{line}\n")
