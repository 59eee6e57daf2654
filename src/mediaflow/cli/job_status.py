"""CLI command printing a job's status.

Usage:
    python -m mediaflow.cli job-status JOB_ID [--json]
"""

import asyncio
import sys
from argparse import ArgumentParser, Namespace

from mediaflow.core import timezone  # noqa: F401
from mediaflow.core.config import Settings, configure_logging
from mediaflow.services.exceptions import JobNotFound
from mediaflow.services.queue import QueueService
from mediaflow.store import create_job_store


def parse_args(argv: list[str] | None = None) -> Namespace:
    parser = ArgumentParser(prog="mediaflow.cli job-status", description="Show a job's status")
    parser.add_argument("job_id", help="Job identifier")
    parser.add_argument("--json", action="store_true", help="Print the full job record")
    return parser.parse_args(argv)


async def async_main(argv: list[str] | None = None) -> int:
    """Returns exit code: 0 (found), 1 (job not found)."""
    args = parse_args(argv)
    settings = Settings()  # type: ignore[call-arg]
    configure_logging(settings)

    store = create_job_store(settings.job_store_url)
    try:
        job = await QueueService(store).require_job(args.job_id)
    except JobNotFound as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        await store.close()

    if args.json:
        print(job.model_dump_json(indent=2))
        return 0

    print(f"Job:      {job.id}")
    print(f"Tool:     {job.tool_type.value}")
    print(f"Status:   {job.status.value} ({job.progress}%)")
    if job.progress_message:
        print(f"Message:  {job.progress_message}")
    if job.error_message:
        print(f"Error:    {job.error_message}")
    for output in job.output_files:
        print(f"Output:   {output.url}")
    return 0


def main(argv: list[str] | None = None) -> None:
    """Synchronous entry point for CLI."""
    sys.exit(asyncio.run(async_main(argv)))


if __name__ == "__main__":
    main()
