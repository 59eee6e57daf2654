"""CLI command printing GPU fleet state and lane depths.

Usage:
    python -m mediaflow.cli fleet-status [--json]
"""

import asyncio
import json
import sys
from argparse import ArgumentParser, Namespace

from mediaflow.core import timezone  # noqa: F401
from mediaflow.core.config import Settings, configure_logging
from mediaflow.core.timezone import epoch_ms
from mediaflow.models.job import Lane
from mediaflow.services.queue import QueueService
from mediaflow.store import create_job_store


def parse_args(argv: list[str] | None = None) -> Namespace:
    parser = ArgumentParser(
        prog="mediaflow.cli fleet-status",
        description="Show GPU fleet status and queue depths",
    )
    parser.add_argument("--json", action="store_true", help="Print machine-readable JSON")
    return parser.parse_args(argv)


async def collect_status(queue: QueueService) -> dict:
    status = await queue.get_fleet_status()
    last_update = await queue.get_fleet_last_update()
    return {
        "fleet_status": status.value if status else None,
        "last_update_ms": last_update or None,
        "idle_seconds": round((epoch_ms() - last_update) / 1000, 1) if last_update else None,
        "start_deadline_ms": await queue.get_fleet_start_deadline(),
        "queue_depth": {lane.value: await queue.queue_depth(lane) for lane in Lane},
    }


async def async_main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    settings = Settings()  # type: ignore[call-arg]
    configure_logging(settings)

    store = create_job_store(settings.job_store_url)
    try:
        report = await collect_status(QueueService(store))
    finally:
        await store.close()

    if args.json:
        print(json.dumps(report, indent=2))
    else:
        print(f"Fleet status:  {report['fleet_status'] or 'unknown'}")
        if report["idle_seconds"] is not None:
            print(f"Last update:   {report['idle_seconds']}s ago")
        if report["start_deadline_ms"] is not None:
            print(f"Start deadline: {report['start_deadline_ms']}")
        for lane, depth in report["queue_depth"].items():
            print(f"Queue {lane}:     {depth}")
    return 0


def main(argv: list[str] | None = None) -> None:
    """Synchronous entry point for CLI."""
    sys.exit(asyncio.run(async_main(argv)))


if __name__ == "__main__":
    main()
