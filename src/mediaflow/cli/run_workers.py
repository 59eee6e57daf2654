"""CLI command running the background loops without the HTTP API.

Usage:
    python -m mediaflow.cli run [--lanes cpu,gpu] [--no-controller]

Examples:
    # CPU-only worker host
    python -m mediaflow.cli run --lanes cpu --no-controller

    # Worker on the GPU fleet (polls only while the fleet is running)
    python -m mediaflow.cli run --lanes gpu --no-controller
"""

import asyncio
import signal
import sys
from argparse import ArgumentParser, Namespace

import structlog

from mediaflow.app import build_background_workers, create_resilient_worker
from mediaflow.core import timezone  # noqa: F401
from mediaflow.core.config import Settings, configure_logging
from mediaflow.core.database import setup_db_session
from mediaflow.services.billing import BillingService
from mediaflow.services.queue import QueueService
from mediaflow.services.submission import JobSubmissionService
from mediaflow.store import create_job_store
from mediaflow.uow import create_uow_factory

logger = structlog.get_logger()


def parse_args(argv: list[str] | None = None) -> Namespace:
    """Parse command-line arguments."""
    parser = ArgumentParser(
        prog="mediaflow.cli run",
        description="Run the fleet controller and worker pollers",
    )
    parser.add_argument("--lanes", help="Comma-separated lanes to poll (overrides WORKER_LANES)")
    parser.add_argument(
        "--no-controller",
        action="store_true",
        help="Do not run the GPU fleet controller in this process",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging (DEBUG level)",
    )
    return parser.parse_args(argv)


async def async_main(argv: list[str] | None = None) -> int:
    """Run until SIGINT/SIGTERM.

    Returns:
        Exit code: 0 (clean shutdown)
    """
    args = parse_args(argv)

    settings = Settings()  # type: ignore[call-arg]
    if args.lanes:
        settings.worker_lanes = args.lanes
    if args.verbose:
        settings.log_level = "DEBUG"
    configure_logging(settings)

    session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
    store = create_job_store(settings.job_store_url)
    queue = QueueService(
        store,
        job_ttl_seconds=settings.job_ttl_seconds,
        idempotency_ttl_seconds=settings.idempotency_ttl_seconds,
    )
    submission = JobSubmissionService(queue, BillingService(create_uow_factory(session_factory)))

    workers = build_background_workers(settings, queue, submission)
    if args.no_controller:
        workers.pop("fleet_controller", None)

    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, shutdown_event.set)

    stopping = asyncio.Event()
    worker_tasks: dict[str, asyncio.Task] = {}
    for name, coro_func in workers.items():
        create_resilient_worker(coro_func, name, stopping, worker_tasks)
    logger.info("cli.run.started", workers=sorted(worker_tasks))

    await shutdown_event.wait()

    logger.info("cli.run.stopping")
    stopping.set()
    for task in worker_tasks.values():
        task.cancel()
    await asyncio.gather(*worker_tasks.values(), return_exceptions=True)

    await store.close()
    await session_factory.kw["bind"].dispose()
    return 0


def main(argv: list[str] | None = None) -> None:
    """Synchronous entry point for CLI."""
    sys.exit(asyncio.run(async_main(argv)))


if __name__ == "__main__":
    main()
