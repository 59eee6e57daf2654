"""FastAPI application factory."""

# Import timezone enforcement (sets TZ=UTC)
import asyncio
from contextlib import asynccontextmanager
from typing import Awaitable, Callable

import structlog
from fastapi import FastAPI, Response, status
from sqlalchemy import text

from mediaflow.core import timezone  # noqa: F401
from mediaflow.core.config import Settings, configure_logging
from mediaflow.core.database import setup_db_session
from mediaflow.models.job import Lane
from mediaflow.services.billing import BillingService
from mediaflow.services.fleet import FleetController, FleetProviderClient
from mediaflow.services.queue import QueueService
from mediaflow.services.submission import JobSubmissionService
from mediaflow.store import JobStore, create_job_store
from mediaflow.uow import create_uow_factory
from mediaflow.workers import WorkerPoller, build_registry

logger = structlog.get_logger()

WorkerFactory = Callable[[], Awaitable[None]]


def create_resilient_worker(
    coro_func: WorkerFactory,
    worker_name: str,
    shutdown_event: asyncio.Event,
    tasks: dict[str, asyncio.Task],
) -> asyncio.Task:
    """Create a worker with automatic restart on failure.

    Args:
        coro_func: Zero-argument coroutine function running the worker loop
        worker_name: Human-readable worker name for logging
        shutdown_event: Event to signal graceful shutdown
        tasks: Live task per worker name, updated on every restart

    Returns:
        Initial task handle (will be auto-recreated on crash)
    """
    RESTART_DELAY = 1

    def on_worker_done(task: asyncio.Task):
        if shutdown_event.is_set():
            logger.info("worker.shutdown_complete", worker=worker_name)
            return

        if task.cancelled():
            logger.info("worker.cancelled", worker=worker_name)
            return

        exc = task.exception()
        if exc:
            logger.error(
                "worker.crashed",
                worker=worker_name,
                error=str(exc),
                error_type=type(exc).__name__,
                retry_in_seconds=RESTART_DELAY,
                exc_info=exc,
            )
        else:
            logger.warning(
                "worker.stopped_unexpectedly",
                worker=worker_name,
                retry_in_seconds=RESTART_DELAY,
            )

        async def restart_worker():
            await asyncio.sleep(RESTART_DELAY)

            if shutdown_event.is_set():
                return

            logger.info("worker.restarting", worker=worker_name)
            new_task = asyncio.create_task(coro_func())
            new_task.add_done_callback(on_worker_done)
            tasks[worker_name] = new_task

        asyncio.create_task(restart_worker())

    task = asyncio.create_task(coro_func())
    task.add_done_callback(on_worker_done)
    tasks[worker_name] = task
    return task


def build_background_workers(
    settings: Settings, queue: QueueService, submission: JobSubmissionService
) -> dict[str, WorkerFactory]:
    """Build the controller and lane pollers this process should run.

    Returns:
        Mapping of worker name to its loop coroutine function
    """
    workers: dict[str, WorkerFactory] = {}

    if settings.gpu_enabled:
        provider = FleetProviderClient(
            settings.fleet_provider_endpoint,
            settings.fleet_provider_api_key,
            timeout_seconds=settings.fleet_provider_timeout_seconds,
        )
        controller = FleetController(
            queue,
            provider,
            idle_threshold_seconds=settings.gpu_autostop_idle_min * 60,
            allow_cpu_fallback=settings.allow_cpu_fallback,
            check_interval_seconds=settings.gpu_check_interval_seconds,
            healthcheck_interval_seconds=settings.gpu_healthcheck_interval_seconds,
            healthcheck_max_wait_seconds=settings.gpu_healthcheck_max_wait_seconds,
            lease_seconds=settings.controller_lease_seconds,
        )
        workers["fleet_controller"] = controller.run

    registry = build_registry(settings.tool_processor_url)
    for lane_name in settings.worker_lanes_list:
        lane = Lane(lane_name)
        if lane == Lane.GPU and not settings.gpu_enabled:
            logger.info("worker.lane_skipped", lane=lane.value, reason="gpu_disabled")
            continue
        poller = WorkerPoller(
            queue,
            lane,
            registry,
            max_concurrent=settings.max_concurrent_jobs,
            poll_interval_seconds=settings.poll_interval_seconds,
            on_finished=submission.settle,
        )
        workers[f"{lane.value}_worker"] = poller.run

    return workers


async def check_health(session_factory, store: JobStore) -> dict:
    """Probe the relational database and the job store.

    Raises:
        RuntimeError: If the job store does not answer ping
    """
    async with session_factory() as session:
        result = await session.execute(text("SELECT 1"))
        result.scalar()

    if not await store.ping():
        raise RuntimeError("Job store ping failed")

    return {"status": "healthy"}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan context manager.

    Handles startup and shutdown tasks:
    - Startup: configure logging, open database and job store, start workers
    - Shutdown: stop workers, close job store and database connections
    """
    settings = Settings()  # type: ignore[call-arg]
    configure_logging(settings)

    session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
    uow_factory = create_uow_factory(session_factory)
    store = create_job_store(settings.job_store_url)

    queue = QueueService(
        store,
        job_ttl_seconds=settings.job_ttl_seconds,
        idempotency_ttl_seconds=settings.idempotency_ttl_seconds,
    )
    billing = BillingService(uow_factory)
    submission = JobSubmissionService(queue, billing)

    app.state.session_factory = session_factory
    app.state.uow_factory = uow_factory
    app.state.job_store = store
    app.state.queue = queue
    app.state.billing = billing
    app.state.submission = submission

    shutdown_event = asyncio.Event()
    worker_tasks: dict[str, asyncio.Task] = {}
    for name, coro_func in build_background_workers(settings, queue, submission).items():
        create_resilient_worker(coro_func, name, shutdown_event, worker_tasks)

    logger.info(
        "application.startup",
        db_url=settings.database_url.split("@")[-1],
        workers=len(worker_tasks),
        gpu_enabled=settings.gpu_enabled,
    )

    yield

    logger.info("application.shutdown")
    shutdown_event.set()

    for task in worker_tasks.values():
        task.cancel()
    await asyncio.gather(*worker_tasks.values(), return_exceptions=True)

    await store.close()
    await session_factory.kw["bind"].dispose()


def create_app() -> FastAPI:
    """Create and configure FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    app = FastAPI(
        title="Mediaflow Dispatch",
        description="Media job queue, GPU fleet control and credit ledger",
        version="0.1.0",
        lifespan=lifespan,
    )

    @app.get("/health")
    async def health_check(response: Response):
        """Health check endpoint.

        Returns:
            200: {"status": "healthy"} if database and job store respond
            503: {"status": "unhealthy", "error": {...}} otherwise
        """
        try:
            result = await check_health(app.state.session_factory, app.state.job_store)
            logger.debug("health_check.success")
            return result

        except Exception as e:
            logger.error(
                "health_check.failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
            return {
                "status": "unhealthy",
                "error": {
                    "type": type(e).__name__,
                    "message": str(e),
                },
            }

    return app


# Create app instance for uvicorn
app = create_app()
