"""GPU fleet controller.

Periodic control loop that keeps rented GPU capacity matched to the GPU
lane. The fleet status in the job store is the controller's only durable
state, and the controller is its only writer.

Each tick:
1. Acquire (or renew) the controller lease; skip the tick otherwise
2. Read GPU lane depth and fleet status
3. stopped/unknown with GPU jobs waiting → start_fleet()
4. starting → one healthcheck; healthy → running, past deadline → start failure
5. running, GPU lane empty, idle ≥ threshold → stop_fleet()
6. stopping (left over from a crash) → stopped

Start failures set status back to stopped and, when CPU fallback is
allowed, move every waiting GPU job to the CPU lane. Stop is best-effort:
status always lands on stopped even if the provider call fails.
"""

import asyncio
import socket
from typing import Callable
from uuid import uuid4

import structlog

from mediaflow.core.timezone import epoch_ms
from mediaflow.models.fleet import FleetStatus
from mediaflow.models.job import Lane
from mediaflow.services.exceptions import FleetProviderError, FleetStartFailed
from mediaflow.services.fleet.provider_client import FleetProviderClient
from mediaflow.services.queue import QueueService

logger = structlog.get_logger(__name__)


class FleetController:
    """Singleton control loop over the shared fleet status."""

    def __init__(
        self,
        queue: QueueService,
        provider: FleetProviderClient,
        idle_threshold_seconds: float = 600,
        allow_cpu_fallback: bool = True,
        check_interval_seconds: float = 30,
        healthcheck_interval_seconds: float = 5,
        healthcheck_max_wait_seconds: float = 300,
        lease_seconds: int = 90,
        owner_id: str | None = None,
        clock: Callable[[], int] = epoch_ms,
    ):
        """Initialize fleet controller.

        Args:
            queue: Queue service (lane depth and fleet state)
            provider: Fleet provider API client
            idle_threshold_seconds: Idle time before a running fleet is stopped
            allow_cpu_fallback: Move GPU jobs to the CPU lane when start fails
            check_interval_seconds: Tick interval while not starting
            healthcheck_interval_seconds: Tick interval while starting
            healthcheck_max_wait_seconds: Time allowed for the fleet to become healthy
            lease_seconds: Controller lease duration (must exceed the tick interval)
            owner_id: Lease owner identity (default: hostname + random suffix)
            clock: Epoch milliseconds source
        """
        self.queue = queue
        self.provider = provider
        self.idle_threshold_seconds = idle_threshold_seconds
        self.allow_cpu_fallback = allow_cpu_fallback
        self.check_interval_seconds = check_interval_seconds
        self.healthcheck_interval_seconds = healthcheck_interval_seconds
        self.healthcheck_max_wait_seconds = healthcheck_max_wait_seconds
        self.lease_seconds = lease_seconds
        self.owner_id = owner_id or f"{socket.gethostname()}-{uuid4().hex[:8]}"
        self.clock = clock

    async def tick(self) -> FleetStatus | None:
        """Run one control step.

        Returns:
            Fleet status after the step, or None if another controller
            holds the lease
        """
        if not await self.queue.acquire_controller_lease(self.owner_id, self.lease_seconds):
            logger.debug("fleet.tick.skipped", reason="lease_held_elsewhere", owner=self.owner_id)
            return None

        has_gpu_jobs = await self.queue.has_gpu_jobs()
        status = await self.queue.get_fleet_status()

        try:
            if status == FleetStatus.STARTING:
                await self._check_starting()
            elif has_gpu_jobs and status in (None, FleetStatus.STOPPED):
                await self.start_fleet()
            elif not has_gpu_jobs and status == FleetStatus.RUNNING:
                idle_seconds = (self.clock() - await self.queue.get_fleet_last_update()) / 1000
                if idle_seconds >= self.idle_threshold_seconds:
                    logger.info("fleet.idle", idle_seconds=round(idle_seconds, 1))
                    await self.stop_fleet()
            elif status == FleetStatus.STOPPING:
                logger.warning("fleet.stopping.recovered")
                await self.queue.set_fleet_status(FleetStatus.STOPPED)
        except FleetStartFailed as e:
            await self._handle_start_failure(str(e))

        return await self.queue.get_fleet_status()

    async def start_fleet(self) -> None:
        """Request fleet start and perform the first healthcheck.

        Raises:
            FleetStartFailed: Provider rejected the start, or the fleet was
                not healthy and the deadline has already passed
        """
        logger.info("fleet.start.requested")
        await self.queue.set_fleet_status(FleetStatus.STARTING)
        await self.queue.set_fleet_start_deadline(
            self.clock() + int(self.healthcheck_max_wait_seconds * 1000)
        )

        try:
            await self.provider.start()
        except FleetProviderError as e:
            raise FleetStartFailed(f"Provider start failed: {e}") from e

        await self._check_starting()

    async def _check_starting(self) -> None:
        if await self.provider.healthcheck():
            await self.queue.set_fleet_start_deadline(None)
            await self.queue.set_fleet_status(FleetStatus.RUNNING)
            logger.info("fleet.start.succeeded")
            return

        deadline = await self.queue.get_fleet_start_deadline()
        if deadline is None or self.clock() >= deadline:
            raise FleetStartFailed(
                f"Fleet not healthy after {self.healthcheck_max_wait_seconds}s"
            )
        logger.debug("fleet.start.waiting", remaining_ms=deadline - self.clock())

    async def _handle_start_failure(self, reason: str) -> None:
        await self.queue.set_fleet_status(FleetStatus.STOPPED)
        await self.queue.set_fleet_start_deadline(None)

        if self.allow_cpu_fallback:
            moved = await self.move_gpu_jobs_to_cpu()
            logger.warning("fleet.start.failed", reason=reason, fallback="cpu", jobs_moved=moved)
        else:
            pending = await self.queue.queue_depth(Lane.GPU)
            logger.error("fleet.start.failed", reason=reason, fallback=None, jobs_waiting=pending)

    async def stop_fleet(self) -> None:
        """Request fleet stop. Status ends at stopped whatever the provider says."""
        logger.info("fleet.stop.requested")
        await self.queue.set_fleet_status(FleetStatus.STOPPING)
        try:
            await self.provider.stop()
        except FleetProviderError as e:
            logger.error("fleet.stop.failed", error=str(e), error_type=type(e).__name__)
        finally:
            await self.queue.set_fleet_status(FleetStatus.STOPPED)
        logger.info("fleet.stopped")

    async def move_gpu_jobs_to_cpu(self) -> int:
        """Drain the GPU lane into the CPU lane.

        Each job is popped from the GPU lane, marked CPU-only, and pushed
        onto the CPU lane, so it is never in both lanes.

        Returns:
            Number of jobs moved
        """
        moved = 0
        while await self.queue.queue_depth(Lane.GPU) > 0:
            job = await self.queue.dequeue(Lane.GPU)
            if job is None:
                continue
            job.requirements.requires_gpu = False
            job.requirements.requires_cpu = True
            await self.queue.requeue(job)
            moved += 1
        return moved

    async def run(self) -> None:
        """Main controller loop.

        Ticks once immediately, then every check interval (every
        healthcheck interval while the fleet is starting). Unexpected
        errors are logged and the loop continues.
        """
        logger.info(
            "fleet_controller.started",
            owner=self.owner_id,
            check_interval=self.check_interval_seconds,
            idle_threshold=self.idle_threshold_seconds,
            allow_cpu_fallback=self.allow_cpu_fallback,
        )

        try:
            while True:
                status = None
                try:
                    status = await self.tick()
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.error(
                        "fleet_controller.error",
                        error_type=type(e).__name__,
                        error_message=str(e),
                        exc_info=True,
                    )

                if status == FleetStatus.STARTING:
                    await asyncio.sleep(self.healthcheck_interval_seconds)
                else:
                    await asyncio.sleep(self.check_interval_seconds)

        except asyncio.CancelledError:
            await self.queue.release_controller_lease(self.owner_id)
            logger.info("fleet_controller.stopped", owner=self.owner_id)
            raise
