"""Worker poller: bounded-concurrency job dispatch for one lane.

Each poller owns a fixed number of execution slots (a semaphore). Every
poll tick it dequeues jobs while a slot is free and runs each one as its
own task, so a slow job never blocks polling for the next one. A task
frees its slot when it finishes, whatever the outcome.
"""

import asyncio
import os
import socket
import time
from typing import Awaitable, Callable

import structlog

from mediaflow.models.fleet import FleetStatus
from mediaflow.models.job import Job, JobStatus, Lane
from mediaflow.services.queue import QueueService
from mediaflow.workers.processors import ProcessorRegistry

logger = structlog.get_logger(__name__)

JobFinishedHook = Callable[[Job], Awaitable[None]]


class WorkerPoller:
    """Polls one lane and dispatches jobs to tool processors."""

    def __init__(
        self,
        queue: QueueService,
        lane: Lane,
        registry: ProcessorRegistry,
        max_concurrent: int = 5,
        poll_interval_seconds: float = 1.0,
        on_finished: JobFinishedHook | None = None,
        worker_id: str | None = None,
        shutdown_grace_seconds: float = 30.0,
    ):
        """Initialize worker poller.

        Args:
            queue: Queue service
            lane: Lane to consume
            registry: Tool processors
            max_concurrent: Execution slots
            poll_interval_seconds: Delay between poll ticks
            on_finished: Called with the terminal job record (credit settlement)
            worker_id: Identity recorded on processed jobs
            shutdown_grace_seconds: Time in-flight jobs get to finish on shutdown
        """
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")

        self.queue = queue
        self.lane = Lane(lane)
        self.registry = registry
        self.max_concurrent = max_concurrent
        self.poll_interval_seconds = poll_interval_seconds
        self.on_finished = on_finished
        self.worker_id = worker_id or f"{self.lane.value}-{socket.gethostname()}-{os.getpid()}"
        self.shutdown_grace_seconds = shutdown_grace_seconds

        self._slots = asyncio.Semaphore(max_concurrent)
        self._tasks: set[asyncio.Task] = set()

    @property
    def active_jobs(self) -> int:
        return len(self._tasks)

    async def poll_once(self) -> int:
        """Dispatch queued jobs until the lane is empty or all slots are busy.

        The GPU lane is only consumed while the fleet is running, so queued
        GPU jobs stay visible to the controller until capacity is up.

        Returns:
            Number of jobs dispatched
        """
        if self.lane == Lane.GPU and await self.queue.get_fleet_status() != FleetStatus.RUNNING:
            return 0

        dispatched = 0
        while not self._slots.locked():
            await self._slots.acquire()
            try:
                job = await self.queue.dequeue(self.lane)
            except BaseException:
                self._slots.release()
                raise

            if job is None:
                self._slots.release()
                break

            if self.lane == Lane.GPU:
                await self.queue.record_fleet_heartbeat()

            task = asyncio.create_task(self.process_job(job), name=f"job-{job.id}")
            self._tasks.add(task)
            task.add_done_callback(self._on_task_done)
            dispatched += 1

        return dispatched

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        self._slots.release()
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                "job.task.crashed",
                task=task.get_name(),
                error=str(task.exception()),
                error_type=type(task.exception()).__name__,
            )

    async def process_job(self, job: Job) -> Job | None:
        """Run one job to a terminal status.

        Workflow:
        1. Mark processing
        2. Dispatch to the tool's processor
        3. Mark completed with outputs, or failed with the error message
        4. Hand the terminal record to ``on_finished``

        A job store error while recording progress or completion fails the
        job (best effort) so its reservation is still settled.

        Returns:
            Terminal job record, or None if the record vanished mid-run
        """
        start_time = time.time()
        logger.info(
            "job.processing.started",
            job_id=job.id,
            tool_type=job.tool_type.value,
            worker_id=self.worker_id,
        )

        try:
            await self.queue.update_status(
                job.id, JobStatus.PROCESSING, 0, "Starting job", worker_id=self.worker_id
            )
            processor = self.registry.get(job.tool_type)
            result = await processor.process(job)
            final = await self.queue.update_status(
                job.id,
                JobStatus.COMPLETED,
                100,
                "Job completed successfully",
                output_files=result.all_output_files(),
                cost_actual=result.cost_actual,
            )

        except asyncio.CancelledError:
            raise

        except Exception as e:
            logger.error(
                "job.processing.failed",
                job_id=job.id,
                error_type=type(e).__name__,
                error_message=str(e),
                duration_seconds=time.time() - start_time,
            )
            final = await self._mark_failed(job, e)

        else:
            logger.info(
                "job.processing.succeeded",
                job_id=job.id,
                output_url=result.output_url,
                duration_seconds=time.time() - start_time,
            )

        if final is not None and final.status.is_terminal and self.on_finished is not None:
            try:
                await self.on_finished(final)
            except Exception as e:
                logger.error(
                    "job.settlement.failed",
                    job_id=job.id,
                    error_type=type(e).__name__,
                    error_message=str(e),
                )
        return final

    async def _mark_failed(self, job: Job, error: Exception) -> Job | None:
        """Record the failure, falling back to the in-hand record if the store write fails."""
        try:
            return await self.queue.update_status(
                job.id,
                JobStatus.FAILED,
                message=f"Error: {error}",
                error_message=str(error),
            )
        except Exception as e:
            logger.error(
                "job.status.write_failed",
                job_id=job.id,
                status=JobStatus.FAILED.value,
                error_type=type(e).__name__,
                error_message=str(e),
            )
            # Settle from the record we hold; the store may still show it in flight
            failed = job.model_copy(deep=True)
            if not failed.status.is_terminal:
                failed.apply_status(JobStatus.FAILED, message=f"Error: {error}")
                failed.error_message = str(error)
            return failed

    async def drain(self) -> None:
        """Wait for in-flight jobs, cancelling any still running after the grace period."""
        if not self._tasks:
            return
        _, pending = await asyncio.wait(set(self._tasks), timeout=self.shutdown_grace_seconds)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.warning("worker.jobs_abandoned", count=len(pending), lane=self.lane.value)

    async def run(self) -> None:
        """Main worker loop.

        Polls every ``poll_interval_seconds``; unexpected errors are logged
        and polling continues after a short back-off.
        """
        logger.info(
            "worker.started",
            lane=self.lane.value,
            worker_id=self.worker_id,
            max_concurrent=self.max_concurrent,
            poll_interval=self.poll_interval_seconds,
        )

        try:
            while True:
                try:
                    await self.poll_once()
                    await asyncio.sleep(self.poll_interval_seconds)

                except asyncio.CancelledError:
                    raise

                except Exception as e:
                    logger.error(
                        "worker.error",
                        lane=self.lane.value,
                        error_type=type(e).__name__,
                        error_message=str(e),
                        exc_info=True,
                    )
                    await asyncio.sleep(5)

        except asyncio.CancelledError:
            await self.drain()
            logger.info("worker.stopped", lane=self.lane.value, worker_id=self.worker_id)
            raise
