"""Queue service: job records, CPU/GPU lanes, idempotency keys and fleet state.

Key layout in the job store:
- ``job:{id}``: JSON job record with retention TTL
- ``queue:cpu`` / ``queue:gpu``: lanes of job ids (LPUSH in, RPOP out = FIFO)
- ``idempotency:{key}``: job id created for a submission key
- ``fleet:status`` / ``fleet:last_update``: shared GPU fleet state
- ``fleet:start_deadline``: epoch ms after which a pending start is abandoned
- ``fleet:controller:lease``: owner id of the controller allowed to tick
"""

import json

import structlog

from mediaflow.core.timezone import epoch_ms, utcnow
from mediaflow.models.fleet import FleetStatus
from mediaflow.models.job import InvalidStateTransition, Job, JobStatus, Lane, OutputFile
from mediaflow.services.exceptions import JobNotFound
from mediaflow.store.base import JobStore

logger = structlog.get_logger(__name__)

JOB_TTL_SECONDS = 7 * 24 * 60 * 60
IDEMPOTENCY_TTL_SECONDS = 24 * 60 * 60

JOB_CREATED_CHANNEL = "events:job.created"

FLEET_STATUS_KEY = "fleet:status"
FLEET_LAST_UPDATE_KEY = "fleet:last_update"
FLEET_START_DEADLINE_KEY = "fleet:start_deadline"
CONTROLLER_LEASE_KEY = "fleet:controller:lease"


def job_key(job_id: str) -> str:
    return f"job:{job_id}"


def lane_key(lane: Lane | str) -> str:
    return f"queue:{Lane(lane).value}"


def idempotency_key(key: str) -> str:
    return f"idempotency:{key}"


class QueueService:
    """Durable job queue partitioned by compute class.

    Dequeue exclusivity comes from the store's atomic RPOP: concurrent
    pollers on one lane never receive the same job id.
    """

    def __init__(
        self,
        store: JobStore,
        job_ttl_seconds: int = JOB_TTL_SECONDS,
        idempotency_ttl_seconds: int = IDEMPOTENCY_TTL_SECONDS,
    ):
        """Initialize queue service.

        Args:
            store: Durable job store
            job_ttl_seconds: Retention of job records (default: 7 days)
            idempotency_ttl_seconds: Retention of idempotency keys (default: 24h)
        """
        self.store = store
        self.job_ttl_seconds = job_ttl_seconds
        self.idempotency_ttl_seconds = idempotency_ttl_seconds

    # ---- jobs -------------------------------------------------------------

    async def enqueue(self, job: Job) -> None:
        """Persist job record and append its id to the matching lane.

        The lane is chosen from ``requirements.requires_gpu``. Callers
        de-duplicate by idempotency key before calling.

        Args:
            job: Job to persist and dispatch
        """
        lane = job.requirements.lane
        await self.store.set(
            job_key(job.id), job.model_dump_json(), ttl_seconds=self.job_ttl_seconds
        )
        await self.store.lpush(lane_key(lane), job.id)

        logger.info(
            "job.enqueued",
            job_id=job.id,
            tool_type=job.tool_type.value,
            lane=lane.value,
        )
        await self.store.publish(
            JOB_CREATED_CHANNEL,
            json.dumps(
                {
                    "job_id": job.id,
                    "tool_type": job.tool_type.value,
                    "requires_gpu": job.requirements.requires_gpu,
                }
            ),
        )

    async def requeue(self, job: Job) -> None:
        """Push an already-dequeued job onto the lane matching its requirements.

        Used to move jobs between lanes: the caller has removed the id from
        its old lane. The record keeps its original retention TTL.
        """
        lane = job.requirements.lane
        job.updated_at = utcnow()
        await self.save_job(job)
        await self.store.lpush(lane_key(lane), job.id)
        logger.info("job.requeued", job_id=job.id, lane=lane.value)

    async def get_job(self, job_id: str) -> Job | None:
        """Load job record.

        Returns:
            Job if the record exists, None if it expired or was deleted
        """
        data = await self.store.get(job_key(job_id))
        if data is None:
            return None
        return Job.model_validate_json(data)

    async def require_job(self, job_id: str) -> Job:
        """Load job record or raise.

        Raises:
            JobNotFound: If the record expired or was deleted
        """
        job = await self.get_job(job_id)
        if job is None:
            raise JobNotFound(f"Job {job_id} not found")
        return job

    async def save_job(self, job: Job) -> None:
        """Overwrite a job record, keeping its retention TTL."""
        await self.store.set(job_key(job.id), job.model_dump_json(), keep_ttl=True)

    async def dequeue(self, lane: Lane | str) -> Job | None:
        """Remove the oldest job id from a lane and return its record.

        Returns:
            Job record, or None if the lane is empty or the popped
            record has already expired
        """
        job_id = await self.store.rpop(lane_key(lane))
        if job_id is None:
            return None

        job = await self.get_job(job_id)
        if job is None:
            logger.warning("job.dequeue.missing", job_id=job_id, lane=Lane(lane).value)
        return job

    async def update_status(
        self,
        job_id: str,
        status: JobStatus,
        progress: int | None = None,
        message: str | None = None,
        *,
        error_message: str | None = None,
        output_files: list[OutputFile] | None = None,
        cost_actual: int | None = None,
        worker_id: str | None = None,
    ) -> Job | None:
        """Apply a status transition to a job record.

        Missing records (TTL expiry or deletion racing the update) are a
        silent no-op. Writes against a terminal job are rejected and the
        stored record is left untouched.

        Args:
            job_id: Job to update
            status: Target status
            progress: Optional progress percentage (0-100)
            message: Optional progress message
            error_message: Failure reason, recorded with ``failed``
            output_files: Result artifacts, recorded with ``completed``
            cost_actual: Final credit cost
            worker_id: Identifier of the worker processing the job

        Returns:
            Updated job, the unchanged job if the write was rejected,
            or None if the job no longer exists
        """
        job = await self.get_job(job_id)
        if job is None:
            logger.debug("job.status.missing", job_id=job_id, status=status.value)
            return None

        try:
            job.apply_status(status, progress, message)
        except InvalidStateTransition as e:
            logger.warning(
                "job.status.rejected",
                job_id=job_id,
                current_status=job.status.value,
                requested_status=status.value,
                reason=str(e),
            )
            return job

        if error_message is not None:
            job.error_message = error_message
        if output_files is not None:
            job.output_files = output_files
        if cost_actual is not None:
            job.cost_actual = cost_actual
        if worker_id is not None:
            job.worker_id = worker_id

        await self.save_job(job)
        logger.debug(
            "job.status.updated",
            job_id=job_id,
            status=status.value,
            progress=job.progress,
        )
        return job

    async def queue_depth(self, lane: Lane | str) -> int:
        """Return the number of job ids waiting in a lane."""
        return await self.store.llen(lane_key(lane))

    async def has_gpu_jobs(self) -> bool:
        return await self.queue_depth(Lane.GPU) > 0

    # ---- idempotency ------------------------------------------------------

    async def check_idempotency(self, key: str) -> str | None:
        """Return the job id previously created for a submission key."""
        return await self.store.get(idempotency_key(key))

    async def set_idempotency(self, key: str, job_id: str, ttl_seconds: int | None = None) -> None:
        await self.store.set(
            idempotency_key(key), job_id, ttl_seconds=ttl_seconds or self.idempotency_ttl_seconds
        )

    async def claim_idempotency(self, key: str, job_id: str) -> str | None:
        """Atomically bind a submission key to a job id.

        Returns:
            None if this call claimed the key, otherwise the job id that
            already owns it
        """
        while True:
            if await self.store.set_if_absent(
                idempotency_key(key), job_id, self.idempotency_ttl_seconds
            ):
                return None
            owner = await self.check_idempotency(key)
            # None: the key expired or was cleared between the two calls
            if owner is not None:
                return owner

    async def clear_idempotency(self, key: str) -> None:
        """Forget a submission key (used when a claimed submission is rejected)."""
        await self.store.delete(idempotency_key(key))

    # ---- fleet state ------------------------------------------------------

    async def set_fleet_status(self, status: FleetStatus) -> None:
        """Write fleet status and stamp ``last_update``. Controller only."""
        await self.store.set(FLEET_STATUS_KEY, status.value)
        await self.store.set(FLEET_LAST_UPDATE_KEY, str(epoch_ms()))

    async def get_fleet_status(self) -> FleetStatus | None:
        value = await self.store.get(FLEET_STATUS_KEY)
        if value is None:
            return None
        try:
            return FleetStatus(value)
        except ValueError:
            logger.warning("fleet.status.unknown", value=value)
            return None

    async def get_fleet_last_update(self) -> int:
        """Return epoch ms of the last fleet status write or heartbeat (0 if never)."""
        value = await self.store.get(FLEET_LAST_UPDATE_KEY)
        return int(value) if value else 0

    async def record_fleet_heartbeat(self) -> None:
        """Refresh ``last_update`` without touching status (fleet activity)."""
        await self.store.set(FLEET_LAST_UPDATE_KEY, str(epoch_ms()))

    async def set_fleet_start_deadline(self, deadline_ms: int | None) -> None:
        if deadline_ms is None:
            await self.store.delete(FLEET_START_DEADLINE_KEY)
        else:
            await self.store.set(FLEET_START_DEADLINE_KEY, str(deadline_ms))

    async def get_fleet_start_deadline(self) -> int | None:
        value = await self.store.get(FLEET_START_DEADLINE_KEY)
        return int(value) if value else None

    async def acquire_controller_lease(self, owner: str, ttl_seconds: int) -> bool:
        """Take or renew the controller lease.

        Returns:
            True if ``owner`` holds the lease for the next ``ttl_seconds``
        """
        if await self.store.set_if_absent(CONTROLLER_LEASE_KEY, owner, ttl_seconds):
            return True
        return await self.store.expire_if_equals(CONTROLLER_LEASE_KEY, owner, ttl_seconds)

    async def release_controller_lease(self, owner: str) -> None:
        await self.store.delete_if_equals(CONTROLLER_LEASE_KEY, owner)
