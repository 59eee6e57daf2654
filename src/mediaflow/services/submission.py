"""Job submission and settlement.

Submission: idempotency claim → cost estimate → credit reservation →
job creation and enqueue. Settlement runs after a job reaches a terminal
status: completed jobs are charged and the unused reservation released,
failed jobs release their whole reservation.
"""

import asyncio
from typing import Any

import structlog

from mediaflow.models.job import Job, JobRequirements, JobStatus, ToolType
from mediaflow.services.billing import BillingService, estimate_cost
from mediaflow.services.exceptions import InsufficientCredits, SubmissionInProgress
from mediaflow.services.queue import QueueService

logger = structlog.get_logger(__name__)


class JobSubmissionService:
    """Front door of the dispatch core, shared by API handlers and workers."""

    def __init__(
        self,
        queue: QueueService,
        billing: BillingService,
        claim_wait_seconds: float = 10.0,
        claim_poll_interval_seconds: float = 0.05,
    ):
        """Initialize submission service.

        Args:
            queue: Queue service
            billing: Wallet ledger
            claim_wait_seconds: How long a repeated submission waits for the
                job of a concurrent submission holding the same key
            claim_poll_interval_seconds: Delay between checks while waiting
        """
        self.queue = queue
        self.billing = billing
        self.claim_wait_seconds = claim_wait_seconds
        self.claim_poll_interval_seconds = claim_poll_interval_seconds

    async def submit(
        self,
        user_id: str,
        tool_type: ToolType,
        requirements: JobRequirements,
        idempotency_key: str,
        file_size_bytes: int = 0,
        duration_seconds: float = 0,
        input_file_url: str | None = None,
        parameters: dict[str, Any] | None = None,
        input_metadata: dict[str, Any] | None = None,
    ) -> Job:
        """Create and enqueue a job, holding its estimated cost.

        The key is claimed before credits are reserved. A caller that loses
        the claim never creates a job: it returns the owner's job, waiting
        for it while the owner is still reserving and enqueueing. If the
        owner is rejected the key is released and the claim is retried.

        Returns:
            The new job, or the existing job for a repeated key

        Raises:
            InsufficientCredits: If the user cannot cover the estimate
            SubmissionInProgress: If the owner's job did not appear in time
            ValueError: If idempotency_key is empty
        """
        if not idempotency_key:
            raise ValueError("idempotency_key is required")

        cost = estimate_cost(
            tool_type, file_size_bytes, duration_seconds, requirements.requires_gpu
        )
        job = Job(
            user_id=user_id,
            tool_type=tool_type,
            requirements=requirements,
            cost_estimate=cost,
            idempotency_key=idempotency_key,
            input_file_url=input_file_url,
            parameters=parameters or {},
            input_metadata=input_metadata or {},
        )

        while True:
            owner = await self.queue.claim_idempotency(idempotency_key, job.id)
            if owner is None:
                break
            existing = await self._wait_for_owner_job(idempotency_key, owner)
            if existing is not None:
                logger.info("job.submit.duplicate", job_id=existing.id, user_id=user_id)
                return existing

        if not await self.billing.reserve_credits(user_id, cost):
            await self.queue.clear_idempotency(idempotency_key)
            available = await self.billing.get_available_credits(user_id)
            logger.info(
                "job.submit.rejected",
                user_id=user_id,
                reason="insufficient_credits",
                required=cost,
                available=available,
            )
            raise InsufficientCredits(user_id, cost, available)

        await self.queue.enqueue(job)
        logger.info(
            "job.submitted",
            job_id=job.id,
            user_id=user_id,
            tool_type=tool_type.value,
            cost_estimate=cost,
        )
        return job

    async def _wait_for_owner_job(self, idempotency_key: str, owner: str) -> Job | None:
        """Wait for the job of the submission holding the key.

        Returns:
            The owner's job, or None once the key no longer points at
            ``owner`` (rejected submission or expired claim)

        Raises:
            SubmissionInProgress: If the owner's record does not appear in time
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.claim_wait_seconds
        while True:
            job = await self.queue.get_job(owner)
            if job is not None:
                return job
            if await self.queue.check_idempotency(idempotency_key) != owner:
                return None
            if loop.time() >= deadline:
                logger.warning(
                    "job.submit.claim_timeout", idempotency_key=idempotency_key, job_id=owner
                )
                raise SubmissionInProgress(idempotency_key, owner)
            await asyncio.sleep(self.claim_poll_interval_seconds)

    async def settle(self, job: Job) -> None:
        """Settle credits for a job in a terminal status.

        - completed: deduct cost_actual (default cost_estimate), release
          whatever of the estimate was not consumed. When the balance no
          longer covers the charge, charge what is left and log the shortfall
        - failed: release the full estimate
        """
        if job.status == JobStatus.COMPLETED:
            charge = job.cost_actual if job.cost_actual is not None else job.cost_estimate
            charged = await self._charge(job, charge)
            await self.billing.release_credits(job.user_id, job.cost_estimate - charged)
            logger.info("job.settled", job_id=job.id, charged=charged)
        elif job.status == JobStatus.FAILED:
            await self.billing.release_credits(job.user_id, job.cost_estimate)
            logger.info("job.settled", job_id=job.id, charged=0)
        else:
            raise ValueError(f"Cannot settle job {job.id} in status {job.status.value}")

    async def _charge(self, job: Job, amount: int) -> int:
        """Deduct up to ``amount`` for a job and return what was charged."""
        if amount <= 0:
            return 0
        reason = f"Job {job.id} - {job.tool_type.value}"
        try:
            await self.billing.deduct_credits(
                job.user_id, amount, reason, reference_type="job", reference_id=job.id
            )
            return amount
        except InsufficientCredits as e:
            partial = min(amount, e.available)
            logger.warning(
                "job.settlement.shortfall",
                job_id=job.id,
                user_id=job.user_id,
                required=amount,
                available=e.available,
                shortfall=amount - partial,
            )
            if partial <= 0:
                return 0
            try:
                await self.billing.deduct_credits(
                    job.user_id, partial, reason, reference_type="job", reference_id=job.id
                )
            except InsufficientCredits:
                logger.warning("job.settlement.partial_charge_failed", job_id=job.id)
                return 0
            return partial
