"""Worker poller tests.

Tests focus on:
- processing → completed with outputs, processing → failed with the error message
- The concurrency bound (never more than max_concurrent jobs in flight)
- Settlement hook invoked once per terminal job
- Processor registry and HTTP processor behavior
"""

import asyncio

import httpx
import pytest

from mediaflow.models.fleet import FleetStatus
from mediaflow.models.job import Job, JobRequirements, JobStatus, Lane, ToolType
from mediaflow.services.exceptions import JobProcessingError
from mediaflow.services.queue import FLEET_LAST_UPDATE_KEY, QueueService
from mediaflow.store import MemoryJobStore
from mediaflow.workers import (
    HttpToolProcessor,
    ProcessorRegistry,
    ProcessResult,
    WorkerPoller,
    build_registry,
)


class StaticProcessor:
    def __init__(self, output_url: str = "https://cdn.example.com/out.wav", cost_actual=None):
        self.output_url = output_url
        self.cost_actual = cost_actual
        self.seen: list[str] = []

    async def process(self, job: Job) -> ProcessResult:
        self.seen.append(job.id)
        return ProcessResult(output_url=self.output_url, cost_actual=self.cost_actual)


class FailingProcessor:
    async def process(self, job: Job) -> ProcessResult:
        raise ValueError("corrupt input file")


class BlockingProcessor:
    """Holds every job until released; tracks peak concurrency."""

    def __init__(self):
        self.release = asyncio.Event()
        self.running = 0
        self.peak = 0

    async def process(self, job: Job) -> ProcessResult:
        self.running += 1
        self.peak = max(self.peak, self.running)
        try:
            await self.release.wait()
        finally:
            self.running -= 1
        return ProcessResult(output_url=f"https://cdn.example.com/{job.id}.wav")


async def enqueue(queue, count=1, tool_type=ToolType.VOLUME_NORMALIZE, gpu=False) -> list[Job]:
    jobs = [
        Job(
            user_id="user-1",
            tool_type=tool_type,
            requirements=JobRequirements(requires_gpu=gpu),
            cost_estimate=10,
        )
        for _ in range(count)
    ]
    for job in jobs:
        await queue.enqueue(job)
    return jobs


def make_poller(queue, processor, lane=Lane.CPU, **kwargs) -> WorkerPoller:
    registry = ProcessorRegistry({tool: processor for tool in ToolType})
    kwargs.setdefault("worker_id", "cpu-test")
    return WorkerPoller(queue, lane, registry, **kwargs)


@pytest.mark.asyncio
async def test_successful_job_is_completed_with_outputs(queue):
    [job] = await enqueue(queue)
    finished: list[Job] = []

    async def on_finished(final: Job):
        finished.append(final)

    poller = make_poller(queue, StaticProcessor(cost_actual=7), on_finished=on_finished)

    assert await poller.poll_once() == 1
    await poller.drain()

    stored = await queue.get_job(job.id)
    assert stored.status == JobStatus.COMPLETED
    assert stored.progress == 100
    assert stored.worker_id == "cpu-test"
    assert stored.cost_actual == 7
    assert stored.output_files[0].url == "https://cdn.example.com/out.wav"
    assert stored.output_files[0].filename == "out.wav"
    assert [f.id for f in finished] == [job.id]
    assert finished[0].status == JobStatus.COMPLETED


@pytest.mark.asyncio
async def test_processor_error_marks_job_failed(queue):
    [job] = await enqueue(queue)
    finished: list[Job] = []

    async def on_finished(final: Job):
        finished.append(final)

    poller = make_poller(queue, FailingProcessor(), on_finished=on_finished)

    await poller.poll_once()
    await poller.drain()

    stored = await queue.get_job(job.id)
    assert stored.status == JobStatus.FAILED
    assert stored.error_message == "corrupt input file"
    assert stored.progress_message == "Error: corrupt input file"
    assert stored.completed_at is not None
    assert finished[0].status == JobStatus.FAILED


@pytest.mark.asyncio
async def test_unsupported_tool_fails_job(queue):
    [job] = await enqueue(queue, tool_type=ToolType.AUDIO_RECORD)
    registry = ProcessorRegistry({ToolType.VOLUME_NORMALIZE: StaticProcessor()})
    poller = WorkerPoller(queue, Lane.CPU, registry)

    await poller.poll_once()
    await poller.drain()

    stored = await queue.get_job(job.id)
    assert stored.status == JobStatus.FAILED
    assert "Unsupported tool type" in stored.error_message


@pytest.mark.asyncio
async def test_poller_respects_concurrency_bound(queue):
    await enqueue(queue, count=5)
    processor = BlockingProcessor()
    poller = make_poller(queue, processor, max_concurrent=2)

    assert await poller.poll_once() == 2
    await asyncio.sleep(0)
    assert poller.active_jobs == 2
    assert await poller.poll_once() == 0
    assert await queue.queue_depth(Lane.CPU) == 3

    processor.release.set()
    await poller.drain()
    assert poller.active_jobs == 0

    assert await poller.poll_once() == 2
    await poller.drain()
    assert await poller.poll_once() == 1
    await poller.drain()

    assert processor.peak == 2
    assert await queue.queue_depth(Lane.CPU) == 0


@pytest.mark.asyncio
async def test_slow_job_does_not_block_next_dispatch(queue):
    await enqueue(queue, count=1)
    processor = BlockingProcessor()
    poller = make_poller(queue, processor, max_concurrent=3)

    await poller.poll_once()
    await asyncio.sleep(0)
    await enqueue(queue, count=1)

    assert await poller.poll_once() == 1
    processor.release.set()
    await poller.drain()


@pytest.mark.asyncio
async def test_gpu_poller_records_fleet_activity(queue, job_store):
    await enqueue(queue, tool_type=ToolType.STEM_SPLIT, gpu=True)
    await queue.set_fleet_status(FleetStatus.RUNNING)
    await job_store.set(FLEET_LAST_UPDATE_KEY, "1")
    poller = make_poller(queue, StaticProcessor(), lane=Lane.GPU)

    assert await poller.poll_once() == 1
    await poller.drain()

    assert await queue.get_fleet_last_update() > 1


@pytest.mark.asyncio
@pytest.mark.parametrize("fleet_status", [None, FleetStatus.STOPPED, FleetStatus.STARTING])
async def test_gpu_poller_waits_for_running_fleet(queue, fleet_status):
    [job] = await enqueue(queue, tool_type=ToolType.STEM_SPLIT, gpu=True)
    if fleet_status is not None:
        await queue.set_fleet_status(fleet_status)
    processor = StaticProcessor()
    poller = make_poller(queue, processor, lane=Lane.GPU)

    assert await poller.poll_once() == 0

    # Left queued so the controller sees GPU demand
    assert await queue.has_gpu_jobs()
    assert (await queue.get_job(job.id)).status == JobStatus.PENDING
    assert processor.seen == []

    await queue.set_fleet_status(FleetStatus.RUNNING)
    assert await poller.poll_once() == 1
    await poller.drain()
    assert processor.seen == [job.id]


@pytest.mark.asyncio
async def test_settlement_failure_does_not_break_poller(queue):
    await enqueue(queue, count=2)

    async def on_finished(final: Job):
        raise RuntimeError("ledger unavailable")

    poller = make_poller(queue, StaticProcessor(), on_finished=on_finished)

    assert await poller.poll_once() == 2
    await poller.drain()
    assert poller.active_jobs == 0


@pytest.mark.asyncio
async def test_run_loop_processes_queue_and_stops_cleanly(queue):
    jobs = await enqueue(queue, count=3)
    poller = make_poller(queue, StaticProcessor(), poll_interval_seconds=0.01)

    task = asyncio.create_task(poller.run())
    await asyncio.sleep(0.1)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    for job in jobs:
        assert (await queue.get_job(job.id)).status == JobStatus.COMPLETED


def test_max_concurrent_must_be_positive(queue):
    with pytest.raises(ValueError):
        WorkerPoller(queue, Lane.CPU, ProcessorRegistry(), max_concurrent=0)


def test_build_registry_routes_every_tool_to_service():
    registry = build_registry("https://processor.internal")
    assert all(tool in registry for tool in ToolType)

    assert ToolType.STEM_SPLIT not in build_registry("")


@pytest.mark.asyncio
async def test_http_processor_posts_job_and_parses_result():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200, json={"output_url": "https://cdn.example.com/x.mp4", "cost_actual": 14}
        )

    processor = HttpToolProcessor(
        "https://processor.internal/", transport=httpx.MockTransport(handler)
    )
    job = Job(user_id="user-1", tool_type=ToolType.VIDEO_CONVERT, parameters={"format": "mp4"})

    result = await processor.process(job)

    assert result.output_url == "https://cdn.example.com/x.mp4"
    assert result.cost_actual == 14
    assert seen[0].url == "https://processor.internal/process/video-convert"
    assert Job.model_validate_json(seen[0].content).id == job.id


@pytest.mark.asyncio
async def test_http_processor_error_raises_processing_error():
    processor = HttpToolProcessor(
        "https://processor.internal",
        transport=httpx.MockTransport(lambda request: httpx.Response(500, text="oom")),
    )
    job = Job(user_id="user-1", tool_type=ToolType.STEM_SPLIT)

    with pytest.raises(JobProcessingError, match="500"):
        await processor.process(job)


class FailingWritesStore(MemoryJobStore):
    """Job store whose writes fail once ``allowed_writes`` is used up."""

    def __init__(self):
        super().__init__()
        self.allowed_writes = 1

    async def set(self, key, value, ttl_seconds=None, keep_ttl=False):
        if self.allowed_writes <= 0:
            raise ConnectionError("job store unavailable")
        self.allowed_writes -= 1
        await super().set(key, value, ttl_seconds=ttl_seconds, keep_ttl=keep_ttl)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "writes_before_failure",
    [
        pytest.param(0, id="processing-write-fails"),
        pytest.param(1, id="completed-write-fails"),
    ],
)
async def test_store_error_during_run_still_settles_job(writes_before_failure):
    store = FailingWritesStore()
    store_queue = QueueService(store)
    [job] = await enqueue(store_queue)
    store.allowed_writes = writes_before_failure
    finished: list[Job] = []

    async def on_finished(final: Job):
        finished.append(final)

    poller = make_poller(store_queue, StaticProcessor(), on_finished=on_finished)

    assert await poller.poll_once() == 1
    await poller.drain()

    [final] = finished
    assert final.id == job.id
    assert final.status == JobStatus.FAILED
    assert final.error_message == "job store unavailable"
    assert poller.active_jobs == 0


@pytest.mark.asyncio
async def test_completed_write_failure_is_recorded_when_store_recovers(queue, job_store):
    [job] = await enqueue(queue)
    original_set = job_store.set
    calls = {"count": 0}

    async def flaky_set(key, value, ttl_seconds=None, keep_ttl=False):
        calls["count"] += 1
        # Second write of the run is the completed status
        if calls["count"] == 2:
            raise ConnectionError("connection reset")
        await original_set(key, value, ttl_seconds=ttl_seconds, keep_ttl=keep_ttl)

    job_store.set = flaky_set
    finished: list[Job] = []

    async def on_finished(final: Job):
        finished.append(final)

    poller = make_poller(queue, StaticProcessor(), on_finished=on_finished)
    await poller.poll_once()
    await poller.drain()

    stored = await queue.get_job(job.id)
    assert stored.status == JobStatus.FAILED
    assert stored.error_message == "connection reset"
    assert [f.status for f in finished] == [JobStatus.FAILED]
