"""Background workers for job processing."""

from mediaflow.workers.poller import WorkerPoller
from mediaflow.workers.processors import (
    HttpToolProcessor,
    ProcessorRegistry,
    ProcessResult,
    ToolProcessor,
    build_registry,
)

__all__ = [
    "HttpToolProcessor",
    "ProcessResult",
    "ProcessorRegistry",
    "ToolProcessor",
    "WorkerPoller",
    "build_registry",
]
