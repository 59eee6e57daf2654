"""Tool processor interface and registry.

Processing itself (transcoding, stem separation, transcription, TTS) runs
outside this package. The worker poller only needs ``process(job)`` to
return where the output went, or raise.
"""

from typing import Protocol

import httpx
from pydantic import BaseModel, Field

from mediaflow.models.job import Job, OutputFile, ToolType
from mediaflow.services.exceptions import JobProcessingError


class ProcessResult(BaseModel):
    """Outcome of a successful processor run."""

    output_url: str
    output_files: list[OutputFile] = Field(default_factory=list)
    cost_actual: int | None = None

    def all_output_files(self) -> list[OutputFile]:
        if self.output_files:
            return self.output_files
        return [OutputFile(url=self.output_url, filename=self.output_url.rsplit("/", 1)[-1])]


class ToolProcessor(Protocol):
    async def process(self, job: Job) -> ProcessResult: ...


class ProcessorRegistry:
    """Maps tool types to processors."""

    def __init__(self, processors: dict[ToolType, ToolProcessor] | None = None):
        self._processors: dict[ToolType, ToolProcessor] = dict(processors or {})

    def register(self, tool_type: ToolType, processor: ToolProcessor) -> None:
        self._processors[tool_type] = processor

    def get(self, tool_type: ToolType) -> ToolProcessor:
        """Look up the processor for a tool.

        Raises:
            JobProcessingError: If no processor handles the tool type
        """
        processor = self._processors.get(tool_type)
        if processor is None:
            raise JobProcessingError(f"Unsupported tool type: {tool_type.value}")
        return processor

    def __contains__(self, tool_type: ToolType) -> bool:
        return tool_type in self._processors


class HttpToolProcessor:
    """Delegates a job to a remote processing service.

    POST {base_url}/process/{tool_type} with the job record as JSON;
    expects ``{"output_url": ..., "output_files": [...], "cost_actual": ...}``.
    """

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 3600.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.transport = transport

    async def process(self, job: Job) -> ProcessResult:
        url = f"{self.base_url}/process/{job.tool_type.value}"
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_seconds, transport=self.transport
            ) as client:
                response = await client.post(url, content=job.model_dump_json(),
                                             headers={"Content-Type": "application/json"})
        except httpx.HTTPError as e:
            raise JobProcessingError(f"Processor unreachable: {str(e)}") from e

        if not response.is_success:
            raise JobProcessingError(
                f"Processor returned {response.status_code}: {response.text[:500]}"
            )
        return ProcessResult.model_validate(response.json())


def build_registry(processor_url: str | None) -> ProcessorRegistry:
    """Build the registry used by worker processes.

    Args:
        processor_url: Base URL of the processing service; when empty the
            registry is empty and every job fails as unsupported

    Returns:
        ProcessorRegistry with every tool type routed to the service
    """
    registry = ProcessorRegistry()
    if processor_url:
        processor = HttpToolProcessor(processor_url)
        for tool_type in ToolType:
            registry.register(tool_type, processor)
    return registry
