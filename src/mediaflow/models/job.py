"""Job entity - unit of work dispatched through the CPU and GPU lanes.

Jobs live in the durable job store as JSON documents, not in the relational
store, so they are plain pydantic models rather than SQLModel tables.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from mediaflow.core.timezone import utcnow


class JobStatus(str, Enum):
    """Job lifecycle status."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class Lane(str, Enum):
    """Compute class a job is dispatched through."""

    CPU = "cpu"
    GPU = "gpu"


class ToolType(str, Enum):
    """Processing kinds offered by the platform."""

    STEM_SPLIT = "stem-split"
    AUDIO_ENHANCE = "audio-enhance"
    DE_REVERB = "de-reverb"
    AUTO_SUBTITLE = "auto-subtitle"
    TEXT_TO_SPEECH = "text-to-speech"
    AUDIO_CUT_JOIN = "audio-cut-join"
    PITCH_TEMPO = "pitch-tempo"
    VOLUME_NORMALIZE = "volume-normalize"
    VIDEO_DOWNLOAD = "video-download"
    VIDEO_CONVERT = "video-convert"
    VIDEO_EDIT_BASIC = "video-edit-basic"
    AUDIO_RECORD = "audio-record"


class InvalidStateTransition(Exception):
    """Raised when attempting an invalid job status transition."""

    pass


class JobRequirements(BaseModel):
    """Compute requirements that select the dispatch lane."""

    requires_cpu: bool = True
    requires_gpu: bool = False
    estimated_duration_seconds: float = 0
    memory_mb: int = 512
    timeout_seconds: int = 3600

    @property
    def lane(self) -> Lane:
        return Lane.GPU if self.requires_gpu else Lane.CPU


class OutputFile(BaseModel):
    """Result artifact produced by a tool processor."""

    url: str
    filename: str = ""
    size_bytes: int = 0
    mime_type: str = "application/octet-stream"
    metadata: dict[str, Any] = Field(default_factory=dict)


class Job(BaseModel):
    """Job record; the single source of truth for job status."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    user_id: str
    tool_type: ToolType
    requirements: JobRequirements = Field(default_factory=JobRequirements)
    status: JobStatus = JobStatus.PENDING
    progress: int = Field(default=0, ge=0, le=100)
    progress_message: Optional[str] = None
    parameters: dict[str, Any] = Field(default_factory=dict)
    input_file_url: Optional[str] = None
    input_metadata: dict[str, Any] = Field(default_factory=dict)
    output_files: list[OutputFile] = Field(default_factory=list)
    cost_estimate: int = 0
    cost_actual: Optional[int] = None
    idempotency_key: Optional[str] = None
    worker_id: Optional[str] = None
    error_message: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def apply_status(
        self,
        status: JobStatus,
        progress: int | None = None,
        message: str | None = None,
    ) -> None:
        """Apply a status write following pending → processing → completed|failed.

        Repeated ``processing`` writes are progress updates and keep the
        original ``started_at``. ``failed`` is reachable from any non-terminal
        state.

        Raises:
            InvalidStateTransition: If the job is terminal or the target status
                cannot be reached from the current one
        """
        if self.status.is_terminal:
            raise InvalidStateTransition(
                f"Cannot set {status.value} on job {self.id}: "
                f"already in terminal state {self.status.value}."
            )
        if status == JobStatus.PENDING and self.status != JobStatus.PENDING:
            raise InvalidStateTransition(
                f"Cannot return job {self.id} to pending from {self.status.value}."
            )
        if status == JobStatus.COMPLETED and self.status != JobStatus.PROCESSING:
            raise InvalidStateTransition(
                f"Cannot complete job {self.id} from {self.status.value}. "
                "Job must be in processing state."
            )

        now = utcnow()
        self.status = status
        if progress is not None:
            self.progress = max(0, min(100, progress))
        if message:
            self.progress_message = message
        self.updated_at = now

        if status == JobStatus.PROCESSING and self.started_at is None:
            self.started_at = now
        if status.is_terminal:
            self.completed_at = now
