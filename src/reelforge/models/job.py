"""Job aggregate model and its status machine."""

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from ..config import AudioSettings
from ..errors import ValidationError
from .storyboard import SceneSpec


class JobStatus(str, Enum):
    """Lifecycle status of a job."""

    PENDING = "pending"
    APPROVED = "approved"
    PROCESSING = "processing"
    COMPLETED = "completed"
    COMPLETED_PARTIAL = "completed_partial"
    FAILED = "failed"


class ProcessingStage(str, Enum):
    """Sub-stage of a processing job."""

    RENDERING = "rendering"
    STITCHING = "stitching"
    AUDIO_PENDING = "audio_pending"
    AUDIO_GENERATION = "audio_generation"


# Position of each (status, stage) pair in the forward-only ordering
_RANK = {
    (JobStatus.PENDING, None): 0,
    (JobStatus.APPROVED, None): 1,
    (JobStatus.PROCESSING, ProcessingStage.RENDERING): 2,
    (JobStatus.PROCESSING, ProcessingStage.STITCHING): 3,
    (JobStatus.PROCESSING, ProcessingStage.AUDIO_PENDING): 4,
    (JobStatus.PROCESSING, ProcessingStage.AUDIO_GENERATION): 5,
    (JobStatus.COMPLETED, None): 6,
    (JobStatus.COMPLETED_PARTIAL, None): 6,
}

TERMINAL_STATUSES = (JobStatus.COMPLETED, JobStatus.COMPLETED_PARTIAL, JobStatus.FAILED)


class Progress(BaseModel):
    """Pollable progress snapshot of a job."""

    stage: str = "pending"
    percentage: float = 0.0
    total: int = 0
    counts: Dict[str, int] = Field(default_factory=dict)
    error: Optional[str] = None
    skipped_scenes: int = 0
    audio_status: Optional[str] = None

    class Config:
        """Pydantic config."""
        frozen = False


class Job(BaseModel):
    """One video-generation request."""

    id: str = Field(..., description="Unique job identifier")
    status: JobStatus = JobStatus.PENDING
    processing_stage: Optional[ProcessingStage] = None
    partial: bool = Field(default=False, description="Stitched from a subset of scenes")
    storyboard: List[SceneSpec] = Field(default_factory=list)
    progress: Progress = Field(default_factory=Progress)
    result: Optional[bytes] = Field(None, description="Final stitched video")
    audio: Optional[bytes] = Field(None, description="Generated soundtrack")
    video_with_audio: Optional[bytes] = Field(None, description="Stitched video with soundtrack muxed in")
    audio_settings: Optional[AudioSettings] = Field(
        None, description="Per-job audio overrides; deployment defaults when unset"
    )
    cost_estimate: Optional[float] = None

    class Config:
        """Pydantic config."""
        frozen = False

    @property
    def is_processing(self) -> bool:
        return self.status == JobStatus.PROCESSING

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def advance(
        self,
        status: JobStatus,
        stage: Optional[ProcessingStage] = None,
    ) -> None:
        """Move the job forward.

        Status only advances through pending, approved, the processing
        sub-stages and finally completed or completed_partial. The single
        exception is failed, which is reachable from any processing sub-stage.

        Args:
            status: Target status.
            stage: Target processing sub-stage; required for processing.

        Raises:
            ValidationError: If the transition would move backwards or skip
                into failed from outside processing.
        """
        status = JobStatus(status)
        if status == JobStatus.PROCESSING and stage is None:
            raise ValidationError("A processing job needs a processing stage")
        if status != JobStatus.PROCESSING:
            stage = None

        current = self._describe()
        if status == JobStatus.FAILED:
            if not self.is_processing:
                raise ValidationError(f"Job {self.id}: cannot fail from {current}")
        else:
            old_rank = _RANK.get((self.status, self.processing_stage))
            new_rank = _RANK[(status, stage)]
            if old_rank is None or new_rank <= old_rank:
                target = status.value if stage is None else f"{status.value}({stage.value})"
                raise ValidationError(f"Job {self.id}: cannot move from {current} to {target}")

        self.status = status
        self.processing_stage = stage

    def _describe(self) -> str:
        if self.processing_stage is None:
            return self.status.value
        return f"{self.status.value}({self.processing_stage.value})"
