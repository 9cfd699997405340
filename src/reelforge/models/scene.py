"""Scene render unit model."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from ..errors import ValidationError
from .storyboard import SceneSpec


class SceneStatus(str, Enum):
    """Render status of a scene."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


_TRANSITIONS = {
    SceneStatus.PENDING: {SceneStatus.PROCESSING},
    SceneStatus.PROCESSING: {SceneStatus.COMPLETED, SceneStatus.FAILED},
    SceneStatus.COMPLETED: set(),
    SceneStatus.FAILED: set(),
}


class Scene(BaseModel):
    """One clip within a job."""

    id: str = Field(..., description="Unique scene identifier")
    job_id: str = Field(..., description="Owning job identifier")
    index: int = Field(..., description="Position in the storyboard", ge=0)
    spec: SceneSpec
    status: SceneStatus = SceneStatus.PENDING
    provider_handle: Optional[str] = Field(None, description="External render job handle")
    clip: Optional[bytes] = Field(None, description="Rendered clip, present once completed")
    error: Optional[str] = None

    class Config:
        """Pydantic config."""
        frozen = False

    def transition(self, status: SceneStatus) -> None:
        """Move to a new status.

        Raises:
            ValidationError: If the transition is not allowed.
        """
        status = SceneStatus(status)
        if status not in _TRANSITIONS[self.status]:
            raise ValidationError(
                f"Scene {self.id}: cannot move from {self.status.value} to {status.value}"
            )
        self.status = status

    def complete(self, clip: bytes) -> None:
        self.transition(SceneStatus.COMPLETED)
        self.clip = clip
        self.error = None

    def fail(self, error: str) -> None:
        self.transition(SceneStatus.FAILED)
        self.clip = None
        self.error = error

    def reset(self) -> None:
        """Force a finished scene back to pending for regeneration.

        Raises:
            ValidationError: If the scene is not completed or failed.
        """
        if self.status not in (SceneStatus.COMPLETED, SceneStatus.FAILED):
            raise ValidationError(
                f"Scene {self.id}: only completed or failed scenes can be regenerated"
            )
        self.status = SceneStatus.PENDING
        self.provider_handle = None
        self.clip = None
        self.error = None
