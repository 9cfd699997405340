"""Data models for the orchestration core."""

from .job import Job, JobStatus, ProcessingStage, Progress, TERMINAL_STATUSES
from .scene import Scene, SceneStatus
from .storyboard import SceneSpec, Storyboard

__all__ = [
    "Job",
    "JobStatus",
    "ProcessingStage",
    "Progress",
    "TERMINAL_STATUSES",
    "Scene",
    "SceneStatus",
    "SceneSpec",
    "Storyboard",
]
