"""Orchestration: render dispatch, audio continuation and the coordinator."""

from .audio import AudioPipeline, AudioSegment, ComposeResult
from .coordinator import Coordinator
from .progress import compute_progress
from .render import RenderDispatcher, RenderOutcome

__all__ = [
    "AudioPipeline",
    "AudioSegment",
    "ComposeResult",
    "Coordinator",
    "compute_progress",
    "RenderDispatcher",
    "RenderOutcome",
]
