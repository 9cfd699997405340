"""Progress snapshots computed from scene statuses."""

from typing import Dict, Optional, Sequence

from ..models import Progress, Scene, SceneStatus

# Coordinator milestones
RENDER_STARTED = 10.0
RENDER_FINISHED = 75.0
STITCH_STARTED = 80.0
STITCH_FINISHED = 90.0
AUDIO_STARTED = 95.0
DONE = 100.0


def count_scenes(scenes: Sequence[Scene]) -> Dict[str, int]:
    counts = {status.value: 0 for status in SceneStatus}
    for scene in scenes:
        counts[SceneStatus(scene.status).value] += 1
    return counts


def infer_stage(counts: Dict[str, int], total: int) -> str:
    """Stage label implied by scene counts alone."""
    if total and counts.get("completed", 0) == total:
        return "completed"
    if counts.get("processing", 0):
        return "processing"
    if counts.get("failed", 0):
        return "processing_with_errors"
    return "pending"


def compute_progress(scenes: Sequence[Scene], previous: Optional[Progress] = None) -> Progress:
    """Recompute counts, completion percentage and stage from scenes.

    Error text, skipped scene count and audio status carry over from
    previous.
    """
    counts = count_scenes(scenes)
    total = len(scenes)
    percentage = round(counts["completed"] / total * 100, 2) if total else 0.0

    progress = previous.model_copy(deep=True) if previous is not None else Progress()
    progress.counts = counts
    progress.total = total
    progress.percentage = percentage
    progress.stage = infer_stage(counts, total)
    return progress


def rendering_percentage(settled: int, total: int) -> float:
    """Map settled renders onto the rendering span of the job percentage."""
    if not total:
        return RENDER_FINISHED
    span = RENDER_FINISHED - RENDER_STARTED
    return round(RENDER_STARTED + span * settled / total, 2)
