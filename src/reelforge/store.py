"""Persistence interface used by the coordinator, plus an in-memory store."""

import logging
import threading
import uuid
from typing import Dict, List, Optional, Protocol

from .config import AudioSettings
from .errors import ValidationError
from .models import Job, JobStatus, ProcessingStage, Progress, Scene, SceneSpec, Storyboard

logger = logging.getLogger(__name__)


class JobStore(Protocol):
    """Storage operations the orchestration core relies on."""

    def load_job(self, job_id: str) -> Job: ...

    def load_scenes(self, job_id: str) -> List[Scene]: ...

    def save_status(
        self,
        job_id: str,
        status: JobStatus,
        stage: Optional[ProcessingStage],
        partial: bool = False,
    ) -> None: ...

    def save_progress(self, job_id: str, progress: Progress) -> None: ...

    def save_result(self, job_id: str, video: bytes) -> None: ...

    def save_audio(
        self,
        job_id: str,
        audio: bytes,
        video_with_audio: Optional[bytes] = None,
    ) -> None: ...

    def save_scene(self, scene: Scene) -> None: ...

    def delete_scene(self, job_id: str, scene_id: str) -> None: ...

    def list_jobs(self) -> List[Job]: ...


class MemoryJobStore:
    """Thread-safe in-process JobStore.

    Every read hands out a deep copy so callers never mutate stored state
    except through a save operation.
    """

    def __init__(self) -> None:
        self._jobs: Dict[str, Job] = {}
        self._scenes: Dict[str, Dict[str, Scene]] = {}
        self._lock = threading.Lock()

    def create_job(
        self,
        storyboard: Storyboard,
        job_id: Optional[str] = None,
        audio_settings: Optional[AudioSettings] = None,
        cost_estimate: Optional[float] = None,
    ) -> Job:
        """Persist a new pending job and one pending scene per storyboard entry.

        Scene specs without their own model or aspect ratio inherit the
        storyboard defaults.
        """
        job_id = job_id or uuid.uuid4().hex
        specs: List[SceneSpec] = []
        for spec in storyboard.scenes:
            spec = spec.model_copy(deep=True)
            if spec.model is None:
                spec.model = storyboard.render_model
            if spec.aspect_ratio is None:
                spec.aspect_ratio = storyboard.aspect_ratio
            specs.append(spec)

        job = Job(
            id=job_id,
            storyboard=specs,
            audio_settings=audio_settings,
            cost_estimate=cost_estimate,
            progress=Progress(total=len(specs), counts={"pending": len(specs)}),
        )
        scenes = {
            f"{job_id}-{index:03d}": Scene(
                id=f"{job_id}-{index:03d}",
                job_id=job_id,
                index=index,
                spec=spec,
            )
            for index, spec in enumerate(specs)
        }

        with self._lock:
            if job_id in self._jobs:
                raise ValidationError(f"Job {job_id} already exists")
            self._jobs[job_id] = job
            self._scenes[job_id] = scenes

        logger.info(f"Created job {job_id} with {len(specs)} scenes")
        return job.model_copy(deep=True)

    def load_job(self, job_id: str) -> Job:
        with self._lock:
            return self._get(job_id).model_copy(deep=True)

    def list_jobs(self) -> List[Job]:
        with self._lock:
            return [job.model_copy(deep=True) for job in self._jobs.values()]

    def load_scenes(self, job_id: str) -> List[Scene]:
        with self._lock:
            self._get(job_id)
            scenes = sorted(self._scenes[job_id].values(), key=lambda s: s.index)
            return [scene.model_copy(deep=True) for scene in scenes]

    def save_status(
        self,
        job_id: str,
        status: JobStatus,
        stage: Optional[ProcessingStage],
        partial: bool = False,
    ) -> None:
        with self._lock:
            job = self._get(job_id)
            job.advance(status, stage)
            job.partial = job.partial or partial

    def save_progress(self, job_id: str, progress: Progress) -> None:
        with self._lock:
            self._get(job_id).progress = progress.model_copy(deep=True)

    def save_result(self, job_id: str, video: bytes) -> None:
        """Persist the stitched video.

        Raises:
            ValidationError: If the job already has a result.
        """
        with self._lock:
            job = self._get(job_id)
            if job.result is not None:
                raise ValidationError(f"Job {job_id} already has a result")
            job.result = video

    def save_audio(
        self,
        job_id: str,
        audio: bytes,
        video_with_audio: Optional[bytes] = None,
    ) -> None:
        with self._lock:
            job = self._get(job_id)
            job.audio = audio
            if video_with_audio is not None:
                job.video_with_audio = video_with_audio

    def save_scene(self, scene: Scene) -> None:
        with self._lock:
            self._get(scene.job_id)
            self._scenes[scene.job_id][scene.id] = scene.model_copy(deep=True)

    def delete_scene(self, job_id: str, scene_id: str) -> None:
        with self._lock:
            self._get(job_id)
            if self._scenes[job_id].pop(scene_id, None) is None:
                raise ValidationError(f"Job {job_id} has no scene {scene_id}")

    def _get(self, job_id: str) -> Job:
        job = self._jobs.get(job_id)
        if job is None:
            raise ValidationError(f"Unknown job: {job_id}")
        return job
