"""Workflow coordinator.

Drives a job from approval to a finished video: render fan-out, full or
partial stitch, then the audio stage. Every read-modify-write of a job runs
under that job's lock, so progress counters and status transitions are never
computed from a stale read. Long-running work (renders, stitching, audio)
happens outside the lock; while it runs the job sits in a processing stage
and scene mutations are rejected.
"""

import asyncio
import contextlib
import logging
from typing import AsyncIterator, Dict, List, Optional, Sequence

from ..config import Config, config as default_config
from ..errors import ReelforgeError, ValidationError
from ..models import (
    Job,
    JobStatus,
    ProcessingStage,
    Progress,
    Scene,
    SceneSpec,
    SceneStatus,
)
from ..store import JobStore
from . import progress as milestones
from .audio import AudioPipeline
from .progress import compute_progress, rendering_percentage
from .render import RenderDispatcher, RenderOutcome

logger = logging.getLogger(__name__)


class Coordinator:
    """Single owner of job lifecycle transitions."""

    def __init__(
        self,
        store: JobStore,
        dispatcher: RenderDispatcher,
        stitcher,
        audio_pipeline: Optional[AudioPipeline] = None,
        settings: Optional[Config] = None,
    ) -> None:
        """Initialize the coordinator.

        Args:
            store: Job persistence.
            dispatcher: Render dispatcher.
            stitcher: Clip stitcher (see Stitcher).
            audio_pipeline: Audio continuation pipeline; the audio stage is
                skipped when None.
            settings: Deployment configuration; the global config if None.
        """
        self._store = store
        self._dispatcher = dispatcher
        self._stitcher = stitcher
        self._audio = audio_pipeline
        self._config = settings or default_config
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    @contextlib.asynccontextmanager
    async def _lock(self, job_id: str) -> AsyncIterator[None]:
        """Hold the job's lock; it is dropped once no coroutine holds or awaits it."""
        lock = self._locks.get(job_id)
        if lock is None:
            lock = self._locks[job_id] = asyncio.Lock()
        self._lock_users[job_id] = self._lock_users.get(job_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[job_id] -= 1
            if not self._lock_users[job_id]:
                del self._lock_users[job_id]
                del self._locks[job_id]

    # -- External operations ------------------------------------------------

    async def approve(self, job_id: str) -> Job:
        """Approve a pending job so it can be started.

        Raises:
            ValidationError: If the job is unknown or not pending.
        """
        async with self._lock(job_id):
            job = self._store.load_job(job_id)
            if job.status != JobStatus.PENDING:
                raise ValidationError(
                    f"Job {job_id}: only pending jobs can be approved, not {job.status.value}"
                )
            self._store.save_status(job_id, JobStatus.APPROVED, None)
            logger.info(f"Job {job_id} approved")
            return self._store.load_job(job_id)

    async def start(self, job_id: str) -> Job:
        """Run an approved job to completion.

        Failures after the job has started are recorded on the job record
        rather than raised.

        Returns:
            The job as persisted at the end of the run.

        Raises:
            ValidationError: If the job is unknown or not approved.
        """
        async with self._lock(job_id):
            job = self._store.load_job(job_id)
            if job.status != JobStatus.APPROVED:
                raise ValidationError(
                    f"Job {job_id}: only approved jobs can be started, not {job.status.value}"
                )
            scenes = self._store.load_scenes(job_id)
            self._store.save_status(job_id, JobStatus.PROCESSING, ProcessingStage.RENDERING)

            to_render = [scene for scene in scenes if scene.status == SceneStatus.PENDING]
            for scene in to_render:
                scene.transition(SceneStatus.PROCESSING)
                self._store.save_scene(scene)

            snapshot = compute_progress(self._store.load_scenes(job_id), job.progress)
            snapshot.stage = ProcessingStage.RENDERING.value
            snapshot.percentage = milestones.RENDER_STARTED
            snapshot.error = None
            self._store.save_progress(job_id, snapshot)

        logger.info(f"Job {job_id} started: rendering {len(to_render)} of {len(scenes)} scenes")

        try:
            await self._run(job, to_render)
        except Exception as e:
            logger.exception(f"Job {job_id} crashed")
            await self._fail(job_id, f"Unexpected error: {e}")

        return self._store.load_job(job_id)

    async def scene_updated(
        self,
        job_id: str,
        scene_id: str,
        status: Optional[SceneStatus] = None,
        spec: Optional[SceneSpec] = None,
    ) -> Progress:
        """Apply an external scene update and refresh job progress.

        Args:
            job_id: Owning job.
            scene_id: Scene to update.
            status: New scene status, validated against the scene machine.
            spec: Replacement scene specification.

        Returns:
            The refreshed progress snapshot.

        Raises:
            ValidationError: If the job is processing, the scene is unknown,
                or the status transition is illegal.
        """
        async with self._lock(job_id):
            job, scenes, scene = self._load_for_mutation(job_id, scene_id)
            if status is not None:
                try:
                    new_status = SceneStatus(status)
                except ValueError as e:
                    raise ValidationError(f"Unknown scene status: {status!r}") from e
                scene.transition(new_status)
            if spec is not None:
                scene.spec = spec
            self._store.save_scene(scene)
            return self._refresh_progress(job, scenes, scene)

    async def scene_regenerate(self, job_id: str, scene_id: str) -> Progress:
        """Reset a completed or failed scene to pending.

        Raises:
            ValidationError: If the job is processing, the scene is unknown,
                or the scene has not finished.
        """
        async with self._lock(job_id):
            job, scenes, scene = self._load_for_mutation(job_id, scene_id)
            scene.reset()
            self._store.save_scene(scene)
            logger.info(f"Job {job_id}: scene {scene.index} reset for regeneration")
            return self._refresh_progress(job, scenes, scene)

    async def scene_deleted(self, job_id: str, scene_id: str) -> Progress:
        """Delete a scene and refresh job progress.

        Raises:
            ValidationError: If the job is processing or the scene is unknown.
        """
        async with self._lock(job_id):
            job, scenes, scene = self._load_for_mutation(job_id, scene_id)
            self._store.delete_scene(job_id, scene_id)
            remaining = [s for s in scenes if s.id != scene_id]
            logger.info(f"Job {job_id}: scene {scene.index} deleted")
            snapshot = self._scene_progress(job, remaining)
            self._store.save_progress(job_id, snapshot)
            return snapshot

    async def recover_interrupted(self) -> List[str]:
        """Fail jobs left in a processing stage by a previous process.

        Returns:
            Identifiers of the jobs that were failed.
        """
        recovered = []
        for job in self._store.list_jobs():
            if job.is_processing:
                await self._fail(job.id, "Interrupted before completion")
                recovered.append(job.id)
        if recovered:
            logger.warning(f"Failed {len(recovered)} interrupted jobs: {', '.join(recovered)}")
        return recovered

    # -- Pipeline -----------------------------------------------------------

    async def _run(self, job: Job, to_render: Sequence[Scene]) -> None:
        job_id = job.id
        settled = 0

        async def on_submitted(scene: Scene, handle: str) -> None:
            async with self._lock(job_id):
                stored = self._find_scene(job_id, scene.id)
                stored.provider_handle = handle
                self._store.save_scene(stored)

        async def on_settled(outcome: RenderOutcome) -> None:
            nonlocal settled
            async with self._lock(job_id):
                stored = self._find_scene(job_id, outcome.scene_id)
                if outcome.ok:
                    stored.complete(outcome.clip)
                else:
                    stored.fail(outcome.error or "render failed")
                self._store.save_scene(stored)
                settled += 1

                current = self._store.load_job(job_id)
                snapshot = compute_progress(self._store.load_scenes(job_id), current.progress)
                snapshot.stage = ProcessingStage.RENDERING.value
                snapshot.percentage = rendering_percentage(settled, len(to_render))
                self._store.save_progress(job_id, snapshot)

        await self._dispatcher.render_all(to_render, on_submitted=on_submitted, on_settled=on_settled)

        scenes = self._store.load_scenes(job_id)
        succeeded = [scene for scene in scenes if scene.status == SceneStatus.COMPLETED]
        skipped = len(scenes) - len(succeeded)

        if not succeeded:
            await self._fail(job_id, "All renders failed")
            return
        required = max(1, self._config.min_successful_scenes)
        if len(succeeded) < required:
            await self._fail(
                job_id, f"Only {len(succeeded)} of {len(scenes)} scenes rendered, need {required}"
            )
            return

        partial = skipped > 0
        await self._advance(
            job_id,
            ProcessingStage.STITCHING,
            milestones.STITCH_STARTED,
            partial=partial,
            skipped_scenes=skipped,
        )
        logger.info(
            f"Job {job_id}: stitching {len(succeeded)} clips"
            + (f", {skipped} scenes skipped" if partial else "")
        )

        try:
            stitched = await asyncio.to_thread(
                self._stitcher.stitch, [scene.clip for scene in succeeded], skipped
            )
        except ReelforgeError as e:
            logger.error(f"Job {job_id}: stitch failed: {e}")
            await self._fail(job_id, f"Stitch failed: {e}")
            return

        async with self._lock(job_id):
            self._store.save_result(job_id, stitched.video)
            current = self._store.load_job(job_id)
            snapshot = current.progress.model_copy(deep=True)
            snapshot.percentage = milestones.STITCH_FINISHED
            self._store.save_progress(job_id, snapshot)

        audio_settings = job.audio_settings or self._config.audio_settings()
        if audio_settings.enabled and self._audio is not None:
            await self._run_audio(job_id, scenes, stitched.video, audio_settings)

        final = JobStatus.COMPLETED_PARTIAL if partial else JobStatus.COMPLETED
        async with self._lock(job_id):
            self._store.save_status(job_id, final, None)
            current = self._store.load_job(job_id)
            snapshot = current.progress.model_copy(deep=True)
            snapshot.stage = final.value
            snapshot.percentage = milestones.DONE
            self._store.save_progress(job_id, snapshot)
        logger.info(f"Job {job_id} finished: {final.value}")

    async def _run_audio(self, job_id: str, scenes: Sequence[Scene], video: bytes, settings) -> None:
        await self._advance(job_id, ProcessingStage.AUDIO_PENDING, milestones.STITCH_FINISHED, audio_status="pending")
        await self._advance(
            job_id, ProcessingStage.AUDIO_GENERATION, milestones.AUDIO_STARTED, audio_status="generating"
        )

        specs = [scene.spec for scene in scenes]
        silent = {position for position, scene in enumerate(scenes) if scene.status != SceneStatus.COMPLETED}

        try:
            composed = await asyncio.to_thread(self._audio.compose, specs, settings, silent)
        except (ReelforgeError, ValueError) as e:
            logger.error(f"Job {job_id}: audio stage failed: {e}")
            await self._note_audio(job_id, "failed", f"Audio generation failed: {e}")
            return
        except Exception as e:
            logger.exception(f"Job {job_id}: audio stage crashed")
            await self._note_audio(job_id, "failed", f"Audio generation failed: {e}")
            return

        muxed = None
        mux_error = None
        if settings.merge_with_video:
            try:
                muxed = await asyncio.to_thread(self._audio.mux, video, composed.audio, settings.sync_mode)
            except ReelforgeError as e:
                logger.warning(f"Job {job_id}: mux failed, keeping separate track: {e}")
                mux_error = f"Audio merge failed: {e}"
            except Exception as e:
                logger.exception(f"Job {job_id}: mux crashed, keeping separate track")
                mux_error = f"Audio merge failed: {e}"

        async with self._lock(job_id):
            self._store.save_audio(job_id, composed.audio, muxed)
        await self._note_audio(job_id, "failed" if mux_error else "completed", mux_error)

    # -- Helpers ------------------------------------------------------------

    async def _advance(
        self,
        job_id: str,
        stage: ProcessingStage,
        percentage: float,
        partial: bool = False,
        skipped_scenes: Optional[int] = None,
        audio_status: Optional[str] = None,
    ) -> None:
        async with self._lock(job_id):
            self._store.save_status(job_id, JobStatus.PROCESSING, stage, partial=partial)
            current = self._store.load_job(job_id)
            snapshot = current.progress.model_copy(deep=True)
            snapshot.stage = stage.value
            snapshot.percentage = percentage
            if skipped_scenes is not None:
                snapshot.skipped_scenes = skipped_scenes
            if audio_status is not None:
                snapshot.audio_status = audio_status
            self._store.save_progress(job_id, snapshot)
        logger.info(f"Job {job_id}: {stage.value}")

    async def _note_audio(self, job_id: str, audio_status: str, error: Optional[str]) -> None:
        async with self._lock(job_id):
            current = self._store.load_job(job_id)
            snapshot = current.progress.model_copy(deep=True)
            snapshot.audio_status = audio_status
            if error:
                snapshot.error = error
            self._store.save_progress(job_id, snapshot)

    async def _fail(self, job_id: str, message: str) -> None:
        async with self._lock(job_id):
            current = self._store.load_job(job_id)
            if not current.is_processing:
                logger.warning(f"Job {job_id} is {current.status.value}, not failing it: {message}")
                return
            self._store.save_status(job_id, JobStatus.FAILED, None)
            snapshot = compute_progress(self._store.load_scenes(job_id), current.progress)
            snapshot.stage = JobStatus.FAILED.value
            snapshot.error = message
            self._store.save_progress(job_id, snapshot)
        logger.error(f"Job {job_id} failed: {message}")

    def _find_scene(self, job_id: str, scene_id: str) -> Scene:
        for scene in self._store.load_scenes(job_id):
            if scene.id == scene_id:
                return scene
        raise ValidationError(f"Job {job_id} has no scene {scene_id}")

    def _load_for_mutation(self, job_id: str, scene_id: str):
        job = self._store.load_job(job_id)
        if job.is_processing:
            raise ValidationError(
                f"Job {job_id} is {job.processing_stage.value}; scene changes are not allowed"
            )
        scenes = self._store.load_scenes(job_id)
        for scene in scenes:
            if scene.id == scene_id:
                return job, scenes, scene
        raise ValidationError(f"Job {job_id} has no scene {scene_id}")

    def _refresh_progress(self, job: Job, scenes: List[Scene], changed: Scene) -> Progress:
        scenes = [changed if s.id == changed.id else s for s in scenes]
        snapshot = self._scene_progress(job, scenes)
        self._store.save_progress(job.id, snapshot)
        return snapshot

    def _scene_progress(self, job: Job, scenes: Sequence[Scene]) -> Progress:
        snapshot = compute_progress(scenes, job.progress)
        # A finished job keeps its outcome as the stage label
        if job.is_terminal:
            snapshot.stage = job.status.value
        return snapshot
