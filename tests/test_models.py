from __future__ import annotations

from pathlib import Path

import pytest

from reelforge.errors import ValidationError
from reelforge.models import Job, JobStatus, ProcessingStage, Progress, Scene, SceneStatus, Storyboard
from reelforge.store import MemoryJobStore
from reelforge.workflow.progress import compute_progress

from conftest import make_spec, make_storyboard


def test_job_advances_forward_through_processing_stages() -> None:
    job = Job(id="j")
    job.advance(JobStatus.APPROVED)
    for stage in ProcessingStage:
        job.advance(JobStatus.PROCESSING, stage)
        assert job.processing_stage == stage
    job.advance(JobStatus.COMPLETED)
    assert job.status == JobStatus.COMPLETED
    assert job.processing_stage is None


def test_job_can_skip_audio_stages() -> None:
    job = Job(id="j", status=JobStatus.PROCESSING, processing_stage=ProcessingStage.STITCHING)
    job.advance(JobStatus.COMPLETED_PARTIAL)
    assert job.is_terminal


def test_job_never_moves_backwards() -> None:
    job = Job(id="j", status=JobStatus.PROCESSING, processing_stage=ProcessingStage.STITCHING)
    with pytest.raises(ValidationError):
        job.advance(JobStatus.PROCESSING, ProcessingStage.RENDERING)
    with pytest.raises(ValidationError):
        job.advance(JobStatus.APPROVED)

    done = Job(id="k", status=JobStatus.COMPLETED)
    with pytest.raises(ValidationError):
        done.advance(JobStatus.COMPLETED_PARTIAL)


def test_job_fails_only_from_processing() -> None:
    for stage in ProcessingStage:
        job = Job(id="j", status=JobStatus.PROCESSING, processing_stage=stage)
        job.advance(JobStatus.FAILED)
        assert job.status == JobStatus.FAILED

    for status in (JobStatus.PENDING, JobStatus.APPROVED, JobStatus.COMPLETED):
        with pytest.raises(ValidationError):
            Job(id="j", status=status).advance(JobStatus.FAILED)


def test_processing_requires_stage() -> None:
    job = Job(id="j", status=JobStatus.APPROVED)
    with pytest.raises(ValidationError):
        job.advance(JobStatus.PROCESSING)


def test_scene_transitions_and_reset() -> None:
    scene = Scene(id="s", job_id="j", index=0, spec=make_spec(1))
    with pytest.raises(ValidationError):
        scene.transition(SceneStatus.COMPLETED)

    scene.transition(SceneStatus.PROCESSING)
    scene.provider_handle = "pred-1"
    scene.complete(b"clip")
    assert scene.clip == b"clip"

    scene.reset()
    assert scene.status == SceneStatus.PENDING
    assert scene.clip is None
    assert scene.provider_handle is None
    with pytest.raises(ValidationError):
        scene.reset()


def test_storyboard_yaml(tmp_path: Path) -> None:
    path = tmp_path / "storyboard.yaml"
    path.write_text(
        "name: teaser\n"
        "aspect_ratio: '9:16'\n"
        "scenes:\n"
        "  - prompt: sunrise over dunes\n"
        "    duration: 4\n"
        "    first_frame_url: https://frames.test/a.png\n"
        "    last_frame_url: https://frames.test/b.png\n"
        "    music_style: ambient\n"
        "  - prompt: camel caravan\n"
        "    duration: 6\n"
    )
    board = Storyboard.from_yaml(path)
    assert board.total_duration == 10
    assert board.scenes[0].music_style == "ambient"

    out = tmp_path / "copy.yaml"
    board.to_yaml(out)
    assert Storyboard.from_yaml(out) == board


def test_scene_duration_must_be_positive() -> None:
    with pytest.raises(Exception):
        make_spec(1, duration=0)


def test_create_job_inherits_storyboard_defaults() -> None:
    store = MemoryJobStore()
    board = make_storyboard(2)
    board.aspect_ratio = "9:16"
    board.scenes[1].model = "hailuo"

    job = store.create_job(board)
    scenes = store.load_scenes(job.id)

    assert job.status == JobStatus.PENDING
    assert job.progress.total == 2
    assert [s.index for s in scenes] == [0, 1]
    assert [s.spec.model for s in scenes] == ["veo3", "hailuo"]
    assert all(s.spec.aspect_ratio == "9:16" for s in scenes)


def test_store_hands_out_copies() -> None:
    store = MemoryJobStore()
    job = store.create_job(make_storyboard(1))
    scene = store.load_scenes(job.id)[0]
    scene.status = SceneStatus.FAILED

    assert store.load_scenes(job.id)[0].status == SceneStatus.PENDING


def test_result_is_saved_exactly_once() -> None:
    store = MemoryJobStore()
    job = store.create_job(make_storyboard(1))
    store.save_result(job.id, b"video")
    with pytest.raises(ValidationError):
        store.save_result(job.id, b"other")
    assert store.load_job(job.id).result == b"video"


def test_unknown_job_rejected() -> None:
    with pytest.raises(ValidationError):
        MemoryJobStore().load_job("nope")


def _scenes(*statuses):
    return [
        Scene(id=f"s{i}", job_id="j", index=i, spec=make_spec(i + 1), status=status)
        for i, status in enumerate(statuses)
    ]


def test_progress_stage_inference() -> None:
    done = compute_progress(_scenes(SceneStatus.COMPLETED, SceneStatus.COMPLETED))
    assert (done.stage, done.percentage) == ("completed", 100.0)

    busy = compute_progress(_scenes(SceneStatus.COMPLETED, SceneStatus.PROCESSING, SceneStatus.FAILED))
    assert busy.stage == "processing"
    assert busy.percentage == 33.33

    errors = compute_progress(_scenes(SceneStatus.COMPLETED, SceneStatus.FAILED))
    assert errors.stage == "processing_with_errors"

    assert compute_progress(_scenes(SceneStatus.PENDING)).stage == "pending"
    assert compute_progress([]).percentage == 0.0


def test_progress_keeps_error_and_audio_status() -> None:
    previous = Progress(error="Audio generation failed", audio_status="failed", skipped_scenes=1)
    progress = compute_progress(_scenes(SceneStatus.COMPLETED), previous)
    assert progress.error == "Audio generation failed"
    assert progress.audio_status == "failed"
    assert progress.skipped_scenes == 1
