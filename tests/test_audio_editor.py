from __future__ import annotations

import shutil
from pathlib import Path

import pytest

from reelforge.config import SyncMode
from reelforge.errors import ToolExecutionError
from reelforge.editor import audio as audio_module
from reelforge.editor.audio import AudioEditor, build_mux_args, tempo_filter

requires_ffmpeg = pytest.mark.skipif(shutil.which("ffmpeg") is None, reason="ffmpeg not installed")


def test_tempo_filter_splits_large_factors() -> None:
    assert tempo_filter(1.25) == "atempo=1.25"
    assert tempo_filter(3.0) == "atempo=2,atempo=1.5"
    assert tempo_filter(0.3) == "atempo=0.5,atempo=0.6"


def _args(sync_mode: SyncMode, audio_duration: float) -> list[str]:
    return build_mux_args(
        Path("/s/video.mp4"), Path("/s/audio.mp3"), Path("/s/out.mp4"), 12.0, audio_duration, sync_mode
    )


def _filter(args: list[str]) -> str:
    return args[args.index("-af") + 1]


def test_mux_always_copies_video_and_cuts_at_video_length() -> None:
    for mode in SyncMode:
        args = _args(mode, 15.0)
        assert args[args.index("-c:v") + 1] == "copy"
        assert args[args.index("-t") + 1] == "12.000"


def test_trim_mode_only_pads() -> None:
    assert _filter(_args(SyncMode.TRIM, 15.0)) == "apad"


def test_stretch_mode_scales_uniformly() -> None:
    assert _filter(_args(SyncMode.STRETCH, 15.0)) == "atempo=1.25,apad"
    assert _filter(_args(SyncMode.STRETCH, 36.0)) == "atempo=2,atempo=1.5,apad"


def test_tempo_mode_is_clamped() -> None:
    assert _filter(_args(SyncMode.TEMPO, 15.0)) == "atempo=1.25,apad"
    assert _filter(_args(SyncMode.TEMPO, 36.0)) == "atempo=2,apad"
    assert _filter(_args(SyncMode.TEMPO, 3.0)) == "atempo=0.5,apad"


def test_matching_lengths_need_no_tempo_change() -> None:
    assert _filter(_args(SyncMode.STRETCH, 12.0)) == "apad"


@requires_ffmpeg
def test_silence_and_crossfade_lengths(tmp_path: Path) -> None:
    editor = AudioEditor(tmp_path)
    two = editor.silence(2.0)
    assert editor.probe_duration(two) == pytest.approx(2.0, abs=0.15)

    joined = editor.append(two, editor.silence(2.0), crossfade=0.5)
    assert editor.probe_duration(joined) == pytest.approx(3.5, abs=0.15)

    padded = editor.conform(joined, 5.0)
    assert editor.probe_duration(padded) == pytest.approx(5.0, abs=0.15)
    assert list(tmp_path.iterdir()) == []


def test_decode_failures_become_tool_errors(tmp_path: Path, monkeypatch) -> None:
    def unreadable(path):
        raise OSError(f"MoviePy error: failed to read the duration of file {path}")

    monkeypatch.setattr(audio_module, "AudioFileClip", unreadable)
    editor = AudioEditor(tmp_path)

    with pytest.raises(ToolExecutionError) as excinfo:
        editor.append(b"track", b"not audio", crossfade=0.5)
    assert "failed to read the duration" in str(excinfo.value)

    with pytest.raises(ToolExecutionError):
        editor.probe_duration(b"not audio")
    with pytest.raises(ToolExecutionError):
        editor.trim_start(b"not audio", 1.0)
    with pytest.raises(ToolExecutionError):
        editor.conform(b"not audio", 4.0)
    assert list(tmp_path.iterdir()) == []


def test_trim_start_without_offset_returns_clip_untouched(tmp_path: Path) -> None:
    assert AudioEditor(tmp_path).trim_start(b"anything", 0.0) == b"anything"


@requires_ffmpeg
def test_trim_start_drops_leading_audio(tmp_path: Path) -> None:
    editor = AudioEditor(tmp_path)
    trimmed = editor.trim_start(editor.silence(3.0), 1.0)
    assert editor.probe_duration(trimmed) == pytest.approx(2.0, abs=0.15)

    with pytest.raises(ToolExecutionError):
        editor.trim_start(editor.silence(1.0), 2.0)
