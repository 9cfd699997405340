"""Audio editing for the soundtrack: probing, silence, joins, conform and mux."""

import logging
import shutil
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional

import numpy as np
from moviepy import AudioClip, AudioFileClip, CompositeAudioClip, VideoFileClip, concatenate_audioclips
from moviepy.audio.fx import AudioFadeIn, AudioFadeOut

from ..config import SyncMode
from ..errors import ToolExecutionError
from .ffmpeg import FFMPEG, run_ffmpeg

logger = logging.getLogger(__name__)

SAMPLE_RATE = 44100
MP3_BITRATE = "192k"
MIN_TEMPO = 0.5
MAX_TEMPO = 2.0


def silent_clip(duration: float, fps: int = SAMPLE_RATE) -> AudioClip:
    """Stereo silence of the given duration."""

    def frame(t):
        if isinstance(t, np.ndarray):
            return np.zeros((len(t), 2))
        return np.zeros(2)

    return AudioClip(frame, duration=duration, fps=fps)


def fade_audio(
    audio: AudioClip,
    fade_in: float = 0.0,
    fade_out: float = 0.0
) -> AudioClip:
    """Apply fade in/out effects to audio.

    Args:
        audio: Audio clip to process.
        fade_in: Duration of fade in effect (seconds).
        fade_out: Duration of fade out effect (seconds).

    Returns:
        Audio clip with fade effects applied.
    """
    effects = []

    if fade_in > 0:
        effects.append(AudioFadeIn(fade_in))

    if fade_out > 0:
        effects.append(AudioFadeOut(fade_out))

    if effects:
        return audio.with_effects(effects)

    return audio


def crossfade_clips(first: AudioClip, second: AudioClip, duration: float) -> AudioClip:
    """Overlap the tail of first with the head of second.

    The result is ``first.duration + second.duration - duration`` long. The
    overlap is clamped to the shorter clip.
    """
    duration = max(0.0, min(duration, first.duration, second.duration))
    if duration == 0:
        return concatenate_audioclips([first, second])

    head = fade_audio(first, fade_out=duration)
    tail = fade_audio(second, fade_in=duration).with_start(first.duration - duration)
    return CompositeAudioClip([head, tail]).with_duration(
        first.duration + second.duration - duration
    )


def tempo_filter(factor: float) -> str:
    """Express a tempo factor as a chain of atempo filters.

    Each atempo stage accepts 0.5 to 2.0, so larger changes are split.
    """
    if factor <= 0:
        raise ValueError("Tempo factor must be positive")

    stages: List[float] = []
    while factor > MAX_TEMPO:
        stages.append(MAX_TEMPO)
        factor /= MAX_TEMPO
    while factor < MIN_TEMPO:
        stages.append(MIN_TEMPO)
        factor /= MIN_TEMPO
    stages.append(factor)
    return ",".join(f"atempo={stage:.6f}".rstrip("0").rstrip(".") for stage in stages)


def build_mux_args(
    video_path: Path,
    audio_path: Path,
    output_path: Path,
    video_duration: float,
    audio_duration: float,
    sync_mode: SyncMode = SyncMode.TRIM,
) -> List[str]:
    """Build ffmpeg arguments that put audio under video.

    The video stream is always copied and the output is cut at the video's
    length, so the video is never altered. Audio is reconciled by mode:

    - trim: cut (or pad with silence) to the video length.
    - stretch: time-stretch uniformly by audio/video.
    - tempo: like stretch, but the factor is clamped to 0.5x-2.0x and any
      remainder is trimmed or padded.

    Returns:
        Argument list for run_ffmpeg.
    """
    sync_mode = SyncMode(sync_mode)
    filters: List[str] = []

    if sync_mode != SyncMode.TRIM and video_duration > 0 and audio_duration > 0:
        factor = audio_duration / video_duration
        if sync_mode == SyncMode.TEMPO:
            factor = min(MAX_TEMPO, max(MIN_TEMPO, factor))
        if abs(factor - 1.0) > 1e-3:
            filters.append(tempo_filter(factor))

    filters.append("apad")

    return [
        "-i", str(video_path),
        "-i", str(audio_path),
        "-map", "0:v:0",
        "-map", "1:a:0",
        "-c:v", "copy",
        "-af", ",".join(filters),
        "-c:a", "aac",
        "-b:a", MP3_BITRATE,
        "-t", f"{video_duration:.3f}",
        str(output_path),
    ]


class AudioEditor:
    """Byte-in, byte-out audio operations backed by moviepy and ffmpeg.

    Each call works in a private scratch directory that is removed afterwards.
    Audio that moviepy cannot decode or encode surfaces as ToolExecutionError.
    """

    def __init__(
        self,
        scratch_root: Optional[Path] = None,
        binary: str = FFMPEG,
    ) -> None:
        self._scratch_root = Path(scratch_root) if scratch_root else None
        self._binary = binary

    @contextmanager
    def _workdir(self) -> Iterator[Path]:
        if self._scratch_root is not None:
            self._scratch_root.mkdir(parents=True, exist_ok=True)
        path = Path(tempfile.mkdtemp(prefix="audio-", dir=self._scratch_root))
        try:
            yield path
        finally:
            shutil.rmtree(path, ignore_errors=True)

    @staticmethod
    @contextmanager
    def _decoding(action: str) -> Iterator[None]:
        try:
            yield
        except (OSError, RuntimeError, ValueError, KeyError, IndexError) as e:
            logger.error(f"Audio {action} failed: {e}")
            raise ToolExecutionError(f"Audio {action} failed", -1, str(e)) from e

    @staticmethod
    def _write(clip: AudioClip, path: Path) -> bytes:
        clip.write_audiofile(
            str(path),
            fps=SAMPLE_RATE,
            codec="libmp3lame",
            bitrate=MP3_BITRATE,
            logger=None,
        )
        return path.read_bytes()

    def probe_duration(self, blob: bytes, video: bool = False) -> float:
        """Duration in seconds of an encoded audio or video blob."""
        with self._workdir() as workdir, self._decoding("probe"):
            path = workdir / ("probe.mp4" if video else "probe.mp3")
            path.write_bytes(blob)
            clip = VideoFileClip(str(path), audio=False) if video else AudioFileClip(str(path))
            try:
                return float(clip.duration)
            finally:
                clip.close()

    def silence(self, duration: float) -> bytes:
        """Encoded stereo silence of the given duration."""
        with self._workdir() as workdir, self._decoding("encode"):
            return self._write(silent_clip(duration), workdir / "silence.mp3")

    def append(self, track: bytes, clip: bytes, crossfade: float = 0.0) -> bytes:
        """Append clip to track, overlapping them by crossfade seconds."""
        with self._workdir() as workdir, self._decoding("append"):
            first_path = workdir / "track.mp3"
            second_path = workdir / "clip.mp3"
            first_path.write_bytes(track)
            second_path.write_bytes(clip)

            first = AudioFileClip(str(first_path))
            try:
                second = AudioFileClip(str(second_path))
            except Exception:
                first.close()
                raise
            try:
                joined = crossfade_clips(first, second, crossfade)
                return self._write(joined, workdir / "joined.mp3")
            finally:
                first.close()
                second.close()

    def trim_start(self, clip: bytes, seconds: float) -> bytes:
        """Drop the first seconds of clip."""
        if seconds <= 0:
            return clip
        with self._workdir() as workdir, self._decoding("trim"):
            path = workdir / "clip.mp3"
            path.write_bytes(clip)
            audio = AudioFileClip(str(path))
            try:
                if seconds >= audio.duration:
                    raise ValueError(
                        f"Cannot drop {seconds:.3f}s from a {audio.duration:.3f}s clip"
                    )
                return self._write(audio.subclipped(seconds), workdir / "trimmed.mp3")
            finally:
                audio.close()

    def conform(self, track: bytes, target: float, tolerance: float = 0.05) -> bytes:
        """Trim or pad track with silence so it lasts target seconds."""
        with self._workdir() as workdir, self._decoding("conform"):
            path = workdir / "track.mp3"
            path.write_bytes(track)
            audio = AudioFileClip(str(path))
            try:
                if abs(audio.duration - target) <= tolerance:
                    return track
                if audio.duration > target:
                    conformed = fade_audio(audio.subclipped(0, target), fade_out=min(0.05, target))
                else:
                    conformed = concatenate_audioclips(
                        [audio, silent_clip(target - audio.duration)]
                    )
                logger.debug(f"Conformed track from {audio.duration:.3f}s to {target:.3f}s")
                return self._write(conformed, workdir / "conformed.mp3")
            finally:
                audio.close()

    def mux(self, video: bytes, audio: bytes, sync_mode: SyncMode = SyncMode.TRIM) -> bytes:
        """Combine a stitched video with the soundtrack.

        Raises:
            ToolUnavailable: If ffmpeg is not on PATH.
            ToolExecutionError: If ffmpeg fails.
        """
        video_duration = self.probe_duration(video, video=True)
        audio_duration = self.probe_duration(audio)

        with self._workdir() as workdir:
            video_path = workdir / "video.mp4"
            audio_path = workdir / "audio.mp3"
            output_path = workdir / "muxed.mp4"
            video_path.write_bytes(video)
            audio_path.write_bytes(audio)

            args = build_mux_args(
                video_path, audio_path, output_path, video_duration, audio_duration, sync_mode
            )
            run_ffmpeg(args, binary=self._binary)
            logger.info(
                f"Muxed {audio_duration:.2f}s audio under {video_duration:.2f}s video ({SyncMode(sync_mode).value})"
            )
            return output_path.read_bytes()
