"""Local media tooling: ffmpeg wrapper, stitching and audio editing."""

from .audio import (
    AudioEditor,
    build_mux_args,
    crossfade_clips,
    fade_audio,
    silent_clip,
    tempo_filter,
)
from .compositor import StitchResult, Stitcher, concat_manifest
from .ffmpeg import ensure_available, run_ffmpeg

__all__ = [
    # Audio
    "AudioEditor",
    "build_mux_args",
    "crossfade_clips",
    "fade_audio",
    "silent_clip",
    "tempo_filter",
    # Compositor
    "StitchResult",
    "Stitcher",
    "concat_manifest",
    # ffmpeg
    "ensure_available",
    "run_ffmpeg",
]
