"""External service integrations."""

from .music import (
    ElevenLabsClient,
    MusicClip,
    MusicgenClient,
    build_music_prompt,
    create_music_provider,
)
from .render_models import (
    RENDER_MODELS,
    RenderRequest,
    build_render_request,
    normalize_aspect_ratio,
    normalize_model_key,
)
from .replicate import ReplicateClient, extract_output_url

__all__ = [
    "ElevenLabsClient",
    "MusicClip",
    "MusicgenClient",
    "build_music_prompt",
    "create_music_provider",
    "RENDER_MODELS",
    "RenderRequest",
    "build_render_request",
    "normalize_aspect_ratio",
    "normalize_model_key",
    "ReplicateClient",
    "extract_output_url",
]
