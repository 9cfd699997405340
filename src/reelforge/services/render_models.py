"""Render model lookup table and request building."""

import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

from ..config import config
from ..errors import ValidationError
from ..models import Scene

ALLOWED_ASPECT_RATIOS = ("16:9", "9:16", "1:1")
DEFAULT_ASPECT_RATIO = "16:9"


@dataclass
class RenderRequest:
    """Provider-ready render request built for one scene at dispatch time."""

    model_key: str
    model: str
    prompt: str
    first_frame_url: str
    last_frame_url: str
    duration: int
    aspect_ratio: str

    def to_input(self) -> Dict[str, Any]:
        return RENDER_MODELS[self.model_key].build_input(self)


@dataclass(frozen=True)
class RenderModel:
    """One entry of the render model table."""

    key: str
    slug: Callable[[], str]
    durations: Tuple[int, ...]
    build_input: Callable[[RenderRequest], Dict[str, Any]]

    def normalize_duration(self, duration: float) -> int:
        """Round up to the nearest supported duration, clamped to the longest."""
        for bucket in self.durations:
            if math.ceil(duration - 1e-9) <= bucket:
                return bucket
        return self.durations[-1]


def _veo_input(request: RenderRequest) -> Dict[str, Any]:
    return {
        "prompt": request.prompt,
        "image": request.first_frame_url,
        "last_frame": request.last_frame_url,
        "duration": request.duration,
        "aspect_ratio": request.aspect_ratio,
        "resolution": "1080p",
        "generate_audio": False,
    }


def _hailuo_input(request: RenderRequest) -> Dict[str, Any]:
    return {
        "prompt": request.prompt,
        "first_frame_image": request.first_frame_url,
        "last_frame_image": request.last_frame_url,
        "duration": request.duration,
        "resolution": "1080p",
        "prompt_optimizer": True,
    }


RENDER_MODELS: Dict[str, RenderModel] = {
    "veo3": RenderModel(
        key="veo3",
        slug=lambda: config.veo3_model,
        durations=(4, 6, 8),
        build_input=_veo_input,
    ),
    "hailuo-2.5": RenderModel(
        key="hailuo-2.5",
        slug=lambda: config.hailuo_model,
        durations=(6, 10),
        build_input=_hailuo_input,
    ),
}

MODEL_ALIASES = {
    "veo3": "veo3",
    "veo-3": "veo3",
    "veo-3.1": "veo3",
    "veo3.1": "veo3",
    "google/veo-3.1": "veo3",
    "hailuo-2.5": "hailuo-2.5",
    "hailuo": "hailuo-2.5",
    "hailuo-02": "hailuo-2.5",
    "hailuo2": "hailuo-2.5",
    "hailuo-2.0": "hailuo-2.5",
    "hilua": "hailuo-2.5",
    "hilua-2.5": "hailuo-2.5",
    "minimax/hailuo-02": "hailuo-2.5",
}


def normalize_model_key(model: Optional[str]) -> str:
    """Map a model name or alias to its table key.

    Raises:
        ValidationError: If the model is not in the table.
    """
    name = (model or config.default_render_model).strip().lower()
    key = MODEL_ALIASES.get(name)
    if key is None:
        raise ValidationError(
            f"Unknown render model: {model}. Supported: {', '.join(sorted(RENDER_MODELS))}"
        )
    return key


def normalize_aspect_ratio(value: Optional[str]) -> str:
    """Collapse an aspect ratio onto the allowed set, defaulting to 16:9."""
    if not value:
        return DEFAULT_ASPECT_RATIO
    compact = "".join(value.split())
    return compact if compact in ALLOWED_ASPECT_RATIOS else DEFAULT_ASPECT_RATIO


def build_render_request(scene: Scene) -> RenderRequest:
    """Build the provider request for a scene.

    Args:
        scene: Scene to render.

    Returns:
        RenderRequest with model, duration and aspect ratio normalized.

    Raises:
        ValidationError: If the model is unknown, the prompt is empty, or
            either reference frame is missing.
    """
    spec = scene.spec
    key = normalize_model_key(spec.model)
    render_model = RENDER_MODELS[key]

    if not spec.prompt or not spec.prompt.strip():
        raise ValidationError(f"Scene {scene.id}: prompt cannot be empty")

    missing = [
        name
        for name, value in (("first_frame_url", spec.first_frame_url), ("last_frame_url", spec.last_frame_url))
        if not value
    ]
    if missing:
        raise ValidationError(f"Scene {scene.id}: missing reference frames: {', '.join(missing)}")

    return RenderRequest(
        model_key=key,
        model=render_model.slug(),
        prompt=spec.prompt.strip(),
        first_frame_url=spec.first_frame_url,
        last_frame_url=spec.last_frame_url,
        duration=render_model.normalize_duration(spec.duration),
        aspect_ratio=normalize_aspect_ratio(spec.aspect_ratio),
    )
