"""Storyboard data model."""

from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import BaseModel, Field


class SceneSpec(BaseModel):
    """Specification of a single scene as produced upstream."""

    prompt: str = Field(..., description="Render prompt")
    duration: float = Field(..., description="Target duration in seconds", gt=0)
    transition: str = Field(default="cut", description="Transition into the next scene")
    first_frame_url: Optional[str] = Field(None, description="First reference frame location")
    last_frame_url: Optional[str] = Field(None, description="Last reference frame location")
    model: Optional[str] = Field(None, description="Render model override for this scene")
    aspect_ratio: Optional[str] = Field(None, description="Aspect ratio override")
    music_description: Optional[str] = Field(None, description="Free-text music direction")
    music_style: Optional[str] = Field(None, description="Music style, e.g. 'lo-fi'")
    music_energy: Optional[str] = Field(None, description="Music energy, e.g. 'high'")
    seed: Optional[int] = Field(None, description="Music seed for reproducible output")

    class Config:
        """Pydantic config."""
        frozen = False


class Storyboard(BaseModel):
    """Ordered list of scene specifications for one video."""

    name: str = Field(..., description="Storyboard name")
    aspect_ratio: str = Field(default="16:9", description="Default aspect ratio")
    render_model: Optional[str] = Field(None, description="Default render model")
    scenes: List[SceneSpec] = Field(default_factory=list, description="Ordered scenes")

    class Config:
        """Pydantic config."""
        frozen = False

    @property
    def total_duration(self) -> float:
        """Sum of all scene target durations."""
        return sum(scene.duration for scene in self.scenes)

    @classmethod
    def from_yaml(cls, path: Path) -> "Storyboard":
        """Load storyboard from YAML file."""
        with open(path, "r") as f:
            data = yaml.safe_load(f)
        return cls(**data)

    def to_yaml(self, path: Path) -> None:
        """Save storyboard to YAML file."""
        with open(path, "w") as f:
            yaml.safe_dump(self.model_dump(exclude_none=True), f, default_flow_style=False)
