"""Configuration management."""

import os
from enum import Enum
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

# Load environment variables
load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value else default


def _env_int(name: str, default: Optional[int]) -> Optional[int]:
    value = os.getenv(name)
    return int(value) if value else default


class SyncMode(str, Enum):
    """How the soundtrack is reconciled with the video length when muxing."""

    TRIM = "trim"
    STRETCH = "stretch"
    TEMPO = "tempo"


class ErrorStrategy(str, Enum):
    """What the audio stage does when one scene's music call fails."""

    CONTINUE_WITH_SILENCE = "continue_with_silence"
    HALT = "halt"


class AudioSettings(BaseModel):
    """Audio stage settings for a single job."""

    enabled: bool = True
    merge_with_video: bool = True
    sync_mode: SyncMode = SyncMode.TRIM
    error_strategy: ErrorStrategy = ErrorStrategy.CONTINUE_WITH_SILENCE
    continuation_window: float = Field(default=1.0, ge=0)
    crossfade: float = Field(default=0.5, ge=0)

    class Config:
        """Pydantic config."""
        frozen = False


class Config(BaseModel):
    """Application configuration."""

    # Render provider
    replicate_api_key: str = Field(
        default_factory=lambda: os.getenv("REPLICATE_API_KEY", ""),
        description="Replicate API token"
    )
    replicate_base_url: str = Field(
        default_factory=lambda: os.getenv("REPLICATE_BASE_URL", "https://api.replicate.com/v1"),
        description="Replicate API base URL"
    )
    replicate_webhook_url: str = Field(
        default_factory=lambda: os.getenv("REPLICATE_WEBHOOK_URL", ""),
        description="Optional webhook attached to every prediction"
    )
    veo3_model: str = Field(
        default_factory=lambda: os.getenv("REPLICATE_VEO3_MODEL", "google/veo-3.1"),
        description="Replicate slug (optionally :version) for the veo3 render model"
    )
    hailuo_model: str = Field(
        default_factory=lambda: os.getenv("REPLICATE_HAILUO_MODEL", "minimax/hailuo-02"),
        description="Replicate slug (optionally :version) for the hailuo render model"
    )
    musicgen_model: str = Field(
        default_factory=lambda: os.getenv("REPLICATE_MUSICGEN_MODEL", "meta/musicgen"),
        description="Replicate slug (optionally :version) for MusicGen"
    )
    default_render_model: str = Field(
        default_factory=lambda: os.getenv("REELFORGE_RENDER_MODEL", "veo3"),
        description="Render model used when a scene does not name one"
    )

    # Music provider
    elevenlabs_api_key: str = Field(
        default_factory=lambda: os.getenv("ELEVENLABS_API_KEY", ""),
        description="ElevenLabs API key"
    )
    music_provider: str = Field(
        default_factory=lambda: os.getenv("REELFORGE_MUSIC_PROVIDER", "musicgen"),
        description="Music provider: 'musicgen' or 'elevenlabs'"
    )

    # Audio stage
    audio_enabled: bool = Field(
        default_factory=lambda: _env_bool("REELFORGE_AUDIO_ENABLED", True),
        description="Run the audio stage after stitching"
    )
    audio_merge_with_video: bool = Field(
        default_factory=lambda: _env_bool("REELFORGE_AUDIO_MERGE", True),
        description="Mux the finished soundtrack into the stitched video"
    )
    audio_sync_mode: SyncMode = Field(
        default_factory=lambda: SyncMode(os.getenv("REELFORGE_AUDIO_SYNC_MODE", "trim")),
        description="Duration reconciliation when muxing"
    )
    audio_error_strategy: ErrorStrategy = Field(
        default_factory=lambda: ErrorStrategy(
            os.getenv("REELFORGE_AUDIO_ERROR_STRATEGY", "continue_with_silence")
        ),
        description="Default per-scene music failure strategy"
    )
    continuation_window: float = Field(
        default_factory=lambda: _env_float("REELFORGE_CONTINUATION_WINDOW", 1.0),
        description="Seconds of trailing audio offered as continuation context"
    )
    crossfade: float = Field(
        default_factory=lambda: _env_float("REELFORGE_CROSSFADE", 0.5),
        description="Crossfade length when appending an audio increment"
    )

    # Artifact cache
    segment_ttl: float = Field(
        default_factory=lambda: _env_float("REELFORGE_SEGMENT_TTL", 1800.0),
        description="Default lifetime of cached audio segments in seconds"
    )
    segment_sweep_interval: float = Field(
        default_factory=lambda: _env_float("REELFORGE_SEGMENT_SWEEP_INTERVAL", 300.0),
        description="Seconds between background sweeps of expired segments"
    )
    public_base_url: str = Field(
        default_factory=lambda: os.getenv("REELFORGE_PUBLIC_BASE_URL", ""),
        description="Base URL under which the segment endpoint is reachable"
    )

    # Poll policy
    poll_initial_backoff: float = Field(
        default_factory=lambda: _env_float("REELFORGE_POLL_INITIAL_BACKOFF", 1.0)
    )
    poll_max_backoff: float = Field(
        default_factory=lambda: _env_float("REELFORGE_POLL_MAX_BACKOFF", 60.0)
    )
    poll_max_attempts: int = Field(
        default_factory=lambda: _env_int("REELFORGE_POLL_MAX_ATTEMPTS", 30)
    )
    poll_timeout: float = Field(
        default_factory=lambda: _env_float("REELFORGE_POLL_TIMEOUT", 1800.0),
        description="Wall-clock ceiling for a single render's poll loop"
    )
    render_concurrency: Optional[int] = Field(
        default_factory=lambda: _env_int("REELFORGE_RENDER_CONCURRENCY", None),
        description="Bound on in-flight renders per job; unset starts all at once"
    )
    min_successful_scenes: int = Field(
        default=1,
        description="Fewest rendered scenes needed to proceed to stitching"
    )

    # Paths
    scratch_dir: Optional[Path] = Field(
        default_factory=lambda: Path(os.environ["REELFORGE_SCRATCH_DIR"])
        if os.getenv("REELFORGE_SCRATCH_DIR") else None,
        description="Scratch root for stitching; system temp when unset"
    )

    class Config:
        """Pydantic config."""
        frozen = False

    def audio_settings(self, **overrides) -> AudioSettings:
        """Build per-job audio settings from the deployment defaults.

        Args:
            **overrides: Fields of AudioSettings to replace for this job.

        Returns:
            AudioSettings instance.
        """
        values = {
            "enabled": self.audio_enabled,
            "merge_with_video": self.audio_merge_with_video,
            "sync_mode": self.audio_sync_mode,
            "error_strategy": self.audio_error_strategy,
            "continuation_window": self.continuation_window,
            "crossfade": self.crossfade,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return AudioSettings(**values)

    def validate_render_required(self) -> None:
        """Validate that render provider credentials are set.

        Raises:
            ValueError: If the Replicate token is missing.
        """
        if not self.replicate_api_key:
            raise ValueError(
                "Missing required render configuration: REPLICATE_API_KEY. "
                "Set the corresponding environment variable."
            )

    def validate_music_required(self) -> None:
        """Validate that the selected music provider is configured.

        Raises:
            ValueError: If the provider is unknown or its key is missing.
        """
        missing: list[str] = []

        if self.music_provider == "musicgen":
            if not self.replicate_api_key:
                missing.append("REPLICATE_API_KEY")
        elif self.music_provider == "elevenlabs":
            if not self.elevenlabs_api_key:
                missing.append("ELEVENLABS_API_KEY")
        else:
            raise ValueError(
                f"Unknown music provider: {self.music_provider}. "
                "Must be 'musicgen' or 'elevenlabs'"
            )

        if missing:
            raise ValueError(
                f"Missing required music configuration: {', '.join(missing)}. "
                "Set the corresponding environment variables."
            )


# Global config instance
config = Config()
