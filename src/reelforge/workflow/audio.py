"""Sequential audio continuation.

Scenes are scored one after another. Every step after the first hands the
provider the running track (by URL) and a trailing window into it, so the
new segment continues what came before. A running track that only exists
locally is published through the artifact cache to get a fetchable URL.
"""

import logging
from dataclasses import dataclass, field
from typing import Collection, List, Optional, Sequence, Tuple

from ..cache import ArtifactCache, data_url, segment_url
from ..config import AudioSettings, ErrorStrategy, SyncMode
from ..errors import AudioGenerationFailed, ReelforgeError
from ..models import SceneSpec
from ..services.music import MusicClip, build_music_prompt

logger = logging.getLogger(__name__)


@dataclass
class AudioSegment:
    """Running soundtrack after a step of the chain.

    Attributes:
        audio: Encoded track so far.
        duration: Cumulative length in seconds.
        url: Provider-hosted copy of exactly this track, if one exists.
    """

    audio: bytes
    duration: float
    url: Optional[str] = None


@dataclass
class ComposeResult:
    """Finished soundtrack and how each scene was scored."""

    audio: bytes
    duration: float
    silent_scenes: List[int] = field(default_factory=list)
    failed_scenes: List[int] = field(default_factory=list)


class AudioPipeline:
    """Builds one continuous soundtrack for an ordered list of scenes."""

    def __init__(
        self,
        provider,
        editor,
        cache: Optional[ArtifactCache] = None,
        public_base_url: Optional[str] = None,
        segment_ttl: Optional[float] = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            provider: Music provider exposing compose() and
                accepts_reference_audio.
            editor: Audio editor (see AudioEditor).
            cache: Cache used to publish locally held tracks.
            public_base_url: Base URL of the segment endpoint. Without it,
                local tracks are passed inline as data URLs.
            segment_ttl: Lifetime of published tracks; cache default if None.
        """
        self._provider = provider
        self._editor = editor
        self._cache = cache
        self._public_base_url = public_base_url or None
        self._segment_ttl = segment_ttl

    def compose(
        self,
        scenes: Sequence[SceneSpec],
        settings: AudioSettings,
        silent_indices: Collection[int] = (),
    ) -> ComposeResult:
        """Score scenes in order, strictly one at a time.

        Args:
            scenes: Scene specs in storyboard order.
            settings: Continuation window, crossfade and error strategy.
            silent_indices: Positions scored with silence outright, e.g.
                scenes whose render failed.

        Returns:
            ComposeResult whose track lasts the sum of scene durations.

        Raises:
            ValueError: If scenes is empty.
            AudioGenerationFailed: If a scene cannot be scored under the halt
                strategy.
            ToolExecutionError: If silence or the final conform cannot be
                encoded.
        """
        if not scenes:
            raise ValueError("No scenes to score")

        target = sum(spec.duration for spec in scenes)
        track: Optional[AudioSegment] = None
        continuous = False
        silent: List[int] = []
        failed: List[int] = []

        for index, spec in enumerate(scenes):
            if index in silent_indices:
                logger.info(f"Scene {index}: scoring with {spec.duration:.2f}s of silence")
                track = self._extend_with_silence(track, spec.duration)
                silent.append(index)
                continuous = False
                continue

            try:
                clip = self._generate(index, spec, track, continuous, settings, index == len(scenes) - 1)
                # Undecodable provider audio fails the scene like a provider error
                track = self._adopt(track, clip, settings.crossfade)
            except ReelforgeError as e:
                if ErrorStrategy(settings.error_strategy) == ErrorStrategy.HALT:
                    logger.error(f"Scene {index}: music generation failed, halting: {e}")
                    raise AudioGenerationFailed(
                        f"Music generation failed at scene {index + 1}: {e}", scene_index=index
                    ) from e
                logger.warning(f"Scene {index}: music generation failed, using silence: {e}")
                track = self._extend_with_silence(track, spec.duration)
                silent.append(index)
                failed.append(index)
                continuous = False
                continue

            continuous = True
            logger.info(f"Scene {index}: track now {track.duration:.2f}s")

        audio = self._editor.conform(track.audio, target)
        return ComposeResult(audio=audio, duration=target, silent_scenes=silent, failed_scenes=failed)

    def mux(self, video: bytes, audio: bytes, sync_mode: SyncMode = SyncMode.TRIM) -> bytes:
        """Put the soundtrack under the stitched video."""
        return self._editor.mux(video, audio, sync_mode)

    def continuation_window(self, cumulative: float, window: float) -> Tuple[float, float]:
        """Trailing window of at most window seconds, never before 0."""
        return (max(0.0, cumulative - window), cumulative)

    def _generate(
        self,
        index: int,
        spec: SceneSpec,
        track: Optional[AudioSegment],
        continuous: bool,
        settings: AudioSettings,
        is_last: bool,
    ) -> MusicClip:
        prompt = build_music_prompt(spec, is_last=is_last)

        if track is None:
            logger.info(f"Scene {index}: generating {spec.duration:.2f}s, no reference")
            return self._provider.compose(prompt, spec.duration, seed=spec.seed)

        use_reference = (
            continuous
            and getattr(self._provider, "accepts_reference_audio", False)
            and settings.continuation_window > 0
        )
        if not use_reference:
            return self._provider.compose(prompt, spec.duration + settings.crossfade, seed=spec.seed)

        url = track.url or self._publish(track.audio)
        window = self.continuation_window(track.duration, settings.continuation_window)
        # Output replays the window first; a window from 0 returns the whole extended track
        if window[0] == 0:
            length = track.duration + spec.duration
        else:
            length = (window[1] - window[0]) + spec.duration + settings.crossfade
        logger.info(
            f"Scene {index}: continuing from {window[0]:.2f}-{window[1]:.2f}s, requesting {length:.2f}s"
        )
        return self._provider.compose(
            prompt,
            length,
            seed=spec.seed,
            continuation_url=url,
            continuation_window=window,
        )

    def _adopt(self, track: Optional[AudioSegment], clip: MusicClip, crossfade: float) -> AudioSegment:
        if track is None or clip.cumulative:
            duration = self._editor.probe_duration(clip.audio)
            return AudioSegment(audio=clip.audio, duration=duration, url=clip.url)

        audio = clip.audio
        if clip.prefix > 0:
            audio = self._editor.trim_start(audio, clip.prefix)
        joined = self._editor.append(track.audio, audio, crossfade)
        return AudioSegment(audio=joined, duration=self._editor.probe_duration(joined))

    def _extend_with_silence(self, track: Optional[AudioSegment], duration: float) -> AudioSegment:
        silence = self._editor.silence(duration)
        if track is None:
            return AudioSegment(audio=silence, duration=duration)
        joined = self._editor.append(track.audio, silence, 0.0)
        return AudioSegment(audio=joined, duration=track.duration + duration)

    def _publish(self, blob: bytes) -> str:
        if self._public_base_url and self._cache is not None:
            token = self._cache.store(blob, ttl=self._segment_ttl)
            return segment_url(token, self._public_base_url)
        logger.debug("No public base URL configured, passing reference inline")
        return data_url(blob)
