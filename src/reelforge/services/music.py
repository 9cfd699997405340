"""Music provider clients and prompt building.

Two providers share one call shape, ``compose(prompt, length, ...)``:

- MusicGen on Replicate accepts a reference track URL plus a window into it
  and, when the window starts at zero, answers with the whole track extended
  to the requested length.
- ElevenLabs compose is prompt-only and always answers with a fresh clip of
  the requested length.
"""

import logging
import math
import time
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

import requests

from ..config import config
from ..errors import PollTimeout, ProviderJobFailed, ProviderRequestError
from ..models import SceneSpec
from .replicate import ReplicateClient, extract_output_url

logger = logging.getLogger(__name__)

_MOOD_KEYWORDS = (
    (("exciting", "dynamic", "energy", "energetic"), "upbeat and energetic"),
    (("calm", "peaceful", "serene", "quiet"), "calm and peaceful"),
    (("dramatic", "intense", "epic"), "dramatic and intense"),
    (("elegant", "luxury", "refined"), "elegant and sophisticated"),
)


@dataclass
class MusicClip:
    """Audio returned by a music provider.

    Attributes:
        audio: Encoded audio bytes.
        duration: Length in seconds when the provider reports it.
        url: Provider-hosted location of the same audio, if any.
        cumulative: True when the clip is the whole track so far rather than
            only the newly generated increment.
        prefix: Seconds at the start of the clip that replay the reference
            window before the new material begins.
    """

    audio: bytes
    duration: Optional[float] = None
    url: Optional[str] = None
    cumulative: bool = False
    prefix: float = 0.0


def infer_mood(text: str) -> str:
    """Pick a mood phrase from keywords in a scene prompt."""
    lowered = (text or "").lower()
    for keywords, mood in _MOOD_KEYWORDS:
        if any(word in lowered for word in keywords):
            return mood
    return "professional and engaging"


def build_music_prompt(spec: SceneSpec, is_last: bool = False) -> str:
    """Derive a music prompt from a scene's music descriptors.

    Args:
        spec: Scene specification.
        is_last: Whether this is the final scene; it asks for an ending
            instead of a continuation.

    Returns:
        Prompt string.
    """
    if spec.music_description and spec.music_style:
        parts = [spec.music_description.strip().rstrip(".")]
        style = spec.music_style.strip()
        if spec.music_energy:
            style = f"{style}, {spec.music_energy.strip()} energy"
        parts.append(style)
        parts.append("Instrumental, smooth and flowing")
    else:
        parts = [f"Instrumental background music, {infer_mood(spec.prompt)}"]
        if spec.music_style:
            parts.append(spec.music_style.strip())

    parts.append("Gentle fade out at the end" if is_last else "Smooth continuation")
    return ". ".join(parts)


class MusicgenClient:
    """MusicGen via Replicate, with reference-audio continuation."""

    accepts_reference_audio = True

    DEFAULT_POLL_INTERVAL = 2.0
    DEFAULT_MAX_POLL_INTERVAL = 15.0
    DEFAULT_MAX_POLL_TIME = 600.0

    def __init__(
        self,
        replicate: Optional[ReplicateClient] = None,
        model: Optional[str] = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        max_poll_interval: float = DEFAULT_MAX_POLL_INTERVAL,
        max_poll_time: float = DEFAULT_MAX_POLL_TIME,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._replicate = replicate or ReplicateClient()
        self._model = model or config.musicgen_model
        self._poll_interval = poll_interval
        self._max_poll_interval = max_poll_interval
        self._max_poll_time = max_poll_time
        self._sleep = sleep

    def compose(
        self,
        prompt: str,
        length: float,
        seed: Optional[int] = None,
        continuation_url: Optional[str] = None,
        continuation_window: Optional[Tuple[float, float]] = None,
    ) -> MusicClip:
        """Generate music, optionally continuing a reference track.

        Args:
            prompt: Music prompt.
            length: Seconds of output, counting any replayed reference window.
            seed: Optional seed.
            continuation_url: Fetchable URL of the track so far.
            continuation_window: (start, end) seconds of the reference the
                model continues from.

        Returns:
            MusicClip; cumulative when the window covers the track from 0,
            otherwise led by the replayed window (see MusicClip.prefix).

        Raises:
            ProviderRequestError: If the provider cannot be reached.
            ProviderJobFailed: If the prediction fails or is canceled.
            PollTimeout: If the prediction does not finish in time.
        """
        continuing = continuation_url is not None
        params = {
            "prompt": prompt,
            "duration": max(1, math.ceil(length)),
            "model_version": "stereo-melody-large" if continuing else "large",
            "output_format": "mp3",
            "normalization_strategy": "loudness",
            "temperature": 1.0,
            "top_k": 200,
            "top_p": 0.75,
            "classifier_free_guidance": 4 if continuing else 3,
        }
        if seed is not None:
            params["seed"] = seed

        cumulative = False
        prefix = 0.0
        if continuing:
            start, end = continuation_window or (0.0, 0.0)
            params["input_audio"] = continuation_url
            params["continuation"] = True
            params["continuation_start"] = round(start, 3)
            params["continuation_end"] = round(end, 3)
            cumulative = start == 0
            # The output opens with the reference window, then the new audio
            if not cumulative:
                prefix = max(0.0, end - start)

        prediction = self._replicate.create_prediction(self._model, params)
        prediction = self._wait(prediction)

        url = extract_output_url(prediction.get("output"), key="audio")
        if not url:
            raise ProviderJobFailed(f"MusicGen prediction {prediction.get('id')} returned no audio")

        audio = self._replicate.download(url)
        return MusicClip(audio=audio, url=url, cumulative=cumulative, prefix=prefix)

    def _wait(self, prediction: dict) -> dict:
        prediction_id = prediction["id"]
        interval = self._poll_interval
        started = time.monotonic()
        attempts = 0

        while True:
            status = prediction.get("status")
            if status == "succeeded":
                return prediction
            if status in ("failed", "canceled"):
                raise ProviderJobFailed(
                    f"MusicGen prediction {prediction_id} {status}: {prediction.get('error')}",
                    canceled=status == "canceled",
                )

            elapsed = time.monotonic() - started
            if elapsed >= self._max_poll_time:
                raise PollTimeout(
                    f"MusicGen prediction {prediction_id} timed out after {elapsed:.0f}s",
                    attempts=attempts,
                    elapsed=elapsed,
                )

            self._sleep(interval)
            interval = min(interval * 2, self._max_poll_interval)
            attempts += 1
            prediction = self._replicate.get_prediction(prediction_id)


class ElevenLabsClient:
    """ElevenLabs music compose API. Prompt-only, returns increments."""

    accepts_reference_audio = False

    API_URL = "https://api.elevenlabs.io/v1/music/compose"
    DEFAULT_TIMEOUT = 120.0

    def __init__(
        self,
        api_key: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._api_key = api_key or config.elevenlabs_api_key
        self._timeout = timeout
        self._session = session or requests.Session()

        if not self._api_key:
            raise ValueError(
                "Missing required configuration: ELEVENLABS_API_KEY. "
                "Set the corresponding environment variable."
            )

    def compose(
        self,
        prompt: str,
        length: float,
        seed: Optional[int] = None,
        continuation_url: Optional[str] = None,
        continuation_window: Optional[Tuple[float, float]] = None,
    ) -> MusicClip:
        """Generate a clip of the requested length.

        Reference audio is not supported by this provider, so
        continuation_url and continuation_window are ignored.

        Raises:
            ProviderRequestError: On transport failure or non-2xx response.
        """
        body = {
            "prompt": prompt,
            "music_length_ms": int(round(length * 1000)),
            "output_format": "mp3_44100_128",
            "force_instrumental": True,
        }
        if seed is not None:
            body["seed"] = seed

        headers = {"xi-api-key": self._api_key, "Content-Type": "application/json"}
        logger.info(f"Calling ElevenLabs compose for {length:.2f}s")

        try:
            response = self._session.post(
                self.API_URL, json=body, headers=headers, timeout=self._timeout
            )
        except requests.RequestException as e:
            raise ProviderRequestError(f"ElevenLabs request failed: {e}") from e

        if response.status_code != 200:
            raise ProviderRequestError(
                f"ElevenLabs returned HTTP {response.status_code}",
                status_code=response.status_code,
                body=response.text[:500],
            )

        return MusicClip(audio=response.content, duration=length)


def create_music_provider(name: Optional[str] = None):
    """Instantiate the configured music provider."""
    name = (name or config.music_provider).lower()
    if name == "musicgen":
        return MusicgenClient()
    if name == "elevenlabs":
        return ElevenLabsClient()
    raise ValueError(f"Unknown music provider: {name}. Must be 'musicgen' or 'elevenlabs'")
