from __future__ import annotations

import threading
from collections import Counter
from typing import Dict, List, Optional, Tuple

import pytest

from reelforge.editor.compositor import StitchResult
from reelforge.errors import ProviderJobFailed, ToolExecutionError
from reelforge.models import SceneSpec, Storyboard
from reelforge.services.music import MusicClip


def encode_media(kind: str, duration: float, label: str) -> bytes:
    return f"{kind}:{duration:.3f}:{label}".encode()


def decode_media(blob: bytes) -> Tuple[str, float, str]:
    kind, duration, label = blob.decode().split(":", 2)
    return kind, float(duration), label


def media_duration(blob: bytes) -> float:
    return decode_media(blob)[1]


class FakeClock:
    def __init__(self, start: float = 0.0) -> None:
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeRenderClient:
    """Render provider double scripted by prompt.

    ``script`` maps a prompt to the statuses returned by successive polls;
    the last entry repeats. Exceptions in the list are raised instead.
    """

    def __init__(self, script: Optional[Dict[str, list]] = None, clips: Optional[Dict[str, bytes]] = None):
        self.script = script or {}
        self.clips = clips or {}
        self.submitted: List[Tuple[str, dict]] = []
        self.polls: Counter = Counter()
        self._prompts: Dict[str, str] = {}
        self._lock = threading.Lock()

    def create_prediction(self, model: str, input: dict) -> dict:
        with self._lock:
            prediction_id = f"pred-{len(self.submitted) + 1}"
            self.submitted.append((model, input))
            self._prompts[prediction_id] = input["prompt"]
        return {"id": prediction_id, "status": "starting"}

    def get_prediction(self, prediction_id: str) -> dict:
        with self._lock:
            prompt = self._prompts[prediction_id]
            statuses = self.script.get(prompt, ["succeeded"])
            attempt = self.polls[prediction_id]
            self.polls[prediction_id] += 1
        status = statuses[min(attempt, len(statuses) - 1)]
        if isinstance(status, Exception):
            raise status

        record = {"id": prediction_id, "status": status}
        if status == "succeeded":
            record["output"] = f"https://render.test/{prediction_id}.mp4"
        elif status == "failed":
            record["error"] = "content policy violation"
        return record

    def download(self, url: str) -> bytes:
        prediction_id = url.rsplit("/", 1)[-1].split(".")[0]
        return self.clips.get(self._prompts[prediction_id], b"clip")


class FakeMusicProvider:
    """Music provider double producing encoded clips of the requested length."""

    def __init__(
        self,
        accepts_reference_audio: bool = True,
        fail_calls: Optional[set] = None,
        fail_all: bool = False,
    ) -> None:
        self.accepts_reference_audio = accepts_reference_audio
        self.fail_calls = fail_calls or set()
        self.fail_all = fail_all
        self.calls: List[dict] = []

    def compose(self, prompt, length, seed=None, continuation_url=None, continuation_window=None):
        number = len(self.calls)
        self.calls.append(
            {
                "prompt": prompt,
                "length": length,
                "seed": seed,
                "continuation_url": continuation_url,
                "continuation_window": continuation_window,
            }
        )
        if self.fail_all or number in self.fail_calls:
            raise ProviderJobFailed(f"music call {number} failed")

        # Like MusicGen: a window from 0 returns the whole track, any other
        # window is replayed at the head of the clip
        cumulative = continuation_url is not None and continuation_window[0] == 0
        prefix = 0.0
        if continuation_url is not None and not cumulative:
            prefix = continuation_window[1] - continuation_window[0]
        return MusicClip(
            audio=encode_media("audio", length, f"m{number}"),
            url=f"https://music.test/{number}.mp3",
            cumulative=cumulative,
            prefix=prefix,
        )


class FakeAudioEditor:
    """Audio editor double working on encoded durations."""

    def __init__(self, fail_mux: bool = False, unreadable: Optional[Dict[str, Exception]] = None) -> None:
        self.fail_mux = fail_mux
        self.unreadable = unreadable or {}
        self.silences: List[float] = []
        self.appends: List[float] = []
        self.trims: List[float] = []
        self.muxes: List[tuple] = []

    def _open(self, blob: bytes) -> Tuple[str, float, str]:
        decoded = decode_media(blob)
        if decoded[2] in self.unreadable:
            raise self.unreadable[decoded[2]]
        return decoded

    def probe_duration(self, blob: bytes, video: bool = False) -> float:
        return self._open(blob)[1]

    def silence(self, duration: float) -> bytes:
        self.silences.append(duration)
        return encode_media("audio", duration, "silence")

    def append(self, track: bytes, clip: bytes, crossfade: float = 0.0) -> bytes:
        _, first, first_label = self._open(track)
        _, second, second_label = self._open(clip)
        overlap = max(0.0, min(crossfade, first, second))
        self.appends.append(overlap)
        return encode_media("audio", first + second - overlap, f"{first_label}+{second_label}")

    def trim_start(self, clip: bytes, seconds: float) -> bytes:
        _, duration, label = self._open(clip)
        self.trims.append(seconds)
        return encode_media("audio", duration - seconds, label)

    def conform(self, track: bytes, target: float, tolerance: float = 0.05) -> bytes:
        _, _, label = decode_media(track)
        return encode_media("audio", target, label)

    def mux(self, video: bytes, audio: bytes, sync_mode) -> bytes:
        if self.fail_mux:
            raise ToolExecutionError("ffmpeg exited with 1", 1, "mux broke")
        self.muxes.append((video, audio, sync_mode))
        _, duration, label = decode_media(video)
        return encode_media("muxed", duration, label)


class FakeStitcher:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.calls: List[Tuple[list, int]] = []

    def stitch(self, clips, skipped=0) -> StitchResult:
        self.calls.append((list(clips), skipped))
        if self.fail:
            raise ToolExecutionError("ffmpeg exited with 1", 1, "Invalid data found when processing input")
        total = sum(media_duration(clip) for clip in clips)
        labels = ",".join(decode_media(clip)[2] for clip in clips)
        return StitchResult(video=encode_media("video", total, labels), clip_count=len(clips), skipped=skipped)


def make_spec(index: int, duration: float = 4.0, **overrides) -> SceneSpec:
    values = dict(
        prompt=f"scene {index}",
        duration=duration,
        first_frame_url=f"https://frames.test/{index}-first.png",
        last_frame_url=f"https://frames.test/{index}-last.png",
        music_description="warm piano motif",
        music_style="cinematic",
        music_energy="medium",
    )
    values.update(overrides)
    return SceneSpec(**values)


def make_storyboard(count: int = 3, duration: float = 4.0) -> Storyboard:
    return Storyboard(
        name="demo",
        render_model="veo3",
        scenes=[make_spec(index, duration) for index in range(1, count + 1)],
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
