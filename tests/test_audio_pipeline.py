from __future__ import annotations

import pytest

from reelforge.cache import ArtifactCache
from reelforge.config import AudioSettings, ErrorStrategy, SyncMode
from reelforge.errors import AudioGenerationFailed, ToolExecutionError
from reelforge.workflow.audio import AudioPipeline

from conftest import FakeAudioEditor, FakeMusicProvider, make_spec, media_duration

BASE_URL = "https://segments.test"


def specs(durations):
    return [make_spec(i + 1, d) for i, d in enumerate(durations)]


def make_pipeline(provider, editor=None, cache=None, base_url=BASE_URL):
    return AudioPipeline(
        provider=provider,
        editor=editor or FakeAudioEditor(),
        cache=cache if cache is not None else ArtifactCache(),
        public_base_url=base_url,
    )


def test_first_scene_has_no_continuation_reference() -> None:
    provider = FakeMusicProvider()
    make_pipeline(provider).compose(specs([4.0]), AudioSettings())

    assert provider.calls[0]["continuation_url"] is None
    assert provider.calls[0]["length"] == 4.0


def test_continuation_uses_trailing_window_and_cache_url() -> None:
    provider = FakeMusicProvider()
    cache = ArtifactCache()
    result = make_pipeline(provider, cache=cache).compose(
        specs([4.0, 4.0, 4.0]), AudioSettings(continuation_window=1.0, crossfade=0.5)
    )

    second, third = provider.calls[1], provider.calls[2]
    # First result is provider-hosted, so it is referenced directly
    assert second["continuation_url"] == "https://music.test/0.mp3"
    assert second["continuation_window"] == (3.0, 4.0)
    # Window replayed by the provider, the scene itself, then the crossfade overlap
    assert second["length"] == 5.5
    # Appended track only exists locally and goes through the cache
    assert third["continuation_url"].startswith(f"{BASE_URL}/segments/")
    assert third["continuation_window"] == (7.0, 8.0)
    token = third["continuation_url"].rsplit("/", 1)[-1]
    assert media_duration(cache.fetch(token)) == pytest.approx(8.0)

    assert result.duration == 12.0
    assert media_duration(result.audio) == pytest.approx(12.0)


def test_cumulative_results_are_adopted_directly() -> None:
    provider = FakeMusicProvider()
    editor = FakeAudioEditor()
    result = make_pipeline(provider, editor=editor).compose(
        specs([4.0, 4.0, 4.0]), AudioSettings(continuation_window=30.0)
    )

    assert [c["continuation_window"] for c in provider.calls[1:]] == [(0.0, 4.0), (0.0, 8.0)]
    assert [c["length"] for c in provider.calls] == [4.0, 8.0, 12.0]
    assert [c["continuation_url"] for c in provider.calls[1:]] == [
        "https://music.test/0.mp3",
        "https://music.test/1.mp3",
    ]
    assert editor.appends == []
    assert media_duration(result.audio) == pytest.approx(12.0)


def test_replayed_window_is_dropped_before_the_crossfade() -> None:
    provider = FakeMusicProvider()
    editor = FakeAudioEditor()
    cache = ArtifactCache()
    make_pipeline(provider, editor=editor, cache=cache).compose(
        specs([4.0, 4.0, 4.0]), AudioSettings(continuation_window=1.0, crossfade=0.5)
    )

    assert editor.trims == [1.0, 1.0]
    assert editor.appends == [0.5, 0.5]
    # The published reference holds exactly the first two scenes, with no repeated tail
    token = provider.calls[2]["continuation_url"].rsplit("/", 1)[-1]
    assert media_duration(cache.fetch(token)) == pytest.approx(8.0)


def test_undecodable_clip_is_scored_with_silence() -> None:
    provider = FakeMusicProvider()
    editor = FakeAudioEditor(unreadable={"m1": ToolExecutionError("Audio trim failed", -1, "invalid data")})
    result = make_pipeline(provider, editor=editor).compose(specs([4.0, 4.0, 4.0]), AudioSettings())

    assert result.failed_scenes == [1]
    assert result.silent_scenes == [1]
    assert editor.silences == [4.0]
    assert provider.calls[2]["continuation_url"] is None
    assert media_duration(result.audio) == pytest.approx(12.0)


def test_undecodable_clip_halts_under_halt_strategy() -> None:
    editor = FakeAudioEditor(unreadable={"m1": ToolExecutionError("Audio trim failed", -1, "invalid data")})
    pipeline = make_pipeline(FakeMusicProvider(), editor=editor)

    with pytest.raises(AudioGenerationFailed) as excinfo:
        pipeline.compose(specs([4.0, 4.0, 4.0]), AudioSettings(error_strategy=ErrorStrategy.HALT))

    assert excinfo.value.scene_index == 1


def test_every_call_failing_still_spans_full_duration() -> None:
    provider = FakeMusicProvider(fail_all=True)
    editor = FakeAudioEditor()
    result = make_pipeline(provider, editor=editor).compose(
        specs([4.0, 3.0, 5.0]), AudioSettings(error_strategy=ErrorStrategy.CONTINUE_WITH_SILENCE)
    )

    assert media_duration(result.audio) == pytest.approx(12.0)
    assert editor.silences == [4.0, 3.0, 5.0]
    assert result.failed_scenes == [0, 1, 2]
    assert result.silent_scenes == [0, 1, 2]


def test_failure_breaks_continuity_for_the_next_scene() -> None:
    provider = FakeMusicProvider(fail_calls={1})
    result = make_pipeline(provider).compose(specs([4.0, 4.0, 4.0]), AudioSettings())

    assert provider.calls[2]["continuation_url"] is None
    assert result.failed_scenes == [1]
    assert media_duration(result.audio) == pytest.approx(12.0)


def test_halt_strategy_aborts() -> None:
    provider = FakeMusicProvider(fail_calls={1})
    pipeline = make_pipeline(provider)

    with pytest.raises(AudioGenerationFailed) as excinfo:
        pipeline.compose(specs([4.0, 4.0, 4.0]), AudioSettings(error_strategy=ErrorStrategy.HALT))

    assert excinfo.value.scene_index == 1
    assert len(provider.calls) == 2


def test_silent_indices_are_scored_with_silence() -> None:
    provider = FakeMusicProvider()
    editor = FakeAudioEditor()
    result = make_pipeline(provider, editor=editor).compose(
        specs([4.0, 4.0, 4.0]), AudioSettings(), silent_indices={1}
    )

    assert len(provider.calls) == 2
    assert editor.silences == [4.0]
    assert result.silent_scenes == [1]
    assert result.failed_scenes == []
    assert media_duration(result.audio) == pytest.approx(12.0)


def test_without_public_url_reference_is_inlined() -> None:
    provider = FakeMusicProvider()
    make_pipeline(provider, base_url=None).compose(specs([4.0, 4.0, 4.0]), AudioSettings())

    assert provider.calls[2]["continuation_url"].startswith("data:audio/mpeg;base64,")


def test_prompt_only_provider_never_gets_reference() -> None:
    provider = FakeMusicProvider(accepts_reference_audio=False)
    result = make_pipeline(provider).compose(specs([4.0, 4.0]), AudioSettings(crossfade=0.5))

    assert all(c["continuation_url"] is None for c in provider.calls)
    assert provider.calls[1]["length"] == 4.5
    assert media_duration(result.audio) == pytest.approx(8.0)


def test_last_scene_prompt_asks_for_ending() -> None:
    provider = FakeMusicProvider()
    make_pipeline(provider).compose(specs([4.0, 4.0]), AudioSettings())

    assert provider.calls[0]["prompt"].endswith("Smooth continuation")
    assert provider.calls[1]["prompt"].endswith("Gentle fade out at the end")


def test_empty_storyboard_rejected() -> None:
    with pytest.raises(ValueError):
        make_pipeline(FakeMusicProvider()).compose([], AudioSettings())


def test_window_never_exceeds_cumulative_duration() -> None:
    pipeline = make_pipeline(FakeMusicProvider())
    assert pipeline.continuation_window(0.6, 1.0) == (0.0, 0.6)
    assert pipeline.continuation_window(10.0, 1.0) == (9.0, 10.0)


def test_mux_delegates_to_editor() -> None:
    editor = FakeAudioEditor()
    pipeline = make_pipeline(FakeMusicProvider(), editor=editor)

    muxed = pipeline.mux(b"video:8.000:1,3", b"audio:12.000:m", SyncMode.STRETCH)

    assert muxed == b"muxed:8.000:1,3"
    assert editor.muxes[0][2] == SyncMode.STRETCH
