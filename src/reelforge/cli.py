"""CLI entry point for reelforge."""

import asyncio
import logging
import threading
from pathlib import Path
from typing import Optional

import typer
import uvicorn

from . import __version__
from .api import create_app
from .cache import ArtifactCache
from .config import ErrorStrategy, SyncMode, config
from .editor import AudioEditor, Stitcher
from .models import Storyboard
from .services import ReplicateClient, create_music_provider
from .store import MemoryJobStore
from .workflow import AudioPipeline, Coordinator, RenderDispatcher

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="reelforge",
    help="Turn an approved storyboard into a finished video with a soundtrack",
    no_args_is_help=True
)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(levelname)s: %(message)s",
    )


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"reelforge version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit"
    )
) -> None:
    """reelforge - storyboard to video orchestration."""
    pass


@app.command()
def status(
    storyboard: Path = typer.Argument(
        ...,
        help="Path to storyboard YAML file",
    )
) -> None:
    """Show a storyboard summary."""
    if not storyboard.exists():
        typer.echo(f"❌ No storyboard found at {storyboard}")
        raise typer.Exit(1)

    try:
        board = Storyboard.from_yaml(storyboard)
    except Exception as e:
        typer.echo(f"❌ Error loading storyboard: {e}")
        raise typer.Exit(1)

    typer.echo(f"📁 Storyboard: {board.name}")
    typer.echo(f"   Aspect ratio: {board.aspect_ratio}")
    typer.echo(f"   Render model: {board.render_model or config.default_render_model}")
    typer.echo(f"   Scenes: {len(board.scenes)}")
    typer.echo(f"   Total duration: {board.total_duration:.1f}s")

    typer.echo("\n📽️  Scenes:")
    for index, scene in enumerate(board.scenes):
        frames_ok = scene.first_frame_url and scene.last_frame_url
        status_icon = "✅" if frames_ok else "⚠️ "
        typer.echo(f"   {status_icon} scene {index + 1}: {scene.duration}s")
        prompt_preview = scene.prompt[:60] + "..." if len(scene.prompt) > 60 else scene.prompt
        typer.echo(f"      → {prompt_preview}")
        if not frames_ok:
            typer.echo("      ⚠️  missing reference frames")


def _start_segment_server(cache: ArtifactCache, host: str, port: int) -> uvicorn.Server:
    server = uvicorn.Server(uvicorn.Config(create_app(cache), host=host, port=port, log_level="warning"))
    thread = threading.Thread(target=server.run, name="segment-server", daemon=True)
    thread.start()
    logger.info(f"Segment server listening on {host}:{port}")
    return server


@app.command()
def run(
    storyboard: Path = typer.Argument(
        ...,
        help="Path to storyboard YAML file",
    ),
    output: Path = typer.Option(
        Path("output/video.mp4"),
        "--output",
        "-o",
        help="Output video path"
    ),
    audio: Optional[bool] = typer.Option(
        None,
        "--audio/--no-audio",
        help="Generate a soundtrack (default from REELFORGE_AUDIO_ENABLED)"
    ),
    merge: Optional[bool] = typer.Option(
        None,
        "--merge/--no-merge",
        help="Mux the soundtrack into the video (default from REELFORGE_AUDIO_MERGE)"
    ),
    sync_mode: Optional[SyncMode] = typer.Option(
        None,
        "--sync-mode",
        help="How audio length is reconciled with the video"
    ),
    error_strategy: Optional[ErrorStrategy] = typer.Option(
        None,
        "--error-strategy",
        help="What to do when a scene's music fails"
    ),
    serve_segments: bool = typer.Option(
        False,
        "--serve-segments",
        help="Serve cached segments so the music provider can fetch them "
             "(set REELFORGE_PUBLIC_BASE_URL to the reachable address)"
    ),
    host: str = typer.Option("0.0.0.0", "--host", help="Segment server host"),
    port: int = typer.Option(8000, "--port", help="Segment server port"),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        help="Enable verbose logging"
    )
) -> None:
    """Render, stitch and score a storyboard."""
    setup_logging(verbose)

    try:
        board = Storyboard.from_yaml(storyboard)
    except Exception as e:
        typer.echo(f"❌ Error loading storyboard: {e}")
        raise typer.Exit(1)

    if not board.scenes:
        typer.echo("❌ Storyboard has no scenes")
        raise typer.Exit(1)

    audio_settings = config.audio_settings(
        enabled=audio,
        merge_with_video=merge,
        sync_mode=sync_mode,
        error_strategy=error_strategy,
    )

    try:
        config.validate_render_required()
        if audio_settings.enabled:
            config.validate_music_required()
    except ValueError as e:
        typer.echo(f"❌ Configuration error: {e}")
        raise typer.Exit(1)

    cache = ArtifactCache(default_ttl=config.segment_ttl)
    cache.start_sweeper(config.segment_sweep_interval)
    server = _start_segment_server(cache, host, port) if serve_segments else None

    store = MemoryJobStore()
    pipeline = None
    if audio_settings.enabled:
        pipeline = AudioPipeline(
            provider=create_music_provider(),
            editor=AudioEditor(config.scratch_dir),
            cache=cache,
            public_base_url=config.public_base_url,
            segment_ttl=config.segment_ttl,
        )
    coordinator = Coordinator(
        store=store,
        dispatcher=RenderDispatcher.from_config(ReplicateClient(), config),
        stitcher=Stitcher(config.scratch_dir),
        audio_pipeline=pipeline,
    )

    job = store.create_job(board, audio_settings=audio_settings)
    typer.echo(f"🎬 Job {job.id}: {len(board.scenes)} scenes, {board.total_duration:.1f}s")

    async def _drive():
        await coordinator.approve(job.id)
        return await coordinator.start(job.id)

    try:
        finished = asyncio.run(_drive())
    finally:
        cache.stop()
        if server is not None:
            server.should_exit = True

    progress = finished.progress
    if finished.result is None:
        typer.echo(f"❌ Job {finished.status.value}: {progress.error}")
        raise typer.Exit(1)

    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_bytes(finished.video_with_audio or finished.result)
    typer.echo(f"✅ {finished.status.value}: {output}")
    if progress.skipped_scenes:
        typer.echo(f"   ⚠️  {progress.skipped_scenes} scenes failed and were skipped")

    if finished.audio is not None:
        audio_path = output.with_suffix(".mp3")
        audio_path.write_bytes(finished.audio)
        typer.echo(f"   🎵 Soundtrack: {audio_path}")
    if progress.audio_status == "failed":
        typer.echo(f"   ⚠️  {progress.error}")


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Bind host"),
    port: int = typer.Option(8000, "--port", help="Bind port"),
    verbose: bool = typer.Option(False, "--verbose", help="Enable verbose logging")
) -> None:
    """Run the segment endpoint on its own."""
    setup_logging(verbose)
    cache = ArtifactCache(default_ttl=config.segment_ttl)
    cache.start_sweeper(config.segment_sweep_interval)
    try:
        uvicorn.run(create_app(cache), host=host, port=port)
    finally:
        cache.stop()


if __name__ == "__main__":
    app()
