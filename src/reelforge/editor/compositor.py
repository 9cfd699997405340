"""Stream-copy concatenation of rendered clips."""

import logging
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

from ..errors import InsufficientResource, ToolExecutionError
from .ffmpeg import FFMPEG, ensure_available, run_ffmpeg

logger = logging.getLogger(__name__)


@dataclass
class StitchResult:
    """Stitched video and how it was assembled."""

    video: bytes
    clip_count: int
    skipped: int = 0

    @property
    def partial(self) -> bool:
        return self.skipped > 0


def concat_manifest(paths: Sequence[Path]) -> str:
    """Build an ffmpeg concat demuxer manifest for the given files, in order."""
    lines = []
    for path in paths:
        escaped = str(path.resolve()).replace("'", "'\\''")
        lines.append(f"file '{escaped}'")
    return "\n".join(lines) + "\n"


class Stitcher:
    """Concatenates clips without re-encoding.

    Each call works in its own scratch directory under scratch_root, which is
    removed on every exit path.
    """

    SPACE_MARGIN = 2

    def __init__(
        self,
        scratch_root: Optional[Path] = None,
        binary: str = FFMPEG,
    ) -> None:
        """Initialize the stitcher.

        Args:
            scratch_root: Parent directory for scratch space. Defaults to the
                system temp directory.
            binary: Media tool to invoke.
        """
        self._scratch_root = Path(scratch_root) if scratch_root else Path(tempfile.gettempdir())
        self._binary = binary

    def stitch(self, clips: Sequence[bytes], skipped: int = 0) -> StitchResult:
        """Concatenate clips in the given order.

        Args:
            clips: Encoded clips, already in storyboard order. Failed scenes
                must have been excluded by the caller.
            skipped: Number of scenes excluded upstream, recorded on the result.

        Returns:
            StitchResult with the concatenated video.

        Raises:
            ValueError: If clips is empty.
            ToolUnavailable: If the media tool is not on PATH.
            InsufficientResource: If scratch space is below twice the payload.
            ToolExecutionError: If the tool fails or produces no output.
        """
        if not clips:
            raise ValueError("No clips provided")

        ensure_available(self._binary)
        self._check_space(sum(len(clip) for clip in clips))

        workdir = Path(tempfile.mkdtemp(prefix="stitch-", dir=self._scratch_root))
        try:
            paths = []
            for index, clip in enumerate(clips):
                path = workdir / f"scene_{index:03d}.mp4"
                path.write_bytes(clip)
                paths.append(path)

            manifest = workdir / "concat.txt"
            manifest.write_text(concat_manifest(paths))
            output = workdir / "output.mp4"

            run_ffmpeg(
                ["-f", "concat", "-safe", "0", "-i", str(manifest), "-c", "copy", str(output)],
                binary=self._binary,
            )

            if not output.exists() or output.stat().st_size == 0:
                raise ToolExecutionError(f"{self._binary} produced no output", 0)

            video = output.read_bytes()
        finally:
            shutil.rmtree(workdir, ignore_errors=True)

        logger.info(
            f"Stitched {len(clips)} clips into {len(video)} bytes"
            + (f" ({skipped} skipped)" if skipped else "")
        )
        return StitchResult(video=video, clip_count=len(clips), skipped=skipped)

    def _check_space(self, payload: int) -> None:
        self._scratch_root.mkdir(parents=True, exist_ok=True)
        required = payload * self.SPACE_MARGIN
        available = shutil.disk_usage(self._scratch_root).free
        if available < required:
            raise InsufficientResource(
                f"Scratch space too low: need {required} bytes, have {available}",
                required=required,
                available=available,
            )
