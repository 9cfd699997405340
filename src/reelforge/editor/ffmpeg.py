"""FFmpeg process wrapper."""

import logging
import shutil
import subprocess
from typing import List, Sequence

from ..errors import ToolExecutionError, ToolUnavailable

logger = logging.getLogger(__name__)

FFMPEG = "ffmpeg"
DEFAULT_TIMEOUT = 600.0


def ensure_available(binary: str = FFMPEG) -> str:
    """Return the resolved path of a media tool.

    Raises:
        ToolUnavailable: If the binary is not on PATH.
    """
    path = shutil.which(binary)
    if path is None:
        raise ToolUnavailable(f"{binary} not found on PATH")
    return path


def run_ffmpeg(
    args: Sequence[str],
    binary: str = FFMPEG,
    timeout: float = DEFAULT_TIMEOUT,
) -> str:
    """Run ffmpeg with the given arguments.

    Args:
        args: Arguments after the binary name.
        binary: Tool to run.
        timeout: Seconds before the process is killed.

    Returns:
        Captured stderr, where ffmpeg writes its diagnostics.

    Raises:
        ToolUnavailable: If the binary is not on PATH.
        ToolExecutionError: On non-zero exit or timeout, with output attached.
    """
    path = ensure_available(binary)
    command: List[str] = [path, "-hide_banner", "-nostdin", "-y", *args]
    logger.debug(f"Running: {' '.join(command)}")

    try:
        result = subprocess.run(
            command,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as e:
        output = e.stderr if isinstance(e.stderr, str) else ""
        logger.error(f"{binary} timed out after {timeout:.0f}s")
        raise ToolExecutionError(f"{binary} timed out after {timeout:.0f}s", -1, output) from e

    if result.returncode != 0:
        output = (result.stderr or "") + (result.stdout or "")
        logger.error(f"{binary} exited with {result.returncode}:\n{output.strip()[-2000:]}")
        raise ToolExecutionError(f"{binary} exited with {result.returncode}", result.returncode, output)

    return result.stderr or ""
