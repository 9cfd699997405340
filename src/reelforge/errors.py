"""Error taxonomy shared by every orchestration component."""

from typing import Optional


class ReelforgeError(Exception):
    """Base class for all orchestration errors."""


class ProviderRequestError(ReelforgeError):
    """A provider could not be reached, or answered with a non-2xx status."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class ProviderJobFailed(ReelforgeError):
    """A remote job reached a terminal failed or canceled state."""

    def __init__(self, message: str, canceled: bool = False) -> None:
        super().__init__(message)
        self.canceled = canceled


class PollTimeout(ReelforgeError):
    """The poll loop hit its attempt cap or its wall-clock ceiling."""

    def __init__(self, message: str, attempts: int, elapsed: float) -> None:
        super().__init__(message)
        self.attempts = attempts
        self.elapsed = elapsed


class ToolUnavailable(ReelforgeError):
    """The local media tool is not on the execution path."""


class ToolExecutionError(ReelforgeError):
    """The local media tool exited non-zero."""

    def __init__(self, message: str, returncode: int, output: str = "") -> None:
        super().__init__(message)
        self.returncode = returncode
        self.output = output

    def __str__(self) -> str:
        base = super().__str__()
        if not self.output:
            return base
        # Keep the tail; ffmpeg prints its actual complaint last
        return f"{base}: {self.output.strip()[-500:]}"


class InsufficientResource(ReelforgeError):
    """Scratch storage does not have enough free space."""

    def __init__(self, message: str, required: int, available: int) -> None:
        super().__init__(message)
        self.required = required
        self.available = available


class CacheMiss(ReelforgeError):
    """A cache token is unknown or its entry has expired."""

    EXPIRED = "expired"
    NOT_FOUND = "not_found"

    def __init__(self, token: str, reason: str) -> None:
        super().__init__(f"Segment {token[:8]}... {reason}")
        self.token = token
        self.reason = reason


class ValidationError(ReelforgeError):
    """An illegal request or state transition was attempted."""


class AudioGenerationFailed(ReelforgeError):
    """The audio stage was aborted under the halt strategy."""

    def __init__(self, message: str, scene_index: Optional[int] = None) -> None:
        super().__init__(message)
        self.scene_index = scene_index
