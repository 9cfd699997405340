"""Ephemeral artifact cache.

Short-lived blobs (audio segments) are stored under unguessable tokens so an
external provider can fetch them by URL while a continuation chain runs.
Entries are immutable and disappear on expiry; the background sweep only
reclaims memory, lookups check expiry themselves.
"""

import base64
import logging
import secrets
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from .errors import CacheMiss

logger = logging.getLogger(__name__)

DEFAULT_TTL = 30 * 60.0
DEFAULT_SWEEP_INTERVAL = 5 * 60.0


@dataclass(frozen=True)
class CachedArtifact:
    """A stored blob and its absolute expiry on the cache clock."""

    token: str
    blob: bytes
    expires_at: float
    content_type: str = "audio/mpeg"


class ArtifactCache:
    """Concurrency-safe token to blob store with per-entry expiry."""

    def __init__(
        self,
        default_ttl: float = DEFAULT_TTL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the cache.

        Args:
            default_ttl: Lifetime in seconds used when store() gets no ttl.
            clock: Monotonic time source; injectable for tests.
        """
        if default_ttl <= 0:
            raise ValueError("default_ttl must be positive")
        self._default_ttl = default_ttl
        self._clock = clock
        self._entries: Dict[str, CachedArtifact] = {}
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._sweeper: Optional[threading.Thread] = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def store(
        self,
        blob: bytes,
        ttl: Optional[float] = None,
        content_type: str = "audio/mpeg",
    ) -> str:
        """Store a blob and return its token.

        Args:
            blob: Bytes to store.
            ttl: Lifetime in seconds; the cache default when None.
            content_type: MIME type reported when the blob is served.

        Returns:
            URL-safe token of 16 characters.
        """
        ttl = self._default_ttl if ttl is None else ttl
        if ttl <= 0:
            raise ValueError("ttl must be positive")

        with self._lock:
            token = secrets.token_urlsafe(12)
            while token in self._entries:
                token = secrets.token_urlsafe(12)
            self._entries[token] = CachedArtifact(
                token=token,
                blob=bytes(blob),
                expires_at=self._clock() + ttl,
                content_type=content_type,
            )

        logger.debug(f"Cached {len(blob)} bytes under {token[:8]}... for {ttl:.0f}s")
        return token

    def lookup(self, token: str) -> CachedArtifact:
        """Return the live entry for a token.

        Raises:
            CacheMiss: With reason 'not_found' for unknown tokens and
                'expired' for entries past their expiry. Expired entries
                are dropped on the way out.
        """
        with self._lock:
            entry = self._entries.get(token)
            if entry is None:
                raise CacheMiss(token, CacheMiss.NOT_FOUND)
            if self._clock() >= entry.expires_at:
                del self._entries[token]
                raise CacheMiss(token, CacheMiss.EXPIRED)
            return entry

    def fetch(self, token: str) -> bytes:
        """Return the blob stored under token.

        Raises:
            CacheMiss: If the token is unknown or expired.
        """
        return self.lookup(token).blob

    def sweep(self) -> int:
        """Remove every expired entry.

        Returns:
            Number of entries removed.
        """
        now = self._clock()
        with self._lock:
            expired = [t for t, e in self._entries.items() if now >= e.expires_at]
            for token in expired:
                del self._entries[token]
        if expired:
            logger.debug(f"Swept {len(expired)} expired segments")
        return len(expired)

    def start_sweeper(self, interval: float = DEFAULT_SWEEP_INTERVAL) -> None:
        """Run sweep() periodically on a daemon thread until stop()."""
        if self._sweeper is not None and self._sweeper.is_alive():
            return
        self._stop.clear()

        def _run() -> None:
            while not self._stop.wait(interval):
                try:
                    self.sweep()
                except Exception as e:
                    logger.warning(f"Segment sweep failed: {e}")

        self._sweeper = threading.Thread(target=_run, name="segment-sweeper", daemon=True)
        self._sweeper.start()

    def stop(self) -> None:
        """Stop the background sweeper if it is running."""
        self._stop.set()
        if self._sweeper is not None:
            self._sweeper.join(timeout=1.0)
            self._sweeper = None


def segment_url(token: str, base_url: str) -> str:
    """Public URL under which the segment endpoint serves a token."""
    return f"{base_url.rstrip('/')}/segments/{token}"


def data_url(blob: bytes, content_type: str = "audio/mpeg") -> str:
    """Inline a blob as a data URL."""
    encoded = base64.b64encode(blob).decode("ascii")
    return f"data:{content_type};base64,{encoded}"
