"""Render dispatch and poll.

One prediction is submitted per scene and polled with exponential backoff
until it settles. A batch is fanned out concurrently and joined with
all-settled semantics: every scene yields an outcome, failed or not.
"""

import asyncio
import contextlib
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional, Sequence

from ..errors import (
    PollTimeout,
    ProviderJobFailed,
    ProviderRequestError,
    ReelforgeError,
)
from ..models import Scene
from ..services.render_models import build_render_request
from ..services.replicate import extract_output_url

logger = logging.getLogger(__name__)

SubmittedCallback = Callable[[Scene, str], Awaitable[None]]
SettledCallback = Callable[["RenderOutcome"], Awaitable[None]]


@dataclass
class RenderOutcome:
    """Settled result of rendering one scene."""

    scene_id: str
    index: int
    clip: Optional[bytes] = None
    handle: Optional[str] = None
    error: Optional[str] = None
    kind: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.clip is not None


def _is_transient(error: ProviderRequestError) -> bool:
    return error.status_code is None or error.status_code == 429 or error.status_code >= 500


class RenderDispatcher:
    """Submits scenes to the render provider and waits for their clips.

    The provider client is synchronous; every call is pushed to a worker
    thread so polling never blocks the event loop.
    """

    DEFAULT_INITIAL_BACKOFF = 1.0
    DEFAULT_MAX_BACKOFF = 60.0
    DEFAULT_MAX_ATTEMPTS = 30
    DEFAULT_TIMEOUT = 30 * 60.0

    def __init__(
        self,
        client,
        initial_backoff: float = DEFAULT_INITIAL_BACKOFF,
        max_backoff: float = DEFAULT_MAX_BACKOFF,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        timeout: float = DEFAULT_TIMEOUT,
        max_concurrency: Optional[int] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            client: Render provider client (see ReplicateClient).
            initial_backoff: First delay between polls in seconds.
            max_backoff: Ceiling for the doubling delay.
            max_attempts: Most polls per render.
            timeout: Wall-clock ceiling per render's poll loop in seconds.
            max_concurrency: Most renders in flight per batch; None for all.
            sleep: Awaitable sleep; injectable for tests.
            clock: Monotonic time source; injectable for tests.
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._client = client
        self._initial_backoff = initial_backoff
        self._max_backoff = max_backoff
        self._max_attempts = max_attempts
        self._timeout = timeout
        self._max_concurrency = max_concurrency
        self._sleep = sleep
        self._clock = clock

    @classmethod
    def from_config(cls, client, cfg) -> "RenderDispatcher":
        return cls(
            client,
            initial_backoff=cfg.poll_initial_backoff,
            max_backoff=cfg.poll_max_backoff,
            max_attempts=cfg.poll_max_attempts,
            timeout=cfg.poll_timeout,
            max_concurrency=cfg.render_concurrency,
        )

    async def render(
        self,
        scene: Scene,
        on_submitted: Optional[SubmittedCallback] = None,
    ) -> bytes:
        """Render one scene and return the clip bytes.

        Args:
            scene: Scene to render.
            on_submitted: Awaited with the provider handle once submitted.

        Returns:
            Downloaded clip.

        Raises:
            ValidationError: If the scene cannot be turned into a request.
            ProviderRequestError: If submission or download fails.
            ProviderJobFailed: If the remote job fails or is canceled.
            PollTimeout: If polling exceeds its attempt or time ceiling.
        """
        request = build_render_request(scene)
        logger.info(
            f"Submitting scene {scene.index} ({request.model_key}, {request.duration}s, {request.aspect_ratio})"
        )
        prediction = await asyncio.to_thread(
            self._client.create_prediction, request.model, request.to_input()
        )
        handle = prediction["id"]
        if on_submitted is not None:
            await on_submitted(scene, handle)

        prediction = await self.poll_until_complete(handle)
        url = extract_output_url(prediction.get("output"))
        if not url:
            raise ProviderJobFailed(f"Prediction {handle} succeeded without an output URL")

        return await asyncio.to_thread(self._client.download, url)

    async def poll_until_complete(self, handle: str) -> Dict:
        """Poll a prediction until it reaches a terminal state.

        The delay starts at initial_backoff and doubles up to max_backoff.
        The loop ends at whichever of max_attempts or timeout comes first;
        no sleep ever runs past the timeout.

        Returns:
            The succeeded prediction record.

        Raises:
            ProviderJobFailed: On failed or canceled.
            ProviderRequestError: On a non-transient request error.
            PollTimeout: When either ceiling is reached.
        """
        started = self._clock()
        backoff = self._initial_backoff
        attempts = 0

        while True:
            elapsed = self._clock() - started
            if attempts >= self._max_attempts or elapsed >= self._timeout:
                raise PollTimeout(
                    f"Prediction {handle} not finished after {attempts} polls in {elapsed:.0f}s",
                    attempts=attempts,
                    elapsed=elapsed,
                )

            attempts += 1
            try:
                prediction = await asyncio.to_thread(self._client.get_prediction, handle)
            except ProviderRequestError as e:
                if not _is_transient(e):
                    raise
                logger.warning(f"Poll {attempts} for {handle} failed, retrying: {e}")
            else:
                status = prediction.get("status")
                logger.debug(f"Poll {attempts} for {handle}: {status}")
                if status == "succeeded":
                    return prediction
                if status == "failed":
                    raise ProviderJobFailed(
                        f"Prediction {handle} failed: {prediction.get('error') or 'unknown error'}"
                    )
                if status == "canceled":
                    raise ProviderJobFailed(f"Prediction {handle} was canceled", canceled=True)

            remaining = self._timeout - (self._clock() - started)
            if remaining > 0 and attempts < self._max_attempts:
                await self._sleep(min(backoff, remaining))
                backoff = min(backoff * 2, self._max_backoff)

    async def render_all(
        self,
        scenes: Sequence[Scene],
        on_submitted: Optional[SubmittedCallback] = None,
        on_settled: Optional[SettledCallback] = None,
    ) -> List[RenderOutcome]:
        """Render scenes concurrently and wait for all of them to settle.

        A failing scene never cancels or short-circuits the others.

        Returns:
            One outcome per scene, in input order.
        """
        semaphore = asyncio.Semaphore(self._max_concurrency) if self._max_concurrency else None

        async def _one(scene: Scene) -> RenderOutcome:
            outcome = RenderOutcome(scene_id=scene.id, index=scene.index)

            async def _submitted(s: Scene, handle: str) -> None:
                outcome.handle = handle
                if on_submitted is not None:
                    await on_submitted(s, handle)

            try:
                async with semaphore or contextlib.nullcontext():
                    outcome.clip = await self.render(scene, _submitted)
                logger.info(f"Scene {scene.index} rendered ({len(outcome.clip)} bytes)")
            except ReelforgeError as e:
                outcome.error = str(e)
                outcome.kind = type(e).__name__
                logger.error(f"Scene {scene.index} failed: {e}")
            except Exception as e:
                outcome.error = f"Unexpected error: {e}"
                outcome.kind = type(e).__name__
                logger.exception(f"Scene {scene.index} failed unexpectedly")

            if on_settled is not None:
                try:
                    await on_settled(outcome)
                except Exception:
                    logger.exception(f"Settle callback for scene {scene.index} failed")
            return outcome

        return list(await asyncio.gather(*(_one(scene) for scene in scenes)))
