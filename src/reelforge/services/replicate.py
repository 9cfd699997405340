"""Replicate predictions API client."""

import logging
import threading
import time
from typing import Any, Dict, Optional

import requests

from ..config import config
from ..errors import ProviderRequestError

logger = logging.getLogger(__name__)


def extract_output_url(output: Any, key: str = "video") -> Optional[str]:
    """Pull the output URL out of a prediction's output field.

    Replicate models disagree on the shape: a bare URL, a list whose first
    element is the URL, or a mapping keyed by media type.
    """
    if isinstance(output, str) and output:
        return output
    if isinstance(output, list) and output:
        return extract_output_url(output[0], key)
    if isinstance(output, dict):
        value = output.get(key) or output.get("url")
        if isinstance(value, str) and value:
            return value
    return None


class ReplicateClient:
    """Thin synchronous client for the Replicate predictions API.

    Every call is blocking; async callers run them via asyncio.to_thread.
    Model slugs without a ``:version`` suffix are resolved once through the
    models endpoint and memoized for the life of the process.
    """

    DEFAULT_TIMEOUT = 30.0
    DEFAULT_MAX_RETRIES = 3
    DEFAULT_RETRY_DELAY = 1.0

    _version_cache: Dict[str, str] = {}
    _version_lock = threading.Lock()

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        webhook_url: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        session: Optional[requests.Session] = None,
    ) -> None:
        """Initialize the client.

        Args:
            api_key: Replicate API token. Defaults to REPLICATE_API_KEY.
            base_url: API base URL. Defaults to REPLICATE_BASE_URL.
            webhook_url: Webhook attached to every prediction, if any.
            timeout: Per-request timeout in seconds.
            max_retries: Download attempts before giving up.
            retry_delay: Base delay between download attempts (exponential backoff).
            session: Optional requests session to reuse.
        """
        self._api_key = api_key or config.replicate_api_key
        self._base_url = (base_url or config.replicate_base_url).rstrip("/")
        self._webhook_url = webhook_url if webhook_url is not None else config.replicate_webhook_url
        self._timeout = timeout
        self._max_retries = max_retries
        self._retry_delay = retry_delay
        self._session = session or requests.Session()

        if not self._api_key:
            raise ValueError(
                "Missing required configuration: REPLICATE_API_KEY. "
                "Set the corresponding environment variable."
            )

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Token {self._api_key}",
            "Content-Type": "application/json",
        }

    def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        url = f"{self._base_url}{path}"
        try:
            response = self._session.request(
                method, url, headers=self._headers(), timeout=self._timeout, **kwargs
            )
        except requests.RequestException as e:
            raise ProviderRequestError(f"{method} {path} failed: {e}") from e

        if not 200 <= response.status_code < 300:
            body = response.text[:500]
            raise ProviderRequestError(
                f"{method} {path} returned HTTP {response.status_code}",
                status_code=response.status_code,
                body=body,
            )

        try:
            return response.json()
        except ValueError as e:
            raise ProviderRequestError(f"{method} {path} returned invalid JSON") from e

    def resolve_version(self, model: str) -> str:
        """Return ``slug:version`` for a model reference.

        Args:
            model: Either ``owner/name`` or ``owner/name:version``.

        Raises:
            ProviderRequestError: If the lookup fails.
        """
        if ":" in model:
            return model

        with self._version_lock:
            cached = self._version_cache.get(model)
        if cached:
            return cached

        data = self._request("GET", f"/models/{model}")
        version_id = (data.get("latest_version") or {}).get("id")
        if not version_id:
            raise ProviderRequestError(f"Model {model} has no published version")

        resolved = f"{model}:{version_id}"
        with self._version_lock:
            self._version_cache[model] = resolved
        logger.info(f"Resolved {model} to version {version_id[:12]}")
        return resolved

    def create_prediction(self, model: str, input: Dict[str, Any]) -> Dict[str, Any]:
        """Submit a prediction.

        Args:
            model: Model reference, resolved to a version when needed.
            input: Model-specific input mapping.

        Returns:
            The prediction record; its ``id`` is the poll handle.

        Raises:
            ProviderRequestError: On transport failure or non-2xx response.
        """
        version = self.resolve_version(model)
        payload: Dict[str, Any] = {
            "version": version.split(":", 1)[1],
            "input": input,
        }
        if self._webhook_url:
            payload["webhook"] = self._webhook_url
            payload["webhook_events_filter"] = ["completed"]

        prediction = self._request("POST", "/predictions", json=payload)
        if not prediction.get("id"):
            raise ProviderRequestError("Prediction response carried no id")
        logger.info(f"Submitted prediction {prediction['id']} for {model}")
        return prediction

    def get_prediction(self, prediction_id: str) -> Dict[str, Any]:
        """Fetch the current state of a prediction.

        Raises:
            ProviderRequestError: On transport failure or non-2xx response.
        """
        return self._request("GET", f"/predictions/{prediction_id}")

    def download(self, url: str) -> bytes:
        """Download an output file with retries.

        Args:
            url: Output URL reported by a finished prediction.

        Returns:
            File contents.

        Raises:
            ProviderRequestError: After all retry attempts fail.
        """
        last_error: Optional[Exception] = None

        for attempt in range(self._max_retries):
            try:
                response = self._session.get(url, timeout=self._timeout * 4)
                response.raise_for_status()
                logger.info(f"Downloaded {len(response.content)} bytes from {url[:80]}")
                return response.content
            except requests.RequestException as e:
                last_error = e
                if attempt < self._max_retries - 1:
                    delay = self._retry_delay * (2**attempt)
                    logger.warning(
                        f"Download attempt {attempt + 1} failed, retrying in {delay}s: {e}"
                    )
                    time.sleep(delay)

        raise ProviderRequestError(
            f"Download failed after {self._max_retries} attempts: {last_error}"
        )
