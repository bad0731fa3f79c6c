from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, TypeVar

import requests

from ..config import ProviderConfig, Settings
from ..logs import event_extra
from ..naming import fallback_name
from ..vision import AI_NAMING_PROMPT, CONNECTION_TEST_PROMPT, encode_image, get_mime_type

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ProviderError(RuntimeError):
    """A single failed backend call."""

    def __init__(self, message: str, status_code: Optional[int] = None, retryable: bool = False):
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable


class ProviderConnectionError(ProviderError):
    """The backend failed its connection test; nothing can be processed."""


@dataclass(frozen=True)
class AnalysisResult:
    """Outcome of one analyze() call. ``text`` is a fallback name when ``success`` is False."""
    text: str
    success: bool
    provider: str
    elapsed: float
    error: Optional[str] = None


@dataclass(frozen=True)
class ConnectionStatus:
    success: bool
    message: Optional[str] = None
    error: Optional[str] = None
    response: Optional[str] = None


class VisionProvider(ABC):
    """
    Abstract base class for vision providers.

    Subclasses implement one request/response round trip; this class owns
    encoding, retries with exponential backoff, and the fallback name.
    """

    kind: str = ""
    timeout: int = 30
    default_max_retries: int = 2

    def __init__(self, settings: Settings, session: Optional[requests.Session] = None):
        self.config: ProviderConfig = settings.provider
        self.model = self.config.model
        self.max_retries = (
            settings.max_retries if settings.max_retries is not None else self.default_max_retries
        )
        self.retry_delay = settings.retry_delay
        self.session = session or requests.Session()

    @abstractmethod
    def send_request(self, prompt: str, image_b64: Optional[str], mime_type: Optional[str]) -> str:
        """
        Sends a single request to the model and returns the raw text content.

        Args:
            prompt: The text instruction
            image_b64: Base64 image data, or None for a text-only request
            mime_type: MIME type of the image

        Raises:
            ProviderError: on any failure; ``retryable`` marks transient ones
        """

    def analyze(self, image_path: Path) -> AnalysisResult:
        """
        Ask the model for a filename stem for ``image_path``.

        Never raises: any failure degrades to a fallback name.
        """
        start = time.monotonic()
        logger.info("Starting AI analysis of %s", image_path.name,
                    extra=event_extra("analysis_started", provider=self.kind,
                                      model=self.model, file=image_path.name))
        try:
            image_b64 = encode_image(image_path)
            text = self._with_retries(
                lambda: self.send_request(AI_NAMING_PROMPT, image_b64, get_mime_type(image_path))
            ).strip()
            if not text:
                raise ProviderError(f"Empty response from {self.kind}")
        except (ProviderError, OSError) as e:
            elapsed = time.monotonic() - start
            name = fallback_name(image_path)
            logger.error("AI analysis failed for %s: %s", image_path.name, e,
                         extra=event_extra("analysis_failed", provider=self.kind, file=image_path.name,
                                           fallback=name, elapsed=f"{elapsed:.1f}s"))
            return AnalysisResult(name, False, self.kind, elapsed, str(e))

        elapsed = time.monotonic() - start
        logger.info("AI analysis: %r", text,
                    extra=event_extra("analysis_succeeded", provider=self.kind, file=image_path.name,
                                      elapsed=f"{elapsed:.1f}s"))
        return AnalysisResult(text, True, self.kind, elapsed)

    def test_connection(self) -> ConnectionStatus:
        """Send a minimal text prompt to validate reachability and credentials."""
        try:
            text = self.send_request(CONNECTION_TEST_PROMPT, None, None)
        except ProviderError as e:
            return ConnectionStatus(success=False, error=str(e))
        return ConnectionStatus(
            success=True,
            message=f"{self.kind} connection successful",
            response=text or "Connected",
        )

    # --------------------------------------------------------------------------
    # HTTP helpers
    # --------------------------------------------------------------------------

    def _with_retries(self, call: Callable[[], T]) -> T:
        """Run ``call``, retrying transient failures with exponential backoff."""
        attempt = 0
        while True:
            try:
                return call()
            except ProviderError as e:
                if not e.retryable or attempt >= self.max_retries:
                    raise
                delay = self.retry_delay * (2 ** attempt)
                attempt += 1
                logger.warning("%s request failed (%s), retry %d/%d in %.1fs",
                               self.kind, e, attempt, self.max_retries, delay)
                time.sleep(delay)

    def _post_json(self, url: str, payload: dict, headers: Optional[dict] = None) -> dict:
        """
        POST a JSON payload and return the decoded body.

        Timeouts, refused connections and 5xx responses are retryable;
        4xx responses and malformed bodies are not.
        """
        try:
            response = self.session.post(url, json=payload, headers=headers, timeout=self.timeout)
        except requests.exceptions.Timeout as e:
            raise ProviderError(f"Timeout talking to {self.kind}", retryable=True) from e
        except requests.exceptions.ConnectionError as e:
            raise ProviderError(f"Cannot reach {self.kind} at {url}", retryable=True) from e
        except requests.exceptions.RequestException as e:
            raise ProviderError(f"{self.kind} request failed: {e}") from e

        if response.status_code >= 400:
            raise ProviderError(
                f"{self.kind} API error: {response.status_code} {response.reason}",
                status_code=response.status_code,
                retryable=response.status_code >= 500,
            )

        try:
            return response.json()
        except ValueError as e:
            raise ProviderError(f"{self.kind} returned invalid JSON") from e
