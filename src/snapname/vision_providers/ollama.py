from __future__ import annotations
import logging
from typing import List, Optional

import requests

from ..logs import event_extra
from .base import ProviderError, VisionProvider

logger = logging.getLogger(__name__)

PULL_TIMEOUT = 3600


class OllamaProvider(VisionProvider):
    """
    Ollama-specific vision provider implementation.

    Besides analysis it exposes model management (list / check / pull),
    which is only used during setup.
    """

    kind = "ollama"
    timeout = 120
    default_max_retries = 2

    def __init__(self, settings, session=None):
        super().__init__(settings, session)
        self.base_url = (self.config.base_url or "http://localhost:11434").rstrip("/")

    def send_request(self, prompt: str, image_b64: Optional[str], mime_type: Optional[str]) -> str:
        """
        Sends a request to Ollama's /api/generate endpoint.
        """
        payload = {
            "model": self.model,
            "prompt": prompt,
            "stream": False,
            "options": {
                "temperature": self.config.temperature if image_b64 else 0.1,
                "num_predict": self.config.max_tokens if image_b64 else 10,
            },
        }
        if image_b64:
            payload["images"] = [image_b64]

        result = self._post_json(f"{self.base_url}/api/generate", payload)

        # Ollama /api/generate format: {"response": "..."}
        text = result.get("response") if isinstance(result, dict) else None
        if not text:
            raise ProviderError("No response from Ollama")
        return text

    def list_models(self) -> List[str]:
        """Names of the models available in the local daemon (empty on error)."""
        try:
            response = self.session.get(f"{self.base_url}/api/tags", timeout=10)
            response.raise_for_status()
            return [model["name"] for model in response.json().get("models", [])]
        except (requests.exceptions.RequestException, ValueError, KeyError) as e:
            logger.error("Error listing Ollama models: %s", e)
            return []

    def has_model(self, model_name: Optional[str] = None) -> bool:
        target = model_name or self.model
        return any(name == target or name.startswith(target) for name in self.list_models())

    def ensure_model(self, model_name: Optional[str] = None) -> bool:
        """Make sure ``model_name`` is resident, pulling it if absent."""
        target = model_name or self.model
        if self.has_model(target):
            logger.info("Model %s is available", target)
            return True

        logger.info("Pulling model %s...", target, extra=event_extra("model_pull", model=target))
        try:
            response = self.session.post(
                f"{self.base_url}/api/pull",
                json={"model": target, "stream": False},
                timeout=PULL_TIMEOUT,
            )
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            logger.error("Error pulling model %s: %s", target, e)
            return False

        logger.info("Model %s pulled successfully", target)
        return True
