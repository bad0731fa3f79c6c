from __future__ import annotations
from typing import Optional

from .base import ProviderError, VisionProvider


class GeminiProvider(VisionProvider):
    """
    Remote Gemini vision provider (generativelanguage REST API).
    """

    kind = "gemini"
    timeout = 30
    default_max_retries = 3

    def __init__(self, settings, session=None):
        super().__init__(settings, session)
        self.base_url = (self.config.base_url or "https://generativelanguage.googleapis.com").rstrip("/")
        self.api_key = self.config.api_key

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/v1beta/models/{self.model}:generateContent"

    def send_request(self, prompt: str, image_b64: Optional[str], mime_type: Optional[str]) -> str:
        """
        Sends a generateContent request with the image inlined as base64.
        """
        parts = [{"text": prompt}]
        if image_b64:
            parts.append({"inline_data": {"mime_type": mime_type, "data": image_b64}})

        payload = {
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": {
                "maxOutputTokens": self.config.max_tokens,
                "temperature": self.config.temperature,
            },
        }
        result = self._post_json(self.endpoint, payload, headers={"x-goog-api-key": self.api_key})

        # Gemini format: {"candidates": [{"content": {"parts": [{"text": "..."}]}}]}
        try:
            candidate_parts = result["candidates"][0]["content"]["parts"]
        except (KeyError, IndexError, TypeError) as e:
            raise ProviderError("No response from Gemini") from e
        return "".join(part.get("text", "") for part in candidate_parts)
