from __future__ import annotations
from typing import Optional

from .base import ProviderError, VisionProvider


class LMStudioProvider(VisionProvider):
    """
    LM Studio vision provider, via its OpenAI-compatible chat completions endpoint.
    Also works with llama.cpp, vLLM, LocalAI, etc.
    """

    kind = "lmstudio"
    timeout = 60
    default_max_retries = 2

    def __init__(self, settings, session=None):
        super().__init__(settings, session)
        self.base_url = (self.config.base_url or "http://localhost:1234").rstrip("/")

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/v1/chat/completions"

    def send_request(self, prompt: str, image_b64: Optional[str], mime_type: Optional[str]) -> str:
        """
        Sends a chat completion with the image attached as a data URL.
        """
        if image_b64:
            content = [
                {"type": "text", "text": prompt},
                {"type": "image_url", "image_url": {"url": f"data:{mime_type};base64,{image_b64}"}},
            ]
            payload = {
                "model": self.model,
                "messages": [{"role": "user", "content": content}],
                "max_tokens": self.config.max_tokens,
                "temperature": self.config.temperature,
                "top_p": 0.8,
                "frequency_penalty": 0.1,
                "presence_penalty": 0.1,
                "stop": ["\n", ".", "!"],
                "stream": False,
            }
        else:
            payload = {
                "model": self.model,
                "messages": [{"role": "user", "content": prompt}],
                "max_tokens": 10,
                "temperature": 0.1,
                "stream": False,
            }

        result = self._post_json(self.endpoint, payload)

        # OpenAI format: {"choices": [{"message": {"content": "..."}}]}
        try:
            return result['choices'][0]['message']['content'] or ""
        except (KeyError, IndexError, TypeError) as e:
            raise ProviderError("No response from LM Studio") from e
