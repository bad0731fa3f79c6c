from __future__ import annotations
from typing import Dict, Optional, Type

import requests

from ..config import ConfigError, Settings, validate_settings
from .base import (
    AnalysisResult,
    ConnectionStatus,
    ProviderConnectionError,
    ProviderError,
    VisionProvider,
)
from .gemini import GeminiProvider
from .ollama import OllamaProvider
from .openai_compat import LMStudioProvider

PROVIDERS: Dict[str, Type[VisionProvider]] = {
    GeminiProvider.kind: GeminiProvider,
    LMStudioProvider.kind: LMStudioProvider,
    OllamaProvider.kind: OllamaProvider,
}


def get_provider(settings: Settings, session: Optional[requests.Session] = None) -> VisionProvider:
    """
    Factory function to get the vision provider selected by the settings snapshot.

    Raises:
        ConfigError: for an unknown provider kind or a missing required field
    """
    provider_cls = PROVIDERS.get(settings.provider.kind)
    if provider_cls is None:
        raise ConfigError(f"Unknown AI provider: {settings.provider.kind!r}")
    validate_settings(settings)
    return provider_cls(settings, session=session)


__all__ = [
    "AnalysisResult",
    "ConnectionStatus",
    "GeminiProvider",
    "LMStudioProvider",
    "OllamaProvider",
    "PROVIDERS",
    "ProviderConnectionError",
    "ProviderError",
    "VisionProvider",
    "get_provider",
]
