#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
snapname Configuration
Settings snapshot, defaults, and configuration file loading.

The pipeline never reads the config file itself: it is handed an immutable
``Settings`` snapshot built by ``load_settings()``.
"""

from __future__ import annotations

import os
import configparser
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Optional, Dict, Any

# ==============================================================================
# CONFIGURATION CONSTANTS
# ==============================================================================

# --- Provider Settings ---
PROVIDER_GEMINI = "gemini"
PROVIDER_LMSTUDIO = "lmstudio"
PROVIDER_OLLAMA = "ollama"
PROVIDER_KINDS = (PROVIDER_GEMINI, PROVIDER_LMSTUDIO, PROVIDER_OLLAMA)
DEFAULT_PROVIDER = PROVIDER_LMSTUDIO

PROVIDER_DEFAULTS: Dict[str, Dict[str, Any]] = {
    PROVIDER_GEMINI: {
        'base_url': "https://generativelanguage.googleapis.com",
        'model': "gemini-2.0-flash",
        'max_tokens': 50,
        'temperature': 0.1,
    },
    PROVIDER_LMSTUDIO: {
        'base_url': "http://localhost:1234",
        'model': "lmstudio-community/gemma-3-4b-it-qat",
        'max_tokens': 50,
        'temperature': 0.1,
    },
    PROVIDER_OLLAMA: {
        'base_url': "http://localhost:11434",
        'model': "gemma3:4b",
        'max_tokens': 50,
        'temperature': 0.3,
    },
}

# --- Path Settings ---
CONFIG_FILE_PATH = Path.home() / ".snapname.conf"
DEFAULT_WATCH_FOLDER = Path.home() / "Desktop"

# --- File Processing Settings ---
SUPPORTED_EXTENSIONS = frozenset({'.png', '.jpg', '.jpeg', '.gif', '.webp'})

# --- Watcher Timing (seconds) ---
DEBOUNCE_DELAY = 0.5
STABILITY_THRESHOLD = 1.0
POLL_INTERVAL = 0.1

# --- Retry Settings ---
MAX_RETRIES_LIMIT = 5
DEFAULT_RETRY_DELAY = 1.0

# --- Clipboard ---
CLIPBOARD_HELPER_NAME = "snapname-copy-helper"
CLIPBOARD_TIMEOUT = 10

DEFAULT_LOG_LEVEL = "info"
LOG_LEVELS = ("debug", "info", "warning", "error")


class ConfigError(ValueError):
    """Raised for configuration problems that must stop the process before any work starts."""


# ==============================================================================
# SETTINGS SNAPSHOT
# ==============================================================================

@dataclass(frozen=True)
class ProviderConfig:
    """Which vision backend to use and how to reach it."""
    kind: str = DEFAULT_PROVIDER
    base_url: Optional[str] = None
    model: Optional[str] = None
    api_key: Optional[str] = None
    max_tokens: int = 50
    temperature: float = 0.1

    @classmethod
    def for_kind(cls, kind: str, **overrides: Any) -> "ProviderConfig":
        """Build a config for ``kind`` with its defaults, then apply non-None overrides."""
        kind = (kind or DEFAULT_PROVIDER).lower()
        values = dict(PROVIDER_DEFAULTS.get(kind, {}))
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(kind=kind, **values)


@dataclass(frozen=True)
class Settings:
    """Immutable configuration snapshot consumed by the watcher and batch pipelines."""
    watch_folder: Path = DEFAULT_WATCH_FOLDER
    provider: ProviderConfig = field(default_factory=lambda: ProviderConfig.for_kind(DEFAULT_PROVIDER))
    copy_to_clipboard: bool = True
    max_retries: Optional[int] = None
    retry_delay: float = DEFAULT_RETRY_DELAY
    log_level: str = DEFAULT_LOG_LEVEL
    clipboard_helper: Optional[Path] = None

    def with_provider(self, **changes: Any) -> "Settings":
        return replace(self, provider=replace(self.provider, **changes))


def validate_settings(settings: Settings) -> Settings:
    """
    Check the fields the pipeline depends on.

    Raises:
        ConfigError: on an unknown provider, a missing required field, or a bad limit
    """
    provider = settings.provider
    if provider.kind not in PROVIDER_KINDS:
        raise ConfigError(
            f"Unknown AI provider: {provider.kind!r} (expected one of {', '.join(PROVIDER_KINDS)})"
        )
    if provider.kind == PROVIDER_GEMINI and not provider.api_key:
        raise ConfigError("Gemini API key is required (set SNAPNAME_API_KEY or GEMINI_API_KEY)")
    if not provider.model:
        raise ConfigError(f"A model name is required for provider {provider.kind!r}")
    if provider.kind != PROVIDER_GEMINI and not provider.base_url:
        raise ConfigError(f"A base URL is required for provider {provider.kind!r}")
    if settings.max_retries is not None and not 0 <= settings.max_retries <= MAX_RETRIES_LIMIT:
        raise ConfigError(f"max_retries must be between 0 and {MAX_RETRIES_LIMIT}")
    if settings.retry_delay < 0:
        raise ConfigError("retry_delay must not be negative")
    if settings.log_level not in LOG_LEVELS:
        raise ConfigError(f"Unknown log level: {settings.log_level!r}")
    return settings


# ==============================================================================
# CONFIGURATION FILE MANAGEMENT
# ==============================================================================

def _env_bool(name: str, fallback: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return fallback
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def load_settings(config_path: Optional[Path] = None) -> Settings:
    """
    Load settings from ~/.snapname.conf with fallback defaults.

    Priority: Env Vars > Config File > Defaults

    Returns:
        A validated Settings snapshot

    Raises:
        ConfigError: if the resulting settings are unusable
    """
    path = config_path or CONFIG_FILE_PATH
    parser = configparser.ConfigParser()

    if path.exists():
        try:
            parser.read(path)
        except configparser.Error as e:
            raise ConfigError(f"Could not parse {path}: {e}") from e

    kind = os.environ.get(
        'SNAPNAME_PROVIDER',
        parser.get('api', 'provider', fallback=DEFAULT_PROVIDER)
    ).lower()

    # Provider-specific section, e.g. [ollama], holds that backend's connection fields
    api_key = os.environ.get('SNAPNAME_API_KEY') or os.environ.get('GEMINI_API_KEY') \
        or parser.get(kind, 'api_key', fallback=None)
    max_tokens = parser.get(kind, 'max_tokens', fallback=None)
    temperature = parser.get(kind, 'temperature', fallback=None)

    try:
        provider = ProviderConfig.for_kind(
            kind,
            base_url=os.environ.get('SNAPNAME_BASE_URL', parser.get(kind, 'base_url', fallback=None)),
            model=os.environ.get('SNAPNAME_MODEL', parser.get(kind, 'model', fallback=None)),
            api_key=api_key,
            max_tokens=int(max_tokens) if max_tokens is not None else None,
            temperature=float(temperature) if temperature is not None else None,
        )
        max_retries = parser.get('behavior', 'max_retries', fallback=None)
        settings = Settings(
            watch_folder=Path(os.environ.get(
                'SNAPNAME_WATCH_FOLDER',
                parser.get('behavior', 'watch_folder', fallback=str(DEFAULT_WATCH_FOLDER))
            )).expanduser(),
            provider=provider,
            copy_to_clipboard=_env_bool(
                'SNAPNAME_CLIPBOARD',
                parser.getboolean('behavior', 'copy_to_clipboard', fallback=True)
            ),
            max_retries=int(max_retries) if max_retries is not None else None,
            retry_delay=parser.getfloat('behavior', 'retry_delay', fallback=DEFAULT_RETRY_DELAY),
            log_level=os.environ.get(
                'SNAPNAME_LOG_LEVEL',
                parser.get('behavior', 'log_level', fallback=DEFAULT_LOG_LEVEL)
            ).lower(),
            clipboard_helper=_optional_path(parser.get('clipboard', 'helper_path', fallback=None)),
        )
    except ValueError as e:
        raise ConfigError(f"Invalid value in configuration: {e}") from e

    return validate_settings(settings)


def _optional_path(value: Optional[str]) -> Optional[Path]:
    return Path(value).expanduser() if value else None
