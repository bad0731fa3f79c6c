"""Shared test fixtures for snapname."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, List, Optional
from unittest.mock import MagicMock

import pytest
from PIL import Image

from snapname.config import ProviderConfig, Settings
from snapname.logs import LOGGER_NAME
from snapname.vision_providers import VisionProvider


class FakeProvider(VisionProvider):
    """Provider whose reply is scripted by the test; records every prompt it sees."""

    kind = "fake"

    def __init__(self, settings: Settings, reply="login screen"):
        super().__init__(settings, session=MagicMock())
        self.reply = reply
        self.calls: List[Optional[str]] = []

    def send_request(self, prompt, image_b64, mime_type):
        self.calls.append(mime_type)
        if isinstance(self.reply, Exception):
            raise self.reply
        if callable(self.reply):
            return self.reply(prompt, image_b64, mime_type)
        return self.reply

    @property
    def image_calls(self) -> int:
        return sum(1 for mime in self.calls if mime is not None)


@pytest.fixture(autouse=True)
def _reset_package_logger():
    yield
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in (
        "SNAPNAME_WATCH_FOLDER",
        "SNAPNAME_PROVIDER",
        "SNAPNAME_BASE_URL",
        "SNAPNAME_MODEL",
        "SNAPNAME_API_KEY",
        "SNAPNAME_LOG_LEVEL",
        "SNAPNAME_CLIPBOARD",
        "GEMINI_API_KEY",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        watch_folder=tmp_path,
        provider=ProviderConfig.for_kind("lmstudio"),
        copy_to_clipboard=False,
        retry_delay=0,
    )


@pytest.fixture
def fake_provider(settings: Settings) -> FakeProvider:
    return FakeProvider(settings)


@pytest.fixture
def make_image(tmp_path: Path) -> Callable[..., Path]:
    """Write a real 200x200 image file and return its path."""

    def _make(name: str, folder: Optional[Path] = None, color=(30, 120, 200)) -> Path:
        path = (folder or tmp_path) / name
        path.parent.mkdir(parents=True, exist_ok=True)
        fmt = {".jpg": "JPEG", ".jpeg": "JPEG", ".gif": "GIF", ".webp": "WEBP"}.get(
            path.suffix.lower(), "PNG"
        )
        Image.new("RGB", (200, 200), color).save(path, fmt)
        return path

    return _make


def make_response(status: int = 200, payload=None) -> MagicMock:
    response = MagicMock()
    response.status_code = status
    response.reason = "OK" if status < 400 else "Error"
    response.json.return_value = payload if payload is not None else {}
    return response


def events(caplog, name: str) -> list:
    return [r for r in caplog.records if getattr(r, "event", None) == name]
