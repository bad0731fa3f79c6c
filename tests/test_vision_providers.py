"""Tests for snapname.vision_providers and snapname.vision."""

from __future__ import annotations

import base64
import re
from dataclasses import replace
from unittest.mock import MagicMock

import pytest
import requests

from conftest import FakeProvider, events, make_response
from snapname.config import ConfigError, ProviderConfig, Settings
from snapname.vision import (
    AI_NAMING_PROMPT,
    check_provider_connection,
    encode_image,
    get_mime_type,
)
from snapname.vision_providers import (
    GeminiProvider,
    LMStudioProvider,
    OllamaProvider,
    ProviderConnectionError,
    ProviderError,
    get_provider,
)

FALLBACK = re.compile(r"^(image|screenshot)_\d{13}$")


def lmstudio_ok(text: str):
    return make_response(200, {"choices": [{"message": {"content": text}}]})


def gemini_ok(text: str):
    return make_response(200, {"candidates": [{"content": {"parts": [{"text": text}]}}]})


@pytest.fixture
def session():
    return MagicMock()


@pytest.fixture
def gemini_settings(settings):
    return replace(settings, provider=ProviderConfig.for_kind("gemini", api_key="test-key"))


@pytest.fixture
def ollama_settings(settings):
    return replace(settings, provider=ProviderConfig.for_kind("ollama"))


class TestImageEncoding:
    def test_mime_types(self, tmp_path):
        assert get_mime_type(tmp_path / "a.PNG") == "image/png"
        assert get_mime_type(tmp_path / "a.jpeg") == "image/jpeg"
        assert get_mime_type(tmp_path / "a.webp") == "image/webp"
        assert get_mime_type(tmp_path / "a.bmp") == "image/jpeg"

    def test_encode_image(self, make_image):
        path = make_image("shot.png")
        assert base64.b64decode(encode_image(path)) == path.read_bytes()

    def test_encode_missing_file(self, tmp_path):
        with pytest.raises(OSError):
            encode_image(tmp_path / "missing.png")


class TestProviderFactory:
    def test_builds_configured_kind(self, settings, gemini_settings, ollama_settings, session):
        assert isinstance(get_provider(settings, session), LMStudioProvider)
        assert isinstance(get_provider(gemini_settings, session), GeminiProvider)
        assert isinstance(get_provider(ollama_settings, session), OllamaProvider)

    def test_unknown_kind(self, settings):
        bogus = replace(settings, provider=ProviderConfig(kind="bogus", model="m", base_url="http://x"))
        with pytest.raises(ConfigError):
            get_provider(bogus)

    def test_gemini_requires_api_key(self, settings):
        with pytest.raises(ConfigError):
            get_provider(replace(settings, provider=ProviderConfig.for_kind("gemini")))


class TestLMStudioProvider:
    def test_analyze_success(self, settings, session, make_image):
        session.post.return_value = lmstudio_ok("login_screen")
        provider = LMStudioProvider(settings, session)

        result = provider.analyze(make_image("shot.png"))

        assert result.success
        assert result.text == "login_screen"
        assert result.provider == "lmstudio"
        url = session.post.call_args.args[0]
        payload = session.post.call_args.kwargs["json"]
        assert url == "http://localhost:1234/v1/chat/completions"
        assert payload["model"] == "lmstudio-community/gemma-3-4b-it-qat"
        content = payload["messages"][0]["content"]
        assert content[0]["text"] == AI_NAMING_PROMPT
        assert content[1]["image_url"]["url"].startswith("data:image/png;base64,")

    def test_retries_server_errors(self, settings, session, make_image):
        session.post.side_effect = [make_response(503), make_response(500), lmstudio_ok("error_dialog")]
        provider = LMStudioProvider(settings, session)

        result = provider.analyze(make_image("shot.png"))

        assert result.success
        assert result.text == "error_dialog"
        assert session.post.call_count == 3

    def test_retries_connection_errors(self, settings, session, make_image):
        session.post.side_effect = [requests.exceptions.ConnectionError("refused"), lmstudio_ok("menu_bar")]
        result = LMStudioProvider(settings, session).analyze(make_image("shot.png"))
        assert result.text == "menu_bar"
        assert session.post.call_count == 2

    def test_client_error_not_retried(self, settings, session, make_image):
        session.post.return_value = make_response(401)
        result = LMStudioProvider(settings, session).analyze(make_image("photo.png"))

        assert not result.success
        assert session.post.call_count == 1
        assert re.match(r"^image_\d{13}$", result.text)

    def test_max_retries_override(self, settings, session, make_image):
        session.post.return_value = make_response(500)
        provider = LMStudioProvider(replace(settings, max_retries=0), session)
        provider.analyze(make_image("shot.png"))
        assert session.post.call_count == 1

    def test_malformed_response_falls_back(self, settings, session, make_image):
        session.post.return_value = make_response(200, {"unexpected": True})
        result = LMStudioProvider(settings, session).analyze(make_image("Screenshot 1.png"))
        assert not result.success
        assert re.match(r"^screenshot_\d{13}$", result.text)

    def test_unreadable_file_falls_back(self, settings, session, tmp_path):
        result = LMStudioProvider(settings, session).analyze(tmp_path / "gone.png")
        assert not result.success
        assert FALLBACK.match(result.text)
        session.post.assert_not_called()

    def test_failure_is_logged(self, settings, session, make_image, caplog):
        caplog.set_level("DEBUG", logger="snapname")
        session.post.return_value = make_response(400)
        LMStudioProvider(settings, session).analyze(make_image("shot.png"))
        assert len(events(caplog, "analysis_started")) == 1
        assert len(events(caplog, "analysis_failed")) == 1

    def test_connection_test(self, settings, session):
        session.post.return_value = lmstudio_ok("API working")
        status = LMStudioProvider(settings, session).test_connection()
        assert status.success
        assert status.response == "API working"
        assert session.post.call_args.kwargs["json"]["max_tokens"] == 10


class TestGeminiProvider:
    def test_request_shape(self, gemini_settings, session, make_image):
        session.post.return_value = gemini_ok("settings_page")
        provider = GeminiProvider(gemini_settings, session)

        result = provider.analyze(make_image("shot.jpg"))

        assert result.text == "settings_page"
        url = session.post.call_args.args[0]
        kwargs = session.post.call_args.kwargs
        assert url.endswith("/v1beta/models/gemini-2.0-flash:generateContent")
        assert kwargs["headers"] == {"x-goog-api-key": "test-key"}
        parts = kwargs["json"]["contents"][0]["parts"]
        assert parts[1]["inline_data"]["mime_type"] == "image/jpeg"
        assert kwargs["json"]["generationConfig"]["maxOutputTokens"] == 50

    def test_retries_up_to_three_times(self, gemini_settings, session, make_image):
        session.post.return_value = make_response(500)
        result = GeminiProvider(gemini_settings, session).analyze(make_image("shot.png"))

        assert session.post.call_count == 4
        assert not result.success
        assert FALLBACK.match(result.text)

    def test_timeout_is_retryable(self, gemini_settings, session, make_image):
        session.post.side_effect = [requests.exceptions.Timeout(), gemini_ok("chart")]
        result = GeminiProvider(gemini_settings, session).analyze(make_image("shot.png"))
        assert result.text == "chart"


class TestOllamaProvider:
    def test_generate_request(self, ollama_settings, session, make_image):
        session.post.return_value = make_response(200, {"response": "terminal_window"})
        result = OllamaProvider(ollama_settings, session).analyze(make_image("shot.png"))

        assert result.text == "terminal_window"
        url = session.post.call_args.args[0]
        payload = session.post.call_args.kwargs["json"]
        assert url == "http://localhost:11434/api/generate"
        assert payload["model"] == "gemma3:4b"
        assert payload["stream"] is False
        assert len(payload["images"]) == 1
        assert payload["options"]["temperature"] == 0.3

    def test_empty_response_falls_back(self, ollama_settings, session, make_image):
        session.post.return_value = make_response(200, {"response": ""})
        result = OllamaProvider(ollama_settings, session).analyze(make_image("shot.png"))
        assert not result.success
        assert session.post.call_count == 1

    def test_ensure_model_present(self, ollama_settings, session):
        session.get.return_value = make_response(200, {"models": [{"name": "gemma3:4b"}]})
        provider = OllamaProvider(ollama_settings, session)

        assert provider.has_model()
        assert provider.ensure_model()
        session.post.assert_not_called()

    def test_ensure_model_pulls_missing(self, ollama_settings, session):
        session.get.return_value = make_response(200, {"models": [{"name": "llava:7b"}]})
        session.post.return_value = make_response(200, {"status": "success"})
        provider = OllamaProvider(ollama_settings, session)

        assert provider.ensure_model()
        assert session.post.call_args.args[0] == "http://localhost:11434/api/pull"
        assert session.post.call_args.kwargs["json"] == {"model": "gemma3:4b", "stream": False}

    def test_list_models_on_error(self, ollama_settings, session):
        session.get.side_effect = requests.exceptions.ConnectionError()
        assert OllamaProvider(ollama_settings, session).list_models() == []


class TestConnectionCheck:
    def test_passes(self, settings):
        check_provider_connection(FakeProvider(settings, reply="API working"))

    def test_failure_raises(self, settings):
        provider = FakeProvider(settings, reply=ProviderError("unauthorized", status_code=401))
        with pytest.raises(ProviderConnectionError):
            check_provider_connection(provider)
