"""Tests for snapname.cli."""

from __future__ import annotations

import json
from unittest.mock import MagicMock, patch

from snapname.cli import _reload, build_parser, main


def run(args, tmp_path):
    return main(["--config", str(tmp_path / "missing.conf"), *args])


class TestParser:
    def test_batch_defaults(self):
        args = build_parser().parse_args(["batch", "shots"])
        assert not args.apply
        assert not args.analyze
        assert args.format == "{description}"


class TestBatchCommand:
    def test_preview_leaves_files(self, tmp_path, make_image):
        folder = tmp_path / "shots"
        make_image("Screenshot 1.png", folder)
        make_image("login_page.png", folder)

        assert run(["batch", str(folder)], tmp_path) == 0
        assert sorted(p.name for p in folder.iterdir()) == ["Screenshot 1.png", "login_page.png"]

    def test_preview_export(self, tmp_path, make_image):
        folder = tmp_path / "shots"
        make_image("Screenshot 1.png", folder)
        output = tmp_path / "preview.json"

        assert run(["batch", str(folder), "--export", str(output), "--compact"], tmp_path) == 0

        data = json.loads(output.read_text())
        assert data["changes"][0]["final_name"] == "application_screenshot_interface.png"

    def test_missing_folder(self, tmp_path):
        assert run(["batch", str(tmp_path / "nope")], tmp_path) == 1


class TestConfigErrors:
    def test_bad_config_exits_nonzero(self, tmp_path):
        with patch.dict("os.environ", {"SNAPNAME_PROVIDER": "gemini"}):
            assert run(["test"], tmp_path) == 1

    def test_models_needs_ollama(self, tmp_path):
        assert run(["models"], tmp_path) == 1

    def test_models_rejects_non_ollama_backend(self, tmp_path):
        with patch("snapname.cli.get_provider", return_value=MagicMock(kind="lmstudio")):
            assert run(["--provider", "ollama", "models"], tmp_path) == 1


class TestReload:
    def test_command_line_overrides_survive(self, tmp_path):
        other = tmp_path / "elsewhere"
        args = build_parser().parse_args([
            "--config", str(tmp_path / "missing.conf"),
            "--model", "moondream",
            "watch", "--folder", str(other), "--no-clipboard",
        ])
        watcher = MagicMock()

        with patch("snapname.cli.setup_logging"):
            _reload(watcher, args)

        reloaded = watcher.reload_config.call_args.args[0]
        assert reloaded.watch_folder == other
        assert reloaded.copy_to_clipboard is False
        assert reloaded.provider.model == "moondream"

    def test_bad_config_keeps_watcher(self, tmp_path):
        config = tmp_path / "broken.conf"
        config.write_text("this is not ini")
        args = build_parser().parse_args(["--config", str(config), "watch"])
        watcher = MagicMock()

        _reload(watcher, args)

        watcher.reload_config.assert_not_called()
