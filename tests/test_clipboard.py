"""Tests for snapname.clipboard."""

from __future__ import annotations

import subprocess
from unittest.mock import MagicMock, patch

from conftest import events
from snapname.clipboard import ClipboardPublisher, _applescript_string


def strategy(result=True, error=None):
    mock = MagicMock(return_value=result)
    if error is not None:
        mock.side_effect = error
    return mock


class TestPublish:
    def test_falls_through_to_first_success(self, make_image, caplog):
        caplog.set_level("DEBUG", logger="snapname")
        first = strategy(False)
        second = strategy(error=subprocess.TimeoutExpired("osascript", 10))
        third = strategy(True)
        fourth = strategy(True)
        publisher = ClipboardPublisher(strategies=[
            ("first", first), ("second", second), ("third", third), ("fourth", fourth),
        ])

        result = publisher.publish(make_image("login_screen.png"))

        assert result.success
        assert result.strategy == "third"
        assert [a.strategy for a in result.attempts] == ["first", "second", "third"]
        assert result.attempts[1].error
        fourth.assert_not_called()
        assert len(events(caplog, "clipboard_attempt")) == 3
        assert len(events(caplog, "clipboard_published")) == 1

    def test_all_strategies_fail(self, make_image, caplog):
        caplog.set_level("DEBUG", logger="snapname")
        publisher = ClipboardPublisher(strategies=[
            ("a", strategy(False)), ("b", strategy(error=OSError("no pbcopy"))),
        ])

        result = publisher.publish(make_image("x.png"))

        assert not result.success
        assert result.strategy is None
        assert len(result.attempts) == 2
        failed = events(caplog, "clipboard_failed")
        assert len(failed) == 1
        assert failed[0].levelname == "WARNING"

    def test_missing_file(self, tmp_path):
        only = strategy(True)
        result = ClipboardPublisher(strategies=[("only", only)]).publish(tmp_path / "gone.png")
        assert not result.success
        only.assert_not_called()


class TestStrategies:
    def test_helper_missing(self, tmp_path, make_image):
        publisher = ClipboardPublisher(helper_path=tmp_path / "no-such-helper")
        assert publisher.find_helper() is None
        assert publisher.copy_with_helper(make_image("x.png")) is False

    def test_helper_exit_code(self, tmp_path, make_image):
        helper = tmp_path / "helper"
        helper.touch()
        publisher = ClipboardPublisher(helper_path=helper)
        with patch("snapname.clipboard.subprocess.run") as run:
            run.return_value = MagicMock(returncode=0)
            assert publisher.copy_with_helper(make_image("x.png"))
            run.return_value = MagicMock(returncode=1)
            assert not publisher.copy_with_helper(make_image("y.png"))
        assert run.call_args.args[0][0] == str(helper)

    def test_applescript_falls_back_to_typed_data(self, make_image):
        with patch("snapname.clipboard.run_applescript") as run:
            run.side_effect = [subprocess.CalledProcessError(1, "osascript"), ""]
            assert ClipboardPublisher().copy_with_applescript(make_image("x.jpg"))
        assert run.call_count == 2
        assert "«class JPEG»" in run.call_args.args[0]

    def test_pbcopy_format_hint(self, make_image):
        path = make_image("x.png")
        with patch("snapname.clipboard.subprocess.run") as run:
            assert ClipboardPublisher().copy_with_pbcopy(path)
        assert run.call_args.args[0] == ["pbcopy", "-Prefer", "public.png"]
        assert run.call_args.kwargs["input"] == path.read_bytes()

    def test_applescript_quoting(self):
        assert _applescript_string('a "b" \\c') == '"a \\"b\\" \\\\c"'


class TestClipboardSelfTest:
    def test_round_trip(self):
        with patch("snapname.clipboard.subprocess.run") as run:
            run.side_effect = [MagicMock(), MagicMock(stdout="test\n")]
            ok, message = ClipboardPublisher().test_clipboard()
        assert ok
        assert "working" in message

    def test_no_pasteboard(self):
        with patch("snapname.clipboard.subprocess.run", side_effect=FileNotFoundError("pbcopy")):
            ok, _ = ClipboardPublisher().test_clipboard()
        assert not ok
