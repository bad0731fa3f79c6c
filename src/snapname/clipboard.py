#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
snapname Clipboard
Publishes a renamed image onto the system pasteboard.

Write strategies are tried in priority order until one succeeds:

1. Native helper     - compiled helper binary, keeps filename metadata
2. Finder automation - AppleScript copy of the selected file, falling back
                       to reading the file as typed clipboard data
3. pbcopy            - raw bytes piped in with a format hint

Every strategy runs under its own timeout. A failing strategy is logged at
debug level and the next one is tried; only total exhaustion is reported.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple

from .config import CLIPBOARD_HELPER_NAME, CLIPBOARD_TIMEOUT
from .logs import event_extra

logger = logging.getLogger(__name__)

Strategy = Callable[[Path], bool]

# AppleScript four-char clipboard classes
APPLESCRIPT_IMAGE_CLASSES = {
    '.png': 'PNGf',
    '.jpg': 'JPEG',
    '.jpeg': 'JPEG',
    '.gif': 'GIFf',
}

# Uniform type identifiers for pbcopy -Prefer
PASTEBOARD_TYPES = {
    '.png': 'public.png',
    '.jpg': 'public.jpeg',
    '.jpeg': 'public.jpeg',
    '.gif': 'public.gif',
}


@dataclass(frozen=True)
class ClipboardAttempt:
    strategy: str
    success: bool
    elapsed: float
    error: Optional[str] = None


@dataclass
class ClipboardResult:
    success: bool
    strategy: Optional[str] = None
    attempts: List[ClipboardAttempt] = field(default_factory=list)


# ==============================================================================
# HELPERS
# ==============================================================================

def _applescript_string(value: str) -> str:
    """Quote a value as an AppleScript string literal."""
    return '"' + value.replace('\\', '\\\\').replace('"', '\\"') + '"'


def run_applescript(script: str, timeout: int = CLIPBOARD_TIMEOUT) -> str:
    """
    Execute AppleScript code.

    Raises:
        subprocess.CalledProcessError, subprocess.TimeoutExpired, FileNotFoundError
    """
    result = subprocess.run(
        ['osascript', '-e', script],
        capture_output=True, text=True, check=True, timeout=timeout
    )
    return result.stdout


# ==============================================================================
# CLIPBOARD PUBLISHER
# ==============================================================================

class ClipboardPublisher:
    """
    Chain of clipboard write strategies.

    Usage:
        publisher = ClipboardPublisher(helper_path=settings.clipboard_helper)
        result = publisher.publish(Path("~/Desktop/login_screen.png"))
    """

    def __init__(
        self,
        helper_path: Optional[Path] = None,
        strategies: Optional[Sequence[Tuple[str, Strategy]]] = None,
        timeout: int = CLIPBOARD_TIMEOUT
    ):
        self.helper_path = helper_path
        self.timeout = timeout
        if strategies is None:
            strategies = [
                ('native helper', self.copy_with_helper),
                ('finder automation', self.copy_with_applescript),
                ('pbcopy', self.copy_with_pbcopy),
            ]
        self.strategies: List[Tuple[str, Strategy]] = list(strategies)

    def publish(self, image_path: Path) -> ClipboardResult:
        """
        Put ``image_path`` on the clipboard using the first strategy that works.

        Never raises; check ``result.success``.
        """
        result = ClipboardResult(success=False)

        if not image_path.exists():
            logger.warning("Cannot copy missing file to clipboard: %s", image_path,
                           extra=event_extra("clipboard_failed", file=str(image_path)))
            return result

        for name, strategy in self.strategies:
            start = time.monotonic()
            error = None
            try:
                success = bool(strategy(image_path))
            except Exception as e:
                success = False
                error = str(e)

            attempt = ClipboardAttempt(name, success, time.monotonic() - start, error)
            result.attempts.append(attempt)
            logger.debug("Clipboard strategy %s %s", name, "succeeded" if success else "failed",
                         extra=event_extra("clipboard_attempt", strategy=name, success=success,
                                           elapsed=f"{attempt.elapsed * 1000:.0f}ms", error=error))
            if success:
                result.success = True
                result.strategy = name
                logger.info("Image copied to clipboard using %s", name,
                            extra=event_extra("clipboard_published", strategy=name, file=image_path.name))
                return result

        logger.warning("All clipboard copy methods failed for %s", image_path.name,
                       extra=event_extra("clipboard_failed", file=image_path.name,
                                         methods_tried=len(result.attempts)))
        return result

    # --------------------------------------------------------------------------
    # Strategies
    # --------------------------------------------------------------------------

    def find_helper(self) -> Optional[Path]:
        if self.helper_path:
            return self.helper_path if self.helper_path.exists() else None
        found = shutil.which(CLIPBOARD_HELPER_NAME)
        return Path(found) if found else None

    def copy_with_helper(self, image_path: Path) -> bool:
        """Native helper: exit code 0 means success, output is advisory."""
        helper = self.find_helper()
        if helper is None:
            logger.debug("Clipboard helper %s not found", CLIPBOARD_HELPER_NAME)
            return False
        result = subprocess.run(
            [str(helper), str(image_path.resolve())],
            capture_output=True, timeout=self.timeout
        )
        return result.returncode == 0

    def copy_with_applescript(self, image_path: Path) -> bool:
        """Finder UI automation, falling back to typed clipboard data."""
        posix_path = _applescript_string(str(image_path.resolve()))

        # Method 1: select in Finder and press Cmd-C (preserves filename)
        script = f"""
            tell application "Finder"
              reveal (POSIX file {posix_path} as alias)
              activate
            end tell
            delay 0.2
            tell application "System Events"
              keystroke "c" using command down
            end tell
            delay 0.1
        """
        try:
            run_applescript(script, timeout=self.timeout)
            return True
        except (OSError, subprocess.SubprocessError) as e:
            logger.debug("Finder UI automation failed: %s", e)

        # Method 2: read the file as image data
        image_class = APPLESCRIPT_IMAGE_CLASSES.get(image_path.suffix.lower(), 'PNGf')
        fallback_script = f"""
            tell application "System Events"
              set the clipboard to (read file POSIX file {posix_path} as «class {image_class}»)
            end tell
        """
        run_applescript(fallback_script, timeout=self.timeout)
        return True

    def copy_with_pbcopy(self, image_path: Path) -> bool:
        """Pipe raw bytes into pbcopy with a format hint."""
        uti = PASTEBOARD_TYPES.get(image_path.suffix.lower(), 'public.png')
        subprocess.run(
            ['pbcopy', '-Prefer', uti],
            input=image_path.read_bytes(), capture_output=True, check=True, timeout=self.timeout
        )
        return True

    # --------------------------------------------------------------------------
    # Diagnostics
    # --------------------------------------------------------------------------

    def test_clipboard(self) -> Tuple[bool, str]:
        """Round-trip a test string through pbcopy/pbpaste."""
        try:
            subprocess.run(['pbcopy'], input=b"test", check=True, timeout=self.timeout)
            pasted = subprocess.run(
                ['pbpaste'], capture_output=True, text=True, check=True, timeout=self.timeout
            ).stdout
        except (OSError, subprocess.SubprocessError) as e:
            return False, str(e)
        if pasted.strip() == "test":
            return True, "Clipboard functionality working"
        return False, "Clipboard test failed"
