#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
snapname Naming
Turns raw model output into safe, collision-free filenames, and decides
whether a filename already came out of this pipeline.
"""

from __future__ import annotations

import re
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Set

# ==============================================================================
# NAMING CONSTANTS
# ==============================================================================

SEPARATOR = "_"
MAX_STEM_LENGTH = 50
MIN_STEM_LENGTH = 3
GENERIC_TERMS = frozenset({"image", "screenshot"})

# Upper bound for any synthesized stem: 50 chars + separator + 13-digit timestamp
MAX_SYNTHESIZED_LENGTH = MAX_STEM_LENGTH + 1 + 13

FALLBACK_NAME_RE = re.compile(r"^(?:image|screenshot)_\d{13}$")

_UNSAFE_CHARS_RE = re.compile(r"[^\w\s-]", re.ASCII)
_WHITESPACE_RE = re.compile(r"\s+")
_SEPARATOR_RUN_RE = re.compile(r"_+")


@dataclass(frozen=True)
class CandidateName:
    """A cleaned, extension-less filename proposal."""
    stem: str
    extension: str
    is_fallback: bool = False

    @property
    def filename(self) -> str:
        return f"{self.stem}{self.extension}"


# ==============================================================================
# TIMESTAMPS & FALLBACKS
# ==============================================================================

_timestamp_lock = threading.Lock()
_last_timestamp = 0


def timestamp_ms() -> int:
    """Epoch milliseconds, strictly increasing within this process."""
    global _last_timestamp
    with _timestamp_lock:
        now = int(time.time() * 1000)
        if now <= _last_timestamp:
            now = _last_timestamp + 1
        _last_timestamp = now
        return now


def fallback_name(image_path: Path) -> str:
    """Recognizable name used when analysis fails: screenshot_<ms> or image_<ms>."""
    if "screenshot" in image_path.stem.lower():
        return f"screenshot{SEPARATOR}{timestamp_ms()}"
    return f"image{SEPARATOR}{timestamp_ms()}"


def is_fallback_name(stem: str) -> bool:
    return bool(FALLBACK_NAME_RE.match(stem))


# ==============================================================================
# NAME SYNTHESIS
# ==============================================================================

def clean_filename(text: str) -> str:
    """Convert model output to a lowercase, underscore-separated stem (may be empty)."""
    clean = text.lower()
    clean = _UNSAFE_CHARS_RE.sub('', clean)
    clean = _WHITESPACE_RE.sub(SEPARATOR, clean)
    clean = _SEPARATOR_RUN_RE.sub(SEPARATOR, clean)
    clean = clean.strip(SEPARATOR)
    return clean[:MAX_STEM_LENGTH].rstrip(SEPARATOR)


def synthesize_name(text: Optional[str], extension: str) -> CandidateName:
    """
    Build a candidate filename from analyzer text.

    Empty, too short (<3 chars) or generic results ("image", "screenshot")
    become ``<term>_<epoch ms>`` so the user can spot files that degraded.
    The returned stem is never empty and never longer than
    ``MAX_SYNTHESIZED_LENGTH``.
    """
    extension = extension.lower()
    stem = clean_filename(text or "")

    if not stem or len(stem) < MIN_STEM_LENGTH or stem in GENERIC_TERMS:
        return CandidateName(f"{stem or 'image'}{SEPARATOR}{timestamp_ms()}", extension, True)

    return CandidateName(stem, extension, is_fallback_name(stem))


# ==============================================================================
# CONFLICT RESOLUTION
# ==============================================================================

def get_unique_filename(
    base_name: str,
    extension: str,
    destination: Path,
    current: Optional[Path] = None
) -> Path:
    """
    Generate unique filename if file already exists.

    ``current`` is the file being renamed: proposing its own name is not a
    conflict, so a file never gets renamed to ``<name>_2`` of itself.
    Not atomic against a concurrent writer creating the same name.
    """
    filename = destination / f"{base_name}{extension}"
    if not filename.exists() or filename == current:
        return filename
    counter = 2
    while True:
        filename = destination / f"{base_name}{SEPARATOR}{counter}{extension}"
        if not filename.exists() or filename == current:
            return filename
        counter += 1


def get_unique_filename_simulated(
    base_name: str,
    extension: str,
    destination: Path,
    simulated_paths: Set[Path],
    current: Optional[Path] = None
) -> Path:
    """
    Generate unique filename for preview mode.

    Files claimed earlier in the same preview live in ``simulated_paths``;
    files that already exist on disk still count as taken.
    """
    def taken(path: Path) -> bool:
        if path == current:
            return path in simulated_paths
        return path in simulated_paths or path.exists()

    filename = destination / f"{base_name}{extension}"
    if not taken(filename):
        return filename
    counter = 2
    while True:
        filename = destination / f"{base_name}{SEPARATOR}{counter}{extension}"
        if not taken(filename):
            return filename
        counter += 1


# ==============================================================================
# ALREADY-PROCESSED CLASSIFIER
# ==============================================================================

def is_already_processed(stem: str) -> bool:
    """
    Check whether a filename stem already looks AI-generated.

    Fallback names (``image_<13 digits>``) stay eligible so they get
    another attempt. Otherwise a stem needs 3+ underscore parts, of which
    at least 2 are meaningful: 3+ chars, not purely numeric, not generic.
    """
    if is_fallback_name(stem.lower()):
        return False

    parts = stem.split(SEPARATOR)
    if len(parts) < 3:
        return False

    meaningful = [
        part for part in parts
        if len(part) >= 3 and not part.isdigit() and part.lower() not in GENERIC_TERMS
    ]
    return len(meaningful) >= 2
