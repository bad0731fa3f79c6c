#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
snapname Security
SHA256 integrity verification for copied files.
"""

from __future__ import annotations

import hashlib
import logging
import shutil
from pathlib import Path

logger = logging.getLogger(__name__)


def calculate_sha256(file_path: Path) -> str:
    """
    Calculate SHA256 hash of a file.

    Raises:
        OSError: if the file cannot be read
    """
    sha256_hash = hashlib.sha256()
    with open(file_path, "rb") as f:
        for byte_block in iter(lambda: f.read(65536), b""):
            sha256_hash.update(byte_block)
    return sha256_hash.hexdigest()


def copy_file_with_hash(source_path: Path, destination_path: Path) -> str:
    """
    Copy a file and verify the copy against the source hash.

    Workflow:
    1. Hash the source
    2. Copy (with metadata) to the destination
    3. Hash the destination and compare

    Returns:
        The verified SHA256 hex digest

    Raises:
        OSError: if reading or copying fails
        RuntimeError: if the copy does not match the source; the bad copy is removed
    """
    source_hash = calculate_sha256(source_path)
    shutil.copy2(source_path, destination_path)
    dest_hash = calculate_sha256(destination_path)

    if source_hash != dest_hash:
        logger.error("Hash mismatch copying %s: %s... != %s...",
                     source_path.name, source_hash[:16], dest_hash[:16])
        destination_path.unlink(missing_ok=True)
        raise RuntimeError(f"Hash mismatch detected for {destination_path.name}")

    logger.debug("Hash verified for %s: %s...", destination_path.name, source_hash[:16])
    return source_hash
