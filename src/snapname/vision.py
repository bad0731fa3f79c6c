#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
snapname Vision
Image encoding, the naming prompt, and the startup connection check.
"""

from __future__ import annotations

import base64
import logging
from pathlib import Path

from .logs import event_extra

logger = logging.getLogger(__name__)


# ==============================================================================
# AI PROMPTS
# ==============================================================================

AI_NAMING_PROMPT = """Analyze this image and provide a short, descriptive filename (without extension) that would be suitable for organizing this image.
Focus on the main subject, action, or content of the image.
Use clear, simple words separated by underscores.
Examples: "login_screen", "dashboard_overview", "error_message", "user_profile", "mobile_menu"
Keep it under 50 characters and avoid special characters.
Just respond with the filename, nothing else."""

CONNECTION_TEST_PROMPT = 'Hello, respond with "API working"'


# ==============================================================================
# IMAGE ENCODING
# ==============================================================================

MIME_TYPES = {
    '.png': 'image/png',
    '.jpg': 'image/jpeg',
    '.jpeg': 'image/jpeg',
    '.gif': 'image/gif',
    '.webp': 'image/webp',
}


def get_mime_type(image_path: Path) -> str:
    """MIME type for an image file, by extension. Unknown extensions map to JPEG."""
    return MIME_TYPES.get(image_path.suffix.lower(), 'image/jpeg')


def encode_image(image_path: Path) -> str:
    """
    Read an image and return it as a base64 string.

    Raises:
        OSError: if the file cannot be read
    """
    with open(image_path, 'rb') as img_file:
        return base64.b64encode(img_file.read()).decode('utf-8')


# ==============================================================================
# CONNECTION CHECK
# ==============================================================================

def check_provider_connection(provider) -> None:
    """
    Validate that the configured backend answers before any file is touched.

    Raises:
        ProviderConnectionError: if the backend is unreachable or rejects the request
    """
    from .vision_providers import ProviderConnectionError

    logger.info("Testing %s connection...", provider.kind,
                extra=event_extra("connection_test", provider=provider.kind, model=provider.model))
    status = provider.test_connection()
    if not status.success:
        logger.error("%s connection failed: %s", provider.kind, status.error,
                     extra=event_extra("connection_failed", provider=provider.kind))
        raise ProviderConnectionError(f"{provider.kind} connection failed: {status.error}")
    logger.info("%s connection successful", provider.kind,
                extra=event_extra("connection_ok", provider=provider.kind))
