#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
snapname Logging
Leveled, structured log events rendered to the terminal with rich.

Modules log through ``logging.getLogger(__name__)`` and attach a structured
payload with ``extra=event_extra("file_renamed", original=..., new=...)``.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from rich.console import Console
from rich.logging import RichHandler

LOGGER_NAME = "snapname"

_LEVELS = {
    'debug': logging.DEBUG,
    'info': logging.INFO,
    'warning': logging.WARNING,
    'warn': logging.WARNING,
    'error': logging.ERROR,
}


def event_extra(event: str, **payload: Any) -> Dict[str, Any]:
    """Build the ``extra`` mapping for a structured log event."""
    return {'event': event, 'payload': payload}


class StructuredRichHandler(RichHandler):
    """RichHandler that appends the event payload as key=value pairs."""

    def render_message(self, record: logging.LogRecord, message: str):
        payload = getattr(record, 'payload', None)
        if payload:
            pairs = " ".join(f"{key}={value}" for key, value in payload.items())
            message = f"{message}  {pairs}"
        return super().render_message(record, message)


def setup_logging(level: str = "info", console: Optional[Console] = None) -> logging.Logger:
    """
    Install the rich handler on the package logger.

    Calling it again (e.g. after a config reload) only updates the level.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(_LEVELS.get(level.lower(), logging.INFO))

    if not any(isinstance(h, StructuredRichHandler) for h in logger.handlers):
        handler = StructuredRichHandler(
            console=console or Console(stderr=True),
            show_path=False,
            markup=False,
            rich_tracebacks=True,
        )
        handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))
        logger.addHandler(handler)
        logger.propagate = False

    return logger
