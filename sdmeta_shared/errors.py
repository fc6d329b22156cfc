"""
Shared helpers for sanitizing error messages before they reach callers.
"""
from __future__ import annotations

import os
from typing import Any

from .log import get_logger

logger = get_logger(__name__)
_DEBUG_MODE = os.getenv("SDMETA_DEBUG", "").strip().lower() in ("1", "true", "yes", "on")
_MAX_DETAIL_LENGTH = 200


def sanitize_error_message(exc: Any, fallback: str) -> str:
    """
    Build a safe, single-line error message.

    Exception text raised while parsing hostile input can carry control
    characters or huge payload fragments; both are stripped here.

    Args:
        exc: Exception or raw value to sanitize.
        fallback: Message used as prefix, and alone when nothing meaningful remains.

    Returns:
        A string suitable for `Result.error`.
    """
    if not fallback:
        fallback = "An error occurred"

    if exc is None:
        return fallback

    try:
        raw = str(exc)
    except Exception:
        raw = ""

    if not raw:
        return fallback

    printable = "".join(ch if ch.isprintable() else " " for ch in raw)
    sanitized = " ".join(printable.split()).strip()

    if _DEBUG_MODE:
        logger.debug("Sanitized error payload: %s", sanitized, exc_info=True)

    if sanitized:
        return f"{fallback}: {sanitized[:_MAX_DETAIL_LENGTH]}"
    return fallback
