"""
Configuration for SD image metadata recovery.

Values are read from the environment once at import time; `ExtractionSettings`
snapshots them so a caller (or a test) can override individual limits per
service instance.
"""
import logging
import os
from dataclasses import dataclass

from .utils import env_bool

logger = logging.getLogger(__name__)


def _env_raw(*names: str, default: str | None = None) -> str | None:
    for name in names:
        if not name:
            continue
        val = os.getenv(name)
        if val is not None and str(val).strip() != "":
            return str(val).strip()
    return default


def _env_int(default: int, *names: str, min_value: int | None = None, max_value: int | None = None) -> int:
    raw = _env_raw(*names)
    if raw is None:
        return default
    try:
        value = int(raw)
    except (TypeError, ValueError):
        logger.warning("Invalid integer for %s=%r, using default=%s", names[0] if names else "<unknown>", raw, default)
        return default
    if min_value is not None and value < min_value:
        logger.warning("Value too small for %s=%s, clamped to %s", names[0] if names else "<unknown>", value, min_value)
        value = min_value
    if max_value is not None and value > max_value:
        logger.warning("Value too large for %s=%s, clamped to %s", names[0] if names else "<unknown>", value, max_value)
        value = max_value
    return value


def _env_bool(default: bool, *names: str) -> bool:
    for name in names:
        if name and name in os.environ:
            return env_bool(name, default)
    return default


# Smallest image able to hold magic (15 bytes) + length (4 bytes) in alpha LSBs.
STEALTH_MIN_PIXELS = (15 + 4) * 8

# Steganographic tier: refuse to rasterize images above this pixel count.
STEALTH_MAX_PIXELS = _env_int(
    50_000_000, "SDMETA_STEALTH_MAX_PIXELS", min_value=STEALTH_MIN_PIXELS, max_value=500_000_000
)
STEALTH_ENABLED = _env_bool(True, "SDMETA_ENABLE_STEALTH")

# zlib/gzip output cap for text chunks and stealth payloads.
MAX_DECOMPRESSED_SIZE = _env_int(
    50 * 1024 * 1024, "SDMETA_MAX_DECOMPRESSED_BYTES", min_value=64 * 1024, max_value=512 * 1024 * 1024
)

# JSON payloads larger than this are not parsed.
MAX_METADATA_JSON_SIZE = _env_int(
    10 * 1024 * 1024, "SDMETA_MAX_METADATA_JSON_BYTES", min_value=64 * 1024, max_value=256 * 1024 * 1024
)

# Heuristic byte/regex scanner.
HEURISTIC_ENABLED = _env_bool(True, "SDMETA_ENABLE_HEURISTIC")
HEURISTIC_MAX_SCAN_BYTES = _env_int(
    32 * 1024 * 1024, "SDMETA_HEURISTIC_MAX_SCAN_BYTES", min_value=4096, max_value=512 * 1024 * 1024
)
HEURISTIC_REGEX_WINDOW_BEFORE = 100
HEURISTIC_REGEX_WINDOW_AFTER = 1000
HEURISTIC_BYTES_WINDOW_BEFORE = 200
HEURISTIC_BYTES_WINDOW_AFTER = 2000
HEURISTIC_MIN_WINDOW_LENGTH = 50


@dataclass(frozen=True)
class ExtractionSettings:
    """Per-service snapshot of the limits above."""

    stealth_enabled: bool = STEALTH_ENABLED
    stealth_max_pixels: int = STEALTH_MAX_PIXELS
    heuristic_enabled: bool = HEURISTIC_ENABLED
    heuristic_max_scan_bytes: int = HEURISTIC_MAX_SCAN_BYTES
    max_decompressed_size: int = MAX_DECOMPRESSED_SIZE
