"""
Shared types, enums, and constants.
"""
from enum import Enum
from typing import Any, Final, Literal, Optional

# Container classifications
ImageFormat = Literal["png", "jpeg", "webp"]

# Error codes
class ErrorCode(str, Enum):
    """Standardized error codes (string enum)."""

    # Client / validation
    INVALID_INPUT = "INVALID_INPUT"
    UNSUPPORTED = "UNSUPPORTED"

    # Extraction outcomes
    NOT_FOUND = "NOT_FOUND"
    PARSE_ERROR = "PARSE_ERROR"
    METADATA_FAILED = "METADATA_FAILED"

# Signatures (first 12 bytes)
PNG_SIGNATURE: Final[bytes] = b"\x89PNG\r\n\x1a\n"
JPEG_SOI: Final[bytes] = b"\xff\xd8\xff"
RIFF_TAG: Final[bytes] = b"RIFF"
WEBP_FOURCC: Final[bytes] = b"WEBP"

MIN_SNIFF_LENGTH: Final[int] = 12

def detect_image_format(buffer: Any) -> Optional[ImageFormat]:
    """
    Classify a byte buffer by signature.

    Args:
        buffer: Raw image bytes

    Returns:
        "png", "jpeg", "webp", or None when nothing matches exactly
    """
    if not isinstance(buffer, (bytes, bytearray, memoryview)):
        return None
    head = bytes(buffer[:MIN_SNIFF_LENGTH])
    if len(head) < MIN_SNIFF_LENGTH:
        return None

    if head[:4] == PNG_SIGNATURE[:4]:
        return "png"
    if head[:3] == JPEG_SOI:
        return "jpeg"
    if head[:4] == RIFF_TAG and head[8:12] == WEBP_FOURCC:
        return "webp"

    return None
