"""Shared utilities for SD image metadata recovery."""
from .errors import sanitize_error_message
from .log import get_logger, log_structured, preview_lines
from .result import Result
from .types import ErrorCode, ImageFormat, detect_image_format

__all__ = [
    "Result",
    "get_logger",
    "log_structured",
    "preview_lines",
    "ErrorCode",
    "ImageFormat",
    "detect_image_format",
    "sanitize_error_message",
]
