"""Backend-facing alias for shared utilities.

Feature modules import `Result`, `get_logger` and friends from here so the
shared layer can move without touching every feature.
"""

from __future__ import annotations

import sdmeta_shared as _root_shared

Result = _root_shared.Result
ErrorCode = _root_shared.ErrorCode
ImageFormat = _root_shared.ImageFormat
get_logger = _root_shared.get_logger
log_structured = _root_shared.log_structured
preview_lines = _root_shared.preview_lines
detect_image_format = _root_shared.detect_image_format
sanitize_error_message = _root_shared.sanitize_error_message

__all__ = [
    "Result",
    "ErrorCode",
    "ImageFormat",
    "get_logger",
    "log_structured",
    "preview_lines",
    "detect_image_format",
    "sanitize_error_message",
]
