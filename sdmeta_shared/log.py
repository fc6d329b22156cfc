"""
Logging utilities with consistent formatting and emoji indicators.
"""
import json
import logging
import os
from datetime import datetime, timezone
from typing import Any, Final

# Emoji indicators for log levels
EMOJI_MAP: Final[dict[str, str]] = {
    "DEBUG": "🔍",
    "INFO": "ℹ️",
    "WARNING": "⚠️",
    "ERROR": "❌",
    "CRITICAL": "🔥",
}

# Global logger prefix
PREFIX: Final[str] = "🖼️ SDMeta"

_LOG_LEVEL_ENV: Final[str] = "SDMETA_LOG_LEVEL"


class EmojiFormatter(logging.Formatter):
    """Custom formatter that adds emoji based on log level."""

    def format(self, record: logging.LogRecord) -> str:
        """Format a log record as a single line with a prefix and emoji."""
        emoji = EMOJI_MAP.get(record.levelname, "🖼️")

        # Format: 🖼️ SDMeta [🔍] features.metadata.service: message
        log_format = f"{PREFIX} [{emoji}] %(name)s: %(message)s"
        formatter = logging.Formatter(log_format)
        return formatter.format(record)


def _default_level() -> int:
    raw = str(os.getenv(_LOG_LEVEL_ENV, "") or "").strip().upper()
    if not raw:
        return logging.WARNING
    if raw.isdigit():
        return int(raw)
    level = logging.getLevelName(raw)
    return level if isinstance(level, int) else logging.WARNING


def _short_name(name: str) -> str:
    if name.startswith("__main__"):
        return "main"
    if "." not in name:
        return name
    parts = name.split(".")
    for anchor in ("sdmeta_backend", "sdmeta_shared"):
        if anchor in parts:
            idx = parts.index(anchor)
            rest = parts[idx + 1:]
            return ".".join(rest) if rest else anchor
    return name


def get_logger(name: str, level: int | None = None) -> logging.Logger:
    """
    Get a logger with SDMeta prefix and emoji indicators.

    Args:
        name: Logger name (usually __name__)
        level: Optional logging level; defaults to $SDMETA_LOG_LEVEL or WARNING

    Returns:
        Configured logger instance with emoji formatting
    """
    logger = logging.getLogger(f"sdmeta.{_short_name(name)}")

    if level is not None:
        logger.setLevel(level)
    elif not logger.handlers:
        logger.setLevel(_default_level())

    # Add console handler if none exists
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(EmojiFormatter())
        logger.addHandler(handler)

        # Prevent propagation to avoid duplicate logs
        logger.propagate = False

    return logger


def log_structured(logger: logging.Logger, level: int, message: str, **context: Any) -> None:
    """Emit a structured JSON log entry with contextual fields."""
    if not logger.isEnabledFor(level):
        return
    payload = {
        "message": message,
        "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        "context": context,
    }
    logger.log(level, json.dumps(payload, ensure_ascii=False, default=str))

def preview_lines(text: str, count: int = 2) -> str:
    """First `count` lines of a payload, for log previews."""
    return "\n".join(str(text or "").split("\n")[:count])
