"""
Last-resort scan of raw image bytes for an A1111-style parameters block.

Used when every structured tier came back empty (damaged containers, text in
non-standard segments, re-encoded files that kept a comment).
"""
from __future__ import annotations

import re
from typing import Callable, Optional

from ...config import (
    HEURISTIC_BYTES_WINDOW_AFTER,
    HEURISTIC_BYTES_WINDOW_BEFORE,
    HEURISTIC_MAX_SCAN_BYTES,
    HEURISTIC_MIN_WINDOW_LENGTH,
    HEURISTIC_REGEX_WINDOW_AFTER,
    HEURISTIC_REGEX_WINDOW_BEFORE,
)
from ...shared import get_logger

logger = get_logger(__name__)

_TEXT_PATTERNS = (
    re.compile(r"Steps:\s*\d+.*?Sampler:\s*[^,\n]+", re.IGNORECASE),
    re.compile(r"CFG\s*scale:\s*[\d.]+.*?Seed:\s*\d+", re.IGNORECASE),
    re.compile(r"Negative\s*prompt:\s*[^\n]+", re.IGNORECASE),
)
_BYTE_PATTERNS = (b"Steps:", b"parameters", b"negative_prompt")
_COMPANION_LABELS = ("Sampler:", "CFG scale:", "Seed:")
_LINE_BREAKS = frozenset("\n\r\t")
_OPENING_MARKS = frozenset("([{<\"'")


def _decode_utf8(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")


def _decode_utf16le(data: bytes) -> str:
    return data[: len(data) // 2 * 2].decode("utf-16-le", errors="replace")


def _decode_utf16le_shifted(data: bytes) -> str:
    return _decode_utf16le(data[1:])


def _decode_latin1(data: bytes) -> str:
    return data.decode("latin-1")


def _decode_ascii(data: bytes) -> str:
    return data.decode("ascii", errors="replace")


TEXT_DECODINGS: tuple[tuple[str, Callable[[bytes], str]], ...] = (
    ("utf-8", _decode_utf8),
    ("utf-16le", _decode_utf16le),
    ("utf-16le+1", _decode_utf16le_shifted),
    ("latin-1", _decode_latin1),
    ("ascii", _decode_ascii),
)
WINDOW_DECODINGS = (TEXT_DECODINGS[0], TEXT_DECODINGS[3], TEXT_DECODINGS[4])


def _is_text_char(ch: str) -> bool:
    if ch in _LINE_BREAKS:
        return True
    return ch != "\ufffd" and ch.isprintable()


def _starts_text(ch: str) -> bool:
    # Latin-1 supplement characters are what stray high bytes decode to.
    if ch in _OPENING_MARKS:
        return True
    return ch.isalnum() and not "\x80" <= ch <= "\xff"


def printable_run(text: str, index: int) -> str:
    """
    The run of printable characters (plus line breaks/tabs) containing `index`.

    The run starts at its first letter, digit or opening bracket/quote, so
    symbol bytes stuck to the front of the text are left out.
    """
    if not 0 <= index < len(text):
        return ""
    start = index
    while start > 0 and _is_text_char(text[start - 1]):
        start -= 1
    while start < index and not _starts_text(text[start]):
        start += 1
    end = index
    while end < len(text) and _is_text_char(text[end]):
        end += 1
    return text[start:end]


def _has_companion(text: str) -> bool:
    return "Steps:" in text and any(label in text for label in _COMPANION_LABELS)


def _scan_text(buffer: bytes) -> Optional[str]:
    for name, decode in TEXT_DECODINGS:
        text = decode(buffer)
        for pattern in _TEXT_PATTERNS:
            match = pattern.search(text)
            if not match:
                continue
            start = max(0, match.start() - HEURISTIC_REGEX_WINDOW_BEFORE)
            window = text[start:match.start() + HEURISTIC_REGEX_WINDOW_AFTER]
            candidate = printable_run(window, match.start() - start).strip()
            if _has_companion(candidate):
                logger.debug("Heuristic text match (%s, pattern %r)", name, pattern.pattern[:20])
                return candidate
    return None


def _scan_byte_patterns(buffer: bytes) -> Optional[str]:
    for pattern in _BYTE_PATTERNS:
        index = buffer.find(pattern)
        if index < 0:
            continue
        chunk = buffer[max(0, index - HEURISTIC_BYTES_WINDOW_BEFORE):index + HEURISTIC_BYTES_WINDOW_AFTER]
        for name, decode in WINDOW_DECODINGS:
            text = decode(chunk)
            steps_at = text.find("Steps:")
            if steps_at < 0:
                continue
            candidate = printable_run(text, steps_at).strip()
            if len(candidate) > HEURISTIC_MIN_WINDOW_LENGTH:
                logger.debug("Heuristic byte match (%s, pattern %r)", name, pattern)
                return candidate
    return None


def scan_bytes_for_parameters(buffer: bytes, max_scan_bytes: int = HEURISTIC_MAX_SCAN_BYTES) -> Optional[str]:
    """
    Parameters text found anywhere in `buffer`, or None.

    Regex pass over whole-buffer decodings first, then fixed byte literals
    with a wider window. Only the printable run around the match is returned.
    """
    if not isinstance(buffer, (bytes, bytearray, memoryview)):
        return None
    data = bytes(buffer[:max_scan_bytes])
    if not data:
        return None
    return _scan_text(data) or _scan_byte_patterns(data)
