"""
Shared parsing utilities for metadata extraction (chunk walker, stealth decoder, tag scanner).
"""
import json
import zlib
from typing import Any, Dict, Iterable, Optional

from ...config import MAX_DECOMPRESSED_SIZE, MAX_METADATA_JSON_SIZE
from ...shared import get_logger

logger = get_logger(__name__)

# Tokens that mark an A1111-style parameters string.
A1111_SIGNATURES = ("Steps:", "Sampler:", "CFG scale:", "Seed:")

# zlib wbits: plain zlib stream, gzip member, or either (auto-detect header).
ZLIB_WBITS = zlib.MAX_WBITS
GZIP_WBITS = 16 + zlib.MAX_WBITS
AUTO_WBITS = 32 + zlib.MAX_WBITS

_CHUNK_SIZE = 81920  # 80KB input slices


def _safe_zlib_decompress(
    data: bytes, max_size: int = MAX_DECOMPRESSED_SIZE, wbits: int = ZLIB_WBITS
) -> Optional[bytes]:
    """
    Safely decompress zlib/gzip data with size limit.

    Returns None on corrupt input or when the output would exceed `max_size`.
    """
    try:
        decompressor = zlib.decompressobj(wbits)
        result = bytearray()

        offset = 0
        while offset < len(data):
            chunk = decompressor.decompress(data[offset:offset + _CHUNK_SIZE], max_size + 1 - len(result))
            if chunk:
                result.extend(chunk)
                if len(result) > max_size:
                    logger.debug("Decompressed data exceeds %d bytes, dropped", max_size)
                    return None
            if decompressor.unconsumed_tail:
                # Output cap reached with input still pending.
                logger.debug("Decompressed data exceeds %d bytes, dropped", max_size)
                return None
            if decompressor.eof:
                break
            offset += _CHUNK_SIZE

        if not decompressor.eof:
            result.extend(decompressor.flush())
            if not decompressor.eof:
                logger.debug("Compressed stream is truncated")
                return None

        if len(result) > max_size:
            logger.debug("Decompressed data exceeds %d bytes, dropped", max_size)
            return None

        return bytes(result)
    except (zlib.error, ValueError, OverflowError) as exc:
        logger.debug("Decompression failed: %s", exc)
        return None


def inflate(data: bytes, max_size: int = MAX_DECOMPRESSED_SIZE) -> Optional[bytes]:
    """Inflate a zlib stream (PNG zTXt)."""
    return _safe_zlib_decompress(data, max_size=max_size, wbits=ZLIB_WBITS)


def gunzip(data: bytes, max_size: int = MAX_DECOMPRESSED_SIZE) -> Optional[bytes]:
    """Decompress a gzip member (stealth payload)."""
    return _safe_zlib_decompress(data, max_size=max_size, wbits=GZIP_WBITS)


def inflate_any(data: bytes, max_size: int = MAX_DECOMPRESSED_SIZE) -> Optional[bytes]:
    """Decompress either zlib or gzip framing (PNG iTXt writers disagree)."""
    return _safe_zlib_decompress(data, max_size=max_size, wbits=AUTO_WBITS)


def decode_utf8(data: bytes) -> str:
    return bytes(data).decode("utf-8", errors="replace")


def loads_dict(text: Any) -> Optional[Dict[str, Any]]:
    """Parse a JSON object; anything else (invalid, list, scalar, oversize) is None."""
    if not isinstance(text, str):
        return None
    raw = text.strip()
    if not raw:
        return None
    if len(raw) > MAX_METADATA_JSON_SIZE:
        logger.debug("JSON payload of %d chars over the size limit, skipped", len(raw))
        return None
    try:
        parsed = json.loads(raw)
    except (ValueError, RecursionError):
        if raw.startswith("{"):
            logger.debug("Invalid JSON object: %s", raw[:80])
        return None
    return parsed if isinstance(parsed, dict) else None


def has_a1111_signature(text: Any, tokens: Iterable[str] = A1111_SIGNATURES) -> bool:
    if not isinstance(text, str) or not text:
        return False
    return any(token in text for token in tokens)


def first_present(mapping: Dict[str, Any], *keys: str) -> Any:
    """First value whose key is present and truthy (for case variants like Comment/comment)."""
    for key in keys:
        value = mapping.get(key)
        if value:
            return value
    return None
