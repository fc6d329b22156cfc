"""
Stealth PNG decoder: metadata hidden in the least significant bit of the
alpha channel.

Layout (bits read row-major, one per pixel, MSB first):
    magic (15 bytes) | bit length (u32 big-endian) | payload

`stealth_pngcomp` carries gzip-compressed JSON, `stealth_pnginfo` carries the
plain UTF-8 parameters text written by the A1111 stealth extension.
"""
from __future__ import annotations

import json
from typing import Any, NamedTuple, Optional

import numpy as np

from ...config import MAX_DECOMPRESSED_SIZE, STEALTH_MAX_PIXELS
from ...shared import get_logger
from ...utils import to_text
from ..geninfo.a1111 import parse_a1111_parameters
from ..geninfo.novelai import parse_novelai_comment
from .parsing_utils import decode_utf8, first_present, gunzip, loads_dict
from .record import SDMetadata

logger = get_logger(__name__)

MAGIC_COMPRESSED = b"stealth_pngcomp"
MAGIC_PLAIN = b"stealth_pnginfo"
MAGIC_LENGTH = len(MAGIC_COMPRESSED)

_HEADER_BITS = MAGIC_LENGTH * 8 + 32

_STRING_KEYS = ("prompt", "negative_prompt", "sampler", "size", "model", "parameters")
_SCALAR_KEYS = ("steps", "cfg_scale", "seed")


class BitCursor(NamedTuple):
    """Immutable read position over an array of 0/1 values."""

    bits: np.ndarray
    position: int = 0

    @property
    def remaining(self) -> int:
        return int(self.bits.shape[0]) - self.position


def read_bytes(cursor: BitCursor, count: int) -> Optional[tuple[bytes, BitCursor]]:
    """`count` bytes (MSB first) and the advanced cursor, or None when short."""
    needed = count * 8
    if count < 0 or needed > cursor.remaining:
        return None
    window = cursor.bits[cursor.position:cursor.position + needed]
    return np.packbits(window).tobytes(), BitCursor(cursor.bits, cursor.position + needed)


def read_u32(cursor: BitCursor) -> Optional[tuple[int, BitCursor]]:
    read = read_bytes(cursor, 4)
    if read is None:
        return None
    raw, cursor = read
    return int.from_bytes(raw, "big"), cursor


def alpha_lsb_bits(width: int, height: int, pixels: Any) -> Optional[np.ndarray]:
    """LSB of every alpha byte of an RGBA buffer, row-major; None when the buffer is short."""
    total = width * height
    try:
        flat = np.frombuffer(pixels, dtype=np.uint8)
    except (TypeError, ValueError):
        return None
    if total <= 0 or flat.shape[0] < total * 4:
        return None
    return flat[3:total * 4:4] & 1


def extract_stealth_metadata(
    width: int,
    height: int,
    pixels: Any,
    max_pixels: int = STEALTH_MAX_PIXELS,
    max_decompressed_size: int = MAX_DECOMPRESSED_SIZE,
) -> Optional[SDMetadata]:
    """
    Decode a stealth envelope from raw RGBA bytes.

    Returns None for every failure (wrong magic, invalid length, truncated or
    undecodable payload, oversize image) and when the payload maps to nothing.
    """
    if width <= 0 or height <= 0 or width * height > max_pixels:
        return None
    if width * height < _HEADER_BITS:
        return None

    bits = alpha_lsb_bits(width, height, pixels)
    if bits is None:
        return None

    cursor = BitCursor(bits)
    read = read_bytes(cursor, MAGIC_LENGTH)
    if read is None:
        return None
    magic, cursor = read
    if magic not in (MAGIC_COMPRESSED, MAGIC_PLAIN):
        return None

    length_read = read_u32(cursor)
    if length_read is None:
        return None
    bit_length, cursor = length_read
    if bit_length <= 0 or bit_length > int(bits.shape[0]) - _HEADER_BITS:
        logger.debug("Stealth header declares invalid bit length %d", bit_length)
        return None

    payload_read = read_bytes(cursor, bit_length // 8)
    if payload_read is None:
        return None
    payload, _ = payload_read

    if magic == MAGIC_PLAIN:
        record = _record_from_parameters(decode_utf8(payload))
    else:
        record = _record_from_compressed(payload, max_decompressed_size)
    if record is None or record.is_empty():
        return None
    logger.debug("Stealth payload decoded (%s, %d bits)", magic.decode("ascii"), bit_length)
    return record


def _record_from_compressed(payload: bytes, max_size: int) -> Optional[SDMetadata]:
    raw = gunzip(payload, max_size=max_size)
    if raw is None:
        logger.debug("Stealth payload is not valid gzip")
        return None
    data = loads_dict(decode_utf8(raw))
    if data is None:
        logger.debug("Stealth payload is not a JSON object")
        return None
    return map_stealth_json(data)


def _record_from_parameters(text: str) -> Optional[SDMetadata]:
    text = text.strip()
    if not text:
        return None
    record = SDMetadata(parameters=text)
    parse_a1111_parameters(text, record)
    return record


def map_stealth_json(data: dict[str, Any]) -> SDMetadata:
    """
    Copy the known keys onto a record, then hand NovelAI's `Comment` or a
    bare `parameters` string to the matching parser.
    """
    record = SDMetadata()
    for key in _STRING_KEYS:
        value = data.get(key)
        if value:
            setattr(record, key, to_text(value))
    for key in _SCALAR_KEYS:
        value = data.get(key)
        if value is not None and value != "" and not isinstance(value, (dict, list)):
            setattr(record, key, to_text(value))

    comment = first_present(data, "Comment", "comment")
    if comment:
        description = first_present(data, "Description", "description")
        parse_novelai_comment(comment, description if isinstance(description, str) else None, record)
    elif record.has_parameters() and not record.prompt:
        parse_a1111_parameters(record.parameters, record)
    return record
