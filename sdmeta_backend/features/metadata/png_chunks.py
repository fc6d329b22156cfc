"""
PNG chunk walker and text-chunk decoders (tEXt / iTXt / zTXt).
"""
from __future__ import annotations

import struct
from typing import Dict, Iterator, NamedTuple, Optional

from ...config import MAX_DECOMPRESSED_SIZE
from ...shared import get_logger
from .parsing_utils import decode_utf8, inflate, inflate_any

logger = get_logger(__name__)

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"
TEXT_CHUNK_TYPES = ("tEXt", "iTXt", "zTXt")

_HEADER = struct.Struct(">I4s")


class PngChunk(NamedTuple):
    type: str
    data: bytes
    offset: int


def iter_png_chunks(buffer: bytes) -> Iterator[PngChunk]:
    """
    Yield chunks after the signature, in file order.

    Stops at IEND, at a truncated header, or at a chunk whose declared length
    runs past the buffer. CRCs are not verified.
    """
    data = memoryview(buffer)
    offset = len(PNG_SIGNATURE) if bytes(data[:8]) == PNG_SIGNATURE else 8
    while offset + _HEADER.size <= len(data):
        length, raw_type = _HEADER.unpack_from(data, offset)
        start = offset + _HEADER.size
        end = start + length
        if end > len(data):
            logger.debug("PNG chunk at %d declares %d bytes past end of buffer", offset, length)
            return
        chunk_type = raw_type.decode("latin-1")
        yield PngChunk(chunk_type, bytes(data[start:end]), offset)
        if chunk_type == "IEND":
            return
        offset = end + 4  # skip CRC


def decode_text_chunk(chunk: PngChunk, max_size: int = MAX_DECOMPRESSED_SIZE) -> Optional[tuple[str, str]]:
    """(keyword, text) for a text chunk, or None when it cannot be decoded."""
    if chunk.type == "tEXt":
        return _decode_text(chunk.data)
    if chunk.type == "iTXt":
        return _decode_itxt(chunk.data, max_size)
    if chunk.type == "zTXt":
        return _decode_ztxt(chunk.data, max_size)
    return None


def _decode_text(data: bytes) -> Optional[tuple[str, str]]:
    sep = data.find(b"\x00")
    if sep < 0:
        return None
    return data[:sep].decode("latin-1"), decode_utf8(data[sep + 1:])


def _decode_itxt(data: bytes, max_size: int) -> Optional[tuple[str, str]]:
    # keyword \0 flag method lang \0 translated \0 text
    sep = data.find(b"\x00")
    if sep < 0 or sep + 3 > len(data):
        return None
    keyword = data[:sep].decode("latin-1")
    compression_flag = data[sep + 1]
    compression_method = data[sep + 2]

    lang_end = data.find(b"\x00", sep + 3)
    if lang_end < 0:
        return None
    translated_end = data.find(b"\x00", lang_end + 1)
    if translated_end < 0:
        return None
    payload = data[translated_end + 1:]

    if compression_flag == 1 and compression_method == 0:
        inflated = inflate_any(payload, max_size=max_size)
        if inflated is None:
            logger.debug("iTXt %r: inflate failed, keeping raw bytes", keyword)
        else:
            payload = inflated
    return keyword, decode_utf8(payload)


def _decode_ztxt(data: bytes, max_size: int) -> Optional[tuple[str, str]]:
    sep = data.find(b"\x00")
    if sep < 0 or sep + 1 >= len(data):
        return None
    keyword = data[:sep].decode("latin-1")
    if data[sep + 1] != 0:
        return None
    inflated = inflate(data[sep + 2:], max_size=max_size)
    if inflated is None:
        logger.debug("zTXt %r: inflate failed, chunk skipped", keyword)
        return None
    return keyword, decode_utf8(inflated)


def extract_png_text_chunks(buffer: bytes, max_size: int = MAX_DECOMPRESSED_SIZE) -> Dict[str, str]:
    """
    keyword -> text for every decodable text chunk; a repeated keyword keeps
    the last value. A malformed chunk ends the walk, text collected so far is
    returned.
    """
    out: Dict[str, str] = {}
    try:
        for chunk in iter_png_chunks(buffer):
            if chunk.type not in TEXT_CHUNK_TYPES:
                continue
            decoded = decode_text_chunk(chunk, max_size)
            if decoded is not None:
                keyword, text = decoded
                out[keyword] = text
    except (struct.error, ValueError) as exc:
        logger.debug("PNG chunk walk aborted: %s", exc)
    return out
