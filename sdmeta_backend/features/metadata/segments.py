"""
Container-level text scans for JPEG (APPn / COM segments) and WebP (RIFF
EXIF / XMP chunks).

These look for parameters text directly in segment payloads, for files whose
tags a regular EXIF reader cannot decode.
"""
from __future__ import annotations

import struct
from typing import Callable, Iterator, NamedTuple, Optional

from ...shared import get_logger
from .heuristic_scanner import printable_run
from .parsing_utils import A1111_SIGNATURES

logger = get_logger(__name__)

JPEG_SOS = 0xDA
JPEG_EOI = 0xD9
JPEG_COM = 0xFE
JPEG_APP0 = 0xE0
JPEG_APP15 = 0xEF
EXIF_HEADER = b"Exif\x00\x00"
XMP_HEADERS = (b"http://ns.adobe.com/xap/1.0/\x00", b"http://ns.adobe.com/xmp/extension/\x00")

WEBP_TEXT_CHUNKS = ("EXIF", "XMP ")


class Segment(NamedTuple):
    name: str
    data: bytes


def iter_jpeg_segments(buffer: bytes) -> Iterator[Segment]:
    """
    APPn and COM segments before the first scan.

    Stops at SOS / EOI, or when a segment length runs past the buffer.
    """
    size = len(buffer)
    if size < 4 or buffer[:3] != b"\xff\xd8\xff":
        return
    offset = 2
    while offset < size - 4:
        if buffer[offset] != 0xFF:
            offset += 1
            continue
        marker = buffer[offset + 1]
        offset += 2
        if marker == 0xFF:
            offset -= 1  # fill byte; the next 0xFF may start the marker
            continue
        if marker in (JPEG_SOS, JPEG_EOI):
            return
        if offset + 2 > size:
            return
        (length,) = struct.unpack_from(">H", buffer, offset)
        end = offset + length
        if length < 2 or end > size:
            logger.debug("JPEG segment 0x%02X at %d is truncated", marker, offset)
            return
        payload = bytes(buffer[offset + 2:end])
        offset = end
        if JPEG_APP0 <= marker <= JPEG_APP15:
            yield Segment(f"APP{marker - JPEG_APP0}", payload)
        elif marker == JPEG_COM:
            yield Segment("COM", payload)


def iter_riff_chunks(buffer: bytes) -> Iterator[Segment]:
    """WebP RIFF chunks after the 12-byte header; odd sizes are padded."""
    size = len(buffer)
    if size < 12 or buffer[:4] != b"RIFF" or buffer[8:12] != b"WEBP":
        return
    offset = 12
    while offset + 8 <= size:
        fourcc = bytes(buffer[offset:offset + 4]).decode("latin-1")
        (chunk_size,) = struct.unpack_from("<I", buffer, offset + 4)
        start = offset + 8
        end = start + chunk_size
        if end > size:
            logger.debug("RIFF chunk %r at %d is truncated", fourcc, offset)
            return
        yield Segment(fourcc, bytes(buffer[start:end]))
        offset = end + (chunk_size & 1)


def _utf16le_without_nuls(data: bytes) -> str:
    return data[: len(data) // 2 * 2].decode("utf-16-le", errors="replace").replace("\x00", "")


_SEGMENT_DECODINGS: tuple[Callable[[bytes], str], ...] = (
    lambda data: data.decode("utf-8", errors="replace"),
    lambda data: data.decode("ascii", errors="replace"),
    lambda data: data.decode("latin-1"),
)
_CHUNK_DECODINGS: tuple[Callable[[bytes], str], ...] = (
    _SEGMENT_DECODINGS[0],
    _utf16le_without_nuls,
    _SEGMENT_DECODINGS[1],
    _SEGMENT_DECODINGS[2],
)


def find_parameters_text(data: bytes, decodings=_SEGMENT_DECODINGS) -> Optional[str]:
    """Printable text around the first A1111 signature, trying each decoding in turn."""
    for decode in decodings:
        text = decode(data)
        positions = [pos for pos in (text.find(token) for token in A1111_SIGNATURES) if pos >= 0]
        if not positions:
            continue
        candidate = printable_run(text, min(positions)).strip()
        if candidate:
            return candidate
    return None


def scan_jpeg_segments(buffer: bytes) -> Optional[tuple[str, str]]:
    """(segment name, parameters text) from the first APPn/COM segment that holds one."""
    for segment in iter_jpeg_segments(buffer):
        data = segment.data
        if data.startswith(XMP_HEADERS):
            # XMP is decoded as XML by the tag reader.
            continue
        if segment.name == "COM":
            data = data.replace(b"\x00", b"")
        text = find_parameters_text(data)
        if text is None and data.startswith(EXIF_HEADER):
            text = find_parameters_text(data[len(EXIF_HEADER):])
        if text:
            return segment.name, text
    return None


def scan_webp_chunks(buffer: bytes) -> Optional[tuple[str, str]]:
    """(chunk fourcc, parameters text) from the first EXIF / XMP chunk that holds one."""
    for chunk in iter_riff_chunks(buffer):
        if chunk.name not in WEBP_TEXT_CHUNKS:
            continue
        text = find_parameters_text(chunk.data, _CHUNK_DECODINGS)
        if text:
            return chunk.name.strip(), text
    return None
