"""Builders for synthetic PNG / JPEG / WebP fixtures used across the suite."""
from __future__ import annotations

import gzip
import io
import json
import struct
import zlib

import numpy as np
from PIL import Image
from PIL.PngImagePlugin import PngInfo

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"

A1111_TEXT = (
    "best quality, 1girl\n"
    "Negative prompt: lowres\n"
    "Steps: 20, Sampler: Euler a, CFG scale: 7, Seed: 42, Size: 512x768, Model: foo"
)


def png_chunk(chunk_type: bytes, data: bytes) -> bytes:
    crc = zlib.crc32(chunk_type + data) & 0xFFFFFFFF
    return struct.pack(">I", len(data)) + chunk_type + data + struct.pack(">I", crc)


def text_chunk(keyword: str, text: str) -> bytes:
    return png_chunk(b"tEXt", keyword.encode("latin-1") + b"\x00" + text.encode("utf-8"))


def ztxt_chunk(keyword: str, text: str) -> bytes:
    return png_chunk(b"zTXt", keyword.encode("latin-1") + b"\x00\x00" + zlib.compress(text.encode("utf-8")))


def itxt_chunk(keyword: str, text: str, compressed: bool = False, gzip_framing: bool = False) -> bytes:
    body = text.encode("utf-8")
    if compressed:
        body = gzip.compress(body) if gzip_framing else zlib.compress(body)
    flag = b"\x01" if compressed else b"\x00"
    return png_chunk(b"iTXt", keyword.encode("latin-1") + b"\x00" + flag + b"\x00" + b"en\x00" + b"\x00" + body)


def raw_png(*chunks: bytes, width: int = 2, height: int = 2) -> bytes:
    """Minimal RGBA PNG assembled by hand, with `chunks` placed before IDAT."""
    ihdr = struct.pack(">IIBBBBB", width, height, 8, 6, 0, 0, 0)
    scanlines = b"".join(b"\x00" + b"\x80\x80\x80\xff" * width for _ in range(height))
    return (
        PNG_SIGNATURE
        + png_chunk(b"IHDR", ihdr)
        + b"".join(chunks)
        + png_chunk(b"IDAT", zlib.compress(scanlines))
        + png_chunk(b"IEND", b"")
    )


def pillow_png(text: dict[str, str] | None = None, mode: str = "RGB", size=(8, 8), zip_text: bool = False) -> bytes:
    info = PngInfo()
    for key, value in (text or {}).items():
        info.add_text(key, value, zip=zip_text)
    buf = io.BytesIO()
    Image.new(mode, size, "black").save(buf, format="PNG", pnginfo=info)
    return buf.getvalue()


def stealth_envelope(payload: bytes, magic: bytes = b"stealth_pngcomp", bit_length: int | None = None) -> np.ndarray:
    """Bits of magic + u32 length + payload, MSB first."""
    length = len(payload) * 8 if bit_length is None else bit_length
    raw = magic + struct.pack(">I", length) + payload
    return np.unpackbits(np.frombuffer(raw, dtype=np.uint8))


def stealth_pixels(bits: np.ndarray, width: int = 64, height: int = 64) -> bytes:
    """RGBA bytes whose alpha LSBs (row-major) carry `bits`."""
    pixels = np.full((height, width, 4), 255, dtype=np.uint8)
    pixels[..., :3] = 96
    alpha = pixels[..., 3].reshape(-1)
    alpha[: bits.shape[0]] = 254 | bits
    pixels[..., 3] = alpha.reshape(height, width)
    return pixels.tobytes()


def stealth_json_pixels(data: dict, width: int = 64, height: int = 64) -> bytes:
    payload = gzip.compress(json.dumps(data).encode("utf-8"))
    return stealth_pixels(stealth_envelope(payload), width, height)


def stealth_png(data: dict, width: int = 64, height: int = 64, text: dict[str, str] | None = None) -> bytes:
    """PNG whose alpha channel carries `data` as a stealth_pngcomp payload."""
    pixels = np.frombuffer(stealth_json_pixels(data, width, height), dtype=np.uint8).reshape(height, width, 4)
    info = PngInfo()
    for key, value in (text or {}).items():
        info.add_text(key, value)
    buf = io.BytesIO()
    Image.fromarray(pixels).save(buf, format="PNG", pnginfo=info)
    return buf.getvalue()


def jpeg_bytes(size=(16, 16)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, "gray").save(buf, format="JPEG")
    return buf.getvalue()


def jpeg_with_segment(marker: int, payload: bytes) -> bytes:
    """Insert one segment right after SOI."""
    base = jpeg_bytes()
    segment = bytes([0xFF, marker]) + struct.pack(">H", len(payload) + 2) + payload
    return base[:2] + segment + base[2:]


def jpeg_with_exif(exif: bytes) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (16, 16), "gray").save(buf, format="JPEG", exif=exif)
    return buf.getvalue()


def riff_webp(*chunks: tuple[bytes, bytes]) -> bytes:
    """RIFF/WEBP container holding `(fourcc, payload)` chunks (no image data)."""
    body = b"WEBP"
    for fourcc, payload in chunks:
        body += fourcc + struct.pack("<I", len(payload)) + payload
        if len(payload) & 1:
            body += b"\x00"
    return b"RIFF" + struct.pack("<I", len(body)) + body
