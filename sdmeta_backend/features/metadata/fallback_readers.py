"""
Pillow-backed readers used by the orchestrator as replaceable collaborators.

- `read_tag_tree`: EXIF / XMP / IPTC fields as a `{"exif", "xmp", "iptc"}` tree.
- `decode_rgba`: raster decode for the stealth tier.

Both degrade to an empty result instead of raising.
"""

from __future__ import annotations

import io
from dataclasses import dataclass
from typing import Any, Callable, Dict, NamedTuple, Optional

import piexif.helper
from defusedxml import ElementTree as SafeElementTree
from PIL import ExifTags, Image, IptcImagePlugin

from ...config import STEALTH_MAX_PIXELS
from ...shared import get_logger

logger = get_logger(__name__)

EXIF_IFD_POINTER = 0x8769
GPS_IFD_POINTER = 0x8825
USER_COMMENT_TAG = 0x9286

_XP_TAGS = frozenset({0x9C9B, 0x9C9C, 0x9C9D, 0x9C9E, 0x9C9F})  # XPTitle..XPSubject, UTF-16LE

IPTC_FIELD_NAMES = {
    (2, 5): "ObjectName",
    (2, 25): "Keywords",
    (2, 80): "By-line",
    (2, 105): "Headline",
    (2, 116): "CopyrightNotice",
    (2, 120): "Caption/Abstract",
}

_XMP_START = b"<x:xmpmeta"
_XMP_END = b"</x:xmpmeta>"

# RDF structure around XMP properties; values below them belong to the enclosing property.
_XMP_CONTAINERS = frozenset({"xmpmeta", "RDF", "Description", "Alt", "Bag", "Seq", "li", "text"})
_XMP_SKIPPED_KEYS = frozenset({"lang", "about", "parseType"})


@dataclass(frozen=True)
class TagValue:
    """One decoded tag: human-readable `description` plus the raw `value`."""

    description: str = ""
    value: Any = None

    def text(self) -> str:
        if self.description:
            return self.description
        if self.value is None:
            return ""
        if isinstance(self.value, bytes):
            return _decode_bytes(self.value)
        return str(self.value)


TagTree = Dict[str, Dict[str, TagValue]]
TagReader = Callable[[bytes], TagTree]


class Raster(NamedTuple):
    width: int
    height: int
    pixels: bytes


RasterDecoder = Callable[[bytes], Optional[Raster]]


def empty_tag_tree() -> TagTree:
    return {"exif": {}, "xmp": {}, "iptc": {}}


def read_tag_tree(buffer: bytes) -> TagTree:
    """
    Decode EXIF (IFD0 + Exif sub-IFD), XMP and IPTC fields of an image.

    Returns an empty tree on failure.
    """
    tree = empty_tag_tree()
    try:
        with Image.open(io.BytesIO(bytes(buffer))) as img:
            _apply_exif_fields(tree["exif"], img)
            _apply_xmp_fields(tree["xmp"], img, buffer)
            _apply_iptc_fields(tree["iptc"], img)
    except Exception as exc:
        logger.debug("Tag decoding failed: %s", exc)
        return empty_tag_tree()
    return tree


def _apply_exif_fields(out: Dict[str, TagValue], img: Any) -> None:
    try:
        exif = img.getexif()
    except Exception:
        return
    if not exif:
        return
    for tag_id, value in exif.items():
        if tag_id in (EXIF_IFD_POINTER, GPS_IFD_POINTER):
            continue
        out[_tag_name(tag_id)] = TagValue(_describe(tag_id, value), value)
    try:
        sub_ifd = exif.get_ifd(EXIF_IFD_POINTER)
    except Exception:
        sub_ifd = {}
    for tag_id, value in (sub_ifd or {}).items():
        out[_tag_name(tag_id)] = TagValue(_describe(tag_id, value), value)


def _tag_name(tag_id: int) -> str:
    return ExifTags.TAGS.get(tag_id, str(tag_id))


def _describe(tag_id: int, value: Any) -> str:
    if tag_id == USER_COMMENT_TAG and isinstance(value, bytes):
        return _decode_user_comment(value)
    if tag_id in _XP_TAGS:
        raw = bytes(value) if isinstance(value, (bytes, tuple, list)) else None
        if raw is not None:
            return raw.decode("utf-16-le", errors="replace").rstrip("\x00")
    if isinstance(value, bytes):
        return _decode_bytes(value)
    if isinstance(value, tuple):
        return " ".join(str(v) for v in value)
    return str(value)


def _decode_user_comment(raw: bytes) -> str:
    """UserComment with its 8-byte charset prefix (ASCII / UNICODE / JIS)."""
    try:
        return piexif.helper.UserComment.load(raw).rstrip("\x00")
    except (ValueError, UnicodeDecodeError):
        pass
    # Unknown or missing prefix.
    body = raw[8:] if raw[:8] in (b"\x00" * 8, b"        ") else raw
    return _decode_bytes(body)


def _decode_bytes(raw: bytes) -> str:
    try:
        return raw.decode("utf-8").rstrip("\x00")
    except UnicodeDecodeError:
        return raw.decode("latin-1").rstrip("\x00")


def _apply_xmp_fields(out: Dict[str, TagValue], img: Any, buffer: bytes) -> None:
    try:
        xmp = img.getxmp()
    except Exception as exc:
        logger.debug("Pillow XMP decoding failed: %s", exc)
        xmp = {}
    if not xmp:
        xmp = _parse_embedded_xmp(buffer)
    _flatten_xmp(xmp, "", out)


def _parse_embedded_xmp(buffer: bytes) -> Dict[str, Any]:
    """XMP packet stored where Pillow does not look (COM segments, private chunks)."""
    start = buffer.find(_XMP_START)
    if start < 0:
        return {}
    end = buffer.find(_XMP_END, start)
    if end < 0:
        return {}
    try:
        root = SafeElementTree.fromstring(bytes(buffer[start:end + len(_XMP_END)]))
    except Exception as exc:
        logger.debug("Embedded XMP packet is not valid XML: %s", exc)
        return {}
    return {_local_name(root.tag): _element_value(root)}


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _element_value(element: Any) -> Any:
    # Same shape as Pillow's Image.getxmp(): attributes and children keyed by
    # local name, repeated children as lists, "text" beside attributes.
    value: Dict[str, Any] = {_local_name(k): v for k, v in element.attrib.items()}
    children = list(element)
    if children:
        for child in children:
            name = _local_name(child.tag)
            child_value = _element_value(child)
            if name in value:
                if not isinstance(value[name], list):
                    value[name] = [value[name]]
                value[name].append(child_value)
            else:
                value[name] = child_value
    elif value:
        if element.text:
            value["text"] = element.text
    else:
        return element.text
    return value


def _flatten_xmp(value: Any, owner: str, out: Dict[str, TagValue]) -> None:
    """Collapse the nested XMP dict to `{property: TagValue}`; RDF containers are transparent."""
    if isinstance(value, dict):
        for key, child in value.items():
            if key in _XMP_SKIPPED_KEYS:
                continue
            _flatten_xmp(child, owner if key in _XMP_CONTAINERS else key, out)
    elif isinstance(value, list):
        for item in value:
            _flatten_xmp(item, owner, out)
    elif isinstance(value, str) and owner:
        text = value.strip()
        if not text:
            return
        existing = out.get(owner)
        if existing is None:
            out[owner] = TagValue(text, value)
        else:
            out[owner] = TagValue(f"{existing.description}, {text}", existing.value)


def _apply_iptc_fields(out: Dict[str, TagValue], img: Any) -> None:
    try:
        iptc = IptcImagePlugin.getiptcinfo(img)
    except Exception:
        return
    if not iptc:
        return
    for key, value in iptc.items():
        name = IPTC_FIELD_NAMES.get(key, f"{key[0]}:{key[1]}" if isinstance(key, tuple) else str(key))
        if isinstance(value, list):
            text = ", ".join(_decode_bytes(v) if isinstance(v, bytes) else str(v) for v in value)
        elif isinstance(value, bytes):
            text = _decode_bytes(value)
        else:
            text = str(value)
        out[name] = TagValue(text, value)


def decode_rgba(buffer: bytes, max_pixels: int = STEALTH_MAX_PIXELS) -> Optional[Raster]:
    """
    RGBA pixels of an image that carries alpha, or None.

    Images without an alpha band, or larger than `max_pixels`, are not decoded.
    """
    try:
        with Image.open(io.BytesIO(bytes(buffer))) as img:
            width, height = img.size
            if width * height > max_pixels:
                logger.debug("Raster %dx%d over pixel limit, not decoded", width, height)
                return None
            if "A" not in img.getbands() and "transparency" not in img.info:
                return None
            rgba = img.convert("RGBA")
            return Raster(width, height, rgba.tobytes())
    except Exception as exc:
        logger.debug("Raster decode failed: %s", exc)
        return None
