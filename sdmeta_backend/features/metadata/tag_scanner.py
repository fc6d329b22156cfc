"""
Tag-field scanner: finds generation metadata in decoded EXIF / XMP / IPTC fields.

Input is the tag tree produced by `fallback_readers.read_tag_tree` (or an
injected reader). Every field examined is also copied into a fallback map,
which the orchestrator returns when nothing structured is recovered.
"""
from __future__ import annotations

from typing import Any, Dict, NamedTuple, Optional

from ...shared import get_logger, preview_lines
from ...utils import to_text
from ..geninfo.a1111 import STEPS_LABEL, parse_a1111_parameters
from ..geninfo.novelai import NOVELAI_SOFTWARE, parse_novelai_comment
from .fallback_readers import TagTree, TagValue
from .parsing_utils import has_a1111_signature, loads_dict
from .record import SDMetadata

logger = get_logger(__name__)

PRIORITY_EXIF_FIELDS = (
    "UserComment",
    "ImageDescription",
    "ImageComment",
    "XPComment",
    "XPKeywords",
    "Artist",
    "Copyright",
    "Software",
    "DocumentName",
    "PageName",
    "HostComputer",
    "Make",
    "Model",
)
XMP_DESCRIPTION_FIELDS = ("description", "ImageDescription", "UserComment")
IPTC_CAPTION_FIELD = "Caption/Abstract"



class TagScanOutcome(NamedTuple):
    record: SDMetadata
    fallback: Dict[str, Any]


def scan_tag_tree(tree: Optional[TagTree], record: Optional[SDMetadata] = None) -> TagScanOutcome:
    """
    Search the tree in a fixed order and merge the first hit into `record`:
    NovelAI sentinel, prioritized EXIF fields, remaining EXIF fields, XMP, IPTC.
    """
    result = record if record is not None else SDMetadata()
    fallback: Dict[str, Any] = {}
    tree = tree or {}
    exif = tree.get("exif") or {}
    xmp = tree.get("xmp") or {}
    iptc = tree.get("iptc") or {}

    for name, tag in exif.items():
        fallback[name] = tag.text()
    xmp_fields = {name: tag.text() for name, tag in xmp.items()}
    if xmp_fields:
        fallback["XMP"] = xmp_fields
    if iptc:
        fallback["IPTC"] = {name: tag.text() for name, tag in iptc.items()}

    if _apply_novelai_sentinel(exif, result):
        return TagScanOutcome(result, fallback)
    if _apply_exif_fields(exif, result):
        return TagScanOutcome(result, fallback)
    if _apply_xmp(xmp, result):
        return TagScanOutcome(result, fallback)
    _apply_iptc(iptc, result)
    return TagScanOutcome(result, fallback)


def _text(tags: Dict[str, TagValue], name: str) -> str:
    tag = tags.get(name)
    return tag.text() if isinstance(tag, TagValue) else ""


def _apply_parameters(text: str, result: SDMetadata, source: str) -> bool:
    logger.debug("Parameters found in %s:\n%s", source, preview_lines(text))
    result.parameters = text
    parse_a1111_parameters(text, result)
    return True


def _apply_novelai_sentinel(exif: Dict[str, TagValue], result: SDMetadata) -> bool:
    if _text(exif, "Software").strip() != NOVELAI_SOFTWARE:
        return False
    comment = _text(exif, "UserComment")
    if not comment:
        return False
    description = _text(exif, "ImageDescription") or None
    logger.debug("NovelAI sentinel in EXIF Software")
    parse_novelai_comment(comment, description, result)
    result.parameters = comment
    return True


def _apply_exif_fields(exif: Dict[str, TagValue], result: SDMetadata) -> bool:
    ordered = [name for name in PRIORITY_EXIF_FIELDS if name in exif]
    ordered += [name for name in exif if name not in PRIORITY_EXIF_FIELDS]
    for name in ordered:
        text = _text(exif, name)
        if has_a1111_signature(text):
            return _apply_parameters(text, result, f"EXIF {name}")
    return False


def _apply_xmp(xmp: Dict[str, TagValue], result: SDMetadata) -> bool:
    if not xmp:
        return False
    ordered = [name for name in XMP_DESCRIPTION_FIELDS if name in xmp]
    ordered += [name for name in xmp if name not in XMP_DESCRIPTION_FIELDS]
    for name in ordered:
        extracted = extract_from_xmp_value(_text(xmp, name))
        if extracted:
            return _apply_parameters(extracted, result, f"XMP {name}")
    return False


def extract_from_xmp_value(text: str) -> Optional[str]:
    """
    Parameters held by one decoded XMP property: a JSON object with
    `parameters` (or `steps` + `sampler`), else A1111 text with `Steps:`.
    """
    data = loads_dict(text)
    if data is not None:
        if isinstance(data.get("parameters"), str) and data["parameters"]:
            return data["parameters"]
        if data.get("steps") and data.get("sampler"):
            return f"Steps: {to_text(data['steps'])}, Sampler: {to_text(data['sampler'])}"
        return None
    if STEPS_LABEL in text:
        return text
    return None


def _apply_iptc(iptc: Dict[str, TagValue], result: SDMetadata) -> bool:
    caption = _text(iptc, IPTC_CAPTION_FIELD)
    if STEPS_LABEL in caption:
        return _apply_parameters(caption, result, f"IPTC {IPTC_CAPTION_FIELD}")
    return False
