"""
NovelAI comment parser.

NovelAI stores generation settings as a JSON object in the `Comment` text
chunk (or EXIF UserComment) and the prompt in `Description`. V4 models nest
the prompt into base/character captions.
"""
from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional
from urllib.parse import unquote

from ...shared import ErrorCode, Result, get_logger
from ...utils import to_text
from ..metadata.record import SDMetadata
from .a1111 import STEPS_LABEL, parse_a1111_parameters

logger = get_logger(__name__)

NOVELAI_SOFTWARE = "NovelAI"

_NOVELAI_HINT_KEYS = ("steps", "v4_prompt", "director_reference_descriptions")


class CommentKind(str, Enum):
    JSON = "json"
    A1111_TEXT = "a1111_text"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class DecodedComment:
    """Comment payload classified once: a JSON object, A1111 text, or neither."""

    kind: CommentKind
    data: Optional[dict[str, Any]] = None
    text: str = ""


def decode_comment(comment: Any) -> DecodedComment:
    if isinstance(comment, dict):
        return DecodedComment(CommentKind.JSON, data=comment)
    if not isinstance(comment, str):
        return DecodedComment(CommentKind.UNKNOWN)

    for candidate in (comment, _url_decoded(comment)):
        if candidate is None:
            continue
        try:
            parsed = json.loads(candidate)
        except (ValueError, RecursionError):
            continue
        if isinstance(parsed, dict):
            return DecodedComment(CommentKind.JSON, data=parsed, text=comment)

    if STEPS_LABEL in comment:
        return DecodedComment(CommentKind.A1111_TEXT, text=comment)
    return DecodedComment(CommentKind.UNKNOWN, text=comment)


def _url_decoded(comment: str) -> Optional[str]:
    if "%" not in comment:
        return None
    try:
        decoded = unquote(comment, errors="strict")
    except UnicodeDecodeError:
        return None
    return decoded if decoded != comment else None


def parse_novelai_comment(
    comment: Any,
    description: Optional[str] = None,
    record: Optional[SDMetadata] = None,
) -> Result[SDMetadata]:
    """
    Merge a NovelAI comment into `record` (a new record when None).

    Precedence: an existing prompt/negative prompt is never replaced; the
    sibling description is the preferred prompt, the JSON `prompt` key the
    fallback. Sampler settings from the comment overwrite earlier values.
    """
    result = record if record is not None else SDMetadata()
    decoded = decode_comment(comment)

    if decoded.kind is CommentKind.A1111_TEXT:
        # Schema misdetection: the "comment" is really a parameters string.
        if not result.has_parameters():
            result.parameters = decoded.text
        return parse_a1111_parameters(decoded.text, result)

    if decoded.kind is not CommentKind.JSON or decoded.data is None:
        return Result.Err(ErrorCode.PARSE_ERROR, "Invalid JSON format", record=result)

    try:
        _apply_comment_fields(result, decoded.data, description)
    except Exception as exc:
        logger.debug("NovelAI comment mapping failed: %s", exc)
        return Result.Err(ErrorCode.PARSE_ERROR, "Invalid NovelAI comment", record=result)
    return Result.Ok(result)


def _apply_comment_fields(result: SDMetadata, data: dict[str, Any], description: Optional[str]) -> None:
    if not result.prompt:
        if isinstance(description, str) and description:
            result.prompt = description
        elif isinstance(data.get("prompt"), str) and data["prompt"]:
            result.prompt = data["prompt"]

    uc = data.get("uc")
    if isinstance(uc, str) and uc and not result.negative_prompt:
        result.negative_prompt = uc

    _set_scalar(result, "steps", data.get("steps"))
    _set_scalar(result, "cfg_scale", data.get("scale"))
    _set_scalar(result, "seed", data.get("seed"))
    sampler = data.get("sampler")
    if isinstance(sampler, str) and sampler:
        result.sampler = sampler

    vibe = data.get("uncond_per_vibe")
    if isinstance(vibe, bool):
        result.nai_vibe = vibe

    base, chars = _caption_parts(data.get("v4_prompt"))
    if base:
        result.nai_base_prompt = base
    if chars:
        result.nai_char_prompts = chars

    neg_base, neg_chars = _caption_parts(data.get("v4_negative_prompt"))
    if neg_base:
        result.nai_neg_base_prompt = neg_base
    if neg_chars:
        result.nai_neg_char_prompts = neg_chars

    refs = extract_director_references(data)
    if refs:
        result.nai_char_refs = refs


def _set_scalar(result: SDMetadata, field_name: str, value: Any) -> None:
    if value is None or isinstance(value, (dict, list)):
        return
    setattr(result, field_name, to_text(value))


def _caption_parts(prompt_block: Any) -> tuple[Optional[str], list[str]]:
    """(base_caption, [char_caption, ...]) from a v4 prompt block; order preserved."""
    if not isinstance(prompt_block, dict):
        return None, []
    caption = prompt_block.get("caption")
    if not isinstance(caption, dict):
        return None, []

    base = caption.get("base_caption")
    base_text = base if isinstance(base, str) and base else None

    chars: list[str] = []
    char_captions = caption.get("char_captions")
    if isinstance(char_captions, list):
        for entry in char_captions:
            text = entry.get("char_caption") if isinstance(entry, dict) else None
            if isinstance(text, str) and text:
                chars.append(text)
    return base_text, chars


def extract_director_references(data: dict[str, Any]) -> list[str]:
    """
    Zip descriptions / strengths / secondary strengths by index.

    Each entry reads `"<description> <strength>/<secondary>"`; parts missing at
    an index are left out of that entry, and entries that end up empty are
    dropped.
    """
    descs = _as_list(data.get("director_reference_descriptions"))
    strengths = _as_list(data.get("director_reference_strengths"))
    secondaries = _as_list(data.get("director_reference_secondary_strengths"))
    if not descs and not strengths:
        return []

    refs: list[str] = []
    for idx in range(max(len(descs), len(strengths), len(secondaries))):
        ref = _reference_description(descs[idx] if idx < len(descs) else None)
        primary = strengths[idx] if idx < len(strengths) else None
        secondary = secondaries[idx] if idx < len(secondaries) else None
        if primary is not None:
            ref += (" " if ref else "") + to_text(primary)
        if secondary is not None:
            ref += "/" + to_text(secondary)
        if ref:
            refs.append(ref)
    return refs


def _reference_description(desc: Any) -> str:
    if isinstance(desc, str):
        return desc
    if isinstance(desc, dict):
        caption = desc.get("caption")
        if isinstance(caption, dict):
            base = caption.get("base_caption")
            if isinstance(base, str):
                return base
    return ""


def _as_list(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []


def is_novelai_format(text: Any) -> bool:
    """JSON object with a string `uc`, or any of the NovelAI-only keys."""
    decoded = decode_comment(text)
    if decoded.kind is not CommentKind.JSON or decoded.data is None:
        return False
    data = decoded.data
    if isinstance(data.get("uc"), str):
        return True
    return any(key in data for key in _NOVELAI_HINT_KEYS)
