"""
Extraction tiers.

Each tier reads the raw buffer (through the context's collaborators) and
returns a partial `SDMetadata`, or None when it found nothing. Merging the
partials is the service's job.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from ...config import ExtractionSettings
from ...shared import ImageFormat, get_logger, preview_lines
from ..geninfo.a1111 import STEPS_LABEL, parse_a1111_parameters
from ..geninfo.comfy import parse_comfy_graph
from ..geninfo.novelai import NOVELAI_SOFTWARE, parse_novelai_comment
from .fallback_readers import RasterDecoder, TagReader
from .heuristic_scanner import scan_bytes_for_parameters
from .parsing_utils import first_present, loads_dict
from .png_chunks import extract_png_text_chunks
from .record import SDMetadata
from .segments import scan_jpeg_segments, scan_webp_chunks
from .stealth import extract_stealth_metadata
from .tag_scanner import scan_tag_tree

logger = get_logger(__name__)


@dataclass
class ExtractionContext:
    """State shared by the tiers of one `extract()` call."""

    buffer: bytes
    image_format: ImageFormat
    settings: ExtractionSettings
    tag_reader: TagReader
    raster_decoder: RasterDecoder
    record: SDMetadata = field(default_factory=SDMetadata)
    fallback: Dict[str, Any] = field(default_factory=dict)


def _parameters_record(text: str) -> SDMetadata:
    record = SDMetadata(parameters=text)
    parse_a1111_parameters(text, record)
    return record


# --- PNG -------------------------------------------------------------------


def extract_png_text_metadata(ctx: ExtractionContext) -> Optional[SDMetadata]:
    chunks = extract_png_text_chunks(ctx.buffer, max_size=ctx.settings.max_decompressed_size)
    if not chunks:
        return None
    logger.debug("PNG text chunks: %s", ", ".join(sorted(chunks)))
    return apply_png_text_chunks(chunks)


def apply_png_text_chunks(chunks: Dict[str, str]) -> SDMetadata:
    """
    Map decoded PNG text chunks onto a record.

    Order: `parameters` (A1111), else `prompt` (ComfyUI API graph, or plain
    prompt text); NovelAI `Comment` + `Description`; `Description` as prompt;
    a `Comment` that is not NovelAI's; `workflow` (ComfyUI workflow graph).
    """
    record = SDMetadata()

    parameters = chunks.get("parameters")
    prompt = chunks.get("prompt")
    if parameters:
        record.parameters = parameters
        parse_a1111_parameters(parameters, record)
    elif prompt:
        graph = loads_dict(prompt)
        if graph is not None:
            parse_comfy_graph(graph, record)
        else:
            record.prompt = prompt

    software = first_present(chunks, "Software", "software")
    description = first_present(chunks, "Description", "description")
    comment = first_present(chunks, "Comment", "comment")
    novelai_handled = False
    if software == NOVELAI_SOFTWARE and comment:
        parse_novelai_comment(comment, description, record)
        novelai_handled = True

    if description and not record.prompt:
        record.prompt = description

    if comment and not novelai_handled and not record.has_parameters():
        _apply_plain_comment(comment, record)

    workflow = loads_dict(chunks.get("workflow"))
    if workflow is not None:
        parse_comfy_graph(workflow, record)
    return record


def _apply_plain_comment(comment: str, record: SDMetadata) -> None:
    data = loads_dict(comment)
    if data is not None:
        if data.get("prompt") or data.get("uc"):
            parse_novelai_comment(data, None, record)
        return
    if STEPS_LABEL in comment:
        record.parameters = comment
        parse_a1111_parameters(comment, record)


def extract_stealth_tier(ctx: ExtractionContext) -> Optional[SDMetadata]:
    if not ctx.settings.stealth_enabled:
        return None
    raster = ctx.raster_decoder(ctx.buffer)
    if raster is None:
        return None
    return extract_stealth_metadata(
        raster.width,
        raster.height,
        raster.pixels,
        max_pixels=ctx.settings.stealth_max_pixels,
        max_decompressed_size=ctx.settings.max_decompressed_size,
    )


# --- JPEG / WebP -----------------------------------------------------------


def extract_jpeg_segment_metadata(ctx: ExtractionContext) -> Optional[SDMetadata]:
    found = scan_jpeg_segments(ctx.buffer)
    if found is None:
        return None
    name, text = found
    logger.debug("Parameters found in JPEG %s:\n%s", name, preview_lines(text))
    return _parameters_record(text)


def extract_webp_chunk_metadata(ctx: ExtractionContext) -> Optional[SDMetadata]:
    found = scan_webp_chunks(ctx.buffer)
    if found is None:
        return None
    name, text = found
    logger.debug("Parameters found in WebP %s chunk:\n%s", name, preview_lines(text))
    return _parameters_record(text)


def extract_tag_field_metadata(ctx: ExtractionContext) -> Optional[SDMetadata]:
    tree = ctx.tag_reader(ctx.buffer)
    outcome = scan_tag_tree(tree)
    ctx.fallback.update(outcome.fallback)
    return None if outcome.record.is_empty() else outcome.record


# --- any format ------------------------------------------------------------


def extract_heuristic_metadata(ctx: ExtractionContext) -> Optional[SDMetadata]:
    if not ctx.settings.heuristic_enabled:
        return None
    text = scan_bytes_for_parameters(ctx.buffer, max_scan_bytes=ctx.settings.heuristic_max_scan_bytes)
    if not text:
        return None
    logger.debug("Heuristic scan recovered parameters:\n%s", preview_lines(text))
    return _parameters_record(text)
