"""
Metadata service - runs the per-format extraction tiers and returns one record.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from functools import partial
from typing import Callable, Dict, Optional

from ...config import ExtractionSettings
from ...shared import (
    ErrorCode,
    ImageFormat,
    Result,
    detect_image_format,
    get_logger,
    log_structured,
    sanitize_error_message,
)
from .extractors import (
    ExtractionContext,
    extract_heuristic_metadata,
    extract_jpeg_segment_metadata,
    extract_png_text_metadata,
    extract_stealth_tier,
    extract_tag_field_metadata,
    extract_webp_chunk_metadata,
)
from .fallback_readers import RasterDecoder, TagReader, decode_rgba, read_tag_tree
from .record import SDMetadata

logger = get_logger(__name__)

MERGE_FILL = "fill"
MERGE_OVERLAY = "overlay"


def always(record: SDMetadata) -> bool:
    return True


def lacks_parameters(record: SDMetadata) -> bool:
    return not record.has_parameters()


def is_empty(record: SDMetadata) -> bool:
    return record.is_empty()


@dataclass(frozen=True)
class Tier:
    """
    One extraction step.

    `when` is checked against the record accumulated so far; `merge` decides
    whether the tier's fields fill gaps (`fill`) or replace earlier values
    (`overlay`).
    """

    name: str
    run: Callable[[ExtractionContext], Optional[SDMetadata]]
    when: Callable[[SDMetadata], bool] = always
    merge: str = MERGE_FILL


HEURISTIC_TIER = Tier("heuristic_bytes", extract_heuristic_metadata, is_empty, MERGE_FILL)

TIERS: Dict[str, tuple[Tier, ...]] = {
    "png": (
        Tier("png_text_chunks", extract_png_text_metadata, always, MERGE_FILL),
        Tier("stealth_lsb", extract_stealth_tier, lacks_parameters, MERGE_OVERLAY),
        HEURISTIC_TIER,
    ),
    "jpeg": (
        Tier("jpeg_app_segments", extract_jpeg_segment_metadata, always, MERGE_FILL),
        Tier("tag_fields", extract_tag_field_metadata, lacks_parameters, MERGE_FILL),
        HEURISTIC_TIER,
    ),
    "webp": (
        Tier("tag_fields", extract_tag_field_metadata, always, MERGE_FILL),
        Tier("webp_riff_chunks", extract_webp_chunk_metadata, lacks_parameters, MERGE_FILL),
        HEURISTIC_TIER,
    ),
}

_FORMAT_LABELS = {"png": "PNG", "jpeg": "JPEG", "webp": "WebP"}


class MetadataService:
    """
    Recovers generation metadata from PNG / JPEG / WebP bytes.

    Stateless apart from its collaborators; one instance can serve concurrent
    callers.
    """

    def __init__(
        self,
        tag_reader: Optional[TagReader] = None,
        raster_decoder: Optional[RasterDecoder] = None,
        settings: Optional[ExtractionSettings] = None,
    ):
        self.settings = settings or ExtractionSettings()
        self.tag_reader: TagReader = tag_reader or read_tag_tree
        self.raster_decoder: RasterDecoder = raster_decoder or partial(
            decode_rgba, max_pixels=self.settings.stealth_max_pixels
        )

    def extract(self, buffer: bytes) -> Result[SDMetadata]:
        if not isinstance(buffer, (bytes, bytearray, memoryview)):
            return Result.Err(ErrorCode.INVALID_INPUT, "Input must be bytes")
        data = bytes(buffer)
        if not data:
            return Result.Err(ErrorCode.INVALID_INPUT, "Empty buffer")

        image_format = detect_image_format(data)
        if image_format is None:
            return Result.Err(ErrorCode.UNSUPPORTED, "Unsupported image format")

        start = time.perf_counter()
        ctx = ExtractionContext(
            buffer=data,
            image_format=image_format,
            settings=self.settings,
            tag_reader=self.tag_reader,
            raster_decoder=self.raster_decoder,
        )
        try:
            matched = self._run_tiers(ctx, TIERS[image_format])
            result = self._finish(ctx)
        except Exception as exc:
            logger.warning("Metadata extraction failed for %s input: %s", image_format, exc)
            return Result.Err(
                ErrorCode.METADATA_FAILED, sanitize_error_message(exc, "Metadata extraction failed")
            )

        log_structured(
            logger,
            logging.DEBUG,
            "metadata_extract",
            format=image_format,
            bytes=len(data),
            tiers=matched,
            ok=result.ok,
            fields=sorted(result.data.to_dict()) if result.ok and result.data else [],
            duration_ms=round((time.perf_counter() - start) * 1000, 2),
        )
        return result

    def _run_tiers(self, ctx: ExtractionContext, tiers: tuple[Tier, ...]) -> list[str]:
        matched: list[str] = []
        for tier in tiers:
            if not tier.when(ctx.record):
                continue
            try:
                partial_record = tier.run(ctx)
            except Exception as exc:
                logger.debug("Tier %s failed on %s: %s", tier.name, ctx.image_format, exc)
                continue
            if partial_record is None or partial_record.is_empty():
                continue
            if tier.merge == MERGE_OVERLAY:
                ctx.record.overlay(partial_record)
            else:
                ctx.record.fill_from(partial_record)
            matched.append(tier.name)
        return matched

    def _finish(self, ctx: ExtractionContext) -> Result[SDMetadata]:
        record = ctx.record
        if record.is_empty() and ctx.fallback:
            logger.debug(
                "No SD metadata in %s, returning %d tag fields as fallback", ctx.image_format, len(ctx.fallback)
            )
            return Result.Ok(SDMetadata(exif_fallback=dict(ctx.fallback)), source="exif_fallback")
        if record.is_empty():
            return Result.Err(ErrorCode.NOT_FOUND, f"No SD metadata found in {format_label(ctx.image_format)}")
        return Result.Ok(record)


def format_label(image_format: ImageFormat) -> str:
    return _FORMAT_LABELS.get(image_format, str(image_format).upper())


def extract_metadata(buffer: bytes) -> Result[SDMetadata]:
    """Extract with a fresh service using the default collaborators and settings."""
    return MetadataService().extract(buffer)
