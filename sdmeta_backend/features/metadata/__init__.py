"""Metadata extraction feature."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .record import SDMetadata
    from .service import MetadataService

__all__ = ["MetadataService", "SDMetadata", "extract_metadata"]


def __getattr__(name: str):
    if name in ("MetadataService", "extract_metadata"):
        from .service import MetadataService as _MetadataService
        from .service import extract_metadata as _extract_metadata

        mapping = {"MetadataService": _MetadataService, "extract_metadata": _extract_metadata}
        return mapping[name]
    if name == "SDMetadata":
        from .record import SDMetadata as _SDMetadata

        return _SDMetadata
    raise AttributeError(name)
