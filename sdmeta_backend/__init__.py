"""SD image metadata recovery backend."""
from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .features.metadata.service import MetadataService, extract_metadata

__all__ = ["MetadataService", "extract_metadata"]


def __getattr__(name: str):
    if name in ("MetadataService", "extract_metadata"):
        from .features.metadata import service as _service

        return getattr(_service, name)
    raise AttributeError(name)
