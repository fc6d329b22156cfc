"""
Canonical metadata record produced by every parser and tier.
"""
from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Any, Optional


@dataclass
class SDMetadata:
    """
    Unified output schema.

    Every field is optional; which ones are present tells the caller which
    tool/path produced them. Scalar generation parameters are strings, as
    read from the source (`steps == "20"`).
    """

    prompt: Optional[str] = None
    negative_prompt: Optional[str] = None
    steps: Optional[str] = None
    sampler: Optional[str] = None
    cfg_scale: Optional[str] = None
    seed: Optional[str] = None
    size: Optional[str] = None
    model: Optional[str] = None
    parameters: Optional[str] = None

    # NovelAI
    nai_base_prompt: Optional[str] = None
    nai_char_prompts: Optional[list[str]] = None
    nai_neg_base_prompt: Optional[str] = None
    nai_neg_char_prompts: Optional[list[str]] = None
    nai_vibe: Optional[bool] = None
    nai_char_refs: Optional[list[str]] = None

    # Raw tag fields, only when nothing structured was recovered.
    exif_fallback: Optional[dict[str, Any]] = field(default=None)

    def is_empty(self) -> bool:
        return all(_is_absent(getattr(self, f.name)) for f in fields(self))

    def has_parameters(self) -> bool:
        return not _is_absent(self.parameters)

    def fill_from(self, other: Optional["SDMetadata"]) -> "SDMetadata":
        """Copy fields of `other` that are absent here. Returns self."""
        if other is None:
            return self
        for f in fields(self):
            value = getattr(other, f.name)
            if not _is_absent(value) and _is_absent(getattr(self, f.name)):
                setattr(self, f.name, _copy_value(value))
        return self

    def overlay(self, other: Optional["SDMetadata"]) -> "SDMetadata":
        """Overwrite with every field present in `other`. Returns self."""
        if other is None:
            return self
        for f in fields(self):
            value = getattr(other, f.name)
            if not _is_absent(value):
                setattr(self, f.name, _copy_value(value))
        return self

    def append_parameters(self, line: str) -> None:
        """Append one audit line to `parameters`."""
        current = self.parameters or ""
        self.parameters = f"{current}\n{line}".strip()

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if not _is_absent(value):
                out[f.name] = _copy_value(value)
        return out

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SDMetadata":
        names = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in (data or {}).items() if k in names})


def _is_absent(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (str, list, dict)) and not value:
        return True
    return False


def _copy_value(value: Any) -> Any:
    if isinstance(value, list):
        return list(value)
    if isinstance(value, dict):
        return dict(value)
    return value
