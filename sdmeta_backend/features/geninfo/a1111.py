"""
A1111 / Forge parameters text parser.

Format:
    <prompt lines>
    Negative prompt: <negative prompt>
    Steps: 20, Sampler: Euler a, CFG scale: 7, Seed: 42, Size: 512x768, Model: foo
"""
from __future__ import annotations

import re
from typing import Any, Callable, Optional

from ...shared import ErrorCode, Result, get_logger
from ..metadata.record import SDMetadata

logger = get_logger(__name__)

NEGATIVE_PROMPT_LABEL = "Negative prompt:"
STEPS_LABEL = "Steps:"

_STEPS_VALUE_RE = re.compile(r"Steps:\s*\d+", re.IGNORECASE)
_OTHER_PARAM_RE = re.compile(r"(Sampler|CFG scale|Seed|Size|Model):", re.IGNORECASE)
_DIMENSIONS_RE = re.compile(r"(\d+)\s*[xX]\s*(\d+)")


def _matches_steps(key: str) -> bool:
    return "steps" in key


def _matches_sampler(key: str) -> bool:
    return "sampler" in key


def _matches_cfg(key: str) -> bool:
    return "cfg" in key and "scale" in key


def _matches_seed(key: str) -> bool:
    return "seed" in key


def _matches_size(key: str) -> bool:
    return "size" in key


def _matches_model(key: str) -> bool:
    return "model" in key and "hash" not in key


# Checked in order for every `key: value` pair; a pair maps to the first
# canonical field whose matcher accepts it. Within one parameters string the
# first pair mapped to a field wins (`Steps` before `Hires steps`).
_FIELD_MATCHERS: tuple[tuple[str, Callable[[str], bool]], ...] = (
    ("steps", _matches_steps),
    ("sampler", _matches_sampler),
    ("cfg_scale", _matches_cfg),
    ("seed", _matches_seed),
    ("size", _matches_size),
    ("model", _matches_model),
)


def parse_a1111_parameters(parameters: Any, record: Optional[SDMetadata] = None) -> Result[SDMetadata]:
    """
    Parse an A1111 parameters string into `record` (a new record when None).

    Only structured fields are written; storing the verbatim string in
    `parameters` is the caller's decision.
    """
    result = record if record is not None else SDMetadata()
    if not isinstance(parameters, str) or not parameters.strip():
        return Result.Err(ErrorCode.PARSE_ERROR, "Empty parameters text", record=result)

    try:
        lines = [line.strip() for line in parameters.replace("\r\n", "\n").split("\n")]
        params_start = _find_params_start(lines)

        prompt_lines = [line for line in lines[:params_start] if line]
        prompt = "\n".join(prompt_lines).strip()
        if prompt:
            result.prompt = prompt

        _parse_parameter_block(lines[params_start:], result)
    except Exception as exc:
        logger.debug("Failed to parse A1111 parameters: %s", exc)
        return Result.Err(ErrorCode.PARSE_ERROR, "Invalid A1111 parameters", record=result)

    return Result.Ok(result)


def _find_params_start(lines: list[str]) -> int:
    for idx, line in enumerate(lines):
        if line.startswith(NEGATIVE_PROMPT_LABEL) or line.startswith(STEPS_LABEL):
            return idx
    return len(lines)


def _parse_parameter_block(lines: list[str], result: SDMetadata) -> None:
    # The negative prompt is the labelled line alone; later lines are parameters.
    seen: set[str] = set()
    for line in lines:
        if not line:
            continue
        if line.startswith(NEGATIVE_PROMPT_LABEL):
            negative = line[len(NEGATIVE_PROMPT_LABEL):].strip()
            if negative:
                result.negative_prompt = negative
            continue
        _parse_parameter_line(line, result, seen)


def _parse_parameter_line(line: str, result: SDMetadata, seen: set[str]) -> None:
    for param in (p.strip() for p in line.split(",")):
        colon = param.find(":")
        if colon == -1:
            continue
        key = param[:colon].strip().lower()
        value = param[colon + 1:].strip()
        if not key or not value:
            continue
        for field_name, matches in _FIELD_MATCHERS:
            if matches(key):
                if field_name not in seen:
                    seen.add(field_name)
                    setattr(result, field_name, value)
                break


def is_a1111_format(text: Any) -> bool:
    """A `Steps: <n>` token or any other known `Key:` label."""
    if not isinstance(text, str) or not text:
        return False
    return bool(_STEPS_VALUE_RE.search(text) or _OTHER_PARAM_RE.search(text))


def parse_dimensions(size: Any) -> Optional[tuple[int, int]]:
    """`"512x768"` / `"512 x 768"` -> (512, 768)."""
    if not isinstance(size, str) or not size:
        return None
    match = _DIMENSIONS_RE.search(size)
    if not match:
        return None
    return int(match.group(1)), int(match.group(2))
