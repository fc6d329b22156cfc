"""
ComfyUI graph parser.

Two serializations of the same graph are supported:
- node-array workflow export (`{"nodes": [...], "links": [...]}`), where prompt
  roles are traced through the link table one hop back from the sampler;
- id-keyed API prompt (`{"3": {"class_type": "KSampler", "inputs": {...}}}`),
  read in key order.
"""
from __future__ import annotations

import json
from typing import Any, Optional

from ...shared import ErrorCode, Result, get_logger
from ...utils import to_text
from ..metadata.record import SDMetadata
from .graph_converter import (
    ComfyGraph,
    GraphShape,
    _inputs,
    _node_type,
    _widget,
    _widgets,
    build_link_index,
    build_node_index,
    classify_graph,
    trace_input_source,
)

logger = get_logger(__name__)

KSAMPLER_TYPES = frozenset({"KSampler", "KSamplerAdvanced"})
SAMPLER_CUSTOM_TYPES = frozenset({"SamplerCustom"})
SAMPLER_SELECT_TYPES = frozenset({"KSamplerSelect"})
TEXT_ENCODER_TYPES = frozenset({"CLIPTextEncode"})
API_TEXT_ENCODER_TYPES = frozenset({"CLIPTextEncode", "CLIPTextEncoder"})
CHECKPOINT_TYPES = frozenset({"CheckpointLoader", "CheckpointLoaderSimple"})
LATENT_TYPES = frozenset({"EmptyLatentImage"})
VAE_TYPES = frozenset({"VAELoader"})
LORA_TYPES = frozenset({"LoraLoader"})

# Widget inserted after seed widgets by the ComfyUI frontend.
CONTROL_AFTER_GENERATE = frozenset({"fixed", "increment", "decrement", "randomize"})

# Widget index of the seed for each sampler type; steps/cfg/sampler follow it,
# after the optional control_after_generate widget.
_SEED_WIDGET_INDEX = {"KSampler": 0, "KSamplerAdvanced": 1}

_RECOGNIZED_TYPES = KSAMPLER_TYPES | SAMPLER_CUSTOM_TYPES | API_TEXT_ENCODER_TYPES | LATENT_TYPES | CHECKPOINT_TYPES


def parse_comfy_graph(data: Any, record: Optional[SDMetadata] = None) -> Result[SDMetadata]:
    """
    Merge a ComfyUI workflow or API prompt into `record` (a new record when None).
    """
    result = record if record is not None else SDMetadata()
    graph = classify_graph(data)
    if graph is None:
        return Result.Err(ErrorCode.PARSE_ERROR, "Not a ComfyUI graph", record=result)

    try:
        if graph.shape is GraphShape.NODE_ARRAY:
            _parse_node_array(graph, result)
        else:
            _parse_id_keyed(graph, result)
    except Exception as exc:
        logger.debug("ComfyUI graph parse failed (%s): %s", graph.shape.value, exc)
        return Result.Err(ErrorCode.PARSE_ERROR, "Invalid ComfyUI graph", record=result)
    return Result.Ok(result, shape=graph.shape.value)


# --- node-array workflow -------------------------------------------------


def _parse_node_array(graph: ComfyGraph, result: SDMetadata) -> None:
    nodes = [n for n in graph.nodes if isinstance(n, dict)]

    dump = _widget_dump(nodes)
    if dump:
        if result.has_parameters():
            result.parameters = f"{result.parameters}\n\n{dump}"
        else:
            result.parameters = dump

    node_index = build_node_index(nodes)
    link_index = build_link_index(graph.links)

    sampler = next((n for n in nodes if _node_type(n) in KSAMPLER_TYPES), None)
    sampler_custom = next((n for n in nodes if _node_type(n) in SAMPLER_CUSTOM_TYPES), None)

    positive = negative = None
    if sampler is not None:
        positive = trace_input_source(sampler, "positive", link_index, node_index)
        negative = trace_input_source(sampler, "negative", link_index, node_index)

    # Each role falls back to file order on its own, so a traced positive
    # can pair with a positional negative.
    encoders = [n for n in nodes if _node_type(n) in TEXT_ENCODER_TYPES]
    if positive is None and encoders:
        positive = encoders[0]
    if negative is None and len(encoders) > 1:
        negative = encoders[1]

    prompt_text = _widget(positive, 0)
    if prompt_text:
        result.prompt = to_text(prompt_text)
    negative_text = _widget(negative, 0)
    if negative_text:
        result.negative_prompt = to_text(negative_text)

    if sampler is not None:
        _apply_ksampler_widgets(sampler, result)
    if sampler_custom is not None:
        _apply_sampler_custom_widgets(sampler_custom, result)
    if not result.sampler:
        select = next((n for n in nodes if _node_type(n) in SAMPLER_SELECT_TYPES), None)
        if _widget(select, 0):
            result.sampler = to_text(_widget(select, 0))

    _scan_auxiliary_nodes(nodes, result)


def _widget_dump(nodes: list[dict[str, Any]]) -> str:
    blocks: list[str] = []
    for node in nodes:
        lines: list[str] = []
        for idx, value in enumerate(_widgets(node)):
            text = _widget_text(value)
            if text:
                lines.append(f"{idx}: {text}")
        if not lines:
            continue
        header = f"Node: {_node_type(node) or 'Unknown'}"
        title = node.get("title")
        if title:
            header += f" ({title})"
        blocks.append(header + "\n" + "\n".join(lines))
    return "\n\n".join(blocks)


def _widget_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    return to_text(value).strip()


def _seed_offset(node: dict[str, Any], seed_index: int) -> int:
    """1 when a control_after_generate widget follows the seed widget."""
    control = _widget(node, seed_index + 1)
    return 1 if isinstance(control, str) and control in CONTROL_AFTER_GENERATE else 0


def _apply_ksampler_widgets(node: dict[str, Any], result: SDMetadata) -> None:
    seed_index = _SEED_WIDGET_INDEX.get(_node_type(node), 0)
    base = seed_index + _seed_offset(node, seed_index)
    for field_name, index in (
        ("seed", seed_index),
        ("steps", base + 1),
        ("cfg_scale", base + 2),
        ("sampler", base + 3),
    ):
        value = _widget(node, index)
        if value is not None and not isinstance(value, (dict, list)):
            setattr(result, field_name, to_text(value))


def _apply_sampler_custom_widgets(node: dict[str, Any], result: SDMetadata) -> None:
    # SamplerCustom: add_noise, noise_seed, [control], cfg
    seed = _widget(node, 1)
    if seed is not None and not result.seed:
        result.seed = to_text(seed)
    cfg = _widget(node, 2 + _seed_offset(node, 1))
    if isinstance(cfg, (int, float)) and not isinstance(cfg, bool) and not result.cfg_scale:
        result.cfg_scale = to_text(cfg)


def _scan_auxiliary_nodes(nodes: list[dict[str, Any]], result: SDMetadata) -> None:
    for node in nodes:
        node_type = _node_type(node)
        first = _widget(node, 0)
        if node_type in CHECKPOINT_TYPES and first:
            result.model = to_text(first)
            result.append_parameters(f"Model: {to_text(first)}")
        elif node_type in LATENT_TYPES:
            width, height = _widget(node, 0), _widget(node, 1)
            if width and height:
                result.size = f"{to_text(width)}x{to_text(height)}"
        elif node_type in VAE_TYPES and first:
            result.append_parameters(f"VAE: {to_text(first)}")
        elif node_type in LORA_TYPES and first:
            strength = _widget(node, 1) or _widget(node, 2)
            result.append_parameters(f"LoRA: {to_text(first)} (str: {to_text(strength)})")


# --- id-keyed API prompt -------------------------------------------------


def _parse_id_keyed(graph: ComfyGraph, result: SDMetadata) -> None:
    if not isinstance(graph.nodes, dict):
        return
    for node in graph.nodes.values():
        if not isinstance(node, dict):
            continue
        class_type = _node_type(node)
        ins = _inputs(node)
        if not ins:
            continue
        if class_type in API_TEXT_ENCODER_TYPES:
            _apply_encoder_text(ins, result)
        elif class_type in KSAMPLER_TYPES:
            _apply_ksampler_inputs(ins, result)
        elif class_type in SAMPLER_CUSTOM_TYPES:
            _apply_sampler_custom_inputs(ins, result)
        elif class_type in CHECKPOINT_TYPES:
            ckpt = ins.get("ckpt_name")
            if isinstance(ckpt, str) and ckpt and not result.model:
                result.model = ckpt
        elif class_type in LATENT_TYPES:
            width, height = ins.get("width"), ins.get("height")
            if _is_scalar(width) and _is_scalar(height) and not result.size:
                result.size = f"{to_text(width)}x{to_text(height)}"


def _apply_encoder_text(ins: dict[str, Any], result: SDMetadata) -> None:
    text = next((ins[k] for k in ("text", "string", "prompt") if isinstance(ins.get(k), str) and ins[k]), None)
    if text is None or text == result.prompt:
        return
    if not result.prompt:
        result.prompt = text
    elif not result.negative_prompt:
        result.negative_prompt = text


def _apply_ksampler_inputs(ins: dict[str, Any], result: SDMetadata) -> None:
    seed = ins.get("seed", ins.get("noise_seed"))
    if _is_scalar(seed):
        result.seed = to_text(seed)
    if _is_scalar(ins.get("steps")):
        result.steps = to_text(ins["steps"])
    cfg = ins.get("cfg", ins.get("cfg_scale"))
    if _is_scalar(cfg):
        result.cfg_scale = to_text(cfg)
    sampler = ins.get("sampler_name") or ins.get("sampler")
    if isinstance(sampler, str) and sampler:
        result.sampler = sampler
    if _is_scalar(ins.get("denoise")):
        result.append_parameters(f"Denoising: {to_text(ins['denoise'])}")


def _apply_sampler_custom_inputs(ins: dict[str, Any], result: SDMetadata) -> None:
    if _is_scalar(ins.get("cfg")):
        result.cfg_scale = to_text(ins["cfg"])
    guider = ins.get("guider")
    if isinstance(guider, str) and guider:
        result.sampler = guider
    elif isinstance(guider, dict) and isinstance(guider.get("sampler_name"), str):
        result.sampler = guider["sampler_name"]


def _is_scalar(value: Any) -> bool:
    return isinstance(value, (str, int, float)) and not isinstance(value, bool) and value != ""


def is_comfy_format(data: Any) -> bool:
    """True when the payload holds at least one recognizable ComfyUI node."""
    graph = classify_graph(data)
    if graph is None:
        return False
    if graph.shape is GraphShape.NODE_ARRAY:
        return any(_node_type(n) in _RECOGNIZED_TYPES for n in graph.nodes)
    if not isinstance(graph.nodes, dict):
        return False
    return any(
        "KSampler" in _node_type(n) or "CLIPTextEncode" in _node_type(n)
        for n in graph.nodes.values()
        if isinstance(n, dict) and isinstance(n.get("class_type"), str)
    )
