"""Graph shape classification and node/link helpers for ComfyUI exports."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, NamedTuple, Optional

DEFAULT_MAX_GRAPH_NODES = 5000


class GraphShape(str, Enum):
    NODE_ARRAY = "node_array"  # UI workflow export: {"nodes": [...], "links": [...]}
    ID_KEYED = "id_keyed"      # API prompt export: {"3": {"class_type": ..., "inputs": {...}}}


class Link(NamedTuple):
    link_id: Any
    source_id: Any
    source_slot: Any
    target_id: Any
    target_slot: Any


@dataclass(frozen=True)
class ComfyGraph:
    """A graph payload resolved once to its serialization."""

    shape: GraphShape
    nodes: Any
    links: list[Any] = field(default_factory=list)


def classify_graph(data: Any) -> Optional[ComfyGraph]:
    """
    Dispatch on shape: a `nodes` array, an id-keyed object (optionally
    wrapped in `{"prompt": {...}}`), or None for anything else.
    """
    if not isinstance(data, dict):
        return None
    nodes = data.get("nodes")
    if isinstance(nodes, list):
        links = data.get("links")
        return ComfyGraph(
            GraphShape.NODE_ARRAY,
            nodes[:DEFAULT_MAX_GRAPH_NODES],
            links if isinstance(links, list) else [],
        )
    inner = data.get("prompt")
    if isinstance(inner, dict):
        return ComfyGraph(GraphShape.ID_KEYED, inner)
    return ComfyGraph(GraphShape.ID_KEYED, data)


def _to_int(value: Any) -> int | None:
    try:
        if value is None or isinstance(value, bool):
            return None
        return int(value)
    except (TypeError, ValueError):
        return None


def _node_key(value: Any) -> str | None:
    """Node ids compare as strings; `7`, `7.0` and `"7"` are the same node."""
    as_int = _to_int(value)
    if as_int is not None and not isinstance(value, str):
        return str(as_int)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _node_type(node: Any) -> str:
    if not isinstance(node, dict):
        return ""
    return str(node.get("class_type") or node.get("type") or "")


def _inputs(node: Any) -> dict[str, Any]:
    """Named inputs of an id-keyed node (`inputs`, or the older `input`)."""
    if not isinstance(node, dict):
        return {}
    ins = node.get("inputs")
    if not isinstance(ins, dict):
        ins = node.get("input")
    return ins if isinstance(ins, dict) else {}


def _input_slots(node: Any) -> list[dict[str, Any]]:
    """Declared input slots of a node-array node."""
    if not isinstance(node, dict):
        return []
    ins = node.get("inputs")
    if not isinstance(ins, list):
        return []
    return [slot for slot in ins if isinstance(slot, dict)]


def _widgets(node: Any) -> list[Any]:
    if not isinstance(node, dict):
        return []
    values = node.get("widgets_values")
    return values if isinstance(values, list) else []


def _widget(node: Any, index: int) -> Any:
    values = _widgets(node)
    return values[index] if 0 <= index < len(values) else None


def build_node_index(nodes: list[Any]) -> dict[str, dict[str, Any]]:
    """id -> node for node-array exports; nodes without an id are skipped."""
    out: dict[str, dict[str, Any]] = {}
    for node in nodes:
        if not isinstance(node, dict):
            continue
        key = _node_key(node.get("id"))
        if key is not None:
            out[key] = node
    return out


def build_link_index(links: list[Any]) -> dict[str, Link]:
    """linkId -> Link for `[linkId, src, srcSlot, dst, dstSlot, ...]` tuples."""
    out: dict[str, Link] = {}
    for link in links:
        if not isinstance(link, (list, tuple)) or len(link) < 5:
            continue
        key = _node_key(link[0])
        if key is not None:
            out[key] = Link(link[0], link[1], link[2], link[3], link[4])
    return out


def trace_input_source(
    node: dict[str, Any],
    input_name: str,
    link_index: dict[str, Link],
    node_index: dict[str, dict[str, Any]],
) -> Optional[dict[str, Any]]:
    """One hop: the node feeding `input_name` of `node`, via the link table."""
    for slot in _input_slots(node):
        if slot.get("name") != input_name:
            continue
        link_key = _node_key(slot.get("link"))
        if link_key is None:
            return None
        link = link_index.get(link_key)
        if link is None:
            return None
        source_key = _node_key(link.source_id)
        return node_index.get(source_key) if source_key is not None else None
    return None
