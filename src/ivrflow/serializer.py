from __future__ import annotations
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Set, Union

import yaml
from pydantic import ValidationError

from .errors import DuplicateNode, InvalidConfig, MalformedDocument
from .ir import UNKNOWN, BlockType, Edge, Graph, Node, build_config, edge_id_for

logger = logging.getLogger(__name__)

YAML_SUFFIXES = {".yaml", ".yml"}

# keys the original editor keeps in node.data that are not block config
_EDITOR_DATA_KEYS = {"name", "label", "blockType", "onDelete", "onConfigure", "onEdit", "simNodeId"}


def serialize(graph: Graph) -> Dict[str, Any]:
    """Interchange document: ``{nodes: [...], edges: [...]}`` (+ ``start`` when marked)."""
    doc: Dict[str, Any] = {
        "nodes": [_node_document(n) for n in graph.nodes],
        "edges": [_edge_document(e) for e in graph.edges],
    }
    if graph.start is not None:
        doc["start"] = graph.start
    return doc


def _node_document(node: Node) -> Dict[str, Any]:
    block_type = node.declared_type if node.is_unknown and node.declared_type else node.block_type
    return {
        "id": node.id,
        "blockType": block_type,
        "name": node.name,
        "config": node.config.to_document(),
        "position": dict(node.position),
    }


def _edge_document(edge: Edge) -> Dict[str, Any]:
    doc = {"id": edge.id, "source": edge.source, "target": edge.target}
    if edge.source_handle is not None:
        doc["sourceHandle"] = edge.source_handle
    return doc


def _lift_editor_node(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Accept the canvas shape where fields live under ``data``."""
    data = raw["data"]
    config = {k: v for k, v in data.items() if k not in _EDITOR_DATA_KEYS}
    if isinstance(raw.get("config"), dict):
        config.update(raw["config"])
    lifted = {
        "id": raw.get("id"),
        "blockType": data.get("blockType"),
        "name": data.get("name"),
        "config": config,
    }
    if "position" in raw:
        lifted["position"] = raw["position"]
    return lifted


def _load_node(raw: Any, index: int) -> Node:
    if not isinstance(raw, dict):
        raise MalformedDocument(f"nodes[{index}] is not an object.")
    if "blockType" not in raw and isinstance(raw.get("data"), dict):
        raw = _lift_editor_node(raw)

    node_id = raw.get("id")
    if not isinstance(node_id, str) or not node_id:
        raise MalformedDocument(f"nodes[{index}] has no id.")

    declared = raw.get("blockType")
    if not isinstance(declared, str) or not declared:
        raise MalformedDocument(f"Node '{node_id}' has no blockType.")
    try:
        tag = BlockType(declared).value
        declared_type = None
    except ValueError:
        logger.warning("node %s has unknown block type %r; keeping it as %s", node_id, declared, UNKNOWN)
        tag, declared_type = UNKNOWN, declared

    config = raw.get("config")
    if config is None:
        config = {}
    if not isinstance(config, dict):
        raise MalformedDocument(f"Node '{node_id}' config is not an object.")
    position = raw.get("position")
    if position is None:
        position = {"x": 0, "y": 0}
    if not isinstance(position, dict):
        raise MalformedDocument(f"Node '{node_id}' position is not an object.")
    name = raw.get("name")
    if name is None:
        name = f"{declared}-{index + 1}"

    try:
        return Node(
            id=node_id,
            block_type=tag,
            name=str(name),
            config=build_config(tag, config, node_id),
            position=position,
            declared_type=declared_type,
        )
    except InvalidConfig as exc:
        raise MalformedDocument(str(exc)) from exc
    except ValidationError as exc:
        raise MalformedDocument(f"Node '{node_id}': {exc}") from exc


def _load_edge(raw: Any, index: int, taken: Set[str]) -> Edge:
    """``taken`` holds every id already in use; derived ids are added to it."""
    if not isinstance(raw, dict):
        raise MalformedDocument(f"edges[{index}] is not an object.")
    source, target = raw.get("source"), raw.get("target")
    if not isinstance(source, str) or not source or not isinstance(target, str) or not target:
        raise MalformedDocument(f"edges[{index}] needs string 'source' and 'target'.")
    try:
        edge = Edge(
            id=raw.get("id") or "",
            source=source,
            target=target,
            source_handle=raw.get("sourceHandle"),
        )
    except ValidationError as exc:
        raise MalformedDocument(f"edges[{index}]: {exc}") from exc

    if not edge.id:
        base = edge_id_for(source, target, edge.source_handle)
        edge_id, n = base, 1
        while edge_id in taken:
            n += 1
            edge_id = f"{base}-{n}"
        taken.add(edge_id)
        edge = edge.model_copy(update={"id": edge_id})
    return edge


def deserialize(document: Any) -> Graph:
    """Build a new Graph from an interchange document.

    Only the document's shape is enforced here; references between nodes and
    edges are left to the validator.
    """
    if not isinstance(document, dict):
        raise MalformedDocument(f"Expected an object with 'nodes' and 'edges', got {type(document).__name__}.")
    raw_nodes = document.get("nodes") or []
    raw_edges = document.get("edges") or []
    if not isinstance(raw_nodes, list):
        raise MalformedDocument("'nodes' must be a list.")
    if not isinstance(raw_edges, list):
        raise MalformedDocument("'edges' must be a list.")
    start = document.get("start")
    if start is not None and not isinstance(start, str):
        raise MalformedDocument("'start' must be a node id.")

    nodes = [_load_node(raw, i) for i, raw in enumerate(raw_nodes)]

    explicit: Set[str] = set()
    for i, raw in enumerate(raw_edges):
        edge_id = raw.get("id") if isinstance(raw, dict) else None
        if edge_id is None:
            continue
        if not isinstance(edge_id, str) or not edge_id:
            raise MalformedDocument(f"edges[{i}] has an invalid id.")
        if edge_id in explicit:
            raise MalformedDocument(f"Edge id '{edge_id}' is used more than once.")
        explicit.add(edge_id)
    taken = set(explicit)
    edges = [_load_edge(raw, i, taken) for i, raw in enumerate(raw_edges)]

    try:
        graph = Graph(nodes, edges, start)
    except DuplicateNode as exc:
        raise MalformedDocument(str(exc)) from exc
    logger.debug("loaded graph with %d node(s), %d edge(s)", len(nodes), len(edges))
    return graph


def import_document(graph: Graph, document: Any) -> Graph:
    """Replace ``graph``'s content with ``document``; on failure ``graph`` is unchanged."""
    loaded = deserialize(document)
    graph.replace_with(loaded)
    return graph


def dumps(graph: Graph, indent: Optional[int] = 2) -> str:
    return json.dumps(serialize(graph), indent=indent)


def loads(text: str) -> Graph:
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise MalformedDocument(f"Invalid JSON: {exc}") from exc
    return deserialize(data)


def load_graph(path: Union[str, Path]) -> Graph:
    path = Path(path)
    text = path.read_text()
    if path.suffix.lower() in YAML_SUFFIXES:
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise MalformedDocument(f"Invalid YAML in {path}: {exc}") from exc
        return deserialize(data)
    return loads(text)


def save_graph(graph: Graph, path: Union[str, Path]) -> Path:
    path = Path(path)
    if path.suffix.lower() in YAML_SUFFIXES:
        path.write_text(yaml.safe_dump(serialize(graph), sort_keys=False))
    else:
        path.write_text(dumps(graph) + "\n")
    return path
