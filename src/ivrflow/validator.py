from __future__ import annotations
import logging
from collections import defaultdict
from enum import Enum
from typing import Dict, List, Optional, Set, Tuple

import networkx as nx
from pydantic import BaseModel, ConfigDict, Field

from .ir import BlockType, Edge, Graph, Node

logger = logging.getLogger(__name__)


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


class FindingCode(str, Enum):
    DANGLING_EDGE = "DanglingEdge"
    INCOMPLETE_CONFIG = "IncompleteConfig"
    UNKNOWN_BLOCK_TYPE = "UnknownBlockType"
    DUPLICATE_BRANCH = "DuplicateBranch"
    ILLEGAL_OUTGOING_EDGE = "IllegalOutgoingEdge"
    ILLEGAL_SELF_LOOP = "IllegalSelfLoop"
    INVALID_HANDLE = "InvalidHandle"
    AMBIGUOUS_START = "AmbiguousStart"
    CYCLE_DETECTED = "CycleDetected"
    UNREACHABLE_NODE = "UnreachableNode"
    DEAD_BRANCH = "DeadBranch"


class Finding(BaseModel):
    model_config = ConfigDict(frozen=True)

    code: FindingCode
    severity: Severity
    message: str
    node_id: Optional[str] = None
    edge_id: Optional[str] = None
    field: Optional[str] = None
    handle: Optional[str] = None
    # members of a cycle, in node insertion order
    nodes: Tuple[str, ...] = ()

    def line(self) -> str:
        prefix = "ERR" if self.severity == Severity.ERROR else "WARN"
        return f"{prefix}: [{self.code.value}] {self.message}"


class ValidationReport(BaseModel):
    errors: List[Finding] = Field(default_factory=list)
    warnings: List[Finding] = Field(default_factory=list)
    start: Optional[str] = None
    # names of checks that found nothing
    passed: List[str] = Field(default_factory=list)

    @property
    def compilable(self) -> bool:
        return not self.errors

    @property
    def findings(self) -> List[Finding]:
        return self.errors + self.warnings

    def by_code(self, code: FindingCode) -> List[Finding]:
        return [f for f in self.findings if f.code == code]

    def messages(self) -> List[str]:
        lines = [f"OK: {p}" for p in self.passed]
        lines.extend(f.line() for f in self.errors)
        lines.extend(f.line() for f in self.warnings)
        return lines


def _error(code: FindingCode, message: str, **kw) -> Finding:
    return Finding(code=code, severity=Severity.ERROR, message=message, **kw)


def _warning(code: FindingCode, message: str, **kw) -> Finding:
    return Finding(code=code, severity=Severity.WARNING, message=message, **kw)


def _flow_digraph(graph: Graph, node_map: Dict[str, Node]) -> nx.DiGraph:
    """Edges between existing nodes, minus self-loops on branching nodes."""
    nxg = nx.DiGraph()
    nxg.add_nodes_from(node_map)
    for e in graph.edges:
        if e.source not in node_map or e.target not in node_map:
            continue
        if e.source == e.target and node_map[e.source].is_branching:
            continue
        nxg.add_edge(e.source, e.target)
    return nxg


def _check_handles(node: Node, out_edges: List[Edge]) -> List[Finding]:
    found = []
    if node.is_branching:
        options = node.options
        for e in out_edges:
            if e.source_handle is None:
                found.append(_error(
                    FindingCode.INVALID_HANDLE,
                    f"Edge {e.id} leaves {node.block_type} node '{node.name}' without an option key.",
                    node_id=node.id, edge_id=e.id,
                ))
            elif e.source_handle not in options:
                found.append(_error(
                    FindingCode.INVALID_HANDLE,
                    f"Edge {e.id} uses option '{e.source_handle}' which '{node.name}' does not declare.",
                    node_id=node.id, edge_id=e.id, handle=e.source_handle,
                ))
    elif node.block_type == BlockType.API.value:
        # one plain fall-through edge, or response-code branches only
        if len(out_edges) > 1:
            for e in out_edges:
                if e.source_handle is None:
                    found.append(_error(
                        FindingCode.INVALID_HANDLE,
                        f"Edge {e.id} leaves branching api node '{node.name}' without a response code.",
                        node_id=node.id, edge_id=e.id,
                    ))
    else:
        for e in out_edges:
            if e.source_handle is not None:
                found.append(_error(
                    FindingCode.INVALID_HANDLE,
                    f"Edge {e.id} carries handle '{e.source_handle}' but {node.block_type} nodes do not branch.",
                    node_id=node.id, edge_id=e.id, handle=e.source_handle,
                ))
    return found


def validate(graph: Graph) -> ValidationReport:
    report = ValidationReport()
    node_map = graph.node_map()
    order = {nid: i for i, nid in enumerate(node_map)}
    out_index: Dict[str, List[Edge]] = defaultdict(list)
    for e in graph.edges:
        out_index[e.source].append(e)

    def collect(check: str, findings: List[Finding]) -> None:
        for f in findings:
            (report.errors if f.severity == Severity.ERROR else report.warnings).append(f)
        if not findings:
            report.passed.append(check)

    # 1) Edges refer to existing nodes
    found = []
    for e in graph.edges:
        missing = [nid for nid in (e.source, e.target) if nid not in node_map]
        if missing:
            found.append(_error(
                FindingCode.DANGLING_EDGE,
                f"Edge {e.id} ({e.source}->{e.target}) references missing node(s): {', '.join(missing)}.",
                edge_id=e.id,
            ))
    collect("All edges reference existing nodes.", found)

    # 2) Required config per block type
    found = []
    for node in node_map.values():
        if node.is_unknown:
            found.append(_warning(
                FindingCode.UNKNOWN_BLOCK_TYPE,
                f"Node '{node.name}' has block type '{node.declared_type}' which this version cannot compile.",
                node_id=node.id,
            ))
            continue
        for field in node.config.missing_fields():
            found.append(_error(
                FindingCode.INCOMPLETE_CONFIG,
                f"Node '{node.name}' ({node.block_type}) is missing '{field}'.",
                node_id=node.id, field=field,
            ))
    collect("Every block has its required configuration.", found)

    # 3) One edge per (source, handle)
    found = []
    seen: Set[Tuple[str, Optional[str]]] = set()
    for e in graph.edges:
        key = (e.source, e.source_handle)
        if key in seen:
            branch = f"option '{e.source_handle}'" if e.source_handle is not None else "its default output"
            found.append(_error(
                FindingCode.DUPLICATE_BRANCH,
                f"Node {e.source} has more than one edge on {branch} (edge {e.id}).",
                node_id=e.source, edge_id=e.id, handle=e.source_handle,
            ))
        seen.add(key)
    collect("Every branch has a single edge.", found)

    # 4) Terminal blocks end the call; handles match the block type
    found = []
    for node in node_map.values():
        out_edges = out_index.get(node.id, [])
        if not out_edges or node.is_unknown:
            continue
        if node.is_terminal:
            for e in out_edges:
                found.append(_error(
                    FindingCode.ILLEGAL_OUTGOING_EDGE,
                    f"{node.block_type} node '{node.name}' ends the call but has outgoing edge {e.id}.",
                    node_id=node.id, edge_id=e.id,
                ))
            continue
        for e in out_edges:
            if e.target == node.id and not node.is_branching:
                found.append(_error(
                    FindingCode.ILLEGAL_SELF_LOOP,
                    f"{node.block_type} node '{node.name}' loops to itself (edge {e.id}).",
                    node_id=node.id, edge_id=e.id,
                ))
        found.extend(_check_handles(node, out_edges))
    collect("Outgoing edges fit their block types.", found)

    # 5) Exactly one start node
    found = []
    start = graph.resolve_start()
    if graph.start is not None and graph.start not in node_map:
        found.append(_error(
            FindingCode.AMBIGUOUS_START,
            f"Start marker points to missing node '{graph.start}'.",
            node_id=graph.start,
        ))
        start = None
    elif start is None:
        candidates = graph.start_candidates()
        detail = ", ".join(candidates) if candidates else "none"
        found.append(_error(
            FindingCode.AMBIGUOUS_START,
            f"Cannot determine the start node (candidates: {detail}); mark one explicitly.",
        ))
    collect("Start node is unambiguous.", found)
    report.start = start

    if start is not None:
        nxg = _flow_digraph(graph, node_map)
        reachable = {start} | nx.descendants(nxg, start)
        sub = nxg.subgraph(reachable)

        # 6) Cycles reachable from start
        found = []
        cycles = []
        for component in nx.strongly_connected_components(sub):
            members = sorted(component, key=order.__getitem__)
            if len(members) > 1 or sub.has_edge(members[0], members[0]):
                cycles.append(members)
        for members in sorted(cycles, key=lambda m: order[m[0]]):
            names = " -> ".join(node_map[nid].name for nid in members)
            found.append(_warning(
                FindingCode.CYCLE_DETECTED,
                f"Cycle through {names}; guard it with a retry limit.",
                node_id=members[0], nodes=tuple(members),
            ))
        collect("No cycles reachable from start.", found)

        # 7) Unreachable nodes
        found = [
            _warning(
                FindingCode.UNREACHABLE_NODE,
                f"Node '{node.name}' cannot be reached from the start node.",
                node_id=node.id,
            )
            for node in node_map.values()
            if node.id not in reachable
        ]
        collect("Every node is reachable from start.", found)

    # 8) Declared options without an edge
    found = []
    for node in node_map.values():
        if not node.is_branching:
            continue
        used = {e.source_handle for e in out_index.get(node.id, [])}
        for option in node.options:
            if option not in used:
                found.append(_warning(
                    FindingCode.DEAD_BRANCH,
                    f"Option '{option}' of '{node.name}' is not connected.",
                    node_id=node.id, handle=option,
                ))
    collect("Every declared option is connected.", found)

    logger.info(
        "validated graph: %d error(s), %d warning(s)", len(report.errors), len(report.warnings)
    )
    return report
