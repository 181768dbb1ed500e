import networkx as nx

from .compiler import handle_sort_key
from .ir import Graph


def ascii_plan(graph: Graph) -> str:
    node_map = graph.node_map()
    nxg = nx.MultiDiGraph()
    nxg.add_nodes_from(node_map)
    edges = [e for e in graph.edges if e.source in node_map and e.target in node_map]
    for e in sorted(edges, key=lambda e: handle_sort_key(e.source_handle)):
        nxg.add_edge(e.source, e.target, handle=e.source_handle)

    start = graph.resolve_start()
    if start is not None:
        order = list(nx.dfs_preorder_nodes(nxg, start))
        lines = [f"# ASCII Plan (depth-first from '{node_map[start].name}')"]
    else:
        order = list(node_map)
        lines = ["# ASCII Plan (no unique start node; insertion order)"]

    for i, nid in enumerate(order, 1):
        node = node_map[nid]
        lines.append(f"{i:02d}. {node.name} [{node.block_type}]  id={nid}")
        for _, succ, data in nxg.out_edges(nid, data=True):
            handle = data["handle"]
            suffix = f"  (on {handle})" if handle is not None else ""
            lines.append(f"    └─▶ {node_map[succ].name}{suffix}")
        for option, label in node.options.items():
            if not any(d["handle"] == option for _, _, d in nxg.out_edges(nid, data=True)):
                lines.append(f"    └─✗ {label}  (on {option}, not connected)")

    seen = set(order)
    rest = [nid for nid in node_map if nid not in seen]
    if rest:
        lines.append("# Unreachable")
        for nid in rest:
            lines.append(f"  - {node_map[nid].name} [{node_map[nid].block_type}]  id={nid}")
    return "\n".join(lines)
