"""Graphviz DOT diagram generation."""

from __future__ import annotations

from typing import TYPE_CHECKING

from stacklink.core.schema import EdgeOrigin, NodeKind

if TYPE_CHECKING:
    from stacklink.core.snapshot import GraphSnapshot

KIND_COLORS = {
    NodeKind.NETWORK_DOMAIN: "lightgray",
    NodeKind.DATA_STORE: "khaki",
    NodeKind.HEALTH_PROBE: "lightpink",
    NodeKind.EVENT_CLUSTER: "lightsalmon",
    NodeKind.COMPUTE_CLUSTER: "lightgreen",
    NodeKind.DEPLOYABLE_UNIT: "lightblue",
    NodeKind.GATEWAY_UNIT: "plum",
}


def generate_dot(snapshot: GraphSnapshot, include_implied: bool = True) -> str:
    """
    Generate Graphviz DOT diagram.

    Can be rendered with: dot -Tpng topology.dot -o topology.png
    """
    lines = [
        "digraph Topology {",
        "    rankdir=LR;",
        "    node [shape=box, style=filled];",
        "    edge [fontsize=10];",
        "",
    ]

    for kind in NodeKind:
        nodes = snapshot.by_kind(kind)
        if not nodes:
            continue
        lines.append(f"    subgraph cluster_{kind.value} {{")
        lines.append(f'        label="{kind.value}";')
        lines.append("        style=dashed;")
        lines.append("        color=gray;")
        lines.append("")
        for node in nodes:
            lines.append(f'        "{node.id}" [fillcolor={KIND_COLORS[kind]}];')
        lines.append("    }")
        lines.append("")

    lines.append("    // Dependencies")
    for edge in snapshot.edges:
        if edge.origin == EdgeOrigin.EXPLICIT:
            style = "style=solid"
        elif include_implied:
            style = "style=dashed, color=gray40"
        else:
            continue
        lines.append(f'    "{edge.dependent}" -> "{edge.dependency}" [{style}];')

    lines.append("}")

    return "\n".join(lines)
