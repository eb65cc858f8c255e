"""Mermaid diagram generation."""

from __future__ import annotations

from typing import TYPE_CHECKING

from stacklink.core.schema import EdgeOrigin, NodeKind

if TYPE_CHECKING:
    from stacklink.core.snapshot import GraphSnapshot


def _mermaid_id(node_id: str) -> str:
    return node_id.replace("-", "_").replace(".", "_")


def generate_mermaid(snapshot: GraphSnapshot, include_implied: bool = True) -> str:
    """
    Generate Mermaid flowchart diagram.

    Arrows point from a dependent to its dependency. Returns Markdown
    with embedded Mermaid diagram.
    """
    lines = [f"# {snapshot.name} topology", "", "```mermaid", "flowchart LR"]

    # One subgraph per node kind
    for kind in NodeKind:
        nodes = snapshot.by_kind(kind)
        if not nodes:
            continue
        lines.append(f"    subgraph {kind.value}")
        for node in nodes:
            lines.append(f"        {_mermaid_id(node.id)}[{node.id}]")
        lines.append("    end")

    lines.append("")
    lines.append("    %% Dependencies")

    for edge in snapshot.edges:
        if edge.origin == EdgeOrigin.ATTRIBUTE and not include_implied:
            continue
        arrow = "-->" if edge.origin == EdgeOrigin.EXPLICIT else "-.->"
        lines.append(f"    {_mermaid_id(edge.dependent)} {arrow} {_mermaid_id(edge.dependency)}")

    lines.append("```")
    lines.append("")
    lines.append("## Legend")
    lines.append("")
    lines.append("- `-->` Explicit dependency")
    lines.append("- `-.->` Dependency implied by a deferred attribute")

    return "\n".join(lines)
