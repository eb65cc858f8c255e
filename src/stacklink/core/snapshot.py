"""Immutable, finalized topology handed to the provisioning engine."""

from __future__ import annotations

import json
from pathlib import Path
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Iterator, Mapping, Sequence

import networkx as nx
import yaml

from stacklink.core.errors import DanglingReferenceError
from stacklink.core.schema import (
    DeferredAttribute,
    DeployableUnitSpec,
    Edge,
    EdgeOrigin,
    EnvValue,
    NodeKind,
)

if TYPE_CHECKING:
    from stacklink.core.graph import Node

UNIT_KINDS = (NodeKind.DEPLOYABLE_UNIT, NodeKind.GATEWAY_UNIT)


class GraphSnapshot:
    """
    Finalized topology graph.

    Holds the validated nodes, the explicit and attribute-implied edges,
    and a dependencies-first provisioning order. Provides query
    capabilities; there is no mutation path.
    """

    def __init__(
        self,
        name: str,
        nodes: Sequence[Node],
        edges: Sequence[Edge],
        order: Sequence[str],
    ) -> None:
        self._name = name
        self._nodes = tuple(nodes)
        self._edges = tuple(edges)
        self._order = tuple(order)
        self._id_index: Mapping[str, Node] = MappingProxyType({n.id: n for n in self._nodes})
        self._position = {n.id: i for i, n in enumerate(self._nodes)}
        # dependent -> dependency, origin kept on each edge
        graph = nx.DiGraph()
        graph.add_nodes_from(self._id_index)
        for edge in self._edges:
            graph.add_edge(edge.dependent, edge.dependency, origin=edge.origin)
        self._graph = nx.freeze(graph)

    @property
    def name(self) -> str:
        return self._name

    @property
    def nodes(self) -> tuple[Node, ...]:
        return self._nodes

    @property
    def edges(self) -> tuple[Edge, ...]:
        return self._edges

    def get(self, node_id: str) -> Node | None:
        """Get node by ID."""
        return self._id_index.get(node_id)

    def require(self, node_id: str) -> Node:
        """Get node by ID, raising if not found."""
        node = self._id_index.get(node_id)
        if node is None:
            raise DanglingReferenceError(f"Node not found: {node_id}")
        return node

    def by_kind(self, kind: NodeKind) -> list[Node]:
        """Get all nodes of a specific kind, in declaration order."""
        return [n for n in self._nodes if n.kind == kind]

    def units(self) -> list[Node]:
        """Deployable units and gateways."""
        return [n for n in self._nodes if n.kind in UNIT_KINDS]

    def explicit_edges(self) -> list[Edge]:
        return [e for e in self._edges if e.origin == EdgeOrigin.EXPLICIT]

    def implied_edges(self) -> list[Edge]:
        return [e for e in self._edges if e.origin == EdgeOrigin.ATTRIBUTE]

    def dependencies_of(self, node_id: str) -> tuple[str, ...]:
        """Direct dependencies of a node."""
        self.require(node_id)
        return tuple(self._graph.successors(node_id))

    def dependents_of(self, node_id: str) -> tuple[str, ...]:
        """Nodes that directly depend on a node."""
        self.require(node_id)
        return tuple(self._graph.predecessors(node_id))

    def reachable_from(self, node_id: str) -> set[str]:
        """All nodes reachable from ``node_id`` by following dependency edges."""
        self.require(node_id)
        return nx.descendants(self._graph, node_id)

    def topological_order(self) -> list[str]:
        """Node ids, every dependency before its dependents."""
        return list(self._order)

    def provisioning_waves(self) -> list[list[str]]:
        """
        Group nodes into waves the engine may provision concurrently.

        A node's wave is one past the deepest wave among its dependencies,
        so nodes sharing a wave never have a path between them.
        """
        return [
            sorted(generation, key=self._position.get)
            for generation in nx.topological_generations(self._graph.reverse(copy=False))
        ]

    def environment_of(self, unit_id: str) -> Mapping[str, EnvValue]:
        """Read-only environment map of a deployable unit or gateway."""
        node = self.require(unit_id)
        if not isinstance(node.spec, DeployableUnitSpec):
            raise DanglingReferenceError(f"Node {unit_id} is not a deployable unit")
        return node.spec.environment

    def references(self) -> list[tuple[str, DeferredAttribute]]:
        """Every (referring node id, deferred attribute) pair in the graph."""
        return [(node.id, ref) for node in self._nodes for ref in node.references]

    def to_dict(self) -> dict[str, Any]:
        """JSON-compatible shape consumed by the provisioning engine."""
        return {
            "name": self._name,
            "nodes": [node.to_dict() for node in self._nodes],
            "edges": [edge.model_dump(mode="json") for edge in self._edges],
            "order": list(self._order),
        }

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    def to_yaml(self) -> str:
        return yaml.safe_dump(self.to_dict(), sort_keys=False)

    def dump(self, path: str | Path) -> Path:
        """Write the snapshot as YAML (.yml/.yaml) or JSON (anything else)."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        if path.suffix in (".yml", ".yaml"):
            path.write_text(self.to_yaml())
        else:
            path.write_text(self.to_json())
        return path

    def __len__(self) -> int:
        return len(self._nodes)

    def __iter__(self) -> Iterator[Node]:
        return iter(self._nodes)

    def __contains__(self, node_id: str) -> bool:
        return node_id in self._id_index

    def __repr__(self) -> str:
        return f"GraphSnapshot({self._name}, {len(self._nodes)} nodes, {len(self._edges)} edges)"
