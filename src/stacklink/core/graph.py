"""Topology graph: nodes, dependency edges and build-time validation."""

from __future__ import annotations

from typing import Any, Iterable, Iterator, Mapping, Sequence

import networkx as nx
import structlog

from stacklink.core.errors import (
    CycleDetectedError,
    DanglingReferenceError,
    DuplicateIdError,
    GraphSealedError,
)
from stacklink.core.schema import (
    NODE_OUTPUTS,
    SPEC_TYPES,
    DeferredAttribute,
    Edge,
    EdgeOrigin,
    NodeKind,
    NodeSpec,
    iter_references,
)
from stacklink.core.snapshot import GraphSnapshot

logger = structlog.get_logger()


class Node:
    """
    A declared infrastructure resource.

    The id is the node's identity within a graph. Kind-specific attributes
    live in ``spec``; deferred attributes nested there imply
    dependency edges on the nodes they point at.
    """

    def __init__(self, node_id: str, kind: NodeKind, spec: NodeSpec) -> None:
        expected = SPEC_TYPES[kind]
        if type(spec) is not expected:
            raise TypeError(
                f"Node {node_id} of kind {kind.value} needs {expected.__name__}, "
                f"got {type(spec).__name__}"
            )
        self._id = node_id
        self._kind = kind
        self._spec = spec

    @property
    def id(self) -> str:
        return self._id

    @property
    def kind(self) -> NodeKind:
        return self._kind

    @property
    def spec(self) -> NodeSpec:
        return self._spec

    @property
    def outputs(self) -> frozenset[str]:
        """Deferred attributes this node exposes."""
        return NODE_OUTPUTS[self._kind]

    @property
    def references(self) -> tuple[DeferredAttribute, ...]:
        """Deferred attributes of other nodes this node's spec refers to."""
        # Preserve first-seen order, drop repeats
        return tuple(dict.fromkeys(iter_references(self._spec)))

    def implied_dependencies(self) -> list[str]:
        """Node ids this node depends on through deferred references."""
        return list(dict.fromkeys(ref.node_id for ref in self.references))

    def attr(self, name: str) -> DeferredAttribute:
        """Reference one of this node's deferred outputs."""
        if name not in self.outputs:
            raise DanglingReferenceError(
                f"Node {self._id} ({self._kind.value}) has no attribute '{name}'"
            )
        return DeferredAttribute(node_id=self._id, attribute=name)

    def copy(self) -> Node:
        # Specs are deeply frozen
        return Node(self._id, self._kind, self._spec)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self._id,
            "kind": self._kind.value,
            "outputs": sorted(self.outputs),
            "spec": self._spec.model_dump(mode="json"),
        }

    def __repr__(self) -> str:
        return f"Node({self._id}, kind={self._kind.value})"


def _node_id(ref: str | Any) -> str:
    """Accept a node id, a Node, or anything carrying an ``id``."""
    if isinstance(ref, str):
        return ref
    return ref.id


def dependency_graph(
    node_ids: Sequence[str], dependencies: Mapping[str, Sequence[str]]
) -> nx.DiGraph:
    """Directed graph with an edge from each node to every node it depends on."""
    graph = nx.DiGraph()
    graph.add_nodes_from(node_ids)
    for node_id in node_ids:
        graph.add_edges_from((node_id, dep) for dep in dependencies.get(node_id, ()))
    return graph


def find_cycle(graph: nx.DiGraph) -> list[str] | None:
    """Return one cycle as a closed node path (first == last), or None."""
    try:
        cycle = nx.find_cycle(graph)
    except nx.NetworkXNoCycle:
        return None
    return [u for u, _ in cycle] + [cycle[-1][1]]


def topological_sort(
    node_ids: Sequence[str], dependencies: Mapping[str, Sequence[str]]
) -> list[str]:
    """
    Order nodes dependencies-first.

    Ties are broken by declaration order so the result is deterministic.
    Dependencies on ids outside ``node_ids`` are ignored.
    Raises CycleDetectedError if the graph is not acyclic.
    """
    position = {node_id: i for i, node_id in enumerate(node_ids)}
    known = {
        node_id: [dep for dep in dependencies.get(node_id, ()) if dep in position]
        for node_id in node_ids
    }
    graph = dependency_graph(node_ids, known)
    try:
        return list(
            nx.lexicographical_topological_sort(graph.reverse(copy=False), key=position.get)
        )
    except nx.NetworkXUnfeasible:
        raise CycleDetectedError(find_cycle(graph) or list(node_ids)) from None


class TopologyGraph:
    """
    Mutable-until-finalized collection of nodes and dependency edges.

    Builders add nodes; callers attach explicit edges once both ends exist.
    ``finalize()`` validates the whole graph and returns an immutable
    GraphSnapshot. After that the graph is sealed.

    Nodes and explicit edges live in a ``networkx.DiGraph`` pointing from
    dependent to dependency. Attribute-implied edges are derived from the
    nodes' current references whenever the full graph is needed.
    """

    def __init__(self, name: str = "topology") -> None:
        self._name = name
        self._graph = nx.DiGraph()
        self._snapshot: GraphSnapshot | None = None

    @property
    def name(self) -> str:
        return self._name

    @property
    def sealed(self) -> bool:
        return self._snapshot is not None

    def _check_open(self) -> None:
        if self.sealed:
            raise GraphSealedError(f"Graph '{self._name}' is finalized and can no longer change")

    def _node(self, node_id: str) -> Node:
        return self._graph.nodes[node_id]["node"]

    def get(self, node_id: str) -> Node | None:
        if node_id not in self._graph:
            return None
        return self._node(node_id)

    def dependencies_of(self, node_id: str) -> list[str]:
        """Explicit and attribute-implied dependencies of a node."""
        if node_id not in self._graph:
            return []
        explicit = list(self._graph.successors(node_id))
        return list(dict.fromkeys([*explicit, *self._node(node_id).implied_dependencies()]))

    def _dependency_graph(self, extra: Node | None = None) -> nx.DiGraph:
        """
        Explicit plus attribute-implied edges, with origin as an edge attribute.

        References to nodes not (yet) in the graph become bare nodes so
        cycles through forward references are still found.
        """
        graph = self._graph.copy()
        nodes = list(self)
        if extra is not None:
            graph.add_node(extra.id, node=extra)
            nodes.append(extra)
        for node in nodes:
            for dep in node.implied_dependencies():
                if not graph.has_edge(node.id, dep):
                    graph.add_edge(node.id, dep, origin=EdgeOrigin.ATTRIBUTE)
        return graph

    def add_node(self, node: Node) -> Node:
        """Add a node; fails on a duplicate id or a cycle through its references."""
        self._check_open()
        if node.id in self._graph:
            raise DuplicateIdError(node.id)

        graph = self._dependency_graph(extra=node)
        for dep in node.implied_dependencies():
            if nx.has_path(graph, dep, node.id):
                raise CycleDetectedError([node.id] + nx.shortest_path(graph, dep, node.id))

        self._graph.add_node(node.id, node=node)
        logger.debug("topology.node_added", node_id=node.id, kind=node.kind.value)
        return node

    def add_nodes(self, nodes: Iterable[Node]) -> list[Node]:
        """Add several nodes; duplicate ids fail before any node is added."""
        self._check_open()
        batch = list(nodes)
        seen: set[str] = set()
        for node in batch:
            if node.id in self._graph or node.id in seen:
                raise DuplicateIdError(node.id)
            seen.add(node.id)
        return [self.add_node(node) for node in batch]

    def add_edge(self, dependent: str | Any, dependency: str | Any) -> Edge:
        """
        Declare that ``dependent`` must be provisioned after ``dependency``.

        Both ends may be given as ids, nodes or builder handles.
        """
        self._check_open()
        dependent_id = _node_id(dependent)
        dependency_id = _node_id(dependency)
        for node_id in (dependent_id, dependency_id):
            if node_id not in self._graph:
                raise DanglingReferenceError(
                    f"Edge {dependent_id} -> {dependency_id} references unknown node: {node_id}"
                )

        if dependent_id == dependency_id:
            raise CycleDetectedError([dependent_id, dependent_id])
        graph = self._dependency_graph()
        if nx.has_path(graph, dependency_id, dependent_id):
            raise CycleDetectedError(
                [dependent_id] + nx.shortest_path(graph, dependency_id, dependent_id)
            )

        if not self._graph.has_edge(dependent_id, dependency_id):
            self._graph.add_edge(dependent_id, dependency_id, origin=EdgeOrigin.EXPLICIT)
            logger.debug("topology.edge_added", dependent=dependent_id, dependency=dependency_id)
        return Edge(dependent=dependent_id, dependency=dependency_id)

    def edges(self) -> list[Edge]:
        """All edges, explicit first per node; implied edges only where no explicit one exists."""
        graph = self._dependency_graph()
        return [
            Edge(dependent=dependent, dependency=dependency, origin=origin)
            for node_id in self._graph
            for dependent, dependency, origin in graph.out_edges(node_id, data="origin")
        ]

    def validate_references(self) -> list[str]:
        """
        Check every deferred reference names an existing node and output.

        Returns list of error messages (empty if all valid).
        """
        errors = []
        for node in self:
            for ref in node.references:
                target = self.get(ref.node_id)
                if target is None:
                    errors.append(f"Node {node.id} references unknown node: {ref.node_id}")
                elif ref.attribute not in target.outputs:
                    errors.append(
                        f"Node {node.id} references unknown attribute "
                        f"'{ref.attribute}' of {ref.node_id}"
                    )
        return errors

    def finalize(self) -> GraphSnapshot:
        """
        Validate the graph and return its immutable snapshot.

        References are re-derived from every node here, so validation sees
        the specs as they are at finalize time. Checks reference integrity
        and acyclicity of the explicit and attribute-implied edges.
        Idempotent.
        """
        if self._snapshot is not None:
            return self._snapshot

        errors = self.validate_references()
        if errors:
            raise DanglingReferenceError("; ".join(errors))

        ids = list(self._graph)
        order = topological_sort(ids, {node_id: self.dependencies_of(node_id) for node_id in ids})

        self._snapshot = GraphSnapshot(
            name=self._name,
            nodes=[node.copy() for node in self],
            edges=self.edges(),
            order=order,
        )
        logger.info(
            "topology.finalized",
            graph=self._name,
            nodes=len(self._graph),
            edges=len(self._snapshot.edges),
        )
        return self._snapshot

    def __len__(self) -> int:
        return len(self._graph)

    def __iter__(self) -> Iterator[Node]:
        return (self._node(node_id) for node_id in self._graph)

    def __contains__(self, node_id: str) -> bool:
        return node_id in self._graph
