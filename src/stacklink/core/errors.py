"""Build-time errors raised while assembling a topology."""

from __future__ import annotations


class TopologyError(Exception):
    """Base class for topology construction failures."""

    pass


class DuplicateIdError(TopologyError):
    """Raised when two nodes are declared with the same id."""

    def __init__(self, node_id: str) -> None:
        self.node_id = node_id
        super().__init__(f"Duplicate node id: {node_id}")


class CycleDetectedError(TopologyError):
    """Raised when explicit or attribute-implied edges form a cycle."""

    def __init__(self, cycle: list[str]) -> None:
        self.cycle = cycle
        super().__init__(f"Dependency cycle detected: {' -> '.join(cycle)}")


class DanglingReferenceError(TopologyError):
    """Raised when an edge or deferred attribute names a missing node or attribute."""

    pass


class InvalidPortSetError(TopologyError):
    """Raised when a unit is requested with an empty, duplicated or out-of-range port set."""

    pass


class GraphSealedError(TopologyError):
    """Raised when a finalized graph is mutated."""

    pass


class BuildOrderError(TopologyError):
    """Raised when a builder runs before the node it binds to exists."""

    pass
