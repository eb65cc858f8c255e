"""Core domain models for deployment topology graphs."""

from stacklink.core.graph import TopologyGraph, Node
from stacklink.core.snapshot import GraphSnapshot
from stacklink.core.builders import TopologyBuilder
from stacklink.core.resolver import AttributeResolver, ResolutionError
from stacklink.core.schema import DeferredAttribute, DeferredFormat, Edge, NodeKind
from stacklink.core.errors import (
    TopologyError,
    DuplicateIdError,
    CycleDetectedError,
    DanglingReferenceError,
    InvalidPortSetError,
)

__all__ = [
    "TopologyGraph",
    "Node",
    "GraphSnapshot",
    "TopologyBuilder",
    "AttributeResolver",
    "ResolutionError",
    "DeferredAttribute",
    "DeferredFormat",
    "Edge",
    "NodeKind",
    "TopologyError",
    "DuplicateIdError",
    "CycleDetectedError",
    "DanglingReferenceError",
    "InvalidPortSetError",
]
