"""
Stacklink - Deployment topology graphs with deferred, provisioning-time attributes.

This package provides tools for:
- Declaring infrastructure nodes (network, data stores, brokers, clusters, services)
- Wiring explicit and attribute-implied dependency edges between them
- Validating the graph (unique ids, no cycles, no dangling references)
- Handing an immutable snapshot and provisioning order to an external engine
- Resolving deferred attributes once the engine has provisioned them
- Generating topology diagrams (Mermaid, Graphviz)
"""

__version__ = "0.1.0"

from stacklink.core.graph import TopologyGraph, Node
from stacklink.core.builders import TopologyBuilder
from stacklink.core.snapshot import GraphSnapshot
from stacklink.core.resolver import AttributeResolver
from stacklink.compose import compose_topology

__all__ = [
    "__version__",
    "TopologyGraph",
    "Node",
    "TopologyBuilder",
    "GraphSnapshot",
    "AttributeResolver",
    "compose_topology",
]
