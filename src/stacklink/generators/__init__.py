"""Generators for topology diagrams."""

from stacklink.generators.mermaid import generate_mermaid
from stacklink.generators.dot import generate_dot

__all__ = [
    "generate_mermaid",
    "generate_dot",
]
