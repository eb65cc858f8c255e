"""Deferred attribute resolution against provisioned outputs."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping

import yaml

from stacklink.core.errors import DanglingReferenceError
from stacklink.core.schema import DeferredAttribute, DeferredFormat, EnvValue
from stacklink.core.snapshot import GraphSnapshot


class ResolutionError(Exception):
    """Raised when a deferred attribute cannot be resolved."""

    pass


class AttributeResolver:
    """
    Resolves deferred attributes once provisioning has produced them.

    The provisioning engine supplies its outputs as
    ``{node_id: {attribute: value}}``; the resolver substitutes them into
    environment maps and other deferred values of a finalized snapshot.
    It is never used while the graph is being built.
    """

    def __init__(self, snapshot: GraphSnapshot, outputs: Mapping[str, Mapping[str, Any]]) -> None:
        self._snapshot = snapshot
        self._outputs = outputs

    @classmethod
    def load(cls, snapshot: GraphSnapshot, path: str | Path) -> AttributeResolver:
        """Load provisioned outputs from a YAML file."""
        path = Path(path)
        with path.open() as f:
            data = yaml.safe_load(f) or {}
        return cls(snapshot, data)

    def resolve(self, ref: DeferredAttribute) -> str:
        """Resolve a single deferred attribute to its provisioned value."""
        node = self._snapshot.get(ref.node_id)
        if node is None:
            raise ResolutionError(f"Node not found: {ref.node_id}")
        if ref.attribute not in node.outputs:
            raise ResolutionError(f"Node {ref.node_id} has no attribute '{ref.attribute}'")
        values = self._outputs.get(ref.node_id)
        if not values or ref.attribute not in values:
            raise ResolutionError(f"No provisioned value for {ref}")
        value = values[ref.attribute]
        if isinstance(value, (list, tuple)):
            return ",".join(str(v) for v in value)
        return str(value)

    def render(self, value: EnvValue) -> str:
        """Render a literal, deferred attribute or deferred format to a string."""
        if isinstance(value, DeferredAttribute):
            return self.resolve(value)
        if isinstance(value, DeferredFormat):
            return value.render({name: self.resolve(ref) for name, ref in value.refs.items()})
        return value

    def render_environment(self, unit_id: str) -> dict[str, str]:
        """
        Render a unit's environment map to literal strings.

        Example:
            resolver.render_environment("AuthService")["SPRING_DATASOURCE_URL"]
            # Returns: jdbc:postgresql://10.0.128.17:5432/auth-service-db
        """
        try:
            env = self._snapshot.environment_of(unit_id)
        except DanglingReferenceError as e:
            raise ResolutionError(str(e)) from e
        return {name: self.render(value) for name, value in env.items()}

    def to_template_context(self, unit_id: str) -> dict[str, Any]:
        """Build a template context dictionary for a unit."""
        node = self._snapshot.get(unit_id)
        if node is None:
            raise ResolutionError(f"Node not found: {unit_id}")
        spec = node.spec.model_dump(mode="json")
        return {
            "node_id": node.id,
            "kind": node.kind.value,
            "service_name": spec.get("service_name"),
            "image": spec.get("image"),
            "ports": [m["container_port"] for m in spec.get("port_mappings", [])],
            "environment": self.render_environment(unit_id),
        }

    def validate_all(self) -> list[str]:
        """
        Validate every deferred reference in the snapshot can be resolved.

        Returns list of error messages (empty if all valid).
        """
        errors = []
        for node_id, ref in self._snapshot.references():
            try:
                self.resolve(ref)
            except ResolutionError as e:
                errors.append(f"{node_id}: {e}")
        return errors
