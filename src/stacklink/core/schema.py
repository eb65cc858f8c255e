"""Pydantic schemas for topology nodes and their deferred attributes."""

from __future__ import annotations

import string
from enum import Enum
from types import MappingProxyType
from typing import Any, Iterator, Mapping, Union

from pydantic import BaseModel, Field, ValidationInfo, field_serializer, field_validator


class NodeKind(str, Enum):
    """Kinds of nodes in a deployment topology."""

    NETWORK_DOMAIN = "network_domain"
    DATA_STORE = "data_store"
    HEALTH_PROBE = "health_probe"
    EVENT_CLUSTER = "event_cluster"
    COMPUTE_CLUSTER = "compute_cluster"
    DEPLOYABLE_UNIT = "deployable_unit"
    GATEWAY_UNIT = "gateway_unit"


class EdgeOrigin(str, Enum):
    """How an edge entered the graph."""

    EXPLICIT = "explicit"  # Attached by the caller
    ATTRIBUTE = "attribute"  # Implied by a deferred reference


class RemovalPolicy(str, Enum):
    """What the provisioning engine does with a resource on teardown."""

    DESTROY = "destroy"
    RETAIN = "retain"


class Protocol(str, Enum):
    TCP = "tcp"
    UDP = "udp"


class SubnetTier(str, Enum):
    PUBLIC = "public"
    PRIVATE = "private"


# Deferred outputs each node kind exposes to the provisioning engine.
NODE_OUTPUTS: dict[NodeKind, frozenset[str]] = {
    NodeKind.NETWORK_DOMAIN: frozenset({"vpc_id", "public_subnet_ids", "private_subnet_ids"}),
    NodeKind.DATA_STORE: frozenset({"host", "port", "password_secret"}),
    NodeKind.HEALTH_PROBE: frozenset({"health_check_id"}),
    NodeKind.EVENT_CLUSTER: frozenset({"cluster_arn", "bootstrap_brokers"}),
    NodeKind.COMPUTE_CLUSTER: frozenset({"cluster_arn", "namespace_id"}),
    NodeKind.DEPLOYABLE_UNIT: frozenset({"service_arn"}),
    NodeKind.GATEWAY_UNIT: frozenset({"service_arn", "load_balancer_dns"}),
}


# --- Deferred values ---


class DeferredAttribute(BaseModel):
    """
    Reference to a value only the provisioning engine can produce.

    Stands in for endpoints, generated secrets and resource ids. It is
    never resolved while the graph is being built.
    """

    node_id: str
    attribute: str

    model_config = {"frozen": True}

    def __str__(self) -> str:
        return f"${{{self.node_id}.{self.attribute}}}"


class DeferredFormat(BaseModel):
    """
    String template with placeholders bound to deferred attributes.

    Example:
        DeferredFormat(
            template="jdbc:postgresql://{host}:{port}/auth-service-db",
            refs={"host": db.host, "port": db.port},
        )
    """

    template: str
    refs: Mapping[str, DeferredAttribute]

    model_config = {"frozen": True}

    @field_validator("refs")
    @classmethod
    def validate_placeholders(
        cls, v: Mapping[str, DeferredAttribute], info: ValidationInfo
    ) -> Mapping[str, DeferredAttribute]:
        """Every placeholder in the template must be bound."""
        template = info.data.get("template", "")
        fields = {name for _, name, _, _ in string.Formatter().parse(template) if name}
        missing = fields - set(v)
        if missing:
            raise ValueError(f"Unbound placeholders in template: {sorted(missing)}")
        return MappingProxyType(dict(v))

    @field_serializer("refs")
    def serialize_refs(self, v: Mapping[str, DeferredAttribute]) -> dict[str, Any]:
        return dict(v)

    def render(self, values: Mapping[str, str]) -> str:
        """Render with resolved values keyed by placeholder name."""
        return self.template.format(**values)

    def __str__(self) -> str:
        return self.template.format(**{k: str(ref) for k, ref in self.refs.items()})


EnvValue = Union[str, DeferredAttribute, DeferredFormat]


def iter_references(value: Any) -> Iterator[DeferredAttribute]:
    """Yield every deferred attribute nested anywhere in a value."""
    if isinstance(value, DeferredAttribute):
        yield value
    elif isinstance(value, DeferredFormat):
        yield from value.refs.values()
    elif isinstance(value, BaseModel):
        for field_name in type(value).model_fields:
            yield from iter_references(getattr(value, field_name))
    elif isinstance(value, Mapping):
        for item in value.values():
            yield from iter_references(item)
    elif isinstance(value, (list, tuple, set, frozenset)):
        for item in value:
            yield from iter_references(item)


class Edge(BaseModel):
    """Ordering constraint: ``dependent`` is provisioned after ``dependency``."""

    dependent: str
    dependency: str
    origin: EdgeOrigin = EdgeOrigin.EXPLICIT

    model_config = {"frozen": True}

    def __repr__(self) -> str:
        return f"Edge({self.dependent} -> {self.dependency}, {self.origin.value})"


# --- Shared value objects ---


class PortMapping(BaseModel):
    """Container port mapping."""

    container_port: int
    host_port: int
    protocol: Protocol = Protocol.TCP

    model_config = {"frozen": True}


class LogSink(BaseModel):
    """Log group a unit's container writes to."""

    group_name: str
    stream_prefix: str
    retention_days: int = 1
    removal_policy: RemovalPolicy = RemovalPolicy.DESTROY

    model_config = {"frozen": True}


class ResourceLimits(BaseModel):
    cpu: int = 256  # CPU units
    memory_mib: int = 512

    model_config = {"frozen": True}


class SubnetAllocation(BaseModel):
    name: str
    availability_zone: int  # Index into the region's AZ list
    tier: SubnetTier
    cidr_block: str

    model_config = {"frozen": True}


# --- Node specs ---


class NodeSpec(BaseModel):
    """Base for kind-specific node attributes."""

    model_config = {"frozen": True}


class NetworkDomainSpec(NodeSpec):
    """Isolated virtual network spanning several availability zones."""

    name: str
    cidr_block: str = "10.0.0.0/16"
    max_azs: int = 2
    subnets: tuple[SubnetAllocation, ...] = ()


class DataStoreSpec(NodeSpec):
    """Managed relational database instance."""

    database_name: str
    engine: str = "postgres"
    engine_version: str = "17.2"
    instance_class: str = "db.t2.micro"
    allocated_storage_gib: int = 20
    username: str = "admin_user"
    generated_secret: bool = True
    removal_policy: RemovalPolicy = RemovalPolicy.DESTROY
    subnets: DeferredAttribute


class HealthProbeSpec(NodeSpec):
    """Reachability check against a data store endpoint."""

    probe_type: Protocol = Protocol.TCP
    ip_address: DeferredAttribute
    port: DeferredAttribute
    request_interval: int = 30
    failure_threshold: int = 3


class EventClusterSpec(NodeSpec):
    """Message-broker cluster declaration."""

    cluster_name: str
    kafka_version: str = "2.8.0"
    broker_count: int = 1
    broker_instance_type: str = "kafka.m5.xlarge"
    client_subnets: DeferredAttribute
    az_distribution: str = "DEFAULT"


class ComputeClusterSpec(NodeSpec):
    """Scheduling domain hosting deployable units."""

    vpc: DeferredAttribute
    namespace: str


class DeployableUnitSpec(NodeSpec):
    """A containerized service running in the compute cluster."""

    service_name: str
    image: str
    limits: ResourceLimits = Field(default_factory=ResourceLimits)
    port_mappings: tuple[PortMapping, ...]
    log_sink: LogSink
    environment: Mapping[str, EnvValue] = Field(default_factory=dict, validate_default=True)
    cluster: DeferredAttribute
    assign_public_ip: bool = False

    @field_validator("environment")
    @classmethod
    def freeze_environment(cls, v: Mapping[str, EnvValue]) -> Mapping[str, EnvValue]:
        """Environment maps are read-only once declared."""
        return MappingProxyType(dict(v))

    @field_serializer("environment")
    def serialize_environment(self, v: Mapping[str, EnvValue]) -> dict[str, Any]:
        return dict(v)


class GatewayUnitSpec(DeployableUnitSpec):
    """Load-balanced ingress unit."""

    desired_count: int = 1
    health_check_grace_period_seconds: int = 60
    load_balanced: bool = True


SPEC_TYPES: dict[NodeKind, type[NodeSpec]] = {
    NodeKind.NETWORK_DOMAIN: NetworkDomainSpec,
    NodeKind.DATA_STORE: DataStoreSpec,
    NodeKind.HEALTH_PROBE: HealthProbeSpec,
    NodeKind.EVENT_CLUSTER: EventClusterSpec,
    NodeKind.COMPUTE_CLUSTER: ComputeClusterSpec,
    NodeKind.DEPLOYABLE_UNIT: DeployableUnitSpec,
    NodeKind.GATEWAY_UNIT: GatewayUnitSpec,
}
