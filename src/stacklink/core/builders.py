"""Builders that declare topology nodes against an explicit graph context."""

from __future__ import annotations

import ipaddress
from typing import Any, Iterable, Mapping

import structlog

from stacklink.config import StackSettings
from stacklink.core.errors import BuildOrderError, DanglingReferenceError, InvalidPortSetError
from stacklink.core.graph import Node, TopologyGraph
from stacklink.core.schema import (
    ComputeClusterSpec,
    DataStoreSpec,
    DeferredAttribute,
    DeferredFormat,
    DeployableUnitSpec,
    EnvValue,
    EventClusterSpec,
    GatewayUnitSpec,
    HealthProbeSpec,
    LogSink,
    NetworkDomainSpec,
    NodeKind,
    PortMapping,
    Protocol,
    RemovalPolicy,
    ResourceLimits,
    SubnetAllocation,
    SubnetTier,
)
from stacklink.core.snapshot import GraphSnapshot

logger = structlog.get_logger()

# Network
AVAILABILITY_ZONES = 2
VPC_CIDR = "10.0.0.0/16"
SUBNET_PREFIX = 18

# Data stores
DB_ENGINE = "postgres"
DB_ENGINE_VERSION = "17.2"
DB_INSTANCE_CLASS = "db.t2.micro"
DB_ALLOCATED_STORAGE_GIB = 20
DB_USERNAME = "admin_user"

# Health probes
PROBE_PROTOCOL = Protocol.TCP
PROBE_INTERVAL_SECONDS = 30
PROBE_FAILURE_THRESHOLD = 3

# Event cluster
KAFKA_VERSION = "2.8.0"
KAFKA_BROKER_COUNT = 1
KAFKA_BROKER_INSTANCE_TYPE = "kafka.m5.xlarge"
KAFKA_AZ_DISTRIBUTION = "DEFAULT"

# Units
UNIT_LIMITS = ResourceLimits(cpu=256, memory_mib=512)
LOG_RETENTION_DAYS = 1
GATEWAY_DESIRED_COUNT = 1
GATEWAY_GRACE_PERIOD_SECONDS = 60

# Environment contract
BROKER_BOOTSTRAP_ENV = "SPRING_KAFKA_BOOTSTRAP_SERVERS"
DATASOURCE_URL_ENV = "SPRING_DATASOURCE_URL"
DATASOURCE_USERNAME_ENV = "SPRING_DATASOURCE_USERNAME"
DATASOURCE_PASSWORD_ENV = "SPRING_DATASOURCE_PASSWORD"
DDL_AUTO_ENV = "SPRING_JPA_HIBERNATE_DDL_AUTO"
SQL_INIT_MODE_ENV = "SPRING_SQL_INIT_MODE"
POOL_INIT_TIMEOUT_ENV = "SPRING_DATASOURCE_HIKARI_INITIALIZATION_FAIL_TIMEOUT"
DATASOURCE_ENV_KEYS = frozenset({
    DATASOURCE_URL_ENV,
    DATASOURCE_USERNAME_ENV,
    DATASOURCE_PASSWORD_ENV,
    DDL_AUTO_ENV,
    SQL_INIT_MODE_ENV,
    POOL_INIT_TIMEOUT_ENV,
})


# --- Handles ---


class NodeHandle:
    """
    Build-time handle on a node in an open graph.

    Exposes the node's deferred outputs and lets the caller attach explicit
    dependency edges after construction.
    """

    def __init__(self, graph: TopologyGraph, node: Node) -> None:
        self._graph = graph
        self._node = node

    @property
    def id(self) -> str:
        return self._node.id

    @property
    def node(self) -> Node:
        return self._node

    @property
    def kind(self) -> NodeKind:
        return self._node.kind

    def attr(self, name: str) -> DeferredAttribute:
        return self._node.attr(name)

    def depends_on(self, *dependencies: NodeHandle | Node | str) -> NodeHandle:
        """Attach explicit dependency edges; returns self for chaining."""
        for dependency in dependencies:
            self._graph.add_edge(self, dependency)
        return self

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.id})"


class NetworkDomain(NodeHandle):
    @property
    def vpc_id(self) -> DeferredAttribute:
        return self.attr("vpc_id")

    @property
    def public_subnet_ids(self) -> DeferredAttribute:
        return self.attr("public_subnet_ids")

    @property
    def private_subnet_ids(self) -> DeferredAttribute:
        return self.attr("private_subnet_ids")


class DataStore(NodeHandle):
    @property
    def host(self) -> DeferredAttribute:
        """Endpoint address, assigned at provisioning time."""
        return self.attr("host")

    @property
    def port(self) -> DeferredAttribute:
        return self.attr("port")

    @property
    def password_secret(self) -> DeferredAttribute:
        """Generated password; never a literal in the graph."""
        return self.attr("password_secret")


class HealthProbe(NodeHandle):
    pass


class EventCluster(NodeHandle):
    @property
    def bootstrap_brokers(self) -> DeferredAttribute:
        return self.attr("bootstrap_brokers")


class ComputeCluster(NodeHandle):
    @property
    def cluster_arn(self) -> DeferredAttribute:
        return self.attr("cluster_arn")


class DeployableUnit(NodeHandle):
    @property
    def spec(self) -> DeployableUnitSpec:
        return self._node.spec  # type: ignore[return-value]

    @property
    def environment(self) -> dict[str, EnvValue]:
        return dict(self.spec.environment)

    @property
    def port_mappings(self) -> tuple[PortMapping, ...]:
        return self.spec.port_mappings


class GatewayUnit(DeployableUnit):
    @property
    def load_balancer_dns(self) -> DeferredAttribute:
        return self.attr("load_balancer_dns")


# --- Helpers ---


def allocate_subnets(
    cidr: str = VPC_CIDR, azs: int = AVAILABILITY_ZONES
) -> tuple[SubnetAllocation, ...]:
    """Carve one public and one private subnet per availability zone."""
    blocks = ipaddress.ip_network(cidr).subnets(new_prefix=SUBNET_PREFIX)
    subnets = []
    for tier in (SubnetTier.PUBLIC, SubnetTier.PRIVATE):
        for az in range(azs):
            subnets.append(
                SubnetAllocation(
                    name=f"{tier.value.capitalize()}Subnet{az + 1}",
                    availability_zone=az,
                    tier=tier,
                    cidr_block=str(next(blocks)),
                )
            )
    return tuple(subnets)


def port_mappings(node_id: str, ports: Iterable[int]) -> tuple[PortMapping, ...]:
    """One TCP mapping per port, container port equal to host port."""
    if isinstance(ports, (set, frozenset)):
        requested = sorted(ports)
    else:
        requested = list(ports)
    if not requested:
        raise InvalidPortSetError(f"Unit {node_id}: at least one port is required")
    duplicates = sorted({p for p in requested if requested.count(p) > 1})
    if duplicates:
        raise InvalidPortSetError(f"Unit {node_id}: duplicate ports {duplicates}")
    for port in requested:
        if isinstance(port, bool) or not isinstance(port, int) or not 0 < port < 65536:
            raise InvalidPortSetError(f"Unit {node_id}: invalid port {port!r}")
    return tuple(PortMapping(container_port=p, host_port=p, protocol=Protocol.TCP) for p in requested)


def log_sink(image_ref: str) -> LogSink:
    return LogSink(
        group_name=f"/ecs/{image_ref}",
        stream_prefix=image_ref,
        retention_days=LOG_RETENTION_DAYS,
        removal_policy=RemovalPolicy.DESTROY,
    )


# --- Builder ---


class TopologyBuilder:
    """
    Declares topology nodes into one graph.

    This object is the construction context: every builder call goes
    through it, and it remembers the network domain and compute cluster
    later nodes bind to.

    Example:
        builder = TopologyBuilder(TopologyGraph("localstack"))
        builder.build_network_domain("PatientManagementVPC")
        db = builder.build_data_store("AuthServiceDB", "auth-service-db")
        builder.build_health_probe(db, "AuthServiceDBHealthCheck")
    """

    def __init__(self, graph: TopologyGraph, settings: StackSettings | None = None) -> None:
        self._graph = graph
        self._settings = settings or StackSettings()
        self._network: NetworkDomain | None = None
        self._compute_cluster: ComputeCluster | None = None

    @property
    def graph(self) -> TopologyGraph:
        return self._graph

    @property
    def settings(self) -> StackSettings:
        return self._settings

    @property
    def network(self) -> NetworkDomain:
        if self._network is None:
            raise BuildOrderError("No network domain has been built yet")
        return self._network

    @property
    def compute_cluster(self) -> ComputeCluster:
        if self._compute_cluster is None:
            raise BuildOrderError("No compute cluster has been built yet")
        return self._compute_cluster

    def _add(self, handle_type: type[Any], node_id: str, kind: NodeKind, spec: Any) -> Any:
        node = self._graph.add_node(Node(node_id, kind, spec))
        return handle_type(self._graph, node)

    def _require(self, handle: NodeHandle) -> None:
        if self._graph.get(handle.id) is not handle.node:
            raise DanglingReferenceError(f"{handle!r} does not belong to graph '{self._graph.name}'")

    def build_network_domain(self, name: str, node_id: str | None = None) -> NetworkDomain:
        """Declare the network; later data stores and clusters bind to it."""
        spec = NetworkDomainSpec(
            name=name,
            cidr_block=VPC_CIDR,
            max_azs=AVAILABILITY_ZONES,
            subnets=allocate_subnets(VPC_CIDR, AVAILABILITY_ZONES),
        )
        self._network = self._add(NetworkDomain, node_id or name, NodeKind.NETWORK_DOMAIN, spec)
        logger.info("topology.network_built", node_id=self._network.id, azs=AVAILABILITY_ZONES)
        return self._network

    def build_data_store(self, node_id: str, database_name: str) -> DataStore:
        spec = DataStoreSpec(
            database_name=database_name,
            engine=DB_ENGINE,
            engine_version=DB_ENGINE_VERSION,
            instance_class=DB_INSTANCE_CLASS,
            allocated_storage_gib=DB_ALLOCATED_STORAGE_GIB,
            username=DB_USERNAME,
            generated_secret=True,
            removal_policy=RemovalPolicy.DESTROY,
            subnets=self.network.private_subnet_ids,
        )
        store = self._add(DataStore, node_id, NodeKind.DATA_STORE, spec)
        logger.info("topology.data_store_built", node_id=node_id, database=database_name)
        return store

    def build_health_probe(self, data_store: DataStore, node_id: str) -> HealthProbe:
        """TCP probe against the data store's endpoint; depends on the data store."""
        self._require(data_store)
        spec = HealthProbeSpec(
            probe_type=PROBE_PROTOCOL,
            ip_address=data_store.host,
            port=data_store.port,
            request_interval=PROBE_INTERVAL_SECONDS,
            failure_threshold=PROBE_FAILURE_THRESHOLD,
        )
        probe = self._add(HealthProbe, node_id, NodeKind.HEALTH_PROBE, spec)
        probe.depends_on(data_store)
        logger.info("topology.health_probe_built", node_id=node_id, data_store=data_store.id)
        return probe

    def build_event_cluster(self, name: str, node_id: str | None = None) -> EventCluster:
        spec = EventClusterSpec(
            cluster_name=name,
            kafka_version=KAFKA_VERSION,
            broker_count=KAFKA_BROKER_COUNT,
            broker_instance_type=KAFKA_BROKER_INSTANCE_TYPE,
            client_subnets=self.network.private_subnet_ids,
            az_distribution=KAFKA_AZ_DISTRIBUTION,
        )
        cluster = self._add(EventCluster, node_id or name, NodeKind.EVENT_CLUSTER, spec)
        logger.info("topology.event_cluster_built", node_id=cluster.id, brokers=KAFKA_BROKER_COUNT)
        return cluster

    def build_compute_cluster(
        self,
        network_domain: NetworkDomain,
        namespace_name: str,
        node_id: str = "ComputeCluster",
    ) -> ComputeCluster:
        """Declare the single scheduling domain all units run in."""
        if self._compute_cluster is not None:
            raise BuildOrderError(
                f"Compute cluster already declared: {self._compute_cluster.id}"
            )
        self._require(network_domain)
        spec = ComputeClusterSpec(vpc=network_domain.vpc_id, namespace=namespace_name)
        self._compute_cluster = self._add(
            ComputeCluster, node_id, NodeKind.COMPUTE_CLUSTER, spec
        )
        logger.info("topology.compute_cluster_built", node_id=node_id, namespace=namespace_name)
        return self._compute_cluster

    def unit_environment(
        self,
        image_ref: str,
        data_store: DataStore | None = None,
        extra_env: Mapping[str, str] | None = None,
    ) -> dict[str, EnvValue]:
        """
        Assemble a unit's environment map.

        Order: broker bootstrap, then ``extra_env``, then the datastore
        connection keys when a data store is given.
        """
        env: dict[str, EnvValue] = {BROKER_BOOTSTRAP_ENV: self._settings.kafka_bootstrap_servers}
        if extra_env:
            env.update(extra_env)
        if data_store is not None:
            database = image_ref.replace("{", "{{").replace("}", "}}")
            env[DATASOURCE_URL_ENV] = DeferredFormat(
                template=f"jdbc:postgresql://{{host}}:{{port}}/{database}-db",
                refs={"host": data_store.host, "port": data_store.port},
            )
            env[DATASOURCE_USERNAME_ENV] = DB_USERNAME
            env[DATASOURCE_PASSWORD_ENV] = data_store.password_secret
            env[DDL_AUTO_ENV] = "update"
            env[SQL_INIT_MODE_ENV] = "always"
            env[POOL_INIT_TIMEOUT_ENV] = "60000"
        return env

    def build_deployable_unit(
        self,
        node_id: str,
        image_ref: str,
        ports: Iterable[int],
        data_store: DataStore | None = None,
        extra_env: Mapping[str, str] | None = None,
    ) -> DeployableUnit:
        """
        Declare a service in the compute cluster.

        Explicit dependencies are attached afterwards with ``depends_on``.
        """
        mappings = port_mappings(node_id, ports)
        if data_store is not None:
            self._require(data_store)
        spec = DeployableUnitSpec(
            service_name=image_ref,
            image=image_ref,
            limits=UNIT_LIMITS,
            port_mappings=mappings,
            log_sink=log_sink(image_ref),
            environment=self.unit_environment(image_ref, data_store, extra_env),
            cluster=self.compute_cluster.cluster_arn,
            assign_public_ip=False,
        )
        unit = self._add(DeployableUnit, node_id, NodeKind.DEPLOYABLE_UNIT, spec)
        logger.info(
            "topology.unit_built",
            node_id=node_id,
            image=image_ref,
            ports=[m.container_port for m in mappings],
            data_store=data_store.id if data_store else None,
        )
        return unit

    def build_gateway_unit(
        self,
        node_id: str,
        target_unit: str,
        ports: Iterable[int],
        env: Mapping[str, str] | None = None,
    ) -> GatewayUnit:
        """Declare the load-balanced ingress unit running ``target_unit``."""
        mappings = port_mappings(node_id, ports)
        spec = GatewayUnitSpec(
            service_name=target_unit,
            image=target_unit,
            limits=UNIT_LIMITS,
            port_mappings=mappings,
            log_sink=log_sink(target_unit),
            environment=dict(env or {}),
            cluster=self.compute_cluster.cluster_arn,
            assign_public_ip=False,
            desired_count=GATEWAY_DESIRED_COUNT,
            health_check_grace_period_seconds=GATEWAY_GRACE_PERIOD_SECONDS,
            load_balanced=True,
        )
        gateway = self._add(GatewayUnit, node_id, NodeKind.GATEWAY_UNIT, spec)
        logger.info("topology.gateway_built", node_id=node_id, image=target_unit)
        return gateway

    def finalize(self) -> GraphSnapshot:
        return self._graph.finalize()
