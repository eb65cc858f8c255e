"""Tests for builders module."""

import pytest
from pydantic import ValidationError

from stacklink.config import StackSettings
from stacklink.core.builders import (
    BROKER_BOOTSTRAP_ENV,
    DATASOURCE_ENV_KEYS,
    TopologyBuilder,
    allocate_subnets,
    port_mappings,
)
from stacklink.core.errors import (
    BuildOrderError,
    DanglingReferenceError,
    DuplicateIdError,
    InvalidPortSetError,
)
from stacklink.core.graph import TopologyGraph
from stacklink.core.schema import (
    DeferredAttribute,
    DeferredFormat,
    NodeKind,
    Protocol,
    RemovalPolicy,
    SubnetTier,
)


@pytest.fixture
def settings():
    return StackSettings(kafka_bootstrap_servers="broker:9092")


@pytest.fixture
def builder(settings):
    """Builder with network and compute cluster already declared."""
    builder = TopologyBuilder(TopologyGraph("test"), settings)
    network = builder.build_network_domain("PatientManagementVPC")
    builder.build_compute_cluster(network, "patient-management.local", node_id="Cluster")
    return builder


@pytest.fixture
def auth_db(builder):
    return builder.build_data_store("AuthDataStore", "auth-service-db")


class TestNetworkDomain:
    """Tests for network domain builder."""

    def test_two_availability_zones(self, builder):
        """Subnets span exactly two AZs, one public and one private each."""
        spec = builder.network.node.spec

        assert spec.max_azs == 2
        assert {s.availability_zone for s in spec.subnets} == {0, 1}
        assert len([s for s in spec.subnets if s.tier == SubnetTier.PRIVATE]) == 2
        assert len([s for s in spec.subnets if s.tier == SubnetTier.PUBLIC]) == 2

    def test_allocate_subnets(self):
        """Subnets are carved from the VPC block without overlap."""
        cidrs = [s.cidr_block for s in allocate_subnets()]

        assert cidrs == ["10.0.0.0/18", "10.0.64.0/18", "10.0.128.0/18", "10.0.192.0/18"]

    def test_duplicate_network(self, builder):
        """Duplicate ids are rejected by the graph."""
        with pytest.raises(DuplicateIdError):
            builder.build_network_domain("PatientManagementVPC")


class TestDataStore:
    """Tests for data store builder."""

    def test_fixed_sizing(self, auth_db):
        """Engine, sizing, credential and removal policy are fixed."""
        spec = auth_db.node.spec

        assert spec.database_name == "auth-service-db"
        assert spec.engine == "postgres"
        assert spec.engine_version == "17.2"
        assert spec.allocated_storage_gib == 20
        assert spec.username == "admin_user"
        assert spec.generated_secret
        assert spec.removal_policy == RemovalPolicy.DESTROY

    def test_deferred_attributes(self, auth_db):
        """Host, port and password are references, not values."""
        assert auth_db.host == DeferredAttribute(node_id="AuthDataStore", attribute="host")
        assert auth_db.port == DeferredAttribute(node_id="AuthDataStore", attribute="port")
        assert auth_db.password_secret.attribute == "password_secret"

    def test_bound_to_network(self, builder, auth_db):
        """Data stores depend on the network's private subnets."""
        assert auth_db.node.spec.subnets == builder.network.private_subnet_ids
        assert builder.graph.dependencies_of("AuthDataStore") == ["PatientManagementVPC"]

    def test_requires_network(self):
        """Data stores cannot be declared before the network."""
        builder = TopologyBuilder(TopologyGraph())

        with pytest.raises(BuildOrderError):
            builder.build_data_store("db", "db")


class TestHealthProbe:
    """Tests for health probe builder."""

    def test_fixed_parameters(self, builder, auth_db):
        """Probes are TCP, interval 30, failure threshold 3."""
        other = builder.build_data_store("OtherDataStore", "other-db")
        for store, probe_id in ((auth_db, "AuthProbe"), (other, "OtherProbe")):
            spec = builder.build_health_probe(store, probe_id).node.spec
            assert spec.probe_type == Protocol.TCP
            assert spec.request_interval == 30
            assert spec.failure_threshold == 3

    def test_forwards_endpoint(self, builder, auth_db):
        """Probe endpoint fields forward the data store's deferred attributes."""
        probe = builder.build_health_probe(auth_db, "AuthProbe")

        assert probe.node.spec.ip_address == auth_db.host
        assert probe.node.spec.port == auth_db.port

    def test_depends_on_data_store(self, builder, auth_db):
        """Probe declares an explicit edge on its data store."""
        builder.build_health_probe(auth_db, "AuthProbe")

        edges = [(e.dependent, e.dependency, e.origin.value) for e in builder.graph.edges()]
        assert ("AuthProbe", "AuthDataStore", "explicit") in edges


class TestEventCluster:
    """Tests for event cluster builder."""

    def test_fixed_parameters(self, builder):
        """Single broker on the network's private subnets."""
        cluster = builder.build_event_cluster("Kafka-cluster", node_id="MskCluster")
        spec = cluster.node.spec

        assert cluster.id == "MskCluster"
        assert spec.broker_count == 1
        assert spec.kafka_version == "2.8.0"
        assert spec.az_distribution == "DEFAULT"
        assert spec.client_subnets == builder.network.private_subnet_ids


class TestComputeCluster:
    """Tests for compute cluster builder."""

    def test_namespace(self, builder):
        """Cluster carries the service discovery namespace."""
        spec = builder.compute_cluster.node.spec

        assert spec.namespace == "patient-management.local"
        assert spec.vpc == builder.network.vpc_id

    def test_single_cluster(self, builder):
        """Only one compute cluster per topology."""
        with pytest.raises(BuildOrderError):
            builder.build_compute_cluster(builder.network, "other.local", node_id="Other")


class TestDeployableUnit:
    """Tests for deployable unit builder."""

    def test_auth_service_environment(self, builder, auth_db):
        """Unit with a data store and one extra variable has eight keys."""
        unit = builder.build_deployable_unit(
            "AuthService", "auth-service", {4005}, auth_db, {"JWT_SECRET": "token"}
        )
        env = unit.environment

        assert len(env) == 8
        assert env[BROKER_BOOTSTRAP_ENV] == "broker:9092"
        assert env["JWT_SECRET"] == "token"
        assert env["SPRING_DATASOURCE_USERNAME"] == "admin_user"
        assert env["SPRING_DATASOURCE_PASSWORD"] == auth_db.password_secret
        assert env["SPRING_JPA_HIBERNATE_DDL_AUTO"] == "update"
        assert env["SPRING_SQL_INIT_MODE"] == "always"
        assert env["SPRING_DATASOURCE_HIKARI_INITIALIZATION_FAIL_TIMEOUT"] == "60000"

    def test_datasource_url(self, builder, auth_db):
        """Datasource URL is a deferred format over host and port."""
        unit = builder.build_deployable_unit("AuthService", "auth-service", {4005}, auth_db)
        url = unit.environment["SPRING_DATASOURCE_URL"]

        assert isinstance(url, DeferredFormat)
        assert url.template == "jdbc:postgresql://{host}:{port}/auth-service-db"
        assert url.refs == {"host": auth_db.host, "port": auth_db.port}
        assert str(url) == "jdbc:postgresql://${AuthDataStore.host}:${AuthDataStore.port}/auth-service-db"

    def test_datasource_url_unbound_placeholder(self, auth_db):
        """Every template placeholder needs a bound reference."""
        with pytest.raises(ValidationError) as exc_info:
            DeferredFormat(
                template="postgresql://{user}/db",
                refs={"host": auth_db.host},
            )
        assert "user" in str(exc_info.value)

    def test_environment_is_read_only(self, builder):
        """A declared unit's environment cannot be changed in place."""
        unit = builder.build_deployable_unit("BillingService", "billing-service", {4001})

        with pytest.raises(TypeError):
            unit.node.spec.environment["X"] = DeferredAttribute(node_id="ghost", attribute="host")
        builder.finalize()

    def test_billing_service_without_data_store(self, builder):
        """Unit without data store or extras only has the broker key."""
        unit = builder.build_deployable_unit("BillingService", "billing-service", {4001, 9001})

        assert list(unit.environment) == [BROKER_BOOTSTRAP_ENV]
        assert len(unit.port_mappings) == 2
        assert not DATASOURCE_ENV_KEYS & set(unit.environment)

    def test_extra_env_without_data_store(self, builder):
        """Extra variables never bring datastore keys along."""
        unit = builder.build_deployable_unit(
            "Svc", "svc", [8080], extra_env={"FEATURE": "on"}
        )

        assert set(unit.environment) == {BROKER_BOOTSTRAP_ENV, "FEATURE"}

    def test_datastore_keys_follow_extra_env(self, builder, auth_db):
        """Datastore keys are assigned after the caller's extras."""
        unit = builder.build_deployable_unit(
            "Svc", "svc", [8080], auth_db, {"SPRING_DATASOURCE_USERNAME": "someone"}
        )

        assert unit.environment["SPRING_DATASOURCE_USERNAME"] == "admin_user"

    def test_port_mappings(self, builder):
        """Container port equals host port, protocol TCP."""
        unit = builder.build_deployable_unit("BillingService", "billing-service", {9001, 4001})

        assert [m.container_port for m in unit.port_mappings] == [4001, 9001]
        for mapping in unit.port_mappings:
            assert mapping.container_port == mapping.host_port
            assert mapping.protocol == Protocol.TCP

    def test_fixed_limits_and_logging(self, builder):
        """Limits and log sink are derived deterministically."""
        spec = builder.build_deployable_unit("Svc", "analytics-service", {4002}).spec

        assert spec.limits.cpu == 256
        assert spec.limits.memory_mib == 512
        assert spec.log_sink.group_name == "/ecs/analytics-service"
        assert spec.log_sink.stream_prefix == "analytics-service"
        assert spec.log_sink.retention_days == 1
        assert spec.log_sink.removal_policy == RemovalPolicy.DESTROY
        assert spec.service_name == "analytics-service"
        assert not spec.assign_public_ip

    def test_runs_in_compute_cluster(self, builder):
        """Units reference the cluster, which implies an edge."""
        builder.build_deployable_unit("Svc", "svc", {80})

        assert builder.graph.dependencies_of("Svc") == ["Cluster"]

    def test_data_store_implies_edge(self, builder, auth_db):
        """Referencing a data store's attributes implies a dependency on it."""
        builder.build_deployable_unit("Svc", "svc", {80}, auth_db)

        assert "AuthDataStore" in builder.graph.dependencies_of("Svc")

    def test_depends_on(self, builder, auth_db):
        """Explicit edges are attached after construction."""
        probe = builder.build_health_probe(auth_db, "AuthProbe")
        unit = builder.build_deployable_unit("Svc", "svc", {80}, auth_db)

        assert unit.depends_on(probe, auth_db) is unit
        assert builder.graph.dependencies_of("Svc")[:2] == ["AuthProbe", "AuthDataStore"]

    @pytest.mark.parametrize("ports", [set(), [4000, 4000], [0], [70000]])
    def test_invalid_ports(self, builder, ports):
        """Empty, duplicate and out-of-range ports are rejected."""
        with pytest.raises(InvalidPortSetError):
            builder.build_deployable_unit("Svc", "svc", ports)
        assert "Svc" not in builder.graph

    def test_requires_compute_cluster(self, settings):
        """Units cannot be declared before the compute cluster."""
        builder = TopologyBuilder(TopologyGraph(), settings)
        builder.build_network_domain("net")

        with pytest.raises(BuildOrderError):
            builder.build_deployable_unit("Svc", "svc", {80})

    def test_foreign_data_store(self, builder, settings):
        """Data stores from another graph are rejected."""
        other = TopologyBuilder(TopologyGraph("other"), settings)
        other.build_network_domain("net")
        foreign = other.build_data_store("AuthDataStore", "auth-service-db")

        with pytest.raises(DanglingReferenceError):
            builder.build_deployable_unit("Svc", "svc", {80}, foreign)


class TestGatewayUnit:
    """Tests for gateway unit builder."""

    def test_gateway(self, builder):
        """Gateway is load balanced with one replica and a 60s grace period."""
        gateway = builder.build_gateway_unit(
            "APIGatewayService", "api-gateway", {4004}, {"SPRING_PROFILES_ACTIVE": "prod"}
        )
        spec = gateway.spec

        assert gateway.kind == NodeKind.GATEWAY_UNIT
        assert spec.load_balanced
        assert spec.desired_count == 1
        assert spec.health_check_grace_period_seconds == 60
        assert spec.log_sink.group_name == "/ecs/api-gateway"
        assert gateway.environment == {"SPRING_PROFILES_ACTIVE": "prod"}
        assert gateway.load_balancer_dns.attribute == "load_balancer_dns"


class TestPortMappings:
    """Tests for port_mappings helper."""

    def test_list_order_preserved(self):
        mappings = port_mappings("svc", [9001, 4001])

        assert [m.host_port for m in mappings] == [9001, 4001]

    def test_rejects_bool(self):
        with pytest.raises(InvalidPortSetError):
            port_mappings("svc", [True])
