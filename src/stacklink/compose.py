"""The fixed deployment topology: network, data stores, broker, cluster and services."""

from __future__ import annotations

import structlog

from stacklink.config import StackSettings
from stacklink.core.builders import TopologyBuilder
from stacklink.core.graph import TopologyGraph
from stacklink.core.snapshot import GraphSnapshot

logger = structlog.get_logger()

# Node ids
NETWORK_ID = "PatientManagementVPC"
AUTH_DB_ID = "AuthServiceDB"
PATIENT_DB_ID = "PatientServiceDB"
AUTH_PROBE_ID = "AuthServiceDBHealthCheck"
PATIENT_PROBE_ID = "PatientServiceDBHealthCheck"
EVENT_CLUSTER_ID = "MskCluster"
COMPUTE_CLUSTER_ID = "PatientManagementCluster"
AUTH_SERVICE_ID = "AuthService"
BILLING_SERVICE_ID = "BillingService"
ANALYTICS_SERVICE_ID = "AnalyticsService"
PATIENT_SERVICE_ID = "PatientService"
GATEWAY_ID = "APIGatewayService"

# (dependent, dependency) edges attached after the units are built
EXPLICIT_EDGES: tuple[tuple[str, str], ...] = (
    (AUTH_SERVICE_ID, AUTH_PROBE_ID),
    (AUTH_SERVICE_ID, AUTH_DB_ID),
    (ANALYTICS_SERVICE_ID, EVENT_CLUSTER_ID),
    (PATIENT_SERVICE_ID, PATIENT_DB_ID),
    (PATIENT_SERVICE_ID, PATIENT_PROBE_ID),
    (PATIENT_SERVICE_ID, BILLING_SERVICE_ID),
    (PATIENT_SERVICE_ID, EVENT_CLUSTER_ID),
)


def build_topology(settings: StackSettings | None = None) -> TopologyGraph:
    """Run the build sequence and return the still-open graph."""
    settings = settings or StackSettings()
    builder = TopologyBuilder(TopologyGraph(settings.stack_name), settings)

    network = builder.build_network_domain(settings.network_name, node_id=NETWORK_ID)

    auth_db = builder.build_data_store(AUTH_DB_ID, "auth-service-db")
    patient_db = builder.build_data_store(PATIENT_DB_ID, "patient-service-db")

    builder.build_health_probe(auth_db, AUTH_PROBE_ID)
    builder.build_health_probe(patient_db, PATIENT_PROBE_ID)

    builder.build_event_cluster(settings.kafka_cluster_name, node_id=EVENT_CLUSTER_ID)

    builder.build_compute_cluster(
        network, settings.cluster_namespace, node_id=COMPUTE_CLUSTER_ID
    )

    builder.build_deployable_unit(
        AUTH_SERVICE_ID,
        "auth-service",
        {4005},
        auth_db,
        {"JWT_SECRET": settings.jwt_secret},
    )
    builder.build_deployable_unit(BILLING_SERVICE_ID, "billing-service", {4001, 9001})
    builder.build_deployable_unit(ANALYTICS_SERVICE_ID, "analytics-service", {4002})
    builder.build_deployable_unit(
        PATIENT_SERVICE_ID,
        "patient-service",
        {4000},
        patient_db,
        {
            "BILLING_SERVICE_ADDRESS": settings.billing_service_address,
            "BILLING_SERVICE_GRPC_PORT": settings.billing_service_grpc_port,
        },
    )

    for dependent, dependency in EXPLICIT_EDGES:
        builder.graph.add_edge(dependent, dependency)

    builder.build_gateway_unit(
        GATEWAY_ID,
        "api-gateway",
        {4004},
        {
            "SPRING_PROFILES_ACTIVE": settings.gateway_profile,
            "AUTH_SERVICE_URL": settings.auth_service_url,
        },
    )

    logger.info("topology.composed", graph=settings.stack_name, nodes=len(builder.graph))
    return builder.graph


def compose_topology(settings: StackSettings | None = None) -> GraphSnapshot:
    """Build and finalize the deployment topology."""
    return build_topology(settings).finalize()
