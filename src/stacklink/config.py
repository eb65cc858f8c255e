"""Topology configuration via environment variables and an optional YAML file."""

from __future__ import annotations

from pathlib import Path

import yaml
from pydantic_settings import BaseSettings, SettingsConfigDict


class StackSettings(BaseSettings):
    """Values the compose sequence injects into the topology."""

    model_config = SettingsConfigDict(env_prefix="STACKLINK_")

    # Stack
    stack_name: str = "localstack"
    output_dir: Path = Path("cdk.out")

    # Network / cluster
    network_name: str = "PatientManagementVPC"
    cluster_namespace: str = "patient-management.local"
    kafka_cluster_name: str = "Kafka-cluster"

    # Injected into every unit
    kafka_bootstrap_servers: str = (
        "localhost.localstack.cloud:4510, "
        "localhost.localstack.cloud:4511, "
        "localhost.localstack.cloud:4512"
    )

    # Auth service
    jwt_secret: str = (
        "501c1eb77cf533100927ac3b547fa91c6e639ddaed7efcaf4a8a0b5fd312d4d1"
        "d6589a7b97a2f87b1c7f8bdfe5fdac696918946ded38793bb50fa8cb1640cbe6"
    )

    # Patient service -> billing service gRPC
    billing_service_address: str = "host.docker.internal"
    billing_service_grpc_port: str = "9001"

    # Gateway
    gateway_profile: str = "prod"
    auth_service_url: str = "http://host.docker.internal:4005"


def load_settings(path: str | Path | None = None) -> StackSettings:
    """
    Load settings, overlaying a YAML file on environment variables.

    Keys in the file take precedence over STACKLINK_* variables.
    """
    if path is None:
        return StackSettings()
    path = Path(path)
    with path.open() as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise TypeError(f"Settings file {path} must contain a mapping, got {type(data).__name__}")
    return StackSettings(**data)
