# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/fleetboot/k0s/config.py

from __future__ import annotations

import logging
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..config.models import ClusterTopology
from ..errors import ConfigInvalidError, NotFoundError

log = logging.getLogger(__name__)

PRODUCT_NAME = "fleetboot"

DEFAULT_POD_CIDR = "100.96.0.0/11"
DEFAULT_SERVICE_CIDR = "100.64.0.0/13"
API_PORT = 6443


def cluster_name(topology: ClusterTopology) -> str:
    return f"{PRODUCT_NAME}-{topology.datacenter.name}"


# ---------------------------------------------------------------------
# Generated k0s ClusterConfig
# ---------------------------------------------------------------------

class _K0sModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class K0sAPI(_K0sModel):
    address: Optional[str] = None
    external_address: Optional[str] = Field(default=None, alias="externalAddress")
    sans: List[str] = Field(default_factory=list)
    port: Optional[int] = None


class K0sNetwork(_K0sModel):
    pod_cidr: Optional[str] = Field(default=None, alias="podCIDR")
    service_cidr: Optional[str] = Field(default=None, alias="serviceCIDR")
    provider: Optional[str] = None


class K0sEtcd(_K0sModel):
    peer_address: Optional[str] = Field(default=None, alias="peerAddress")


class K0sStorage(_K0sModel):
    type: Optional[str] = None
    etcd: Optional[K0sEtcd] = None


class K0sImages(_K0sModel):
    default_pull_policy: Optional[str] = None


class K0sTelemetry(_K0sModel):
    enabled: bool = False


class K0sKonnectivity(_K0sModel):
    admin_port: Optional[int] = Field(default=None, alias="adminPort")
    agent_port: Optional[int] = Field(default=None, alias="agentPort")


class K0sSpec(_K0sModel):
    api: Optional[K0sAPI] = None
    network: Optional[K0sNetwork] = None
    storage: Optional[K0sStorage] = None
    images: Optional[K0sImages] = None
    telemetry: Optional[K0sTelemetry] = None
    konnectivity: Optional[K0sKonnectivity] = None


class K0sMetadata(_K0sModel):
    name: str


class K0sConfig(_K0sModel):
    api_version: str = Field(default="k0s.k0sproject.io/v1beta1", alias="apiVersion")
    kind: str = "ClusterConfig"
    metadata: K0sMetadata
    spec: K0sSpec = Field(default_factory=K0sSpec)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)

    def marshal(self) -> str:
        return yaml.safe_dump(self.to_dict(), sort_keys=False)


def generate_k0s_config(topology: ClusterTopology) -> K0sConfig:
    """
    Build the k0s ClusterConfig for a managed cluster. The first control
    plane is the API and etcd peer address; every control plane is a SAN.
    """
    cfg = K0sConfig(metadata=K0sMetadata(name=cluster_name(topology)))
    if not topology.managed:
        return cfg

    spec = cfg.spec
    if topology.control_planes:
        first = topology.control_planes[0].ip_address
        sans = topology.control_plane_addresses()
        if topology.api_server_host:
            sans.append(topology.api_server_host)
        spec.api = K0sAPI(
            address=first,
            external_address=topology.api_server_host or None,
            sans=sans,
            port=API_PORT,
        )
        spec.storage = K0sStorage(type="etcd", etcd=K0sEtcd(peer_address=first))

    spec.network = K0sNetwork(
        provider="calico",
        pod_cidr=topology.pod_cidr or DEFAULT_POD_CIDR,
        service_cidr=topology.service_cidr or DEFAULT_SERVICE_CIDR,
    )
    spec.images = K0sImages(default_pull_policy=topology.image_pull_policy)
    spec.telemetry = K0sTelemetry(enabled=False)
    spec.konnectivity = K0sKonnectivity(admin_port=8133, agent_port=8132)
    return cfg


def write_generated_config(topology: ClusterTopology) -> str:
    """
    Generate the k0s config for `topology` into a temporary .yaml file and
    return its path. The caller removes the file.
    """
    if not topology.managed:
        raise ConfigInvalidError("k0s installation is only supported for managed Kubernetes clusters")

    data = generate_k0s_config(topology).marshal()
    with tempfile.NamedTemporaryFile("w", prefix="k0s-config-", suffix=".yaml", delete=False) as tf:
        tf.write(data)
        log.info("Generated k0s configuration for %s at %s", topology.datacenter.name, tf.name)
        return tf.name


# ---------------------------------------------------------------------
# Filtering a user supplied config down to what `k0s install` accepts
# ---------------------------------------------------------------------

class _Keep(BaseModel):
    # Every declared field is kept verbatim; undeclared keys are dropped
    model_config = ConfigDict(extra="ignore")


class K0sSpecFilter(_Keep):
    api: Any = None
    controllerManager: Any = None
    scheduler: Any = None
    extensions: Any = None
    network: Any = None
    storage: Any = None
    telemetry: Any = None
    images: Any = None
    konnectivity: Any = None


class K0sClusterConfigFilter(_Keep):
    apiVersion: Any = None
    kind: Any = None
    metadata: Any = None
    spec: Optional[K0sSpecFilter] = None


def filter_config(data: Mapping[str, Any]) -> Dict[str, Any]:
    if not isinstance(data, Mapping):
        raise ConfigInvalidError(f"k0s config must be a mapping, got {type(data).__name__}")
    try:
        kept = K0sClusterConfigFilter.model_validate(dict(data))
    except ValidationError as e:
        raise ConfigInvalidError(f"invalid k0s config: {e}") from e
    # exclude_unset keeps keys that were present, even with null values
    return kept.model_dump(exclude_unset=True)


def filter_config_file(config_path: str | Path) -> str:
    """
    Write a filtered copy of `config_path` to a temporary .yaml file and
    return its path. The caller removes the file.
    """
    try:
        raw = Path(config_path).read_text(encoding="utf-8")
    except FileNotFoundError as e:
        raise NotFoundError(f"k0s config does not exist at '{config_path}'") from e
    except OSError as e:
        raise ConfigInvalidError(f"failed to read k0s config {config_path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigInvalidError(f"failed to parse k0s config {config_path}: {e}") from e

    filtered = filter_config(data if data is not None else {})

    with tempfile.NamedTemporaryFile("w", prefix="k0s-config-", suffix=".yaml", delete=False) as tf:
        yaml.safe_dump(filtered, tf, sort_keys=False)
        log.debug("filtered k0s config %s -> %s", config_path, tf.name)
        return tf.name
