# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/fleetboot/config/models.py

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class _Model(BaseModel):
    # Accept both the YAML camelCase keys and the python field names
    model_config = ConfigDict(populate_by_name=True)


class Datacenter(_Model):
    name: str


class NodeAddress(_Model):
    ip_address: str = Field(alias="ipAddress")       # internal address, used for cluster traffic
    external_address: Optional[str] = Field(default=None, alias="externalAddress")  # SSH override
    ssh_port: int = Field(default=22, alias="sshPort")
    name: Optional[str] = None

    @property
    def ssh_address(self) -> str:
        return self.external_address or self.ip_address


class BastionSpec(_Model):
    address: str
    user: str = "ubuntu"
    port: int = 22
    key_path: Optional[str] = Field(default=None, alias="keyPath")


class ClusterTopology(_Model):
    """Cluster layout consumed by the host planner and the k0s config generator."""

    datacenter: Datacenter
    control_planes: List[NodeAddress] = Field(default_factory=list, alias="controlPlanes")
    workers: List[NodeAddress] = Field(default_factory=list)
    bastion: Optional[BastionSpec] = None

    managed: bool = True
    api_server_host: Optional[str] = Field(default=None, alias="apiServerHost")
    pod_cidr: Optional[str] = Field(default=None, alias="podCIDR")
    service_cidr: Optional[str] = Field(default=None, alias="serviceCIDR")
    image_pull_policy: str = Field(default="Never", alias="imagePullPolicy")

    def control_plane_addresses(self) -> List[str]:
        return [cp.ip_address for cp in self.control_planes]
