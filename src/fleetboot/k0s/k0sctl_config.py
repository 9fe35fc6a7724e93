# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/fleetboot/k0s/k0sctl_config.py

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Set, Tuple

import yaml

from ..config.models import BastionSpec, ClusterTopology, NodeAddress
from ..errors import ConfigInvalidError
from .config import cluster_name, generate_k0s_config

K0SCTL_API_VERSION = "k0sctl.k0sproject.io/v1beta1"
CONTROLLER_INSTALL_FLAGS: Tuple[str, ...] = ("--enable-worker", "--no-taints")
SSH_USER = "root"


class NodeRole(str, enum.Enum):
    CONTROLLER_WORKER = "controller+worker"
    WORKER = "worker"

    @property
    def install_flags(self) -> Tuple[str, ...]:
        return CONTROLLER_INSTALL_FLAGS if self is NodeRole.CONTROLLER_WORKER else ()


@dataclass(frozen=True)
class BastionDescriptor:
    address: str
    user: str = "ubuntu"
    port: int = 22
    key_path: Optional[str] = None


@dataclass(frozen=True)
class SSHDescriptor:
    address: str
    user: str = SSH_USER
    port: int = 22
    key_path: Optional[str] = None
    bastion: Optional[BastionDescriptor] = None


@dataclass(frozen=True)
class HostSpec:
    """
    Bootstrap instructions for one physical node. `label` is display-only
    and never part of the SSH address.
    """

    role: NodeRole
    ssh: SSHDescriptor
    private_address: str
    environment: Mapping[str, str]
    install_flags: Tuple[str, ...] = ()
    upload_binary: bool = False
    binary_path: Optional[str] = None
    label: str = ""

    def to_dict(self) -> Dict[str, Any]:
        ssh: Dict[str, Any] = {
            "address": self.ssh.address,
            "user": self.ssh.user,
            "port": self.ssh.port,
        }
        if self.ssh.key_path:
            ssh["keyPath"] = self.ssh.key_path
        if self.ssh.bastion is not None:
            b = self.ssh.bastion
            ssh["bastion"] = {"address": b.address, "user": b.user, "port": b.port}
            if b.key_path:
                ssh["bastion"]["keyPath"] = b.key_path

        host: Dict[str, Any] = {"role": self.role.value, "ssh": ssh}
        if self.install_flags:
            host["installFlags"] = list(self.install_flags)
        host["privateAddress"] = self.private_address
        host["environment"] = dict(self.environment)
        if self.upload_binary:
            host["uploadBinary"] = True
            host["k0sBinaryPath"] = self.binary_path
        return host


def _bastion(spec: Optional[BastionSpec], ssh_key_path: str) -> Optional[BastionDescriptor]:
    if spec is None:
        return None
    return BastionDescriptor(
        address=spec.address,
        user=spec.user,
        port=spec.port,
        key_path=spec.key_path or ssh_key_path or None,
    )


def _host(
    node: NodeAddress,
    role: NodeRole,
    label: str,
    ssh_key_path: str,
    binary_path: str,
    bastion: Optional[BastionDescriptor],
) -> HostSpec:
    return HostSpec(
        role=role,
        ssh=SSHDescriptor(
            address=node.ssh_address,
            port=node.ssh_port,
            key_path=ssh_key_path or None,
            bastion=bastion,
        ),
        private_address=node.ip_address,
        environment=MappingProxyType({"KUBELET_EXTRA_ARGS": f"--node-ip={node.ip_address}"}),
        install_flags=role.install_flags,
        upload_binary=bool(binary_path),
        binary_path=binary_path or None,
        label=node.name or label,
    )


def plan_hosts(topology: ClusterTopology, ssh_key_path: str = "", binary_path: str = "") -> List[HostSpec]:
    """
    Turn a topology into one HostSpec per physical node.

    Control planes come first and run workloads too. A worker whose internal
    address already appeared as a control plane is skipped.
    """
    bastion = _bastion(topology.bastion, ssh_key_path)
    added: Set[str] = set()
    hosts: List[HostSpec] = []

    for i, cp in enumerate(topology.control_planes, start=1):
        if cp.ip_address in added:
            continue
        hosts.append(_host(cp, NodeRole.CONTROLLER_WORKER, f"controller-{i}", ssh_key_path, binary_path, bastion))
        added.add(cp.ip_address)

    workers = 0
    for worker in topology.workers:
        if worker.ip_address in added:
            continue
        workers += 1
        hosts.append(_host(worker, NodeRole.WORKER, f"worker-{workers}", ssh_key_path, binary_path, bastion))
        added.add(worker.ip_address)

    return hosts


@dataclass(frozen=True)
class K0sctlConfig:
    name: str
    hosts: Tuple[HostSpec, ...]
    k0s_version: str
    k0s_config: Mapping[str, Any] = field(default_factory=dict)
    api_version: str = K0SCTL_API_VERSION
    kind: str = "Cluster"

    def to_dict(self) -> Dict[str, Any]:
        k0s: Dict[str, Any] = {"version": self.k0s_version}
        if self.k0s_config:
            k0s["config"] = dict(self.k0s_config)
        return {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "metadata": {"name": self.name},
            "spec": {
                "hosts": [h.to_dict() for h in self.hosts],
                "k0s": k0s,
            },
        }

    def marshal(self) -> str:
        return yaml.safe_dump(self.to_dict(), sort_keys=False)

    @staticmethod
    def unmarshal(data: str) -> Dict[str, Any]:
        try:
            doc = yaml.safe_load(data)
        except yaml.YAMLError as e:
            raise ConfigInvalidError(f"failed to parse k0sctl config: {e}") from e
        if not isinstance(doc, dict) or not isinstance(doc.get("spec"), dict):
            raise ConfigInvalidError("k0sctl config must be a mapping with a 'spec' section")
        return doc


def generate_k0sctl_config(
    topology: ClusterTopology,
    k0s_version: str,
    ssh_key_path: str = "",
    binary_path: str = "",
) -> K0sctlConfig:
    if not topology.managed:
        raise ConfigInvalidError("k0sctl is only supported for managed Kubernetes clusters")

    return K0sctlConfig(
        name=cluster_name(topology),
        hosts=tuple(plan_hosts(topology, ssh_key_path, binary_path)),
        k0s_version=k0s_version,
        k0s_config=generate_k0s_config(topology).to_dict(),
    )
