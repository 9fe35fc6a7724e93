# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/fleetboot/installer/fleet.py

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from ..errors import FleetbootError
from ..k0s.k0sctl_config import HostSpec
from ..node.manager import NodeManager
from ..node.remote import REMOTE_K0S_BINARY, RemoteNode
from ..observers.dispatcher import EventBus
from ..observers.events import (
    HostPrepared,
    HostPrepareFailed,
    HostPrepareStarted,
    PrepareSummary,
    new_ctx,
)
from ..ssh.escape import shell_quote

log = logging.getLogger(__name__)

REQUIRED_COMMANDS: Tuple[str, ...] = ("sysctl", "grep", "systemctl")


@dataclass(frozen=True)
class HostResult:
    label: str
    address: str
    ok: bool
    duration_ms: int
    error: Optional[str] = None
    missing_commands: Tuple[str, ...] = ()


@dataclass
class PrepareReport:
    results: List[HostResult] = field(default_factory=list)

    @property
    def ok(self) -> List[HostResult]:
        return [r for r in self.results if r.ok]

    @property
    def failed(self) -> List[HostResult]:
        return [r for r in self.results if not r.ok]

    @property
    def succeeded(self) -> bool:
        return not self.failed


def nodes_for(host: HostSpec) -> Tuple[RemoteNode, Optional[RemoteNode]]:
    """
    Build the RemoteNode for a HostSpec and its jumpbox, if any.
    """
    node = RemoteNode(
        name=host.label or host.ssh.address,
        external_ip=host.ssh.address,
        internal_ip=host.private_address,
        user=host.ssh.user,
        port=host.ssh.port,
    )
    jumpbox = None
    if host.ssh.bastion is not None:
        b = host.ssh.bastion
        jumpbox = RemoteNode(name="jumpbox", external_ip=b.address, internal_ip=b.address, user=b.user, port=b.port)
    return node, jumpbox


class FleetPreparer:
    """
    Prepares every host of a plan concurrently, one task per node:
    wait for SSH, probe required commands, apply sysctl lines and
    optionally upload the k0s binary. Hosts are independent; one failing
    host never stops the others.
    """

    def __init__(
        self,
        nm: NodeManager,
        *,
        bus: Optional[EventBus] = None,
        datacenter: str = "",
        run_id: Optional[str] = None,
        ssh_timeout: float = 300.0,
        ssh_interval: float = 5.0,
        upload_binary: bool = False,
        required_commands: Sequence[str] = REQUIRED_COMMANDS,
        max_workers: Optional[int] = None,
    ):
        self.nm = nm
        self.bus = bus or EventBus()
        self.datacenter = datacenter
        self.run_id = run_id
        self.ssh_timeout = ssh_timeout
        self.ssh_interval = ssh_interval
        self.upload_binary = upload_binary
        self.required_commands = tuple(required_commands)
        self.max_workers = max_workers

    def _ctx(self, host: HostSpec) -> dict:
        bastion = host.ssh.bastion.address if host.ssh.bastion else None
        return new_ctx(env=self.datacenter, context=bastion, run_id=self.run_id)

    def _prepare_one(self, host: HostSpec) -> HostResult:
        node, jumpbox = nodes_for(host)
        self.bus.emit(HostPrepareStarted(**self._ctx(host), host=node.name, address=host.ssh.address, role=host.role.value))
        start = time.monotonic()

        try:
            node.wait_for_ssh(jumpbox, self.nm, self.ssh_timeout, interval=self.ssh_interval, username=node.user)

            missing = tuple(c for c in self.required_commands if not node.has_command(self.nm, c, jumpbox=jumpbox))
            if missing:
                log.warning("%s: commands not found (advisory): %s", node.name, ", ".join(missing))

            if not node.has_inotify_watches_configured(jumpbox, self.nm):
                node.configure_inotify_watches(jumpbox, self.nm)
            if not node.has_memory_map_configured(jumpbox, self.nm):
                node.configure_memory_map(jumpbox, self.nm)

            if self.upload_binary and host.upload_binary and host.binary_path:
                node.copy_file(jumpbox, self.nm, host.binary_path, REMOTE_K0S_BINARY)
                node.run_ssh_command(jumpbox, self.nm, node.user, f"chmod 0755 {shell_quote(REMOTE_K0S_BINARY)}")
        except FleetbootError as e:
            duration_ms = int((time.monotonic() - start) * 1000)
            log.error("preparing %s failed: %s", node.name, e)
            self.bus.emit(HostPrepareFailed(**self._ctx(host), host=node.name, address=host.ssh.address, error=str(e)))
            return HostResult(label=node.name, address=host.ssh.address, ok=False, duration_ms=duration_ms, error=str(e))

        duration_ms = int((time.monotonic() - start) * 1000)
        self.bus.emit(HostPrepared(**self._ctx(host), host=node.name, address=host.ssh.address, duration_ms=duration_ms))
        return HostResult(
            label=node.name,
            address=host.ssh.address,
            ok=True,
            duration_ms=duration_ms,
            missing_commands=missing,
        )

    def prepare(self, hosts: Sequence[HostSpec]) -> PrepareReport:
        report = PrepareReport()
        if not hosts:
            return report

        workers = self.max_workers or len(hosts)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="prepare") as pool:
            # map() keeps results in plan order
            report.results.extend(pool.map(self._prepare_one, hosts))

        ctx = new_ctx(env=self.datacenter, context=None, run_id=self.run_id)
        self.bus.emit(
            PrepareSummary(
                **ctx,
                ok=len(report.ok),
                failed=len(report.failed),
                failed_hosts=[r.label for r in report.failed],
            )
        )
        return report
