# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/fleetboot/node/remote.py

from __future__ import annotations

import logging
import posixpath
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from ..errors import (
    ConnectionFailedError,
    FleetbootError,
    OperationTimeoutError,
)
from ..ssh.connection import JUMPBOX_USER
from ..ssh.escape import shell_quote
from ..utils.retry import RetryError, retry
from .manager import CommandResult, NodeManager

log = logging.getLogger(__name__)

REMOTE_K0S_BINARY = "/usr/local/bin/k0s"
REMOTE_K0S_CONFIG = "/etc/k0s/k0s.yaml"
SYSCTL_CONF = "/etc/sysctl.conf"

INOTIFY_WATCHES_LINE = "fs.inotify.max_user_watches=1048576"
MAX_MAP_COUNT_LINE = "vm.max_map_count=262144"


@dataclass
class RemoteNode:
    """
    One addressable node. Without a jumpbox the node is reached on its
    external IP; through a jumpbox it is reached on its internal IP.
    """

    name: str
    external_ip: str
    internal_ip: str
    user: str = "root"
    port: int = 22

    def _route(self, jumpbox: Optional["RemoteNode"]) -> Tuple[str, str, Dict[str, Any]]:
        """
        Returns (jumpbox address, target address, hop kwargs). The hop kwargs
        carry the jumpbox's own user and port through to the connection layer.
        """
        if jumpbox is None:
            return "", self.external_ip, {}
        return jumpbox.external_ip, self.internal_ip, {"jumpbox_user": jumpbox.user, "jumpbox_port": jumpbox.port}

    # ------------------ commands ------------------

    def run_ssh_command(
        self,
        jumpbox: Optional["RemoteNode"],
        nm: NodeManager,
        username: str,
        command: str,
        **kwargs,
    ) -> CommandResult:
        jumpbox_ip, ip, hop = self._route(jumpbox)
        return nm.run_ssh_command(jumpbox_ip, ip, username, command, port=self.port, **hop, **kwargs)

    def has_command(self, nm: NodeManager, command: str, *, jumpbox: Optional["RemoteNode"] = None) -> bool:
        """
        Advisory probe: True if `command` resolves on the node.

        Every failure (auth, connection, timeout, non-zero exit) yields False,
        so False does not prove the command is absent.
        """
        check = f"command -v {shell_quote(command)} >/dev/null 2>&1"
        try:
            self.run_ssh_command(jumpbox, nm, self.user, check)
        except FleetbootError as e:
            log.debug("has_command(%s) on %s: %s", command, self.name, e)
            return False
        return True

    def has_file(self, jumpbox: Optional["RemoteNode"], nm: NodeManager, path: str) -> bool:
        """
        Advisory probe: True if `path` is a regular file on the node.
        Same error policy as has_command().
        """
        try:
            self.run_ssh_command(jumpbox, nm, self.user, f"test -f {shell_quote(path)}")
        except FleetbootError as e:
            log.debug("has_file(%s) on %s: %s", path, self.name, e)
            return False
        return True

    # ------------------ files ------------------

    def ensure_directory_exists(self, jumpbox: Optional["RemoteNode"], nm: NodeManager, directory: str) -> None:
        jumpbox_ip, ip, hop = self._route(jumpbox)
        nm.ensure_directory_exists(jumpbox_ip, ip, self.user, directory, port=self.port, **hop)

    def copy_file(self, jumpbox: Optional["RemoteNode"], nm: NodeManager, src: str, dst: str) -> None:
        jumpbox_ip, ip, hop = self._route(jumpbox)
        try:
            nm.ensure_directory_exists(jumpbox_ip, ip, self.user, posixpath.dirname(dst) or "/", port=self.port, **hop)
        except FleetbootError as e:
            raise e.annotate("failed to ensure directory exists") from e
        nm.copy_file(jumpbox_ip, ip, self.user, src, dst, port=self.port, **hop)

    # ------------------ readiness ------------------

    def wait_for_ssh(
        self,
        jumpbox: Optional["RemoteNode"],
        nm: NodeManager,
        timeout: float,
        *,
        interval: float = 5.0,
        username: str = JUMPBOX_USER,
    ) -> None:
        jumpbox_ip, ip, hop = self._route(jumpbox)
        attempts = max(1, int(timeout // interval) + 1) if interval > 0 else 1

        @retry(
            retries=attempts,
            delay=interval,
            retry_on=(ConnectionFailedError, OperationTimeoutError),
            on_retry=lambda attempt, exc: log.debug("waiting for SSH on %s (attempt %d): %s", self.name, attempt, exc),
        )
        def _probe():
            nm.connections.get_client(
                jumpbox_ip,
                ip,
                username,
                port=self.port,
                bastion_user=hop.get("jumpbox_user"),
                bastion_port=hop.get("jumpbox_port", 22),
            )

        try:
            _probe()
        except RetryError as e:
            raise OperationTimeoutError(f"timeout waiting for SSH on node {self.name} ({ip})") from e

    # ------------------ sshd ------------------

    def has_root_login_enabled(self, jumpbox: Optional["RemoteNode"], nm: NodeManager, *, username: str = JUMPBOX_USER) -> bool:
        try:
            self.run_ssh_command(jumpbox, nm, username, "sudo grep -E '^PermitRootLogin yes' /etc/ssh/sshd_config >/dev/null 2>&1")
        except FleetbootError:
            return False
        # cloud images prefix root's key with a forced command that refuses logins
        try:
            self.run_ssh_command(jumpbox, nm, username, "sudo grep -E '^no-port-forwarding' /root/.ssh/authorized_keys >/dev/null 2>&1")
        except FleetbootError:
            return True
        return False

    def enable_root_login(self, jumpbox: Optional["RemoteNode"], nm: NodeManager, *, username: str = JUMPBOX_USER) -> None:
        cmds = [
            "sudo sed -i 's/^#\\?PermitRootLogin.*/PermitRootLogin yes/' /etc/ssh/sshd_config",
            "sudo sed -i 's/no-port-forwarding.*$//g' /root/.ssh/authorized_keys",
            "sudo systemctl restart sshd",
        ]
        for cmd in cmds:
            self.run_ssh_command(jumpbox, nm, username, cmd)

    # ------------------ sysctl ------------------

    def has_sysctl_line(self, jumpbox: Optional["RemoteNode"], nm: NodeManager, line: str) -> bool:
        try:
            self.run_ssh_command(jumpbox, nm, self.user, f"grep -qxF {shell_quote(line)} {SYSCTL_CONF}")
        except FleetbootError:
            return False
        return True

    def configure_sysctl_line(self, jumpbox: Optional["RemoteNode"], nm: NodeManager, line: str) -> None:
        q = shell_quote(line)
        self.run_ssh_command(jumpbox, nm, self.user, f"grep -qxF {q} {SYSCTL_CONF} || echo {q} >> {SYSCTL_CONF}")
        self.run_ssh_command(jumpbox, nm, self.user, f"sysctl -p {SYSCTL_CONF}")

    def has_inotify_watches_configured(self, jumpbox, nm: NodeManager) -> bool:
        return self.has_sysctl_line(jumpbox, nm, INOTIFY_WATCHES_LINE)

    def configure_inotify_watches(self, jumpbox, nm: NodeManager) -> None:
        self.configure_sysctl_line(jumpbox, nm, INOTIFY_WATCHES_LINE)

    def has_memory_map_configured(self, jumpbox, nm: NodeManager) -> bool:
        return self.has_sysctl_line(jumpbox, nm, MAX_MAP_COUNT_LINE)

    def configure_memory_map(self, jumpbox, nm: NodeManager) -> None:
        self.configure_sysctl_line(jumpbox, nm, MAX_MAP_COUNT_LINE)

    # ------------------ k0s ------------------

    def install_k0s(
        self,
        nm: NodeManager,
        binary_path: str,
        config_path: str = "",
        force: bool = False,
        *,
        jumpbox: Optional["RemoteNode"] = None,
    ) -> None:
        """
        Upload a k0s binary (and config) and install a controller on this node.
        """
        log.info("installing k0s on %s", self.name)
        self.copy_file(jumpbox, nm, binary_path, REMOTE_K0S_BINARY)
        self.run_ssh_command(jumpbox, nm, self.user, f"chmod 0755 {shell_quote(REMOTE_K0S_BINARY)}")

        binary = shell_quote(REMOTE_K0S_BINARY)
        if force:
            try:
                self.run_ssh_command(jumpbox, nm, self.user, f"{binary} reset")
            except FleetbootError as e:
                log.warning("k0s reset on %s failed, continuing: %s", self.name, e)

        if config_path:
            self.copy_file(jumpbox, nm, config_path, REMOTE_K0S_CONFIG)
            cmd = f"{binary} install controller --config {shell_quote(REMOTE_K0S_CONFIG)} --enable-worker --no-taints"
        else:
            cmd = f"{binary} install controller --single"
        if force:
            cmd += " --force"

        self.run_ssh_command(jumpbox, nm, self.user, cmd)
        self.run_ssh_command(jumpbox, nm, self.user, f"{binary} start")
        log.info("k0s installed and started on %s", self.name)
