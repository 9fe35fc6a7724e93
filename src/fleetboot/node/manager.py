# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/fleetboot/node/manager.py

from __future__ import annotations

import codecs
import logging
import shutil
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import paramiko
from paramiko.agent import AgentRequestHandler

from ..config.settings import Settings, load_settings
from ..errors import (
    CommandFailedError,
    ConnectionFailedError,
    FleetbootError,
    NotFoundError,
    OperationTimeoutError,
)
from ..ssh.auth import AuthResolver
from ..ssh.connection import ConnectionManager
from ..ssh.escape import shell_quote

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommandResult:
    exit_status: int
    stdout: str
    stderr: str


class _Stream:
    """Accumulates channel output, decoding UTF-8 across chunk boundaries."""

    def __init__(self):
        self._decoder = codecs.getincrementaldecoder("utf-8")("replace")
        self._parts: list[str] = []

    def feed(self, data: bytes) -> None:
        self._parts.append(self._decoder.decode(data))

    def text(self) -> str:
        self._parts.append(self._decoder.decode(b"", final=True))
        return "".join(self._parts)


class NodeManager:
    """
    Executes commands and copies files on nodes addressed by (jumpbox, ip, user).

    Commands must already be shell-escaped by the caller; this layer never
    interpolates arguments itself except through shell_quote().
    """

    def __init__(
        self,
        connections: ConnectionManager,
        *,
        command_timeout: float = 600.0,
        forward_agent: bool = True,
        poll_interval: float = 0.1,
    ):
        self.connections = connections
        self.command_timeout = command_timeout
        self.forward_agent = forward_agent
        self.poll_interval = poll_interval

    @classmethod
    def create(
        cls,
        key_path: Optional[str],
        *,
        settings: Optional[Settings] = None,
        passphrase_callback: Optional[Callable[[str], str]] = None,
    ) -> "NodeManager":
        settings = settings or load_settings()
        environ = {"SSH_AUTH_SOCK": settings.ssh_auth_sock} if settings.ssh_auth_sock else {}
        auth = AuthResolver(environ=environ, passphrase_callback=passphrase_callback)
        connections = ConnectionManager(
            auth,
            key_path,
            connect_timeout=settings.ssh_connect_timeout,
            max_age=settings.ssh_cache_ttl,
        )
        return cls(connections, command_timeout=settings.ssh_command_timeout)

    def close(self) -> None:
        self.connections.close_all()

    # ------------------ commands ------------------

    def _request_agent_forwarding(self, channel: paramiko.Channel) -> None:
        if not self.connections.auth.agent_socket():
            log.debug("SSH_AUTH_SOCK not set, skipping agent forwarding")
            return
        try:
            AgentRequestHandler(channel)
        except (paramiko.SSHException, OSError) as e:
            log.warning("agent forwarding setup failed on session: %s", e)

    def run_ssh_command(
        self,
        jumpbox_ip: str,
        ip: str,
        username: str,
        command: str,
        *,
        port: int = 22,
        jumpbox_user: Optional[str] = None,
        jumpbox_port: int = 22,
        timeout: Optional[float] = None,
        env: Optional[Dict[str, str]] = None,
    ) -> CommandResult:
        timeout = self.command_timeout if timeout is None else timeout
        hop = {"bastion_user": jumpbox_user, "bastion_port": jumpbox_port}
        client = self.connections.get_client(jumpbox_ip, ip, username, port=port, **hop)

        try:
            channel = client.get_transport().open_session(timeout=self.connections.connect_timeout)
        except (paramiko.SSHException, OSError, AttributeError) as e:
            self.connections.invalidate(jumpbox_ip, ip, username, **hop)
            raise CommandFailedError(f"failed to create session on target node ({ip}): {e}") from e

        out, err = _Stream(), _Stream()
        try:
            if self.forward_agent:
                self._request_agent_forwarding(channel)
            if env:
                channel.update_environment(env)

            log.debug("(%s) $ %s", ip, command)
            channel.exec_command(command)

            deadline = time.monotonic() + timeout
            while not channel.exit_status_ready():
                self._drain(channel, ip, out, err)
                if time.monotonic() >= deadline:
                    raise OperationTimeoutError(f"command on {ip} timed out after {timeout}s: {command}")
                time.sleep(self.poll_interval)
            self._drain(channel, ip, out, err)
            rc = channel.recv_exit_status()
        except OperationTimeoutError:
            # TimeoutError is an OSError; keep it out of the transport branch below
            raise
        except (paramiko.SSHException, OSError) as e:
            self.connections.invalidate(jumpbox_ip, ip, username, **hop)
            raise CommandFailedError(f"command transport to {ip} failed: {e}") from e
        finally:
            channel.close()

        stdout, stderr = out.text(), err.text()
        log.debug("(%s) [exit %s]", ip, rc)
        if rc != 0:
            raise CommandFailedError(
                f"command failed on {ip} (exit status {rc}): {stderr.strip()}",
                exit_status=rc,
                stderr=stderr,
            )
        return CommandResult(exit_status=rc, stdout=stdout, stderr=stderr)

    @staticmethod
    def _drain(channel, ip: str, out: "_Stream", err: "_Stream") -> None:
        while channel.recv_ready():
            data = channel.recv(4096)
            if not data:
                break
            out.feed(data)
            log.debug("(%s) [stdout] %s", ip, data.decode("utf-8", "replace").rstrip())
        while channel.recv_stderr_ready():
            data = channel.recv_stderr(4096)
            if not data:
                break
            err.feed(data)
            log.debug("(%s) [stderr] %s", ip, data.decode("utf-8", "replace").rstrip())

    # ------------------ files ------------------

    def get_sftp_client(
        self,
        jumpbox_ip: str,
        ip: str,
        username: str,
        *,
        port: int = 22,
        jumpbox_user: Optional[str] = None,
        jumpbox_port: int = 22,
    ) -> paramiko.SFTPClient:
        hop = {"bastion_user": jumpbox_user, "bastion_port": jumpbox_port}
        try:
            client = self.connections.get_client(jumpbox_ip, ip, username, port=port, **hop)
        except FleetbootError as e:
            raise e.annotate("failed to get SSH client") from e
        try:
            return client.open_sftp()
        except (paramiko.SSHException, OSError) as e:
            self.connections.invalidate(jumpbox_ip, ip, username, **hop)
            raise ConnectionFailedError(f"failed to create SFTP client: {e}") from e

    def ensure_directory_exists(self, jumpbox_ip: str, ip: str, username: str, directory: str, **kwargs) -> None:
        self.run_ssh_command(jumpbox_ip, ip, username, f"mkdir -p {shell_quote(directory)}", **kwargs)

    def copy_file(self, jumpbox_ip: str, ip: str, username: str, src: str, dst: str, **kwargs) -> None:
        sftp = self.get_sftp_client(jumpbox_ip, ip, username, **kwargs)
        try:
            try:
                src_file = open(src, "rb")
            except FileNotFoundError as e:
                raise NotFoundError(f"failed to open source file {src}: {e}") from e
            except OSError as e:
                raise FleetbootError(f"failed to open source file {src}: {e}") from e

            with src_file:
                try:
                    with sftp.open(dst, "wb") as dst_file:
                        dst_file.set_pipelined(True)
                        shutil.copyfileobj(src_file, dst_file, 32768)
                except (paramiko.SSHException, OSError) as e:
                    raise CommandFailedError(f"failed to copy data from {src} to {dst}: {e}") from e
        finally:
            sftp.close()
        log.info("copied %s to %s:%s", src, ip, dst)
