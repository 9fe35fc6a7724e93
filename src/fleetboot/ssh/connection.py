# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/fleetboot/ssh/connection.py

from __future__ import annotations

import logging
import socket
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Optional, Sequence, Tuple

import paramiko

from ..errors import (
    AuthenticationFailedError,
    ConnectionFailedError,
    FleetbootError,
    OperationTimeoutError,
)
from .auth import AuthMethod, AuthResolver, connect_kwargs

log = logging.getLogger(__name__)

JUMPBOX_USER = "ubuntu"

CacheKey = Tuple[str, str, str]   # (bastion or "", target, user)


class _TrustOnFirstUsePolicy(paramiko.MissingHostKeyPolicy):
    """
    Accept unknown hosts and append them to known_hosts.
    Hosts whose key changed are still rejected by paramiko (BadHostKeyException).
    """

    def __init__(self, known_hosts: Path, lock: threading.Lock):
        self.known_hosts = known_hosts
        self.lock = lock

    def missing_host_key(self, client, hostname, key):
        client.get_host_keys().add(hostname, key.get_name(), key)
        with self.lock:
            with open(self.known_hosts, "a", encoding="utf-8") as f:
                f.write(f"{hostname} {key.get_name()} {key.get_base64()}\n")
        log.info("permanently added %s (%s) to %s", hostname, key.get_name(), self.known_hosts)


class SSHClientFactory:
    """
    Creates and dials paramiko clients. Swapped out in tests.
    """

    def __init__(self, known_hosts: Optional[Path] = None):
        self.known_hosts = known_hosts or (Path.home() / ".ssh" / "known_hosts")
        self._lock = threading.Lock()

    def _ensure_known_hosts(self) -> None:
        with self._lock:
            if self.known_hosts.exists():
                return
            self.known_hosts.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
            self.known_hosts.touch(mode=0o600)

    def new_client(self) -> paramiko.SSHClient:
        self._ensure_known_hosts()
        client = paramiko.SSHClient()
        client.load_host_keys(str(self.known_hosts))
        client.set_missing_host_key_policy(_TrustOnFirstUsePolicy(self.known_hosts, self._lock))
        return client

    def dial(
        self,
        address: str,
        port: int,
        username: str,
        auth: dict,
        *,
        timeout: float,
        sock=None,
    ) -> paramiko.SSHClient:
        client = self.new_client()
        try:
            client.connect(
                hostname=address,
                port=port,
                username=username,
                timeout=timeout,
                banner_timeout=timeout,
                auth_timeout=timeout,
                sock=sock,
                **auth,
            )
        except BaseException:
            client.close()
            raise
        return client


@dataclass
class _CacheEntry:
    client: paramiko.SSHClient
    created: float


class ConnectionManager:
    """
    Dials and caches authenticated SSH clients, directly or through a jumpbox.

    Cache lookups and writes are serialized by one lock; dialing happens
    outside it so different targets connect in parallel. Only successful dials
    are cached. Entries expire after `max_age` seconds, when their transport
    dies, or when a caller invalidates them after a failed use.
    """

    def __init__(
        self,
        auth: AuthResolver,
        key_path: Optional[str] = None,
        *,
        factory: Optional[SSHClientFactory] = None,
        jumpbox_user: str = JUMPBOX_USER,
        connect_timeout: float = 10.0,
        max_age: Optional[float] = 600.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.auth = auth
        self.key_path = key_path
        self.factory = factory or SSHClientFactory()
        self.jumpbox_user = jumpbox_user
        self.connect_timeout = connect_timeout
        self.max_age = max_age
        self._clock = clock
        self._cache: Dict[CacheKey, _CacheEntry] = {}
        self._lock = threading.Lock()

    # ------------------ cache ------------------

    def _is_fresh(self, entry: _CacheEntry) -> bool:
        if self.max_age is not None and self._clock() - entry.created >= self.max_age:
            return False
        transport = entry.client.get_transport()
        return transport is not None and transport.is_active()

    def _lookup(self, key: CacheKey) -> Optional[paramiko.SSHClient]:
        stale = None
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                return None
            if self._is_fresh(entry):
                return entry.client
            stale = self._cache.pop(key)
        log.debug("evicting stale SSH client for %s", key)
        stale.client.close()
        return None

    def _store(self, key: CacheKey, client: paramiko.SSHClient) -> paramiko.SSHClient:
        with self._lock:
            existing = self._cache.get(key)
            if existing is not None and self._is_fresh(existing):
                winner = existing.client
            else:
                self._cache[key] = _CacheEntry(client=client, created=self._clock())
                return client
        # another caller dialed the same target first
        client.close()
        return winner

    def _hop(self, bastion: str, bastion_user: Optional[str], bastion_port: int) -> str:
        """
        Cache-key form of a jumpbox: the bare address for the default
        user and port, `user@address:port` otherwise.
        """
        if not bastion:
            return ""
        user = bastion_user or self.jumpbox_user
        if user == self.jumpbox_user and bastion_port == 22:
            return bastion
        return f"{user}@{bastion}:{bastion_port}"

    def invalidate(
        self,
        bastion: str,
        target: str,
        user: str,
        *,
        bastion_user: Optional[str] = None,
        bastion_port: int = 22,
    ) -> None:
        with self._lock:
            entry = self._cache.pop((self._hop(bastion, bastion_user, bastion_port), target, user), None)
        if entry is not None:
            log.debug("invalidated SSH client for %s@%s (jumpbox=%r)", user, target, bastion)
            entry.client.close()

    def close_all(self) -> None:
        with self._lock:
            entries = list(self._cache.values())
            self._cache.clear()
        for entry in entries:
            entry.client.close()

    def cached_keys(self) -> list:
        with self._lock:
            return list(self._cache)

    # ------------------ dialing ------------------

    def _dial(
        self,
        target: str,
        port: int,
        user: str,
        methods: Sequence[AuthMethod],
        *,
        sock=None,
        via: str = "",
    ) -> paramiko.SSHClient:
        hop = f" through jumpbox {via}" if via else ""
        try:
            return self.factory.dial(
                target,
                port,
                user,
                connect_kwargs(methods),
                timeout=self.connect_timeout,
                sock=sock,
            )
        except paramiko.AuthenticationException as e:
            raise AuthenticationFailedError(f"authentication for {user}@{target}{hop} rejected: {e}") from e
        except socket.timeout as e:
            raise OperationTimeoutError(
                f"timed out after {self.connect_timeout}s connecting to {target}:{port}{hop}"
            ) from e
        except (paramiko.SSHException, OSError) as e:
            if via:
                raise ConnectionFailedError(
                    f"failed to perform SSH handshake with {target}:{port}{hop}: {e}"
                ) from e
            raise ConnectionFailedError(f"failed to dial {target}:{port}: {e}") from e

    def get_client(
        self,
        bastion: str,
        target: str,
        user: str,
        *,
        port: int = 22,
        bastion_user: Optional[str] = None,
        bastion_port: int = 22,
    ) -> paramiko.SSHClient:
        key: CacheKey = (self._hop(bastion, bastion_user, bastion_port), target, user)
        cached = self._lookup(key)
        if cached is not None:
            return cached

        # No network traffic happens when this raises
        methods = self.auth.resolve(self.key_path)

        if not bastion:
            return self._store(key, self._dial(target, port, user, methods))

        jb_user = bastion_user or self.jumpbox_user
        try:
            jb = self.get_client("", bastion, jb_user, port=bastion_port)
        except AuthenticationFailedError as e:
            raise AuthenticationFailedError(f"failed to connect to jumpbox {bastion}: {e}") from e
        except FleetbootError as e:
            raise ConnectionFailedError(f"failed to connect to jumpbox {bastion}: {e}") from e

        try:
            channel = jb.get_transport().open_channel(
                "direct-tcpip",
                (target, port),
                ("127.0.0.1", 0),
                timeout=self.connect_timeout,
            )
        except (paramiko.SSHException, OSError, AttributeError) as e:
            # the jumpbox client is unusable, drop it so the next call re-dials
            self.invalidate("", bastion, jb_user)
            raise ConnectionFailedError(
                f"failed to create connection to {target}:{port} through jumpbox {bastion}: {e}"
            ) from e

        try:
            client = self._dial(target, port, user, methods, sock=channel, via=bastion)
        except FleetbootError:
            channel.close()
            raise
        return self._store(key, client)
