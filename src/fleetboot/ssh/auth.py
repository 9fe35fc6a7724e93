# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/fleetboot/ssh/auth.py

from __future__ import annotations

import base64
import logging
import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Union

import paramiko

from ..errors import AuthenticationFailedError

log = logging.getLogger(__name__)

# Most modern first
KEY_CLASSES: Sequence[type] = (
    paramiko.Ed25519Key,
    paramiko.RSAKey,
    paramiko.ECDSAKey,
)


@dataclass(frozen=True)
class PrivateKeyFile:
    path: str
    key: paramiko.PKey = field(compare=False, repr=False)


@dataclass(frozen=True)
class Agent:
    socket: str


AuthMethod = Union[PrivateKeyFile, Agent]


def connect_kwargs(methods: Sequence[AuthMethod]) -> dict:
    """
    Translate resolved methods into paramiko.SSHClient.connect() arguments.
    paramiko tries the explicit key first and falls back to the agent.
    """
    pkey = next((m.key for m in methods if isinstance(m, PrivateKeyFile)), None)
    return {
        "pkey": pkey,
        "allow_agent": any(isinstance(m, Agent) for m in methods),
        "look_for_keys": False,
    }


def _public_key_blob(pub_path: Path) -> Optional[bytes]:
    try:
        parts = pub_path.read_text(encoding="utf-8").split()
    except OSError:
        return None
    if len(parts) < 2:
        return None
    try:
        return base64.b64decode(parts[1])
    except ValueError:
        return None


class AuthResolver:
    """
    Resolves SSH auth methods in priority order: private key file, then agent.

    Parsed keys are cached by path so encrypted keys prompt once per process.
    A key that cannot be read or parsed is logged and skipped; resolution only
    fails when no method at all is usable.
    """

    def __init__(
        self,
        *,
        environ: Optional[Mapping[str, str]] = None,
        passphrase_callback: Optional[Callable[[str], str]] = None,
        agent_factory: Callable[[], paramiko.Agent] = paramiko.Agent,
    ):
        self._environ = os.environ if environ is None else environ
        self._passphrase_callback = passphrase_callback
        self._agent_factory = agent_factory
        self._keys: Dict[str, paramiko.PKey] = {}
        self._lock = threading.Lock()

    # ------------------ key material ------------------

    def _parse(self, path: str, password: Optional[str]) -> paramiko.PKey:
        last_exc: Optional[Exception] = None
        for key_cls in KEY_CLASSES:
            try:
                return key_cls.from_private_key_file(path, password=password)
            except paramiko.PasswordRequiredException:
                raise
            except paramiko.SSHException as e:
                last_exc = e
        raise paramiko.SSHException(f"unsupported private key format for {path}: {last_exc}")

    def load_private_key(self, path: str) -> paramiko.PKey:
        with self._lock:
            cached = self._keys.get(path)
        if cached is not None:
            return cached

        try:
            key = self._parse(path, None)
        except paramiko.PasswordRequiredException:
            if self._passphrase_callback is None:
                raise
            passphrase = self._passphrase_callback(path)
            key = self._parse(path, passphrase)

        with self._lock:
            # first successful parse wins if two threads raced
            return self._keys.setdefault(path, key)

    def _agent_keys(self) -> tuple:
        try:
            return tuple(self._agent_factory().get_keys())
        except (paramiko.SSHException, OSError) as e:
            log.debug("failed to list SSH agent keys: %s", e)
            return ()

    def _in_agent(self, key_path: str) -> bool:
        blob = _public_key_blob(Path(key_path + ".pub"))
        if blob is None:
            return False
        return any(k.asbytes() == blob for k in self._agent_keys())

    # ------------------ public API ------------------

    def agent_socket(self) -> Optional[str]:
        return self._environ.get("SSH_AUTH_SOCK") or None

    def resolve(self, key_path: Optional[str]) -> List[AuthMethod]:
        methods: List[AuthMethod] = []
        sock = self.agent_socket()

        if key_path:
            with self._lock:
                cached = key_path in self._keys
            if not cached and sock and self._in_agent(key_path):
                log.debug("key %s is already loaded in the SSH agent", key_path)
            else:
                try:
                    methods.append(PrivateKeyFile(key_path, self.load_private_key(key_path)))
                except (OSError, paramiko.SSHException) as e:
                    log.warning("failed to load private key %s: %s", key_path, e)

        if sock:
            methods.append(Agent(sock))

        if not methods:
            raise AuthenticationFailedError(
                "no valid authentication methods configured. Check SSH_AUTH_SOCK and private key path"
            )
        return methods
