# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/fleetboot/config/settings.py

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional


@dataclass(frozen=True)
class Settings:
    workdir: Path
    ssh_auth_sock: Optional[str]
    ssh_connect_timeout: float
    ssh_command_timeout: float
    ssh_cache_ttl: float


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    # sensible defaults; override via env
    env = os.environ if environ is None else environ
    return Settings(
        workdir=Path(env.get("FLEETBOOT_WORKDIR") or "./fleetboot-workdir"),
        ssh_auth_sock=env.get("SSH_AUTH_SOCK") or None,
        ssh_connect_timeout=float(env.get("FLEETBOOT_SSH_CONNECT_TIMEOUT", "10")),
        ssh_command_timeout=float(env.get("FLEETBOOT_SSH_COMMAND_TIMEOUT", "600")),
        ssh_cache_ttl=float(env.get("FLEETBOOT_SSH_CACHE_TTL", "600")),
    )
