# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/fleetboot/observers/events.py

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


# ---------------------------------------------------------------------
# Base context and helper
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class BaseEvent:
    ts: str           # ISO timestamp
    run_id: str       # correlates all events in a single invocation
    env: str          # datacenter name
    context: Optional[str]  # jumpbox address, if any

    def dict(self) -> Dict[str, Any]:
        return asdict(self)


def new_ctx(env: str, context: Optional[str], run_id: Optional[str] = None) -> Dict[str, Any]:
    return {
        "ts": datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z"),
        "run_id": run_id or str(uuid.uuid4()),
        "env": env,
        "context": context,
    }


# ---------------------------------------------------------------------
# Fleet preparation
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class HostPrepareStarted(BaseEvent):
    host: str
    address: str
    role: str

@dataclass(frozen=True)
class HostPrepared(BaseEvent):
    host: str
    address: str
    duration_ms: int

@dataclass(frozen=True)
class HostPrepareFailed(BaseEvent):
    host: str
    address: str
    error: str

@dataclass(frozen=True)
class PrepareSummary(BaseEvent):
    ok: int
    failed: int
    failed_hosts: List[str]
