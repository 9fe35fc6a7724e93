# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/fleetboot/utils/shell.py

from __future__ import annotations

import logging
import os
import subprocess
import threading
import time
from pathlib import Path
from typing import List, Optional, Sequence

from ..errors import CommandFailedError, NotFoundError, OperationTimeoutError

log = logging.getLogger(__name__)


def is_root() -> bool:
    return hasattr(os, "geteuid") and os.geteuid() == 0


def elevated(cmd: Sequence[str]) -> List[str]:
    """Prefix `cmd` with sudo unless we already run as root."""
    return list(cmd) if is_root() else ["sudo", *cmd]


def _pump(stream, label: str, tag: str, sink: List[str]) -> None:
    for line in stream:
        sink.append(line)
        log.debug("[%s]%s %s", label, tag, line.rstrip())


def run_logged(
    cmd: Sequence[str],
    *,
    label: str,
    env: Optional[dict] = None,
    cwd: Optional[Path] = None,
    timeout: Optional[float] = 900,
) -> str:
    """
    Execute a local command with full logging.

    - Streams stdout/stderr into the log at DEBUG
    - Kills the process when `timeout` expires
    - Raises CommandFailedError on non-zero exit, returns stdout otherwise
    """
    log.info("[%s] $ %s", label, " ".join(cmd))
    start = time.time()

    try:
        proc = subprocess.Popen(
            list(cmd),
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            env=env,
            cwd=str(cwd) if cwd else None,
        )
    except FileNotFoundError as e:
        raise NotFoundError(f"[{label}] executable not found: {cmd[0]}") from e

    out: List[str] = []
    err: List[str] = []
    pumps = [
        threading.Thread(target=_pump, args=(proc.stdout, label, "", out), daemon=True),
        threading.Thread(target=_pump, args=(proc.stderr, label, "[stderr]", err), daemon=True),
    ]
    for t in pumps:
        t.start()

    try:
        rc = proc.wait(timeout=timeout)
    except subprocess.TimeoutExpired as e:
        proc.kill()
        proc.wait()
        raise OperationTimeoutError(f"[{label}] command timed out after {timeout}s") from e
    finally:
        for t in pumps:
            t.join()

    elapsed = round(time.time() - start, 2)
    stderr = "".join(err)
    if rc != 0:
        raise CommandFailedError(
            f"[{label}] failed (rc={rc}) after {elapsed}s: {stderr.strip()}",
            exit_status=rc,
            stderr=stderr,
        )

    log.info("[%s] completed successfully in %ss", label, elapsed)
    return "".join(out)
