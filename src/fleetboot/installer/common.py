# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/fleetboot/installer/common.py

from __future__ import annotations

import logging
import os
import platform
import tempfile
from pathlib import Path
from typing import Callable

from ..errors import AlreadyExistsError, FleetbootError, UnsupportedPlatformError
from .http import HttpClient

log = logging.getLogger(__name__)

_ARCH_ALIASES = {"x86_64": "amd64", "amd64": "amd64", "aarch64": "arm64", "arm64": "arm64"}


def current_goos() -> str:
    return platform.system().lower()


def current_goarch() -> str:
    m = platform.machine().lower()
    return _ARCH_ALIASES.get(m, m)


def require_linux_amd64(goos: str, goarch: str) -> None:
    if goos != "linux" or goarch != "amd64":
        raise UnsupportedPlatformError(
            f"installation is only supported on Linux amd64. Current platform: {goos}/{goarch}"
        )


def download_binary(
    http: HttpClient,
    url: str,
    dest: Path,
    *,
    name: str,
    force: bool,
    quiet: bool,
    exists: Callable[[Path], bool] = Path.exists,
) -> Path:
    """
    Stream `url` to `dest` and make it executable. `dest` only changes once
    the download completed.

    An existing destination is left untouched unless `force` is set.
    """
    try:
        dest.parent.mkdir(mode=0o755, parents=True, exist_ok=True)
    except OSError as e:
        raise FleetbootError(f"failed to create workdir: {e}") from e

    if exists(dest) and not force:
        raise AlreadyExistsError(f"{name} binary already exists at {dest}. Use --force to overwrite")

    # dest is replaced only after the download completed
    try:
        tmp = tempfile.NamedTemporaryFile(dir=dest.parent, prefix=f".{name}-", suffix=".part", delete=False)
    except OSError as e:
        raise FleetbootError(f"failed to create temporary file in {dest.parent}: {e}") from e

    done = False
    try:
        try:
            with tmp as f:
                http.download(url, f, quiet)
        except FleetbootError as e:
            raise e.annotate(f"failed to download {name} binary") from e
        except OSError as e:
            raise FleetbootError(f"failed to write {name} binary to {dest}: {e}") from e

        try:
            os.chmod(tmp.name, 0o755)
            os.replace(tmp.name, dest)
        except OSError as e:
            raise FleetbootError(f"failed to install {name} binary at {dest}: {e}") from e
        done = True
    finally:
        if not done:
            try:
                os.unlink(tmp.name)
            except OSError as e:
                log.debug("could not remove partial download %s: %s", tmp.name, e)

    log.info("%s binary downloaded and made executable at '%s'", name, dest)
    return dest
