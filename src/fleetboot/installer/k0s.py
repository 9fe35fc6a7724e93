# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/fleetboot/installer/k0s.py

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Callable, List, Optional

from ..config.settings import Settings, load_settings
from ..errors import ConfigInvalidError, FleetbootError, NotFoundError
from ..k0s.config import filter_config_file
from ..utils.shell import elevated, run_logged
from .common import current_goarch, current_goos, download_binary, require_linux_amd64
from .http import HttpClient

log = logging.getLogger(__name__)

K0S_STABLE_URL = "https://docs.k0sproject.io/stable.txt"
K0S_RELEASE_URL = "https://github.com/k0sproject/k0s/releases/download/{version}/k0s-{version}-{arch}"

Runner = Callable[..., str]


class K0s:
    """
    Downloads the k0s binary into the workdir and drives local
    install/reset/start through the host's privileges.
    """

    def __init__(
        self,
        http: Optional[HttpClient] = None,
        settings: Optional[Settings] = None,
        *,
        goos: Optional[str] = None,
        goarch: Optional[str] = None,
        runner: Runner = run_logged,
    ):
        self.http = http or HttpClient()
        self.settings = settings or load_settings()
        self.goos = goos or current_goos()
        self.goarch = goarch or current_goarch()
        self.runner = runner

    @property
    def binary_path(self) -> Path:
        return self.settings.workdir / "k0s"

    def get_latest_version(self) -> str:
        try:
            body = self.http.get(K0S_STABLE_URL)
        except FleetbootError as e:
            raise e.annotate("failed to fetch version info") from e

        version = body.decode("utf-8", "replace").strip()
        if not version:
            raise ConfigInvalidError("version info is empty, cannot proceed with download")
        return version

    def download(self, version: str = "", force: bool = False, quiet: bool = False) -> Path:
        require_linux_amd64(self.goos, self.goarch)

        if not version:
            version = self.get_latest_version()
            if not quiet:
                log.info("Using latest k0s version: %s", version)

        log.info("Downloading k0s version %s", version)
        url = K0S_RELEASE_URL.format(version=version, arch=self.goarch)
        return download_binary(self.http, url, self.binary_path, name="k0s", force=force, quiet=quiet)

    def _run(self, binary: str, args: List[str], label: str) -> None:
        self.runner(elevated([binary, *args]), label=label)

    def install(self, config_path: str = "", binary_path: str = "", force: bool = False) -> None:
        require_linux_amd64(self.goos, self.goarch)

        binary = binary_path or str(self.binary_path)
        if not os.path.exists(binary):
            raise NotFoundError(f"k0s binary does not exist at '{binary}', please download first")

        if force:
            try:
                self.reset(binary)
            except FleetbootError as e:
                log.warning("k0s reset failed, continuing with install: %s", e)

        args = ["install", "controller"]
        filtered: Optional[str] = None
        if config_path:
            filtered = filter_config_file(config_path)
            args += ["--config", filtered]
        else:
            args.append("--single")
        if force:
            args.append("--force")

        try:
            self._run(binary, args, "k0s install")
        except FleetbootError as e:
            raise e.annotate("failed to install k0s") from e
        finally:
            if filtered:
                try:
                    os.remove(filtered)
                except OSError as e:
                    log.debug("could not remove filtered config %s: %s", filtered, e)

        log.info("k0s installed successfully")

    def reset(self, binary_path: str = "") -> None:
        binary = binary_path or str(self.binary_path)
        if not os.path.exists(binary):
            log.debug("k0s binary %s absent, nothing to reset", binary)
            return

        try:
            self._run(binary, ["reset"], "k0s reset")
        except FleetbootError as e:
            raise e.annotate("failed to reset k0s") from e
        log.info("k0s reset completed")

    def start(self, binary_path: str = "") -> None:
        binary = binary_path or str(self.binary_path)
        if not os.path.exists(binary):
            raise NotFoundError(f"k0s binary does not exist at '{binary}', please download first")
        try:
            self._run(binary, ["start"], "k0s start")
        except FleetbootError as e:
            raise e.annotate("failed to start k0s") from e
        log.info("k0s started")
