# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/fleetboot/installer/k0sctl.py

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Optional

from ..config.settings import Settings, load_settings
from ..errors import ConfigInvalidError, FleetbootError, NotFoundError
from ..utils.shell import run_logged
from .common import current_goarch, current_goos, download_binary
from .k0s import Runner
from .http import HttpClient

log = logging.getLogger(__name__)

K0SCTL_LATEST_URL = "https://api.github.com/repos/k0sproject/k0sctl/releases/latest"
K0SCTL_RELEASE_URL = "https://github.com/k0sproject/k0sctl/releases/download/{version}/k0sctl-{goos}-{arch}"


class K0sctl:
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
        return self.settings.workdir / "k0sctl"

    def get_latest_version(self) -> str:
        try:
            body = self.http.get(K0SCTL_LATEST_URL)
        except FleetbootError as e:
            raise e.annotate("failed to fetch latest k0sctl release") from e

        try:
            release = json.loads(body)
        except ValueError as e:
            raise ConfigInvalidError(f"failed to parse GitHub API response: {e}") from e

        tag = release.get("tag_name") if isinstance(release, dict) else None
        if not tag:
            raise ConfigInvalidError("no tag_name found in GitHub API response")
        return tag

    def download(self, version: str = "", force: bool = False, quiet: bool = False) -> Path:
        if not version:
            version = self.get_latest_version()
            if not quiet:
                log.info("Using latest k0sctl version: %s", version)

        if not version.startswith("v"):
            version = "v" + version
        url = K0SCTL_RELEASE_URL.format(version=version, goos=self.goos, arch=self.goarch)

        if not quiet:
            log.info("Downloading k0sctl %s from %s", version, url)
        return download_binary(self.http, url, self.binary_path, name="k0sctl", force=force, quiet=quiet)

    def apply(self, config_path: str, binary_path: str = "", force: bool = False) -> None:
        binary = binary_path or str(self.binary_path)
        if not os.path.exists(binary):
            raise NotFoundError(f"k0sctl binary does not exist at '{binary}', please download first")
        if not os.path.exists(config_path):
            raise NotFoundError(f"k0sctl config does not exist at '{config_path}'")

        args = [binary, "apply", "--config", config_path]
        if force:
            args.append("--force")
        args.append("--debug")

        log.info("Running k0sctl apply with config: %s", config_path)
        try:
            self.runner(args, label="k0sctl apply", timeout=None)
        except FleetbootError as e:
            raise e.annotate("k0sctl apply failed") from e
        log.info("k0sctl apply completed successfully")

    def reset(self, config_path: str, binary_path: str = "") -> None:
        binary = binary_path or str(self.binary_path)
        if not os.path.exists(binary):
            log.debug("k0sctl binary %s absent, nothing to reset", binary)
            return
        if not os.path.exists(config_path):
            raise NotFoundError(f"k0sctl config does not exist at '{config_path}'")

        log.info("Resetting k0s cluster using k0sctl...")
        try:
            self.runner([binary, "reset", "--config", config_path, "--force"], label="k0sctl reset", timeout=None)
        except FleetbootError as e:
            raise e.annotate("k0sctl reset failed") from e
        log.info("k0sctl reset completed successfully")
