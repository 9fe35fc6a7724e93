# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/fleetboot/config/loader.py

import os
from pathlib import Path

import yaml
from pydantic import ValidationError

from ..errors import ConfigInvalidError
from .models import ClusterTopology


def load_topology(path: str | Path) -> ClusterTopology:
    try:
        raw = Path(path).read_text()
    except OSError as e:
        raise ConfigInvalidError(f"failed to read topology file {path}: {e}") from e

    # expand environment variables like ${SSH_KEY_DIR}
    expanded = os.path.expandvars(raw)

    try:
        data = yaml.safe_load(expanded)
    except yaml.YAMLError as e:
        raise ConfigInvalidError(f"failed to parse topology file {path}: {e}") from e

    # install-config files nest the node lists under `kubernetes`
    if isinstance(data, dict) and isinstance(data.get("kubernetes"), dict):
        kube = dict(data["kubernetes"])
        kube.setdefault("datacenter", data.get("datacenter"))
        data = kube

    try:
        return ClusterTopology.model_validate(data)
    except ValidationError as e:
        raise ConfigInvalidError(f"invalid topology in {path}: {e}") from e
