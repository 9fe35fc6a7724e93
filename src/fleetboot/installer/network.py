# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/fleetboot/installer/network.py

from __future__ import annotations

import ipaddress
import socket
from typing import Callable, Dict, Iterable, List

import psutil

from ..errors import NoSuitableAddressError


def get_node_ip_address(
    control_planes: Iterable[str],
    *,
    addrs_provider: Callable[[], Dict[str, List]] = psutil.net_if_addrs,
) -> str:
    """
    Return the local IPv4 address that matches a control plane, or else
    the first non-loopback IPv4 address found.
    """
    cp_set = set(control_planes)
    fallback = ""

    for _iface, addrs in addrs_provider().items():
        for addr in addrs:
            if addr.family != socket.AF_INET:
                continue
            try:
                ip = ipaddress.IPv4Address(addr.address)
            except ValueError:
                continue
            if ip.is_loopback:
                continue
            if str(ip) in cp_set:
                return str(ip)
            if not fallback:
                fallback = str(ip)

    if fallback:
        return fallback
    raise NoSuitableAddressError("no suitable IP address found")
