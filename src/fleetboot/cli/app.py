# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/fleetboot/cli/app.py
from __future__ import annotations

import functools
import logging
import os
from pathlib import Path
from typing import List, Optional

import typer

from fleetboot.config.loader import load_topology
from fleetboot.config.settings import load_settings
from fleetboot.errors import FleetbootError
from fleetboot.installer.fleet import FleetPreparer
from fleetboot.installer.k0s import K0s
from fleetboot.installer.k0sctl import K0sctl
from fleetboot.installer.network import get_node_ip_address
from fleetboot.k0s.config import write_generated_config
from fleetboot.k0s.k0sctl_config import generate_k0sctl_config, plan_hosts
from fleetboot.logging.log import init_logging
from fleetboot.node.manager import NodeManager
from fleetboot.node.remote import RemoteNode
from fleetboot.observers.console import ConsoleObserver
from fleetboot.observers.dispatcher import EventBus
from fleetboot.observers.logger import LoggerObserver
from fleetboot.ssh.connection import JUMPBOX_USER

# ------------------------------------------------------------------------------
# CLI setup
# ------------------------------------------------------------------------------

app = typer.Typer(help="fleetboot: remote node orchestration and k0s cluster bootstrap")
download_app = typer.Typer(help="Download k0s or k0sctl into the workdir")
install_app = typer.Typer(help="Install k0s locally or on a remote host")
cluster_app = typer.Typer(help="Generate, prepare, apply and reset k0sctl clusters")

app.add_typer(download_app, name="download")
app.add_typer(install_app, name="install")
app.add_typer(cluster_app, name="cluster")

# run_id and log_path of the current invocation
state: dict = {}


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Log DEBUG to the console")) -> None:
    _, run_id, log_path = init_logging(verbose=verbose)
    state["run_id"] = run_id
    state["log_path"] = log_path


def fail_on_error(fn):
    """Turn FleetbootError into a clean non-zero exit."""

    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except FleetbootError as e:
            typer.echo(f"error: {e}", err=True)
            raise typer.Exit(code=1)

    return wrapper


def prompt_passphrase(path: str) -> str:
    return typer.prompt(f"Enter passphrase for {path}", hide_input=True, default="", show_default=False)


# ------------------------------------------------------------------------------
# download
# ------------------------------------------------------------------------------

@download_app.command("k0s")
@fail_on_error
def download_k0s(
    version: str = typer.Option("", "--version", "-V", help="k0s version, latest stable if empty"),
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite an existing binary"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Suppress progress output"),
) -> None:
    path = K0s(settings=load_settings()).download(version, force, quiet)
    typer.echo(f"k0s downloaded to {path}")


@download_app.command("k0sctl")
@fail_on_error
def download_k0sctl(
    version: str = typer.Option("", "--version", "-V", help="k0sctl version, latest release if empty"),
    force: bool = typer.Option(False, "--force", "-f"),
    quiet: bool = typer.Option(False, "--quiet", "-q"),
) -> None:
    path = K0sctl(settings=load_settings()).download(version, force, quiet)
    typer.echo(f"k0sctl downloaded to {path}")


# ------------------------------------------------------------------------------
# install
# ------------------------------------------------------------------------------

@install_app.command("k0s")
@fail_on_error
def install_k0s(
    version: str = typer.Option("", "--version", "-V", help="k0s version to download when the binary is missing"),
    k0s_config: Optional[Path] = typer.Option(None, "--k0s-config", help="k0s config; --single when omitted"),
    topology: Optional[Path] = typer.Option(
        None, "--topology", "--install-config", help="Generate the k0s config from this cluster topology"
    ),
    binary: Optional[Path] = typer.Option(None, "--binary", help="k0s binary, defaults to <workdir>/k0s"),
    force: bool = typer.Option(False, "--force", "-f", help="Download again, reset before installing and pass --force"),
    remote_host: Optional[str] = typer.Option(None, "--remote-host", help="Install on this host over SSH"),
    remote_user: str = typer.Option("root", "--remote-user"),
    ssh_key: Optional[Path] = typer.Option(None, "--ssh-key"),
    jumpbox: Optional[str] = typer.Option(None, "--jumpbox", help="Reach --remote-host through this jump host"),
    jumpbox_user: str = typer.Option(JUMPBOX_USER, "--jumpbox-user"),
    jumpbox_port: int = typer.Option(22, "--jumpbox-port"),
) -> None:
    if k0s_config and topology:
        raise typer.BadParameter("--k0s-config and --topology are mutually exclusive")

    settings = load_settings()
    k0s = K0s(settings=settings)

    generated = write_generated_config(load_topology(topology)) if topology else None
    config_path = generated or (str(k0s_config) if k0s_config else "")
    try:
        if binary is None and (force or not k0s.binary_path.exists()):
            binary_path = str(k0s.download(version, force))
        else:
            binary_path = str(binary) if binary else str(k0s.binary_path)

        if not remote_host:
            k0s.install(config_path, binary_path, force)
            k0s.start(binary_path)
            typer.echo("k0s installed and started")
            return

        nm = NodeManager.create(str(ssh_key) if ssh_key else None, settings=settings, passphrase_callback=prompt_passphrase)
        try:
            node = RemoteNode(name=remote_host, external_ip=remote_host, internal_ip=remote_host, user=remote_user)
            jb = None
            if jumpbox:
                jb = RemoteNode(name="jumpbox", external_ip=jumpbox, internal_ip=jumpbox, user=jumpbox_user, port=jumpbox_port)
            node.install_k0s(nm, binary_path, config_path, force, jumpbox=jb)
        finally:
            nm.close()
    finally:
        if generated:
            try:
                os.remove(generated)
            except OSError as e:
                logging.getLogger("fleetboot").debug("could not remove generated config %s: %s", generated, e)
    typer.echo(f"k0s installed and started on {remote_host}")


# ------------------------------------------------------------------------------
# cluster
# ------------------------------------------------------------------------------

@cluster_app.command("generate")
@fail_on_error
def cluster_generate(
    topology: Path = typer.Argument(..., help="Cluster topology YAML"),
    version: str = typer.Option("", "--version", "-V", help="k0s version, latest stable if empty"),
    ssh_key: Optional[Path] = typer.Option(None, "--ssh-key"),
    binary: Optional[Path] = typer.Option(None, "--binary", help="Local k0s binary to upload to every host"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Defaults to <workdir>/k0sctl-config.yaml"),
) -> None:
    settings = load_settings()
    topo = load_topology(topology)
    if not version:
        version = K0s(settings=settings).get_latest_version()

    cfg = generate_k0sctl_config(topo, version, str(ssh_key) if ssh_key else "", str(binary) if binary else "")

    out = output or settings.workdir / "k0sctl-config.yaml"
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_text(cfg.marshal(), encoding="utf-8")
    typer.echo(f"k0sctl config for {cfg.name} ({len(cfg.hosts)} hosts) written to {out}")


@cluster_app.command("prepare")
@fail_on_error
def cluster_prepare(
    topology: Path = typer.Argument(..., help="Cluster topology YAML"),
    ssh_key: Optional[Path] = typer.Option(None, "--ssh-key"),
    binary: Optional[Path] = typer.Option(None, "--binary", help="Upload this k0s binary to every host"),
    ssh_timeout: float = typer.Option(300.0, "--ssh-timeout"),
    max_workers: Optional[int] = typer.Option(None, "--max-workers"),
) -> None:
    settings = load_settings()
    topo = load_topology(topology)
    key = str(ssh_key) if ssh_key else ""
    hosts = plan_hosts(topo, key, str(binary) if binary else "")

    logger, run_id = logging.getLogger("fleetboot"), state.get("run_id")
    bus = EventBus(observers=[ConsoleObserver(typer.echo), LoggerObserver(logger)])

    nm = NodeManager.create(key or None, settings=settings, passphrase_callback=prompt_passphrase)
    try:
        report = FleetPreparer(
            nm,
            bus=bus,
            datacenter=topo.datacenter.name,
            run_id=run_id,
            ssh_timeout=ssh_timeout,
            upload_binary=binary is not None,
            max_workers=max_workers,
        ).prepare(hosts)
    finally:
        nm.close()

    if not report.succeeded:
        typer.echo(f"{len(report.failed)} of {len(report.results)} hosts failed to prepare", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"{len(report.results)} hosts prepared")


@cluster_app.command("apply")
@fail_on_error
def cluster_apply(
    config: Path = typer.Argument(..., help="k0sctl config YAML"),
    binary: Optional[Path] = typer.Option(None, "--binary", help="k0sctl binary, defaults to <workdir>/k0sctl"),
    force: bool = typer.Option(False, "--force", "-f"),
) -> None:
    K0sctl(settings=load_settings()).apply(str(config), str(binary) if binary else "", force)


@cluster_app.command("reset")
@fail_on_error
def cluster_reset(
    config: Path = typer.Argument(..., help="k0sctl config YAML"),
    binary: Optional[Path] = typer.Option(None, "--binary"),
) -> None:
    K0sctl(settings=load_settings()).reset(str(config), str(binary) if binary else "")


# ------------------------------------------------------------------------------
# node-ip
# ------------------------------------------------------------------------------

@app.command("node-ip")
@fail_on_error
def node_ip(
    topology: Optional[Path] = typer.Argument(None, help="Topology whose control planes are preferred"),
    control_plane: List[str] = typer.Option([], "--control-plane", "-c", help="Control plane IP, repeatable"),
) -> None:
    cps = list(control_plane)
    if topology is not None:
        cps += load_topology(topology).control_plane_addresses()
    typer.echo(get_node_ip_address(cps))


if __name__ == "__main__":
    app()
