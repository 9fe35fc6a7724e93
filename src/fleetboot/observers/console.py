# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/fleetboot/observers/console.py
from .events import BaseEvent

_BASE = ("ts", "run_id", "env", "context")


class ConsoleObserver:
    def __init__(self, echo=print):
        self.echo = echo

    def notify(self, event: BaseEvent) -> None:
        d = event.dict()
        k = event.__class__.__name__
        data = ", ".join(f"{x}={y}" for x, y in d.items() if x not in _BASE)
        self.echo(f"[{d['ts']}] {k} dc={d['env']} jumpbox={d['context']} data={{{data}}}")
