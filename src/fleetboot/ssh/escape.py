# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/fleetboot/ssh/escape.py

from __future__ import annotations


def shell_escape(s: str) -> str:
    """
    Escape a string for use inside a single-quoted POSIX shell word.

    Only the single quote needs treatment: it becomes '\\'' (close quote,
    escaped quote, reopen quote). Everything else is literal inside '...'.
    """
    return s.replace("'", "'\\''")


def shell_quote(s: str) -> str:
    """
    Return a single shell token that evaluates to exactly `s`.
    """
    return "'" + shell_escape(s) + "'"
