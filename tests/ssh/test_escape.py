import shutil
import subprocess

import pytest

from fleetboot.ssh.escape import shell_escape, shell_quote


def test_escape_replaces_single_quotes_only():
    assert shell_escape("plain") == "plain"
    assert shell_escape("it's") == "it'\\''s"
    assert shell_escape("$(rm -rf /); `id` | cat") == "$(rm -rf /); `id` | cat"


def test_quote_wraps_in_single_quotes():
    assert shell_quote("") == "''"
    assert shell_quote("a b") == "'a b'"
    assert shell_quote("'") == "''\\'''"


HOSTILE = [
    "",
    "simple",
    "with space",
    "it's",
    "''''",
    "$(touch /tmp/pwned)",
    "`id`",
    "a; rm -rf / | cat && echo x || true",
    "line1\nline2",
    "tab\there\r",
    "\x01\x1b[31mred",
    "ünïcödé ✓ 日本",
    "\\backslash\\",
    '"double" and \'single\'',
    "*?[glob]~",
    "$HOME ${PATH}",
]


@pytest.mark.skipif(shutil.which("sh") is None, reason="needs a POSIX shell")
@pytest.mark.parametrize("arg", HOSTILE)
def test_shell_evaluates_token_back_to_input(arg):
    out = subprocess.run(
        ["sh", "-c", f"printf '%s' {shell_quote(arg)}"],
        capture_output=True,
        check=True,
    ).stdout
    assert out.decode("utf-8") == arg
