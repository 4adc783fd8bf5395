"""Starting the remote terminal daemon over ssh and collecting its id/passkey."""

from __future__ import annotations

import os
import secrets
import string
import subprocess
from typing import Callable, Optional, Sequence

ID_LENGTH = 16
PASSKEY_LENGTH = 32
IDPASSKEY_MARKER = "IDPASSKEY:"
DEFAULT_TERM = "xterm-256color"

_ALPHANUM = string.ascii_letters + string.digits

Runner = Callable[[Sequence[str]], str]


class SshSetupError(RuntimeError):
    """Raised when the remote daemon could not be started or answered badly."""


def gen_random_alphanum(length: int) -> str:
    """Return a random string of ASCII letters and digits."""
    if length < 0:
        raise ValueError("length must not be negative")
    return "".join(secrets.choice(_ALPHANUM) for _ in range(length))


def gen_command(
    passkey: str,
    client_id: str,
    client_term: str,
    user: str,
    kill: bool,
    command_prefix: str,
    options: str,
) -> str:
    """Build the shell command that feeds the id/passkey to the remote daemon."""
    command = (
        f"echo '{client_id}/{passkey}_{client_term}\n' | "
        f"{command_prefix} etterminal {options}"
    )
    if kill:
        command = f"pkill etterminal -u {user}; sleep 0.5; " + command
    return command


def _split_pair(text: str) -> tuple[str, str]:
    parts = text.split("/")
    if len(parts) < 2:
        raise SshSetupError(f"Invalid id/passkey pair: {text!r}")
    return parts[0], parts[1]


def parse_idpasskey_output(text: str) -> tuple[str, str]:
    """Find the ``IDPASSKEY:`` line in the daemon output; return (id, passkey)."""
    index = text.find(IDPASSKEY_MARKER)
    if index < 0:
        raise SshSetupError(
            f"Error in authentication with etserver: {text}, please make sure "
            "you don't print anything in server's .bashrc/.zshrc"
        )
    start = index + len(IDPASSKEY_MARKER)
    return _split_pair(text[start : start + ID_LENGTH + 1 + PASSKEY_LENGTH])


def parse_jump_output(text: str) -> tuple[str, str]:
    """Parse the answer of the jump host daemon; return (id, passkey)."""
    parts = text.split(":")
    if len(parts) < 2:
        raise SshSetupError(f"Invalid jumphost response: {text!r}")
    pair = parts[1].rstrip(" \n\r\t")[: ID_LENGTH + 1 + PASSKEY_LENGTH]
    return _split_pair(pair)


def _run_interactive(args: Sequence[str]) -> str:
    """Run a command with the terminal as stdin and return its stdout."""
    try:
        result = subprocess.run(
            list(args), stdout=subprocess.PIPE, text=True, check=False
        )
    except FileNotFoundError:
        return ""
    return result.stdout or ""


def setup_ssh(
    user: str,
    host: str,
    host_alias: str,
    port: int,
    jumphost: str,
    jport: int,
    kill: bool,
    vlevel: int,
    cmd_prefix: str,
    server_fifo: str,
    runner: Optional[Runner] = None,
) -> str:
    """Start the remote daemon over ssh and return ``id/passkey``."""
    run = runner if runner is not None else _run_interactive
    client_term = os.environ.get("TERM") or DEFAULT_TERM
    passkey = gen_random_alphanum(PASSKEY_LENGTH)
    # Old servers that do not make their own keys accept ours; the XXX prefix
    # tells new servers to generate a fresh pair.
    client_id = "XXX" + gen_random_alphanum(ID_LENGTH)[3:]

    options = f"--verbose={vlevel}"
    if server_fifo:
        options += f" --serverfifo={server_fifo}"
    script = gen_command(passkey, client_id, client_term, user, kill, cmd_prefix, options)

    user_prefix = f"{user}@" if user else ""
    if jumphost:
        args = ["ssh", "-J", user_prefix + jumphost, user_prefix + host_alias, script]
    else:
        args = ["ssh", user_prefix + host_alias, script]
    output = run(args)
    if not output:
        raise SshSetupError(
            "Error starting ET process through ssh, please make sure your ssh "
            "works first"
        )
    client_id, passkey = parse_idpasskey_output(output)

    if jumphost:
        jump_options = (
            f"--verbose={vlevel} --jump --dsthost={host} --dstport={port}"
        )
        jump_script = gen_command(
            passkey, client_id, client_term, user, kill, cmd_prefix, jump_options
        )
        jump_output = run(["ssh", jumphost, jump_script])
        if not jump_output:
            raise SshSetupError("etserver jumpclient failed to start")
        client_id, passkey = parse_jump_output(jump_output)

    if not client_id or not passkey:
        raise SshSetupError(
            f"Somehow missing id or passkey: {len(client_id)} {len(passkey)}"
        )
    return f"{client_id}/{passkey}"