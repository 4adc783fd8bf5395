"""Parsing of command-line and handshake values for the terminal client and daemon."""

from __future__ import annotations

import os
import re
import tempfile
from dataclasses import dataclass

from .ssh_setup import ID_LENGTH, PASSKEY_LENGTH, gen_random_alphanum

_LEADING_INT = re.compile(r"\s*([+-]?\d+)")
_TRAILING_SPACE = " \n\r\t"
REGENERATE_PREFIX = "XXX"


class ArgumentError(ValueError):
    """Raised for a malformed destination, id/passkey pair or handshake."""


@dataclass(frozen=True)
class Destination:
    """Where to connect: user name, host and port."""

    user: str
    host: str
    port: int


def _to_int(text: str) -> int:
    match = _LEADING_INT.match(text)
    if match is None:
        raise ArgumentError(f"Invalid port number: {text!r}")
    return int(match.group(1))


def parse_destination(arg: str, default_user: str = "", default_port: int = 2022) -> Destination:
    """Parse ``[user@]host[:port]``, falling back to the given user and port."""
    user = default_user
    port = default_port
    rest = arg
    if "@" in rest:
        user, rest = rest.split("@", 1)
    if ":" in rest:
        rest, port_text = rest.split(":", 1)
        port = _to_int(port_text)
    return Destination(user=user, host=rest, port=port)


def split_idpasskey(text: str) -> tuple[str, str]:
    """Split ``id/passkey`` after trimming trailing whitespace.

    The passkey must be exactly 32 characters long.
    """
    pair = text.rstrip(_TRAILING_SPACE)
    if "/" not in pair:
        raise ArgumentError(f"Invalid idPasskey id/key pair: {pair}")
    client_id, passkey = pair.split("/", 1)
    if len(passkey) != PASSKEY_LENGTH:
        raise ArgumentError(f"Invalid/missing passkey: {passkey} {len(passkey)}")
    return client_id, passkey


def parse_stdin_handshake(line: str) -> tuple[str, str]:
    """Parse the ``id/passkey_TERM`` line a client feeds on stdin.

    Returns ``(idpasskey, term)``. An id starting with ``XXX`` comes from a
    client that expects the server to make its own keys, so a fresh random
    id/passkey pair is returned in its place.
    """
    tokens = line.rstrip("\r\n").split("_")
    if len(tokens) != 2:
        raise ArgumentError(f"Invalid number of tokens: {len(tokens)}")
    idpasskey, term = tokens
    if idpasskey.startswith(REGENERATE_PREFIX):
        idpasskey = (
            f"{gen_random_alphanum(ID_LENGTH)}/{gen_random_alphanum(PASSKEY_LENGTH)}"
        )
    return idpasskey, term


def proxy_jump_host(proxy_jump: str) -> str:
    """Return the jump host named by an ssh ``ProxyJump`` setting.

    With a port (``user@host:port``) only the host after ``@`` is kept, and
    nothing is returned when there is no ``@``; without a port the value is
    used as it is.
    """
    if ":" in proxy_jump:
        user_host = proxy_jump.split(":", 1)[0]
        if "@" in user_host:
            return user_host.split("@", 1)[1]
        return ""
    return proxy_jump


def daemon_log_name(idpasskey: str, daemon_type: str) -> str:
    """Return the log path for a daemon serving the given id/passkey."""
    return os.path.join(
        tempfile.gettempdir(), f"etterminal_{daemon_type}_{idpasskey[:10]}"
    )