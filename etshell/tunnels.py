"""Parsing of port-forward specifications such as ``8080:80,9000-9002:7000-7002``."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

_INT_MIN = -(2**31)
_INT_MAX = 2**31 - 1
_LEADING_INT = re.compile(r"\s*([+-]?\d+)")
_PORT_CHARS = frozenset("0123456789-")


class TunnelError(ValueError):
    """Raised for a malformed tunnel specification."""


@dataclass(frozen=True)
class ForwardEndpoint:
    """Either a named socket path or a numeric port."""

    name: Optional[str] = None
    port: Optional[int] = None


@dataclass(frozen=True)
class PortForwardRequest:
    """A request to forward traffic from ``source`` to ``destination``."""

    source: ForwardEndpoint = ForwardEndpoint()
    destination: ForwardEndpoint = ForwardEndpoint()
    environment_variable: Optional[str] = None


def _to_int(text: str) -> int:
    """Parse a leading integer, ignoring trailing characters."""
    match = _LEADING_INT.match(text)
    if match is None:
        raise TunnelError(f"Invalid port number: {text!r}")
    value = int(match.group(1))
    if not _INT_MIN <= value <= _INT_MAX:
        raise TunnelError(f"Port number out of range: {text!r}")
    return value


def _has_non_port_chars(text: str) -> bool:
    return any(char not in _PORT_CHARS for char in text)


def _range_bounds(text: str) -> tuple[int, int]:
    parts = text.split("-")
    if len(parts) < 2:
        raise TunnelError(f"Invalid port range: {text!r}")
    return _to_int(parts[0]), _to_int(parts[1])


def _parse_pair(pair: str) -> list[PortForwardRequest]:
    parts = pair.split(":")
    if len(parts) < 2:
        raise TunnelError(f"Invalid tunnel, expected source:destination: {pair!r}")
    source, destination = parts[0], parts[1]

    if _has_non_port_chars(source) and _has_non_port_chars(destination):
        return [
            PortForwardRequest(
                source=ForwardEndpoint(name=source),
                destination=ForwardEndpoint(name=destination),
            )
        ]

    if "-" in source and "-" in destination:
        source_start, source_end = _range_bounds(source)
        dest_start, dest_end = _range_bounds(destination)
        if source_end - source_start != dest_end - dest_start:
            raise TunnelError("source/destination port range mismatch")
        return [
            PortForwardRequest(
                source=ForwardEndpoint(port=source_start + offset),
                destination=ForwardEndpoint(port=dest_start + offset),
            )
            for offset in range(source_end - source_start + 1)
        ]

    if "-" in source or "-" in destination:
        raise TunnelError(
            "Invalid port range syntax: if source is range, destination must be range"
        )

    return [
        PortForwardRequest(
            source=ForwardEndpoint(port=_to_int(source)),
            destination=ForwardEndpoint(port=_to_int(destination)),
        )
    ]


def parse_ranges_to_requests(text: str) -> list[PortForwardRequest]:
    """Parse a comma separated list of ``source:destination`` forwards.

    Each side is a port, an inclusive ``start-end`` port range, or (when both
    sides are not numeric) a socket name.
    """
    requests: list[PortForwardRequest] = []
    for pair in text.split(","):
        requests.extend(_parse_pair(pair))
    return requests