"""Paired endpoints talking over a Unix domain socket."""

from __future__ import annotations

import logging
import os
import socket
import stat
import struct
import time
from typing import Optional

from .codec import decode, encode, encoded_length
from .codes import HtmHeader

log = logging.getLogger(__name__)

_LENGTH = struct.Struct("<i")


class FrameChannel:
    """A connected socket with helpers for raw, base64 and length fields."""

    def __init__(self, sock: socket.socket) -> None:
        self.sock = sock

    def write_raw(self, data: bytes) -> None:
        """Send all of ``data``."""
        self.sock.sendall(bytes(data))

    def write_b64(self, data: bytes) -> None:
        """Send ``data`` as padded base64 text."""
        self.write_raw(encode(data).encode("ascii"))

    def write_length(self, length: int) -> None:
        """Send a signed 32-bit length as base64 of its little-endian bytes."""
        try:
            packed = _LENGTH.pack(length)
        except struct.error as exc:
            raise ValueError(f"length out of range: {length}") from exc
        self.write_b64(packed)

    def read_exact(self, count: int) -> bytes:
        """Read exactly ``count`` bytes or raise ConnectionError."""
        if count < 0:
            raise ValueError(f"cannot read a negative byte count: {count}")
        data = bytearray()
        while len(data) < count:
            chunk = self.sock.recv(count - len(data))
            if not chunk:
                raise ConnectionError("channel closed while reading")
            data += chunk
        return bytes(data)

    def read_length(self) -> int:
        """Read a length written by :meth:`write_length`."""
        raw = decode(self.read_exact(encoded_length(_LENGTH.size)))
        if len(raw) != _LENGTH.size:
            raise ValueError("malformed length field")
        return _LENGTH.unpack(raw)[0]

    def read_b64_encoded(self, encoded_length: int) -> bytes:
        """Read ``encoded_length`` characters of base64 text and decode them."""
        return decode(self.read_exact(encoded_length))

    def close(self) -> None:
        self.sock.close()


class IpcEndpoint:
    """One side of an IPC pair; holds the channel to the other side."""

    def __init__(self, channel: Optional[FrameChannel] = None) -> None:
        self.channel = channel

    def close_endpoint(self) -> None:
        """Tell the peer the session is over and drop the connection."""
        channel, self.channel = self.channel, None
        if channel is None:
            return
        try:
            channel.write_raw(bytes([HtmHeader.SESSION_END]))
        except OSError as exc:
            log.info("Could not send session end: %s", exc)
        finally:
            channel.close()

    def __enter__(self) -> "IpcEndpoint":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close_endpoint()


class IpcClient(IpcEndpoint):
    """Connects to an IPC server, retrying a few times before giving up."""

    def __init__(self, path: str, retries: int = 5, delay: float = 1.0) -> None:
        super().__init__()
        target = os.fspath(path)
        for _ in range(retries):
            sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
            try:
                sock.connect(target)
            except OSError:
                sock.close()
                time.sleep(delay)
                continue
            self.channel = FrameChannel(sock)
            return
        raise ConnectionError("Connect to IPC failed")


def _remove_stale_socket(path: str) -> None:
    try:
        mode = os.stat(path).st_mode
    except FileNotFoundError:
        return
    if stat.S_ISSOCK(mode):
        os.unlink(path)


class IpcServer(IpcEndpoint):
    """Listens on a Unix socket and serves one client at a time."""

    def __init__(self, path: str) -> None:
        super().__init__()
        self.path = os.fspath(path)
        _remove_stale_socket(self.path)
        self._server = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            self._server.bind(self.path)
            self._server.listen()
            self._server.setblocking(False)
        except OSError:
            self._server.close()
            raise

    def poll_accept(self) -> bool:
        """Accept a waiting client, replacing any current one.

        Returns True when a client was accepted.
        """
        log.info("Listening for a client")
        try:
            conn, _ = self._server.accept()
        except (BlockingIOError, InterruptedError):
            return False
        conn.setblocking(True)
        if self.channel is not None:
            self.close_endpoint()
        self.channel = FrameChannel(conn)
        self.recover()
        return True

    def recover(self) -> None:
        """Hook run after a client connects; the base server sends nothing."""

    def close(self) -> None:
        """Close the client connection and stop listening."""
        self.close_endpoint()
        self._server.close()
        try:
            os.unlink(self.path)
        except FileNotFoundError:
            pass

    def __exit__(self, *exc_info: object) -> None:
        self.close()