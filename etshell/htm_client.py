"""The multiplexer client: relays between the local terminal and the daemon."""

from __future__ import annotations

import argparse
import logging
import os
import select
import signal
import subprocess
import sys
import tempfile
import termios
import time
import tty
from typing import Optional, Sequence

from .htm_server import _configure_file_logging, pipe_name
from .ipc import IpcClient

log = logging.getLogger(__name__)

BUF_SIZE = 1024
LEAVE_HTM_MODE = b"\x1b[$$$q"


def _write_all(fd: int, data: bytes) -> None:
    view = memoryview(data)
    while view:
        written = os.write(fd, view)
        view = view[written:]


class HtmClient(IpcClient):
    """Copies input to the daemon and the daemon's output to the terminal."""

    def __init__(
        self,
        path: str,
        stdin_fd: int = 0,
        stdout_fd: int = 1,
        retries: int = 5,
        delay: float = 1.0,
    ) -> None:
        super().__init__(path, retries=retries, delay=delay)
        self.stdin_fd = stdin_fd
        self.stdout_fd = stdout_fd

    def run(self) -> None:
        """Relay data until either side closes; that ends with ConnectionError."""
        while True:
            self.pump_once(0.01)

    def pump_once(self, timeout: float = 0.01) -> bool:
        """Relay whatever is ready within ``timeout``; True if anything moved."""
        channel = self.channel
        if channel is None:
            raise ConnectionError("not connected")
        ready, _, _ = select.select([self.stdin_fd, channel.sock], [], [], timeout)
        moved = False
        if self.stdin_fd in ready:
            data = os.read(self.stdin_fd, BUF_SIZE)
            if not data:
                raise ConnectionError("stdin has closed abruptly.")
            channel.write_raw(data)
            moved = True
        if channel.sock in ready:
            data = channel.sock.recv(BUF_SIZE)
            if not data:
                raise ConnectionError("htmd has closed abruptly.")
            _write_all(self.stdout_fd, data)
            moved = True
        return moved


def _daemon_running(uid: str) -> bool:
    try:
        result = subprocess.run(
            ["pgrep", "-x", "-U", uid, "htmd"],
            capture_output=True,
            text=True,
            check=False,
        )
    except FileNotFoundError:
        return False
    return bool(result.stdout)


def _spawn_daemon() -> None:
    try:
        subprocess.Popen(
            ["htmd"],
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=True,
        )
    except OSError as exc:
        log.error("Could not start htmd: %s", exc)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Attach the current terminal to the multiplexer daemon."""
    parser = argparse.ArgumentParser(
        prog="htm", description="Headless terminal multiplexer"
    )
    parser.add_argument(
        "-x",
        "--kill-other-sessions",
        action="store_true",
        help="kill all old sessions belonging to the user",
    )
    args, _ = parser.parse_known_args(argv)

    stdin_fd = sys.stdin.fileno()
    stdout_fd = sys.stdout.fileno()
    saved = termios.tcgetattr(stdin_fd) if os.isatty(stdin_fd) else None

    def restore() -> None:
        _write_all(stdout_fd, LEAVE_HTM_MODE)
        if saved is not None:
            termios.tcsetattr(stdin_fd, termios.TCSANOW, saved)

    if saved is not None:
        tty.setraw(stdin_fd, termios.TCSANOW)

    def on_term(signum: int, frame: object) -> None:
        restore()
        os._exit(1)

    signal.signal(signal.SIGTERM, on_term)
    _configure_file_logging(os.path.join(tempfile.gettempdir(), "htm.log"))

    uid = str(os.getuid())
    if args.kill_other_sessions:
        log.info("Killing previous htmd")
        try:
            subprocess.run(["pkill", "-x", "-U", uid, "htmd"], check=False)
        except FileNotFoundError:
            log.error("pkill is not available")

    if not _daemon_running(uid):
        _spawn_daemon()

    time.sleep(0.01)
    try:
        try:
            client = HtmClient(pipe_name(), stdin_fd=stdin_fd, stdout_fd=stdout_fd)
        except ConnectionError as exc:
            log.error("%s", exc)
            return 1
        try:
            client.run()
        except ConnectionError as exc:
            log.info("%s", exc)
        finally:
            client.close_endpoint()
    finally:
        restore()
    return 0