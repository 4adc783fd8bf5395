"""A shell running on a pseudo-terminal, with a bounded scrollback buffer."""

from __future__ import annotations

import fcntl
import os
import pty
import pwd
import select
import signal
import struct
import termios
from collections import deque
from typing import Iterator, Optional, Sequence

MAX_BUFFER_LINES = 1024
MAX_BUFFER_CHARS = 128 * MAX_BUFFER_LINES
READ_SIZE = 16 * 1024
VERSION = "0.1.0"


class ScrollbackBuffer:
    """Lines of terminal output, trimmed to a maximum line and byte count."""

    def __init__(
        self, max_lines: int = MAX_BUFFER_LINES, max_chars: int = MAX_BUFFER_CHARS
    ) -> None:
        self.max_lines = max_lines
        self.max_chars = max_chars
        self._lines: deque[bytes] = deque()
        self._chars = 0

    @property
    def lines(self) -> tuple[bytes, ...]:
        return tuple(self._lines)

    @property
    def char_count(self) -> int:
        """Bytes held, not counting line breaks."""
        return self._chars

    def append(self, chunk: bytes) -> None:
        """Add output; a chunk continues the last line until its first newline."""
        if not chunk:
            return
        tokens = bytes(chunk).split(b"\n")
        self._chars += sum(len(token) for token in tokens)
        if self._lines:
            self._lines[-1] += tokens[0]
            tokens = tokens[1:]
        self._lines.extend(tokens)
        while len(self._lines) > self.max_lines:
            self._chars -= len(self._lines.popleft())
        while self._chars > self.max_chars and self._lines:
            self._chars -= len(self._lines.popleft())

    def text(self) -> bytes:
        """Return the buffered lines joined by newlines."""
        return b"\n".join(self._lines)

    def __len__(self) -> int:
        return len(self._lines)

    def __iter__(self) -> Iterator[bytes]:
        return iter(self._lines)


def _default_command() -> list[str]:
    return [os.environ.get("SHELL") or "/bin/sh", "--login"]


class TerminalHandler:
    """Runs a command (a login shell by default) on its own pseudo-terminal."""

    def __init__(
        self, command: Optional[Sequence[str]] = None, home: Optional[str] = None
    ) -> None:
        self.command = list(command) if command else _default_command()
        self.home = home
        self.buffer = ScrollbackBuffer()
        self._fd: Optional[int] = None
        self._pid: Optional[int] = None
        self._reaped = False
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def pid(self) -> Optional[int]:
        return self._pid

    def fileno(self) -> int:
        if self._fd is None:
            raise RuntimeError("terminal is not open")
        return self._fd

    def start(self) -> None:
        """Fork the child process onto a new pseudo-terminal."""
        if self._pid is not None:
            raise RuntimeError("terminal already started")
        pid, fd = pty.fork()
        if pid == 0:
            self._exec_child()
        self._pid = pid
        self._fd = fd
        self._running = True

    def _exec_child(self) -> None:
        try:
            home = self.home
            if home is None:
                home = pwd.getpwuid(os.getuid()).pw_dir
            try:
                os.chdir(home)
            except OSError:
                pass
            os.environ["HTM_VERSION"] = VERSION
            os.execvp(self.command[0], self.command)
        finally:
            os._exit(0)

    def poll(self, timeout: float = 0.01) -> bytes:
        """Wait up to ``timeout`` seconds for output and return what was read."""
        if not self._running or self._fd is None:
            return b""
        try:
            ready, _, _ = select.select([self._fd], [], [], timeout)
            if not ready:
                return b""
            chunk = os.read(self._fd, READ_SIZE)
        except OSError:
            self._finish(block=False)
            return b""
        if not chunk:
            self._finish(block=True)
            return b""
        self.buffer.append(chunk)
        return chunk

    def _reap(self, block: bool) -> None:
        if self._pid is None or self._reaped:
            return
        try:
            pid, _ = os.waitpid(self._pid, 0 if block else os.WNOHANG)
        except ChildProcessError:
            self._reaped = True
            return
        if pid != 0:
            self._reaped = True

    def _close_fd(self) -> None:
        if self._fd is not None:
            try:
                os.close(self._fd)
            except OSError:
                pass
            self._fd = None

    def _finish(self, block: bool) -> None:
        self._running = False
        self._reap(block)
        self._close_fd()

    def append_data(self, data: bytes) -> None:
        """Write keystrokes to the terminal."""
        if self._fd is None:
            raise RuntimeError("terminal is not open")
        view = memoryview(bytes(data))
        while view:
            written = os.write(self._fd, view)
            view = view[written:]

    def update_terminal_size(self, cols: int, rows: int) -> None:
        """Set the window size of the pseudo-terminal."""
        if self._fd is None:
            raise RuntimeError("terminal is not open")
        fcntl.ioctl(self._fd, termios.TIOCSWINSZ, struct.pack("HHHH", rows, cols, 0, 0))

    def stop(self) -> None:
        """Kill the child process and release the terminal."""
        if self._pid is not None and not self._reaped:
            try:
                os.kill(self._pid, signal.SIGKILL)
            except ProcessLookupError:
                pass
            self._reap(block=True)
        self._running = False
        self._close_fd()