"""The local console that a terminal client reads keys from and writes to."""

from __future__ import annotations

import abc
import fcntl
import os
import struct
import termios
import tty
from dataclasses import dataclass
from typing import Optional

_WINSIZE = struct.Struct("HHHH")


@dataclass(frozen=True)
class TerminalInfo:
    """Window size in character cells and pixels."""

    row: int = 0
    column: int = 0
    width: int = 0
    height: int = 0


class Console(abc.ABC):
    """A terminal-like device with a size, a raw mode and a file descriptor."""

    @abc.abstractmethod
    def get_terminal_info(self) -> TerminalInfo:
        """Return the current window size."""

    @abc.abstractmethod
    def setup(self) -> None:
        """Put the console into the mode used during a session."""

    @abc.abstractmethod
    def teardown(self) -> None:
        """Restore the console to how it was before :meth:`setup`."""

    @abc.abstractmethod
    def fileno(self) -> int:
        """Return the descriptor that input is read from."""

    def write(self, data: bytes) -> None:
        """Write all of ``data`` to the console."""
        view = memoryview(bytes(data))
        fd = self.fileno()
        while view:
            written = os.write(fd, view)
            view = view[written:]


class PseudoTerminalConsole(Console):
    """The controlling terminal, switched to raw mode for the session."""

    def __init__(self, input_fd: int = 0, output_fd: int = 1) -> None:
        self.input_fd = input_fd
        self.output_fd = output_fd
        self._saved: Optional[list] = (
            termios.tcgetattr(input_fd) if os.isatty(input_fd) else None
        )

    def setup(self) -> None:
        self._saved = termios.tcgetattr(self.input_fd)
        tty.setraw(self.input_fd, termios.TCSANOW)

    def teardown(self) -> None:
        if self._saved is not None:
            termios.tcsetattr(self.input_fd, termios.TCSANOW, self._saved)

    def get_terminal_info(self) -> TerminalInfo:
        raw = fcntl.ioctl(self.output_fd, termios.TIOCGWINSZ, bytes(_WINSIZE.size))
        rows, cols, xpixel, ypixel = _WINSIZE.unpack(raw)
        return TerminalInfo(row=rows, column=cols, width=xpixel, height=ypixel)

    def fileno(self) -> int:
        return self.input_fd