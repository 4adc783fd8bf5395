"""The user's shell on the server side, running on a pseudo-terminal."""

from __future__ import annotations

import abc
import fcntl
import os
import pty
import pwd
import signal
import struct
import termios
from typing import Optional, Sequence

from .terminal_handler import VERSION


class UserTerminal(abc.ABC):
    """A terminal that a session's keystrokes go to and output comes from."""

    @abc.abstractmethod
    def setup(self, router_fd: int) -> int:
        """Start the terminal and return its file descriptor."""

    @abc.abstractmethod
    def run_terminal(self) -> None:
        """Run the program inside the terminal; does not return on success."""

    @abc.abstractmethod
    def handle_session_end(self) -> int:
        """Wait for the terminal program to finish; return its exit code."""

    @abc.abstractmethod
    def cleanup(self) -> None:
        """Release what the terminal holds."""

    @abc.abstractmethod
    def fileno(self) -> int:
        """Return the descriptor used to talk to the terminal."""

    @abc.abstractmethod
    def set_info(self, rows: int, cols: int, xpixel: int = 0, ypixel: int = 0) -> None:
        """Set the terminal window size."""


class PseudoUserTerminal(UserTerminal):
    """Forks a login shell (or a given command) onto a new pseudo-terminal."""

    def __init__(
        self, command: Optional[Sequence[str]] = None, home: Optional[str] = None
    ) -> None:
        self.command = list(command) if command else None
        self.home = home
        self._pid: Optional[int] = None
        self._fd: Optional[int] = None

    @property
    def pid(self) -> Optional[int]:
        return self._pid

    def setup(self, router_fd: int) -> int:
        pid, fd = pty.fork()
        if pid == 0:
            try:
                if router_fd >= 0:
                    os.close(router_fd)
                self.run_terminal()
            except BaseException:
                os._exit(1)
            os._exit(0)
        self._pid = pid
        self._fd = fd
        return fd

    def run_terminal(self) -> None:
        home = self.home if self.home is not None else pwd.getpwuid(os.getuid()).pw_dir
        try:
            os.chdir(home)
        except OSError:
            pass
        command = self.command or [os.environ.get("SHELL") or "/bin/sh", "--login"]
        os.environ["ET_VERSION"] = VERSION
        # Programs started from the shell expect the default SIGCHLD handling.
        signal.signal(signal.SIGCHLD, signal.SIG_DFL)
        os.execvp(command[0], command)

    def handle_session_end(self) -> int:
        if self._pid is None:
            raise RuntimeError("terminal was never started")
        _, status = os.waitpid(self._pid, 0)
        return os.waitstatus_to_exitcode(status)

    def cleanup(self) -> None:
        if self._fd is not None:
            try:
                os.close(self._fd)
            except OSError:
                pass
            self._fd = None

    def fileno(self) -> int:
        if self._fd is None:
            raise RuntimeError("terminal is not open")
        return self._fd

    def set_info(self, rows: int, cols: int, xpixel: int = 0, ypixel: int = 0) -> None:
        fcntl.ioctl(
            self.fileno(),
            termios.TIOCSWINSZ,
            struct.pack("HHHH", rows, cols, xpixel, ypixel),
        )