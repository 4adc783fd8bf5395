"""Tabs, split layouts and panes of the headless terminal multiplexer."""

from __future__ import annotations

import logging
import os
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol

from .codec import encoded_length
from .codes import HtmHeader
from .terminal_handler import ScrollbackBuffer, TerminalHandler

UUID_LENGTH = 36

log = logging.getLogger(__name__)


class StateError(RuntimeError):
    """Raised when the layout is asked for something inconsistent."""


class Terminal(Protocol):
    buffer: ScrollbackBuffer

    @property
    def is_running(self) -> bool: ...

    def start(self) -> None: ...

    def poll(self, timeout: float) -> bytes: ...

    def append_data(self, data: bytes) -> None: ...

    def update_terminal_size(self, cols: int, rows: int) -> None: ...

    def stop(self) -> None: ...


class Channel(Protocol):
    def write_raw(self, data: bytes) -> None: ...

    def write_length(self, length: int) -> None: ...

    def write_b64(self, data: bytes) -> None: ...


@dataclass
class _Pane:
    id: str
    parent_id: str
    terminal: Any

    def to_json(self) -> dict:
        return {"id": self.id}


@dataclass
class _Split:
    id: str
    parent_id: str
    vertical: bool
    children: list[str] = field(default_factory=list)
    sizes: list[float] = field(default_factory=list)

    def to_json(self) -> dict:
        return {
            "id": self.id,
            "vertical": self.vertical,
            "panesOrSplits": list(self.children),
            "sizes": list(self.sizes),
        }

    def replace_child(self, old: str, new: str, message: str) -> None:
        try:
            index = self.children.index(old)
        except ValueError:
            raise StateError(message) from None
        self.children[index] = new


@dataclass
class _Tab:
    id: str
    child_id: str
    order: int

    def to_json(self) -> dict:
        return {"id": self.id, "order": self.order, "paneOrSplit": self.child_id}


def _uuid4() -> str:
    return str(uuid.uuid4())


class MultiplexerState:
    """Layout of tabs, splits and panes, each pane backed by a terminal."""

    def __init__(
        self,
        terminal_factory: Callable[[], Any] = TerminalHandler,
        id_factory: Callable[[], str] = _uuid4,
        shell: Optional[str] = None,
        poll_timeout: float = 0.01,
    ) -> None:
        self._terminal_factory = terminal_factory
        self._new_id = id_factory
        self.shell = shell if shell is not None else os.environ.get("SHELL", "/bin/sh")
        self.poll_timeout = poll_timeout
        self._tabs: dict[str, _Tab] = {}
        self._panes: dict[str, _Pane] = {}
        self._splits: dict[str, _Split] = {}
        self._closed: set[str] = set()

        tab_id = self._new_id()
        pane_id = self._new_id()
        self._tabs[tab_id] = _Tab(id=tab_id, child_id=pane_id, order=0)
        self._panes[pane_id] = _Pane(pane_id, tab_id, self._start_terminal())

    def _start_terminal(self) -> Any:
        terminal = self._terminal_factory()
        terminal.start()
        return terminal

    def _get_tab(self, tab_id: str) -> _Tab:
        try:
            return self._tabs[tab_id]
        except KeyError:
            raise StateError(f"Tried to get a tab that doesn't exist: {tab_id}") from None

    def _get_pane(self, pane_id: str) -> _Pane:
        try:
            return self._panes[pane_id]
        except KeyError:
            raise StateError(f"Tried to get a pane that doesn't exist: {pane_id}") from None

    def _get_split(self, split_id: str) -> _Split:
        try:
            return self._splits[split_id]
        except KeyError:
            raise StateError(
                f"Tried to get a split that doesn't exist: {split_id}"
            ) from None

    def _fail_if_found(self, item_id: str) -> None:
        for kind, table in (
            ("panes", self._panes),
            ("splits", self._splits),
            ("tabs", self._tabs),
        ):
            if item_id in table:
                raise StateError(f"Found unexpected id in {kind}: {item_id}")

    def num_panes(self) -> int:
        return len(self._panes)

    def to_json(self) -> dict:
        """Return the layout as a JSON-ready dictionary."""
        state: dict[str, Any] = {"shell": self.shell}
        for key, table in (
            ("tabs", self._tabs),
            ("panes", self._panes),
            ("splits", self._splits),
        ):
            if table:
                state[key] = {
                    item_id: item.to_json() for item_id, item in sorted(table.items())
                }
        return state

    def append_data(self, pane_id: str, data: bytes) -> None:
        """Send keystrokes to a pane's terminal."""
        if pane_id not in self._panes:
            raise StateError("Tried to write to non-existent terminal")
        self._panes[pane_id].terminal.append_data(data)

    def new_tab(self, tab_id: str, pane_id: str) -> None:
        """Open a tab holding a single new pane."""
        self._fail_if_found(tab_id)
        self._fail_if_found(pane_id)
        self._tabs[tab_id] = _Tab(id=tab_id, child_id=pane_id, order=len(self._tabs))
        self._panes[pane_id] = _Pane(pane_id, tab_id, self._start_terminal())

    def _make_split(self, parent_id: str, vertical: bool, first: str, second: str) -> _Split:
        split = _Split(
            id=self._new_id(),
            parent_id=parent_id,
            vertical=vertical,
            children=[first, second],
            sizes=[0.5, 0.5],
        )
        self._splits[split.id] = split
        return split

    def new_split(self, source_id: str, pane_id: str, vertical: bool) -> None:
        """Split ``source_id`` and place a new pane ``pane_id`` beside it."""
        self._fail_if_found(pane_id)
        source = self._get_pane(source_id)
        new_pane = _Pane(pane_id, "", self._start_terminal())
        self._panes[pane_id] = new_pane

        parent_split = self._splits.get(source.parent_id)
        if parent_split is not None and parent_split.vertical == vertical:
            log.info("Continuing a split")
            parent_split.sizes = [size / 2.0 for size in parent_split.sizes]
            parent_split.sizes.append(0.5)
            parent_split.children.append(pane_id)
            new_pane.parent_id = parent_split.id
            return

        if parent_split is not None:
            log.info("Splitting in a new direction")
            split = self._make_split(parent_split.id, vertical, source_id, pane_id)
            new_pane.parent_id = split.id
            source.parent_id = split.id
            parent_split.replace_child(
                source_id, split.id, "SourcePane missing from parent split"
            )
            return

        log.info("Splitting a root pane")
        tab = self._get_tab(source.parent_id)
        split = self._make_split(tab.id, vertical, source_id, pane_id)
        new_pane.parent_id = split.id
        source.parent_id = split.id
        tab.child_id = split.id

    def close_pane(self, pane_id: str) -> None:
        """Close a pane, stopping its terminal and collapsing the layout."""
        if pane_id in self._closed:
            return
        if pane_id not in self._panes:
            raise StateError("Tried to close a pane that doesn't exist")
        pane = self._panes.pop(pane_id)
        self._closed.add(pane_id)
        pane.terminal.stop()

        if pane.parent_id in self._tabs:
            order = self._get_tab(pane.parent_id).order
            for tab in self._tabs.values():
                if tab.order > order:
                    tab.order -= 1
            owner = next(
                (tab for tab in self._tabs.values() if tab.child_id == pane.id), None
            )
            if owner is None:
                raise StateError("Could not find tab")
            del self._tabs[owner.id]
            return

        split = self._get_split(pane.parent_id)
        try:
            index = split.children.index(pane.id)
        except ValueError:
            raise StateError(
                f"Parent pane {split.id} did not contain child pane {pane.id}"
            ) from None
        del split.children[index]
        del split.sizes[index]

        if len(split.children) > 1:
            new_size = len(split.sizes)
            old_size = new_size + 1
            split.sizes = [size * old_size / float(new_size) for size in split.sizes]
            return

        remaining = self._get_pane(split.children[0])
        remaining.parent_id = split.parent_id
        if remaining.parent_id in self._tabs:
            self._tabs[remaining.parent_id].child_id = remaining.id
        else:
            parent = self._get_split(remaining.parent_id)
            parent.replace_child(split.id, remaining.id, "Could not find parent split")
        del self._splits[split.id]

    def resize_pane(self, pane_id: str, cols: int, rows: int) -> None:
        self._get_pane(pane_id).terminal.update_terminal_size(cols, rows)

    @staticmethod
    def _send_append(channel: Channel, pane_id: str, data: bytes) -> None:
        encoded_id = pane_id.encode("ascii")
        channel.write_raw(bytes([HtmHeader.APPEND_TO_PANE]))
        channel.write_length(encoded_length(len(data)) + len(encoded_id))
        channel.write_raw(encoded_id)
        channel.write_b64(data)

    def update(self, channel: Channel) -> None:
        """Forward new terminal output and report the first terminal that ended."""
        for pane_id, pane in sorted(self._panes.items()):
            terminal = pane.terminal
            data = terminal.poll(self.poll_timeout)
            if data:
                self._send_append(channel, pane_id, data)
            if not terminal.is_running:
                self.close_pane(pane_id)
                encoded_id = pane_id.encode("ascii")
                channel.write_raw(bytes([HtmHeader.SERVER_CLOSE_PANE]))
                channel.write_length(len(encoded_id))
                channel.write_raw(encoded_id)
                break

    def send_terminal_buffers(self, channel: Channel) -> None:
        """Send each pane's scrollback so a new client can redraw it."""
        for pane_id, pane in sorted(self._panes.items()):
            buffer = pane.terminal.buffer
            if len(buffer):
                self._send_append(channel, pane_id, buffer.text())