"""The multiplexer daemon: owns the terminals and serves one client."""

from __future__ import annotations

import argparse
import json
import logging
import os
import select
import tempfile
import time
from logging.handlers import RotatingFileHandler
from typing import Callable, Optional, Sequence, Union

from .codec import encoded_length
from .codes import HtmHeader
from .ipc import FrameChannel, IpcServer
from .multiplexer import UUID_LENGTH, MultiplexerState, StateError

log = logging.getLogger(__name__)

MAX_LOG_BYTES = 20971520
ENTER_HTM_MODE = b"\x1b[###q"
ESCAPE = 27


def pipe_name() -> str:
    """Return the path of the per-user IPC socket."""
    return os.path.join(tempfile.gettempdir(), f"htm.{os.getuid()}.ipc")


def _configure_file_logging(path: str) -> None:
    handler = RotatingFileHandler(path, maxBytes=MAX_LOG_BYTES, backupCount=1)
    handler.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
    )
    root = logging.getLogger()
    root.addHandler(handler)
    root.setLevel(logging.DEBUG)


class HtmServer(IpcServer):
    """Reads client commands, applies them to the layout and streams output."""

    def __init__(
        self,
        path: str,
        state: Optional[MultiplexerState] = None,
        accept_interval: float = 1.0,
        settle_delay: float = 0.01,
        select_timeout: float = 0.01,
    ) -> None:
        super().__init__(path)
        self.state = state if state is not None else MultiplexerState()
        self.running = True
        self.accept_interval = accept_interval
        self.settle_delay = settle_delay
        self.select_timeout = select_timeout
        self._handlers: dict[HtmHeader, Callable[[FrameChannel, int], None]] = {
            HtmHeader.INSERT_KEYS: self._insert_keys,
            HtmHeader.INSERT_DEBUG_KEYS: self._insert_debug_keys,
            HtmHeader.NEW_TAB: self._new_tab,
            HtmHeader.NEW_SPLIT: self._new_split,
            HtmHeader.RESIZE_PANE: self._resize_pane,
            HtmHeader.CLIENT_CLOSE_PANE: self._close_pane,
        }

    def _require_channel(self) -> FrameChannel:
        if self.channel is None:
            raise ConnectionError("no client connected")
        return self.channel

    def run(self) -> None:
        """Serve until a client asks to shut down or the last pane closes."""
        while self.running:
            if self.channel is None:
                time.sleep(self.accept_interval)
                try:
                    self.poll_accept()
                except (OSError, ValueError) as exc:
                    log.error("Client setup failed: %s", exc)
                    self.close_endpoint()
                continue
            try:
                ready, _, _ = select.select(
                    [self.channel.sock], [], [], self.select_timeout
                )
                if ready:
                    self.handle_message()
                if self.channel is not None:
                    self.state.update(self.channel)
            except (OSError, ValueError) as exc:
                log.error("%s", exc)
                self.close_endpoint()
        self.close_endpoint()

    @staticmethod
    def _read_id(channel: FrameChannel) -> str:
        return channel.read_exact(UUID_LENGTH).decode("ascii")

    def handle_message(self) -> None:
        """Read one message from the client and apply it."""
        channel = self._require_channel()
        raw = channel.read_exact(1)[0]
        length = channel.read_length()
        log.debug("Got message header %d with length %d", raw, length)
        try:
            header = HtmHeader(raw)
            handler = self._handlers[header]
        except (ValueError, KeyError):
            raise StateError(f"Got unknown packet header: {raw}") from None
        handler(channel, length)

    def _insert_keys(self, channel: FrameChannel, length: int) -> None:
        pane_id = self._read_id(channel)
        data = channel.read_b64_encoded(length - UUID_LENGTH)
        self.state.append_data(pane_id, data)

    def _insert_debug_keys(self, channel: FrameChannel, length: int) -> None:
        data = channel.read_exact(length)
        if not data:
            return
        first = data[0]
        if first == ord("x"):
            self.running = False
        if first == ESCAPE:
            self.close_endpoint()
        if first == ord("d"):
            log.info("Current State: %s", self._state_json())

    def _new_tab(self, channel: FrameChannel, length: int) -> None:
        tab_id = self._read_id(channel)
        pane_id = self._read_id(channel)
        self.state.new_tab(tab_id, pane_id)

    def _new_split(self, channel: FrameChannel, length: int) -> None:
        source_id = self._read_id(channel)
        pane_id = self._read_id(channel)
        vertical = channel.read_exact(1) == b"1"
        self.state.new_split(source_id, pane_id, vertical)

    def _resize_pane(self, channel: FrameChannel, length: int) -> None:
        cols = channel.read_length()
        rows = channel.read_length()
        pane_id = self._read_id(channel)
        self.state.resize_pane(pane_id, cols, rows)

    def _close_pane(self, channel: FrameChannel, length: int) -> None:
        pane_id = self._read_id(channel)
        log.info("Closing pane: %s", pane_id)
        self.state.close_pane(pane_id)
        if self.state.num_panes() == 0:
            self.running = False

    def _state_json(self) -> str:
        return json.dumps(
            self.state.to_json(),
            separators=(",", ":"),
            sort_keys=True,
            ensure_ascii=False,
        )

    def send_debug(self, message: Union[str, bytes]) -> None:
        """Send a line of text for the client to show in its debug pane."""
        channel = self._require_channel()
        data = message.encode("utf-8") if isinstance(message, str) else bytes(message)
        log.info("Sending debug log: %r", data)
        channel.write_raw(bytes([HtmHeader.DEBUG_LOG]))
        channel.write_length(encoded_length(len(data)))
        channel.write_b64(data)

    def recover(self) -> None:
        """Bring a newly connected client up to date with the full state."""
        channel = self._require_channel()
        channel.write_raw(ENTER_HTM_MODE)
        time.sleep(self.settle_delay)

        self.send_debug("Initializing HTM, please wait...\n\r")

        payload = self._state_json().encode("utf-8")
        channel.write_raw(bytes([HtmHeader.INIT_STATE]))
        channel.write_length(len(payload))
        channel.write_raw(payload)

        self.state.send_terminal_buffers(channel)

        self.send_debug(
            "HTM initialized.\n\rPress escape in this terminal to "
            "disconnect.\n\rPress x in this terminal to shut down HTM\n\r"
        )


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the multiplexer daemon on the per-user socket."""
    parser = argparse.ArgumentParser(
        prog="htmd", description="Headless terminal multiplexer daemon"
    )
    parser.parse_args(argv)
    _configure_file_logging(os.path.join(tempfile.gettempdir(), "htmd.log"))

    server = HtmServer(pipe_name())
    try:
        server.run()
    finally:
        server.close()
    log.info("Server is shutting down")
    return 0