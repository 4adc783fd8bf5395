import itertools
import json
import os
import shutil
import socket
import tempfile

import pytest

from etshell.codec import encode, encoded_length
from etshell.codes import HtmHeader
from etshell.htm_server import HtmServer, pipe_name
from etshell.ipc import FrameChannel
from etshell.multiplexer import UUID_LENGTH, MultiplexerState, StateError
from etshell.terminal_handler import ScrollbackBuffer

PANE = f"{2:036d}"


class FakeTerminal:
    def __init__(self):
        self.buffer = ScrollbackBuffer()
        self.output = []
        self.received = []
        self.sizes = []
        self.running = False

    @property
    def is_running(self):
        return self.running

    def start(self):
        self.running = True

    def poll(self, timeout):
        if self.output:
            chunk = self.output.pop(0)
            self.buffer.append(chunk)
            return chunk
        return b""

    def append_data(self, data):
        self.received.append(data)

    def update_terminal_size(self, cols, rows):
        self.sizes.append((cols, rows))

    def stop(self):
        self.running = False


@pytest.fixture
def terminals():
    return []


@pytest.fixture
def state(terminals):
    counter = itertools.count(1)

    def factory():
        terminal = FakeTerminal()
        terminals.append(terminal)
        return terminal

    return MultiplexerState(
        terminal_factory=factory,
        id_factory=lambda: f"{next(counter):036d}",
        shell="/bin/sh",
        poll_timeout=0,
    )


@pytest.fixture
def sock_path():
    directory = tempfile.mkdtemp(prefix="et")
    yield os.path.join(directory, "s")
    shutil.rmtree(directory, ignore_errors=True)


@pytest.fixture
def server(sock_path, state):
    srv = HtmServer(
        sock_path, state=state, accept_interval=0, settle_delay=0, select_timeout=0.01
    )
    yield srv
    srv.close()


@pytest.fixture
def client(server):
    a, b = socket.socketpair()
    server.channel = FrameChannel(a)
    yield FrameChannel(b)
    b.close()


def send(channel, header, length, *parts):
    channel.write_raw(bytes([header]))
    channel.write_length(length)
    for part in parts:
        channel.write_raw(part)


def read_debug(channel):
    assert channel.read_exact(1) == bytes([HtmHeader.DEBUG_LOG])
    return channel.read_b64_encoded(channel.read_length())


def test_insert_keys(server, client, terminals):
    data = b"ls\n"
    send(
        client,
        HtmHeader.INSERT_KEYS,
        UUID_LENGTH + encoded_length(len(data)),
        PANE.encode(),
        encode(data).encode(),
    )
    server.handle_message()
    assert terminals[0].received == [data]
    # The message must have been consumed exactly, so the next one parses.
    send(client, HtmHeader.INSERT_DEBUG_KEYS, 1, b"x")
    server.handle_message()
    assert server.running is False


def test_new_tab(server, client, state):
    tab_id, pane_id = "a" * 36, "b" * 36
    send(client, HtmHeader.NEW_TAB, 72, tab_id.encode(), pane_id.encode())
    server.handle_message()
    assert state.num_panes() == 2
    tab = state.to_json()["tabs"][tab_id]
    assert tab["order"] == 1
    assert tab["paneOrSplit"] == pane_id


def test_new_split(server, client, state):
    new_pane = "c" * 36
    send(client, HtmHeader.NEW_SPLIT, 73, PANE.encode(), new_pane.encode(), b"1")
    server.handle_message()
    splits = list(state.to_json()["splits"].values())
    assert len(splits) == 1
    assert splits[0]["vertical"] is True
    assert splits[0]["panesOrSplits"] == [PANE, new_pane]


def test_resize_pane(server, client, state, terminals):
    send(client, HtmHeader.RESIZE_PANE, 0)
    client.write_length(80)
    client.write_length(24)
    client.write_raw(PANE.encode())
    server.handle_message()
    assert terminals[0].sizes == [(80, 24)]
    # The message must have been consumed exactly, so the next one parses.
    send(client, HtmHeader.CLIENT_CLOSE_PANE, UUID_LENGTH, PANE.encode())
    server.handle_message()
    assert state.num_panes() == 0
    assert server.running is False


def test_close_last_pane_stops_server(server, client, state):
    send(client, HtmHeader.CLIENT_CLOSE_PANE, UUID_LENGTH, PANE.encode())
    server.handle_message()
    assert state.num_panes() == 0
    assert server.running is False


def test_debug_x_stops_server(server, client):
    send(client, HtmHeader.INSERT_DEBUG_KEYS, 1, b"x")
    server.handle_message()
    assert server.running is False


def test_debug_escape_disconnects(server, client):
    send(client, HtmHeader.INSERT_DEBUG_KEYS, 1, b"\x1b")
    server.handle_message()
    assert server.channel is None
    assert server.running is True
    assert client.read_exact(1) == bytes([HtmHeader.SESSION_END])


def test_debug_d_logs_state(server, client, caplog):
    caplog.set_level("INFO")
    send(client, HtmHeader.INSERT_DEBUG_KEYS, 1, b"d")
    server.handle_message()
    assert "Current State:" in caplog.text
    assert PANE in caplog.text


def test_unknown_header(server, client):
    send(client, ord("Z"), 0)
    with pytest.raises(StateError):
        server.handle_message()


def test_send_debug(server, client):
    server.send_debug("hello")
    assert client.read_exact(1) == bytes([HtmHeader.DEBUG_LOG])
    length = client.read_length()
    assert length == encoded_length(5)
    assert client.read_b64_encoded(length) == b"hello"


def test_recover_on_accept(server, sock_path, state, terminals):
    terminals[0].buffer.append(b"prompt$ ")
    sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    sock.connect(sock_path)
    peer = FrameChannel(sock)
    try:
        assert server.poll_accept() is True
        assert peer.read_exact(6) == b"\x1b[###q"
        assert read_debug(peer) == b"Initializing HTM, please wait...\n\r"

        assert peer.read_exact(1) == bytes([HtmHeader.INIT_STATE])
        length = peer.read_length()
        assert json.loads(peer.read_exact(length)) == state.to_json()

        assert peer.read_exact(1) == bytes([HtmHeader.APPEND_TO_PANE])
        length = peer.read_length()
        assert peer.read_exact(UUID_LENGTH).decode() == PANE
        assert peer.read_b64_encoded(length - UUID_LENGTH) == b"prompt$ "

        assert read_debug(peer).startswith(b"HTM initialized.")
    finally:
        sock.close()


def test_run_forwards_output_then_ends_session(server, client, terminals):
    terminals[0].output.append(b"hi")
    send(client, HtmHeader.INSERT_DEBUG_KEYS, 1, b"x")
    server.run()
    assert server.channel is None
    assert client.read_exact(1) == bytes([HtmHeader.APPEND_TO_PANE])
    assert client.read_length() == UUID_LENGTH + encoded_length(2)
    assert client.read_exact(UUID_LENGTH).decode() == PANE
    assert client.read_b64_encoded(encoded_length(2)) == b"hi"
    assert client.read_exact(1) == bytes([HtmHeader.SESSION_END])


def test_pipe_name():
    name = pipe_name()
    assert os.path.dirname(name) == tempfile.gettempdir()
    assert os.path.basename(name) == f"htm.{os.getuid()}.ipc"