import os
import shutil
import socket
import tempfile

import pytest

from etshell.htm_client import HtmClient


@pytest.fixture
def sock_path():
    directory = tempfile.mkdtemp(prefix="et")
    yield os.path.join(directory, "s")
    shutil.rmtree(directory, ignore_errors=True)


@pytest.fixture
def setup(sock_path):
    listener = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    listener.bind(sock_path)
    listener.listen()
    stdin_r, stdin_w = os.pipe()
    stdout_r, stdout_w = os.pipe()
    client = HtmClient(
        sock_path, stdin_fd=stdin_r, stdout_fd=stdout_w, retries=1, delay=0
    )
    conn, _ = listener.accept()
    fds = {"stdin_w": stdin_w, "stdout_r": stdout_r}
    yield client, conn, fds
    conn.close()
    listener.close()
    if client.channel is not None:
        client.channel.close()
    for fd in (stdin_r, stdin_w, stdout_r, stdout_w):
        try:
            os.close(fd)
        except OSError:
            pass


def test_nothing_ready(setup):
    client, _, _ = setup
    assert client.pump_once(0) is False


def test_stdin_goes_to_daemon(setup):
    client, conn, fds = setup
    os.write(fds["stdin_w"], b"abc")
    assert client.pump_once(0.5) is True
    assert conn.recv(16) == b"abc"


def test_daemon_goes_to_stdout(setup):
    client, conn, fds = setup
    conn.sendall(b"xyz")
    assert client.pump_once(0.5) is True
    assert os.read(fds["stdout_r"], 16) == b"xyz"


def test_stdin_closed(setup):
    client, _, fds = setup
    os.close(fds["stdin_w"])
    with pytest.raises(ConnectionError, match="stdin"):
        client.pump_once(0.5)


def test_daemon_closed(setup):
    client, conn, _ = setup
    conn.close()
    with pytest.raises(ConnectionError, match="htmd"):
        client.pump_once(0.5)


def test_run_ends_when_daemon_closes(setup):
    client, conn, fds = setup
    conn.sendall(b"bye")
    conn.close()
    with pytest.raises(ConnectionError):
        client.run()
    assert os.read(fds["stdout_r"], 16) == b"bye"


def test_connect_fails_without_daemon(sock_path):
    with pytest.raises(ConnectionError):
        HtmClient(sock_path, retries=1, delay=0)