import os
import tempfile

import pytest

from etshell.client_args import (
    ArgumentError,
    Destination,
    daemon_log_name,
    parse_destination,
    parse_stdin_handshake,
    proxy_jump_host,
    split_idpasskey,
)

PASSKEY = "12345678901234567890123456789012"
CLIENT_ID = "1234567890123456"


def test_destination_host_only_uses_defaults():
    assert parse_destination("remote", "alice", 2022) == Destination("alice", "remote", 2022)


def test_destination_with_user_and_port():
    result = parse_destination("bob@remote:2200", "alice", 2022)
    assert result == Destination("bob", "remote", 2200)


def test_destination_splits_at_first_at_sign():
    result = parse_destination("a@b@c", "", 2022)
    assert result.user == "a"
    assert result.host == "b@c"


def test_destination_bad_port():
    with pytest.raises(ArgumentError):
        parse_destination("remote:abc", "", 2022)


def test_split_idpasskey_trims_whitespace():
    assert split_idpasskey(f"{CLIENT_ID}/{PASSKEY}\n \t") == (CLIENT_ID, PASSKEY)


def test_split_idpasskey_missing_slash():
    with pytest.raises(ArgumentError):
        split_idpasskey(CLIENT_ID + PASSKEY)


def test_split_idpasskey_short_passkey():
    with pytest.raises(ArgumentError):
        split_idpasskey(f"{CLIENT_ID}/{PASSKEY[:-1]}")


def test_handshake_keeps_given_pair():
    pair, term = parse_stdin_handshake(f"{CLIENT_ID}/{PASSKEY}_xterm-256color\n")
    assert pair == f"{CLIENT_ID}/{PASSKEY}"
    assert term == "xterm-256color"


def test_handshake_regenerates_xxx_pair():
    old_id = "XXX" + CLIENT_ID[3:]
    pair, term = parse_stdin_handshake(f"{old_id}/{PASSKEY}_xterm")
    client_id, passkey = split_idpasskey(pair)
    assert term == "xterm"
    assert len(client_id) == 16
    assert len(passkey) == 32
    assert client_id.isalnum() and passkey.isalnum()
    assert pair != f"{old_id}/{PASSKEY}"


@pytest.mark.parametrize("line", ["no-underscore", "a_b_c"])
def test_handshake_wrong_token_count(line):
    with pytest.raises(ArgumentError):
        parse_stdin_handshake(line)


def test_proxy_jump_plain_host():
    assert proxy_jump_host("jumpbox") == "jumpbox"


def test_proxy_jump_with_user_and_port():
    assert proxy_jump_host("carol@jumpbox:22") == "jumpbox"


def test_proxy_jump_with_port_but_no_user():
    assert proxy_jump_host("jumpbox:22") == ""


def test_daemon_log_name_uses_first_ten_chars():
    name = daemon_log_name(f"{CLIENT_ID}/{PASSKEY}", "terminal")
    assert os.path.dirname(name) == tempfile.gettempdir()
    assert os.path.basename(name) == "etterminal_terminal_" + CLIENT_ID[:10]
    assert daemon_log_name(f"{CLIENT_ID}/{PASSKEY}", "jumphost").endswith(
        "etterminal_jumphost_" + CLIENT_ID[:10]
    )