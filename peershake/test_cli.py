import json
import socket
import threading

import pytest

import test_data as td
from peershake.cli import main, parse_args, parse_remote, run
from peershake.errors import ConfigError
from peershake.msg import VerackMessage, to_packet
from peershake.network import REGTEST, TESTNET


@pytest.mark.parametrize(
    "remote,expected",
    [
        ("127.0.0.1:18444", ("127.0.0.1", 18444)),
        ("127.0.0.1", ("127.0.0.1", 18444)),
        ("node.example:8333", ("node.example", 8333)),
        ("[::1]:18445", ("::1", 18445)),
        ("[::1]", ("::1", 18444)),
        ("::1", ("::1", 18444)),
    ],
)
def test_parse_remote(remote, expected):
    assert parse_remote(remote, 18444) == expected


@pytest.mark.parametrize("remote", ["127.0.0.1:http", "127.0.0.1:0", ":8333", "[::1", "[::1]x"])
def test_parse_bad_remote(remote):
    with pytest.raises(ConfigError):
        parse_remote(remote, 18444)


def serve_once(listener, network, version_message):
    """A minimal peer: wait for our version, answer with version + verack"""
    conn, _ = listener.accept()
    with conn:
        conn.settimeout(5)
        try:
            conn.recv(4096)
            conn.sendall(to_packet(version_message).to_bytes(network))
            conn.sendall(to_packet(VerackMessage()).to_bytes(network))
            # wait for the verack, or for the client to give up
            conn.recv(4096)
        except OSError:
            pass


@pytest.fixture
def listener():
    sock = socket.socket()
    sock.bind(("127.0.0.1", 0))
    sock.listen(1)
    yield sock
    sock.close()


def start_peer(listener, network=REGTEST, version_message=None):
    if version_message is None:
        version_message = td.make_version_message(nonce=99)
    thread = threading.Thread(target=serve_once, args=(listener, network, version_message), daemon=True)
    thread.start()
    return thread


def test_completed_handshake_json(listener, capsys):
    start_peer(listener)
    port = listener.getsockname()[1]
    args = parse_args([f"127.0.0.1:{port}", "--json", "--timeout", "5"])
    assert run(args) == 0
    result = json.loads(capsys.readouterr().out)
    assert result["status"] == "completed"
    assert result["error"] is None
    assert result["peer"]["user_agent"] == "/Satoshi:25.0.0/"
    assert result["peer"]["port"] == port


def test_completed_handshake_table(listener, capsys):
    start_peer(listener)
    port = listener.getsockname()[1]
    assert run(parse_args([f"127.0.0.1:{port}"])) == 0
    assert "start_height" in capsys.readouterr().out


def test_wrong_network_exit_code(listener, capsys):
    start_peer(listener, network=TESTNET)
    port = listener.getsockname()[1]
    args = parse_args([f"127.0.0.1:{port}", "--json", "--timeout", "5"])
    assert run(args) == 4
    result = json.loads(capsys.readouterr().out)
    assert result["status"] == "failed"
    assert result["error"]["kind"] == "protocol"


def test_version_too_old_exit_code(listener):
    start_peer(listener, version_message=td.make_version_message(nonce=99, version=70002))
    port = listener.getsockname()[1]
    args = parse_args([f"127.0.0.1:{port}", "--min-version", "70015", "--timeout", "5"])
    assert run(args) == 7


def test_connection_refused_exit_code(capsys):
    sock = socket.socket()
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    args = parse_args([f"127.0.0.1:{port}", "--json", "--connect-timeout", "1"])
    assert run(args) == 3
    result = json.loads(capsys.readouterr().out)
    assert result["error"]["kind"] == "connection"


def test_config_error_exit_code(capsys):
    args = parse_args(["127.0.0.1:18444", "--network", "nope", "--json"])
    assert run(args) == 1
    result = json.loads(capsys.readouterr().out)
    assert result["error"]["kind"] == "config"


def test_main_exits_with_status():
    with pytest.raises(SystemExit) as excinfo:
        main(["127.0.0.1:18444", "--network", "nope"])
    assert excinfo.value.code == 1
