"""
Command line entry point: handshake with a single Bitcoin node.
"""

from __future__ import annotations

import argparse
import json
import logging
import socket
import sys
from pathlib import Path

from peershake.config import load_config
from peershake.errors import ConfigError, HandshakeError, PeerConnectionError
from peershake.handshake import Handshake
from peershake.logging import setup_logging

log = logging.getLogger("peershake.cli")


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="peershake",
        description="Perform the Bitcoin version handshake with a remote node",
    )
    parser.add_argument("remote", help="Remote node as host:port, e.g. 127.0.0.1:18444 or [::1]:18444")
    parser.add_argument("--network", help="Chain to speak: main, testnet or regtest (default regtest)")
    parser.add_argument("--timeout", type=float, help="Deadline for the whole handshake in seconds")
    parser.add_argument("--read-timeout", type=float, help="Longest wait for a single read in seconds")
    parser.add_argument("--connect-timeout", type=float, help="TCP connect timeout in seconds")
    parser.add_argument("--user-agent", help="User agent to announce")
    parser.add_argument("--protocol-version", type=int, help="Protocol version to announce")
    parser.add_argument("--min-version", type=int, help="Lowest peer protocol version to accept")
    parser.add_argument("--start-height", type=int, help="Best height to announce")
    parser.add_argument("--services", help="Services bitfield to announce (decimal or 0x hex)")
    parser.add_argument("--relay", action="store_true", default=None, help="Ask the peer to relay transactions")
    parser.add_argument("--json", action="store_true", help="Print a machine-readable summary")
    parser.add_argument("--log-level", default="info", help="Log level (debug, info, warning, error)")
    parser.add_argument("--log-file", type=Path, help="Also write logs to this file")
    return parser.parse_args(argv)


def build_overrides(args: argparse.Namespace) -> dict:
    return {
        "network": args.network,
        "timeout": args.timeout,
        "read_timeout": args.read_timeout,
        "connect_timeout": args.connect_timeout,
        "user_agent": args.user_agent,
        "protocol_version": args.protocol_version,
        "min_version": args.min_version,
        "start_height": args.start_height,
        "services": args.services,
        "relay": args.relay,
    }


def parse_remote(remote: str, default_port: int) -> tuple[str, int]:
    """Split ``host:port``; IPv6 literals must be bracketed when a port is given."""

    remote = remote.strip()
    if remote.startswith("["):
        host, sep, rest = remote[1:].partition("]")
        if not sep:
            raise ConfigError(f"Unterminated IPv6 literal in {remote!r}")
        port_text = rest[1:] if rest.startswith(":") else ""
        if rest and not rest.startswith(":"):
            raise ConfigError(f"Invalid remote address {remote!r}")
    elif remote.count(":") == 1:
        host, _, port_text = remote.partition(":")
    else:
        # bare hostname, IPv4 or unbracketed IPv6 without a port
        host, port_text = remote, ""
    if not host:
        raise ConfigError(f"Missing host in {remote!r}")
    if not port_text:
        return host, default_port
    try:
        port = int(port_text)
    except ValueError as exc:
        raise ConfigError(f"Invalid port in {remote!r}") from exc
    if not (1 <= port <= 65535):
        raise ConfigError(f"Invalid port {port}")
    return host, port


def connect(host: str, port: int, timeout: float) -> socket.socket:
    try:
        return socket.create_connection((host, port), timeout=timeout)
    except OSError as exc:
        raise PeerConnectionError(f"could not connect to {host}:{port}: {exc}") from exc


def peer_address(sock: socket.socket, fallback: tuple[str, int]) -> tuple[str, int]:
    try:
        host, port = sock.getpeername()[:2]
    except OSError:
        return fallback
    # drop the scope id of link-local IPv6 addresses
    return host.split("%", 1)[0], port


def summary(status: str, error: Exception | None = None, peer=None) -> dict:
    result = {"status": status, "error": None, "peer": None}
    if error is not None:
        result["error"] = {"kind": getattr(error, "kind", "config"), "message": str(error)}
    if peer is not None:
        result["peer"] = peer.to_dict()
    return result


def run(args: argparse.Namespace) -> int:
    try:
        config = load_config(build_overrides(args))
        network = config.get_network()
        host, port = parse_remote(args.remote, network.default_port)
    except ConfigError as exc:
        log.error("Config error: %s", exc)
        if args.json:
            print(json.dumps(summary("failed", exc)))
        return exc.exit_code

    log.info("connecting to %s:%d on %s", host, port, network.name)
    sock = None
    try:
        sock = connect(host, port, config.connect_timeout)
        address = peer_address(sock, (host, port))
        peer = Handshake(sock, config, address=address).run()
    except HandshakeError as exc:
        if sock is None:
            log.warning("%s", exc)
        if args.json:
            print(json.dumps(summary("failed", exc)))
        else:
            print(f"handshake with {host}:{port} failed ({exc.kind}): {exc}")
        return exc.exit_code
    finally:
        if sock is not None:
            sock.close()

    if args.json:
        print(json.dumps(summary("completed", peer=peer)))
    else:
        print(peer)
    return 0


def main(argv=None) -> None:
    args = parse_args(argv)
    log_level = getattr(logging, args.log_level.upper(), logging.INFO)
    setup_logging(level=log_level, log_file=args.log_file)
    raise SystemExit(run(args))


if __name__ == "__main__":
    main()
