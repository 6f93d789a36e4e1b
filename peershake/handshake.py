"""
The version handshake.

    us                      peer
    -- version ------------->
    <------------- version --
    -- verack -------------->
    <-------------- verack --

We always send our version first. The peer's version and verack may arrive
in either order; the handshake is complete once both have been seen.
"""

import enum
import logging
import socket
import time

from tabulate import tabulate

from peershake.errors import (
    HandshakeError,
    HandshakeTimeout,
    MalformedPayload,
    PeerConnectionError,
    ProtocolError,
    SelfConnection,
    VersionTooOld,
)
from peershake.msg import (
    Address,
    PingMessage,
    PongMessage,
    UnknownMessage,
    VerackMessage,
    VersionMessage,
    parse_message,
    peek_version,
    random_nonce,
    to_packet,
)
from peershake.utils import services_to_names
from peershake.wire import PacketDecoder, read_packet

log = logging.getLogger(__name__)


class PeerLogger(logging.LoggerAdapter):
    """Prefixes every record with the peer address"""

    def process(self, msg, kwargs):
        return f"[{self.extra['peer']}] {msg}", kwargs


class HandshakeState(enum.Enum):
    INIT = "init"
    VERSION_SENT = "version_sent"
    PEER_VERSION_RECEIVED = "peer_version_received"
    VERACK_SENT = "verack_sent"
    PEER_VERACK_RECEIVED = "peer_verack_received"
    COMPLETED = "completed"
    FAILED = "failed"


class PeerInfo:
    """What we learned about the remote node"""

    def __init__(self, address, version_message, time_offset, elapsed):
        self.address = address
        self.version = version_message.version
        self.services = version_message.services
        self.user_agent = version_message.user_agent
        self.start_height = version_message.start_height
        self.relay = version_message.relay
        self.time_offset = time_offset
        self.elapsed = elapsed

    def service_names(self):
        return services_to_names(self.services)

    def to_dict(self):
        host, port = self.address
        return {
            "host": host,
            "port": port,
            "version": self.version,
            "services": self.services,
            "service_names": self.service_names(),
            "user_agent": self.user_agent.decode("utf-8", errors="replace"),
            "start_height": self.start_height,
            "relay": self.relay,
            "time_offset": self.time_offset,
            "elapsed": round(self.elapsed, 3),
        }

    def __str__(self):
        headers = ["Peer", ""]
        rows = []
        for key, value in self.to_dict().items():
            if key == "service_names":
                value = ", ".join(value) or "-"
            rows.append([key, value])
        return tabulate(rows, headers, tablefmt="grid")

    def __repr__(self):
        return f"<PeerInfo {self.address[0]}:{self.address[1]} version={self.version}>"


class Handshake:
    """
    Drives one handshake attempt over a connected socket.

    `sock` only needs `recv`, `sendall` and `settimeout`. `nonce_factory`
    produces the nonce of our version message; `clock` is the monotonic clock
    the deadline is measured with. A `Handshake` is good for exactly one
    attempt: a retry needs a new socket and a new `Handshake`.
    """

    def __init__(
        self,
        sock,
        config,
        address=None,
        nonce_factory=random_nonce,
        clock=time.monotonic,
    ):
        self.sock = sock
        self.config = config
        self.network = config.get_network()
        if address is None:
            address = ("0.0.0.0", self.network.default_port)
        self.address = address
        self.nonce_factory = nonce_factory
        self.clock = clock
        self.decoder = PacketDecoder(self.network)
        self.log = PeerLogger(log, {"peer": f"{address[0]}:{address[1]}"})

        self.state = HandshakeState.INIT
        self.error = None
        self.nonce = None
        self.start = None
        self.deadline = None
        self.peer_version = None
        self.time_offset = None
        self.got_version = False
        self.got_verack = False
        self.sent_verack = False

    def run(self):
        """Perform the handshake. Returns a `PeerInfo`, raises a `HandshakeError`"""
        if self.state is not HandshakeState.INIT:
            raise RuntimeError("a Handshake can only be run once")
        try:
            return self._run()
        except HandshakeError as e:
            self.state = HandshakeState.FAILED
            self.error = e
            self.log.warning("handshake failed (%s): %s", e.kind, e)
            raise

    def _run(self):
        self.start = self.clock()
        self.deadline = self.start + self.config.timeout
        self.send_version()
        while not self.complete():
            packet = self.read_packet()
            self.handle_message(self.parse(packet))
        self.state = HandshakeState.COMPLETED
        info = PeerInfo(
            self.address, self.peer_version, self.time_offset, self.clock() - self.start
        )
        self.log.info(
            "handshake completed in %.3fs: version=%d user_agent=%s height=%d",
            info.elapsed,
            info.version,
            info.user_agent,
            info.start_height,
        )
        return info

    def complete(self):
        return self.got_version and self.got_verack

    def check_for_timeout(self):
        remaining = self.deadline - self.clock()
        if remaining <= 0:
            raise HandshakeTimeout(f"no handshake after {self.config.timeout}s")
        return min(self.config.read_timeout, remaining)

    def make_version_message(self):
        host, port = self.address
        return VersionMessage(
            version=self.config.protocol_version,
            services=self.config.services,
            time=int(time.time()),
            addr_recv=Address(0, host, port),
            addr_from=Address(self.config.services, "0.0.0.0", 0),
            nonce=self.nonce,
            user_agent=self.config.user_agent.encode(),
            start_height=self.config.start_height,
            relay=self.config.relay,
        )

    def send(self, message):
        self.log.debug("sending %r", message)
        data = to_packet(message).to_bytes(self.network)
        timeout = self.check_for_timeout()
        try:
            self.sock.settimeout(timeout)
            self.sock.sendall(data)
        except socket.timeout as e:
            raise HandshakeTimeout(f"timed out sending {message.command.decode()}") from e
        except OSError as e:
            raise PeerConnectionError(f"failed to send {message.command.decode()}: {e}") from e

    def send_version(self):
        self.nonce = self.nonce_factory()
        self.send(self.make_version_message())
        self.state = HandshakeState.VERSION_SENT

    def send_verack(self):
        if self.sent_verack:
            return
        self.send(VerackMessage())
        self.sent_verack = True
        self.state = HandshakeState.VERACK_SENT

    def read_packet(self):
        try:
            packet = read_packet(self.sock, self.decoder, self.check_for_timeout)
        except socket.timeout as e:
            if self.deadline - self.clock() <= 0:
                raise HandshakeTimeout(f"no handshake after {self.config.timeout}s") from e
            raise HandshakeTimeout(
                f"peer sent nothing for {self.config.read_timeout}s"
            ) from e
        except OSError as e:
            raise PeerConnectionError(f"failed to read from peer: {e}") from e
        self.log.debug("received %r (%d bytes)", packet, len(packet.payload))
        return packet

    def parse(self, packet):
        try:
            return parse_message(packet)
        except MalformedPayload:
            if packet.command == VersionMessage.command:
                # legacy peers send version payloads shorter than ours
                version = peek_version(packet.payload)
                if version is not None and version < self.config.min_version:
                    raise VersionTooOld(self._too_old(version)) from None
                raise
            self.log.debug("ignoring malformed %s message", packet.command)
            return UnknownMessage(packet.command, packet.payload)

    def handle_message(self, message):
        message_to_handler = {
            VersionMessage: self.handle_version,
            VerackMessage: self.handle_verack,
            PingMessage: self.handle_ping,
        }
        handler = message_to_handler.get(type(message))
        if handler is None:
            self.log.debug("ignoring %r during handshake", message)
            return
        handler(message)

    def handle_version(self, message):
        if self.got_version:
            raise ProtocolError("Duplicate version message")
        if message.version < self.config.min_version:
            raise VersionTooOld(self._too_old(message.version))
        if message.nonce == self.nonce:
            raise SelfConnection(f"connected to ourselves (nonce {message.nonce:#x})")
        self.peer_version = message
        self.time_offset = message.time - int(time.time())
        self.got_version = True
        self.state = HandshakeState.PEER_VERSION_RECEIVED
        self.send_verack()

    def handle_verack(self, message):
        if self.got_verack:
            self.log.debug("ignoring duplicate verack")
            return
        self.got_verack = True
        self.state = HandshakeState.PEER_VERACK_RECEIVED

    def handle_ping(self, message):
        self.send(PongMessage(message.nonce))

    def _too_old(self, version):
        return f"peer speaks protocol {version}, need at least {self.config.min_version}"


def handshake(sock, config, address=None, **kwargs):
    return Handshake(sock, config, address=address, **kwargs).run()
