import io
import random

from tabulate import tabulate

from peershake.errors import MalformedPayload
from peershake.utils import (
    bool_to_bytes,
    fmt,
    int_to_bytes,
    ip_to_bytes,
    port_to_bytes,
    read_bool,
    read_int,
    read_ip,
    read_port,
    read_services,
    read_time,
    read_var_str,
    read_version,
    services_to_bytes,
    services_to_names,
    str_to_var_str,
    time_to_bytes,
)
from peershake.wire import Packet


class Address:
    """A `net_addr` as it appears inside a version message (no time field)"""

    def __init__(self, services, ip, port):
        self.services = services
        self.ip = ip
        self.port = port

    @classmethod
    def from_bytes(cls, bytes_):
        stream = io.BytesIO(bytes_)
        return cls.from_stream(stream)

    @classmethod
    def from_stream(cls, stream):
        services = read_services(stream)
        ip = read_ip(stream)
        port = read_port(stream)
        return cls(services, ip, port)

    def to_bytes(self):
        msg = services_to_bytes(self.services)
        msg += ip_to_bytes(self.ip)
        msg += port_to_bytes(self.port)
        return msg

    def tuple(self):
        return (self.ip, self.port)

    def __eq__(self, other):
        return isinstance(other, Address) and self.__dict__ == other.__dict__

    def __repr__(self):
        if ":" in self.ip:
            return f"<Address [{self.ip}]:{self.port}>"
        return f"<Address {self.ip}:{self.port}>"


class VersionMessage:

    command = b"version"

    def __init__(
        self,
        version,
        services,
        time,
        addr_recv,
        addr_from,
        nonce,
        user_agent,
        start_height,
        relay=None,
    ):
        self.version = version
        self.services = services
        self.time = time
        self.addr_recv = addr_recv
        self.addr_from = addr_from
        self.nonce = nonce
        self.user_agent = user_agent
        self.start_height = start_height
        # None means the peer left the optional trailing byte off
        self.relay = relay

    @classmethod
    def from_bytes(cls, payload):
        stream = io.BytesIO(payload)
        version = read_version(stream)
        services = read_services(stream)
        time = read_time(stream)
        addr_recv = Address.from_stream(stream)
        addr_from = Address.from_stream(stream)
        nonce = read_int(stream, 8)
        user_agent = read_var_str(stream)
        start_height = read_int(stream, 4, signed=True)
        if stream.tell() < len(payload):
            relay = read_bool(stream)
        else:
            relay = None
        return cls(
            version,
            services,
            time,
            addr_recv,
            addr_from,
            nonce,
            user_agent,
            start_height,
            relay,
        )

    def to_bytes(self):
        msg = int_to_bytes(self.version, 4, signed=True)
        msg += services_to_bytes(self.services)
        msg += time_to_bytes(self.time)
        msg += self.addr_recv.to_bytes()
        msg += self.addr_from.to_bytes()
        msg += int_to_bytes(self.nonce, 8)
        msg += str_to_var_str(self.user_agent)
        msg += int_to_bytes(self.start_height, 4, signed=True)
        if self.relay is not None:
            msg += bool_to_bytes(self.relay)
        return msg

    def service_names(self):
        return services_to_names(self.services)

    def __str__(self):
        headers = ["VersionMessage", ""]
        attrs = [
            "version",
            "services",
            "time",
            "addr_recv",
            "addr_from",
            "nonce",
            "user_agent",
            "start_height",
            "relay",
        ]
        rows = [[attr, fmt(getattr(self, attr))] for attr in attrs]
        return tabulate(rows, headers, tablefmt="grid")

    def __eq__(self, other):
        return isinstance(other, VersionMessage) and self.__dict__ == other.__dict__

    def __repr__(self):
        return f"<VersionMessage version={self.version} user_agent={self.user_agent}>"


class VerackMessage:

    command = b"verack"

    @classmethod
    def from_bytes(cls, payload):
        # verack carries no payload; anything a peer puts there is ignored
        return cls()

    def to_bytes(self):
        return b""

    def __eq__(self, other):
        return isinstance(other, VerackMessage)

    def __str__(self):
        headers = ["VerackMessage", ""]
        rows = []
        return tabulate(rows, headers, tablefmt="grid")

    def __repr__(self):
        return "<Verack>"


def random_nonce():
    return random.SystemRandom().getrandbits(64)


class PingMessage:

    command = b"ping"

    def __init__(self, nonce=None):
        if nonce is None:
            nonce = random_nonce()
        self.nonce = nonce

    @classmethod
    def from_bytes(cls, payload):
        stream = io.BytesIO(payload)
        return cls(read_int(stream, 8))

    def to_bytes(self):
        return int_to_bytes(self.nonce, 8)

    def __eq__(self, other):
        return type(other) is type(self) and self.nonce == other.nonce

    def __repr__(self):
        return f"<Ping nonce={self.nonce}>"


class PongMessage(PingMessage):

    command = b"pong"

    def __repr__(self):
        return f"<Pong nonce={self.nonce}>"


class UnknownMessage:
    """Any command we don't parse. The payload is kept as raw bytes."""

    def __init__(self, command, payload):
        self.command = command
        self.payload = payload

    def to_bytes(self):
        return self.payload

    def __eq__(self, other):
        return isinstance(other, UnknownMessage) and self.__dict__ == other.__dict__

    def __repr__(self):
        return f"<UnknownMessage command={self.command} {len(self.payload)} bytes>"


MESSAGE_TYPES = {
    VersionMessage.command: VersionMessage,
    VerackMessage.command: VerackMessage,
    PingMessage.command: PingMessage,
    PongMessage.command: PongMessage,
}


def parse_message(packet):
    """Turn a `Packet` into one of the message classes above"""
    message_class = MESSAGE_TYPES.get(packet.command)
    if message_class is None:
        return UnknownMessage(packet.command, packet.payload)
    return message_class.from_bytes(packet.payload)


def to_packet(message):
    return Packet(command=message.command, payload=message.to_bytes())


def peek_version(payload):
    """Read only the protocol version from a version payload"""
    try:
        return read_version(io.BytesIO(payload))
    except MalformedPayload:
        return None
