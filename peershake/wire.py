import logging

from tabulate import tabulate

from peershake.errors import (
    ChecksumMismatch,
    InvalidMagic,
    PayloadTooLarge,
    PeerDisconnected,
)
from peershake.network import network_for_magic
from peershake.utils import (
    bytes_to_int,
    compute_checksum,
    decode_command,
    encode_command,
    fmt,
    int_to_bytes,
)

# Bitcoin Core's MAX_SIZE
MAX_PAYLOAD = 32 * 1024 * 1024

MAGIC_SIZE = 4
COMMAND_SIZE = 12
LENGTH_SIZE = 4
CHECKSUM_SIZE = 4
HEADER_SIZE = MAGIC_SIZE + COMMAND_SIZE + LENGTH_SIZE + CHECKSUM_SIZE

RECV_SIZE = 4096

log = logging.getLogger(__name__)


class Packet:
    def __init__(self, command, payload=b""):
        self.command = command
        self.payload = payload

    def to_bytes(self, network):
        if len(self.payload) > MAX_PAYLOAD:
            raise PayloadTooLarge(
                f"payload of {len(self.payload)} bytes exceeds {MAX_PAYLOAD}"
            )
        result = network.magic_bytes
        result += encode_command(self.command)
        result += int_to_bytes(len(self.payload), LENGTH_SIZE)
        result += compute_checksum(self.payload)
        result += self.payload
        return result

    def __eq__(self, other):
        if not isinstance(other, Packet):
            return NotImplemented
        return self.__dict__ == other.__dict__

    def __str__(self):
        headers = ["Packet", ""]
        rows = [["command", fmt(self.command)], ["payload", fmt(self.payload)]]
        return tabulate(rows, headers, tablefmt="grid")

    def __repr__(self):
        return f"<Packet command={self.command}>"


def encode_packet(network, command, payload=b""):
    return Packet(command, payload).to_bytes(network)


class PacketDecoder:
    """
    Incremental frame parser.

    Bytes are fed in whatever chunks the stream hands out and kept in an
    internal buffer until a whole frame is available. Header fields are
    validated as soon as they are buffered, so a bad magic or an oversized
    length is rejected without waiting for the payload.
    """

    def __init__(self, network, max_payload=MAX_PAYLOAD):
        self.network = network
        self.max_payload = max_payload
        self.buffer = bytearray()

    def feed(self, data):
        self.buffer += data

    def buffered(self):
        return len(self.buffer)

    def next_packet(self):
        """Return the next complete `Packet`, or None if more bytes are needed"""
        if len(self.buffer) >= MAGIC_SIZE:
            self._check_magic(bytes(self.buffer[:MAGIC_SIZE]))
        if len(self.buffer) < HEADER_SIZE:
            return None

        offset = MAGIC_SIZE
        raw_command = self.buffer[offset : offset + COMMAND_SIZE]
        offset += COMMAND_SIZE
        length = bytes_to_int(self.buffer[offset : offset + LENGTH_SIZE])
        offset += LENGTH_SIZE
        checksum = bytes(self.buffer[offset : offset + CHECKSUM_SIZE])

        if length > self.max_payload:
            raise PayloadTooLarge(
                f"peer announced a {length} byte payload, limit is {self.max_payload}"
            )
        if len(self.buffer) < HEADER_SIZE + length:
            return None

        payload = bytes(self.buffer[HEADER_SIZE : HEADER_SIZE + length])
        del self.buffer[: HEADER_SIZE + length]

        if compute_checksum(payload) != checksum:
            raise ChecksumMismatch(
                f"checksum {checksum.hex()} doesn't match payload "
                f"({compute_checksum(payload).hex()})"
            )
        return Packet(decode_command(raw_command), payload)

    def _check_magic(self, magic):
        if magic == self.network.magic_bytes:
            return
        other = network_for_magic(magic)
        if other is not None:
            raise InvalidMagic(
                f"expected {self.network.name} magic, got a message from {other.name}"
            )
        raise InvalidMagic(f'Network magic "{magic.hex()}" is wrong')


def read_packet(sock, decoder, next_timeout=None):
    """Block on `sock` until `decoder` yields a packet.

    Bytes already buffered in the decoder are used first. If given,
    `next_timeout()` is called before every `recv` and its result applied with
    `sock.settimeout`. Timeouts and socket errors from `recv` propagate to the
    caller.
    """
    packet = decoder.next_packet()
    while packet is None:
        if next_timeout is not None:
            sock.settimeout(next_timeout())
        data = sock.recv(RECV_SIZE)
        if not data:
            raise PeerDisconnected("Remote node hung up")
        log.debug("received %d bytes, %d buffered", len(data), decoder.buffered() + len(data))
        decoder.feed(data)
        packet = decoder.next_packet()
    return packet
