import io

import pytest

from peershake.errors import (
    ChecksumMismatch,
    InvalidMagic,
    PayloadTooLarge,
    PeerDisconnected,
)
from peershake.network import MAINNET, REGTEST, TESTNET
from peershake.utils import compute_checksum, int_to_bytes
from peershake.wire import (
    HEADER_SIZE,
    MAX_PAYLOAD,
    Packet,
    PacketDecoder,
    encode_packet,
    read_packet,
)


class FakeSocket:
    def __init__(self, bytes_, chunk_size=None):
        self.stream = io.BytesIO(bytes_)
        self.chunk_size = chunk_size
        self.timeouts = []

    def recv(self, n):
        if self.chunk_size:
            n = min(n, self.chunk_size)
        return self.stream.read(n)

    def settimeout(self, timeout):
        self.timeouts.append(timeout)


def test_verack_packet_bytes():
    raw = encode_packet(MAINNET, b"verack")
    assert raw == bytes.fromhex(
        "f9beb4d9" "76657261636b000000000000" "00000000" "5df6e0e2"
    )


def test_regtest_magic():
    raw = encode_packet(REGTEST, b"ping", b"\x00" * 8)
    assert raw[:4] == bytes.fromhex("fabfb5da")
    assert raw[4:16] == b"ping" + b"\x00" * 8
    assert raw[16:20] == (8).to_bytes(4, "little")
    assert raw[20:24] == compute_checksum(b"\x00" * 8)
    assert len(raw) == HEADER_SIZE + 8


def test_encode_payload_too_large():
    packet = Packet(b"block", b"\x00" * (MAX_PAYLOAD + 1))
    with pytest.raises(PayloadTooLarge):
        packet.to_bytes(REGTEST)


def test_packet_compared_with_other_types():
    assert Packet(b"verack") not in [None, b"verack"]


def test_encode_command_too_long():
    with pytest.raises(ValueError):
        encode_packet(REGTEST, b"thirteenbytes")


def test_decode_whole_frame():
    decoder = PacketDecoder(REGTEST)
    decoder.feed(encode_packet(REGTEST, b"version", b"hello"))
    assert decoder.next_packet() == Packet(b"version", b"hello")
    assert decoder.next_packet() is None
    assert decoder.buffered() == 0


def test_decode_one_byte_at_a_time():
    raw = encode_packet(REGTEST, b"version", b"some payload bytes")
    decoder = PacketDecoder(REGTEST)
    for byte in raw[:-1]:
        decoder.feed(bytes([byte]))
        assert decoder.next_packet() is None
    decoder.feed(raw[-1:])
    assert decoder.next_packet() == Packet(b"version", b"some payload bytes")


def test_decode_back_to_back_frames():
    raw = encode_packet(REGTEST, b"version", b"v") + encode_packet(REGTEST, b"verack")
    decoder = PacketDecoder(REGTEST)
    decoder.feed(raw + raw[:5])
    assert decoder.next_packet().command == b"version"
    assert decoder.next_packet().command == b"verack"
    assert decoder.next_packet() is None
    assert decoder.buffered() == 5


def test_unknown_command_is_not_an_error():
    decoder = PacketDecoder(REGTEST)
    decoder.feed(encode_packet(REGTEST, b"sendaddrv2"))
    assert decoder.next_packet() == Packet(b"sendaddrv2", b"")


def test_every_flipped_payload_byte_fails_checksum():
    payload = bytes(range(32))
    raw = encode_packet(REGTEST, b"version", payload)
    for i in range(HEADER_SIZE, len(raw)):
        corrupted = bytearray(raw)
        corrupted[i] ^= 0xFF
        decoder = PacketDecoder(REGTEST)
        decoder.feed(bytes(corrupted))
        with pytest.raises(ChecksumMismatch):
            decoder.next_packet()


def test_wrong_magic_detected_from_first_four_bytes():
    raw = encode_packet(TESTNET, b"version", b"payload")
    decoder = PacketDecoder(REGTEST)
    decoder.feed(raw[:4])
    with pytest.raises(InvalidMagic, match="testnet"):
        decoder.next_packet()


def test_garbage_magic():
    decoder = PacketDecoder(MAINNET)
    decoder.feed(b"GET / HTTP/1.1\r\n")
    with pytest.raises(InvalidMagic):
        decoder.next_packet()


def test_oversized_length_rejected_from_header_alone():
    header = REGTEST.magic_bytes
    header += b"block" + b"\x00" * 7
    header += int_to_bytes(MAX_PAYLOAD + 1, 4)
    header += b"\x00" * 4
    decoder = PacketDecoder(REGTEST)
    decoder.feed(header)
    with pytest.raises(PayloadTooLarge):
        decoder.next_packet()


def test_max_length_is_allowed_to_wait():
    header = REGTEST.magic_bytes
    header += b"block" + b"\x00" * 7
    header += int_to_bytes(MAX_PAYLOAD, 4)
    header += b"\x00" * 4
    decoder = PacketDecoder(REGTEST)
    decoder.feed(header)
    assert decoder.next_packet() is None


def test_read_packet_small_chunks():
    raw = encode_packet(REGTEST, b"version", b"x" * 100) + encode_packet(REGTEST, b"verack")
    sock = FakeSocket(raw, chunk_size=3)
    decoder = PacketDecoder(REGTEST)
    assert read_packet(sock, decoder).command == b"version"
    assert read_packet(sock, decoder).command == b"verack"


def test_read_packet_applies_timeouts():
    sock = FakeSocket(encode_packet(REGTEST, b"verack"), chunk_size=10)
    read_packet(sock, PacketDecoder(REGTEST), next_timeout=lambda: 1.5)
    assert sock.timeouts == [1.5, 1.5, 1.5]


def test_read_packet_peer_hung_up():
    raw = encode_packet(REGTEST, b"version", b"x" * 100)
    sock = FakeSocket(raw[:50])
    with pytest.raises(PeerDisconnected):
        read_packet(sock, PacketDecoder(REGTEST))
