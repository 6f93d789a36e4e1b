"""
Errors raised while talking to a peer.

Every handshake failure is terminal for the attempt. ``kind`` and
``exit_code`` let the command line tool report which failure happened.
"""


class ConfigError(Exception):
    """Raised when configuration validation fails."""

    exit_code = 1


class HandshakeError(Exception):
    kind = "error"
    exit_code = 2


class PeerConnectionError(HandshakeError):
    kind = "connection"
    exit_code = 3


class PeerDisconnected(PeerConnectionError):
    """The peer closed the stream before the handshake completed."""


class ProtocolError(HandshakeError):
    kind = "protocol"
    exit_code = 4


class InvalidMagic(ProtocolError):
    pass


class PayloadTooLarge(ProtocolError):
    pass


class ChecksumMismatch(ProtocolError):
    pass


class MalformedPayload(ProtocolError):
    pass


class HandshakeTimeout(HandshakeError):
    kind = "timeout"
    exit_code = 5


class SelfConnection(HandshakeError):
    kind = "self_connection"
    exit_code = 6


class VersionTooOld(HandshakeError):
    kind = "version_too_old"
    exit_code = 7
