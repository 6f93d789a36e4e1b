"""
Bitcoin P2P version handshake.
"""

from peershake.config import HandshakeConfig, load_config
from peershake.handshake import Handshake, HandshakeState, PeerInfo, handshake
from peershake.network import get_network

__version__ = "0.1.0"

__all__ = [
    "Handshake",
    "HandshakeConfig",
    "HandshakeState",
    "PeerInfo",
    "get_network",
    "handshake",
    "load_config",
]
