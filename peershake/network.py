from peershake.errors import ConfigError
from peershake.utils import int_to_bytes


class Network:
    def __init__(self, name, magic, default_port):
        self.name = name
        self.magic = magic
        self.default_port = default_port

    @property
    def magic_bytes(self):
        # the magic is serialized like every other u32: little endian
        return int_to_bytes(self.magic, 4)

    def __setattr__(self, name, value):
        if name in self.__dict__:
            raise AttributeError(f"Network.{name} is read-only")
        super().__setattr__(name, value)

    def __eq__(self, other):
        return isinstance(other, Network) and self.__dict__ == other.__dict__

    def __hash__(self):
        return hash((self.name, self.magic, self.default_port))

    def __repr__(self):
        return f"<Network {self.name} magic={self.magic:#010x} port={self.default_port}>"


MAINNET = Network("main", 0xD9B4BEF9, 8333)
TESTNET = Network("testnet", 0x0709110B, 18333)
REGTEST = Network("regtest", 0xDAB5BFFA, 18444)

NETWORKS = {network.name: network for network in (MAINNET, TESTNET, REGTEST)}

ALIASES = {
    "mainnet": "main",
    "testnet3": "testnet",
}

DEFAULT_NETWORK = "regtest"


def get_network(name):
    key = name.strip().lower()
    key = ALIASES.get(key, key)
    try:
        return NETWORKS[key]
    except KeyError:
        choices = ", ".join(sorted(NETWORKS))
        raise ConfigError(f"Unknown network {name!r} (choose from {choices})") from None


def network_for_magic(magic):
    if isinstance(magic, (bytes, bytearray)):
        magic = int.from_bytes(magic, "little")
    for network in NETWORKS.values():
        if network.magic == magic:
            return network
    return None
