import hashlib
import re
import socket

from peershake.errors import MalformedPayload

IPV4_PREFIX = b"\x00" * 10 + b"\xff" * 2

SERVICE_BITS = {
    "NODE_NETWORK": 0,  # 1 = 2**0
    "NODE_GETUTXO": 1,  # 2 = 2**1
    "NODE_BLOOM": 2,  # 4 = 2**2
    "NODE_WITNESS": 3,  # 8 = 2**3
    "NODE_COMPACT_FILTERS": 6,  # 64 = 2**6
    "NODE_NETWORK_LIMITED": 10,  # 1024 = 2**10
    "NODE_P2P_V2": 11,  # 2048 = 2**11
}


def double_sha256(b):
    first_round = hashlib.sha256(b).digest()
    second_round = hashlib.sha256(first_round).digest()
    return second_round


def compute_checksum(payload_bytes):
    return double_sha256(payload_bytes)[:4]


def fmt(bytestr):
    string = str(bytestr)
    maxlen = 500
    msg = string[:maxlen]
    if len(string) > maxlen:
        msg += "..."
    return re.sub("(.{80})", "\\1\n", msg, 0, re.DOTALL)


def bytes_to_int(b, byte_order="little", signed=False):
    return int.from_bytes(b, byte_order, signed=signed)


def int_to_bytes(i, length, byte_order="little", signed=False):
    return int.to_bytes(i, length, byte_order, signed=signed)


def read_exactly(stream, n):
    try:
        b = stream.read(n)
    except OverflowError as e:
        raise MalformedPayload(f"Tried to read {n} bytes") from e
    if len(b) != n:
        raise MalformedPayload(f"Tried to read {n} bytes, only {len(b)} left")
    return b


def read_int(stream, n, byte_order="little", signed=False):
    b = read_exactly(stream, n)
    return bytes_to_int(b, byte_order, signed=signed)


def encode_command(cmd):
    if len(cmd) > 12:
        raise ValueError(f"command too long: {cmd!r}")
    padding_needed = 12 - len(cmd)
    padding = b"\x00" * padding_needed
    return cmd + padding


def decode_command(raw):
    # remove trailing padding
    return bytes(raw).rstrip(b"\x00")


def read_version(stream):
    return read_int(stream, 4, signed=True)


def read_bool(stream):
    integer = read_int(stream, 1)
    return bool(integer)


def bool_to_bytes(boolean):
    return int_to_bytes(int(boolean), 1)


def read_time(stream):
    return read_int(stream, 8, signed=True)


def time_to_bytes(time):
    return int_to_bytes(time, 8, signed=True)


def read_var_int(stream):
    i = read_int(stream, 1)
    if i == 0xff:
        return read_int(stream, 8)
    elif i == 0xfe:
        return read_int(stream, 4)
    elif i == 0xfd:
        return read_int(stream, 2)
    else:
        return i


def int_to_var_int(i):
    """encodes an integer as a varint, always in its shortest form"""
    if i < 0:
        raise ValueError(f"varint can't be negative: {i}")
    elif i < 0xfd:
        return bytes([i])
    elif i < 0x10000:
        return b"\xfd" + int_to_bytes(i, 2)
    elif i < 0x100000000:
        return b"\xfe" + int_to_bytes(i, 4)
    elif i < 0x10000000000000000:
        return b"\xff" + int_to_bytes(i, 8)
    else:
        raise ValueError(f"integer too large: {i}")


def read_var_str(stream):
    length = read_var_int(stream)
    return read_exactly(stream, length)


def str_to_var_str(s):
    if isinstance(s, str):
        s = s.encode()
    return int_to_var_int(len(s)) + s


def check_bit(number, index):
    """See if the bit at `index` in binary representation of `number` is on"""
    mask = 1 << index
    return bool(number & mask)


def lookup_services_key(services, key):
    bit = SERVICE_BITS[key]
    return check_bit(services, bit)


def services_to_names(services):
    return [key for key in SERVICE_BITS if lookup_services_key(services, key)]


def read_services(stream):
    return read_int(stream, 8)


def services_to_bytes(services):
    return int_to_bytes(services, 8)


def read_port(stream):
    return read_int(stream, 2, byte_order="big")


def port_to_bytes(port):
    return int_to_bytes(port, 2, byte_order="big")


def bytes_to_ip(b):
    if bytes(b[0:12]) == IPV4_PREFIX:  # IPv4
        return socket.inet_ntop(socket.AF_INET, b[12:16])
    else:  # IPv6
        return socket.inet_ntop(socket.AF_INET6, b)


def ip_to_bytes(ip):
    if ":" in ip:  # determine if address is IPv6
        return socket.inet_pton(socket.AF_INET6, ip)
    else:
        return IPV4_PREFIX + socket.inet_pton(socket.AF_INET, ip)


def read_ip(stream):
    bytes_ = read_exactly(stream, 16)
    return bytes_to_ip(bytes_)
