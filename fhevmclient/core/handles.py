"""
Ciphertext handles and encrypted type tags.

A handle is a 32-byte identifier for an encrypted value. Its trailing bytes
carry the value's origin: byte 21 is the index inside the input batch, bytes
22..29 the chain id (big-endian), byte 30 the type tag and byte 31 the handle
version.
"""

from enum import Enum
from typing import Iterable, List, Tuple, Union

from eth_utils import is_address, to_checksum_address

HANDLE_SIZE = 32
HANDLE_VERSION = 0

Cleartext = Union[bool, int, str]


class FheType(Enum):
    """Encrypted types and their tag in byte 30 of a handle."""
    EBOOL = 0
    EUINT8 = 2
    EUINT16 = 3
    EUINT32 = 4
    EUINT64 = 5
    EUINT128 = 6
    EADDRESS = 7
    EUINT256 = 8

    @property
    def bits(self) -> int:
        """Number of bits the value occupies in an input batch."""
        return _BITS[self]

    @property
    def max_value(self) -> int:
        if self is FheType.EBOOL:
            return 1
        return (1 << self.bits) - 1


_BITS = {
    FheType.EBOOL: 2,
    FheType.EUINT8: 8,
    FheType.EUINT16: 16,
    FheType.EUINT32: 32,
    FheType.EUINT64: 64,
    FheType.EUINT128: 128,
    FheType.EADDRESS: 160,
    FheType.EUINT256: 256,
}


def to_hex(value: Union[bytes, bytearray, str]) -> str:
    """Return a 0x-prefixed lower-case hex string."""
    if isinstance(value, str):
        return value.lower() if value.startswith(("0x", "0X")) else "0x" + value.lower()
    return "0x" + bytes(value).hex()


def from_hex(value: Union[bytes, bytearray, str]) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if value.startswith(("0x", "0X")):
        value = value[2:]
    return bytes.fromhex(value)


def normalize_handle(handle: Union[bytes, str]) -> str:
    raw = from_hex(handle)
    if len(raw) != HANDLE_SIZE:
        raise ValueError(f"Handle must be {HANDLE_SIZE} bytes, got {len(raw)}")
    return to_hex(raw)


def build_handle(prefix: bytes, index: int, chain_id: int, fhe_type: FheType) -> bytes:
    """Assemble a handle from a 21-byte hash prefix and its metadata."""
    if len(prefix) < 21:
        raise ValueError("Handle prefix must be at least 21 bytes")
    return (prefix[:21]
            + bytes([index & 0xFF])
            + chain_id.to_bytes(8, "big")
            + bytes([fhe_type.value, HANDLE_VERSION]))


def handle_type(handle: Union[bytes, str]) -> FheType:
    raw = from_hex(handle)
    try:
        return FheType(raw[30])
    except ValueError as e:
        raise ValueError(f"Unknown type tag {raw[30]} in handle {to_hex(raw)}") from e


def handle_chain_id(handle: Union[bytes, str]) -> int:
    return int.from_bytes(from_hex(handle)[22:30], "big")


def handle_index(handle: Union[bytes, str]) -> int:
    return from_hex(handle)[21]


def to_cleartext(handle: Union[bytes, str], value: int) -> Cleartext:
    """Convert a raw decrypted integer to the Python type its handle declares."""
    fhe_type = handle_type(handle)
    if fhe_type is FheType.EBOOL:
        return value != 0
    if fhe_type is FheType.EADDRESS:
        return to_checksum_address("0x" + value.to_bytes(20, "big").hex())
    return int(value)


def normalize_address(address: str) -> str:
    if not isinstance(address, str) or not is_address(address):
        raise ValueError(f"Invalid address: {address!r}")
    return address.lower()


def normalize_addresses(addresses: Iterable[str]) -> Tuple[str, ...]:
    """Lower-case, de-duplicate and sort a collection of addresses."""
    return tuple(sorted({normalize_address(a) for a in addresses}))


def checksum_addresses(addresses: Iterable[str]) -> List[str]:
    return [to_checksum_address(a) for a in addresses]
