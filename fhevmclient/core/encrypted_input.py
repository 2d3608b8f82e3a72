"""
Batched encrypted inputs.

Values destined for one contract call are added to a single builder and
encrypted together: the result carries one handle per value, in insertion
order, and a single input proof covering the whole batch.

Example:
    builder = instance.create_encrypted_input(contract_address, user_address)
    builder.add_bool(True).add32(5).add64(1_000_000)
    enc = await builder.encrypt()
    contract.functions.submit(*build_params_from_abi(enc, abi, "submit"))
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

from eth_utils import to_checksum_address

from ..errors import NotReady, ValueOutOfRange
from .handles import FheType, from_hex, normalize_address, to_hex

# Capacity of a single input batch
MAX_INPUT_BITS = 2048
MAX_INPUT_VALUES = 256

TypedValue = Tuple[FheType, int]


@dataclass
class EncryptedInput:
    """Handles (one per added value, same order) and the proof covering them."""
    handles: List[bytes]
    input_proof: bytes

    @property
    def hex_handles(self) -> List[str]:
        return [to_hex(h) for h in self.handles]

    @property
    def hex_input_proof(self) -> str:
        return to_hex(self.input_proof)

    def __repr__(self):
        return f"EncryptedInput(handles={len(self.handles)}, proof={len(self.input_proof)} bytes)"


BatchEncryptor = Callable[[str, str, List[TypedValue]], Awaitable[EncryptedInput]]


class EncryptedInputBuilder:
    """
    Accumulates typed plaintexts for one (contract, user) pair.

    Every ``add*`` method validates its value against the declared width and
    returns the builder so calls can be chained.
    """

    def __init__(self, contract_address: str, user_address: str, encryptor: BatchEncryptor,
                 is_ready: Optional[Callable[[], bool]] = None, benchmark_manager: Any = None):
        self.contract_address = normalize_address(contract_address)
        self.user_address = normalize_address(user_address)
        self._encryptor = encryptor
        self._is_ready = is_ready
        self.benchmark_manager = benchmark_manager
        self._values: List[TypedValue] = []
        self._bits = 0

    @property
    def values(self) -> List[TypedValue]:
        return list(self._values)

    @property
    def total_bits(self) -> int:
        return self._bits

    def __len__(self):
        return len(self._values)

    def _add(self, fhe_type: FheType, value: int) -> 'EncryptedInputBuilder':
        if isinstance(value, bool) and fhe_type is not FheType.EBOOL:
            raise ValueOutOfRange(f"Expected an integer for {fhe_type.name}, got a bool")
        if not isinstance(value, int):
            raise ValueOutOfRange(f"Expected an integer for {fhe_type.name}, got {type(value).__name__}")
        if value < 0 or value > fhe_type.max_value:
            raise ValueOutOfRange(f"Value {value} does not fit in {fhe_type.name} (max {fhe_type.max_value})")
        if len(self._values) + 1 > MAX_INPUT_VALUES:
            raise ValueOutOfRange(f"An encrypted input holds at most {MAX_INPUT_VALUES} values")
        if self._bits + fhe_type.bits > MAX_INPUT_BITS:
            raise ValueOutOfRange(
                f"Adding {fhe_type.name} would exceed the {MAX_INPUT_BITS}-bit input capacity "
                f"({self._bits} bits used)"
            )
        self._values.append((fhe_type, int(value)))
        self._bits += fhe_type.bits
        return self

    def add_bool(self, value: Union[bool, int]) -> 'EncryptedInputBuilder':
        if value not in (True, False, 0, 1):
            raise ValueOutOfRange(f"Value {value!r} is not a boolean")
        return self._add(FheType.EBOOL, int(bool(value)))

    def add8(self, value: int) -> 'EncryptedInputBuilder':
        return self._add(FheType.EUINT8, value)

    def add16(self, value: int) -> 'EncryptedInputBuilder':
        return self._add(FheType.EUINT16, value)

    def add32(self, value: int) -> 'EncryptedInputBuilder':
        return self._add(FheType.EUINT32, value)

    def add64(self, value: int) -> 'EncryptedInputBuilder':
        return self._add(FheType.EUINT64, value)

    def add128(self, value: int) -> 'EncryptedInputBuilder':
        return self._add(FheType.EUINT128, value)

    def add256(self, value: int) -> 'EncryptedInputBuilder':
        return self._add(FheType.EUINT256, value)

    def add_address(self, address: str) -> 'EncryptedInputBuilder':
        try:
            normalized = normalize_address(address)
        except ValueError as e:
            raise ValueOutOfRange(str(e)) from e
        return self._add(FheType.EADDRESS, int(normalized, 16))

    async def encrypt(self) -> EncryptedInput:
        """Encrypt every added value at once.

        Raises:
            NotReady: If the instance backing this builder is no longer current
        """
        if self._is_ready is not None and not self._is_ready():
            raise NotReady("The FHE instance is not ready; resolve it again before encrypting")

        start_time = time.time()
        result = await self._encryptor(self.contract_address, self.user_address, list(self._values))
        if len(result.handles) != len(self._values):
            raise RuntimeError(f"Expected {len(self._values)} handles, got {len(result.handles)}")

        duration = time.time() - start_time
        if self.benchmark_manager:
            tags = {'contract': self.contract_address}
            bm = self.benchmark_manager
            bm.log_event('EncryptedInputBuilder', 'Encryption Time', duration, unit='s', tags=tags)
            bm.log_event('EncryptedInputBuilder', 'Input Proof Size', len(result.input_proof), unit='bytes', tags=tags)
            bm.log_event('EncryptedInputBuilder', 'Handle Count', len(result.handles), tags=tags)
        logging.getLogger(__name__).debug(
            f"Encrypted {len(self._values)} values ({self._bits} bits) for contract {self.contract_address}"
        )
        return result


# Solidity external input type -> builder method
_ENCRYPTION_METHODS: Dict[str, str] = {
    "externalEbool": "add_bool",
    "externalEuint8": "add8",
    "externalEuint16": "add16",
    "externalEuint32": "add32",
    "externalEuint64": "add64",
    "externalEuint128": "add128",
    "externalEuint256": "add256",
    "externalEaddress": "add_address",
}


def get_encryption_method(internal_type: str) -> str:
    """Name of the builder method matching a contract's external input type."""
    method = _ENCRYPTION_METHODS.get(internal_type)
    if method is None:
        logging.getLogger(__name__).warning(f"Unknown internal type {internal_type!r}, defaulting to add64")
        return "add64"
    return method


def build_params_from_abi(enc: EncryptedInput, abi: List[Dict[str, Any]], function_name: str) -> List[Any]:
    """
    Map an encrypted input onto the parameters of a contract function.

    Handle parameters (external encrypted types are ``bytes32`` in an ABI) take
    the handles in order; the ``bytes`` parameter takes the proof.

    Raises:
        ValueError: If the function is missing or a parameter type is unsupported
    """
    fn = next((item for item in abi if item.get("type") == "function" and item.get("name") == function_name), None)
    if fn is None:
        raise ValueError(f"Function ABI not found: {function_name}")

    params: List[Any] = []
    handle_index = 0
    for position, entry in enumerate(fn.get("inputs", [])):
        abi_type = entry.get("type")
        if abi_type == "bytes":
            params.append(enc.input_proof)
            continue
        if handle_index >= len(enc.handles):
            raise ValueError(f"Not enough handles for parameter #{position} ({entry.get('name')}) of {function_name}")
        handle = enc.handles[handle_index]
        handle_index += 1
        if abi_type == "bytes32":
            params.append(handle)
        elif abi_type == "uint256":
            params.append(int.from_bytes(from_hex(handle), "big"))
        elif abi_type == "address":
            params.append(to_checksum_address("0x" + from_hex(handle)[-20:].hex()))
        elif abi_type == "string":
            params.append(to_hex(handle))
        elif abi_type == "bool":
            params.append(any(from_hex(handle)))
        else:
            raise ValueError(f"Unsupported ABI type {abi_type!r} for parameter {entry.get('name')}")
    return params
