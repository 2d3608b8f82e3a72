"""
Local simulation engine for mock chains.

MockCoprocessor stands in for the coprocessor, ACL and KMS of a local test
network: it keeps the plaintext behind every handle it issued, the addresses
allowed to decrypt it and whether the value was made publicly decryptable.
MockFhevmInstance serves the instance interface from it without any network
access.
"""

import asyncio
import hashlib
import logging
import secrets
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Set, Tuple

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey
from eth_account import Account
from eth_account.messages import encode_defunct

from ..config import MOCK_VERIFYING_CONTRACT_DECRYPTION
from ..core.encrypted_input import EncryptedInput, TypedValue
from ..core.handles import (Cleartext, FheType, build_handle, from_hex, normalize_address,
                            normalize_handle, to_cleartext, to_hex)
from ..core.signer import recover_typed_data_signer
from ..errors import AccessDenied
from .base_instance import BaseFhevmInstance, InstanceKind


@dataclass
class MockRecord:
    value: int
    fhe_type: FheType
    contract_address: str
    allowed: Set[str] = field(default_factory=set)
    public: bool = False


class MockCoprocessor:
    """In-process ledger of simulated ciphertexts for one mock chain."""

    def __init__(self, chain_id: int):
        self.chain_id = chain_id
        self._records: Dict[str, MockRecord] = {}
        self._signer = Account.create()
        self.logger = logging.getLogger(__name__)

    @property
    def signer_address(self) -> str:
        return self._signer.address

    def __len__(self):
        return len(self._records)

    def __contains__(self, handle) -> bool:
        return normalize_handle(handle) in self._records

    def record(self, handle) -> MockRecord:
        key = normalize_handle(handle)
        if key not in self._records:
            raise AccessDenied(f"Unknown handle {key}")
        return self._records[key]

    def _register(self, prefix: bytes, index: int, fhe_type: FheType, value: int,
                  contract_address: str, allowed: Set[str]) -> bytes:
        handle = build_handle(prefix, index, self.chain_id, fhe_type)
        self._records[to_hex(handle)] = MockRecord(
            value=value, fhe_type=fhe_type, contract_address=contract_address, allowed=set(allowed)
        )
        return handle

    def verify_input(self, contract_address: str, user_address: str, values: List[TypedValue]) -> Tuple[List[bytes], bytes]:
        """Register a batch of inputs and return (handles, input proof)."""
        contract_address = normalize_address(contract_address)
        user_address = normalize_address(user_address)
        nonce = secrets.token_bytes(32)
        digest = hashlib.sha256(nonce + from_hex(contract_address) + from_hex(user_address)).digest()

        handles = []
        for index, (fhe_type, value) in enumerate(values):
            prefix = hashlib.sha256(digest + index.to_bytes(2, "big")).digest()
            handles.append(self._register(prefix, index, fhe_type, value, contract_address,
                                          {contract_address, user_address}))

        signed = self._signer.sign_message(encode_defunct(primitive=self._proof_digest(handles, contract_address, user_address)))
        proof = bytes([len(handles), 1]) + b"".join(handles) + bytes(signed.signature) + b"\x00"
        return handles, proof

    def _proof_digest(self, handles: List[bytes], contract_address: str, user_address: str) -> bytes:
        return hashlib.sha256(b"".join(handles) + from_hex(contract_address) + from_hex(user_address)).digest()

    def check_input_proof(self, handles: List[bytes], proof: bytes, contract_address: str, user_address: str) -> bool:
        """What the input verifier contract checks before accepting the handles."""
        if len(proof) < 2 or proof[0] != len(handles) or proof[1] != 1:
            return False
        body = proof[2:]
        if body[:32 * len(handles)] != b"".join(handles):
            return False
        signature = body[32 * len(handles):32 * len(handles) + 65]
        digest = self._proof_digest(handles, normalize_address(contract_address), normalize_address(user_address))
        try:
            recovered = Account.recover_message(encode_defunct(primitive=digest), signature=signature)
        except Exception as e:
            self.logger.debug(f"Input proof signature invalid: {e}")
            return False
        return recovered == self._signer.address

    # ---- contract-side operations -----------------------------------------
    def store(self, value: int, fhe_type: FheType, contract_address: str, allowed: Sequence[str] = ()) -> str:
        """Simulate a contract producing a new ciphertext (e.g. a computation result)."""
        contract_address = normalize_address(contract_address)
        prefix = secrets.token_bytes(21)
        handle = self._register(prefix, 0xFF, fhe_type, value, contract_address,
                                {contract_address} | {normalize_address(a) for a in allowed})
        return to_hex(handle)

    def allow(self, handle, address: str) -> None:
        self.record(handle).allowed.add(normalize_address(address))

    def make_publicly_decryptable(self, handle) -> None:
        self.record(handle).public = True


class MockFhevmInstance(BaseFhevmInstance):
    """Instance backed by a MockCoprocessor; never performs network I/O."""
    kind = InstanceKind.MOCK

    def __init__(self, chain_id: int, rpc_url: str = "", coprocessor: Optional[MockCoprocessor] = None,
                 clock: Callable[[], float] = time.time, benchmark_manager: Any = None):
        super().__init__(chain_id, key_id=f"mock-{chain_id}",
                         verifying_contract=MOCK_VERIFYING_CONTRACT_DECRYPTION,
                         benchmark_manager=benchmark_manager)
        self.rpc_url = rpc_url
        self.coprocessor = coprocessor if coprocessor is not None else MockCoprocessor(chain_id)
        self.clock = clock
        logging.getLogger(__name__).info(f"Mock FHE instance created for chain {chain_id} ({rpc_url or 'no rpc'})")

    def generate_keypair(self) -> Tuple[str, str]:
        private_key = X25519PrivateKey.generate()
        private_bytes = private_key.private_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PrivateFormat.Raw,
            encryption_algorithm=serialization.NoEncryption(),
        )
        public_bytes = private_key.public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )
        return to_hex(public_bytes), to_hex(private_bytes)

    async def encrypt_batch(self, contract_address: str, user_address: str,
                            values: List[TypedValue]) -> EncryptedInput:
        await asyncio.sleep(0)
        handles, proof = self.coprocessor.verify_input(contract_address, user_address, values)
        return EncryptedInput(handles=handles, input_proof=proof)

    async def user_decrypt(self, requests, private_key, public_key, signature, contract_addresses,
                           user_address, start_timestamp, duration_days) -> Dict[str, Cleartext]:
        await asyncio.sleep(0)
        user = normalize_address(user_address)
        typed_data = self.create_eip712(public_key, contract_addresses, start_timestamp, duration_days)
        recovered = recover_typed_data_signer(typed_data, signature)
        if recovered is None or recovered.lower() != user:
            raise AccessDenied("Decryption signature was not produced by the requesting user")

        now = self.clock()
        if not (start_timestamp <= now < start_timestamp + duration_days * 86400):
            raise AccessDenied("Decryption signature is outside its validity window")

        scope = {normalize_address(a) for a in contract_addresses}
        results: Dict[str, Cleartext] = {}
        for request in requests:
            handle = normalize_handle(request.handle)
            contract = normalize_address(request.contract_address)
            rec = self.coprocessor.record(handle)
            if contract not in scope:
                raise AccessDenied(f"Contract {contract} is not covered by the signature")
            if contract not in rec.allowed or user not in rec.allowed:
                raise AccessDenied(f"User {user} is not allowed to decrypt {handle} via {contract}")
            results[handle] = to_cleartext(handle, rec.value)
        return results

    async def public_decrypt(self, requests) -> Dict[str, Cleartext]:
        await asyncio.sleep(0)
        results: Dict[str, Cleartext] = {}
        for request in requests:
            handle = normalize_handle(request.handle)
            rec = self.coprocessor.record(handle)
            if not rec.public:
                raise AccessDenied(f"Handle {handle} is not publicly decryptable")
            results[handle] = to_cleartext(handle, rec.value)
        return results
