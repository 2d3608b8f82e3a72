from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple
import time

from ..core.encrypted_input import EncryptedInput, EncryptedInputBuilder, TypedValue
from ..core.handles import Cleartext, checksum_addresses, from_hex, to_hex

EIP712_DOMAIN_TYPE = [
    {"name": "name", "type": "string"},
    {"name": "version", "type": "string"},
    {"name": "chainId", "type": "uint256"},
    {"name": "verifyingContract", "type": "address"},
]

USER_DECRYPT_TYPE = [
    {"name": "publicKey", "type": "bytes"},
    {"name": "contractAddresses", "type": "address[]"},
    {"name": "startTimestamp", "type": "uint256"},
    {"name": "durationDays", "type": "uint256"},
    {"name": "extraData", "type": "bytes"},
]


class InstanceKind(Enum):
    MOCK = "mock"
    PRODUCTION = "production"


class BaseFhevmInstance(ABC):
    """Abstract Base Class for engine instances bound to one chain."""
    kind: InstanceKind

    def __init__(self, chain_id: int, key_id: str, verifying_contract: str,
                 eip712_chain_id: Optional[int] = None, benchmark_manager: Any = None):
        self.chain_id = chain_id
        self.key_id = key_id
        self.verifying_contract = verifying_contract
        self.eip712_chain_id = eip712_chain_id if eip712_chain_id is not None else chain_id
        self.benchmark_manager = benchmark_manager
        self.created_at = time.time()

    @abstractmethod
    def generate_keypair(self) -> Tuple[str, str]:
        """Returns a fresh ephemeral (public_key, private_key) pair as hex strings."""
        pass

    @abstractmethod
    async def encrypt_batch(self, contract_address: str, user_address: str,
                            values: List[TypedValue]) -> EncryptedInput:
        """Encrypts a typed batch and returns its handles plus one input proof."""
        pass

    @abstractmethod
    async def user_decrypt(self, requests: Sequence[Any], private_key: str, public_key: str,
                           signature: str, contract_addresses: Sequence[str], user_address: str,
                           start_timestamp: int, duration_days: int) -> Dict[str, Cleartext]:
        pass

    @abstractmethod
    async def public_decrypt(self, requests: Sequence[Any]) -> Dict[str, Cleartext]:
        pass

    def create_encrypted_input(self, contract_address: str, user_address: str,
                               is_ready: Optional[Callable[[], bool]] = None) -> EncryptedInputBuilder:
        return EncryptedInputBuilder(contract_address, user_address, self.encrypt_batch,
                                     is_ready=is_ready, benchmark_manager=self.benchmark_manager)

    def create_eip712(self, public_key: str, contract_addresses: Sequence[str],
                      start_timestamp: int, duration_days: int) -> Dict[str, Any]:
        """Typed data the user signs to authorize decryption for ``contract_addresses``."""
        return {
            "types": {
                "EIP712Domain": EIP712_DOMAIN_TYPE,
                "UserDecryptRequestVerification": USER_DECRYPT_TYPE,
            },
            "primaryType": "UserDecryptRequestVerification",
            "domain": {
                "name": "Decryption",
                "version": "1",
                "chainId": self.eip712_chain_id,
                "verifyingContract": checksum_addresses([self.verifying_contract])[0],
            },
            "message": {
                "publicKey": to_hex(from_hex(public_key)),
                "contractAddresses": checksum_addresses(contract_addresses),
                "startTimestamp": int(start_timestamp),
                "durationDays": int(duration_days),
                "extraData": "0x00",
            },
        }

    def __repr__(self):
        return f"{self.__class__.__name__}(chain_id={self.chain_id}, key_id='{self.key_id}')"
