import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Sequence

from ..errors import ScopeMismatch
from .decryption_signature import DecryptionSignature
from .handles import Cleartext, normalize_address, normalize_handle


@dataclass(frozen=True)
class DecryptRequest:
    handle: str
    contract_address: str

    def __post_init__(self):
        object.__setattr__(self, 'handle', normalize_handle(self.handle))
        object.__setattr__(self, 'contract_address', normalize_address(self.contract_address))


class DecryptionExecutor:
    """Runs user and public decryptions against an instance."""

    def __init__(self, benchmark_manager: Any = None):
        self.benchmark_manager = benchmark_manager
        self.logger = logging.getLogger(__name__)

    @staticmethod
    def check_scope(requests: Sequence[DecryptRequest], signature: DecryptionSignature) -> None:
        """Raises ScopeMismatch if a request's contract is not covered by the signature."""
        scope = set(signature.contract_addresses)
        missing = sorted({r.contract_address for r in requests} - scope)
        if missing:
            raise ScopeMismatch(f"Signature does not cover contract(s): {', '.join(missing)}")

    async def user_decrypt(self, instance, requests: Sequence[DecryptRequest],
                           signature: DecryptionSignature) -> Dict[str, Cleartext]:
        """
        Decrypt handles the signature's user is allowed to read.

        Raises:
            ScopeMismatch: Before any network call, if a contract is outside the signature
            AccessDenied: If the relay refuses
            NetworkError: On transport failures
        """
        self.check_scope(requests, signature)
        if not requests:
            return {}

        start_time = time.time()
        results = await instance.user_decrypt(
            list(requests),
            signature.private_key,
            signature.public_key,
            signature.signature,
            list(signature.contract_addresses),
            signature.user_address,
            signature.start_timestamp,
            signature.duration_days,
        )
        duration = time.time() - start_time
        if self.benchmark_manager:
            self.benchmark_manager.log_event('DecryptionExecutor', 'User Decrypt Time', duration, unit='s',
                                             tags={'handles': str(len(requests))})
        self.logger.info(f"User-decrypted {len(results)} handle(s) for {signature.user_address}")
        return results

    async def public_decrypt(self, instance, requests: Sequence[DecryptRequest]) -> Dict[str, Cleartext]:
        if not requests:
            return {}

        start_time = time.time()
        results = await instance.public_decrypt(list(requests))
        duration = time.time() - start_time
        if self.benchmark_manager:
            self.benchmark_manager.log_event('DecryptionExecutor', 'Public Decrypt Time', duration, unit='s',
                                             tags={'handles': str(len(requests))})
        self.logger.info(f"Publicly decrypted {len(results)} handle(s)")
        return results
