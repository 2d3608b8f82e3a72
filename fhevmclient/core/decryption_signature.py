"""
Issuing and caching of user decryption signatures.

A decryption signature is an EIP-712 authorization, signed by the user's
wallet, that lets the relay re-encrypt values of a fixed set of contracts
under an ephemeral keypair for a bounded number of days. Wallet prompts are
expensive for the user, so signatures are persisted and reused until they
expire, and concurrent requests for the same signature share one prompt.
"""

import asyncio
import hashlib
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Optional, Sequence, Tuple

from ..config import DEFAULT_DURATION_DAYS
from ..errors import FhevmError, UserRejected
from .handles import normalize_address, normalize_addresses
from .signer import Signer
from .storage import GenericStringStorage, InMemoryStorage

STORAGE_PREFIX = "fhevm.decryptionSignature."
SECONDS_PER_DAY = 86400


@dataclass(frozen=True)
class DecryptionSignature:
    """Self-describing signature record, valid on [start_timestamp, expires_at)."""
    private_key: str
    public_key: str
    signature: str
    contract_addresses: Tuple[str, ...]
    user_address: str
    start_timestamp: int
    duration_days: int
    key_id: str = ""

    def __post_init__(self):
        object.__setattr__(self, 'contract_addresses', normalize_addresses(self.contract_addresses))
        object.__setattr__(self, 'user_address', normalize_address(self.user_address))

    @property
    def expires_at(self) -> int:
        return self.start_timestamp + self.duration_days * SECONDS_PER_DAY

    def is_valid(self, now: Optional[float] = None) -> bool:
        now = time.time() if now is None else now
        return self.start_timestamp <= now < self.expires_at

    def covers(self, addresses: Iterable[str]) -> bool:
        """True if every address in ``addresses`` is within the signed contract set."""
        scope = set(self.contract_addresses)
        return all(normalize_address(a) in scope for a in addresses)

    def to_json(self) -> str:
        return json.dumps({
            'privateKey': self.private_key,
            'publicKey': self.public_key,
            'signature': self.signature,
            'contractAddresses': list(self.contract_addresses),
            'userAddress': self.user_address,
            'startTimestamp': self.start_timestamp,
            'durationDays': self.duration_days,
            'keyId': self.key_id,
        })

    @classmethod
    def from_json(cls, raw: str) -> 'DecryptionSignature':
        data = json.loads(raw)
        return cls(
            private_key=str(data['privateKey']),
            public_key=str(data['publicKey']),
            signature=str(data['signature']),
            contract_addresses=tuple(data['contractAddresses']),
            user_address=str(data['userAddress']),
            start_timestamp=int(data['startTimestamp']),
            duration_days=int(data['durationDays']),
            key_id=str(data.get('keyId', '')),
        )


class _PendingPrompt:
    """A shared signing task and the number of callers awaiting it."""

    def __init__(self, task: asyncio.Task):
        self.task = task
        self.waiters = 0
        task.add_done_callback(self._consume_result)

    @staticmethod
    def _consume_result(task: asyncio.Task) -> None:
        # Failures of an abandoned prompt have no caller left to receive them.
        if not task.cancelled():
            task.exception()


class DecryptionSignatureManager:
    """
    Load-or-sign access to decryption signatures.

    Entries are keyed by the exact (user, contract set, instance key id)
    triple. A request for a different contract set always signs anew, even
    when a cached entry covers a superset.
    """

    def __init__(self, storage: Optional[GenericStringStorage] = None,
                 duration_days: int = DEFAULT_DURATION_DAYS,
                 clock: Callable[[], float] = time.time,
                 benchmark_manager: Any = None):
        if duration_days <= 0:
            raise ValueError("duration_days must be positive")
        self.storage = storage if storage is not None else InMemoryStorage()
        self.duration_days = duration_days
        self.clock = clock
        self.benchmark_manager = benchmark_manager
        self._inflight: Dict[Tuple[int, str], _PendingPrompt] = {}
        self.logger = logging.getLogger(__name__)

    @staticmethod
    def cache_key(user_address: str, contract_addresses: Sequence[str], key_id: str) -> str:
        canonical = json.dumps({
            'user': normalize_address(user_address),
            'contracts': list(normalize_addresses(contract_addresses)),
            'keyId': key_id,
        }, sort_keys=True, separators=(',', ':'))
        return STORAGE_PREFIX + hashlib.sha256(canonical.encode('utf-8')).hexdigest()

    def lookup(self, instance, contract_addresses: Sequence[str], user_address: str,
               storage: Optional[GenericStringStorage] = None) -> Optional[DecryptionSignature]:
        """Return a stored, unexpired signature for this exact scope, or None.

        Expired or unreadable entries are removed as they are found.
        """
        store = storage if storage is not None else self.storage
        key = self.cache_key(user_address, contract_addresses, instance.key_id)
        raw = store.get(key)
        if raw is None:
            return None

        try:
            sig = DecryptionSignature.from_json(raw)
        except (ValueError, KeyError, TypeError) as e:
            self.logger.warning(f"Dropping corrupt decryption signature entry {key}: {e}")
            store.remove(key)
            return None

        if (sig.user_address != normalize_address(user_address)
                or sig.contract_addresses != normalize_addresses(contract_addresses)
                or sig.key_id != instance.key_id):
            self.logger.warning(f"Dropping decryption signature entry {key} with mismatched scope")
            store.remove(key)
            return None

        if not sig.is_valid(self.clock()):
            self.logger.info(f"Decryption signature for {sig.user_address} expired at {sig.expires_at}")
            store.remove(key)
            return None
        return sig

    def invalidate(self, instance, contract_addresses: Sequence[str], user_address: str,
                   storage: Optional[GenericStringStorage] = None) -> None:
        store = storage if storage is not None else self.storage
        store.remove(self.cache_key(user_address, contract_addresses, instance.key_id))

    async def load_or_sign(self, instance, contract_addresses: Sequence[str], signer: Signer,
                           storage: Optional[GenericStringStorage] = None) -> DecryptionSignature:
        """
        Return a valid signature for ``contract_addresses``, prompting the signer only when needed.

        Args:
            instance: Ready FHE instance (provides key id, keypair and EIP-712 payload)
            contract_addresses: Contracts the signature must authorize
            signer: Wallet boundary for the user
            storage: Overrides the manager's storage for this call

        Raises:
            ValueError: If the contract set is empty or holds an invalid address
            UserRejected: If the signer refuses or fails
        """
        contracts = normalize_addresses(contract_addresses)
        if not contracts:
            raise ValueError("At least one contract address is required")
        store = storage if storage is not None else self.storage

        cached = self.lookup(instance, contracts, signer.address, storage=store)
        if cached is not None:
            self.logger.debug(f"Decryption signature cache hit for {cached.user_address}")
            if self.benchmark_manager:
                self.benchmark_manager.log_event('DecryptionSignatureManager', 'Signature Cache Hit', 1)
            return cached

        flight_key = (id(store), self.cache_key(signer.address, contracts, instance.key_id))
        flight = self._inflight.get(flight_key)
        if flight is None or flight.task.done():
            flight = _PendingPrompt(asyncio.ensure_future(self._sign(instance, contracts, signer, store)))
            self._inflight[flight_key] = flight
        else:
            self.logger.debug(f"Joining pending signature prompt for {signer.address}")

        flight.waiters += 1
        try:
            return await asyncio.shield(flight.task)
        except asyncio.CancelledError:
            # The last waiter to leave withdraws the wallet prompt.
            if flight.waiters == 1 and not flight.task.done():
                self.logger.info(f"Withdrawing signature prompt for {signer.address}")
                flight.task.cancel()
            raise
        finally:
            flight.waiters -= 1
            if (flight.task.done() or flight.waiters == 0) and self._inflight.get(flight_key) is flight:
                del self._inflight[flight_key]

    async def _sign(self, instance, contracts: Tuple[str, ...], signer: Signer,
                    store: GenericStringStorage) -> DecryptionSignature:
        public_key, private_key = instance.generate_keypair()
        start_timestamp = int(self.clock())
        typed_data = instance.create_eip712(public_key, contracts, start_timestamp, self.duration_days)

        start_time = time.time()
        try:
            signature = await signer.sign_typed_data(typed_data)
        except asyncio.CancelledError:
            raise
        except FhevmError:
            raise
        except Exception as e:
            raise UserRejected(f"Signer {signer.address} did not sign the decryption request: {e}") from e
        if not signature:
            raise UserRejected(f"Signer {signer.address} returned an empty signature")

        sig = DecryptionSignature(
            private_key=private_key,
            public_key=public_key,
            signature=signature,
            contract_addresses=contracts,
            user_address=normalize_address(signer.address),
            start_timestamp=start_timestamp,
            duration_days=self.duration_days,
            key_id=instance.key_id,
        )
        store.set(self.cache_key(sig.user_address, contracts, instance.key_id), sig.to_json())

        duration = time.time() - start_time
        if self.benchmark_manager:
            self.benchmark_manager.log_event('DecryptionSignatureManager', 'Signing Time', duration, unit='s')
            self.benchmark_manager.log_event('DecryptionSignatureManager', 'Signature Cache Hit', 0)
        self.logger.info(f"Issued decryption signature for {sig.user_address} over {len(contracts)} contract(s)")
        return sig
