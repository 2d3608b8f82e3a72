"""
Two-level cache of per-chain public key material.

Reads go memory -> persistent storage -> network fetcher; a fetched key set is
written through to both layers. Chain keys are treated as immutable, so
entries never expire.
"""

import asyncio
import base64
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from ..errors import KeyFetchFailed
from .storage import GenericStringStorage, InMemoryStorage

STORAGE_PREFIX = "fhevm.publicKey."


@dataclass(frozen=True)
class PublicKeySet:
    """Public key and CRS parameters of one chain."""
    chain_id: int
    public_key_id: str
    public_key: bytes
    public_params_id: str = ""
    public_params: bytes = b""

    def to_json(self) -> str:
        return json.dumps({
            'chainId': self.chain_id,
            'publicKeyId': self.public_key_id,
            'publicKey': base64.b64encode(self.public_key).decode('ascii'),
            'publicParamsId': self.public_params_id,
            'publicParams': base64.b64encode(self.public_params).decode('ascii'),
        })

    @classmethod
    def from_json(cls, raw: str) -> 'PublicKeySet':
        data = json.loads(raw)
        return cls(
            chain_id=int(data['chainId']),
            public_key_id=str(data['publicKeyId']),
            public_key=base64.b64decode(data['publicKey']),
            public_params_id=str(data.get('publicParamsId', '')),
            public_params=base64.b64decode(data.get('publicParams', '')),
        )


KeyFetcher = Callable[[int], Awaitable[PublicKeySet]]


class PublicKeyCache:
    def __init__(self, storage: Optional[GenericStringStorage] = None, benchmark_manager: Any = None):
        self.storage = storage if storage is not None else InMemoryStorage()
        self.benchmark_manager = benchmark_manager
        self._memory: Dict[int, PublicKeySet] = {}
        self._inflight: Dict[int, asyncio.Task] = {}
        self.logger = logging.getLogger(__name__)

    @staticmethod
    def storage_key(chain_id: int) -> str:
        return f"{STORAGE_PREFIX}{chain_id}"

    def get(self, chain_id: int) -> Optional[PublicKeySet]:
        """Look the chain up in memory, then in persistent storage."""
        keys = self._memory.get(chain_id)
        if keys is not None:
            return keys

        raw = self.storage.get(self.storage_key(chain_id))
        if raw is None:
            return None
        try:
            keys = PublicKeySet.from_json(raw)
        except (ValueError, KeyError, TypeError) as e:
            self.logger.warning(f"Dropping corrupt public key entry for chain {chain_id}: {e}")
            self.storage.remove(self.storage_key(chain_id))
            return None
        if keys.chain_id != chain_id:
            self.logger.warning(f"Dropping public key entry stored under chain {chain_id} for chain {keys.chain_id}")
            self.storage.remove(self.storage_key(chain_id))
            return None

        self._memory[chain_id] = keys
        self.logger.debug(f"Public key for chain {chain_id} restored from storage")
        return keys

    def put(self, chain_id: int, keys: PublicKeySet) -> None:
        self._memory[chain_id] = keys
        self.storage.set(self.storage_key(chain_id), keys.to_json())

    async def get_or_fetch(self, chain_id: int, fetcher: KeyFetcher) -> PublicKeySet:
        """Return cached keys or fetch, store and return them.

        Raises:
            KeyFetchFailed: If the fetcher fails
        """
        keys = self.get(chain_id)
        if keys is not None:
            return keys

        task = self._inflight.get(chain_id)
        if task is None or task.done():
            task = asyncio.ensure_future(self._fetch(chain_id, fetcher))
            self._inflight[chain_id] = task
        try:
            return await asyncio.shield(task)
        finally:
            if task.done() and self._inflight.get(chain_id) is task:
                del self._inflight[chain_id]

    async def _fetch(self, chain_id: int, fetcher: KeyFetcher) -> PublicKeySet:
        start_time = time.time()
        try:
            keys = await fetcher(chain_id)
        except asyncio.CancelledError:
            raise
        except KeyFetchFailed:
            raise
        except Exception as e:
            raise KeyFetchFailed(f"Public key fetch for chain {chain_id} failed: {e}") from e

        self.put(chain_id, keys)
        duration = time.time() - start_time
        if self.benchmark_manager:
            self.benchmark_manager.log_event('PublicKeyCache', 'Key Fetch Time', duration, unit='s')
        self.logger.info(f"Fetched public key {keys.public_key_id} for chain {chain_id}")
        return keys
