import logging
import time
from typing import Any, Callable, Dict, Optional, Sequence, Tuple, Union

from .config import FhevmConfig, NetworkConfig
from .errors import (
    FhevmError,
    NoProvider,
    EngineLoadFailed,
    KeyFetchFailed,
    NetworkError,
    NotReady,
    ValueOutOfRange,
    UserRejected,
    ScopeMismatch,
    AccessDenied
)
from .core.storage import GenericStringStorage, InMemoryStorage, JsonFileStorage
from .core.public_key_cache import PublicKeyCache
from .core.encrypted_input import EncryptedInput, EncryptedInputBuilder
from .core.decryption_signature import DecryptionSignature, DecryptionSignatureManager
from .core.decryption import DecryptRequest, DecryptionExecutor
from .core.instance_resolver import InstanceResolver, ResolveOutcome, ResolveStatus
from .core.signer import Signer, LocalAccountSigner
from .core.handles import Cleartext


def configure_logging(level=logging.INFO):
    """Configure logging for the fhevmclient package.

    Args:
        level: The logging level to set. Can be logging.DEBUG, logging.INFO,
              logging.WARNING, logging.ERROR, or logging.CRITICAL
    """
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    logging.getLogger('fhevmclient').setLevel(level)


RequestLike = Union[DecryptRequest, Tuple[str, str]]


class FhevmSession:
    """
    The main entry point for an application talking to an FHE-enabled chain.

    It wires the instance resolver, the public key and signature caches and the
    decryption executor over one storage backend, and exposes the
    encrypt / sign / decrypt flow of a connected user.

    Example:
        session = FhevmSession()
        await session.get_instance("http://localhost:8545", chain_id=31337)
        enc = await session.encrypt_with(contract, signer, lambda b: b.add32(42))
        values = await session.user_decrypt([(enc.hex_handles[0], contract)], signer)
    """
    def __init__(self,
                 config: Optional[FhevmConfig] = None,
                 storage: Optional[GenericStringStorage] = None,
                 benchmark_manager: object = None,
                 engine_loader: Any = None,
                 transport: Any = None,
                 clock: Callable[[], float] = time.time):
        self.config = config or FhevmConfig()
        if storage is None:
            storage = JsonFileStorage(self.config.storage_path) if self.config.storage_path else InMemoryStorage()
        self.storage = storage
        self.benchmark_manager = benchmark_manager

        self.key_cache = PublicKeyCache(storage, benchmark_manager=benchmark_manager)
        self.resolver = InstanceResolver(
            self.config, key_cache=self.key_cache, engine_loader=engine_loader,
            transport=transport, clock=clock, benchmark_manager=benchmark_manager
        )
        self.signatures = DecryptionSignatureManager(
            storage, duration_days=self.config.duration_days, clock=clock,
            benchmark_manager=benchmark_manager
        )
        self.executor = DecryptionExecutor(benchmark_manager=benchmark_manager)
        logging.getLogger(__name__).info("FHEVM session initialized")

    @property
    def instance(self):
        return self.resolver.instance

    def _require_instance(self):
        instance = self.resolver.instance
        if instance is None:
            raise NotReady(f"No ready FHE instance (state: {self.resolver.state.name})")
        return instance

    async def get_instance(self, provider: Any, chain_id: Optional[int] = None,
                           mock_chains: Optional[Dict[int, str]] = None,
                           abort: Any = None) -> ResolveOutcome:
        return await self.resolver.resolve(provider, chain_id=chain_id, mock_chains=mock_chains, abort=abort)

    def create_encrypted_input(self, contract_address: str, user_address: str) -> EncryptedInputBuilder:
        return self.resolver.create_encrypted_input(contract_address, user_address)

    async def encrypt_with(self, contract_address: str, signer: Signer,
                           build_fn: Callable[[EncryptedInputBuilder], Any]) -> EncryptedInput:
        """Create an input for ``signer``, let ``build_fn`` add values to it, and encrypt."""
        builder = self.create_encrypted_input(contract_address, signer.address)
        build_fn(builder)
        return await builder.encrypt()

    @staticmethod
    def _as_requests(requests: Sequence[RequestLike]):
        return [r if isinstance(r, DecryptRequest) else DecryptRequest(*r) for r in requests]

    async def user_decrypt(self, requests: Sequence[RequestLike], signer: Signer) -> Dict[str, Cleartext]:
        """Sign (or reuse a cached signature) for the requested contracts and decrypt."""
        instance = self._require_instance()
        reqs = self._as_requests(requests)
        if not reqs:
            return {}
        contracts = sorted({r.contract_address for r in reqs})
        signature = await self.signatures.load_or_sign(instance, contracts, signer)
        return await self.executor.user_decrypt(instance, reqs, signature)

    async def public_decrypt(self, requests: Sequence[RequestLike]) -> Dict[str, Cleartext]:
        instance = self._require_instance()
        return await self.executor.public_decrypt(instance, self._as_requests(requests))

    async def close(self):
        await self.resolver.aclose()
