"""
Resolution of a ready-to-use FHE instance for a (provider, chain) pair.

Mock chains get a local simulation instance straight away. Any other chain
needs the engine bundle and the chain's public key before a relay-backed
instance can be built. Resolution is serialized: a request with the same
parameters joins the one in flight, a request with different parameters
cancels it, and the cancelled caller observes SUPERSEDED rather than an
error. Only the most recent attempt may publish its instance.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple

import httpx

from ..config import FhevmConfig, NetworkConfig
from ..errors import KeyFetchFailed, NoProvider, NotReady
from ..fhe import instance_registry
from ..fhe.base_instance import BaseFhevmInstance, InstanceKind
from ..fhe.mock_instance import MockCoprocessor
from ..fhe.relayer_client import RelayerClient
from .encrypted_input import EncryptedInputBuilder
from .engine_loader import EngineLoader
from .protocol_state import InstanceState, InstanceStateMachine, ProtocolViolationError
from .provider import detect_chain_id, provider_key
from .public_key_cache import PublicKeyCache


class ResolveStatus(Enum):
    READY = "ready"
    SUPERSEDED = "superseded"
    CANCELLED = "cancelled"


@dataclass
class ResolveOutcome:
    status: ResolveStatus
    instance: Optional[BaseFhevmInstance] = None

    @property
    def ready(self) -> bool:
        return self.status is ResolveStatus.READY


ResolveKey = Tuple[str, Optional[int], Tuple[Tuple[int, str], ...]]


class _Attempt:
    def __init__(self, key: ResolveKey):
        self.key = key
        self.task: Optional[asyncio.Task] = None
        self.superseded = False
        self.aborted = False
        self.waiters = 0


class InstanceResolver:
    """
    Produces FHE instances and tracks their lifecycle in an InstanceStateMachine.

    Example:
        resolver = InstanceResolver(config)
        outcome = await resolver.resolve("http://localhost:8545", chain_id=31337)
        if outcome.ready:
            builder = resolver.create_encrypted_input(contract, user)
    """

    def __init__(self, config: Optional[FhevmConfig] = None,
                 key_cache: Optional[PublicKeyCache] = None,
                 engine_loader: Optional[EngineLoader] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None,
                 clock: Callable[[], float] = time.time,
                 benchmark_manager: Any = None):
        self.config = config or FhevmConfig()
        self.benchmark_manager = benchmark_manager
        self.key_cache = key_cache or PublicKeyCache(benchmark_manager=benchmark_manager)
        self.engine_loader = engine_loader or EngineLoader.shared()
        self.transport = transport
        self.clock = clock
        self.state_machine = InstanceStateMachine()
        self.logger = logging.getLogger(__name__)

        self._instance: Optional[BaseFhevmInstance] = None
        self._instance_key: Optional[ResolveKey] = None
        self._attempt: Optional[_Attempt] = None
        self._mock_coprocessors: Dict[int, MockCoprocessor] = {}
        self._clients: Dict[str, RelayerClient] = {}

    @property
    def state(self) -> InstanceState:
        return self.state_machine.current_state

    @property
    def instance(self) -> Optional[BaseFhevmInstance]:
        return self._instance if self.state == InstanceState.READY else None

    def is_current(self, instance: BaseFhevmInstance) -> bool:
        return self._instance is instance and self.state == InstanceState.READY

    def mock_coprocessor(self, chain_id: int) -> MockCoprocessor:
        """The simulated coprocessor shared by every mock instance of ``chain_id``."""
        if chain_id not in self._mock_coprocessors:
            self._mock_coprocessors[chain_id] = MockCoprocessor(chain_id)
        return self._mock_coprocessors[chain_id]

    def _make_key(self, provider: Any, chain_id: Optional[int],
                  mock_chains: Optional[Dict[int, str]]) -> ResolveKey:
        merged = self.config.merged_mock_chains(mock_chains)
        return (provider_key(provider), chain_id, tuple(sorted(merged.items())))

    async def resolve(self, provider: Any, chain_id: Optional[int] = None,
                      mock_chains: Optional[Dict[int, str]] = None,
                      abort: Optional[asyncio.Event] = None) -> ResolveOutcome:
        """
        Resolve an instance for ``provider`` / ``chain_id``.

        Args:
            provider: RPC url or provider object; used for chain detection
            chain_id: Target chain; detected from the provider when None
            mock_chains: Extra chain id -> RPC url entries served by the local simulation
            abort: Event that cancels this resolution when set

        Returns:
            ResolveOutcome with status READY (and the instance), SUPERSEDED or CANCELLED

        Raises:
            NoProvider, EngineLoadFailed, KeyFetchFailed, NetworkError
        """
        if provider is None:
            self.reset()
            raise NoProvider("No provider supplied")

        key = self._make_key(provider, chain_id, mock_chains)

        if self.state == InstanceState.READY and self._instance_key == key:
            self.logger.debug(f"Reusing ready instance for chain {self._instance.chain_id}")
            return ResolveOutcome(ResolveStatus.READY, self._instance)

        attempt = self._attempt
        if attempt is not None and attempt.key == key and not attempt.task.done():
            self.logger.debug("Joining in-flight resolution")
        else:
            attempt = self._start_attempt(key, provider, chain_id, mock_chains)

        return await self._await_attempt(attempt, abort)

    def _start_attempt(self, key: ResolveKey, provider: Any, chain_id: Optional[int],
                       mock_chains: Optional[Dict[int, str]]) -> _Attempt:
        previous = self._attempt
        if previous is not None and previous.key != key:
            previous.superseded = True
            if not previous.task.done():
                previous.task.cancel()
                self.state_machine.transition_to(InstanceState.SUPERSEDED, {"chain_id": previous.key[1]})

        self._instance = None
        self._instance_key = None
        if self.state != InstanceState.LOADING:
            self.state_machine.transition_to(InstanceState.LOADING, {"chain_id": chain_id})

        attempt = _Attempt(key)
        attempt.task = asyncio.ensure_future(self._run(attempt, provider, chain_id, mock_chains))
        self._attempt = attempt
        return attempt

    async def _await_attempt(self, attempt: _Attempt, abort: Optional[asyncio.Event]) -> ResolveOutcome:
        task = attempt.task
        abort_waiter = asyncio.ensure_future(abort.wait()) if abort is not None else None
        attempt.waiters += 1
        try:
            pending = {task} if abort_waiter is None else {task, abort_waiter}
            done, _ = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
        finally:
            attempt.waiters -= 1
            if abort_waiter is not None and not abort_waiter.done():
                abort_waiter.cancel()

        if task not in done:
            # Callers that joined without aborting keep the attempt alive.
            if self._attempt is attempt and not task.done() and attempt.waiters == 0:
                attempt.aborted = True
                task.cancel()
                self._attempt = None
                self.state_machine.transition_to(InstanceState.IDLE, {"reason": "aborted"})
            return ResolveOutcome(ResolveStatus.CANCELLED)

        if attempt.superseded:
            return ResolveOutcome(ResolveStatus.SUPERSEDED)
        if task.cancelled():
            return ResolveOutcome(ResolveStatus.CANCELLED)
        exc = task.exception()
        if exc is not None:
            raise exc
        return ResolveOutcome(ResolveStatus.READY, task.result())

    async def _run(self, attempt: _Attempt, provider: Any, chain_id: Optional[int],
                   mock_chains: Optional[Dict[int, str]]) -> BaseFhevmInstance:
        start_time = time.time()
        try:
            if chain_id is None:
                chain_id = await detect_chain_id(provider, self.config.request_timeout, self.transport)

            mocks = self.config.merged_mock_chains(mock_chains)
            if chain_id in mocks:
                instance = instance_registry[InstanceKind.MOCK](
                    chain_id, rpc_url=mocks[chain_id], coprocessor=self.mock_coprocessor(chain_id),
                    clock=self.clock, benchmark_manager=self.benchmark_manager,
                )
            else:
                try:
                    network = self.config.network(chain_id)
                except KeyError as e:
                    raise KeyFetchFailed(f"No relayer configured for chain {chain_id}") from e
                bundle = await self.engine_loader.load_once(self.config.engine_source)
                client = self._client_for(network)
                keys = await self.key_cache.get_or_fetch(chain_id, client.fetch_public_key)
                instance = instance_registry[InstanceKind.PRODUCTION](
                    network, keys, bundle, client, benchmark_manager=self.benchmark_manager,
                )
        except asyncio.CancelledError:
            self.logger.info(f"Resolution for chain {chain_id} cancelled")
            raise
        except Exception as e:
            if self._attempt is attempt and not attempt.superseded:
                self.state_machine.transition_to(InstanceState.ERROR, {"error": type(e).__name__})
            self.logger.warning(f"Resolution for chain {chain_id} failed: {e}")
            raise

        if self._attempt is not attempt or attempt.superseded or attempt.aborted:
            # A newer request owns the resolver now
            raise asyncio.CancelledError()

        self._instance = instance
        self._instance_key = attempt.key
        self.state_machine.transition_to(InstanceState.READY, {"chain_id": chain_id, "kind": instance.kind.value})
        duration = time.time() - start_time
        if self.benchmark_manager:
            self.benchmark_manager.log_event('InstanceResolver', 'Resolve Time', duration, unit='s',
                                             tags={'chain_id': str(chain_id)})
        return instance

    def _client_for(self, network: NetworkConfig) -> RelayerClient:
        if network.relayer_url not in self._clients:
            self._clients[network.relayer_url] = RelayerClient(
                network.relayer_url, timeout=self.config.request_timeout, transport=self.transport
            )
        return self._clients[network.relayer_url]

    def create_encrypted_input(self, contract_address: str, user_address: str) -> EncryptedInputBuilder:
        """Builder bound to the current instance.

        Raises:
            NotReady: If no instance is Ready
        """
        try:
            self.state_machine.require_state(InstanceState.READY)
        except ProtocolViolationError as e:
            raise NotReady(f"No ready FHE instance (state: {self.state.name})") from e
        instance = self._instance
        return instance.create_encrypted_input(contract_address, user_address,
                                               is_ready=lambda: self.is_current(instance))

    def reset(self) -> None:
        """Drop the published instance and cancel any resolution in flight."""
        if self._attempt is not None and not self._attempt.task.done():
            self._attempt.aborted = True
            self._attempt.task.cancel()
        self._attempt = None
        self._instance = None
        self._instance_key = None
        if self.state != InstanceState.IDLE:
            self.state_machine.transition_to(InstanceState.IDLE, {"reason": "reset"})

    async def aclose(self) -> None:
        self.reset()
        for client in self._clients.values():
            await client.aclose()
        self._clients.clear()
