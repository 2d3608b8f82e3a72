"""
Core components of fhevmclient.
"""

from .handles import FheType, normalize_handle, handle_type, to_hex
from .storage import GenericStringStorage, InMemoryStorage, JsonFileStorage
from .benchmark_manager import BenchmarkManager, BenchmarkProfile
from .protocol_state import (
    InstanceState,
    InstanceStateMachine,
    StateTransitionError,
    ProtocolViolationError
)
from .engine_loader import EngineLoader
from .public_key_cache import PublicKeyCache, PublicKeySet
from .signer import Signer, LocalAccountSigner
from .encrypted_input import (
    EncryptedInput,
    EncryptedInputBuilder,
    get_encryption_method,
    build_params_from_abi
)
from .decryption_signature import DecryptionSignature, DecryptionSignatureManager
from .decryption import DecryptRequest, DecryptionExecutor
from .instance_resolver import InstanceResolver, ResolveOutcome, ResolveStatus

__all__ = [
    'FheType',
    'normalize_handle',
    'handle_type',
    'to_hex',
    'GenericStringStorage',
    'InMemoryStorage',
    'JsonFileStorage',
    'BenchmarkManager',
    'BenchmarkProfile',
    'InstanceState',
    'InstanceStateMachine',
    'StateTransitionError',
    'ProtocolViolationError',
    'EngineLoader',
    'PublicKeyCache',
    'PublicKeySet',
    'Signer',
    'LocalAccountSigner',
    'EncryptedInput',
    'EncryptedInputBuilder',
    'get_encryption_method',
    'build_params_from_abi',
    'DecryptionSignature',
    'DecryptionSignatureManager',
    'DecryptRequest',
    'DecryptionExecutor',
    'InstanceResolver',
    'ResolveOutcome',
    'ResolveStatus',
]
