"""
Configuration for fhevmclient sessions.

Networks are described by NetworkConfig entries keyed by chain id. Chains
listed in ``mock_chains`` are served by the local simulation engine and never
contact a relay.
"""

import os
from dataclasses import dataclass, field
from typing import Dict, Optional

from eth_utils import is_address

# Local hardhat / anvil node
DEFAULT_MOCK_CHAINS: Dict[int, str] = {31337: "http://localhost:8545"}

# A decryption signature stays valid for this many days once issued
DEFAULT_DURATION_DAYS = 365

DEFAULT_REQUEST_TIMEOUT = 30.0

# Placeholder verifier address for the local simulation
MOCK_VERIFYING_CONTRACT_DECRYPTION = "0x5ffdaaab0d73a0e5d1d2e4d7c4b5d1b2c5e6f7a8"


@dataclass
class NetworkConfig:
    """Relay and verifier contract locations for one production chain."""
    chain_id: int
    relayer_url: str
    gateway_chain_id: int
    verifying_contract_decryption: str
    verifying_contract_input: str = ""
    acl_address: str = ""
    kms_address: str = ""

    def __post_init__(self):
        if not is_address(self.verifying_contract_decryption):
            raise ValueError(f"Chain {self.chain_id} needs a valid decryption verifier address, "
                             f"got {self.verifying_contract_decryption!r}")
        for name in ('verifying_contract_input', 'acl_address', 'kms_address'):
            value = getattr(self, name)
            if value and not is_address(value):
                raise ValueError(f"Invalid {name} for chain {self.chain_id}: {value!r}")


@dataclass
class FhevmConfig:
    """
    Session-wide settings.

    Attributes:
        networks: Production networks keyed by chain id
        mock_chains: Chain id -> RPC url for chains served by the local simulation
        engine_source: Callable or "module:attribute" path producing the engine bundle
        duration_days: Lifetime of newly issued decryption signatures
        request_timeout: Timeout in seconds for relay and RPC calls
        storage_path: JSON file backing the persistent cache (in-memory when None)
    """
    networks: Dict[int, NetworkConfig] = field(default_factory=dict)
    mock_chains: Dict[int, str] = field(default_factory=lambda: dict(DEFAULT_MOCK_CHAINS))
    engine_source: Optional[object] = None
    duration_days: int = DEFAULT_DURATION_DAYS
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    storage_path: Optional[str] = None

    def __post_init__(self):
        if self.duration_days <= 0:
            raise ValueError(f"duration_days must be positive, got {self.duration_days}")
        if self.request_timeout <= 0:
            raise ValueError(f"request_timeout must be positive, got {self.request_timeout}")

    def is_mock_chain(self, chain_id: int, overrides: Optional[Dict[int, str]] = None) -> bool:
        return chain_id in self.merged_mock_chains(overrides)

    def merged_mock_chains(self, overrides: Optional[Dict[int, str]] = None) -> Dict[int, str]:
        merged = dict(self.mock_chains)
        if overrides:
            merged.update({int(k): v for k, v in overrides.items()})
        return merged

    def network(self, chain_id: int) -> NetworkConfig:
        if chain_id not in self.networks:
            raise KeyError(f"No network configured for chain id {chain_id}")
        return self.networks[chain_id]

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> 'FhevmConfig':
        """Build a configuration from FHEVM_* environment variables.

        FHEVM_MOCK_CHAINS uses the form ``31337=http://localhost:8545,1337=...``.
        A single production network is configured when FHEVM_CHAIN_ID and
        FHEVM_RELAYER_URL are both set.
        """
        env = os.environ if environ is None else environ
        config = cls()

        mock_entries = env.get("FHEVM_MOCK_CHAINS")
        if mock_entries:
            mock_chains = {}
            for entry in mock_entries.split(","):
                entry = entry.strip()
                if not entry:
                    continue
                chain, _, url = entry.partition("=")
                mock_chains[int(chain)] = url or DEFAULT_MOCK_CHAINS.get(int(chain), "")
            config.mock_chains = mock_chains

        if env.get("FHEVM_CHAIN_ID") and env.get("FHEVM_RELAYER_URL"):
            chain_id = int(env["FHEVM_CHAIN_ID"])
            config.networks[chain_id] = NetworkConfig(
                chain_id=chain_id,
                relayer_url=env["FHEVM_RELAYER_URL"].rstrip("/"),
                gateway_chain_id=int(env.get("FHEVM_GATEWAY_CHAIN_ID", chain_id)),
                verifying_contract_decryption=env.get("FHEVM_VERIFYING_CONTRACT_DECRYPTION", ""),
                verifying_contract_input=env.get("FHEVM_VERIFYING_CONTRACT_INPUT", ""),
                acl_address=env.get("FHEVM_ACL_ADDRESS", ""),
                kms_address=env.get("FHEVM_KMS_ADDRESS", ""),
            )

        config.engine_source = env.get("FHEVM_ENGINE_SOURCE") or None
        if env.get("FHEVM_SIGNATURE_DURATION_DAYS"):
            config.duration_days = int(env["FHEVM_SIGNATURE_DURATION_DAYS"])
        if env.get("FHEVM_REQUEST_TIMEOUT"):
            config.request_timeout = float(env["FHEVM_REQUEST_TIMEOUT"])
        config.storage_path = env.get("FHEVM_STORAGE_PATH") or None
        config.__post_init__()
        return config
