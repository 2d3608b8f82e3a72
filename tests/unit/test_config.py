"""
Unit tests for configuration loading.
"""

import pytest

from fhevmclient.config import DEFAULT_DURATION_DAYS, FhevmConfig, NetworkConfig


class TestFhevmConfig:

    def test_defaults(self):
        config = FhevmConfig()
        assert config.is_mock_chain(31337)
        assert not config.is_mock_chain(1)
        assert config.duration_days == DEFAULT_DURATION_DAYS
        assert config.storage_path is None

    def test_overrides_are_merged(self):
        config = FhevmConfig()
        merged = config.merged_mock_chains({"1337": "http://localhost:9545"})
        assert merged == {31337: "http://localhost:8545", 1337: "http://localhost:9545"}
        assert config.mock_chains == {31337: "http://localhost:8545"}

    @pytest.mark.parametrize("kwargs", [{"duration_days": 0}, {"request_timeout": -1}])
    def test_invalid_values(self, kwargs):
        with pytest.raises(ValueError):
            FhevmConfig(**kwargs)

    def test_unknown_network(self):
        with pytest.raises(KeyError):
            FhevmConfig().network(1)

    def test_from_env(self):
        config = FhevmConfig.from_env({
            "FHEVM_MOCK_CHAINS": "31337=http://127.0.0.1:8545, 1337=http://127.0.0.1:9545",
            "FHEVM_CHAIN_ID": "11155111",
            "FHEVM_RELAYER_URL": "https://relayer.test/",
            "FHEVM_GATEWAY_CHAIN_ID": "55815",
            "FHEVM_VERIFYING_CONTRACT_DECRYPTION": "0x" + "cc" * 20,
            "FHEVM_ENGINE_SOURCE": "my_engine:bundle",
            "FHEVM_SIGNATURE_DURATION_DAYS": "30",
            "FHEVM_REQUEST_TIMEOUT": "5",
            "FHEVM_STORAGE_PATH": "/tmp/fhevm.json",
        })

        assert config.mock_chains == {31337: "http://127.0.0.1:8545", 1337: "http://127.0.0.1:9545"}
        network = config.network(11155111)
        assert network.relayer_url == "https://relayer.test"
        assert network.gateway_chain_id == 55815
        assert config.engine_source == "my_engine:bundle"
        assert config.duration_days == 30
        assert config.request_timeout == 5.0
        assert config.storage_path == "/tmp/fhevm.json"

    def test_from_env_rejects_bad_duration(self):
        with pytest.raises(ValueError):
            FhevmConfig.from_env({"FHEVM_SIGNATURE_DURATION_DAYS": "0"})

    def test_from_env_requires_decryption_verifier(self):
        with pytest.raises(ValueError):
            FhevmConfig.from_env({"FHEVM_CHAIN_ID": "11155111", "FHEVM_RELAYER_URL": "https://relayer.test"})


class TestNetworkConfig:

    @pytest.mark.parametrize("kwargs", [
        {"verifying_contract_decryption": ""},
        {"verifying_contract_decryption": "0x1234"},
        {"verifying_contract_decryption": "0x" + "cc" * 20, "acl_address": "not-an-address"},
    ])
    def test_invalid_addresses(self, kwargs):
        with pytest.raises(ValueError):
            NetworkConfig(chain_id=11155111, relayer_url="https://relayer.test", gateway_chain_id=55815, **kwargs)

    def test_optional_addresses_may_be_empty(self):
        network = NetworkConfig(chain_id=11155111, relayer_url="https://relayer.test", gateway_chain_id=55815,
                                verifying_contract_decryption="0x" + "cc" * 20)
        assert network.acl_address == ""
