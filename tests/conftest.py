# fhevmclient test configuration
# Shared fixtures: fake engine bundle, fake relay, storage, signer and clock

import hashlib
import json
import secrets
from collections import Counter

import httpx
import pytest

from fhevmclient.config import FhevmConfig, NetworkConfig
from fhevmclient.core.engine_loader import EngineLoader
from fhevmclient.core.handles import FheType, build_handle, to_hex
from fhevmclient.core.public_key_cache import PublicKeyCache
from fhevmclient.core.signer import LocalAccountSigner
from fhevmclient.core.storage import InMemoryStorage

MOCK_CHAIN_ID = 31337
PROD_CHAIN_ID = 11155111
GATEWAY_CHAIN_ID = 55815
RELAY_URL = "https://relayer.test"
CONTRACT = "0x" + "aa" * 20
OTHER_CONTRACT = "0x" + "ab" * 20
USER = "0x" + "bb" * 20


class FakeEngineBundle:
    """Stands in for the external engine: 'ciphertexts' are JSON with a random nonce."""

    def __init__(self):
        self.encrypt_calls = 0

    def generate_keypair(self):
        return secrets.token_bytes(32), secrets.token_bytes(32)

    def encrypt(self, public_key, public_params, values, contract_address, user_address, chain_id):
        self.encrypt_calls += 1
        return json.dumps({
            "nonce": secrets.token_hex(16),
            "values": [[fhe_type.value, value] for fhe_type, value in values],
        }).encode()

    def decrypt_user_response(self, private_key, public_key, response, handles):
        return [response["values"][h] for h in handles]


class FakeRelay:
    """In-process relay served through httpx.MockTransport."""

    def __init__(self):
        self.calls = Counter()
        self.payloads = {}
        self.values = {}
        self.public = set()
        self.keyurl_failures = 0
        self.deny_user_decrypt = False

    @property
    def total_calls(self):
        return sum(self.calls.values())

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.calls[path] += 1
        if request.content:
            self.payloads[path] = json.loads(request.content)

        if path == "/v1/keyurl":
            if self.keyurl_failures:
                self.keyurl_failures -= 1
                return httpx.Response(503, text="service unavailable")
            return httpx.Response(200, json={"response": {
                "fhe_key_info": [{"fhe_public_key": {"data_id": "pk-1", "urls": [f"{RELAY_URL}/keys/pk-1"]}}],
                "crs": {"2048": {"data_id": "crs-1", "urls": [f"{RELAY_URL}/keys/crs-1"]}},
            }})

        if path.startswith("/keys/"):
            return httpx.Response(200, content=b"material:" + path.encode())

        if path == "/v1/input-proof":
            payload = self.payloads[path]
            batch = json.loads(bytes.fromhex(payload["ciphertextWithInputVerification"]))
            chain_id = int(payload["contractChainId"], 16)
            handles = []
            for index, (tag, value) in enumerate(batch["values"]):
                prefix = hashlib.sha256(bytes.fromhex(batch["nonce"]) + bytes([index])).digest()
                handle = to_hex(build_handle(prefix, index, chain_id, FheType(tag)))
                self.values[handle] = value
                handles.append(handle)
            return httpx.Response(200, json={"response": {"handles": handles, "signatures": ["0x" + "11" * 65]}})

        if path == "/v1/user-decrypt":
            if self.deny_user_decrypt:
                return httpx.Response(403, text="user is not allowed to decrypt")
            handles = [p["handle"] for p in self.payloads[path]["handleContractPairs"]]
            return httpx.Response(200, json={"response": {"values": {h: self.values[h] for h in handles}}})

        if path == "/v1/public-decrypt":
            handles = self.payloads[path]["ciphertextHandles"]
            if any(h not in self.public for h in handles):
                return httpx.Response(200, json={"status": "failure", "message": "handle is not allowed for public decryption"})
            word = b"".join(self.values[h].to_bytes(32, "big") for h in handles)
            return httpx.Response(200, json={"response": [{"decrypted_value": "0x" + word.hex(), "signatures": []}]})

        return httpx.Response(404, text="not found")


class FakeClock:
    def __init__(self, now=1_700_000_000):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture(autouse=True)
def reset_engine_loader():
    """Discard the process-wide engine bundle between tests."""
    EngineLoader.reset_shared()
    yield
    EngineLoader.reset_shared()


@pytest.fixture
def relay():
    return FakeRelay()


@pytest.fixture
def transport(relay):
    return httpx.MockTransport(relay.handler)


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def signer():
    return LocalAccountSigner.create()


@pytest.fixture
def engine_bundle():
    return FakeEngineBundle()


@pytest.fixture
def engine_loader(engine_bundle):
    return EngineLoader(source=lambda: engine_bundle)


@pytest.fixture
def network():
    return NetworkConfig(
        chain_id=PROD_CHAIN_ID,
        relayer_url=RELAY_URL,
        gateway_chain_id=GATEWAY_CHAIN_ID,
        verifying_contract_decryption="0x" + "cc" * 20,
    )


@pytest.fixture
def config(network, engine_bundle):
    return FhevmConfig(networks={PROD_CHAIN_ID: network}, engine_source=lambda: engine_bundle)


@pytest.fixture
def key_cache(storage):
    return PublicKeyCache(storage)
