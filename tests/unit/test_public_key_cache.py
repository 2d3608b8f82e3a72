"""
Unit tests for the two-level public key cache and the relay key fetch.
"""

import asyncio

import pytest

from fhevmclient.core.public_key_cache import PublicKeyCache, PublicKeySet
from fhevmclient.core.storage import InMemoryStorage
from fhevmclient.errors import KeyFetchFailed
from fhevmclient.fhe.relayer_client import RelayerClient

from conftest import PROD_CHAIN_ID, RELAY_URL


def make_keys(chain_id=PROD_CHAIN_ID):
    return PublicKeySet(chain_id=chain_id, public_key_id="pk-1", public_key=b"\x01\x02",
                        public_params_id="crs-1", public_params=b"\x03")


class TestPublicKeyCache:

    @pytest.mark.asyncio
    async def test_fetch_writes_through_both_layers(self, storage):
        cache = PublicKeyCache(storage)
        fetched = []

        async def fetcher(chain_id):
            fetched.append(chain_id)
            return make_keys(chain_id)

        keys = await cache.get_or_fetch(PROD_CHAIN_ID, fetcher)
        again = await cache.get_or_fetch(PROD_CHAIN_ID, fetcher)

        assert keys == again
        assert fetched == [PROD_CHAIN_ID]
        assert storage.get(PublicKeyCache.storage_key(PROD_CHAIN_ID)) is not None

    @pytest.mark.asyncio
    async def test_persistent_layer_survives_new_cache(self, storage):
        PublicKeyCache(storage).put(PROD_CHAIN_ID, make_keys())

        async def fetcher(chain_id):
            raise AssertionError("network must not be touched")

        keys = await PublicKeyCache(storage).get_or_fetch(PROD_CHAIN_ID, fetcher)
        assert keys.public_key == b"\x01\x02"
        assert keys.public_params == b"\x03"

    @pytest.mark.asyncio
    async def test_concurrent_misses_fetch_once(self, storage):
        cache = PublicKeyCache(storage)
        fetched = []

        async def fetcher(chain_id):
            fetched.append(chain_id)
            await asyncio.sleep(0.01)
            return make_keys(chain_id)

        results = await asyncio.gather(*[cache.get_or_fetch(PROD_CHAIN_ID, fetcher) for _ in range(4)])
        assert len(fetched) == 1
        assert all(r == results[0] for r in results)

    @pytest.mark.asyncio
    async def test_fetch_failure_is_wrapped_and_retried(self, storage):
        cache = PublicKeyCache(storage)
        calls = []

        async def fetcher(chain_id):
            calls.append(chain_id)
            if len(calls) == 1:
                raise ConnectionError("relay unreachable")
            return make_keys(chain_id)

        with pytest.raises(KeyFetchFailed):
            await cache.get_or_fetch(PROD_CHAIN_ID, fetcher)
        assert cache.get(PROD_CHAIN_ID) is None

        assert (await cache.get_or_fetch(PROD_CHAIN_ID, fetcher)).public_key_id == "pk-1"

    def test_corrupt_entry_is_dropped(self):
        storage = InMemoryStorage({PublicKeyCache.storage_key(PROD_CHAIN_ID): "not json"})
        assert PublicKeyCache(storage).get(PROD_CHAIN_ID) is None
        assert storage.get(PublicKeyCache.storage_key(PROD_CHAIN_ID)) is None

    def test_entry_for_another_chain_is_dropped(self):
        storage = InMemoryStorage({PublicKeyCache.storage_key(PROD_CHAIN_ID): make_keys(1).to_json()})
        assert PublicKeyCache(storage).get(PROD_CHAIN_ID) is None


class TestRelayKeyFetch:

    @pytest.mark.asyncio
    async def test_fetch_public_key_downloads_material(self, relay, transport):
        async with RelayerClient(RELAY_URL, transport=transport) as client:
            keys = await client.fetch_public_key(PROD_CHAIN_ID)

        assert keys.public_key_id == "pk-1"
        assert keys.public_params_id == "crs-1"
        assert keys.public_key == b"material:/keys/pk-1"
        assert relay.calls["/v1/keyurl"] == 1

    @pytest.mark.asyncio
    async def test_relay_outage_is_key_fetch_failure(self, relay, transport):
        relay.keyurl_failures = 1
        async with RelayerClient(RELAY_URL, transport=transport) as client:
            with pytest.raises(KeyFetchFailed) as exc_info:
                await client.fetch_public_key(PROD_CHAIN_ID)
        assert exc_info.value.retryable
