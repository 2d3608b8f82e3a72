"""
Unit tests for relay error mapping.
"""

import httpx
import pytest

from fhevmclient.errors import AccessDenied, NetworkError
from fhevmclient.fhe.relayer_client import RelayerClient

from conftest import RELAY_URL


def client_for(handler):
    return RelayerClient(RELAY_URL, transport=httpx.MockTransport(handler))


class TestErrorMapping:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [401, 403])
    async def test_auth_statuses_are_denials(self, status):
        async with client_for(lambda r: httpx.Response(status, text="nope")) as client:
            with pytest.raises(AccessDenied):
                await client.user_decrypt({})

    @pytest.mark.asyncio
    async def test_server_error_is_network_error(self):
        async with client_for(lambda r: httpx.Response(500, text="internal error")) as client:
            with pytest.raises(NetworkError) as exc_info:
                await client.public_decrypt({})
        assert exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_denial_message_in_error_body(self):
        async with client_for(lambda r: httpx.Response(400, text="Handle is not authorized for user")) as client:
            with pytest.raises(AccessDenied):
                await client.user_decrypt({})

    @pytest.mark.asyncio
    async def test_failure_status(self):
        body = {"status": "failure", "message": "gateway timeout"}
        async with client_for(lambda r: httpx.Response(200, json=body)) as client:
            with pytest.raises(NetworkError):
                await client.public_decrypt({})

    @pytest.mark.asyncio
    async def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        async with client_for(handler) as client:
            with pytest.raises(NetworkError):
                await client.user_decrypt({})

    @pytest.mark.asyncio
    @pytest.mark.parametrize("response", [
        httpx.Response(200, text="<html>"),
        httpx.Response(200, json={"result": 1}),
    ])
    async def test_malformed_bodies(self, response):
        async with client_for(lambda r: response) as client:
            with pytest.raises(NetworkError):
                await client.user_decrypt({})

    @pytest.mark.asyncio
    async def test_input_proof_requires_handles(self):
        async with client_for(lambda r: httpx.Response(200, json={"response": {"signatures": []}})) as client:
            with pytest.raises(NetworkError):
                await client.input_proof({})

    @pytest.mark.asyncio
    async def test_envelope_is_unwrapped(self):
        async with client_for(lambda r: httpx.Response(200, json={"response": {"ok": True}})) as client:
            assert await client.user_decrypt({}) == {"ok": True}
