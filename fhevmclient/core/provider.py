"""
Chain detection for the providers accepted by the resolver.

A provider is either an RPC url, or an object exposing ``chain_id`` (an int
attribute) or ``get_chain_id()`` (plain or coroutine function).
"""

import inspect
import logging
from typing import Any, Optional

import httpx

from ..errors import NetworkError, NoProvider


def provider_key(provider: Any) -> str:
    """Stable identity of a provider for single-flight bookkeeping."""
    if isinstance(provider, str):
        return provider.rstrip("/").lower()
    return f"{type(provider).__name__}@{id(provider):x}"


async def detect_chain_id(provider: Any, timeout: float = 30.0,
                          transport: Optional[httpx.AsyncBaseTransport] = None) -> int:
    """Ask the provider which chain it is connected to.

    Raises:
        NoProvider: If provider is None
        NetworkError: If the chain id cannot be obtained
    """
    if provider is None:
        raise NoProvider("No provider supplied")

    if isinstance(provider, str):
        payload = {"jsonrpc": "2.0", "id": 1, "method": "eth_chainId", "params": []}
        try:
            async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
                response = await client.post(provider, json=payload)
                response.raise_for_status()
                body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise NetworkError(f"eth_chainId request to {provider} failed: {e}") from e
        if "result" not in body:
            raise NetworkError(f"eth_chainId request to {provider} returned an error: {body.get('error')}")
        chain_id = int(body["result"], 16)
        logging.getLogger(__name__).debug(f"Provider {provider} reports chain {chain_id}")
        return chain_id

    chain_id = getattr(provider, "chain_id", None)
    if isinstance(chain_id, int):
        return chain_id

    getter = getattr(provider, "get_chain_id", None)
    if getter is None:
        raise NetworkError(f"Cannot detect the chain of provider {provider!r}")
    try:
        result = getter()
        if inspect.isawaitable(result):
            result = await result
        return int(result)
    except NetworkError:
        raise
    except Exception as e:
        raise NetworkError(f"Chain detection failed: {e}") from e
