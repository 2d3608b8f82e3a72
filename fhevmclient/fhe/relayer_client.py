"""
HTTP client for the decryption relay.

Thin async wrapper over httpx: it serializes requests, unwraps the
``{"response": ...}`` envelope and maps refusals to AccessDenied and every
other failure to NetworkError.
"""

import logging
from typing import Any, Dict, List, Optional

import httpx

from ..core.public_key_cache import PublicKeySet
from ..errors import AccessDenied, KeyFetchFailed, NetworkError

_DENIAL_MARKERS = ("not allowed", "not authorized", "unauthorized", "forbidden")


class RelayerClient:
    def __init__(self, base_url: str, timeout: float = 30.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(base_url=self.base_url, timeout=timeout, transport=transport)
        self.logger = logging.getLogger(__name__)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> 'RelayerClient':
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    @staticmethod
    def _is_denial(status_code: int, body: str) -> bool:
        if status_code in (401, 403):
            return True
        lowered = body.lower()
        return any(marker in lowered for marker in _DENIAL_MARKERS)

    async def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        try:
            response = await self._client.request(method, path, json=payload)
        except httpx.HTTPError as e:
            raise NetworkError(f"Relay request {method} {path} failed: {e}") from e

        if response.status_code >= 400:
            if self._is_denial(response.status_code, response.text):
                raise AccessDenied(f"Relay refused {path}: {response.text[:200]}")
            raise NetworkError(f"Relay returned HTTP {response.status_code} for {path}: {response.text[:200]}")

        try:
            body = response.json()
        except ValueError as e:
            raise NetworkError(f"Relay returned invalid JSON for {path}") from e

        if isinstance(body, dict) and body.get("status") == "failure":
            message = str(body.get("message") or body.get("error") or body)
            if self._is_denial(200, message):
                raise AccessDenied(f"Relay refused {path}: {message}")
            raise NetworkError(f"Relay reported failure for {path}: {message}")

        if not isinstance(body, dict) or "response" not in body:
            raise NetworkError(f"Unexpected relay payload for {path}")
        return body["response"]

    async def download(self, url: str) -> bytes:
        try:
            response = await self._client.get(url)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise NetworkError(f"Download of {url} failed: {e}") from e
        return response.content

    async def fetch_public_key(self, chain_id: int) -> PublicKeySet:
        """Resolve the key URLs published by the relay and download the key material."""
        try:
            info = await self._request("GET", "/v1/keyurl")
            key_info = info["fhe_key_info"][0]["fhe_public_key"]
            public_key = await self.download(key_info["urls"][0])
            crs = info.get("crs", {}).get("2048")
            public_params = await self.download(crs["urls"][0]) if crs else b""
            return PublicKeySet(
                chain_id=chain_id,
                public_key_id=str(key_info["data_id"]),
                public_key=public_key,
                public_params_id=str(crs["data_id"]) if crs else "",
                public_params=public_params,
            )
        except (KeyError, IndexError, TypeError, AttributeError) as e:
            raise KeyFetchFailed(f"Malformed key information from relay: {e}") from e
        except (NetworkError, AccessDenied) as e:
            raise KeyFetchFailed(str(e)) from e

    async def input_proof(self, payload: Dict[str, Any]) -> Dict[str, List[str]]:
        result = await self._request("POST", "/v1/input-proof", payload)
        if not isinstance(result, dict) or "handles" not in result:
            raise NetworkError("Input proof response carries no handles")
        return result

    async def user_decrypt(self, payload: Dict[str, Any]) -> Any:
        return await self._request("POST", "/v1/user-decrypt", payload)

    async def public_decrypt(self, payload: Dict[str, Any]) -> Any:
        return await self._request("POST", "/v1/public-decrypt", payload)
