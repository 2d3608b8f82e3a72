from typing import Any, Dict, List, Tuple
import asyncio
import logging

from ..config import NetworkConfig
from ..core.encrypted_input import EncryptedInput, TypedValue
from ..core.handles import (HANDLE_SIZE, Cleartext, from_hex, normalize_address, normalize_handle,
                            to_cleartext, to_hex)
from ..core.public_key_cache import PublicKeySet
from ..errors import NetworkError
from .base_instance import BaseFhevmInstance, InstanceKind
from .relayer_client import RelayerClient

EXTRA_DATA = "0x00"


def _strip0x(value: str) -> str:
    return value[2:] if value.startswith(("0x", "0X")) else value


class RelayerFhevmInstance(BaseFhevmInstance):
    """
    Production instance: encryption runs in the engine bundle with the chain's
    public key, proofs and decryptions go through the relay.

    The engine bundle must provide ``generate_keypair()``,
    ``encrypt(public_key, public_params, values, contract_address, user_address, chain_id)``
    and ``decrypt_user_response(private_key, public_key, response, handles)``.
    """
    kind = InstanceKind.PRODUCTION

    def __init__(self, network: NetworkConfig, public_keys: PublicKeySet, bundle: Any,
                 client: RelayerClient, benchmark_manager: Any = None):
        super().__init__(network.chain_id, key_id=public_keys.public_key_id,
                         verifying_contract=network.verifying_contract_decryption,
                         eip712_chain_id=network.gateway_chain_id,
                         benchmark_manager=benchmark_manager)
        self.network = network
        self.public_keys = public_keys
        self.bundle = bundle
        self.client = client
        logging.getLogger(__name__).info(
            f"Relayer FHE instance created for chain {network.chain_id} (key {public_keys.public_key_id})"
        )

    def generate_keypair(self) -> Tuple[str, str]:
        public_key, private_key = self.bundle.generate_keypair()
        return to_hex(public_key), to_hex(private_key)

    async def encrypt_batch(self, contract_address: str, user_address: str,
                            values: List[TypedValue]) -> EncryptedInput:
        ciphertext = await asyncio.to_thread(
            self.bundle.encrypt, self.public_keys.public_key, self.public_keys.public_params,
            values, contract_address, user_address, self.chain_id,
        )
        result = await self.client.input_proof({
            "contractAddress": contract_address,
            "userAddress": user_address,
            "ciphertextWithInputVerification": _strip0x(to_hex(ciphertext)),
            "contractChainId": hex(self.chain_id),
            "extraData": EXTRA_DATA,
        })

        handles = [from_hex(h) for h in result.get("handles", [])]
        signatures = [from_hex(s) for s in result.get("signatures", [])]
        if len(handles) != len(values) or any(len(h) != HANDLE_SIZE for h in handles):
            raise NetworkError(f"Relay returned {len(handles)} handles for {len(values)} values")
        if not signatures:
            raise NetworkError("Relay returned an input proof without coprocessor signatures")

        proof = (bytes([len(handles), len(signatures)])
                 + b"".join(handles)
                 + b"".join(signatures)
                 + from_hex(EXTRA_DATA))
        return EncryptedInput(handles=handles, input_proof=proof)

    async def user_decrypt(self, requests, private_key, public_key, signature, contract_addresses,
                           user_address, start_timestamp, duration_days) -> Dict[str, Cleartext]:
        handles = [normalize_handle(r.handle) for r in requests]
        payload = {
            "handleContractPairs": [
                {"handle": h, "contractAddress": normalize_address(r.contract_address)}
                for h, r in zip(handles, requests)
            ],
            "requestValidity": {
                "startTimestamp": str(int(start_timestamp)),
                "durationDays": str(int(duration_days)),
            },
            "contractsChainId": str(self.chain_id),
            "contractAddresses": [normalize_address(a) for a in contract_addresses],
            "userAddress": normalize_address(user_address),
            "signature": _strip0x(signature),
            "publicKey": _strip0x(public_key),
            "extraData": EXTRA_DATA,
        }
        response = await self.client.user_decrypt(payload)
        values = await asyncio.to_thread(
            self.bundle.decrypt_user_response, private_key, public_key, response, handles
        )
        if len(values) != len(handles):
            raise NetworkError(f"Relay answered {len(values)} values for {len(handles)} handles")

        return {h: to_cleartext(h, int(v)) for h, v in zip(handles, values)}

    async def public_decrypt(self, requests) -> Dict[str, Cleartext]:
        handles = [normalize_handle(r.handle) for r in requests]
        response = await self.client.public_decrypt({
            "ciphertextHandles": handles,
            "extraData": EXTRA_DATA,
        })
        try:
            decrypted = from_hex(response[0]["decrypted_value"])
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise NetworkError(f"Malformed public decryption response: {e}") from e

        # ABI-encoded words, one per handle, in request order
        if len(decrypted) < 32 * len(handles):
            raise NetworkError(f"Public decryption returned {len(decrypted)} bytes for {len(handles)} handles")
        results = {}
        for i, handle in enumerate(handles):
            word = int.from_bytes(decrypted[32 * i:32 * (i + 1)], "big")
            results[handle] = to_cleartext(handle, word)

        return results
