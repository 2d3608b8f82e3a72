"""
Wallet signing boundary.

A signer exposes the user's address and a coroutine that signs EIP-712 typed
data. Real wallets suspend until the user approves or rejects the prompt;
LocalAccountSigner signs immediately with a private key held in-process.
"""

import asyncio
import logging
from typing import Any, Dict, Optional, Protocol, runtime_checkable

from eth_account import Account
from eth_account.messages import encode_typed_data


@runtime_checkable
class Signer(Protocol):
    address: str

    async def sign_typed_data(self, typed_data: Dict[str, Any]) -> str:
        ...


class LocalAccountSigner:
    """Signer backed by an eth_account LocalAccount."""

    def __init__(self, private_key: str, sign_delay: float = 0.0):
        self._account = Account.from_key(private_key)
        self.address = self._account.address
        self.sign_delay = sign_delay
        self.sign_count = 0

    @classmethod
    def create(cls, sign_delay: float = 0.0) -> 'LocalAccountSigner':
        account = Account.create()
        return cls("0x" + bytes(account.key).hex(), sign_delay=sign_delay)

    async def sign_typed_data(self, typed_data: Dict[str, Any]) -> str:
        self.sign_count += 1
        if self.sign_delay:
            await asyncio.sleep(self.sign_delay)
        signed = self._account.sign_message(encode_typed_data(full_message=typed_data))
        logging.getLogger(__name__).debug(f"Signed {typed_data.get('primaryType')} for {self.address}")
        return "0x" + bytes(signed.signature).hex()


def recover_typed_data_signer(typed_data: Dict[str, Any], signature: str) -> Optional[str]:
    """Return the address that produced ``signature`` over ``typed_data``, or None if unrecoverable."""
    try:
        return Account.recover_message(encode_typed_data(full_message=typed_data), signature=signature)
    except Exception as e:
        logging.getLogger(__name__).debug(f"Signature recovery failed: {e}")
        return None
