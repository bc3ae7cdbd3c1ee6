"""
Keyring contract.

A keyring owns an ordered list of accounts and signs on their behalf. All
operations are coroutines. ``remove_account`` is optional: keyrings that do
not define it cannot drop individual accounts.
"""
from abc import ABC, abstractmethod
from typing import Any, ClassVar

from eth_account import Account
from eth_account.messages import encode_defunct, encode_typed_data
from eth_account.signers.local import LocalAccount
from eth_utils import is_hexstr, keccak, to_bytes, to_hex

from ..exceptions import AccountNotFoundError, UnsupportedOperationError
from ..utils import normalize_address


def signed_transaction(tx: dict, raw_transaction: bytes, v: int, r: int, s: int) -> dict:
    """Return ``tx`` with its signature and serialized form attached."""
    signed = dict(tx)
    signed.update(
        v=v,
        r=r,
        s=s,
        raw_transaction=to_hex(raw_transaction),
        hash=to_hex(keccak(raw_transaction)),
    )
    return signed


def personal_message(message: str):
    """Build an EIP-191 signable from hex data, or from plain text."""
    if is_hexstr(message):
        return encode_defunct(hexstr=message)
    return encode_defunct(text=message)


class Keyring(ABC):
    """Base class for every key source."""

    type: ClassVar[str] = ""

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} type={self.type!r}>"

    @abstractmethod
    async def serialize(self) -> Any:
        """Return a JSON-compatible value that restores this keyring."""

    @abstractmethod
    async def deserialize(self, data: Any) -> None:
        """Load state produced by :meth:`serialize`."""

    @abstractmethod
    async def get_accounts(self) -> list[str]:
        ...

    @abstractmethod
    async def add_accounts(self, n: int = 1) -> list[str]:
        """Create ``n`` accounts and return the new addresses."""

    @abstractmethod
    async def sign_transaction(self, address: str, tx: dict) -> dict:
        ...

    async def sign_message(self, address: str, data: str) -> str:
        raise UnsupportedOperationError(f"{self.type} does not support sign_message")

    async def sign_personal_message(self, address: str, message: str) -> str:
        raise UnsupportedOperationError(f"{self.type} does not support sign_personal_message")

    async def sign_typed_data(self, address: str, typed_data: dict) -> str:
        raise UnsupportedOperationError(f"{self.type} does not support sign_typed_data")

    async def export_account(self, address: str) -> str:
        raise UnsupportedOperationError(f"{self.type} does not support export_account")

    async def close(self) -> None:
        """Release device connections; called when the keyring is discarded."""


class LocalKeyring(Keyring):
    """Keyring whose private keys live in process memory.

    Subclasses fill ``_wallets`` with eth_account ``LocalAccount`` objects.
    """

    def __init__(self) -> None:
        self._wallets: list[LocalAccount] = []

    async def get_accounts(self) -> list[str]:
        return [wallet.address for wallet in self._wallets]

    def _get_wallet_for_account(self, address: str) -> LocalAccount:
        target = normalize_address(address)
        for wallet in self._wallets:
            if wallet.address == target:
                return wallet
        raise AccountNotFoundError(
            f"{self.type} - Unable to find matching address {target}"
        )

    async def sign_transaction(self, address: str, tx: dict) -> dict:
        wallet = self._get_wallet_for_account(address)
        signed = Account.sign_transaction(tx, wallet.key)
        return signed_transaction(
            tx, signed.raw_transaction, signed.v, signed.r, signed.s,
        )

    async def sign_message(self, address: str, data: str) -> str:
        """Sign a raw 32-byte hash (eth_sign)."""
        wallet = self._get_wallet_for_account(address)
        signed = Account.unsafe_sign_hash(to_bytes(hexstr=data), wallet.key)
        return to_hex(signed.signature)

    async def sign_personal_message(self, address: str, message: str) -> str:
        wallet = self._get_wallet_for_account(address)
        signed = Account.sign_message(personal_message(message), wallet.key)
        return to_hex(signed.signature)

    async def sign_typed_data(self, address: str, typed_data: dict) -> str:
        wallet = self._get_wallet_for_account(address)
        signable = encode_typed_data(full_message=typed_data)
        signed = Account.sign_message(signable, wallet.key)
        return to_hex(signed.signature)

    async def export_account(self, address: str) -> str:
        """Return the private key as hex without prefix."""
        wallet = self._get_wallet_for_account(address)
        return bytes(wallet.key).hex()
