"""Simple Key Pair keyring: independent random private keys held in memory."""
import logging
from typing import Optional

from eth_account import Account

from ..exceptions import AccountNotFoundError
from ..utils import normalize_address, strip_hex_prefix
from .base import LocalKeyring

logger = logging.getLogger("navigator.keyring")


class SimpleKeyring(LocalKeyring):
    """Keyring of imported or randomly generated private keys.

    Serialized form is the list of private keys as hex without prefix.
    """

    type = "Simple Key Pair"

    def __init__(self, opts: Optional[list[str]] = None) -> None:
        super().__init__()
        self._load(opts or [])

    def _load(self, private_keys: list[str]) -> None:
        self._wallets = [
            Account.from_key(bytes.fromhex(strip_hex_prefix(key)))
            for key in private_keys
        ]

    async def serialize(self) -> list[str]:
        return [bytes(wallet.key).hex() for wallet in self._wallets]

    async def deserialize(self, data: Optional[list[str]] = None) -> None:
        self._load(data or [])

    async def add_accounts(self, n: int = 1) -> list[str]:
        new_wallets = [Account.create() for _ in range(n)]
        self._wallets.extend(new_wallets)
        return [wallet.address for wallet in new_wallets]

    async def remove_account(self, address: str) -> None:
        target = normalize_address(address)
        remaining = [w for w in self._wallets if w.address != target]
        if len(remaining) == len(self._wallets):
            raise AccountNotFoundError(
                f"Address {target} not found in this keyring"
            )
        self._wallets = remaining
        logger.debug("%s removed account %s", self.type, target)
