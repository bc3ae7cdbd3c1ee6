"""
HD Key Tree keyring: accounts derived from one BIP39 mnemonic.

Standard path: ``{hd_path}/{index}`` with ``hd_path`` defaulting to
``m/44'/60'/0'/0``. Never log the mnemonic or derived keys.
"""
import logging
from typing import Optional

from eth_account import Account
from mnemonic import Mnemonic

from ..exceptions import InvalidSeedError
from .base import LocalKeyring

logger = logging.getLogger("navigator.keyring")

# Required to use mnemonic derivation in eth-account
Account.enable_unaudited_hdwallet_features()

DEFAULT_HD_PATH = "m/44'/60'/0'/0"
_WORDLIST = "english"


def validate_mnemonic(words: str) -> bool:
    """Check a phrase against the BIP39 english wordlist and checksum."""
    if not isinstance(words, str) or not words.strip():
        return False
    return Mnemonic(_WORDLIST).check(" ".join(words.split()))


def generate_mnemonic(strength: int = 128) -> str:
    """Return a fresh BIP39 phrase (12 words for 128 bits)."""
    return Mnemonic(_WORDLIST).generate(strength=strength)


class HDKeyring(LocalKeyring):
    """Deterministic keyring.

    Options (also the serialized form):
        mnemonic: BIP39 phrase; generated on first ``add_accounts`` if absent.
        number_of_accounts: accounts to derive on load.
        hd_path: parent derivation path.

    HD keyrings do not support removing single accounts.
    """

    type = "HD Key Tree"

    def __init__(self, opts: Optional[dict] = None) -> None:
        super().__init__()
        self.mnemonic: Optional[str] = None
        self.hd_path = DEFAULT_HD_PATH
        self._load(opts or {})

    def _load(self, opts: dict) -> None:
        self._wallets = []
        self.mnemonic = None
        self.hd_path = opts.get("hd_path") or DEFAULT_HD_PATH
        if opts.get("mnemonic"):
            self._init_from_mnemonic(opts["mnemonic"])
        count = int(opts.get("number_of_accounts") or 0)
        if count:
            self._derive(count)

    def _init_from_mnemonic(self, words: str) -> None:
        if not validate_mnemonic(words):
            raise InvalidSeedError("Seed phrase is invalid.")
        self.mnemonic = " ".join(words.split())

    def _derive(self, n: int) -> list[str]:
        if self.mnemonic is None:
            self._init_from_mnemonic(generate_mnemonic())
        start = len(self._wallets)
        new_wallets = [
            Account.from_mnemonic(
                self.mnemonic, account_path=f"{self.hd_path}/{index}",
            )
            for index in range(start, start + n)
        ]
        self._wallets.extend(new_wallets)
        return [wallet.address for wallet in new_wallets]

    async def serialize(self) -> dict:
        return {
            "mnemonic": self.mnemonic,
            "number_of_accounts": len(self._wallets),
            "hd_path": self.hd_path,
        }

    async def deserialize(self, data: Optional[dict] = None) -> None:
        self._load(data or {})

    async def add_accounts(self, n: int = 1) -> list[str]:
        addresses = self._derive(n)
        logger.debug("%s derived %d account(s)", self.type, len(addresses))
        return addresses
