"""
Ledger Hardware keyring: private keys stay on the device.

Two derivation modes, chosen by ``hd_path``:

- legacy (any path except ``m/44'/60'/0'/0/0``): the device is unlocked once
  at ``hd_path`` and reveals an extended public key; addresses at
  ``{hd_path}/{i}`` are derived locally.
- BIP44 (``hd_path == m/44'/60'/0'/0/0``): every index is its own account
  ``m/44'/60'/{i}'/0/0`` and needs a device round-trip.

Everything the device signs is verified locally by recovering the signer
before it is returned.
"""
import logging
from typing import Any, Optional

import rlp
from bip_utils import Bip32ChainCode, Bip32KeyData, Bip32KeyError, Bip32Slip10Secp256k1
from eth_account import Account
from eth_account._utils.legacy_transactions import (
    encode_transaction,
    serializable_unsigned_transaction_from_dict,
)
from eth_utils import is_hexstr, keccak, to_checksum_address

from ..bridge.channel import BridgeChannel, WebSocketChannel
from ..bridge.config import BIP44_HD_PATH, BridgeConfig
from ..bridge.discovery import AccountPager, ActivityChecker
from ..bridge.transport import BridgeTransport
from ..exceptions import (
    AccountNotFoundError,
    DeviceError,
    SignatureVerificationError,
    UnknownAddressError,
    UnsupportedOperationError,
)
from ..models import DeviceAccount
from ..utils import normalize_address, strip_hex_prefix
from .base import Keyring, personal_message, signed_transaction

logger = logging.getLogger("navigator.keyring.bridge")


def to_ledger_path(path: str) -> str:
    """Ledger paths carry no ``m/`` root."""
    return path.replace("m/", "", 1) if path.startswith("m/") else path


def _to_int(value: Any) -> int:
    if isinstance(value, int):
        return value
    return int(strip_hex_prefix(str(value)) or "0", 16)


def _is_legacy_transaction(tx: dict) -> bool:
    tx_type = tx.get("type", 0)
    return "gasPrice" in tx and _to_int(tx_type) == 0


def public_key_to_address(public_key: bytes) -> str:
    """Checksummed address of a secp256k1 public key (33 or 65 bytes)."""
    if len(public_key) == 65:
        public_key = public_key[1:]
    return to_checksum_address(keccak(public_key)[-20:])


class LedgerBridgeKeyring(Keyring):
    """Keyring backed by a Ledger device behind a bridge channel.

    Options (also the serialized form): ``hd_path``, ``accounts``,
    ``bridge_url`` and ``implement_full_bip44`` (enables the gap check while
    paging in BIP44 mode).

    Args:
        opts: keyring options.
        channel: channel to the bridge; defaults to a websocket to
            ``bridge_url``.
        transport: ready transport, overrides ``channel``.
        activity_checker: coroutine answering whether an address has history.
        config: bridge settings.
    """

    type = "Ledger Hardware"

    def __init__(
        self,
        opts: Optional[dict] = None,
        channel: Optional[BridgeChannel] = None,
        transport: Optional[BridgeTransport] = None,
        activity_checker: Optional[ActivityChecker] = None,
        config: Optional[BridgeConfig] = None,
    ) -> None:
        self.config = config or BridgeConfig()
        self.network = self.config.network
        self.unlocked_account = 0
        self.paths: dict[str, int] = {}
        self.accounts: list[str] = []
        self._hdk: Optional[Bip32Slip10Secp256k1] = None
        self._channel = channel
        self._transport = transport
        self._own_transport = transport is None
        self.activity_checker = activity_checker or ActivityChecker(
            self.config.indexer_url, timeout=self.config.activity_timeout,
        )
        self._pager = AccountPager(
            self._address_for_index,
            per_page=self.config.per_page,
            has_history=self._has_history,
        )
        self._load(opts or {})

    def _load(self, opts: dict) -> None:
        hd_path = opts.get("hd_path") or self.config.hd_path
        if getattr(self, "hd_path", None) != hd_path:
            self._hdk = None
            self.paths = {}
        self.hd_path = hd_path
        bridge_url = opts.get("bridge_url") or self.config.bridge_url
        if self._own_transport and getattr(self, "bridge_url", None) != bridge_url:
            self._transport = None
        self.bridge_url = bridge_url
        self.accounts = [normalize_address(a) for a in opts.get("accounts") or []]
        self.implement_full_bip44 = bool(opts.get("implement_full_bip44", False))

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    async def serialize(self) -> dict:
        return {
            "hd_path": self.hd_path,
            "accounts": list(self.accounts),
            "bridge_url": self.bridge_url,
            "implement_full_bip44": self.implement_full_bip44,
        }

    async def deserialize(self, data: Optional[dict] = None) -> None:
        self._load(data or {})

    # ------------------------------------------------------------------
    # Device session
    # ------------------------------------------------------------------

    @property
    def transport(self) -> BridgeTransport:
        if self._transport is None:
            channel = self._channel or WebSocketChannel(self.bridge_url)
            self._transport = BridgeTransport(
                channel, self.bridge_url, timeout=self.config.request_timeout,
            )
        return self._transport

    @property
    def page(self) -> int:
        return self._pager.page

    @property
    def per_page(self) -> int:
        return self._pager.per_page

    def is_unlocked(self) -> bool:
        return self._hdk is not None

    def set_account_to_unlock(self, index: int) -> None:
        self.unlocked_account = int(index)

    def set_hd_path(self, hd_path: str) -> None:
        # cached indexes belong to the previous path
        if self.hd_path != hd_path:
            self._hdk = None
            self.paths = {}
        self.hd_path = hd_path

    def _is_bip44(self) -> bool:
        return self.hd_path == BIP44_HD_PATH

    def _get_path_for_index(self, index: int) -> str:
        if self._is_bip44():
            return f"m/44'/60'/{index}'/0/0"
        return f"{self.hd_path}/{index}"

    async def unlock(self, hd_path: Optional[str] = None) -> Optional[str]:
        """Unlock the device at ``hd_path`` or at the keyring path.

        The keyring-level unlock keeps the returned public key and chain code
        for local derivation; a per-index unlock only returns its address.

        Returns:
            The address reported by the device, or None when the keyring
            was already unlocked and no device call was made.
        """
        if self.is_unlocked() and not hd_path:
            return None
        path = to_ledger_path(hd_path or self.hd_path)
        payload = await self.transport.send("ledger-unlock", {"hdPath": path})
        try:
            if hd_path is None:
                self._hdk = Bip32Slip10Secp256k1.FromPublicKey(
                    bytes.fromhex(strip_hex_prefix(payload["publicKey"])),
                    Bip32KeyData(
                        chain_code=Bip32ChainCode(
                            bytes.fromhex(strip_hex_prefix(payload["chainCode"]))
                        )
                    ),
                )
            address = payload.get("address")
        except (AttributeError, Bip32KeyError, KeyError, TypeError, ValueError) as err:
            raise DeviceError("Malformed unlock reply", payload=payload) from err
        return normalize_address(address) if address else None

    def forget_device(self) -> None:
        self.accounts = []
        self._pager.reset()
        self.unlocked_account = 0
        self.paths = {}
        self._hdk = None

    async def close(self) -> None:
        if self._transport is not None:
            await self._transport.close()

    # ------------------------------------------------------------------
    # Derivation
    # ------------------------------------------------------------------

    def _address_from_index(self, index: int) -> str:
        if self._hdk is None:
            raise DeviceError("Device is locked")
        child = self._hdk.ChildKey(index)
        return public_key_to_address(child.PublicKey().RawUncompressed().ToBytes())

    async def _address_for_index(self, index: int) -> str:
        if self._is_bip44():
            address = await self.unlock(self._get_path_for_index(index))
            if address is None:
                raise DeviceError(f"Device returned no address for index {index}")
        else:
            address = self._address_from_index(index)
        self.paths[address] = index
        return address

    async def _index_for_address(self, address: str) -> int:
        checksummed = normalize_address(address)
        index = self.paths.get(checksummed)
        if index is None:
            for candidate in range(self.config.max_index):
                if await self._address_for_index(candidate) == checksummed:
                    index = candidate
                    break
        if index is None:
            raise UnknownAddressError(f"Unknown address {checksummed}")
        return index

    async def path_for_address(self, address: str) -> str:
        """Derivation path of an address: cached index first, bounded scan otherwise."""
        await self.unlock()
        return self._get_path_for_index(await self._index_for_address(address))

    async def _has_history(self, address: str) -> bool:
        if not (self._is_bip44() and self.implement_full_bip44):
            return True
        return await self.activity_checker(address)

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    async def get_accounts(self) -> list[str]:
        return list(self.accounts)

    async def add_accounts(self, n: int = 1) -> list[str]:
        """Add ``n`` accounts starting at the index chosen with
        :meth:`set_account_to_unlock`, then move that index past them."""
        await self.unlock()
        start = self.unlocked_account
        new_accounts = []
        for index in range(start, start + n):
            address = await self._address_for_index(index)
            if address not in self.accounts:
                self.accounts.append(address)
                new_accounts.append(address)
        self.unlocked_account = start + n
        self._pager.reset()
        logger.debug("%s added %d account(s) from index %d", self.type, len(new_accounts), start)
        return new_accounts

    async def remove_account(self, address: str) -> None:
        target = normalize_address(address)
        if target not in self.accounts:
            raise AccountNotFoundError(f"Address {target} not found in this keyring")
        self.accounts = [a for a in self.accounts if a != target]

    async def get_first_page(self) -> list[DeviceAccount]:
        await self.unlock()
        return await self._pager.first_page()

    async def get_next_page(self) -> list[DeviceAccount]:
        await self.unlock()
        return await self._pager.next_page()

    async def get_previous_page(self) -> list[DeviceAccount]:
        await self.unlock()
        return await self._pager.previous_page()

    # ------------------------------------------------------------------
    # Signing
    # ------------------------------------------------------------------

    async def sign_transaction(self, address: str, tx: dict) -> dict:
        """Have the device sign a legacy transaction and verify the result."""
        if not _is_legacy_transaction(tx):
            raise UnsupportedOperationError(
                "Only legacy (gasPrice) transactions are supported on this device"
            )
        signer = normalize_address(address)
        hd_path = to_ledger_path(await self.path_for_address(signer))
        unsigned = serializable_unsigned_transaction_from_dict(
            {k: v for k, v in tx.items() if k not in ("from", "type")}
        )
        payload = await self.transport.send(
            "ledger-sign-transaction",
            {"tx": rlp.encode(unsigned).hex(), "hdPath": hd_path},
        )
        try:
            v, r, s = _to_int(payload["v"]), _to_int(payload["r"]), _to_int(payload["s"])
            raw = encode_transaction(unsigned, vrs=(v, r, s))
            recovered = Account.recover_transaction(raw)
        except (KeyError, TypeError, ValueError) as err:
            raise SignatureVerificationError(
                "The transaction signature is not valid"
            ) from err
        if normalize_address(recovered) != signer:
            raise SignatureVerificationError(
                f"Transaction signed by {recovered}, expected {signer}"
            )
        logger.debug("Device signature verified for %s", signer)
        return signed_transaction(tx, raw, v, r, s)

    async def sign_personal_message(self, address: str, message: str) -> str:
        signer = normalize_address(address)
        hd_path = to_ledger_path(await self.path_for_address(signer))
        body = (
            strip_hex_prefix(message) if is_hexstr(message)
            else message.encode("utf-8").hex()
        )
        payload = await self.transport.send(
            "ledger-sign-personal-message",
            {"hdPath": hd_path, "message": body},
        )
        try:
            v, r, s = _to_int(payload["v"]), _to_int(payload["r"]), _to_int(payload["s"])
            # v stays 27/28 as reported: recover_message and eth_sign callers expect it
            signature = f"0x{r:064x}{s:064x}{v:02x}"
            recovered = Account.recover_message(
                personal_message(message), signature=signature,
            )
        except (KeyError, TypeError, ValueError) as err:
            raise SignatureVerificationError(
                "The message signature is not valid"
            ) from err
        if normalize_address(recovered) != signer:
            raise SignatureVerificationError(
                f"Message signed by {recovered}, expected {signer}"
            )
        return signature

    async def sign_message(self, address: str, data: str) -> str:
        raise UnsupportedOperationError("Not supported on this device")

    async def sign_typed_data(self, address: str, typed_data: dict) -> str:
        raise UnsupportedOperationError("Not supported on this device")

    async def export_account(self, address: str) -> str:
        raise UnsupportedOperationError("Not supported on this device")
