"""
KeyringController: Vault lifecycle and account resolution.

Public operations:
- ``create_new_vault_and_keychain`` / ``create_new_vault_and_restore``
- ``submit_password`` (unlock) / ``set_locked`` (lock)
- ``add_new_keyring`` / ``add_new_account`` / ``remove_account``
- ``export_account`` and the ``sign_*`` family, resolved through
  ``get_keyring_for_account``

The session is either :class:`LockedSession` or :class:`UnlockedSession`;
only the latter holds a password and keyrings. Every operation that changes
the keyrings re-encrypts the whole keyring list before returning, and those
operations are serialized by a per-controller lock.

Security Note:
    Never log passwords, mnemonics or private keys. Only log keyring types,
    addresses and counts.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, ClassVar, Optional, Union

from .exceptions import (
    AccountNotFoundError,
    AuthenticationError,
    DuplicateAccountError,
    EmptyAccountError,
    InvalidSeedError,
    KeyringError,
    UnknownSourceKindError,
    UnsupportedOperationError,
    VaultLockedError,
)
from .keyrings import DEFAULT_KEYRING_BUILDERS, KeyringBuilder
from .keyrings.base import Keyring
from .keyrings.hd import HDKeyring, validate_mnemonic
from .keyrings.simple import SimpleKeyring
from .models import KeyringDisplay, KeyringEvent, SessionSnapshot
from .store import ObservableStore
from .utils import add_gas_buffer, normalize_address
from .vault.config import VaultConfig
from .vault.crypto import Encryptor

logger = logging.getLogger("navigator.keyring")

Observer = Callable[[KeyringEvent], None]


@dataclass(frozen=True)
class LockedSession:
    """No password, no keyrings."""

    is_unlocked: ClassVar[bool] = False
    keyrings: tuple = ()


@dataclass
class UnlockedSession:
    """Password plus the active keyrings, in vault order."""

    is_unlocked: ClassVar[bool] = True
    password: str
    keyrings: list[Keyring] = field(default_factory=list)

    def __repr__(self) -> str:
        return f"<UnlockedSession keyrings={len(self.keyrings)}>"


Session = Union[LockedSession, UnlockedSession]


def _check_password(password: Any) -> None:
    if not isinstance(password, str):
        raise TypeError("Password must be text.")


class KeyringController:
    """Owns the encrypted vault and the active keyrings.

    Args:
        init_state: initial persisted state, usually ``{"vault": <blob>}``.
        keyring_builders: extra keyring builders (see
            :func:`~navigator_keyring.keyrings.keyring_builder`); a builder
            for an existing type replaces the default one.
        encryptor: object with ``encrypt(password, records)`` and
            ``decrypt(password, blob)`` coroutines.
        config: vault settings.
    """

    def __init__(
        self,
        *,
        init_state: Optional[dict] = None,
        keyring_builders: Optional[list[KeyringBuilder]] = None,
        encryptor: Optional[Encryptor] = None,
        config: Optional[VaultConfig] = None,
    ):
        self.config = config or VaultConfig()
        self.keyring_builders: dict[str, KeyringBuilder] = {}
        for builder in (*DEFAULT_KEYRING_BUILDERS, *(keyring_builders or [])):
            self.keyring_builders[builder.type] = builder
        self.encryptor = encryptor or Encryptor(self.config)
        self.store = ObservableStore(init_state or {})
        self.mem_store = ObservableStore({
            "is_unlocked": False,
            "keyring_types": list(self.keyring_builders),
            "keyrings": [],
        })
        self._session: Session = LockedSession()
        self._lock = asyncio.Lock()
        self._observers: list[Observer] = []

    def __repr__(self) -> str:
        return f"<KeyringController unlocked={self.is_unlocked}>"

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def subscribe(self, observer: Observer) -> None:
        if observer not in self._observers:
            self._observers.append(observer)

    def unsubscribe(self, observer: Observer) -> bool:
        try:
            self._observers.remove(observer)
            return True
        except ValueError:
            return False

    def _emit(self, name: str, payload: Any = None) -> None:
        event = KeyringEvent(name=name, payload=payload)
        for observer in list(self._observers):
            observer(event)

    # ------------------------------------------------------------------
    # Session state
    # ------------------------------------------------------------------

    @property
    def is_unlocked(self) -> bool:
        return self._session.is_unlocked

    @property
    def keyrings(self) -> list[Keyring]:
        return list(self._session.keyrings)

    def _unlocked(self) -> UnlockedSession:
        session = self._session
        if not isinstance(session, UnlockedSession):
            raise VaultLockedError("Keyring controller is locked")
        return session

    def full_update(self) -> dict:
        """Notify subscribers with the current snapshot and return it."""
        state = self.mem_store.get_state()
        self._emit("update", state)
        return state

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot.model_validate(self.mem_store.get_state())

    # ------------------------------------------------------------------
    # Vault lifecycle
    # ------------------------------------------------------------------

    async def create_new_vault_and_keychain(self, password: str) -> dict:
        """Create a vault holding one new HD keyring with one account."""
        _check_password(password)
        async with self._lock:
            await self._wipe(password)
            await self.persist_all_keyrings()
            keyring = await self._add_new_keyring(
                HDKeyring.type, {"number_of_accounts": 1},
            )
            accounts = await keyring.get_accounts()
            if not accounts:
                raise EmptyAccountError("No account found on keychain.")
            self._emit("newVault", normalize_address(accounts[0]))
            await self.persist_all_keyrings()
        logger.info("New vault created")
        return self.full_update()

    async def create_new_vault_and_restore(self, password: str, mnemonic: str) -> dict:
        """Create a vault holding one HD keyring restored from ``mnemonic``.

        Raises:
            TypeError: If the password is not text.
            InvalidSeedError: If the mnemonic is not a valid BIP39 phrase.
            EmptyAccountError: If the restored keyring has no account.
        """
        _check_password(password)
        if not validate_mnemonic(mnemonic):
            raise InvalidSeedError("Seed phrase is invalid.")
        async with self._lock:
            await self._wipe(password)
            await self.persist_all_keyrings()
            keyring = await self._add_new_keyring(
                HDKeyring.type, {"mnemonic": mnemonic, "number_of_accounts": 1},
            )
            accounts = await keyring.get_accounts()
            if not accounts:
                raise EmptyAccountError("First Account not found.")
            await self.persist_all_keyrings()
        logger.info("Vault restored from seed phrase")
        return self.full_update()

    async def set_locked(self) -> dict:
        """Forget the password and every in-memory keyring."""
        async with self._lock:
            discarded = list(self._session.keyrings)
            self._session = LockedSession()
            self.mem_store.update_state(is_unlocked=False, keyrings=[])
            await self._close_keyrings(discarded)
        logger.debug("Keyring controller locked")
        return self.full_update()

    lock = set_locked

    async def submit_password(self, password: str) -> dict:
        """Unlock the vault.

        Raises:
            AuthenticationError: No vault, wrong password or corrupt vault.
        """
        async with self._lock:
            await self.unlock_keyrings(password)
        return self.full_update()

    async def unlock_keyrings(self, password: str) -> list[Keyring]:
        """Decrypt the vault and restore its keyrings.

        The session only changes once every keyring has been restored.
        """
        blob = self.store.get("vault")
        if not blob:
            raise AuthenticationError("Cannot unlock without a previous vault.")
        records = await self.encryptor.decrypt(password, blob)
        if not isinstance(records, list):
            raise AuthenticationError("Incorrect password or corrupt vault")
        keyrings: list[Keyring] = []
        try:
            for record in records:
                keyrings.append(await self.restore_keyring(record))
        except Exception:
            await self._close_keyrings(keyrings)
            raise
        discarded = list(self._session.keyrings)
        self._session = UnlockedSession(password=password, keyrings=keyrings)
        await self._close_keyrings(discarded)
        self.mem_store.update_state(is_unlocked=True)
        await self._update_mem_store_keyrings()
        logger.info("Vault unlocked with %d keyring(s)", len(keyrings))
        return keyrings

    async def restore_keyring(self, serialized: dict) -> Keyring:
        """Rebuild one keyring from its vault record ``{"type", "data"}``."""
        try:
            keyring_type = serialized["type"]
            data = serialized.get("data")
        except (KeyError, TypeError, AttributeError) as err:
            raise AuthenticationError("Incorrect password or corrupt vault") from err
        builder = self.get_keyring_builder(keyring_type)
        keyring = builder()
        await keyring.deserialize(data)
        await keyring.get_accounts()
        return keyring

    async def persist_all_keyrings(self) -> None:
        """Encrypt the full keyring list and overwrite the stored vault."""
        session = self._unlocked()
        records = [
            {"type": keyring.type, "data": await keyring.serialize()}
            for keyring in session.keyrings
        ]
        blob = await self.encryptor.encrypt(session.password, records)
        self.store.update_state(vault=blob)
        self.mem_store.update_state(is_unlocked=True)
        logger.debug("Persisted %d keyring(s)", len(records))

    async def _wipe(self, password: str) -> None:
        discarded = list(self._session.keyrings)
        self._session = UnlockedSession(password=password)
        await self.clear_keyrings()
        await self._close_keyrings(discarded)

    async def clear_keyrings(self) -> None:
        if isinstance(self._session, UnlockedSession):
            discarded, self._session.keyrings = self._session.keyrings, []
            await self._close_keyrings(discarded)
        self.mem_store.update_state(keyrings=[])

    async def _close_keyrings(self, keyrings: list[Keyring]) -> None:
        for keyring in keyrings:
            await keyring.close()

    # ------------------------------------------------------------------
    # Keyrings and accounts
    # ------------------------------------------------------------------

    def get_keyring_builder(self, keyring_type: str) -> KeyringBuilder:
        try:
            return self.keyring_builders[keyring_type]
        except KeyError:
            raise UnknownSourceKindError(
                f"No keyring registered for type {keyring_type!r}"
            ) from None

    def get_keyrings_by_type(self, keyring_type: str) -> list[Keyring]:
        return [k for k in self._session.keyrings if k.type == keyring_type]

    async def add_new_keyring(self, keyring_type: str, opts: Optional[Any] = None) -> Keyring:
        """Create a keyring of ``keyring_type``, add it and persist the vault."""
        async with self._lock:
            keyring = await self._add_new_keyring(keyring_type, opts)
        self.full_update()
        return keyring

    async def _add_new_keyring(self, keyring_type: str, opts: Optional[Any] = None) -> Keyring:
        session = self._unlocked()
        builder = self.get_keyring_builder(keyring_type)
        keyring = builder(opts)
        accounts = await keyring.get_accounts()
        await self.check_for_duplicate(keyring_type, accounts)
        session.keyrings.append(keyring)
        await self.persist_all_keyrings()
        await self._update_mem_store_keyrings()
        logger.debug("Added %s keyring with %d account(s)", keyring_type, len(accounts))
        return keyring

    async def check_for_duplicate(self, keyring_type: str, new_accounts: list[str]) -> list[str]:
        """Reject imported Simple accounts that already exist anywhere.

        Other keyring types derive their accounts and are not checked.
        """
        if keyring_type != SimpleKeyring.type:
            return new_accounts
        existing = set(await self.get_accounts())
        for account in new_accounts:
            if normalize_address(account) in existing:
                raise DuplicateAccountError("The account is a duplicate")
        return new_accounts

    async def add_new_account(self, keyring: Keyring) -> dict:
        """Ask ``keyring`` for one more account and persist the vault."""
        async with self._lock:
            session = self._unlocked()
            if not any(k is keyring for k in session.keyrings):
                raise KeyringError(f"{keyring!r} is not an active keyring")
            accounts = await keyring.add_accounts(1)
            for account in accounts:
                self._emit("newAccount", normalize_address(account))
            await self.persist_all_keyrings()
            await self._update_mem_store_keyrings()
        return self.full_update()

    async def remove_account(self, address: str) -> dict:
        """Remove an account; drop its keyring if it becomes empty.

        Raises:
            AccountNotFoundError: No keyring owns the address.
            UnsupportedOperationError: The keyring cannot remove accounts.
        """
        async with self._lock:
            keyring = await self.get_keyring_for_account(address)
            remove = getattr(keyring, "remove_account", None)
            if not callable(remove):
                raise UnsupportedOperationError(
                    f"Keyring {keyring.type} doesn't support account removal operations"
                )
            target = normalize_address(address)
            await remove(target)
            self._emit("removedAccount", target)
            if not await keyring.get_accounts():
                await self._remove_empty_keyrings()
            await self.persist_all_keyrings()
            await self._update_mem_store_keyrings()
        return self.full_update()

    async def remove_empty_keyrings(self) -> None:
        async with self._lock:
            await self._remove_empty_keyrings()
            await self.persist_all_keyrings()
            await self._update_mem_store_keyrings()

    async def _remove_empty_keyrings(self) -> None:
        session = self._unlocked()
        valid = [k for k in session.keyrings if await k.get_accounts()]
        empty = [k for k in session.keyrings if all(k is not v for v in valid)]
        if empty:
            logger.debug("Dropping %d empty keyring(s)", len(empty))
        session.keyrings = valid
        await self._close_keyrings(empty)

    async def get_accounts(self) -> list[str]:
        """Normalized accounts of every keyring, in keyring order."""
        addresses: list[str] = []
        for keyring in self._session.keyrings:
            addresses.extend(await keyring.get_accounts())
        return [normalize_address(a) for a in addresses]

    async def get_keyring_for_account(self, address: str) -> Keyring:
        """Return the first keyring holding ``address``.

        Raises:
            VaultLockedError: If the controller is locked.
            AccountNotFoundError: If no active keyring holds it.
        """
        session = self._unlocked()
        try:
            hexed = normalize_address(address)
        except ValueError as err:
            raise AccountNotFoundError(f"No keyring found for {address!r}") from err
        logger.debug("get_keyring_for_account: %s", hexed)
        for keyring in session.keyrings:
            accounts = await keyring.get_accounts()
            if hexed in (normalize_address(a) for a in accounts):
                return keyring
        raise AccountNotFoundError(f"No keyring found for {hexed}")

    async def display_for_keyring(self, keyring: Keyring) -> dict:
        accounts = await keyring.get_accounts()
        return KeyringDisplay(
            type=keyring.type,
            accounts=[normalize_address(a) for a in accounts],
        ).model_dump()

    async def _update_mem_store_keyrings(self) -> None:
        keyrings = [await self.display_for_keyring(k) for k in self._session.keyrings]
        self.mem_store.update_state(keyrings=keyrings)

    # ------------------------------------------------------------------
    # Signing
    # ------------------------------------------------------------------

    async def export_account(self, address: str) -> str:
        keyring = await self.get_keyring_for_account(address)
        return await keyring.export_account(normalize_address(address))

    async def sign_transaction(self, tx: dict, from_address: str) -> dict:
        address = normalize_address(from_address)
        keyring = await self.get_keyring_for_account(address)
        return await keyring.sign_transaction(address, tx)

    async def sign_message(self, msg_params: dict) -> str:
        address = normalize_address(msg_params["from"])
        keyring = await self.get_keyring_for_account(address)
        return await keyring.sign_message(address, msg_params["data"])

    async def sign_personal_message(self, msg_params: dict) -> str:
        address = normalize_address(msg_params["from"])
        keyring = await self.get_keyring_for_account(address)
        return await keyring.sign_personal_message(address, msg_params["data"])

    async def sign_typed_message(self, msg_params: dict) -> str:
        address = normalize_address(msg_params["from"])
        keyring = await self.get_keyring_for_account(address)
        return await keyring.sign_typed_data(address, msg_params["data"])

    # ------------------------------------------------------------------
    # Utilities
    # ------------------------------------------------------------------

    def add_gas_buffer(self, gas: str) -> str:
        return add_gas_buffer(gas, self.config.gas_buffer)
