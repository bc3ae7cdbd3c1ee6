"""Navigator Keyring.

Encrypted vault and uniform signing over software and hardware key sources.
"""
from .version import (
    __title__, __description__, __version__, __author__, __author_email__
)
from .controller import KeyringController, LockedSession, UnlockedSession
from .exceptions import (
    KeyringError,
    AuthenticationError,
    VaultLockedError,
    InvalidSeedError,
    EmptyAccountError,
    UnknownSourceKindError,
    DuplicateAccountError,
    AccountNotFoundError,
    UnsupportedOperationError,
    UnknownAddressError,
    DeviceError,
    DeviceTimeoutError,
    SignatureVerificationError,
)
from .keyrings import (
    Keyring,
    SimpleKeyring,
    HDKeyring,
    LedgerBridgeKeyring,
    KeyringBuilder,
    keyring_builder,
)
from .models import SessionSnapshot, KeyringEvent, DeviceAccount
from .store import ObservableStore
from .vault import Encryptor, VaultConfig
from .bridge import BridgeConfig

__all__ = (
    "KeyringController",
    "LockedSession",
    "UnlockedSession",
    "KeyringError",
    "AuthenticationError",
    "VaultLockedError",
    "InvalidSeedError",
    "EmptyAccountError",
    "UnknownSourceKindError",
    "DuplicateAccountError",
    "AccountNotFoundError",
    "UnsupportedOperationError",
    "UnknownAddressError",
    "DeviceError",
    "DeviceTimeoutError",
    "SignatureVerificationError",
    "Keyring",
    "SimpleKeyring",
    "HDKeyring",
    "LedgerBridgeKeyring",
    "KeyringBuilder",
    "keyring_builder",
    "SessionSnapshot",
    "KeyringEvent",
    "DeviceAccount",
    "ObservableStore",
    "Encryptor",
    "VaultConfig",
    "BridgeConfig",
)
