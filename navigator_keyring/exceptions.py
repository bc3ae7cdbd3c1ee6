"""Keyring exceptions.

Every error raised by the controller, the keyrings or the hardware bridge
derives from :class:`KeyringError`, so callers can catch the whole family.
"""
from typing import Any


class KeyringError(Exception):
    """Base class for keyring errors."""


class AuthenticationError(KeyringError):
    """Wrong password, corrupt vault or no vault at all."""


class VaultLockedError(AuthenticationError):
    """Operation requires an unlocked vault."""


class InvalidSeedError(KeyringError, ValueError):
    """Mnemonic fails the BIP39 wordlist or checksum rules."""


class EmptyAccountError(KeyringError):
    """A keyring expected to hold accounts reported none."""


class UnknownSourceKindError(KeyringError, KeyError):
    """No keyring builder is registered for the requested type."""

    def __str__(self) -> str:
        # KeyError.__str__ quotes its argument.
        return Exception.__str__(self)


class DuplicateAccountError(KeyringError):
    """Imported account already exists in another keyring."""


class AccountNotFoundError(KeyringError):
    """No active keyring owns the address."""


class UnsupportedOperationError(KeyringError):
    """The keyring cannot perform the requested operation."""


class UnknownAddressError(KeyringError):
    """Reverse derivation-path lookup exhausted its index range."""


class DeviceError(KeyringError):
    """Failure reported by the hardware device.

    Args:
        message: human readable reason.
        payload: raw reply payload, if the device sent one.
    """

    def __init__(self, message: str, payload: Any = None):
        super().__init__(message)
        self.payload = payload


class DeviceTimeoutError(DeviceError):
    """The device did not reply in time."""


class SignatureVerificationError(KeyringError):
    """Signature returned by a device does not recover to the expected signer."""
