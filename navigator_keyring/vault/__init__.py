"""Keyring Vault: Password-sealed storage of serialized keyrings.

Security Note (Threat Model):
    Keyrings are decrypted into process memory while the controller is
    unlocked. A memory dump of the process taken during that window could
    expose private keys and mnemonics. This is an accepted limitation.
"""

from .crypto import Encryptor, seal, unseal, derive_key
from .config import VaultConfig

__all__ = [
    "Encryptor",
    "VaultConfig",
    "seal",
    "unseal",
    "derive_key",
]
