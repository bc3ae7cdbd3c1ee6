"""
Vault Crypto Core: Password-based sealing of the serialized keyrings.

Blob layout (base64 text):
    [version 1B][cipher 1B][iterations 4B uint32 BE][salt 16B][nonce 12B][payload + tag 16B]

The key is PBKDF2-HMAC-SHA256(password, salt, iterations). The plaintext is
the orjson encoding of ``[{"type": str, "data": ...}, ...]``.

Security Note:
    Never log plaintext, ciphertext or passwords.
    Any decryption failure is reported as AuthenticationError, without
    telling a wrong password apart from a corrupt blob.
"""
import os
import struct
import base64
import asyncio
import logging
from typing import Any, Optional

import orjson
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from cryptography.hazmat.primitives.ciphers.aead import AESGCM, ChaCha20Poly1305

from ..exceptions import AuthenticationError
from .config import VaultConfig

logger = logging.getLogger("navigator.keyring.vault")

VAULT_VERSION = 1
SALT_SIZE = 16
NONCE_SIZE = 12  # 96-bit nonce
TAG_SIZE = 16
KEY_LENGTH = 32  # 256-bit

_HEADER = struct.Struct("!BBI")

_CIPHERS = {
    "aesgcm": (1, AESGCM),
    "chacha20": (2, ChaCha20Poly1305),
}
_CIPHERS_BY_ID = {cid: cls for cid, cls in _CIPHERS.values()}


# ---------------------------------------------------------------------------
# Key derivation
# ---------------------------------------------------------------------------

def derive_key(password: str, salt: bytes, iterations: int) -> bytes:
    """Derive a 32-byte key from a password using PBKDF2-HMAC-SHA256.

    Args:
        password: Vault password.
        salt: Random per-blob salt.
        iterations: PBKDF2 rounds.

    Returns:
        32-byte derived key.
    """
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(password.encode("utf-8"))


# ---------------------------------------------------------------------------
# Sealing
# ---------------------------------------------------------------------------

def seal(plaintext: bytes, password: str, config: VaultConfig) -> str:
    """Encrypt plaintext under a password.

    Returns:
        base64 text blob (see module docstring for layout).
    """
    cipher_id, cipher_cls = _CIPHERS[config.cipher_backend]
    salt = os.urandom(SALT_SIZE)
    nonce = os.urandom(NONCE_SIZE)
    key = derive_key(password, salt, config.kdf_iterations)
    header = _HEADER.pack(VAULT_VERSION, cipher_id, config.kdf_iterations)
    # header is bound as associated data
    ct = cipher_cls(key).encrypt(nonce, plaintext, header)
    return base64.b64encode(header + salt + nonce + ct).decode("ascii")


def unseal(blob: str, password: str) -> bytes:
    """Decrypt a blob produced by :func:`seal`.

    Raises:
        ValueError: If the blob is malformed or truncated.
        cryptography.exceptions.InvalidTag: If the password is wrong.
    """
    raw = base64.b64decode(blob, validate=True)
    _min = _HEADER.size + SALT_SIZE + NONCE_SIZE + TAG_SIZE
    if len(raw) < _min:
        raise ValueError(
            f"vault blob too short: {len(raw)} bytes (minimum {_min})"
        )
    version, cipher_id, iterations = _HEADER.unpack(raw[:_HEADER.size])
    if version != VAULT_VERSION:
        raise ValueError(f"Unsupported vault version: {version}")
    cipher_cls = _CIPHERS_BY_ID.get(cipher_id)
    if cipher_cls is None:
        raise ValueError(f"Unknown cipher id: {cipher_id}")
    offset = _HEADER.size
    salt = raw[offset:offset + SALT_SIZE]
    offset += SALT_SIZE
    nonce = raw[offset:offset + NONCE_SIZE]
    ct = raw[offset + NONCE_SIZE:]
    key = derive_key(password, salt, iterations)
    return cipher_cls(key).decrypt(nonce, ct, raw[:_HEADER.size])


class Encryptor:
    """Asynchronous encrypt/decrypt contract used by the controller.

    Key derivation is CPU-bound, so it runs in a worker thread.
    """

    def __init__(self, config: Optional[VaultConfig] = None):
        self.config = config or VaultConfig()

    async def encrypt(self, password: str, records: Any) -> str:
        """Serialize ``records`` with orjson and seal them under ``password``."""
        plaintext = orjson.dumps(records)
        return await asyncio.to_thread(seal, plaintext, password, self.config)

    async def decrypt(self, password: str, blob: str) -> Any:
        """Unseal ``blob`` and return the deserialized records.

        Raises:
            AuthenticationError: On any failure (wrong password, corrupt blob).
        """
        try:
            plaintext = await asyncio.to_thread(unseal, blob, password)
            return orjson.loads(plaintext)
        except Exception as err:
            logger.debug("Vault decryption failed: %s", type(err).__name__)
            raise AuthenticationError(
                "Incorrect password or corrupt vault"
            ) from err
