"""
Vault Configuration: Validated settings for vault sealing.

Reads optional overrides from environment variables:
    KEYRING_CIPHER_BACKEND = aesgcm | chacha20
    KEYRING_KDF_ITERATIONS = <integer, PBKDF2 rounds>
    KEYRING_GAS_BUFFER = <integer, units added by add_gas_buffer>

Security Note:
    Never log passwords or key material.
"""
import os
import logging

from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger("navigator.keyring.vault")

DEFAULT_KDF_ITERATIONS = 200_000
DEFAULT_GAS_BUFFER = 100_000


class VaultConfig(BaseModel):
    """Validated vault configuration."""

    cipher_backend: str = Field(default="aesgcm")
    kdf_iterations: int = Field(default=DEFAULT_KDF_ITERATIONS, ge=1000)
    gas_buffer: int = Field(default=DEFAULT_GAS_BUFFER, ge=0)

    @field_validator("cipher_backend")
    @classmethod
    def validate_cipher(cls, v: str) -> str:
        """Validate cipher backend is supported."""
        v = v.lower()
        if v not in ("aesgcm", "chacha20"):
            raise ValueError(f"Unsupported cipher backend: {v}")
        return v

    @classmethod
    def from_env(cls) -> "VaultConfig":
        """Create VaultConfig by loading values from environment.

        Returns:
            Populated VaultConfig instance.
        """
        values = {
            "cipher_backend": os.environ.get("KEYRING_CIPHER_BACKEND", "aesgcm"),
        }
        iterations = os.environ.get("KEYRING_KDF_ITERATIONS")
        if iterations is not None:
            values["kdf_iterations"] = int(iterations)
        gas_buffer = os.environ.get("KEYRING_GAS_BUFFER")
        if gas_buffer is not None:
            values["gas_buffer"] = int(gas_buffer)
        config = cls(**values)
        logger.debug(
            "Vault config: cipher=%s iterations=%d",
            config.cipher_backend, config.kdf_iterations,
        )
        return config
