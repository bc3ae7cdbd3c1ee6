"""Key sources.

The controller creates keyrings through builders: callables taking the
keyring options and carrying the keyring ``type``. Builders bind the runtime
dependencies a keyring needs but must not serialize (a bridge channel, a
config object).
"""
from functools import partial
from typing import Any, Callable, Optional

from .base import Keyring, LocalKeyring
from .simple import SimpleKeyring
from .hd import HDKeyring, validate_mnemonic, generate_mnemonic
from .ledger import LedgerBridgeKeyring


class KeyringBuilder:
    """Factory for one keyring type."""

    def __init__(self, keyring_cls: type[Keyring], **dependencies: Any):
        self.keyring_cls = keyring_cls
        self.type = keyring_cls.type
        self._factory: Callable[..., Keyring] = partial(keyring_cls, **dependencies)

    def __call__(self, opts: Optional[Any] = None) -> Keyring:
        return self._factory(opts)

    def __repr__(self) -> str:
        return f"<KeyringBuilder type={self.type!r}>"


def keyring_builder(keyring_cls: type[Keyring], **dependencies: Any) -> KeyringBuilder:
    """Return a builder for ``keyring_cls`` with ``dependencies`` bound.

    Example:
        keyring_builder(LedgerBridgeKeyring, channel=my_channel)
    """
    return KeyringBuilder(keyring_cls, **dependencies)


DEFAULT_KEYRING_BUILDERS = (
    keyring_builder(SimpleKeyring),
    keyring_builder(HDKeyring),
)

__all__ = [
    "Keyring",
    "LocalKeyring",
    "SimpleKeyring",
    "HDKeyring",
    "LedgerBridgeKeyring",
    "KeyringBuilder",
    "keyring_builder",
    "DEFAULT_KEYRING_BUILDERS",
    "validate_mnemonic",
    "generate_mnemonic",
]
