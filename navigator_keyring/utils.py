"""Address and hex helpers shared by the controller and the keyrings."""
from eth_utils import is_hex_address, to_checksum_address

HEX_PREFIX = "0x"


def strip_hex_prefix(value: str) -> str:
    if value[:2].lower() == HEX_PREFIX:
        return value[2:]
    return value


def add_hex_prefix(value: str) -> str:
    if value[:2].lower() == HEX_PREFIX:
        return HEX_PREFIX + value[2:]
    return HEX_PREFIX + value


def normalize_address(address: str) -> str:
    """Return the checksummed, 0x-prefixed form of an address.

    Addresses are accepted with or without prefix and in any case.

    Raises:
        ValueError: If the value is not a 20-byte hex address.
    """
    if not isinstance(address, str):
        raise ValueError(f"Address must be text, got {type(address).__name__}")
    prefixed = add_hex_prefix(address.strip())
    if not is_hex_address(prefixed):
        raise ValueError(f"Invalid address: {address!r}")
    return to_checksum_address(prefixed)


def add_gas_buffer(gas: str, buffer: int = 100000) -> str:
    """Add a fixed safety margin to a hex gas estimate.

    Args:
        gas: gas estimate as hex, with or without prefix.
        buffer: units added on top of the estimate.

    Returns:
        0x-prefixed hex of the buffered value.
    """
    value = int(strip_hex_prefix(gas) or "0", 16)
    return hex(value + buffer)
