"""
Bridge Configuration: Hardware bridge and account discovery settings.

Reads optional overrides from environment variables:
    LEDGER_BRIDGE_URL = <url of the bridge endpoint>
    LEDGER_HD_PATH = <parent derivation path>
    LEDGER_REQUEST_TIMEOUT = <seconds to wait for a device reply>
    KEYRING_INDEXER_URL = <base url of the chain-activity indexer>
"""
import os

from pydantic import BaseModel, Field, field_validator

DEFAULT_BRIDGE_URL = "ws://127.0.0.1:8435/ledger-bridge"
DEFAULT_HD_PATH = "m/44'/60'/0'"
BIP44_HD_PATH = "m/44'/60'/0'/0/0"
NETWORK_API_URLS = {
    "mainnet": "https://scan.irchain.io",
}


def get_origin(url: str) -> str:
    """Strip the last path segment of a bridge url.

    ``ws://127.0.0.1:8435/ledger-bridge`` -> ``ws://127.0.0.1:8435``
    """
    parts = url.split("/")
    return "/".join(parts[:-1])


class BridgeConfig(BaseModel):
    """Validated hardware bridge configuration."""

    bridge_url: str = Field(default=DEFAULT_BRIDGE_URL)
    hd_path: str = Field(default=DEFAULT_HD_PATH)
    network: str = Field(default="mainnet")
    indexer_url: str = Field(default=NETWORK_API_URLS["mainnet"])
    per_page: int = Field(default=5, ge=1, le=100)
    max_index: int = Field(default=1000, ge=1)
    request_timeout: float = Field(default=30.0, gt=0)
    activity_timeout: float = Field(default=10.0, gt=0)

    @field_validator("hd_path")
    @classmethod
    def validate_hd_path(cls, v: str) -> str:
        if not v.startswith("m/"):
            raise ValueError(f"Derivation path must start with m/: {v}")
        return v

    @classmethod
    def from_env(cls) -> "BridgeConfig":
        """Create BridgeConfig by loading values from environment."""
        network = os.environ.get("KEYRING_NETWORK", "mainnet")
        values = {
            "bridge_url": os.environ.get("LEDGER_BRIDGE_URL", DEFAULT_BRIDGE_URL),
            "hd_path": os.environ.get("LEDGER_HD_PATH", DEFAULT_HD_PATH),
            "network": network,
            "indexer_url": os.environ.get(
                "KEYRING_INDEXER_URL",
                NETWORK_API_URLS.get(network, NETWORK_API_URLS["mainnet"]),
            ),
        }
        timeout = os.environ.get("LEDGER_REQUEST_TIMEOUT")
        if timeout is not None:
            values["request_timeout"] = float(timeout)
        return cls(**values)
