"""Hardware Bridge Protocol: messaging and account discovery for devices
reached through an embedded bridge channel.
"""

from .config import BridgeConfig, get_origin
from .channel import BridgeChannel, WebSocketChannel
from .transport import BridgeTransport
from .discovery import ActivityChecker, AccountPager

__all__ = [
    "BridgeConfig",
    "get_origin",
    "BridgeChannel",
    "WebSocketChannel",
    "BridgeTransport",
    "ActivityChecker",
    "AccountPager",
]
