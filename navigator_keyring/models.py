"""Pydantic models exchanged with observers and with the hardware bridge."""
from typing import Any, Optional

from pydantic import BaseModel, Field


class KeyringDisplay(BaseModel):
    """Public view of one keyring: its type and normalized accounts."""

    type: str
    accounts: list[str] = Field(default_factory=list)


class SessionSnapshot(BaseModel):
    """Non-secret projection of the controller state."""

    is_unlocked: bool = False
    keyring_types: list[str] = Field(default_factory=list)
    keyrings: list[KeyringDisplay] = Field(default_factory=list)


class KeyringEvent(BaseModel):
    """Notification delivered to controller subscribers.

    ``name`` is one of ``update``, ``newVault``, ``newAccount`` or
    ``removedAccount``.
    """

    name: str
    payload: Any = None


class DeviceAccount(BaseModel):
    """Account offered by a hardware device while paging."""

    address: str
    index: int
    balance: Optional[str] = None


class BridgeRequest(BaseModel):
    """Outbound message to the bridge."""

    action: str
    params: dict[str, Any] = Field(default_factory=dict)
    target: str = "LEDGER-IFRAME"
    messageId: Optional[str] = None


class BridgeReply(BaseModel):
    """Inbound message from the bridge."""

    action: str
    success: bool = False
    payload: Any = None
    messageId: Optional[str] = None
