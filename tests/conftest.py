"""Shared fixtures: fast vault settings and an in-memory Ledger bridge."""
import asyncio
from typing import Any, Optional

import pytest
import rlp
from bip_utils import Bip32Slip10Secp256k1, Bip39SeedGenerator
from eth_account import Account
from eth_account.messages import encode_defunct
from eth_utils import keccak

from navigator_keyring.bridge.channel import BridgeChannel
from navigator_keyring.bridge.config import DEFAULT_BRIDGE_URL, BridgeConfig, get_origin
from navigator_keyring.keyrings.ledger import public_key_to_address
from navigator_keyring.vault.config import VaultConfig

TEST_MNEMONIC = "test test test test test test test test test test test junk"
PASSWORD = "correct horse battery staple"
BRIDGE_ORIGIN = get_origin(DEFAULT_BRIDGE_URL)


class FakeLedgerChannel(BridgeChannel):
    """Bridge channel answering like a Ledger holding ``mnemonic``.

    Args:
        mnemonic: seed of the simulated device.
        origin: origin reported with every reply.
        echo_id: include the request ``messageId`` in replies.
        fail_actions: actions answered with ``success: false``.
        wrong_signer: sign with an unrelated key.
    """

    def __init__(
        self,
        mnemonic: str = TEST_MNEMONIC,
        origin: str = BRIDGE_ORIGIN,
        echo_id: bool = True,
        fail_actions: Optional[set] = None,
        wrong_signer: bool = False,
    ):
        self.root = Bip32Slip10Secp256k1.FromSeed(Bip39SeedGenerator(mnemonic).Generate())
        self.origin = origin
        self.echo_id = echo_id
        self.fail_actions = fail_actions or set()
        self.wrong_signer = wrong_signer
        self.listener = None
        self.sent: list[dict] = []
        self.closed = False

    async def open(self, listener) -> None:
        self.listener = listener

    async def post(self, message: dict) -> None:
        self.sent.append(message)
        reply = {
            "action": f"{message['action']}-reply",
            "success": True,
            "payload": None,
        }
        if self.echo_id:
            reply["messageId"] = message["messageId"]
        if message["action"] in self.fail_actions:
            reply["success"] = False
            reply["payload"] = {"error": {"message": "Ledger device: locked"}}
        else:
            reply["payload"] = self.handle(message["action"], message["params"])
        asyncio.get_running_loop().call_soon(self.listener, self.origin, reply)

    async def close(self) -> None:
        self.closed = True

    def actions(self) -> list[str]:
        return [m["action"] for m in self.sent]

    def node(self, path: str):
        return self.root.DerivePath(f"m/{path}")

    def private_key(self, path: str) -> bytes:
        if self.wrong_signer:
            return Account.create().key
        return self.node(path).PrivateKey().Raw().ToBytes()

    def handle(self, action: str, params: dict) -> Any:
        if action == "ledger-unlock":
            node = self.node(params["hdPath"])
            public_key = node.PublicKey().RawUncompressed()
            return {
                "publicKey": public_key.ToHex(),
                "chainCode": node.ChainCode().ToHex(),
                "address": public_key_to_address(public_key.ToBytes()),
            }
        if action == "ledger-sign-transaction":
            unsigned = bytes.fromhex(params["tx"])
            chain_id = int.from_bytes(rlp.decode(unsigned)[6], "big")
            signed = Account.unsafe_sign_hash(
                keccak(unsigned), self.private_key(params["hdPath"]),
            )
            return {
                "v": hex(signed.v - 27 + 35 + 2 * chain_id),
                "r": hex(signed.r),
                "s": hex(signed.s),
            }
        if action == "ledger-sign-personal-message":
            signable = encode_defunct(primitive=bytes.fromhex(params["message"]))
            signed = Account.sign_message(signable, self.private_key(params["hdPath"]))
            return {"v": signed.v, "r": hex(signed.r), "s": hex(signed.s)}
        raise AssertionError(f"unexpected action {action}")


def legacy_address(index: int, mnemonic: str = TEST_MNEMONIC) -> str:
    return Account.from_mnemonic(mnemonic, account_path=f"m/44'/60'/0'/{index}").address


def bip44_address(index: int, mnemonic: str = TEST_MNEMONIC) -> str:
    return Account.from_mnemonic(mnemonic, account_path=f"m/44'/60'/{index}'/0/0").address


@pytest.fixture
def vault_config():
    """Low PBKDF2 cost keeps the suite fast."""
    return VaultConfig(kdf_iterations=1000)


@pytest.fixture
def bridge_config():
    return BridgeConfig(max_index=20, request_timeout=2.0)


@pytest.fixture
def device():
    return FakeLedgerChannel()


@pytest.fixture
def legacy_tx():
    return {
        "nonce": 0,
        "gasPrice": 1_000_000_000,
        "gas": 21000,
        "to": "0x3535353535353535353535353535353535353535",
        "value": 10**15,
        "data": b"",
        "chainId": 1,
    }
