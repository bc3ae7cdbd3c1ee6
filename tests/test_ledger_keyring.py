"""
Tests for LedgerBridgeKeyring against an in-memory device.

Tests cover:
- Legacy mode: one unlock, local derivation, paging
- BIP44 mode: per-index unlocks and the gap-limit check
- Reverse path lookup (cache, bounded scan, exhaustion)
- Device signatures verified locally
- Serialization and device session reset
"""
import pytest
from eth_account import Account
from eth_account.messages import encode_defunct

from navigator_keyring.bridge.config import BIP44_HD_PATH
from navigator_keyring.exceptions import (
    AccountNotFoundError,
    DeviceError,
    SignatureVerificationError,
    UnknownAddressError,
    UnsupportedOperationError,
)
from navigator_keyring.keyrings.ledger import (
    LedgerBridgeKeyring,
    public_key_to_address,
    to_ledger_path,
)

from .conftest import TEST_MNEMONIC, FakeLedgerChannel, bip44_address, legacy_address


@pytest.fixture
def ledger(device, bridge_config):
    return LedgerBridgeKeyring(channel=device, config=bridge_config)


@pytest.fixture
def bip44_ledger(device, bridge_config):
    return LedgerBridgeKeyring({"hd_path": BIP44_HD_PATH}, channel=device, config=bridge_config)


class TestHelpers:

    def test_to_ledger_path(self):
        assert to_ledger_path("m/44'/60'/0'") == "44'/60'/0'"
        assert to_ledger_path("44'/60'/0'") == "44'/60'/0'"

    def test_public_key_to_address(self):
        account = Account.from_key("0x" + "01" * 32)
        public_key = account._key_obj.public_key.to_bytes()
        assert public_key_to_address(public_key) == account.address
        assert public_key_to_address(b"\x04" + public_key) == account.address


class TestLegacyMode:

    @pytest.mark.asyncio
    async def test_unlock(self, ledger, device):
        address = await ledger.unlock()
        expected = Account.from_mnemonic(TEST_MNEMONIC, account_path="m/44'/60'/0'").address
        assert address == expected
        assert ledger.is_unlocked()
        assert device.sent[0]["params"] == {"hdPath": "44'/60'/0'"}

    @pytest.mark.asyncio
    async def test_unlock_once(self, ledger, device):
        await ledger.unlock()
        assert await ledger.unlock() is None
        assert device.actions() == ["ledger-unlock"]

    @pytest.mark.asyncio
    async def test_unlock_failure(self, bridge_config):
        device = FakeLedgerChannel(fail_actions={"ledger-unlock"})
        ledger = LedgerBridgeKeyring(channel=device, config=bridge_config)
        with pytest.raises(DeviceError, match="locked"):
            await ledger.unlock()
        assert not ledger.is_unlocked()

    @pytest.mark.asyncio
    async def test_pages_derive_locally(self, ledger, device):
        first = await ledger.get_first_page()
        assert [a.index for a in first] == [0, 1, 2, 3, 4]
        assert [a.address for a in first] == [legacy_address(i) for i in range(5)]
        second = await ledger.get_next_page()
        assert [a.address for a in second] == [legacy_address(i) for i in range(5, 10)]
        assert device.actions() == ["ledger-unlock"]

    @pytest.mark.asyncio
    async def test_previous_page_clamped(self, ledger):
        await ledger.get_first_page()
        accounts = await ledger.get_previous_page()
        assert ledger.page == 1
        assert accounts[0].index == 0

    @pytest.mark.asyncio
    async def test_add_accounts_from_selected_index(self, ledger):
        ledger.set_account_to_unlock(3)
        added = await ledger.add_accounts(2)
        assert added == [legacy_address(3), legacy_address(4)]
        assert await ledger.get_accounts() == added
        assert ledger.unlocked_account == 5

    @pytest.mark.asyncio
    async def test_add_existing_account_not_duplicated(self, ledger):
        await ledger.add_accounts(1)
        ledger.set_account_to_unlock(0)
        assert await ledger.add_accounts(1) == []
        assert await ledger.get_accounts() == [legacy_address(0)]

    @pytest.mark.asyncio
    async def test_remove_account(self, ledger):
        await ledger.add_accounts(2)
        await ledger.remove_account(legacy_address(0).lower())
        assert await ledger.get_accounts() == [legacy_address(1)]
        with pytest.raises(AccountNotFoundError):
            await ledger.remove_account(legacy_address(0))


class TestReverseLookup:

    @pytest.mark.asyncio
    async def test_cached_index(self, ledger):
        ledger.set_account_to_unlock(3)
        await ledger.add_accounts(1)
        assert ledger.paths[legacy_address(3)] == 3
        assert await ledger.path_for_address(legacy_address(3)) == "m/44'/60'/0'/3"

    @pytest.mark.asyncio
    async def test_scan_without_cache(self, ledger):
        await ledger.deserialize({"accounts": [legacy_address(7)]})
        assert ledger.paths == {}
        assert await ledger.path_for_address(legacy_address(7)) == "m/44'/60'/0'/7"
        assert ledger.paths[legacy_address(7)] == 7

    @pytest.mark.asyncio
    async def test_scan_exhausted(self, ledger):
        with pytest.raises(UnknownAddressError):
            await ledger.path_for_address("0x" + "33" * 20)

    @pytest.mark.asyncio
    async def test_scan_bounded_by_max_index(self, ledger):
        # index 25 lies outside the configured range of 20
        with pytest.raises(UnknownAddressError):
            await ledger.path_for_address(legacy_address(25))

    @pytest.mark.asyncio
    async def test_bip44_path(self, bip44_ledger):
        await bip44_ledger.deserialize({
            "hd_path": BIP44_HD_PATH,
            "accounts": [bip44_address(2)],
        })
        assert await bip44_ledger.path_for_address(bip44_address(2)) == "m/44'/60'/2'/0/0"


class TestBip44Mode:

    @pytest.mark.asyncio
    async def test_first_page_unlocks_each_index(self, bip44_ledger, device):
        accounts = await bip44_ledger.get_first_page()
        assert [a.address for a in accounts] == [bip44_address(i) for i in range(5)]
        paths = [m["params"]["hdPath"] for m in device.sent]
        assert paths == ["44'/60'/0'/0/0"] + [f"44'/60'/{i}'/0/0" for i in range(5)]

    @pytest.mark.asyncio
    async def test_gap_limit(self, device, bridge_config):
        checked = []

        async def activity(address: str) -> bool:
            checked.append(address)
            return address == bip44_address(0)

        ledger = LedgerBridgeKeyring(
            {"hd_path": BIP44_HD_PATH, "implement_full_bip44": True},
            channel=device,
            activity_checker=activity,
            config=bridge_config,
        )
        accounts = await ledger.get_first_page()
        assert [a.address for a in accounts] == [bip44_address(0), bip44_address(1)]
        assert checked == [bip44_address(0), bip44_address(1)]

    @pytest.mark.asyncio
    async def test_no_gap_check_by_default(self, device, bridge_config):
        async def activity(address: str) -> bool:
            raise AssertionError("activity must not be checked")

        ledger = LedgerBridgeKeyring(
            {"hd_path": BIP44_HD_PATH},
            channel=device,
            activity_checker=activity,
            config=bridge_config,
        )
        assert len(await ledger.get_first_page()) == 5

    @pytest.mark.asyncio
    async def test_legacy_ignores_gap_flag(self, device, bridge_config):
        async def activity(address: str) -> bool:
            raise AssertionError("activity must not be checked")

        ledger = LedgerBridgeKeyring(
            {"implement_full_bip44": True},
            channel=device,
            activity_checker=activity,
            config=bridge_config,
        )
        assert len(await ledger.get_first_page()) == 5

    @pytest.mark.asyncio
    async def test_add_accounts(self, bip44_ledger):
        assert await bip44_ledger.add_accounts(2) == [bip44_address(0), bip44_address(1)]


class TestDeviceSigning:

    @pytest.mark.asyncio
    async def test_sign_transaction(self, ledger, device, legacy_tx):
        await ledger.add_accounts(1)
        address = legacy_address(0)
        signed = await ledger.sign_transaction(address, legacy_tx)
        assert Account.recover_transaction(signed["raw_transaction"]) == address
        assert signed["v"] in (37, 38)
        request = device.sent[-1]
        assert request["action"] == "ledger-sign-transaction"
        assert request["params"]["hdPath"] == "44'/60'/0'/0"

    @pytest.mark.asyncio
    async def test_sign_transaction_bip44(self, bip44_ledger, legacy_tx):
        await bip44_ledger.add_accounts(2)
        signed = await bip44_ledger.sign_transaction(bip44_address(1), legacy_tx)
        assert Account.recover_transaction(signed["raw_transaction"]) == bip44_address(1)

    @pytest.mark.asyncio
    async def test_wrong_signer_rejected(self, bridge_config, legacy_tx):
        device = FakeLedgerChannel(wrong_signer=True)
        ledger = LedgerBridgeKeyring(channel=device, config=bridge_config)
        await ledger.add_accounts(1)
        with pytest.raises(SignatureVerificationError):
            await ledger.sign_transaction(legacy_address(0), legacy_tx)

    @pytest.mark.asyncio
    async def test_typed_transaction_unsupported(self, ledger):
        tx = {
            "type": 2,
            "nonce": 0,
            "maxFeePerGas": 2_000_000_000,
            "maxPriorityFeePerGas": 1_000_000_000,
            "gas": 21000,
            "to": "0x3535353535353535353535353535353535353535",
            "value": 1,
            "chainId": 1,
        }
        with pytest.raises(UnsupportedOperationError):
            await ledger.sign_transaction(legacy_address(0), tx)

    @pytest.mark.asyncio
    async def test_device_rejects_transaction(self, bridge_config, legacy_tx):
        device = FakeLedgerChannel(fail_actions={"ledger-sign-transaction"})
        ledger = LedgerBridgeKeyring(channel=device, config=bridge_config)
        await ledger.add_accounts(1)
        with pytest.raises(DeviceError) as exc:
            await ledger.sign_transaction(legacy_address(0), legacy_tx)
        assert exc.value.payload == {"error": {"message": "Ledger device: locked"}}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("message", ["hello", "0x68656c6c6f"])
    async def test_sign_personal_message(self, ledger, device, message):
        await ledger.add_accounts(1)
        signature = await ledger.sign_personal_message(legacy_address(0), message)
        recovered = Account.recover_message(encode_defunct(text="hello"), signature=signature)
        assert recovered == legacy_address(0)
        assert int(signature[-2:], 16) in (27, 28)
        assert device.sent[-1]["params"]["message"] == "68656c6c6f"

    @pytest.mark.asyncio
    async def test_personal_message_wrong_signer(self, bridge_config):
        device = FakeLedgerChannel(wrong_signer=True)
        ledger = LedgerBridgeKeyring(channel=device, config=bridge_config)
        await ledger.add_accounts(1)
        with pytest.raises(SignatureVerificationError):
            await ledger.sign_personal_message(legacy_address(0), "hello")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("method, args", [
        ("sign_message", ("0x00",)),
        ("sign_typed_data", ({},)),
        ("export_account", ()),
    ])
    async def test_unsupported(self, ledger, method, args):
        with pytest.raises(UnsupportedOperationError, match="Not supported on this device"):
            await getattr(ledger, method)(legacy_address(0), *args)


class TestSessionState:

    @pytest.mark.asyncio
    async def test_serialize_roundtrip(self, ledger, device, bridge_config):
        await ledger.add_accounts(2)
        ledger.implement_full_bip44 = True
        data = await ledger.serialize()
        assert data == {
            "hd_path": "m/44'/60'/0'",
            "accounts": [legacy_address(0), legacy_address(1)],
            "bridge_url": "ws://127.0.0.1:8435/ledger-bridge",
            "implement_full_bip44": True,
        }
        restored = LedgerBridgeKeyring(channel=device, config=bridge_config)
        await restored.deserialize(data)
        assert await restored.get_accounts() == await ledger.get_accounts()
        assert restored.implement_full_bip44 is True

    @pytest.mark.asyncio
    async def test_forget_device(self, ledger):
        await ledger.add_accounts(2)
        await ledger.get_first_page()
        ledger.forget_device()
        assert await ledger.get_accounts() == []
        assert not ledger.is_unlocked()
        assert ledger.page == 0
        assert ledger.paths == {}
        assert ledger.unlocked_account == 0

    @pytest.mark.asyncio
    async def test_set_hd_path_resets_node(self, ledger):
        await ledger.add_accounts(1)
        ledger.set_hd_path("m/44'/60'/1'")
        assert not ledger.is_unlocked()
        assert ledger.paths == {}
        ledger.set_account_to_unlock(0)
        added = await ledger.add_accounts(1)
        expected = Account.from_mnemonic(TEST_MNEMONIC, account_path="m/44'/60'/1'/0").address
        assert added == [expected]

    @pytest.mark.asyncio
    async def test_close(self, ledger, device):
        await ledger.unlock()
        await ledger.close()
        assert device.closed
