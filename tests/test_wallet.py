"""Tests for key derivation, transfer encoding, the keystore and the RPC client."""

from __future__ import annotations

import base64
from decimal import Decimal

import base58
import httpx
import pytest
from nacl.signing import VerifyKey

from bond_credit.wallet.derivation import (
    NearKeyPair,
    derive_keypair,
    derive_wallet,
    derive_wallets,
    generate_mnemonic,
    mnemonic_to_seed,
    parse_path,
    wallet_path,
)
from bond_credit.wallet.keystore import create_keystore, decrypt_mnemonic, load_public_info
from bond_credit.wallet.networks import get_network, list_network_names
from bond_credit.wallet.rpc import NearRpcClient, NearRpcError
from bond_credit.wallet.transactions import (
    BorshWriter,
    TransferTransaction,
    build_transfer,
    decode_public_key,
    format_near,
    near_to_yocto,
    yocto_to_near,
)
from tests.conftest import ONE_NEAR, TEST_MNEMONIC

NODE_URL = "https://rpc.test.invalid"


# ---------------------------------------------------------------------------
# Derivation
# ---------------------------------------------------------------------------

class TestDerivation:
    def test_bip39_seed(self):
        seed = mnemonic_to_seed(TEST_MNEMONIC)
        assert seed.hex().startswith("5eb00bbddcf069084889a8ab9155568165f5c453")

    def test_mnemonic_is_normalized(self):
        messy = "  " + TEST_MNEMONIC.upper().replace(" ", "   ") + "\n"
        assert mnemonic_to_seed(messy) == mnemonic_to_seed(TEST_MNEMONIC)

    @pytest.mark.parametrize("phrase", ["abandon " * 12, "not a real mnemonic at all"])
    def test_invalid_mnemonic(self, phrase):
        with pytest.raises(ValueError, match="Invalid mnemonic"):
            mnemonic_to_seed(phrase)

    def test_generated_mnemonic_is_valid(self):
        phrase = generate_mnemonic(24)
        assert len(phrase.split()) == 24
        assert len(mnemonic_to_seed(phrase)) == 64

    def test_slip10_master_vector(self):
        # SLIP-0010 ed25519 test vector 1
        seed = bytes.fromhex("000102030405060708090a0b0c0d0e0f")
        master = derive_keypair(seed, "m")
        assert master.seed.hex() == "2b4be7f19ee27bbf30c667b642d5f4aa69fd169872f8fc3059c08ebae2eb19e7"
        assert master.public_key_bytes.hex() == "a4b2856bfec510abab89753fac1ac0e1112364e7d250545963f135f2a33188ed"
        child = derive_keypair(seed, "m/0'")
        assert child.seed.hex() == "68e0fe46dfb67e368c75379acec591dad19df3cde26e63b93a8e704f1dade7a3"

    def test_paths(self):
        assert wallet_path(3) == "m/44'/397'/0'/0'/3'"
        assert parse_path("m/44'/397'") == [44 + 0x80000000, 397 + 0x80000000]
        for bad in ("44'/397'", "m/44/397'", "m/x'"):
            with pytest.raises(ValueError):
                parse_path(bad)

    def test_wallets_are_deterministic_and_distinct(self):
        first = derive_wallets(TEST_MNEMONIC, count=3)
        again = derive_wallets(TEST_MNEMONIC, count=3)
        assert [w.account_id for w in first] == [w.account_id for w in again]
        assert len({w.account_id for w in first}) == 3
        assert derive_wallet(TEST_MNEMONIC, 2).account_id == first[2].account_id

    def test_implicit_account_id(self):
        wallet = derive_wallet(TEST_MNEMONIC, 0)
        assert len(wallet.account_id) == 64
        assert bytes.fromhex(wallet.account_id) == wallet.keypair.public_key_bytes
        assert wallet.public_key.startswith("ed25519:")

    def test_testnet_suffix(self):
        wallet = derive_wallet(TEST_MNEMONIC, 0, network="testnet")
        assert wallet.account_id.endswith(".testnet")
        assert wallet.public_info()["network"] == "testnet"
        assert "secretKey" not in wallet.public_info()

    def test_count_must_be_positive(self):
        with pytest.raises(ValueError):
            derive_wallets(TEST_MNEMONIC, count=0)


class TestKeyPair:
    def test_secret_key_roundtrip(self):
        pair = derive_wallet(TEST_MNEMONIC, 0).keypair
        assert NearKeyPair.from_secret_key(pair.secret_key) == pair
        short = "ed25519:" + base58.b58encode(pair.seed).decode("ascii")
        assert NearKeyPair.from_secret_key(short) == pair

    def test_rejects_bad_secret_keys(self):
        pair = derive_wallet(TEST_MNEMONIC, 0).keypair
        other = derive_wallet(TEST_MNEMONIC, 1).keypair
        mismatched = "ed25519:" + base58.b58encode(pair.seed + other.public_key_bytes).decode("ascii")
        for bad in ("secp256k1:abc", "ed25519:" + base58.b58encode(b"short").decode("ascii"), mismatched):
            with pytest.raises(ValueError):
                NearKeyPair.from_secret_key(bad)


class TestNetworks:
    def test_known_networks(self):
        assert list_network_names() == ["mainnet", "testnet", "localnet"]
        assert get_network("testnet").tx_url("abc") == "https://testnet.nearblocks.io/txns/abc"
        assert get_network("localnet").tx_url("abc") == "abc"

    def test_unknown_network(self):
        with pytest.raises(KeyError):
            get_network("betanet")


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------

class TestAmounts:
    @pytest.mark.parametrize(
        "amount,yocto",
        [("1", ONE_NEAR), ("0.001", 10**21), (2, 2 * ONE_NEAR), ("0.000000000000000000000001", 1)],
    )
    def test_near_to_yocto(self, amount, yocto):
        assert near_to_yocto(amount) == yocto

    def test_full_precision_amount(self):
        assert near_to_yocto("123456.000000000000000000000001") == 123456 * ONE_NEAR + 1
        assert near_to_yocto("98765432109876.123456789012345678901234") == (
            98765432109876123456789012345678901234
        )

    def test_yocto_to_near_is_exact(self):
        assert yocto_to_near(123456 * ONE_NEAR + 1) == Decimal("123456.000000000000000000000001")

    @pytest.mark.parametrize("amount", ["-1", "abc", "NaN", "Infinity", "0.0000000000000000000000001"])
    def test_invalid_amounts(self, amount):
        with pytest.raises(ValueError):
            near_to_yocto(amount)

    def test_formatting(self):
        assert yocto_to_near(ONE_NEAR // 2) == Decimal("0.5")
        assert format_near(3 * ONE_NEAR) == "3.0000"
        assert format_near(str(10**21), 6) == "0.001000"


class TestBorsh:
    def test_primitives_are_little_endian(self):
        data = BorshWriter().u8(1).u32(2).u64(3).u128(4).string("hi").getvalue()
        assert data == (
            b"\x01" + b"\x02\x00\x00\x00" + (3).to_bytes(8, "little")
            + (4).to_bytes(16, "little") + b"\x02\x00\x00\x00hi"
        )

    def test_u128_range(self):
        with pytest.raises(ValueError):
            BorshWriter().u128(2**128)

    def test_transfer_layout(self):
        tx = TransferTransaction(
            signer_id="a", public_key=bytes(32), nonce=1,
            receiver_id="b", block_hash=bytes(32), deposit=1,
        )
        data = tx.serialize()
        assert len(data) == 104
        assert data[:6] == b"\x01\x00\x00\x00a\x00"
        assert data[-17] == 3  # Transfer action tag
        assert int.from_bytes(data[-16:], "little") == 1

    def test_bad_block_hash(self):
        tx = TransferTransaction("a", bytes(32), 1, "b", bytes(31), 1)
        with pytest.raises(ValueError):
            tx.serialize()


class TestSigning:
    def test_signature_verifies(self, near_node):
        pair = derive_wallet(TEST_MNEMONIC, 0).keypair
        signed = build_transfer(pair, "alice.near", "bob.near", ONE_NEAR, 101, near_node.block_hash)
        VerifyKey(pair.public_key_bytes).verify(signed.transaction.hash(), signed.signature)

        raw = base64.b64decode(signed.to_base64())
        assert raw.startswith(signed.transaction.serialize())
        assert len(raw) == len(signed.transaction.serialize()) + 65
        assert base58.b58decode(signed.tx_hash) == signed.transaction.hash()

    def test_decode_public_key(self):
        pair = derive_wallet(TEST_MNEMONIC, 0).keypair
        assert decode_public_key(pair.public_key) == pair.public_key_bytes
        with pytest.raises(ValueError):
            decode_public_key("ed25519:" + base58.b58encode(b"abc").decode("ascii"))


# ---------------------------------------------------------------------------
# Keystore
# ---------------------------------------------------------------------------

class TestKeystore:
    def test_create_and_decrypt(self, tmp_path):
        wallets = create_keystore(tmp_path, TEST_MNEMONIC, "hunter2", count=2)
        assert len(wallets) == 2
        assert decrypt_mnemonic(tmp_path, "hunter2") == TEST_MNEMONIC
        info = load_public_info(tmp_path)
        assert info["network"] == "mainnet"
        assert [w["accountId"] for w in info["wallets"]] == [w["accountId"] for w in wallets]
        assert "abandon" not in (tmp_path / "keystore.json").read_text()

    def test_wrong_password(self, tmp_path):
        create_keystore(tmp_path, TEST_MNEMONIC, "hunter2", count=1)
        with pytest.raises(ValueError, match="wrong password"):
            decrypt_mnemonic(tmp_path, "nope")

    def test_refuses_to_overwrite(self, tmp_path):
        create_keystore(tmp_path, TEST_MNEMONIC, "hunter2", count=1)
        with pytest.raises(FileExistsError):
            create_keystore(tmp_path, TEST_MNEMONIC, "hunter2", count=1)

    def test_validation_before_write(self, tmp_path):
        with pytest.raises(ValueError):
            create_keystore(tmp_path, "abandon " * 12, "pw")
        with pytest.raises(ValueError):
            create_keystore(tmp_path, TEST_MNEMONIC, "")
        assert load_public_info(tmp_path) is None

    def test_missing_keystore(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            decrypt_mnemonic(tmp_path, "pw")


# ---------------------------------------------------------------------------
# RPC client
# ---------------------------------------------------------------------------

class TestRpcClient:
    @pytest.mark.asyncio
    async def test_view_account(self, near_node):
        near_node.fund("alice.near", 3)
        async with NearRpcClient(NODE_URL, transport=near_node.transport) as rpc:
            state = await rpc.view_account("alice.near")
        assert int(state["amount"]) == 3 * ONE_NEAR
        assert near_node.calls[0]["params"]["request_type"] == "view_account"

    @pytest.mark.asyncio
    async def test_node_error(self, near_node):
        async with NearRpcClient(NODE_URL, transport=near_node.transport) as rpc:
            with pytest.raises(NearRpcError) as info:
                await rpc.view_account("ghost.near")
        assert info.value.cause == "UNKNOWN_ACCOUNT"
        assert info.value.name == "HANDLER_ERROR"

    @pytest.mark.asyncio
    async def test_rate_limit(self, near_node):
        near_node.fail_broadcast = "rate_limit"
        async with NearRpcClient(NODE_URL, transport=near_node.transport) as rpc:
            with pytest.raises(NearRpcError) as info:
                await rpc.broadcast_tx_commit("AAAA")
        assert info.value.is_rate_limit

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        async with NearRpcClient(NODE_URL, transport=httpx.MockTransport(handler)) as rpc:
            with pytest.raises(NearRpcError) as info:
                await rpc.block()
        assert info.value.is_timeout

    @pytest.mark.asyncio
    async def test_non_json_body(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(502, text="bad gateway"))
        async with NearRpcClient(NODE_URL, transport=transport) as rpc:
            with pytest.raises(NearRpcError, match="non-JSON"):
                await rpc.block()

    @pytest.mark.asyncio
    async def test_invalid_nonce_details(self, near_node):
        near_node.fund("alice.near")
        pair = derive_wallet(TEST_MNEMONIC, 0).keypair
        signed = build_transfer(pair, "alice.near", "bob.near", 1, 100, near_node.block_hash)
        async with NearRpcClient(NODE_URL, transport=near_node.transport) as rpc:
            with pytest.raises(NearRpcError) as info:
                await rpc.broadcast_tx_commit(signed.to_base64())
        assert info.value.cause == "INVALID_TRANSACTION"
        assert info.value.invalid_nonce == {"tx_nonce": 100, "ak_nonce": 100}

    @pytest.mark.asyncio
    async def test_expired_block_hash(self, near_node):
        near_node.fund("alice.near")
        pair = derive_wallet(TEST_MNEMONIC, 0).keypair
        old_hash = base58.b58encode(bytes(32)).decode("ascii")
        signed = build_transfer(pair, "alice.near", "bob.near", 1, 101, old_hash)
        async with NearRpcClient(NODE_URL, transport=near_node.transport) as rpc:
            with pytest.raises(NearRpcError) as info:
                await rpc.broadcast_tx_commit(signed.to_base64())
        assert "Expired" in str(info.value.data)
        assert info.value.invalid_nonce is None
        assert near_node.broadcasts == []
