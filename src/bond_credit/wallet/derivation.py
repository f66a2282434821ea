"""Mnemonic to NEAR key derivation.

BIP-39 seeds come from eth-account's mnemonic support; ed25519 child keys
follow SLIP-10, which only defines hardened derivation. Each derived key
doubles as a NEAR implicit account whose id is the hex public key.
"""

from __future__ import annotations

import hashlib
import hmac
import struct
from dataclasses import dataclass

import base58
from eth_account.hdaccount import seed_from_mnemonic
from eth_account.hdaccount.mnemonic import Mnemonic
from nacl.signing import SigningKey

from bond_credit.wallet.networks import get_network

NEAR_COIN_TYPE = 397
HARDENED_OFFSET = 0x80000000
KEY_PREFIX = "ed25519:"

_SLIP10_ED25519_KEY = b"ed25519 seed"


def wallet_path(index: int) -> str:
    return f"m/44'/{NEAR_COIN_TYPE}'/0'/0'/{index}'"


# ---------------------------------------------------------------------------
# Key pairs
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class NearKeyPair:
    """An ed25519 key pair in NEAR's string encoding."""

    seed: bytes  # 32-byte private seed

    @property
    def signing_key(self) -> SigningKey:
        return SigningKey(self.seed)

    @property
    def public_key_bytes(self) -> bytes:
        return bytes(self.signing_key.verify_key)

    @property
    def public_key(self) -> str:
        return KEY_PREFIX + base58.b58encode(self.public_key_bytes).decode("ascii")

    @property
    def secret_key(self) -> str:
        # NEAR secret keys carry the 64-byte expanded form: seed || public key.
        raw = self.seed + self.public_key_bytes
        return KEY_PREFIX + base58.b58encode(raw).decode("ascii")

    @property
    def implicit_account_id(self) -> str:
        return self.public_key_bytes.hex()

    def sign(self, message: bytes) -> bytes:
        return self.signing_key.sign(message).signature

    @classmethod
    def from_secret_key(cls, secret_key: str) -> NearKeyPair:
        """Parse an ``ed25519:<base58>`` secret key (32- or 64-byte form)."""
        if not secret_key.startswith(KEY_PREFIX):
            raise ValueError("Secret key must start with 'ed25519:'")
        try:
            raw = base58.b58decode(secret_key[len(KEY_PREFIX):])
        except ValueError as exc:
            raise ValueError(f"Secret key is not valid base58: {exc}") from exc
        if len(raw) not in (32, 64):
            raise ValueError(f"Secret key has {len(raw)} bytes, expected 32 or 64")
        pair = cls(seed=raw[:32])
        if len(raw) == 64 and raw[32:] != pair.public_key_bytes:
            raise ValueError("Secret key public half does not match its seed")
        return pair


@dataclass(frozen=True)
class DerivedWallet:
    index: int
    path: str
    network: str
    account_id: str
    keypair: NearKeyPair

    @property
    def public_key(self) -> str:
        return self.keypair.public_key

    @property
    def secret_key(self) -> str:
        return self.keypair.secret_key

    def public_info(self) -> dict:
        return {
            "index": self.index,
            "path": self.path,
            "network": self.network,
            "accountId": self.account_id,
            "publicKey": self.public_key,
        }


# ---------------------------------------------------------------------------
# Derivation
# ---------------------------------------------------------------------------

def normalize_mnemonic(mnemonic: str) -> str:
    return " ".join(mnemonic.strip().lower().split())


def generate_mnemonic(num_words: int = 12) -> str:
    """Return a fresh English BIP-39 mnemonic."""
    return Mnemonic().generate(num_words)


def mnemonic_to_seed(mnemonic: str, passphrase: str = "") -> bytes:
    """BIP-39 seed (64 bytes) for a checksummed mnemonic.

    Raises ``ValueError`` for unknown words or a bad checksum.
    """
    try:
        return seed_from_mnemonic(normalize_mnemonic(mnemonic), passphrase)
    except Exception as exc:
        raise ValueError(f"Invalid mnemonic: {exc}") from exc


def parse_path(path: str) -> list[int]:
    """Turn ``m/44'/397'/0'`` into hardened child indexes."""
    parts = path.split("/")
    if not parts or parts[0] != "m":
        raise ValueError(f"Derivation path must start with 'm': {path}")
    indexes = []
    for part in parts[1:]:
        if not part.endswith("'"):
            raise ValueError(f"ed25519 derivation supports hardened indexes only: {path}")
        try:
            value = int(part[:-1])
        except ValueError:
            raise ValueError(f"Invalid path segment '{part}' in {path}") from None
        if not 0 <= value < HARDENED_OFFSET:
            raise ValueError(f"Path index out of range in {path}")
        indexes.append(value + HARDENED_OFFSET)
    return indexes


def derive_keypair(seed: bytes, path: str) -> NearKeyPair:
    """SLIP-10 ed25519 derivation of *path* from a BIP-39 seed."""
    digest = hmac.new(_SLIP10_ED25519_KEY, seed, hashlib.sha512).digest()
    key, chain_code = digest[:32], digest[32:]
    for index in parse_path(path):
        data = b"\x00" + key + struct.pack(">I", index)
        digest = hmac.new(chain_code, data, hashlib.sha512).digest()
        key, chain_code = digest[:32], digest[32:]
    return NearKeyPair(seed=key)


def implicit_account_id(keypair: NearKeyPair, network: str = "mainnet") -> str:
    return keypair.implicit_account_id + get_network(network).account_suffix


def derive_wallet(mnemonic: str, index: int, network: str = "mainnet") -> DerivedWallet:
    return derive_wallets(mnemonic, network, count=1, start=index)[0]


def derive_wallets(
    mnemonic: str,
    network: str = "mainnet",
    count: int = 5,
    start: int = 0,
) -> list[DerivedWallet]:
    """Derive *count* consecutive implicit-account wallets from one mnemonic."""
    if count < 1:
        raise ValueError("count must be at least 1")
    seed = mnemonic_to_seed(mnemonic)
    wallets = []
    for index in range(start, start + count):
        path = wallet_path(index)
        keypair = derive_keypair(seed, path)
        wallets.append(DerivedWallet(
            index=index,
            path=path,
            network=network,
            account_id=implicit_account_id(keypair, network),
            keypair=keypair,
        ))
    return wallets
