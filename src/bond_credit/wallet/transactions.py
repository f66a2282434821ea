"""NEAR transfer transactions: amounts, borsh encoding and signing."""

from __future__ import annotations

import base64
import hashlib
import struct
from dataclasses import dataclass
from decimal import Decimal, Inexact, InvalidOperation, localcontext

import base58

from bond_credit.wallet.derivation import KEY_PREFIX, NearKeyPair

YOCTO_PER_NEAR = 10**24
_YOCTO_PRECISION = 80

_ED25519_KEY_TYPE = 0
_ACTION_TRANSFER = 3


# ---------------------------------------------------------------------------
# Amounts
# ---------------------------------------------------------------------------

def near_to_yocto(amount: str | int | Decimal) -> int:
    """Convert a NEAR amount to yoctoNEAR without float rounding.

    Raises ``ValueError`` for negative amounts or more than 24 decimals.
    """
    try:
        value = Decimal(str(amount))
    except InvalidOperation as exc:
        raise ValueError(f"Invalid NEAR amount: {amount!r}") from exc
    if not value.is_finite():
        raise ValueError(f"Invalid NEAR amount: {amount!r}")
    # The default 28-digit context would round large amounts.
    with localcontext() as ctx:
        ctx.prec = _YOCTO_PRECISION
        ctx.traps[Inexact] = True
        try:
            value *= YOCTO_PER_NEAR
        except Inexact as exc:
            raise ValueError(f"NEAR amount has too many digits: {amount}") from exc
    if value < 0:
        raise ValueError(f"NEAR amount cannot be negative: {amount}")
    if value != value.to_integral_value():
        raise ValueError(f"NEAR amount has more than 24 decimals: {amount}")
    return int(value)


def yocto_to_near(yocto: int | str) -> Decimal:
    with localcontext() as ctx:
        ctx.prec = _YOCTO_PRECISION
        return Decimal(int(yocto)) / YOCTO_PER_NEAR


def format_near(yocto: int | str, places: int = 4) -> str:
    return f"{yocto_to_near(yocto):.{places}f}"


# ---------------------------------------------------------------------------
# Borsh
# ---------------------------------------------------------------------------

class BorshWriter:
    """Append-only borsh encoder for the handful of types a transfer needs."""

    def __init__(self) -> None:
        self._buf = bytearray()

    def u8(self, value: int) -> BorshWriter:
        self._buf += struct.pack("<B", value)
        return self

    def u32(self, value: int) -> BorshWriter:
        self._buf += struct.pack("<I", value)
        return self

    def u64(self, value: int) -> BorshWriter:
        self._buf += struct.pack("<Q", value)
        return self

    def u128(self, value: int) -> BorshWriter:
        if not 0 <= value < 2**128:
            raise ValueError(f"u128 out of range: {value}")
        self._buf += value.to_bytes(16, "little")
        return self

    def fixed(self, data: bytes) -> BorshWriter:
        self._buf += data
        return self

    def string(self, value: str) -> BorshWriter:
        encoded = value.encode("utf-8")
        return self.u32(len(encoded)).fixed(encoded)

    def getvalue(self) -> bytes:
        return bytes(self._buf)


def decode_public_key(public_key: str) -> bytes:
    if not public_key.startswith(KEY_PREFIX):
        raise ValueError("Public key must start with 'ed25519:'")
    raw = base58.b58decode(public_key[len(KEY_PREFIX):])
    if len(raw) != 32:
        raise ValueError(f"Public key has {len(raw)} bytes, expected 32")
    return raw


@dataclass(frozen=True)
class TransferTransaction:
    signer_id: str
    public_key: bytes
    nonce: int
    receiver_id: str
    block_hash: bytes
    deposit: int  # yoctoNEAR

    def serialize(self) -> bytes:
        if len(self.block_hash) != 32:
            raise ValueError("Block hash must be 32 bytes")
        return (
            BorshWriter()
            .string(self.signer_id)
            .u8(_ED25519_KEY_TYPE).fixed(self.public_key)
            .u64(self.nonce)
            .string(self.receiver_id)
            .fixed(self.block_hash)
            .u32(1)
            .u8(_ACTION_TRANSFER).u128(self.deposit)
            .getvalue()
        )

    def hash(self) -> bytes:
        return hashlib.sha256(self.serialize()).digest()


@dataclass(frozen=True)
class SignedTransfer:
    transaction: TransferTransaction
    signature: bytes

    @property
    def tx_hash(self) -> str:
        return base58.b58encode(self.transaction.hash()).decode("ascii")

    def serialize(self) -> bytes:
        return (
            BorshWriter()
            .fixed(self.transaction.serialize())
            .u8(_ED25519_KEY_TYPE).fixed(self.signature)
            .getvalue()
        )

    def to_base64(self) -> str:
        return base64.b64encode(self.serialize()).decode("ascii")


def build_transfer(
    keypair: NearKeyPair,
    signer_id: str,
    receiver_id: str,
    amount_yocto: int,
    nonce: int,
    block_hash: str,
) -> SignedTransfer:
    """Build and sign a single-action Transfer.

    *nonce* must be one above the access key's current nonce and
    *block_hash* a recent base58 block hash.
    """
    tx = TransferTransaction(
        signer_id=signer_id,
        public_key=keypair.public_key_bytes,
        nonce=nonce,
        receiver_id=receiver_id,
        block_hash=base58.b58decode(block_hash),
        deposit=amount_yocto,
    )
    return SignedTransfer(transaction=tx, signature=keypair.sign(tx.hash()))
