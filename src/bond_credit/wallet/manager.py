"""High-level NEAR wallet manager used by the platform, API and CLI."""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Optional

import httpx

from bond_credit.config import NearConfig
from bond_credit.storage.database import Database
from bond_credit.storage.models import TransferRecord, TransferStatus, WalletRecord
from bond_credit.wallet.derivation import DerivedWallet, NearKeyPair, derive_wallets
from bond_credit.wallet.keystore import (
    create_keystore,
    decrypt_mnemonic,
    keystore_path,
    load_public_info,
)
from bond_credit.wallet.networks import NearNetwork, get_network
from bond_credit.wallet.rpc import NearRpcClient, NearRpcError
from bond_credit.wallet.transactions import SignedTransfer, build_transfer, format_near

logger = logging.getLogger("bond_credit.wallet.manager")


class WalletManager:
    """Orchestrates keystore, NEAR RPC, and database for wallet operations."""

    def __init__(
        self,
        wallet_dir: Path,
        db: Database,
        near: NearConfig | None = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.wallet_dir = wallet_dir
        self.db = db
        self.near = near or NearConfig()
        self.network: NearNetwork = get_network(self.near.resolved_network_id)
        self.rpc = NearRpcClient(
            self.near.node_url or self.network.node_url,
            timeout=self.near.timeout_seconds,
            transport=transport,
        )
        # Last nonce used per (account, public key).
        self._nonces: dict[tuple[str, str], int] = {}

    async def close(self) -> None:
        await self.rpc.aclose()

    # ------------------------------------------------------------------
    # Wallet lifecycle
    # ------------------------------------------------------------------

    def has_wallet(self) -> bool:
        """Check whether a keystore exists."""
        return keystore_path(self.wallet_dir).exists()

    def create(self, mnemonic: str, password: str, count: int = 5) -> list[dict]:
        """Create an encrypted keystore and return the derived public accounts."""
        return create_keystore(
            self.wallet_dir, mnemonic, password,
            network=self.network.network_id, count=count,
        )

    @property
    def accounts(self) -> list[dict]:
        """Public info for every keystore account (empty without a keystore)."""
        info = load_public_info(self.wallet_dir)
        return info["wallets"] if info else []

    def unlock(self, password: str, count: int | None = None) -> list[DerivedWallet]:
        """Decrypt the mnemonic and re-derive the signing wallets."""
        mnemonic = decrypt_mnemonic(self.wallet_dir, password)
        count = count or max(1, len(self.accounts))
        return derive_wallets(mnemonic, self.network.network_id, count)

    def configured_signer(self) -> tuple[str, NearKeyPair]:
        """The ``near.account_id`` / ``near.private_key`` pair from config.

        Raises ``ValueError`` when either is missing or malformed.
        """
        account_id = self.near.account_id
        if not account_id or account_id.startswith("${"):
            raise ValueError("near.account_id is not configured")
        if not self.near.private_key or self.near.private_key.startswith("${"):
            raise ValueError("near.private_key is not configured")
        return account_id, NearKeyPair.from_secret_key(self.near.private_key)

    def default_account(self) -> str | None:
        if self.near.account_id and not self.near.account_id.startswith("${"):
            return self.near.account_id
        accounts = self.accounts
        return accounts[0]["accountId"] if accounts else None

    # ------------------------------------------------------------------
    # Balances
    # ------------------------------------------------------------------

    async def get_balance(self, account_id: str | None = None) -> dict:
        """Get the NEAR balance of an account.

        Returns a dict with ``accountId``, ``balanceYocto``, ``balanceNear``
        and ``error``. RPC failures are reported in ``error``.
        """
        account_id = account_id or self.default_account()
        if account_id is None:
            return {"error": "No wallet found. Run 'bond-credit wallet create'."}

        try:
            state = await self.rpc.view_account(account_id)
        except NearRpcError as e:
            logger.warning(f"Failed to get balance for {account_id}: {e}")
            return {
                "accountId": account_id,
                "balanceYocto": "0",
                "balanceNear": "0",
                "error": str(e),
            }
        amount = state.get("amount", "0")
        return {
            "accountId": account_id,
            "balanceYocto": amount,
            "balanceNear": format_near(amount),
            "network": self.network.network_id,
            "error": None,
        }

    # ------------------------------------------------------------------
    # Transfers
    # ------------------------------------------------------------------

    async def send_transfer(
        self,
        keypair: NearKeyPair,
        signer_id: str,
        receiver_id: str,
        amount_yocto: int,
        run_id: str | None = None,
    ) -> TransferRecord:
        """Sign and submit one Transfer, then record it.

        Failures are recorded with status ``failed`` and re-raised.
        """
        record = TransferRecord(
            run_id=run_id,
            sender_id=signer_id,
            receiver_id=receiver_id,
            amount_yocto=str(amount_yocto),
            network=self.network.network_id,
            status=TransferStatus.SUCCESS,
            timestamp=int(time.time() * 1000),
        )
        try:
            try:
                signed, outcome = await self._sign_and_broadcast(
                    keypair, signer_id, receiver_id, amount_yocto
                )
            except NearRpcError as e:
                stale = e.invalid_nonce
                if stale is None:
                    raise
                logger.warning(f"Stale nonce for {signer_id} ({stale}), retrying once")
                self._forget_nonce(signer_id, keypair.public_key, stale)
                signed, outcome = await self._sign_and_broadcast(
                    keypair, signer_id, receiver_id, amount_yocto
                )
            if not isinstance(outcome, dict):
                raise NearRpcError(f"Unexpected broadcast result: {outcome!r}", data=outcome)
            failure = (outcome.get("status") or {}).get("Failure")
            if failure:
                raise NearRpcError(f"Transaction failed: {failure}", data=outcome)
            record.tx_hash = (outcome.get("transaction") or {}).get("hash") or signed.tx_hash
        except Exception as e:
            record.status = TransferStatus.FAILED
            record.error = str(e)
            await self.record_transfer(record)
            raise

        await self.record_transfer(record)
        logger.info(
            f"Transfer {format_near(amount_yocto, 6)} NEAR {signer_id} -> {receiver_id}: "
            f"tx={record.tx_hash}"
        )
        return record

    async def _sign_and_broadcast(
        self,
        keypair: NearKeyPair,
        signer_id: str,
        receiver_id: str,
        amount_yocto: int,
    ) -> tuple[SignedTransfer, dict]:
        access_key = await self.rpc.view_access_key(signer_id, keypair.public_key)
        nonce = self._next_nonce(signer_id, keypair.public_key, int(access_key["nonce"]))
        signed = build_transfer(
            keypair,
            signer_id=signer_id,
            receiver_id=receiver_id,
            amount_yocto=amount_yocto,
            nonce=nonce,
            block_hash=access_key["block_hash"],
        )
        return signed, await self.rpc.broadcast_tx_commit(signed.to_base64())

    def _next_nonce(self, signer_id: str, public_key: str, chain_nonce: int) -> int:
        """Reserve the next nonce for a key.

        Views lag behind transactions this process just committed, so the
        last nonce used locally wins when it is ahead of the node's.
        """
        key = (signer_id, public_key)
        nonce = max(chain_nonce, self._nonces.get(key, 0)) + 1
        self._nonces[key] = nonce
        return nonce

    def _forget_nonce(self, signer_id: str, public_key: str, stale: dict) -> None:
        key = (signer_id, public_key)
        ak_nonce = stale.get("ak_nonce") if isinstance(stale, dict) else None
        if ak_nonce is None:
            self._nonces.pop(key, None)
        else:
            self._nonces[key] = int(ak_nonce)

    async def record_transfer(self, record: TransferRecord) -> int:
        cursor = await self.db.execute(
            "INSERT INTO transfers "
            "(run_id, sender_id, receiver_id, amount_yocto, network, status, tx_hash, error, timestamp) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                record.run_id,
                record.sender_id,
                record.receiver_id,
                record.amount_yocto,
                record.network,
                record.status.value,
                record.tx_hash,
                record.error,
                record.timestamp,
            ),
        )
        record.id = cursor.lastrowid
        return cursor.lastrowid

    async def list_transfers(
        self,
        sender_id: str | None = None,
        run_id: str | None = None,
        limit: int = 100,
    ) -> list[TransferRecord]:
        """List recorded transfers, newest first."""
        sql = "SELECT * FROM transfers"
        conditions, params = [], []
        if sender_id:
            conditions.append("sender_id = ?")
            params.append(sender_id)
        if run_id:
            conditions.append("run_id = ?")
            params.append(run_id)
        if conditions:
            sql += " WHERE " + " AND ".join(conditions)
        sql += " ORDER BY timestamp DESC, id DESC LIMIT ?"
        params.append(limit)
        rows = await self.db.fetch_all(sql, tuple(params))
        return [TransferRecord.model_validate(r) for r in rows]

    # ------------------------------------------------------------------
    # DB registration
    # ------------------------------------------------------------------

    async def register_wallets_in_db(self) -> int:
        """Persist keystore accounts to the wallets table (idempotent).

        Returns the number of newly registered accounts.
        """
        added = 0
        for info in self.accounts:
            record = WalletRecord(
                account_id=info["accountId"],
                network=info.get("network", self.network.network_id),
                public_key=info["publicKey"],
                derivation_path=info.get("path", ""),
                wallet_index=info.get("index"),
            )
            existing = await self.db.fetch_one(
                "SELECT account_id FROM wallets WHERE account_id = ?", (record.account_id,)
            )
            if existing:
                continue
            await self.db.execute(
                "INSERT INTO wallets (account_id, network, public_key, derivation_path, wallet_index) "
                "VALUES (?, ?, ?, ?, ?)",
                (
                    record.account_id,
                    record.network,
                    record.public_key,
                    record.derivation_path,
                    record.wallet_index,
                ),
            )
            added += 1
        if added:
            logger.info(f"Registered {added} wallet(s) in DB.")
        return added

    async def list_wallets(self) -> list[WalletRecord]:
        rows = await self.db.fetch_all("SELECT * FROM wallets ORDER BY wallet_index")
        return [WalletRecord.model_validate(r) for r in rows]
