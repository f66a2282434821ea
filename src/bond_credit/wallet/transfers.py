"""Bulk NEAR transfers from a set of wallets to one receiver."""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Callable, Optional

from bond_credit.config import TransferConfig
from bond_credit.wallet.derivation import NearKeyPair
from bond_credit.wallet.manager import WalletManager
from bond_credit.wallet.rpc import NearRpcError
from bond_credit.wallet.transactions import format_near, near_to_yocto

logger = logging.getLogger("bond_credit.wallet.transfers")


@dataclass
class TransferWallet:
    """A sender taking part in a bulk run."""

    account_id: str
    secret_key: str


@dataclass
class WalletResult:
    account_id: str
    attempted: int = 0
    successful: int = 0
    failed: int = 0
    tx_hashes: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


@dataclass
class TransferSummary:
    run_id: str
    receiver_id: str
    amount_yocto: int
    transfers_per_wallet: int
    results: list[WalletResult] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return sum(r.attempted for r in self.results)

    @property
    def successful(self) -> int:
        return sum(r.successful for r in self.results)

    @property
    def failed(self) -> int:
        return sum(r.failed for r in self.results)

    @property
    def success_rate(self) -> float:
        return round(self.successful / self.total * 100, 2) if self.total else 0.0

    def to_dict(self) -> dict:
        return {
            "runId": self.run_id,
            "receiverId": self.receiver_id,
            "wallets": len(self.results),
            "skippedWallets": self.skipped,
            "transfersPerWallet": self.transfers_per_wallet,
            "totalTransfers": self.total,
            "successful": self.successful,
            "failed": self.failed,
            "successRate": self.success_rate,
            "amountPerTransferNear": format_near(self.amount_yocto, 6),
            "totalMovedNear": format_near(self.amount_yocto * self.successful, 6),
            "perWallet": [
                {
                    "accountId": r.account_id,
                    "successful": r.successful,
                    "failed": r.failed,
                    "sampleTxHashes": r.tx_hashes[:3],
                }
                for r in self.results
            ],
        }


class BulkTransferExecutor:
    """Sends a fixed number of transfers from each wallet to one receiver.

    Each wallet sends sequentially so its access-key nonce stays ordered;
    different wallets run concurrently.

    Parameters
    ----------
    manager:
        Wallet manager used for balance checks, signing and recording.
    config:
        Pacing settings (delays, batch size).
    on_progress:
        Optional callback invoked with ``(account_id, WalletResult)`` after
        every attempt.
    """

    def __init__(
        self,
        manager: WalletManager,
        config: TransferConfig | None = None,
        on_progress: Optional[Callable[[str, WalletResult], None]] = None,
    ) -> None:
        self.manager = manager
        self.config = config or TransferConfig()
        self.on_progress = on_progress

    async def verify_wallets(self, wallets: list[TransferWallet]) -> tuple[list[TransferWallet], list[str]]:
        """Drop wallets without a key or whose account cannot be read."""
        valid: list[TransferWallet] = []
        skipped: list[str] = []
        for wallet in wallets:
            if not wallet.secret_key:
                logger.error(f"Wallet {wallet.account_id} has no private key, skipping")
                skipped.append(wallet.account_id)
                continue
            try:
                NearKeyPair.from_secret_key(wallet.secret_key)
            except ValueError as e:
                logger.error(f"Wallet {wallet.account_id} has an invalid private key: {e}")
                skipped.append(wallet.account_id)
                continue
            balance = await self.manager.get_balance(wallet.account_id)
            if balance.get("error"):
                logger.error(f"Wallet {wallet.account_id} is not usable: {balance['error']}")
                skipped.append(wallet.account_id)
                continue
            logger.info(f"Wallet {wallet.account_id} balance: {balance['balanceNear']} NEAR")
            valid.append(wallet)
        return valid, skipped

    async def _run_wallet(
        self,
        wallet: TransferWallet,
        receiver_id: str,
        amount_yocto: int,
        count: int,
        delay: float,
        run_id: str,
    ) -> WalletResult:
        result = WalletResult(account_id=wallet.account_id)
        keypair = NearKeyPair.from_secret_key(wallet.secret_key)
        for i in range(count):
            result.attempted += 1
            try:
                record = await self.manager.send_transfer(
                    keypair, wallet.account_id, receiver_id, amount_yocto, run_id=run_id
                )
                result.successful += 1
                result.tx_hashes.append(record.tx_hash or "")
            except NearRpcError as e:
                result.failed += 1
                result.errors.append(str(e))
                logger.warning(f"[{wallet.account_id}] transfer {i + 1}/{count} failed: {e}")
                if e.is_rate_limit or e.is_timeout:
                    await asyncio.sleep(self.config.error_delay_seconds)
            except Exception as e:
                result.failed += 1
                result.errors.append(f"{type(e).__name__}: {e}")
                logger.exception(f"[{wallet.account_id}] transfer {i + 1}/{count} failed unexpectedly")
            if self.on_progress:
                self.on_progress(wallet.account_id, result)
            if i < count - 1 and delay > 0:
                await asyncio.sleep(delay)
        logger.info(
            f"[{wallet.account_id}] finished: {result.successful}/{result.attempted} successful"
        )
        return result

    async def run(
        self,
        wallets: list[TransferWallet],
        receiver_id: str,
        count: int | None = None,
        amount_near: str | None = None,
        delay: float | None = None,
    ) -> TransferSummary:
        """Verify *wallets* then send *count* transfers from each, concurrently."""
        if not receiver_id:
            raise ValueError("A receiver account is required")
        count = self.config.count if count is None else count
        if count < 1:
            raise ValueError("count must be at least 1")
        amount_yocto = near_to_yocto(amount_near or self.config.amount_near)
        if amount_yocto <= 0:
            raise ValueError("Transfer amount must be positive")
        delay = self.config.delay_seconds if delay is None else delay

        summary = TransferSummary(
            run_id=uuid.uuid4().hex[:12],
            receiver_id=receiver_id,
            amount_yocto=amount_yocto,
            transfers_per_wallet=count,
        )
        valid, summary.skipped = await self.verify_wallets(wallets)
        if not valid:
            logger.error("No usable wallets for bulk transfer run")
            return summary

        logger.info(
            f"Run {summary.run_id}: {len(valid)} wallet(s) x {count} transfer(s) "
            f"of {format_near(amount_yocto, 6)} NEAR -> {receiver_id}"
        )
        summary.results = list(await asyncio.gather(*(
            self._run_wallet(w, receiver_id, amount_yocto, count, delay, summary.run_id)
            for w in valid
        )))
        logger.info(
            f"Run {summary.run_id} complete: {summary.successful}/{summary.total} "
            f"successful ({summary.success_rate}%)"
        )
        return summary

    async def run_batched(
        self,
        wallets: list[TransferWallet],
        receiver_id: str,
        count: int | None = None,
        amount_near: str | None = None,
        delay: float | None = None,
        batch_size: int | None = None,
        batch_delay: float | None = None,
    ) -> list[TransferSummary]:
        """Like :meth:`run`, processing at most *batch_size* wallets at a time."""
        batch_size = batch_size or self.config.batch_size
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        batch_delay = self.config.batch_delay_seconds if batch_delay is None else batch_delay

        summaries: list[TransferSummary] = []
        batches = [wallets[i:i + batch_size] for i in range(0, len(wallets), batch_size)]
        for n, batch in enumerate(batches, start=1):
            logger.info(f"Batch {n}/{len(batches)}: {len(batch)} wallet(s)")
            summaries.append(await self.run(batch, receiver_id, count, amount_near, delay))
            if n < len(batches) and batch_delay > 0:
                await asyncio.sleep(batch_delay)
        return summaries
