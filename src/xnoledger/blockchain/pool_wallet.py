"""
xnoledger/blockchain/pool_wallet.py

Community reward pool account.

The pool account collects a share of every upvote payment and pays out
the daily reward distribution. The amount paid per day is the smaller of
1% of the pool balance and the configured daily distribution.

Usage:
    from xnoledger.blockchain.pool_wallet import PoolWallet

    pool = PoolWallet.from_config(client)
    payments = await pool.distribute_rewards(engine, wallets)
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from ..address import decode_address
from ..config import (
    CREATOR_UPVOTE_SHARE,
    DAILY_DISTRIBUTION_XNO,
    LIKE_POOL_PERCENTAGE,
    UPLOAD_POOL_PERCENTAGE,
)
from ..errors import (
    InsufficientBalance,
    InvalidAmount,
    LedgerError,
    SubmissionUncertain,
)
from ..rewards import DailyPool, RewardEngine
from ..units import decimal_to_raw, raw_to_xno, xno_to_raw
from .ledger_client import LedgerClient, ReceiveSummary

logger = logging.getLogger("xnoledger.blockchain.pool_wallet")


# ============================================================================
# DATA STRUCTURES
# ============================================================================

@dataclass
class PoolSettings:
    """Pool distribution settings."""
    upload_pool_percentage: int = UPLOAD_POOL_PERCENTAGE
    like_pool_percentage: int = LIKE_POOL_PERCENTAGE
    daily_distribution_raw: int = field(
        default_factory=lambda: xno_to_raw(DAILY_DISTRIBUTION_XNO)
    )
    max_daily_percentage: int = 1           # of the pool balance
    creator_share_percentage: int = CREATOR_UPVOTE_SHARE
    default_upvote_raw: int = field(default_factory=lambda: xno_to_raw("0.01"))

    def to_dict(self) -> dict:
        return {
            "upload_pool_percentage": self.upload_pool_percentage,
            "like_pool_percentage": self.like_pool_percentage,
            "daily_distribution": raw_to_xno(self.daily_distribution_raw),
            "max_daily_percentage": self.max_daily_percentage,
            "creator_share_percentage": self.creator_share_percentage,
        }


@dataclass
class RewardPayment:
    """Outcome of one payout."""
    wallet: str
    amount_raw: int
    success: bool
    hash: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "wallet": self.wallet,
            "amount_raw": str(self.amount_raw),
            "amount": raw_to_xno(self.amount_raw),
            "success": self.success,
            "hash": self.hash,
            "error": self.error,
        }


@dataclass
class UpvoteResult:
    """Outcome of an upvote payment split between creator and pool."""
    success: bool
    creator_amount_raw: int = 0
    pool_amount_raw: int = 0
    creator_hash: Optional[str] = None
    pool_hash: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "creator_amount": raw_to_xno(self.creator_amount_raw),
            "pool_amount": raw_to_xno(self.pool_amount_raw),
            "creator_hash": self.creator_hash,
            "pool_hash": self.pool_hash,
            "error": self.error,
        }


def split_upvote(amount_raw: int, creator_percentage: int = CREATOR_UPVOTE_SHARE) -> Tuple[int, int]:
    """
    Split an upvote payment into (creator, pool) shares.

    The pool receives the remainder, so the shares always sum to the input.
    """
    if amount_raw <= 0:
        raise InvalidAmount(f"Upvote amount must be positive: {amount_raw}")
    if not 0 <= creator_percentage <= 100:
        raise InvalidAmount(f"Creator percentage out of range: {creator_percentage}")
    creator = amount_raw * creator_percentage // 100
    return creator, amount_raw - creator


# ============================================================================
# POOL WALLET
# ============================================================================

class PoolWallet:
    """Reward pool account bound to a LedgerClient."""

    def __init__(
        self,
        client: LedgerClient,
        address: str,
        secret_key: str,
        settings: Optional[PoolSettings] = None,
    ):
        client.verify_secret_key(address, secret_key)
        self.client = client
        self.address = address
        self._secret_key = secret_key
        self.settings = settings or PoolSettings()

    @classmethod
    def from_config(cls, client: LedgerClient,
                    settings: Optional[PoolSettings] = None) -> "PoolWallet":
        """Build from the pool address and key in the client configuration."""
        config = client.config
        if not config.pool_address or not config.pool_secret_key:
            raise LedgerError(
                "Pool wallet not configured: set PUBLIC_POOL_ADDRESS and POOL_PRIVATE_KEY"
            )
        return cls(client, config.pool_address, config.pool_secret_key, settings)

    async def get_balance_raw(self) -> int:
        info = await self.client.get_wallet_info(self.address)
        return info.balance_raw

    def available_distribution_raw(self, balance_raw: int) -> int:
        """Amount that may be paid today from a pool of `balance_raw`."""
        return min(
            balance_raw * self.settings.max_daily_percentage // 100,
            self.settings.daily_distribution_raw,
        )

    async def current_pool(self) -> DailyPool:
        """Today's distributable pool, sized from the current balance."""
        balance = await self.get_balance_raw()
        return DailyPool(
            total_pool_raw=self.available_distribution_raw(balance),
            upload_pool_percentage=self.settings.upload_pool_percentage,
            like_pool_percentage=self.settings.like_pool_percentage,
        )

    async def get_stats(self) -> dict:
        balance = await self.get_balance_raw()
        return {
            "address": self.address,
            "balance": raw_to_xno(balance),
            "available_today": raw_to_xno(self.available_distribution_raw(balance)),
            "settings": self.settings.to_dict(),
        }

    async def receive_contributions(self) -> ReceiveSummary:
        """Receive pending upvote shares into the pool account."""
        return await self.client.receive_all_pending(self.address, self._secret_key)

    async def distribute(self, payments: Dict[str, int]) -> List[RewardPayment]:
        """
        Pay rewards one recipient at a time.

        Args:
            payments: Wallet address -> amount in raw

        Returns:
            One RewardPayment per recipient. A failed payment does not stop
            the others, except an uncertain submission, after which the
            remaining payments are not attempted.

        Raises:
            InvalidAmount: If the total exceeds the daily distribution
            InsufficientBalance: If the total exceeds the pool balance
        """
        for wallet, amount in payments.items():
            decode_address(wallet)
            if amount <= 0:
                raise InvalidAmount(f"Payment to {wallet} must be positive: {amount}")

        total = sum(payments.values())
        if total > self.settings.daily_distribution_raw:
            raise InvalidAmount(
                f"Total distribution {raw_to_xno(total)} exceeds daily limit "
                f"{raw_to_xno(self.settings.daily_distribution_raw)}"
            )
        balance = await self.get_balance_raw()
        if total > balance:
            raise InsufficientBalance(balance, total)

        results: List[RewardPayment] = []
        items = list(payments.items())
        for index, (wallet, amount) in enumerate(items):
            try:
                tx = await self.client.send_raw(self.address, self._secret_key, wallet, amount)
            except SubmissionUncertain as e:
                results.append(RewardPayment(wallet, amount, False, e.block_hash, str(e)))
                for skipped_wallet, skipped_amount in items[index + 1:]:
                    results.append(RewardPayment(
                        skipped_wallet, skipped_amount, False,
                        error="not attempted after uncertain submission",
                    ))
                logger.error(f"Distribution halted after uncertain payment to {wallet}")
                break
            except LedgerError as e:
                logger.warning(f"Reward payment to {wallet} failed: {e}")
                results.append(RewardPayment(wallet, amount, False, error=str(e)))
                continue
            results.append(RewardPayment(wallet, amount, True, tx.hash))

        paid = sum(r.amount_raw for r in results if r.success)
        logger.info(
            f"Distributed {raw_to_xno(paid)} XNO to "
            f"{sum(1 for r in results if r.success)}/{len(items)} wallets"
        )
        return results

    async def distribute_rewards(self, engine: RewardEngine,
                                 wallets: List[str]) -> List[RewardPayment]:
        """Compute today's rewards for `wallets` and pay them."""
        pool = await self.current_pool()
        shares = await engine.compute_distribution(wallets, pool)
        payments = {}
        for wallet, amount in shares.items():
            raw = decimal_to_raw(amount)
            if raw > 0:
                payments[wallet] = raw
        if not payments:
            logger.info("No rewards to distribute")
            return []
        return await self.distribute(payments)

    async def process_upvote(
        self,
        from_address: str,
        from_secret_key: str,
        creator_address: str,
        amount_raw: Optional[int] = None,
    ) -> UpvoteResult:
        """
        Pay for an upvote: creator share first, then the pool share.

        Failures are reported in the result rather than raised, so a
        creator payment that succeeded is never lost from view.
        """
        amount_raw = amount_raw or self.settings.default_upvote_raw
        creator_raw, pool_raw = split_upvote(amount_raw, self.settings.creator_share_percentage)
        result = UpvoteResult(False, creator_raw, pool_raw)

        try:
            creator_tx = await self.client.send_raw(
                from_address, from_secret_key, creator_address, creator_raw
            )
        except LedgerError as e:
            result.error = f"Failed to send to creator: {e}"
            logger.warning(result.error)
            return result
        result.creator_hash = creator_tx.hash

        if pool_raw > 0:
            try:
                pool_tx = await self.client.send_raw(
                    from_address, from_secret_key, self.address, pool_raw
                )
            except LedgerError as e:
                result.error = f"Sent to creator but failed to send to pool: {e}"
                logger.warning(result.error)
                return result
            result.pool_hash = pool_tx.hash

        result.success = True
        return result
