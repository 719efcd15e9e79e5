"""
xnoledger/rewards.py

Daily reward pool distribution from upload and like activity.

Each day's pool is split into an upload share and a like share:
- Upload reward: a wallet's uploads today (capped per wallet) as a fraction
  of all uploads today, times the upload pool
- Like reward: for each content item the wallet owns, its likes as a
  fraction of all likes, times the like pool, each item capped at a
  percentage of the like pool before summing

The cap on likes applies per content item, not per wallet: several
moderately liked items can together exceed the cap, one viral item cannot.

Round boundaries: 00:00 UTC to 23:59:59 UTC daily

Usage:
    from xnoledger.rewards import RewardEngine

    engine = RewardEngine(data_source)
    breakdown = await engine.reward_breakdown(wallet)
    shares = await engine.compute_distribution(wallets)
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Dict, List, Optional

from .config import (
    LIKE_POOL_PERCENTAGE,
    MAX_REWARD_PERCENTAGE,
    MAX_UPLOADS_PER_WALLET,
    UPLOAD_POOL_PERCENTAGE,
)
from .units import raw_to_decimal, raw_to_xno

logger = logging.getLogger("xnoledger.rewards")

ZERO = Decimal(0)
HUNDRED = Decimal(100)


# ============================================================================
# DATA STRUCTURES
# ============================================================================

@dataclass
class DailyPool:
    """
    Reward pool for one day.

    Percentages are whole numbers and together may not exceed 100.
    """
    total_pool_raw: int
    upload_pool_percentage: int = UPLOAD_POOL_PERCENTAGE
    like_pool_percentage: int = LIKE_POOL_PERCENTAGE

    def __post_init__(self):
        if self.total_pool_raw < 0:
            raise ValueError(f"Pool cannot be negative: {self.total_pool_raw}")
        for name in ("upload_pool_percentage", "like_pool_percentage"):
            value = getattr(self, name)
            if not 0 <= value <= 100:
                raise ValueError(f"{name} must be between 0 and 100, got {value}")
        if self.upload_pool_percentage + self.like_pool_percentage > 100:
            raise ValueError(
                f"Pool percentages sum to "
                f"{self.upload_pool_percentage + self.like_pool_percentage}, above 100"
            )

    @property
    def total_pool(self) -> Decimal:
        """Pool size in XNO."""
        return raw_to_decimal(self.total_pool_raw)

    @property
    def upload_pool(self) -> Decimal:
        return self.total_pool * Decimal(self.upload_pool_percentage) / HUNDRED

    @property
    def like_pool(self) -> Decimal:
        return self.total_pool * Decimal(self.like_pool_percentage) / HUNDRED

    def to_dict(self) -> dict:
        return {
            "total_pool_raw": str(self.total_pool_raw),
            "total_pool": raw_to_xno(self.total_pool_raw),
            "upload_pool_percentage": self.upload_pool_percentage,
            "like_pool_percentage": self.like_pool_percentage,
        }


@dataclass
class RewardResult:
    """A wallet's reward for the current day, in XNO."""
    wallet: str
    upload_reward: Decimal = ZERO
    like_reward: Decimal = ZERO

    @property
    def total(self) -> Decimal:
        return self.upload_reward + self.like_reward

    def to_dict(self) -> dict:
        return {
            "wallet": self.wallet,
            "upload_reward": str(self.upload_reward),
            "like_reward": str(self.like_reward),
            "total": str(self.total),
        }


# ============================================================================
# DATA SOURCE
# ============================================================================

class RewardDataSource(ABC):
    """Aggregate activity counts from the content repository."""

    @abstractmethod
    async def get_daily_pool(self) -> Optional[DailyPool]:
        """Current pool, or None if no pool is set."""
        pass

    @abstractmethod
    async def count_uploads_since(self, since: datetime) -> int:
        pass

    @abstractmethod
    async def count_wallet_uploads_since(self, wallet: str, since: datetime) -> int:
        pass

    @abstractmethod
    async def total_like_count(self) -> int:
        """Likes across all content."""
        pass

    @abstractmethod
    async def wallet_like_counts(self, wallet: str) -> List[int]:
        """Like count of each content item owned by the wallet."""
        pass


def start_of_day(now: Optional[datetime] = None) -> datetime:
    """00:00 UTC of the day containing `now` (default: current time)."""
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    now = now.astimezone(timezone.utc)
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


# ============================================================================
# REWARD ENGINE
# ============================================================================

class RewardEngine:
    """
    Computes wallet shares of the daily pool.

    Amounts are Decimal XNO. No binary floating point is used.
    """

    def __init__(
        self,
        source: RewardDataSource,
        max_uploads_per_wallet: int = MAX_UPLOADS_PER_WALLET,
        max_reward_percentage: int = MAX_REWARD_PERCENTAGE,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize engine.

        Args:
            source: Activity data source
            max_uploads_per_wallet: Uploads per wallet per day that count
            max_reward_percentage: Cap per content item, as a percentage of
                the like pool
            clock: Returns the current time (for tests)
        """
        self.source = source
        self.max_uploads_per_wallet = max_uploads_per_wallet
        self.max_reward_percentage = max_reward_percentage
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def today(self) -> datetime:
        return start_of_day(self._clock())

    async def upload_reward(self, wallet: str, pool: Optional[DailyPool] = None) -> Decimal:
        """
        Upload share for a wallet.

        (min(uploads today, cap) / total uploads today) * upload pool
        """
        pool = pool or await self.source.get_daily_pool()
        if pool is None or pool.total_pool_raw == 0:
            return ZERO

        since = self.today()
        total_uploads = await self.source.count_uploads_since(since)
        if total_uploads <= 0:
            return ZERO

        wallet_uploads = await self.source.count_wallet_uploads_since(wallet, since)
        counted = min(wallet_uploads, self.max_uploads_per_wallet)
        if counted <= 0:
            return ZERO
        return (Decimal(counted) / Decimal(total_uploads)) * pool.upload_pool

    async def like_reward(self, wallet: str, pool: Optional[DailyPool] = None) -> Decimal:
        """
        Like share for a wallet.

        Sum over the wallet's content of (likes / all likes) * like pool,
        each item capped at max_reward_percentage of the like pool.
        """
        pool = pool or await self.source.get_daily_pool()
        if pool is None or pool.total_pool_raw == 0:
            return ZERO

        total_likes = await self.source.total_like_count()
        if total_likes <= 0:
            return ZERO

        like_pool = pool.like_pool
        cap = like_pool * Decimal(self.max_reward_percentage) / HUNDRED

        reward = ZERO
        for likes in await self.source.wallet_like_counts(wallet):
            if likes <= 0:
                continue
            share = (Decimal(likes) / Decimal(total_likes)) * like_pool
            reward += min(share, cap)
        return reward

    async def reward_breakdown(self, wallet: str,
                               pool: Optional[DailyPool] = None) -> RewardResult:
        pool = pool or await self.source.get_daily_pool()
        return RewardResult(
            wallet=wallet,
            upload_reward=await self.upload_reward(wallet, pool),
            like_reward=await self.like_reward(wallet, pool),
        )

    async def total_reward(self, wallet: str, pool: Optional[DailyPool] = None) -> Decimal:
        return (await self.reward_breakdown(wallet, pool)).total

    async def compute_distribution(
        self,
        wallets: List[str],
        pool: Optional[DailyPool] = None,
    ) -> Dict[str, Decimal]:
        """
        Rewards for a list of wallets.

        Wallets with a zero reward are left out.
        """
        pool = pool or await self.source.get_daily_pool()
        if pool is None:
            logger.info("No daily pool set; nothing to distribute")
            return {}

        distribution = {}
        for wallet in dict.fromkeys(wallets):
            total = await self.total_reward(wallet, pool)
            if total > 0:
                distribution[wallet] = total

        logger.info(
            f"Computed rewards for {len(distribution)}/{len(wallets)} wallets "
            f"from a pool of {raw_to_xno(pool.total_pool_raw)} XNO"
        )
        return distribution
