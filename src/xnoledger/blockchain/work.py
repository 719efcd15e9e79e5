"""
xnoledger/blockchain/work.py

Proof-of-work acquisition through an ordered chain of providers.

Providers are tried one at a time in priority order (primary
authenticated service, lower-difficulty fallback, public services). Each
returned value is checked locally against the requested threshold before
it is accepted.

Usage:
    from xnoledger.blockchain.work import WorkPool

    pool = WorkPool.from_config(config)
    work = await pool.generate_work(block.work_root, config.send_difficulty)
"""

import asyncio
import hashlib
import logging
from typing import List, Optional

import aiohttp

from ..config import LedgerConfig, RECEIVE_DIFFICULTY, WorkProviderConfig
from ..errors import LedgerError, WorkGenerationFailed
from ..fallback import (
    CircuitBreaker,
    CircuitBreakerConfig,
    FallbackChain,
    FallbackExhausted,
    Strategy,
)
from ..metrics import LedgerMetrics
from ..rpc.client import NanoRPCClient
from ..rpc.connection import RPCConnection

logger = logging.getLogger("xnoledger.blockchain.work")


# ============================================================================
# WORK VALIDATION
# ============================================================================

def work_value(work: str, root: str) -> int:
    """
    Difficulty value of a work nonce for a root.

    blake2b-64 over the nonce (8 bytes little-endian) followed by the root,
    read as a little-endian integer.
    """
    nonce = bytes.fromhex(work)
    if len(nonce) != 8:
        raise ValueError(f"Work must be 8 bytes, got {len(nonce)}")
    digest = hashlib.blake2b(nonce[::-1] + bytes.fromhex(root), digest_size=8).digest()
    return int.from_bytes(digest, "little")


def validate_work(work: str, root: str, difficulty: str) -> bool:
    """True when `work` meets `difficulty` for `root`. Malformed work is invalid."""
    try:
        return work_value(work, root) >= int(difficulty, 16)
    except (TypeError, ValueError):
        return False


def harder(a: str, b: str) -> str:
    """The higher of two difficulty thresholds."""
    return a if int(a, 16) >= int(b, 16) else b


# ============================================================================
# PROVIDERS
# ============================================================================

class WorkProvider:
    """One remote work source with its own difficulty floor."""

    def __init__(
        self,
        name: str,
        client: NanoRPCClient,
        difficulty: Optional[str] = None,
        timeout: float = 30.0,
        breaker: Optional[CircuitBreaker] = None,
    ):
        self.name = name
        self.client = client
        self.difficulty = difficulty
        self.timeout = timeout
        self.breaker = breaker

    def effective_difficulty(self, requested: str) -> str:
        if self.difficulty is None:
            return requested
        return harder(self.difficulty, requested)

    async def generate(self, root: str, requested: str) -> str:
        difficulty = self.effective_difficulty(requested)
        logger.debug(f"{self.name}: work_generate {root} at {difficulty}")
        return await asyncio.wait_for(
            self.client.work_generate(root, difficulty, timeout=self.timeout),
            timeout=self.timeout,
        )

    async def close(self) -> None:
        await self.client.close()

    @classmethod
    def from_config(
        cls,
        provider: WorkProviderConfig,
        session: Optional[aiohttp.ClientSession] = None,
        metrics: Optional[LedgerMetrics] = None,
        breaker_config: Optional[CircuitBreakerConfig] = None,
    ) -> "WorkProvider":
        connection = RPCConnection(
            provider.url,
            headers=provider.headers(),
            timeout=provider.timeout,
            session=session,
        )
        return cls(
            name=provider.name,
            client=NanoRPCClient(connection, name=provider.name, metrics=metrics),
            difficulty=provider.difficulty,
            timeout=provider.timeout,
            breaker=CircuitBreaker(f"work_{provider.name}", breaker_config),
        )


class WorkPool:
    """
    Ordered work providers behind one fallback chain.

    Example:
        pool = WorkPool([primary, fallback, public])
        work = await pool.generate_work(root, "fffffe0000000000")
    """

    def __init__(
        self,
        providers: List[WorkProvider],
        default_difficulty: str = RECEIVE_DIFFICULTY,
        metrics: Optional[LedgerMetrics] = None,
    ):
        if not providers:
            raise ValueError("At least one work provider is required")
        self.providers = providers
        self.default_difficulty = default_difficulty
        self.metrics = metrics

    @classmethod
    def from_config(
        cls,
        config: LedgerConfig,
        session: Optional[aiohttp.ClientSession] = None,
        metrics: Optional[LedgerMetrics] = None,
    ) -> "WorkPool":
        breaker_config = CircuitBreakerConfig(
            failure_threshold=config.circuit_failure_threshold,
            timeout_seconds=config.circuit_timeout_seconds,
        )
        providers = [
            WorkProvider.from_config(p, session, metrics, breaker_config)
            for p in config.get_work_providers()
        ]
        return cls(providers, config.receive_difficulty, metrics)

    async def generate_work(self, root: str, difficulty: Optional[str] = None) -> str:
        """
        Get work for `root` meeting `difficulty`.

        Args:
            root: Work root (previous hash, or account key for open blocks)
            difficulty: Minimum threshold the result must meet

        Returns:
            Work value as 16 lowercase hex characters

        Raises:
            WorkGenerationFailed: When every provider failed, carrying the
                last provider error
        """
        requested = difficulty or self.default_difficulty

        strategies = [
            Strategy(p.name, self._provider_call(p, root, requested), p.breaker)
            for p in self.providers
        ]
        chain = FallbackChain(
            "work_generate",
            strategies,
            accept=lambda work: validate_work(work, root, requested),
            fall_through=(LedgerError, asyncio.TimeoutError),
            metrics=self.metrics,
        )
        try:
            work = await chain.run()
        except FallbackExhausted as e:
            logger.error(f"Work generation exhausted for {root}: {e.last_error}")
            raise WorkGenerationFailed(root, e.last_error)
        return work.lower()

    @staticmethod
    def _provider_call(provider: WorkProvider, root: str, requested: str):
        async def call():
            return await provider.generate(root, requested)
        return call

    async def close(self) -> None:
        for provider in self.providers:
            await provider.close()
