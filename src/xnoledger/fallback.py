"""
xnoledger.fallback - Ordered fallback chains with circuit breakers

One policy object replaces hand-written "try A, then B, then C" ladders:
- An ordered list of strategies, tried sequentially (never raced)
- A uniform acceptance predicate applied to every result
- A tuple of exception types that fall through to the next strategy
- An optional circuit breaker per strategy
- Bounded retry delays with exponential backoff

Usage:
    from xnoledger.fallback import FallbackChain, Strategy

    chain = FallbackChain(
        "work_generate",
        [Strategy("primary", primary_call), Strategy("public", public_call)],
        accept=lambda work: validate_work(work, root, difficulty),
    )
    work = await chain.run()
"""

from typing import Awaitable, Callable, Generic, List, Optional, Tuple, Type, TypeVar
from dataclasses import dataclass, field
from enum import Enum
import random
import time
import logging

from .errors import LedgerError
from .metrics import LedgerMetrics

logger = logging.getLogger("xnoledger.fallback")

T = TypeVar('T')


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreakerConfig:
    """Consecutive failures that open a circuit, and how long it stays open."""
    failure_threshold: int = 5
    timeout_seconds: float = 60.0


class CircuitBreaker:
    """
    Skips a provider after repeated failures.

    Once the circuit has been open for timeout_seconds, a single probe call
    goes through; its outcome closes the circuit or opens it again.
    """

    def __init__(self, name: str, config: Optional[CircuitBreakerConfig] = None):
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._failures = 0
        self._opened_at: Optional[float] = None
        self._probe_sent = False

    @property
    def state(self) -> CircuitState:
        if self._opened_at is None:
            return CircuitState.CLOSED
        if time.time() - self._opened_at > self.config.timeout_seconds:
            return CircuitState.HALF_OPEN
        return CircuitState.OPEN

    def is_available(self) -> bool:
        state = self.state
        if state == CircuitState.HALF_OPEN and not self._probe_sent:
            self._probe_sent = True
            return True
        return state == CircuitState.CLOSED

    def record_success(self) -> None:
        if self._opened_at is not None:
            logger.info(f"Circuit {self.name} closed after successful probe")
        self.reset()

    def record_failure(self) -> None:
        self._failures += 1
        if self._opened_at is None and self._failures < self.config.failure_threshold:
            return
        if self._opened_at is None:
            logger.warning(f"Circuit {self.name} opened after {self._failures} failures")
        self._opened_at = time.time()
        self._probe_sent = False

    def reset(self) -> None:
        self._failures = 0
        self._opened_at = None
        self._probe_sent = False


class RetryConfig:
    """Bounded retry policy."""
    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 10.0,
        exponential_base: float = 2.0,
        jitter: bool = True,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter

    def get_delay(self, attempt: int) -> float:
        """Delay before retry number `attempt` (0-based)."""
        delay = min(
            self.base_delay * (self.exponential_base ** attempt),
            self.max_delay
        )
        if self.jitter:
            delay *= (0.5 + random.random())
        return delay


# ============================================================================
# FALLBACK CHAIN
# ============================================================================

@dataclass
class Strategy(Generic[T]):
    """One step of a fallback chain."""
    name: str
    call: Callable[[], Awaitable[T]]
    breaker: Optional[CircuitBreaker] = None


@dataclass
class StrategyAttempt:
    """Outcome of one strategy inside a chain run."""
    name: str
    success: bool
    duration_ms: float
    error: Optional[str] = None
    skipped: bool = False


class FallbackExhausted(LedgerError):
    """Every strategy in a chain failed or was skipped."""

    def __init__(self, operation: str, attempts: List[StrategyAttempt],
                 last_error: Optional[BaseException] = None):
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error
        tried = ", ".join(a.name for a in attempts) or "none"
        super().__init__(f"{operation}: all strategies failed (tried: {tried}): {last_error}")


class ResultRejected(LedgerError):
    """A strategy returned a result the acceptance predicate refused."""
    pass


@dataclass
class FallbackChain(Generic[T]):
    """
    Ordered strategies tried one at a time until one is accepted.

    Attributes:
        operation: Name used for logs and metrics
        strategies: Strategies in priority order
        accept: Predicate every result must satisfy
        fall_through: Exception types that move on to the next strategy.
            Anything else propagates immediately.
        stop_on: Subtypes of fall_through that propagate anyway
    """
    operation: str
    strategies: List[Strategy]
    accept: Callable[[T], bool] = field(default=lambda result: result is not None)
    fall_through: Tuple[Type[BaseException], ...] = (Exception,)
    stop_on: Tuple[Type[BaseException], ...] = ()
    metrics: Optional[LedgerMetrics] = None

    async def run(self) -> T:
        attempts: List[StrategyAttempt] = []
        last_error: Optional[BaseException] = None

        for index, strategy in enumerate(self.strategies):
            if strategy.breaker is not None and not strategy.breaker.is_available():
                logger.debug(f"{self.operation}: skipping {strategy.name} (circuit open)")
                attempts.append(StrategyAttempt(strategy.name, False, 0.0, "circuit open", True))
                continue

            start = time.time()
            try:
                result = await strategy.call()
                if not self.accept(result):
                    raise ResultRejected(f"{strategy.name} returned an unacceptable result")
            except self.fall_through as e:
                duration_ms = (time.time() - start) * 1000
                if self.stop_on and isinstance(e, self.stop_on):
                    if strategy.breaker is not None:
                        strategy.breaker.record_failure()
                    if self.metrics is not None:
                        self.metrics.record_operation(
                            self.operation, False, strategy.name, duration_ms, str(e)
                        )
                    raise
                last_error = e
                attempts.append(StrategyAttempt(strategy.name, False, duration_ms, str(e)))
                if strategy.breaker is not None:
                    strategy.breaker.record_failure()
                if self.metrics is not None:
                    self.metrics.record_operation(
                        self.operation, False, strategy.name, duration_ms, str(e)
                    )
                    if index + 1 < len(self.strategies):
                        self.metrics.record_fallback(
                            self.operation, type(e).__name__,
                            strategy.name, self.strategies[index + 1].name,
                        )
                logger.warning(f"{self.operation}: {strategy.name} failed: {e}")
                continue

            duration_ms = (time.time() - start) * 1000
            attempts.append(StrategyAttempt(strategy.name, True, duration_ms))
            if strategy.breaker is not None:
                strategy.breaker.record_success()
            if self.metrics is not None:
                self.metrics.record_operation(self.operation, True, strategy.name, duration_ms)
            if index > 0:
                logger.info(f"{self.operation}: succeeded via fallback {strategy.name}")
            return result

        raise FallbackExhausted(self.operation, attempts, last_error)
