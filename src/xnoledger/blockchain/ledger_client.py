"""
xnoledger/blockchain/ledger_client.py

Ledger client: account state, receiving pending transfers, sending.

Every mutating operation re-reads account state, builds one block, gets
proof-of-work, signs and submits, all under a per-account lock. An account
with no frontier receives through an open block; afterwards through
receive blocks. Sends are only possible from an opened account.

Usage:
    from xnoledger import LedgerClient, LedgerConfig

    async with LedgerClient(LedgerConfig.from_env()) as client:
        summary = await client.receive_all_pending(address, secret_key)
        result = await client.send(address, secret_key, destination, "0.5")
"""

import asyncio
import logging
import weakref
from dataclasses import dataclass, field
from typing import Callable, List, Optional

import aiohttp

from ..address import decode_address, same_account
from ..config import LedgerConfig
from ..errors import (
    AccountNotFound,
    BlockRejected,
    InvalidAmount,
    InvalidSecretKey,
    LedgerError,
    OperationTimeout,
    RPCError,
    SubmissionUncertain,
    WorkGenerationFailed,
)
from ..fallback import FallbackChain, FallbackExhausted, RetryConfig, Strategy
from ..metrics import LedgerMetrics
from ..models import AccountState, BlockKind, HistoryEntry, PendingBlock
from ..rpc.client import NanoRPCClient, create_client, create_public_clients
from ..signing import derive_public_key, sign_block_hash, validate_secret_key
from ..units import raw_to_xno, xno_to_raw
from .block_builder import BlockBuilder, StateBlock
from .work import WorkPool, harder

logger = logging.getLogger("xnoledger.blockchain.ledger_client")


# ============================================================================
# RESULTS
# ============================================================================

@dataclass
class TransactionResult:
    """A block accepted by the ledger."""
    hash: str
    kind: BlockKind
    block: StateBlock
    amount_raw: int
    attempts: int = 1

    def to_dict(self) -> dict:
        return {
            "hash": self.hash,
            "kind": self.kind.value,
            "amount_raw": str(self.amount_raw),
            "amount": raw_to_xno(self.amount_raw),
            "balance_raw": str(self.block.balance_raw),
            "previous": self.block.previous,
            "attempts": self.attempts,
        }


@dataclass
class InFlight:
    """The signed block of the current attempt, readable after a cancellation."""
    block: Optional[StateBlock] = None
    attempt: int = 0


@dataclass
class BlockOutcome:
    """Result of receiving one pending block inside a batch."""
    source_hash: str
    amount_raw: int
    success: bool
    kind: Optional[BlockKind] = None
    block_hash: Optional[str] = None
    previous: Optional[str] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    attempts: int = 0

    def to_dict(self) -> dict:
        return {
            "source_hash": self.source_hash,
            "amount_raw": str(self.amount_raw),
            "success": self.success,
            "kind": self.kind.value if self.kind else None,
            "block_hash": self.block_hash,
            "previous": self.previous,
            "error": self.error,
            "error_type": self.error_type,
            "attempts": self.attempts,
        }


@dataclass
class ReceiveSummary:
    """Outcome of a receive-all-pending batch. Partial success is normal."""
    address: str
    outcomes: List[BlockOutcome] = field(default_factory=list)
    timed_out: bool = False

    @property
    def received_count(self) -> int:
        return sum(1 for o in self.outcomes if o.success)

    @property
    def failed_count(self) -> int:
        return sum(1 for o in self.outcomes if not o.success)

    @property
    def total_received_raw(self) -> int:
        return sum(o.amount_raw for o in self.outcomes if o.success)

    @property
    def received(self) -> bool:
        return self.received_count > 0

    def to_dict(self) -> dict:
        return {
            "address": self.address,
            "received_count": self.received_count,
            "failed_count": self.failed_count,
            "total_received_raw": str(self.total_received_raw),
            "total_received": raw_to_xno(self.total_received_raw),
            "timed_out": self.timed_out,
            "outcomes": [o.to_dict() for o in self.outcomes],
        }


@dataclass
class WalletInfo:
    """Wallet verification result."""
    address: str
    valid: bool
    opened: bool = False
    balance_raw: int = 0
    receivable_raw: int = 0

    def to_dict(self) -> dict:
        return {
            "address": self.address,
            "valid": self.valid,
            "opened": self.opened,
            "balance_raw": str(self.balance_raw),
            "balance": raw_to_xno(self.balance_raw),
            "receivable_raw": str(self.receivable_raw),
            "receivable": raw_to_xno(self.receivable_raw),
        }


# ============================================================================
# LEDGER CLIENT
# ============================================================================

class LedgerClient:
    """
    Orchestrates account queries and block submission.

    Components can be injected for testing; anything not given is built
    from the configuration.
    """

    def __init__(
        self,
        config: Optional[LedgerConfig] = None,
        rpc: Optional[NanoRPCClient] = None,
        work_pool: Optional[WorkPool] = None,
        submitters: Optional[List[NanoRPCClient]] = None,
        builder: Optional[BlockBuilder] = None,
        metrics: Optional[LedgerMetrics] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        """
        Initialize client.

        Args:
            config: Ledger configuration (defaults to LedgerConfig())
            rpc: Client for queries against the primary endpoint
            work_pool: Proof-of-work provider chain
            submitters: Ordered clients tried for block submission. The
                first is normally the primary endpoint.
            builder: Block builder
            metrics: Metrics collector shared by all components
            session: Shared aiohttp session for built components
        """
        self.config = config or LedgerConfig()
        self.metrics = metrics or LedgerMetrics()
        self.rpc = rpc or create_client(self.config, session, self.metrics)
        self.work_pool = work_pool or WorkPool.from_config(self.config, session, self.metrics)
        if submitters is None:
            submitters = [self.rpc] + create_public_clients(self.config, session, self.metrics)
        self.submitters = submitters
        self.builder = builder or BlockBuilder(self.config.default_representative)
        self.retry = RetryConfig(
            max_attempts=self.config.max_block_attempts,
            base_delay=self.config.retry_base_delay,
            max_delay=self.config.retry_max_delay,
        )
        # Entries vanish once no operation holds or waits on the lock
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    # ========================================================================
    # LOCKING AND KEYS
    # ========================================================================

    def account_lock(self, address: str) -> asyncio.Lock:
        """Lock serializing mutations of one account (keyed by public key)."""
        key = decode_address(address)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    @staticmethod
    def verify_secret_key(address: str, secret_key) -> bytes:
        secret = validate_secret_key(secret_key)
        if derive_public_key(secret) != decode_address(address):
            raise InvalidSecretKey(f"Secret key does not belong to {address}")
        return secret

    def difficulty_for(self, kind: BlockKind, attempt: int = 0) -> str:
        """
        Work threshold for an attempt.

        The first attempt uses the threshold for the block kind; each retry
        steps up towards the send threshold.
        """
        if kind == BlockKind.SEND:
            base = self.config.send_difficulty
        elif kind == BlockKind.OPEN:
            base = self.config.effective_open_difficulty
        else:
            base = self.config.receive_difficulty

        ladder = [base]
        for step in (self.config.receive_difficulty, self.config.send_difficulty):
            if harder(step, ladder[-1]) == step and step != ladder[-1]:
                ladder.append(step)
        return ladder[min(attempt, len(ladder) - 1)]

    # ========================================================================
    # QUERIES
    # ========================================================================

    async def get_account_state(self, address: str) -> AccountState:
        """
        Current state of an opened account.

        Raises:
            AccountNotFound: If the account has never been opened
        """
        decode_address(address)
        return await self.rpc.account_info(address)

    async def _read_state(self, address: str) -> AccountState:
        try:
            return await self.rpc.account_info(address)
        except AccountNotFound:
            return AccountState(address=address, public_key=decode_address(address))

    async def get_pending(self, address: str, count: Optional[int] = None) -> List[PendingBlock]:
        decode_address(address)
        return await self.rpc.pending(address, count or self.config.pending_count)

    async def get_wallet_info(self, address: str) -> WalletInfo:
        """
        Verify a wallet address and read its balances.

        An unopened account is valid with a zero balance.
        """
        try:
            decode_address(address)
        except LedgerError:
            return WalletInfo(address=address, valid=False)

        state = await self._read_state(address)
        if state.is_open:
            return WalletInfo(
                address=address,
                valid=True,
                opened=True,
                balance_raw=state.balance_raw,
                receivable_raw=state.receivable_raw,
            )
        _, receivable = await self.rpc.account_balance(address)
        return WalletInfo(address=address, valid=True, opened=False, receivable_raw=receivable)

    async def get_history(self, address: str, count: Optional[int] = None) -> List[HistoryEntry]:
        decode_address(address)
        return await self.rpc.account_history(address, count or self.config.history_count)

    async def verify_payment(
        self,
        from_address: str,
        to_address: str,
        amount_raw: int,
        count: int = 10,
    ) -> Optional[HistoryEntry]:
        """
        Look for a send of exactly `amount_raw` in the sender's recent history.

        Returns:
            The matching history entry, or None
        """
        decode_address(to_address)
        history = await self.get_history(from_address, count)
        for entry in history:
            if entry.kind != "send" or entry.amount_raw != amount_raw:
                continue
            try:
                if same_account(entry.account, to_address):
                    return entry
            except LedgerError:
                continue
        return None

    # ========================================================================
    # BLOCK PIPELINE
    # ========================================================================

    async def _complete(self, block: StateBlock, secret: bytes, difficulty: str) -> StateBlock:
        work = await self.work_pool.generate_work(block.work_root, difficulty)
        block = block.with_work(work)
        return block.with_signature(sign_block_hash(block.hash, secret))

    async def _submit(self, block: StateBlock) -> str:
        """
        Submit through the ordered submitters.

        Only a request that never reached an endpoint moves on to the next
        one. A rejection is final for this attempt; a request that may have
        been delivered raises SubmissionUncertain.
        """
        def submit_via(client: NanoRPCClient):
            async def call():
                try:
                    return await client.process(block)
                except SubmissionUncertain:
                    raise
                except RPCError as e:
                    if e.maybe_delivered:
                        raise SubmissionUncertain(str(e), block.hash) from e
                    raise
            return call

        chain = FallbackChain(
            "process",
            [Strategy(c.name, submit_via(c)) for c in self.submitters],
            fall_through=(RPCError,),
            stop_on=(SubmissionUncertain,),
            metrics=self.metrics,
        )
        try:
            return await chain.run()
        except FallbackExhausted as e:
            raise RPCError(f"No endpoint accepted block {block.hash}: {e.last_error}",
                           action="process")

    async def _landed(self, address: str, block_hash: str) -> bool:
        try:
            state = await self._read_state(address)
        except RPCError:
            return False
        return state.frontier == block_hash

    async def _submit_with_retries(
        self,
        operation: str,
        address: str,
        secret: bytes,
        build: Callable[[AccountState], StateBlock],
        amount_raw: int,
        retry_uncertain: bool,
        in_flight: Optional[InFlight] = None,
    ) -> TransactionResult:
        """
        Read state, build, work, sign and submit, retrying on failures
        where the ledger definitely did not take the block.

        Args:
            retry_uncertain: Whether a possibly-delivered block may be
                rebuilt. Only safe when the rebuilt block is identical
                (receives); never for sends.
            in_flight: Updated with each attempt's signed block before it
                is submitted
        """
        last_error: Optional[LedgerError] = None
        in_flight = in_flight or InFlight()

        for attempt in range(self.retry.max_attempts):
            if attempt:
                await asyncio.sleep(self.retry.get_delay(attempt - 1))

            signed: Optional[StateBlock] = None
            in_flight.attempt = attempt + 1
            try:
                state = await self._read_state(address)
                block = build(state)
                difficulty = self.difficulty_for(block.kind, attempt)
                signed = await self._complete(block, secret, difficulty)
                in_flight.block = signed
                block_hash = await self._submit(signed)
            except SubmissionUncertain as e:
                if signed is not None and await self._landed(address, signed.hash):
                    logger.info(f"{operation}: block {signed.hash} found in ledger after uncertain submit")
                    block_hash = signed.hash
                elif retry_uncertain:
                    last_error = e
                    logger.warning(f"{operation} attempt {attempt + 1} for {address}: {e}")
                    continue
                else:
                    logger.error(f"{operation} for {address} is uncertain: {e}")
                    raise
            except (BlockRejected, WorkGenerationFailed, RPCError) as e:
                if isinstance(e, BlockRejected) and not e.retryable:
                    logger.error(f"{operation} for {address} rejected: {e.reason}")
                    raise
                in_flight.block = None
                last_error = e
                logger.warning(
                    f"{operation} attempt {attempt + 1}/{self.retry.max_attempts} "
                    f"for {address} failed: {e}"
                )
                continue

            self.metrics.record_block(signed.kind.value)
            logger.info(
                f"{operation}: {signed.kind.value} block {block_hash} for {address} "
                f"({raw_to_xno(amount_raw)} XNO)"
            )
            return TransactionResult(
                hash=block_hash,
                kind=signed.kind,
                block=signed,
                amount_raw=amount_raw,
                attempts=attempt + 1,
            )

        logger.error(f"{operation} for {address} failed after {self.retry.max_attempts} attempts")
        raise last_error

    async def _settle_timeout(
        self,
        operation: str,
        address: str,
        in_flight: InFlight,
        amount_raw: int,
        timeout: float,
    ) -> TransactionResult:
        """
        Resolve an operation cut off by its deadline.

        A block that was signed and handed out before the deadline may have
        been accepted; if it is the account frontier it counts as a success.

        Raises:
            OperationTimeout: Carrying the in-flight block hash, if any
        """
        block = in_flight.block
        if block is not None and await self._landed(address, block.hash):
            logger.info(f"{operation}: block {block.hash} found in ledger after timeout")
            self.metrics.record_block(block.kind.value)
            return TransactionResult(
                hash=block.hash,
                kind=block.kind,
                block=block,
                amount_raw=amount_raw,
                attempts=in_flight.attempt,
            )
        block_hash = block.hash if block is not None else None
        logger.error(f"{operation} for {address} timed out after {timeout}s, block {block_hash}")
        raise OperationTimeout(operation, timeout, block_hash)

    # ========================================================================
    # RECEIVING
    # ========================================================================

    async def _receive_one(self, address: str, secret: bytes, pending: PendingBlock,
                           in_flight: Optional[InFlight] = None) -> TransactionResult:
        return await self._submit_with_retries(
            "receive",
            address,
            secret,
            lambda state: self.builder.build_incoming(state, pending),
            pending.amount_raw,
            retry_uncertain=True,
            in_flight=in_flight,
        )

    async def receive_block(self, address: str, secret_key,
                            pending: PendingBlock) -> TransactionResult:
        """
        Receive one pending block (open block if the account is new).

        Raises:
            OperationTimeout: If the operation exceeds operation_timeout and
                the in-flight block, if any, is not in the ledger
        """
        secret = self.verify_secret_key(address, secret_key)
        in_flight = InFlight()
        async with self.account_lock(address):
            try:
                return await asyncio.wait_for(
                    self._receive_one(address, secret, pending, in_flight),
                    timeout=self.config.operation_timeout,
                )
            except asyncio.TimeoutError:
                return await self._settle_timeout(
                    "receive", address, in_flight, pending.amount_raw,
                    self.config.operation_timeout,
                )

    async def receive_all_pending(self, address: str, secret_key,
                                  count: Optional[int] = None) -> ReceiveSummary:
        """
        Receive every pending block, one at a time.

        Pending blocks are listed in pages of `count` (default
        pending_count) and listed again after each page until nothing new
        is left. Each block is built from freshly read state, so the first
        block of a new account is an open block and every later one a
        receive block chained from the previous success. A block that fails
        after its retries is recorded and the batch moves on. When the batch
        deadline passes, the block being worked on is settled against the
        ledger and the rest of the page is recorded as timed out.

        Returns:
            ReceiveSummary with one outcome per pending block attempted
        """
        secret = self.verify_secret_key(address, secret_key)
        summary = ReceiveSummary(address=address)
        loop = asyncio.get_running_loop()
        attempted = set()

        async with self.account_lock(address):
            deadline = loop.time() + self.config.batch_timeout
            while not summary.timed_out:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    self._mark_timed_out(summary, [])
                    break
                try:
                    listed = await asyncio.wait_for(
                        self.get_pending(address, count), timeout=remaining
                    )
                except asyncio.TimeoutError:
                    self._mark_timed_out(summary, [])
                    break

                # Blocks that already failed stay pending; a page with nothing new ends the batch
                page = [p for p in listed if p.source_hash not in attempted]
                if not page:
                    break
                logger.info(f"Receiving {len(page)} pending blocks for {address}")
                attempted.update(p.source_hash for p in page)
                await self._receive_page(summary, address, secret, page, deadline)

        if not summary.outcomes:
            logger.info(f"No pending blocks for {address}")
            return summary
        logger.info(
            f"Received {summary.received_count}/{len(summary.outcomes)} blocks for {address} "
            f"({raw_to_xno(summary.total_received_raw)} XNO), {summary.failed_count} failed"
        )
        return summary

    async def _receive_page(self, summary: ReceiveSummary, address: str, secret: bytes,
                            page: List[PendingBlock], deadline: float) -> None:
        loop = asyncio.get_running_loop()
        for index, pending in enumerate(page):
            remaining = deadline - loop.time()
            if remaining <= 0:
                self._mark_timed_out(summary, page[index:])
                return

            in_flight = InFlight()
            try:
                result = await asyncio.wait_for(
                    self._receive_one(address, secret, pending, in_flight), timeout=remaining
                )
            except asyncio.TimeoutError:
                try:
                    result = await self._settle_timeout(
                        "receive", address, in_flight, pending.amount_raw,
                        self.config.batch_timeout,
                    )
                except OperationTimeout as e:
                    summary.outcomes.append(self._failure(pending, e, in_flight.attempt))
                else:
                    summary.outcomes.append(self._success(pending, result))
                self._mark_timed_out(summary, page[index + 1:])
                return
            except LedgerError as e:
                summary.outcomes.append(self._failure(pending, e))
                continue
            summary.outcomes.append(self._success(pending, result))

    @staticmethod
    def _success(pending: PendingBlock, result: TransactionResult) -> BlockOutcome:
        return BlockOutcome(
            source_hash=pending.source_hash,
            amount_raw=pending.amount_raw,
            success=True,
            kind=result.kind,
            block_hash=result.hash,
            previous=result.block.previous,
            attempts=result.attempts,
        )

    @staticmethod
    def _failure(pending: PendingBlock, error: LedgerError, attempts: int = 0) -> BlockOutcome:
        return BlockOutcome(
            source_hash=pending.source_hash,
            amount_raw=pending.amount_raw,
            success=False,
            block_hash=getattr(error, "block_hash", None),
            error=str(error),
            error_type=type(error).__name__,
            attempts=attempts,
        )

    def _mark_timed_out(self, summary: ReceiveSummary, remaining: List[PendingBlock]) -> None:
        summary.timed_out = True
        logger.warning(
            f"Receive batch for {summary.address} timed out with {len(remaining)} blocks left"
        )
        for pending in remaining:
            summary.outcomes.append(BlockOutcome(
                source_hash=pending.source_hash,
                amount_raw=pending.amount_raw,
                success=False,
                error=f"batch timed out after {self.config.batch_timeout}s",
                error_type=OperationTimeout.__name__,
            ))

    # ========================================================================
    # SENDING
    # ========================================================================

    async def send(self, from_address: str, secret_key, to_address: str,
                   amount_xno) -> TransactionResult:
        """
        Send an amount given in XNO.

        Args:
            from_address: Sending account (must be opened)
            secret_key: Secret key of the sending account
            to_address: Destination address (any prefix)
            amount_xno: Amount as a decimal string, int or Decimal

        Returns:
            TransactionResult of the send block
        """
        decode_address(from_address)
        decode_address(to_address)
        return await self.send_raw(from_address, secret_key, to_address, xno_to_raw(amount_xno))

    async def send_raw(self, from_address: str, secret_key, to_address: str,
                       amount_raw: int) -> TransactionResult:
        """
        Send an amount given in raw.

        Raises:
            InsufficientBalance: If the amount exceeds the balance
            AccountNotFound: If the sender has never been opened
            SubmissionUncertain: If the block may have been accepted; the
                send is not retried
            OperationTimeout: If the send exceeds operation_timeout and the
                in-flight block, whose hash it carries, is not in the ledger
        """
        decode_address(to_address)
        if amount_raw <= 0:
            raise InvalidAmount(f"Send amount must be positive: {amount_raw}")
        secret = self.verify_secret_key(from_address, secret_key)

        def build(state: AccountState) -> StateBlock:
            if not state.is_open:
                raise AccountNotFound(from_address)
            return self.builder.build_send(state, to_address, amount_raw)

        in_flight = InFlight()
        async with self.account_lock(from_address):
            try:
                return await asyncio.wait_for(
                    self._submit_with_retries(
                        "send", from_address, secret, build, amount_raw,
                        retry_uncertain=False, in_flight=in_flight,
                    ),
                    timeout=self.config.operation_timeout,
                )
            except asyncio.TimeoutError:
                return await self._settle_timeout(
                    "send", from_address, in_flight, amount_raw,
                    self.config.operation_timeout,
                )

    # ========================================================================
    # LIFECYCLE
    # ========================================================================

    async def close(self) -> None:
        clients = [self.rpc] + [c for c in self.submitters if c is not self.rpc]
        for client in clients:
            await client.close()
        await self.work_pool.close()

    async def __aenter__(self) -> "LedgerClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
