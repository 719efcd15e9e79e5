"""
Shared fixtures for xnoledger tests.

FakeLedger stands in for the RPC service: it keeps account chains and
pending blocks in memory, checks signatures and frontiers the way a node
does, and lets tests inject rejections.
"""

import asyncio

import pytest

from xnoledger.address import decode_address, encode_address
from xnoledger.blockchain.ledger_client import LedgerClient
from xnoledger.config import DEFAULT_REPRESENTATIVE, LedgerConfig, ZERO_HASH
from xnoledger.errors import (
    AccountNotFound,
    BlockRejected,
    StaleFrontier,
    UnreceivablePending,
)
from xnoledger.models import AccountState, BlockKind, PendingBlock
from xnoledger.signing import NanoKeyPair, verify_signature

ZERO_SEED = "0" * 64
FAKE_WORK = "0123456789abcdef"


class FakeLedger:
    """In-memory ledger implementing the NanoRPCClient query and process API."""

    name = "fake"

    def __init__(self):
        self.accounts = {}          # public key -> {frontier, balance, representative}
        self.pending_blocks = {}    # public key -> {source hash: (amount, source account)}
        self.unreceivable = set()
        self.reject_next = []       # exceptions raised by the next process calls
        self.processed = []
        self.process_calls = 0
        self.history = {}
        self._counter = 0

    def next_hash(self) -> str:
        self._counter += 1
        return f"{self._counter:064X}"

    def open_account(self, address, balance_raw, frontier=None,
                     representative=DEFAULT_REPRESENTATIVE):
        frontier = frontier or self.next_hash()
        self.accounts[decode_address(address)] = {
            "frontier": frontier,
            "balance": balance_raw,
            "representative": representative,
        }
        return frontier

    def add_pending(self, address, amount_raw, source_hash=None, source=None):
        source_hash = source_hash or self.next_hash()
        source = source or encode_address("00" * 32)
        self.pending_blocks.setdefault(decode_address(address), {})[source_hash] = (
            amount_raw, source,
        )
        return source_hash

    def balance_of(self, address) -> int:
        account = self.accounts.get(decode_address(address))
        return account["balance"] if account else 0

    def frontier_of(self, address):
        account = self.accounts.get(decode_address(address))
        return account["frontier"] if account else None

    async def account_info(self, address):
        key = decode_address(address)
        account = self.accounts.get(key)
        if account is None:
            raise AccountNotFound(address)
        receivable = sum(a for a, _ in self.pending_blocks.get(key, {}).values())
        return AccountState(
            address=address,
            public_key=key,
            frontier=account["frontier"],
            representative=account["representative"],
            balance_raw=account["balance"],
            receivable_raw=receivable,
        )

    async def account_balance(self, address):
        key = decode_address(address)
        receivable = sum(a for a, _ in self.pending_blocks.get(key, {}).values())
        return self.balance_of(address), receivable

    async def pending(self, address, count=10, threshold_raw=None):
        blocks = self.pending_blocks.get(decode_address(address), {})
        return [
            PendingBlock(source_hash=h, amount_raw=a, source_account=s)
            for h, (a, s) in list(blocks.items())[:count]
        ]

    async def account_history(self, address, count=20):
        return self.history.get(decode_address(address), [])[:count]

    async def process(self, block):
        self.process_calls += 1
        if self.reject_next:
            raise self.reject_next.pop(0)

        key = decode_address(block.account)
        if not verify_signature(block.hash, block.signature, key):
            raise BlockRejected("Bad signature", block.hash, block.kind.value)

        account = self.accounts.get(key)
        if block.kind == BlockKind.OPEN:
            if account is not None or block.previous != ZERO_HASH:
                raise StaleFrontier("Fork", block.hash, block.kind.value)
            old_balance = 0
        else:
            if account is None or block.previous != account["frontier"]:
                raise StaleFrontier("Gap previous block", block.hash, block.kind.value)
            old_balance = account["balance"]

        if block.kind in (BlockKind.OPEN, BlockKind.RECEIVE):
            pending = self.pending_blocks.get(key, {})
            if block.link in self.unreceivable or block.link not in pending:
                raise UnreceivablePending("Unreceivable", block.hash, block.kind.value)
            amount = pending[block.link][0]
            if block.balance_raw != old_balance + amount:
                raise StaleFrontier("Balance mismatch", block.hash, block.kind.value)
            del pending[block.link]
        else:
            amount = old_balance - block.balance_raw
            if amount <= 0:
                raise BlockRejected("Negative spend", block.hash, block.kind.value)
            self.pending_blocks.setdefault(block.link, {})[block.hash] = (
                amount, block.account,
            )

        self.accounts[key] = {
            "frontier": block.hash,
            "balance": block.balance_raw,
            "representative": block.representative,
        }
        self.processed.append(block)
        return block.hash

    async def close(self):
        pass


class FakeWorkPool:
    """Work pool that records requests and returns a fixed nonce."""

    def __init__(self, slow_call=None, delay=0.0):
        self.calls = []
        self.slow_call = slow_call
        self.delay = delay

    async def generate_work(self, root, difficulty=None):
        self.calls.append((root, difficulty))
        if self.slow_call is not None and len(self.calls) == self.slow_call:
            await asyncio.sleep(self.delay)
        else:
            await asyncio.sleep(0)
        return FAKE_WORK

    async def close(self):
        pass


@pytest.fixture
def ledger():
    """Empty fake ledger."""
    return FakeLedger()


@pytest.fixture
def work_pool():
    """Fake work pool."""
    return FakeWorkPool()


@pytest.fixture
def alice():
    """Key pair at index 0 of the zero seed."""
    return NanoKeyPair.from_seed(ZERO_SEED, 0)


@pytest.fixture
def bob():
    """Key pair at index 1 of the zero seed."""
    return NanoKeyPair.from_seed(ZERO_SEED, 1)


@pytest.fixture
def make_client(ledger, work_pool):
    """Factory for a LedgerClient wired to the fake ledger."""
    def factory(submitters=None, pool=None, **overrides):
        overrides.setdefault("retry_base_delay", 0.0)
        overrides.setdefault("retry_max_delay", 0.0)
        config = LedgerConfig(**overrides)
        return LedgerClient(
            config,
            rpc=ledger,
            work_pool=pool or work_pool,
            submitters=submitters if submitters is not None else [ledger],
        )
    return factory
