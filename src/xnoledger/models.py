"""
xnoledger/models.py

Ledger data structures shared by the RPC client and the block builder.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class BlockKind(str, Enum):
    """State block subtypes."""
    OPEN = "open"
    RECEIVE = "receive"
    SEND = "send"


@dataclass
class AccountState:
    """
    Current on-chain state of one account.

    Read fresh before every mutating operation. A never-opened account has
    no frontier and a zero balance.
    """
    address: str
    public_key: str
    frontier: Optional[str] = None
    representative: Optional[str] = None
    balance_raw: int = 0
    receivable_raw: int = 0
    block_count: int = 0

    @property
    def is_open(self) -> bool:
        return self.frontier is not None

    def to_dict(self) -> dict:
        return {
            "address": self.address,
            "public_key": self.public_key,
            "frontier": self.frontier,
            "representative": self.representative,
            "balance_raw": str(self.balance_raw),
            "receivable_raw": str(self.receivable_raw),
            "block_count": self.block_count,
            "opened": self.is_open,
        }


@dataclass
class PendingBlock:
    """An inbound transfer not yet received into the account chain."""
    source_hash: str
    amount_raw: int
    source_account: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "source_hash": self.source_hash,
            "amount_raw": str(self.amount_raw),
            "source_account": self.source_account,
        }


@dataclass
class HistoryEntry:
    """One block from an account's history."""
    hash: str
    kind: str                 # "send" or "receive" as reported by the node
    account: str              # counterparty
    amount_raw: int
    timestamp: Optional[int] = None
    height: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "hash": self.hash,
            "kind": self.kind,
            "account": self.account,
            "amount_raw": str(self.amount_raw),
            "timestamp": self.timestamp,
            "height": self.height,
        }
