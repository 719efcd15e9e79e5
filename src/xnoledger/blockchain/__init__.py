"""
xnoledger/blockchain/

Block construction, proof-of-work and ledger operations for Nano state
blocks, plus the reward pool account.
"""

from .block_builder import (
    BlockBuilder,
    StateBlock,
    hash_block,
)

from .work import (
    WorkPool,
    WorkProvider,
    validate_work,
    work_value,
)

from .ledger_client import (
    LedgerClient,
    TransactionResult,
    BlockOutcome,
    ReceiveSummary,
    WalletInfo,
)

from .pool_wallet import (
    PoolWallet,
    PoolSettings,
    RewardPayment,
    UpvoteResult,
    split_upvote,
)

__all__ = [
    # Blocks
    "BlockBuilder",
    "StateBlock",
    "hash_block",
    # Proof-of-work
    "WorkPool",
    "WorkProvider",
    "validate_work",
    "work_value",
    # Ledger operations
    "LedgerClient",
    "TransactionResult",
    "BlockOutcome",
    "ReceiveSummary",
    "WalletInfo",
    # Reward pool
    "PoolWallet",
    "PoolSettings",
    "RewardPayment",
    "UpvoteResult",
    "split_upvote",
]
