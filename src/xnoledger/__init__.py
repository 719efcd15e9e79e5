"""
xnoledger - Nano/XNO ledger client

Built on aiohttp and PyNaCl with:
- Address codec and integer raw/XNO conversion
- State block building, hashing and ed25519-blake2b signing
- Proof-of-work through an ordered chain of fallback providers
- Safe receiving of pending transfers into new or existing accounts
- Daily reward pool computation and payout

Usage:
    from xnoledger import LedgerClient, LedgerConfig

    config = LedgerConfig.from_env()
    async with LedgerClient(config) as client:
        summary = await client.receive_all_pending(address, secret_key)
        result = await client.send(address, secret_key, destination, "0.25")

Rewards Usage:
    from xnoledger import RewardEngine

    engine = RewardEngine(data_source)
    total = await engine.total_reward(wallet)
"""

from .address import (
    decode_address,
    encode_address,
    is_valid_address,
    normalize_address,
)
from .blockchain import (
    BlockBuilder,
    LedgerClient,
    PoolWallet,
    ReceiveSummary,
    StateBlock,
    TransactionResult,
    WorkPool,
)
from .config import LedgerConfig, WorkProviderConfig
from .errors import (
    AccountNotFound,
    BlockRejected,
    InsufficientBalance,
    InvalidAddressFormat,
    InvalidAmount,
    InvalidSecretKey,
    LedgerError,
    OperationTimeout,
    RPCError,
    StaleFrontier,
    SubmissionUncertain,
    UnreceivablePending,
    WorkGenerationFailed,
)
from .metrics import LedgerMetrics
from .models import AccountState, BlockKind, PendingBlock
from .rewards import DailyPool, RewardDataSource, RewardEngine, RewardResult
from .signing import NanoKeyPair, sign_block_hash, verify_signature
from .units import raw_to_xno, xno_to_raw

__version__ = "0.1.0"

__all__ = [
    # Addresses and amounts
    "decode_address",
    "encode_address",
    "is_valid_address",
    "normalize_address",
    "raw_to_xno",
    "xno_to_raw",
    # Keys
    "NanoKeyPair",
    "sign_block_hash",
    "verify_signature",
    # Ledger
    "AccountState",
    "BlockKind",
    "PendingBlock",
    "BlockBuilder",
    "StateBlock",
    "WorkPool",
    "LedgerClient",
    "ReceiveSummary",
    "TransactionResult",
    "PoolWallet",
    # Rewards
    "DailyPool",
    "RewardDataSource",
    "RewardEngine",
    "RewardResult",
    # Configuration and metrics
    "LedgerConfig",
    "WorkProviderConfig",
    "LedgerMetrics",
    # Errors
    "LedgerError",
    "InvalidAddressFormat",
    "InvalidSecretKey",
    "InvalidAmount",
    "InsufficientBalance",
    "AccountNotFound",
    "RPCError",
    "SubmissionUncertain",
    "WorkGenerationFailed",
    "BlockRejected",
    "StaleFrontier",
    "UnreceivablePending",
    "OperationTimeout",
]
