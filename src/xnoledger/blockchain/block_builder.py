"""
xnoledger/blockchain/block_builder.py

State block construction and hashing.

Builds unsigned open, receive and send blocks from fresh account state.
Blocks are immutable: work and signature are attached by producing a new
block.

Usage:
    from xnoledger.blockchain.block_builder import BlockBuilder

    builder = BlockBuilder(default_representative=config.default_representative)
    block = builder.build_receive(account_state, pending)
    block = block.with_work(work).with_signature(keypair.sign(block.hash))
    rpc_block = block.to_rpc()
"""

import dataclasses
import hashlib
import logging
from dataclasses import dataclass
from typing import Optional

from ..address import decode_address, encode_address, normalize_address
from ..config import DEFAULT_REPRESENTATIVE, ZERO_HASH
from ..errors import InvalidAmount, LedgerError
from ..models import AccountState, BlockKind, PendingBlock
from ..units import checked_add, checked_sub

logger = logging.getLogger("xnoledger.blockchain.block_builder")


# ============================================================================
# HASHING
# ============================================================================

# Preamble identifying state blocks: 32 bytes, value 6
STATE_BLOCK_PREAMBLE = (6).to_bytes(32, "big")


def _hex32(value: str, what: str) -> bytes:
    try:
        data = bytes.fromhex(value)
    except (TypeError, ValueError):
        raise LedgerError(f"{what} is not valid hex: {value!r}")
    if len(data) != 32:
        raise LedgerError(f"{what} must be 32 bytes, got {len(data)}")
    return data


def hash_block(
    account: str,
    previous: str,
    representative: str,
    balance_raw: int,
    link: str,
) -> str:
    """
    Compute the canonical state block hash.

    blake2b-256 over: preamble, account key, previous, representative key,
    balance (16 bytes big-endian), link.

    Args:
        account: Account address
        previous: Previous block hash (zero hash for an open block)
        representative: Representative address
        balance_raw: Balance after this block
        link: Source block hash (open/receive) or destination key (send)

    Returns:
        Block hash as 64 uppercase hex characters
    """
    h = hashlib.blake2b(digest_size=32)
    h.update(STATE_BLOCK_PREAMBLE)
    h.update(bytes.fromhex(decode_address(account)))
    h.update(_hex32(previous, "Previous"))
    h.update(bytes.fromhex(decode_address(representative)))
    h.update(balance_raw.to_bytes(16, "big"))
    h.update(_hex32(link, "Link"))
    return h.hexdigest().upper()


# ============================================================================
# STATE BLOCK
# ============================================================================

@dataclass(frozen=True)
class StateBlock:
    """A state block; unsigned until signature is set."""
    kind: BlockKind
    account: str
    previous: str
    representative: str
    balance_raw: int
    link: str
    work: Optional[str] = None
    signature: Optional[str] = None

    @property
    def hash(self) -> str:
        return hash_block(
            self.account, self.previous, self.representative,
            self.balance_raw, self.link,
        )

    @property
    def work_root(self) -> str:
        """
        Hash that proof-of-work is computed against.

        Opening blocks have no previous block, so work is computed against
        the account public key. Every other block uses its previous hash.
        """
        if self.kind == BlockKind.OPEN:
            return decode_address(self.account)
        return self.previous

    @property
    def is_complete(self) -> bool:
        return self.work is not None and self.signature is not None

    def with_work(self, work: str) -> "StateBlock":
        return dataclasses.replace(self, work=work.lower())

    def with_signature(self, signature: str) -> "StateBlock":
        return dataclasses.replace(self, signature=signature.upper())

    def to_rpc(self) -> dict:
        """JSON block for the process action."""
        if not self.is_complete:
            raise LedgerError(f"{self.kind.value} block {self.hash} is missing work or signature")
        block = {
            "type": "state",
            "account": normalize_address(self.account),
            "previous": self.previous,
            "representative": normalize_address(self.representative),
            "balance": str(self.balance_raw),
            "link": self.link,
            "signature": self.signature,
            "work": self.work,
        }
        if self.kind == BlockKind.SEND:
            block["link_as_account"] = encode_address(self.link)
        return block

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "hash": self.hash,
            "account": self.account,
            "previous": self.previous,
            "representative": self.representative,
            "balance_raw": str(self.balance_raw),
            "link": self.link,
            "work": self.work,
            "signature": self.signature,
        }


# ============================================================================
# BUILDER
# ============================================================================

class BlockBuilder:
    """
    Builds unsigned state blocks.

    Balances are computed with checked arithmetic; an overflow or a
    negative result raises instead of wrapping.
    """

    def __init__(self, default_representative: str = DEFAULT_REPRESENTATIVE):
        decode_address(default_representative)
        self.default_representative = default_representative

    def build_open(
        self,
        address: str,
        pending: PendingBlock,
        representative: Optional[str] = None,
    ) -> StateBlock:
        """
        Build the first block of a never-opened account.

        Args:
            address: Account being opened
            pending: Pending transfer to receive
            representative: Representative to delegate to (default if None)
        """
        decode_address(address)
        representative = representative or self.default_representative
        decode_address(representative)
        _hex32(pending.source_hash, "Source hash")
        return StateBlock(
            kind=BlockKind.OPEN,
            account=address,
            previous=ZERO_HASH,
            representative=representative,
            balance_raw=checked_add(0, pending.amount_raw),
            link=pending.source_hash.upper(),
        )

    def build_receive(self, account: AccountState, pending: PendingBlock) -> StateBlock:
        """Build a receive block chained from the account frontier."""
        if not account.is_open:
            raise LedgerError(f"{account.address} has no frontier; build an open block")
        _hex32(pending.source_hash, "Source hash")
        return StateBlock(
            kind=BlockKind.RECEIVE,
            account=account.address,
            previous=account.frontier.upper(),
            representative=account.representative or self.default_representative,
            balance_raw=checked_add(account.balance_raw, pending.amount_raw),
            link=pending.source_hash.upper(),
        )

    def build_incoming(self, account: AccountState, pending: PendingBlock) -> StateBlock:
        """Open block for a new account, receive block otherwise."""
        if account.is_open:
            return self.build_receive(account, pending)
        return self.build_open(account.address, pending, account.representative)

    def build_send(
        self,
        account: AccountState,
        destination_address: str,
        amount_raw: int,
    ) -> StateBlock:
        """
        Build a send block.

        Raises:
            InsufficientBalance: If amount_raw exceeds the account balance
            InvalidAmount: If amount_raw is not positive
        """
        if not account.is_open:
            raise LedgerError(f"{account.address} has no frontier; nothing to send")
        if amount_raw <= 0:
            raise InvalidAmount(f"Send amount must be positive: {amount_raw}")
        destination_key = decode_address(destination_address)
        return StateBlock(
            kind=BlockKind.SEND,
            account=account.address,
            previous=account.frontier.upper(),
            representative=account.representative or self.default_representative,
            balance_raw=checked_sub(account.balance_raw, amount_raw),
            link=destination_key,
        )
