"""
xnoledger/errors.py

Exception hierarchy for ledger operations.

Every error raised by the package derives from LedgerError. Input
validation errors also derive from ValueError. Block rejections carry the
remote service's reason string and the hash of the block that was
attempted, so a failed operation can be reconciled by hand.
"""

from typing import Optional, Type


class LedgerError(Exception):
    """Base exception for xnoledger."""
    pass


class InvalidAddressFormat(LedgerError, ValueError):
    """Address has a bad prefix, length, alphabet or checksum."""
    pass


class InvalidSecretKey(LedgerError, ValueError):
    """Secret key is malformed or does not belong to the account."""
    pass


class InvalidAmount(LedgerError, ValueError):
    """Amount is negative, non-numeric, too precise or out of range."""
    pass


class InsufficientBalance(LedgerError):
    """Send amount exceeds the account balance."""

    def __init__(self, balance_raw: int, amount_raw: int):
        self.balance_raw = balance_raw
        self.amount_raw = amount_raw
        super().__init__(
            f"Insufficient balance: have {balance_raw} raw, need {amount_raw} raw"
        )


class AccountNotFound(LedgerError):
    """Account has never been opened on the ledger."""

    def __init__(self, address: str):
        self.address = address
        super().__init__(f"Account not found: {address}")


class RPCError(LedgerError):
    """Transport failure or error response from the RPC service."""

    def __init__(self, message: str, action: Optional[str] = None,
                 maybe_delivered: bool = False):
        self.action = action
        # True when the request may have reached the service before failing
        self.maybe_delivered = maybe_delivered
        super().__init__(message)


class SubmissionUncertain(RPCError):
    """
    A block was handed to the service but no answer came back.

    The block may or may not be in the ledger. Callers must check the
    account before building a replacement.
    """

    def __init__(self, message: str, block_hash: str):
        self.block_hash = block_hash
        super().__init__(
            f"{message} (block {block_hash})", action="process", maybe_delivered=True
        )


class WorkGenerationFailed(LedgerError):
    """Every work provider failed."""

    def __init__(self, root: str, last_error: Optional[BaseException] = None):
        self.root = root
        self.last_error = last_error
        super().__init__(f"Work generation failed for {root}: {last_error}")


class BlockRejected(LedgerError):
    """The service refused a block."""

    retryable = False

    def __init__(self, reason: str, block_hash: Optional[str] = None,
                 kind: Optional[str] = None):
        self.reason = reason
        self.block_hash = block_hash
        self.kind = kind
        super().__init__(f"Block {block_hash} ({kind}) rejected: {reason}")


class StaleFrontier(BlockRejected):
    """Previous hash no longer matches the account frontier."""
    retryable = True


class UnreceivablePending(BlockRejected):
    """Source block is not (or no longer) receivable."""
    retryable = True


class InsufficientWork(BlockRejected):
    """Work value below the threshold the service demands."""
    retryable = True


class OperationTimeout(LedgerError):
    """
    A logical operation exceeded its deadline.

    block_hash is set when a signed block was in flight; it may still reach
    the ledger and must be checked before anything is resent.
    """

    def __init__(self, operation: str, timeout: float, block_hash: Optional[str] = None):
        self.operation = operation
        self.timeout = timeout
        self.block_hash = block_hash
        message = f"{operation} timed out after {timeout}s"
        if block_hash:
            message += f" (block {block_hash})"
        super().__init__(message)


# Node error strings that mean the identical block is already in the ledger
ALREADY_PROCESSED = ("old block",)

_REJECTION_PATTERNS = (
    (("gap previous", "fork", "balance mismatch"), StaleFrontier),
    (("unreceivable", "gap source", "already received"), UnreceivablePending),
    (("work", "threshold", "difficulty"), InsufficientWork),
)


def is_already_processed(reason: str) -> bool:
    lowered = reason.lower()
    return any(p in lowered for p in ALREADY_PROCESSED)


def classify_rejection(reason: str) -> Type[BlockRejected]:
    """
    Map a node rejection string to an exception class.

    Args:
        reason: Error text returned by the process action

    Returns:
        The most specific BlockRejected subclass, or BlockRejected itself
        for permanent failures such as a bad signature.
    """
    lowered = reason.lower()
    for patterns, cls in _REJECTION_PATTERNS:
        if any(p in lowered for p in patterns):
            return cls
    return BlockRejected
