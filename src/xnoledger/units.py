"""
xnoledger/units.py

Conversion between raw (the indivisible ledger unit) and XNO.

All arithmetic is done on Python integers. Display strings are truncated,
not rounded, to six fractional digits.
"""

import re
from decimal import Decimal, localcontext
from typing import Union

from .config import RAW_PER_XNO, DISPLAY_DECIMALS, MAX_BALANCE_RAW
from .errors import InvalidAmount, InsufficientBalance

RAW_DECIMALS = 30

_AMOUNT_RE = re.compile(r"^(?P<whole>\d*)(?:\.(?P<frac>\d*))?$")
_RAW_RE = re.compile(r"^\d+$")

AmountLike = Union[str, int, Decimal]


def parse_raw(value: Union[str, int]) -> int:
    """
    Parse a raw amount as returned by the RPC service.

    Raises:
        InvalidAmount: If the value is not a non-negative integer within
            the 128-bit balance range
    """
    if isinstance(value, bool):
        raise InvalidAmount(f"Invalid raw amount: {value!r}")
    if isinstance(value, int):
        raw = value
    elif isinstance(value, str) and _RAW_RE.match(value.strip()):
        raw = int(value.strip())
    else:
        raise InvalidAmount(f"Invalid raw amount: {value!r}")
    if raw < 0:
        raise InvalidAmount(f"Raw amount cannot be negative: {raw}")
    if raw > MAX_BALANCE_RAW:
        raise InvalidAmount(f"Raw amount exceeds 128 bits: {raw}")
    return raw


def raw_to_xno(raw: Union[str, int]) -> str:
    """
    Format a raw amount as XNO with exactly six fractional digits.

    Args:
        raw: Non-negative integer (or decimal string) of raw units

    Returns:
        String such as "1.250000"
    """
    raw = parse_raw(raw)
    whole, fraction = divmod(raw, RAW_PER_XNO)
    fraction //= 10 ** (RAW_DECIMALS - DISPLAY_DECIMALS)
    return f"{whole}.{fraction:0{DISPLAY_DECIMALS}d}"


def xno_to_raw(amount: AmountLike) -> int:
    """
    Convert an XNO amount to raw.

    Args:
        amount: Decimal string, int or Decimal. Floats are refused.

    Returns:
        Amount in raw

    Raises:
        InvalidAmount: For negative, non-numeric, non-finite or over-precise
            input, or a result outside the 128-bit range
    """
    if isinstance(amount, bool) or isinstance(amount, float):
        raise InvalidAmount(
            f"Amount must be a string, int or Decimal, got {type(amount).__name__}"
        )
    if isinstance(amount, int):
        text = str(amount)
    elif isinstance(amount, Decimal):
        if not amount.is_finite():
            raise InvalidAmount(f"Amount must be finite: {amount}")
        text = format(amount, "f")
    elif isinstance(amount, str):
        text = amount.strip()
    else:
        raise InvalidAmount(f"Unsupported amount type: {type(amount).__name__}")

    if text.startswith("-"):
        raise InvalidAmount(f"Amount cannot be negative: {amount}")

    match = _AMOUNT_RE.match(text)
    if not match or not (match.group("whole") or match.group("frac")):
        raise InvalidAmount(f"Amount is not numeric: {amount!r}")

    whole = match.group("whole") or "0"
    frac = match.group("frac") or ""
    if len(frac) > RAW_DECIMALS:
        raise InvalidAmount(
            f"Amount has more than {RAW_DECIMALS} decimal places: {amount}"
        )

    raw = int(whole) * RAW_PER_XNO + int(frac.ljust(RAW_DECIMALS, "0"))
    if raw > MAX_BALANCE_RAW:
        raise InvalidAmount(f"Amount exceeds the maximum balance: {amount}")
    return raw


def raw_to_decimal(raw: Union[str, int]) -> Decimal:
    """Exact Decimal value of a raw amount in XNO."""
    return Decimal(f"{parse_raw(raw)}E-{RAW_DECIMALS}")


def decimal_to_raw(amount: Decimal) -> int:
    """Convert an XNO Decimal to raw, truncating below one raw."""
    if not amount.is_finite() or amount < 0:
        raise InvalidAmount(f"Invalid amount: {amount}")
    with localcontext() as ctx:
        ctx.prec = 80
        return int(amount.scaleb(RAW_DECIMALS))


def checked_add(balance_raw: int, amount_raw: int) -> int:
    """Add two raw amounts, refusing to exceed the 128-bit balance range."""
    if amount_raw < 0:
        raise InvalidAmount(f"Cannot add a negative amount: {amount_raw}")
    result = balance_raw + amount_raw
    if result > MAX_BALANCE_RAW:
        raise InvalidAmount(f"Balance overflow: {balance_raw} + {amount_raw}")
    return result


def checked_sub(balance_raw: int, amount_raw: int) -> int:
    """Subtract a raw amount, refusing to go below zero."""
    if amount_raw < 0:
        raise InvalidAmount(f"Cannot subtract a negative amount: {amount_raw}")
    if amount_raw > balance_raw:
        raise InsufficientBalance(balance_raw, amount_raw)
    return balance_raw - amount_raw
