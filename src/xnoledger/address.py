"""
xnoledger/address.py

Account address codec.

An address is a prefix followed by 60 characters of Nano base-32:
52 characters carrying the 256-bit public key (padded with four leading
zero bits) and 8 characters carrying a 40-bit blake2b checksum of the key,
stored byte-reversed.

Usage:
    from xnoledger.address import decode_address, encode_address

    public_key = decode_address("nano_3t6k35gi95xu6tergt6p69ck76ogmitsa8mnijtpxm9fkcm736xtoncuohr3")
    address = encode_address(public_key, prefix="xno_")
"""

import hashlib
from typing import Union

from .errors import InvalidAddressFormat

ALPHABET = "13456789abcdefghijkmnopqrstuwxyz"
_ALPHABET_INDEX = {c: i for i, c in enumerate(ALPHABET)}

PREFIXES = ("nano_", "xno_", "xrb_")
DEFAULT_PREFIX = "nano_"

KEY_CHARS = 52
CHECKSUM_CHARS = 8
ENCODED_LENGTH = KEY_CHARS + CHECKSUM_CHARS


def _encode_int(value: int, length: int) -> str:
    chars = []
    for _ in range(length):
        chars.append(ALPHABET[value & 0x1F])
        value >>= 5
    return "".join(reversed(chars))


def _decode_int(encoded: str) -> int:
    value = 0
    for char in encoded:
        index = _ALPHABET_INDEX.get(char)
        if index is None:
            raise InvalidAddressFormat(f"Invalid character in address: {char!r}")
        value = (value << 5) | index
    return value


def _checksum(public_key: bytes) -> bytes:
    return hashlib.blake2b(public_key, digest_size=5).digest()[::-1]


def _key_bytes(public_key: Union[str, bytes]) -> bytes:
    if isinstance(public_key, str):
        try:
            public_key = bytes.fromhex(public_key)
        except ValueError:
            raise InvalidAddressFormat(f"Public key is not hex: {public_key!r}")
    if len(public_key) != 32:
        raise InvalidAddressFormat(
            f"Public key must be 32 bytes, got {len(public_key)}"
        )
    return public_key


def split_prefix(address: str) -> tuple:
    """Split an address into (prefix, body). Raises on unknown prefix."""
    if not isinstance(address, str):
        raise InvalidAddressFormat(f"Address must be a string, got {type(address).__name__}")
    for prefix in PREFIXES:
        if address.startswith(prefix):
            return prefix, address[len(prefix):]
    raise InvalidAddressFormat(f"Unknown address prefix: {address[:5]!r}")


def decode_address(address: str) -> str:
    """
    Decode an address to its public key.

    Args:
        address: Address with a nano_, xno_ or xrb_ prefix

    Returns:
        Public key as 64 uppercase hex characters

    Raises:
        InvalidAddressFormat: On bad prefix, length, alphabet or checksum
    """
    _, body = split_prefix(address)
    if len(body) != ENCODED_LENGTH:
        raise InvalidAddressFormat(
            f"Address must have {ENCODED_LENGTH} characters after the prefix, "
            f"got {len(body)}"
        )
    if body[0] not in "13":
        raise InvalidAddressFormat("Address key must start with '1' or '3'")

    key_value = _decode_int(body[:KEY_CHARS])
    public_key = key_value.to_bytes(32, "big")

    checksum = _decode_int(body[KEY_CHARS:]).to_bytes(5, "big")
    if checksum != _checksum(public_key):
        raise InvalidAddressFormat(f"Address checksum mismatch: {address}")

    return public_key.hex().upper()


def encode_address(public_key: Union[str, bytes], prefix: str = DEFAULT_PREFIX) -> str:
    """
    Encode a public key as a checksummed address.

    Args:
        public_key: 32 bytes or 64 hex characters
        prefix: One of nano_, xno_, xrb_

    Returns:
        Address string
    """
    if prefix not in PREFIXES:
        raise InvalidAddressFormat(f"Unknown address prefix: {prefix!r}")
    key = _key_bytes(public_key)
    key_part = _encode_int(int.from_bytes(key, "big"), KEY_CHARS)
    checksum_part = _encode_int(int.from_bytes(_checksum(key), "big"), CHECKSUM_CHARS)
    return f"{prefix}{key_part}{checksum_part}"


def is_valid_address(address: str) -> bool:
    try:
        decode_address(address)
        return True
    except InvalidAddressFormat:
        return False


def normalize_address(address: str) -> str:
    """Re-encode an address with the nano_ prefix."""
    return encode_address(decode_address(address))


def same_account(a: str, b: str) -> bool:
    """True when two addresses (any prefix) name the same public key."""
    return decode_address(a) == decode_address(b)
