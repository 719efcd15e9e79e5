"""
xnoledger/signing.py

Nano block signing: Ed25519 with blake2b-512 in place of SHA-512.

Group operations come from libsodium via PyNaCl's low-level ed25519
bindings; hashing is hashlib.blake2b. Signatures are deterministic.

Usage:
    from xnoledger.signing import NanoKeyPair, sign_block_hash, verify_signature

    keypair = NanoKeyPair.from_seed(seed_hex, index=0)
    signature = keypair.sign(block_hash)

    assert verify_signature(block_hash, signature, keypair.public_key)
"""

import hashlib
import logging
from typing import Union

import nacl.bindings
import nacl.exceptions
import nacl.utils

from .address import encode_address
from .errors import InvalidSecretKey, LedgerError

logger = logging.getLogger("xnoledger.signing")

# Order of the Ed25519 base point
GROUP_ORDER = 2 ** 252 + 27742317777372353535851937790883648493

KeyLike = Union[str, bytes]


# ============================================================================
# KEY HANDLING
# ============================================================================

def _to_bytes(value: KeyLike, length: int, what: str, error_cls=InvalidSecretKey) -> bytes:
    if isinstance(value, str):
        if len(value) != length * 2:
            raise error_cls(f"{what} must be {length * 2} hex characters")
        try:
            return bytes.fromhex(value)
        except ValueError:
            raise error_cls(f"{what} is not valid hex")
    if isinstance(value, (bytes, bytearray)):
        if len(value) != length:
            raise error_cls(f"{what} must be exactly {length} bytes")
        return bytes(value)
    raise error_cls(f"{what} must be hex or bytes, got {type(value).__name__}")


def validate_secret_key(secret_key: KeyLike) -> bytes:
    """
    Check a secret key and return its 32 raw bytes.

    Raises:
        InvalidSecretKey: If the key is not 32 bytes / 64 hex characters
    """
    return _to_bytes(secret_key, 32, "Secret key")


def _expand(secret: bytes):
    digest = hashlib.blake2b(secret, digest_size=64).digest()
    scalar = bytearray(digest[:32])
    scalar[0] &= 248
    scalar[31] &= 127
    scalar[31] |= 64
    return bytes(scalar), digest[32:]


def _int_le(data: bytes) -> int:
    return int.from_bytes(data, "little")


def _scalar_bytes(value: int) -> bytes:
    return value.to_bytes(32, "little")


def derive_public_key(secret_key: KeyLike) -> str:
    """Derive the public key (64 uppercase hex characters) from a secret key."""
    secret = validate_secret_key(secret_key)
    scalar, _ = _expand(secret)
    public = nacl.bindings.crypto_scalarmult_ed25519_base_noclamp(scalar)
    return public.hex().upper()


def derive_secret_key(seed: KeyLike, index: int) -> str:
    """
    Derive the secret key at an index of a wallet seed.

    secret = blake2b-256(seed || index as 4 bytes big-endian)
    """
    seed_bytes = _to_bytes(seed, 32, "Seed")
    if not 0 <= index <= 0xFFFFFFFF:
        raise InvalidSecretKey(f"Seed index out of range: {index}")
    digest = hashlib.blake2b(
        seed_bytes + index.to_bytes(4, "big"), digest_size=32
    ).digest()
    return digest.hex().upper()


# ============================================================================
# SIGNATURES
# ============================================================================

def sign_block_hash(block_hash: KeyLike, secret_key: KeyLike) -> str:
    """
    Sign a block hash.

    Args:
        block_hash: 32-byte block hash (bytes or hex)
        secret_key: 32-byte account secret key (bytes or hex)

    Returns:
        128 uppercase hex character signature (R || S)
    """
    message = _to_bytes(block_hash, 32, "Block hash", LedgerError)
    secret = validate_secret_key(secret_key)

    scalar, prefix = _expand(secret)
    public = nacl.bindings.crypto_scalarmult_ed25519_base_noclamp(scalar)

    r = _int_le(hashlib.blake2b(prefix + message, digest_size=64).digest()) % GROUP_ORDER
    big_r = nacl.bindings.crypto_scalarmult_ed25519_base_noclamp(_scalar_bytes(r))

    k = _int_le(hashlib.blake2b(big_r + public + message, digest_size=64).digest()) % GROUP_ORDER
    s = (r + k * _int_le(scalar)) % GROUP_ORDER

    return (big_r + _scalar_bytes(s)).hex().upper()


def verify_signature(block_hash: KeyLike, signature: KeyLike, public_key: KeyLike) -> bool:
    """
    Verify a block signature against a public key.

    Returns:
        True if valid. Malformed input yields False rather than raising.
    """
    try:
        message = _to_bytes(block_hash, 32, "Block hash", LedgerError)
        sig = _to_bytes(signature, 64, "Signature", LedgerError)
        public = _to_bytes(public_key, 32, "Public key", LedgerError)
    except LedgerError:
        return False

    big_r, s_bytes = sig[:32], sig[32:]
    s = _int_le(s_bytes)
    if s >= GROUP_ORDER:
        return False

    k = _int_le(hashlib.blake2b(big_r + public + message, digest_size=64).digest()) % GROUP_ORDER
    try:
        if not nacl.bindings.crypto_core_ed25519_is_valid_point(public):
            return False
        left = nacl.bindings.crypto_scalarmult_ed25519_base_noclamp(s_bytes)
        k_a = nacl.bindings.crypto_scalarmult_ed25519_noclamp(_scalar_bytes(k), public)
        right = nacl.bindings.crypto_core_ed25519_add(big_r, k_a)
    except (nacl.exceptions.CryptoError, RuntimeError, ValueError, TypeError) as e:
        logger.debug(f"Signature check failed on malformed point: {e}")
        return False
    return left == right


# ============================================================================
# KEY PAIR
# ============================================================================

class NanoKeyPair:
    """
    Secret key, public key and address of one account.

    Use the factory methods generate(), from_seed() or from_secret_key().
    The secret key is never included in repr() or to_dict().
    """

    def __init__(self, secret_key: KeyLike):
        self._secret = validate_secret_key(secret_key)
        self.public_key = derive_public_key(self._secret)

    @classmethod
    def from_secret_key(cls, secret_key: KeyLike) -> "NanoKeyPair":
        return cls(secret_key)

    @classmethod
    def from_seed(cls, seed: KeyLike, index: int = 0) -> "NanoKeyPair":
        """Key pair at `index` of a 32-byte wallet seed."""
        return cls(derive_secret_key(seed, index))

    @classmethod
    def generate(cls) -> "NanoKeyPair":
        """Fresh random key pair."""
        return cls(nacl.utils.random(32))

    @staticmethod
    def generate_seed() -> str:
        return nacl.utils.random(32).hex().upper()

    @property
    def secret_key(self) -> str:
        return self._secret.hex().upper()

    def address(self, prefix: str = "nano_") -> str:
        return encode_address(self.public_key, prefix=prefix)

    def sign(self, block_hash: KeyLike) -> str:
        return sign_block_hash(block_hash, self._secret)

    def verify(self, block_hash: KeyLike, signature: KeyLike) -> bool:
        return verify_signature(block_hash, signature, self.public_key)

    def to_dict(self) -> dict:
        return {"public_key": self.public_key, "address": self.address()}

    def __repr__(self) -> str:
        return f"NanoKeyPair(address={self.address()!r})"
