"""
Salt Codec: packs a truncated commitment and an extension hash into a salt.

Layout of the 256-bit order salt once an extension is attached:

    ┌──────────────── 96 bits ────────────────┬────────── 160 bits ──────────┐
    │  commitment mod 2^96                     │  keccak256(extension) mod 2^160 │
    └──────────────────────────────────────────┴───────────────────────────────┘

The lower 160 bits follow the limit order protocol's own rule (the protocol
checks that salt's low 160 bits equal the low 160 bits of the extension
hash), so both sides derive the same salt.

Truncating the commitment to 96 bits gives a birthday bound of about 2^48
salts before two orders share an upper half. The full commitment, not the
truncated form, remains the registry key.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Tuple

from eth_utils import keccak

from hidden_orders.core.crypto.commitment import Violation
from hidden_orders.core.errors import InvalidParameters

COMMITMENT_BITS: int = 96
EXTENSION_HASH_BITS: int = 160
SALT_BITS: int = 256

COMMITMENT_MASK: int = (1 << COMMITMENT_BITS) - 1
EXTENSION_HASH_MASK: int = (1 << EXTENSION_HASH_BITS) - 1
MAX_SALT: int = (1 << SALT_BITS) - 1


@dataclass(frozen=True)
class PackedSalt:
    salt: int
    commitment: int
    extension_hash: int


def truncate_commitment(commitment: int) -> int:
    """Low 96 bits of the commitment."""
    return commitment & COMMITMENT_MASK


def compute_extension_hash(extension: bytes) -> int:
    """keccak256 of the extension bytes, truncated to its low 160 bits."""
    return int.from_bytes(keccak(bytes(extension)), "big") & EXTENSION_HASH_MASK


def pack(commitment: int, extension_hash: int) -> int:
    """
    (commitment mod 2^96) << 160 | extension_hash

    Raises:
        InvalidParameters: If the extension hash does not fit in 160 bits or
            the packed value does not fit in 256 bits.
    """
    violations = validate_extension_hash(extension_hash)
    if violations:
        raise InvalidParameters(violations, context="extension hash")

    salt = (truncate_commitment(commitment) << EXTENSION_HASH_BITS) | extension_hash
    if salt > MAX_SALT:
        raise InvalidParameters([Violation("salt", "exceeds 256 bits")], context="salt")
    return salt


def unpack(salt: int) -> Tuple[int, int]:
    """Split a salt into (commitment96, extension_hash160)."""
    return (salt >> EXTENSION_HASH_BITS) & COMMITMENT_MASK, salt & EXTENSION_HASH_MASK


def validate_extension_hash(extension_hash: int) -> List[Violation]:
    if not isinstance(extension_hash, int) or extension_hash < 0:
        return [Violation("extensionHash", "must be a non-negative integer")]
    if extension_hash > EXTENSION_HASH_MASK:
        return [Violation("extensionHash", "exceeds 160 bits")]
    return []


def validate_salt_structure(salt: int) -> List[Violation]:
    if not isinstance(salt, int) or salt < 0:
        return [Violation("salt", "must be a non-negative integer")]
    if salt > MAX_SALT:
        return [Violation("salt", "exceeds 256 bits")]
    return []


def verify_round_trip(commitment: int, extension_hash: int) -> bool:
    """True if unpack(pack(c, h)) recovers (c mod 2^96, h)."""
    if validate_extension_hash(extension_hash):
        return False
    return unpack(pack(commitment, extension_hash)) == (
        truncate_commitment(commitment), extension_hash,
    )


def extension_hash_from_hex(value: str) -> int:
    """Parse a hex extension hash of at most 40 hex digits (0x prefix optional)."""
    digits = value[2:] if value.lower().startswith("0x") else value
    if not digits or len(digits) > EXTENSION_HASH_BITS // 4:
        raise InvalidParameters(
            [Violation("extensionHash", "must be 1 to 40 hex digits")], context="extension hash",
        )
    try:
        return int(digits, 16)
    except ValueError:
        raise InvalidParameters(
            [Violation("extensionHash", "is not valid hex")], context="extension hash",
        )


def create_salt_from_extension(commitment: int, extension: bytes) -> PackedSalt:
    extension_hash = compute_extension_hash(extension)
    return PackedSalt(
        salt=pack(commitment, extension_hash),
        commitment=truncate_commitment(commitment),
        extension_hash=extension_hash,
    )


def rebuild_salt(commitment: int, extension: bytes, original_salt: Optional[int] = None) -> int:
    """
    Salt for an order carrying `extension`.

    Without an extension the order keeps its publish-time salt (the full
    commitment when no original salt was recorded).
    """
    if not extension:
        return commitment if original_salt is None else original_salt
    return pack(commitment, compute_extension_hash(extension))


def format_packed_salt(packed: PackedSalt) -> str:
    return (
        f"salt=0x{packed.salt:064x} "
        f"(commitment96=0x{packed.commitment:024x}, extHash=0x{packed.extension_hash:040x})"
    )
