"""
Hidden Orders cryptographic core.

Public API:
    - CommitmentEngine:   Poseidon3 commitment over (price, amount, nonce).
    - ZKToolchainBridge:  Node toolchain access (poseidon-lite, snarkjs).
    - salt_codec:         96-bit commitment / 160-bit extension-hash salt packing.
"""

from hidden_orders.core.crypto.bridge import ToolchainError, ZKToolchainBridge, get_bridge
from hidden_orders.core.crypto.commitment import (
    BN254_SCALAR_FIELD,
    MAX_NONCE,
    MAX_PRICE,
    CommitmentData,
    CommitmentEngine,
    Violation,
)
from hidden_orders.core.crypto import salt_codec

__all__ = [
    "BN254_SCALAR_FIELD",
    "MAX_NONCE",
    "MAX_PRICE",
    "CommitmentData",
    "CommitmentEngine",
    "ToolchainError",
    "Violation",
    "ZKToolchainBridge",
    "get_bridge",
    "salt_codec",
]
