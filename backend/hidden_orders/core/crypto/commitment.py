"""
Commitment Engine: hiding commitment over a maker's secret thresholds.

═══════════════════════════════════════════════════════════════════════════════
CONSTRUCTION
═══════════════════════════════════════════════════════════════════════════════

  C = Poseidon3(secretPrice, secretAmount, nonce)      over the BN254 scalar field

  The hash arity (3) and argument order (price, amount, nonce) are fixed by
  the proving circuit. Any other construction yields commitments the circuit
  rejects, so the hasher is always the circuit's own Poseidon (poseidon-lite
  through the toolchain bridge) unless a caller injects an equivalent one.

  Scalar bounds keep every input inside 64 bits so the circuit's range
  comparisons cannot overflow:

      secretPrice  ∈ [1, 2^64 - 1]
      secretAmount ∈ [1, 2^64 - 1]
      nonce        ∈ [0, 2^64 - 1]

  The commitment is the registry key for secrets and the initial order salt.
  ``verify`` is a consistency check only; authorization decisions belong to
  the Proof Pipeline.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from functools import lru_cache
from typing import Callable, List, Optional

from hidden_orders.core.crypto.bridge import ToolchainError, get_bridge
from hidden_orders.core.errors import InvalidParameters, ProverFailure

logger = logging.getLogger(__name__)


# ── Constants ──
MAX_PRICE: int = 2**64 - 1
MAX_AMOUNT: int = 2**64 - 1
MAX_NONCE: int = 2**64 - 1
MIN_PRICE: int = 1
MIN_AMOUNT: int = 1
MIN_NONCE: int = 0
NONCE_BYTES: int = 8

BN254_SCALAR_FIELD: int = (
    21888242871839275222246405745257275088548364400416034343698204186575808495617
)

Hasher = Callable[[int, int, int], int]


@dataclass(frozen=True)
class Violation:
    """A single out-of-bounds finding. Messages never echo secret values."""
    field: str
    message: str

    def __str__(self) -> str:
        return f"{self.field}: {self.message}"


@dataclass(frozen=True)
class CommitmentData:
    commitment: int
    secret_price: int
    secret_amount: int
    nonce: int

    def __repr__(self) -> str:
        return f"CommitmentData(commitment={self.commitment}, secrets=<hidden>)"


def _check_range(field: str, value: int, low: int, high: int) -> List[Violation]:
    if not isinstance(value, int) or isinstance(value, bool):
        return [Violation(field, "must be an integer")]
    if value < low:
        return [Violation(field, f"below minimum {low}")]
    if value > high:
        return [Violation(field, f"above maximum {high}")]
    return []


@lru_cache(maxsize=4096)
def poseidon_commitment(secret_price: int, secret_amount: int, nonce: int) -> int:
    """
    Default hasher: the circuit's Poseidon3 via the Node toolchain.

    Deterministic, so results are memoised for the process lifetime.
    """
    try:
        return get_bridge().poseidon3(secret_price, secret_amount, nonce)
    except ToolchainError as exc:
        logger.error(f"[COMMIT] Poseidon toolchain failure: {exc}")
        raise ProverFailure("Commitment hashing is unavailable", detail=str(exc))


class CommitmentEngine:
    """
    Computes and checks commitments over (secretPrice, secretAmount, nonce).

    Usage:
        engine = CommitmentEngine()
        nonce = engine.generate_nonce()
        c = engine.commit(3000_000000, 3000_000000, nonce)
        assert engine.verify(c, 3000_000000, 3000_000000, nonce)
    """

    def __init__(self, hasher: Optional[Hasher] = None) -> None:
        self._hasher: Hasher = hasher or poseidon_commitment

    @staticmethod
    def validate(secret_price: int, secret_amount: int, nonce: int) -> List[Violation]:
        """
        Check every scalar against its bounds.

        Violations are accumulated, not short-circuited, so callers see all
        problems at once. An empty list means the parameters are valid.
        """
        violations: List[Violation] = []
        violations += _check_range("secretPrice", secret_price, MIN_PRICE, MAX_PRICE)
        violations += _check_range("secretAmount", secret_amount, MIN_AMOUNT, MAX_AMOUNT)
        violations += _check_range("nonce", nonce, MIN_NONCE, MAX_NONCE)
        return violations

    def commit(self, secret_price: int, secret_amount: int, nonce: int) -> int:
        """
        Return Poseidon3(secret_price, secret_amount, nonce).

        Raises:
            InvalidParameters: If any scalar is out of bounds.
        """
        violations = self.validate(secret_price, secret_amount, nonce)
        if violations:
            raise InvalidParameters(violations, context="secret parameters")
        return self._hasher(secret_price, secret_amount, nonce)

    def verify(self, commitment: int, secret_price: int, secret_amount: int, nonce: int) -> bool:
        """Recompute and compare. Out-of-bounds secrets never verify."""
        if self.validate(secret_price, secret_amount, nonce):
            return False
        return self._hasher(secret_price, secret_amount, nonce) == commitment

    def validate_commitment(
        self, commitment: int, secret_price: int, secret_amount: int, nonce: int,
    ) -> List[Violation]:
        """Parameter violations, or a single mismatch violation."""
        violations = self.validate(secret_price, secret_amount, nonce)
        if violations:
            return violations
        if self._hasher(secret_price, secret_amount, nonce) != commitment:
            return [Violation("commitment", "does not match the secret parameters")]
        return []

    @staticmethod
    def generate_nonce() -> int:
        """Cryptographically random nonce in [MIN_NONCE, MAX_NONCE]."""
        return secrets.randbelow(MAX_NONCE + 1)

    def create_commitment(
        self, secret_price: int, secret_amount: int, nonce: Optional[int] = None,
    ) -> CommitmentData:
        """Commit to the secrets, generating a nonce when none is given."""
        final_nonce = self.generate_nonce() if nonce is None else nonce
        commitment = self.commit(secret_price, secret_amount, final_nonce)
        return CommitmentData(
            commitment=commitment,
            secret_price=secret_price,
            secret_amount=secret_amount,
            nonce=final_nonce,
        )


def is_commitment_safe(commitment: int) -> bool:
    """True when the value is a canonical BN254 scalar-field element."""
    return 0 <= commitment < BN254_SCALAR_FIELD


def format_commitment(data: CommitmentData) -> str:
    """Display form for logs. Secret scalars are not printed."""
    digits = str(data.commitment)
    short = digits if len(digits) <= 16 else f"{digits[:8]}…{digits[-8:]}"
    return f"Commitment({short}) over price/amount/nonce <hidden>"
