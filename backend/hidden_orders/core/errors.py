"""
Error taxonomy for the commitment-and-authorization core.

Every failure carries a stable ``code`` and a ``reason`` that is safe to
show to a taker. Secret scalars never appear in ``reason``. Subclasses flagged
with ``is_denial`` are legitimate negative outcomes ("not authorized"); the
rest mean the system could not reach a decision.
"""

from enum import Enum
from typing import List, Optional, Sequence


class ErrorCode(str, Enum):
    INVALID_PARAMETERS = "INVALID_PARAMETERS"
    COMMITMENT_MISMATCH = "COMMITMENT_MISMATCH"
    CONSTRAINT_VIOLATION = "CONSTRAINT_VIOLATION"
    PROVER_FAILURE = "PROVER_FAILURE"
    ORDER_NOT_FOUND = "ORDER_NOT_FOUND"
    MAKER_MISMATCH = "MAKER_MISMATCH"
    INSUFFICIENT_AMOUNT = "INSUFFICIENT_AMOUNT"
    PROOF_FAILED = "PROOF_FAILED"
    REBUILD_FAILED = "REBUILD_FAILED"
    DUPLICATE_COMMITMENT = "DUPLICATE_COMMITMENT"
    NOT_FOUND = "NOT_FOUND"
    STORAGE_LOCK_TIMEOUT = "STORAGE_LOCK_TIMEOUT"
    STORAGE_CORRUPT = "STORAGE_CORRUPT"


class HiddenOrderError(Exception):
    """Base class for all core failures."""

    code: ErrorCode = ErrorCode.INVALID_PARAMETERS
    is_denial: bool = False

    def __init__(self, reason: str, detail: Optional[str] = None) -> None:
        super().__init__(detail or reason)
        self.reason = reason
        self.detail = detail or reason


class InvalidParameters(HiddenOrderError):
    """Raised when scalars or request fields fall outside their bounds."""

    code = ErrorCode.INVALID_PARAMETERS

    def __init__(self, violations: Sequence[object], context: str = "parameters") -> None:
        self.violations: List[object] = list(violations)
        messages = ", ".join(str(v) for v in self.violations)
        super().__init__(f"Invalid {context}: {messages}")


class CommitmentMismatch(HiddenOrderError):
    """Raised when secrets do not hash to the supplied commitment. Never retried."""

    code = ErrorCode.COMMITMENT_MISMATCH


class ConstraintViolation(HiddenOrderError):
    """Offered terms below the hidden thresholds."""

    code = ErrorCode.CONSTRAINT_VIOLATION
    is_denial = True


class ProverFailure(HiddenOrderError):
    """Opaque prover error. Safe to retry with identical inputs."""

    code = ErrorCode.PROVER_FAILURE


class OrderNotFound(HiddenOrderError):
    code = ErrorCode.ORDER_NOT_FOUND
    is_denial = True


class MakerMismatch(HiddenOrderError):
    code = ErrorCode.MAKER_MISMATCH
    is_denial = True


class InsufficientAmount(HiddenOrderError):
    """
    Fill amount below the maker's minimum.

    Both values are kept on the exception for internal logs. Only the fill
    amount is placed in the caller-facing reason.
    """

    code = ErrorCode.INSUFFICIENT_AMOUNT
    is_denial = True

    def __init__(self, fill_amount: int, threshold: int) -> None:
        self.fill_amount = fill_amount
        self.threshold = threshold
        super().__init__(
            f"Insufficient amount - fill amount {fill_amount} is below the maker's minimum threshold",
            detail=f"fill amount {fill_amount} below minimum threshold {threshold}",
        )


class ProofFailed(HiddenOrderError):
    """Any Proof Pipeline error surfaced during authorization."""

    code = ErrorCode.PROOF_FAILED

    def __init__(self, cause: HiddenOrderError) -> None:
        self.cause = cause
        self.cause_code = cause.code
        self.is_denial = cause.is_denial
        super().__init__(f"Proof generation failed: {cause.reason}")


class RebuildFailed(HiddenOrderError):
    code = ErrorCode.REBUILD_FAILED


class DuplicateCommitment(HiddenOrderError):
    code = ErrorCode.DUPLICATE_COMMITMENT


class CatalogOrderNotFound(HiddenOrderError):
    """Unknown catalog order id."""

    code = ErrorCode.NOT_FOUND


class StorageLockTimeout(HiddenOrderError):
    code = ErrorCode.STORAGE_LOCK_TIMEOUT


class StorageCorrupt(HiddenOrderError):
    """Unparsable catalog file. Requires operator intervention."""

    code = ErrorCode.STORAGE_CORRUPT
