"""
Proof Pipeline: Groth16 proofs that a fill meets the maker's hidden thresholds.

═══════════════════════════════════════════════════════════════════════════════
CIRCUIT CONTRACT
═══════════════════════════════════════════════════════════════════════════════

  Private: secretPrice, secretAmount
  Public:  commit, nonce, offeredPrice, offeredAmount

  Asserts:
      commit == Poseidon3(secretPrice, secretAmount, nonce)
      offeredPrice  >= secretPrice
      offeredAmount >= secretAmount
      valid == 1

  Public signals, in order: [valid, commit, nonce, offeredPrice, offeredAmount]

═══════════════════════════════════════════════════════════════════════════════
VERIFIER WIRE FORMAT
═══════════════════════════════════════════════════════════════════════════════

  abi.encode(uint256[2] a, uint256[2][2] b, uint256[2] c, uint256[5] signals)
  = 13 words = 416 bytes

  snarkjs emits each G2 coordinate as (c0, c1); the Solidity pairing
  precompile expects (c1, c0). Both pairs of pi_b are therefore swapped
  before encoding. Without the swap the on-chain verifier returns false
  without reverting.

Proving is CPU-bound and blocks for hundreds of milliseconds to seconds, so
request handlers run it through ProverPool.
"""

from __future__ import annotations

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, Tuple, TypeVar

from eth_abi import decode as abi_decode
from eth_abi import encode as abi_encode

from hidden_orders.core.config import settings
from hidden_orders.core.crypto.bridge import ToolchainError, ZKToolchainBridge, get_bridge
from hidden_orders.core.crypto.commitment import (
    MAX_AMOUNT,
    MAX_PRICE,
    BN254_SCALAR_FIELD,
    CommitmentEngine,
    Violation,
)
from hidden_orders.core.errors import (
    CommitmentMismatch,
    ConstraintViolation,
    InvalidParameters,
    ProverFailure,
)
from hidden_orders.schemas.zkp import (
    PUBLIC_SIGNAL_COUNT,
    FormattedProof,
    G1Point,
    G2Point,
    ProofArtifact,
    ProofInputs,
    VerifierProof,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ── Constants ──
BN254_BASE_FIELD: int = (
    21888242871839275222246405745257275088696311157297823662689037894645226208583
)
VERIFIER_ABI_TYPES: List[str] = ["uint256[2]", "uint256[2][2]", "uint256[2]", "uint256[5]"]
ENCODED_PROOF_WORDS: int = 13
ENCODED_PROOF_LENGTH: int = ENCODED_PROOF_WORDS * 32


@dataclass(frozen=True)
class CircuitArtifacts:
    """Opaque handles to the compiled circuit and its proving key."""
    wasm_path: str
    zkey_path: str

    @classmethod
    def from_settings(cls) -> "CircuitArtifacts":
        return cls(wasm_path=settings.CIRCUIT_WASM_PATH, zkey_path=settings.CIRCUIT_ZKEY_PATH)


class Prover(Protocol):
    def prove(
        self, inputs: ProofInputs, artifacts: CircuitArtifacts,
    ) -> Tuple[Dict[str, Any], Sequence[Any]]:
        """Return (proof_json, public_signals) in snarkjs's native shape."""
        ...


class SnarkjsProver:
    """Default prover: `snarkjs groth16 fullprove` through the toolchain bridge."""

    def __init__(self, bridge: Optional[ZKToolchainBridge] = None) -> None:
        self._bridge = bridge

    def prove(
        self, inputs: ProofInputs, artifacts: CircuitArtifacts,
    ) -> Tuple[Dict[str, Any], Sequence[Any]]:
        bridge = self._bridge or get_bridge()
        try:
            return bridge.fullprove(inputs.to_circuit_input(), artifacts.wasm_path, artifacts.zkey_path)
        except ToolchainError as exc:
            logger.error(
                f"[PROVER] snarkjs fullprove failed | public={inputs.public_view()} | {exc}"
            )
            raise ProverFailure("Proof generation failed", detail=str(exc))


# ═══════════════════════════════════════════════════════════════════════════════
# WORKER POOL
# ═══════════════════════════════════════════════════════════════════════════════

def _retrieve_exception(future: asyncio.Future) -> None:
    if not future.cancelled():
        future.exception()


class ProverPool:
    """
    Bounded thread pool for blocking proof generation.

    The awaiting task suspends until the worker finishes. A timeout surfaces
    as ProverFailure; the worker itself is abandoned, not interrupted.
    """

    def __init__(self, max_workers: Optional[int] = None) -> None:
        self.max_workers = max_workers or settings.PROVER_MAX_WORKERS
        self._executor = ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix="prover",
        )

    async def run(self, fn: Callable[..., T], *args: Any, timeout: Optional[float] = None) -> T:
        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(self._executor, fn, *args)
        if timeout is None:
            return await future
        # An abandoned worker may still fail; mark its error as seen.
        future.add_done_callback(_retrieve_exception)
        try:
            return await asyncio.wait_for(asyncio.shield(future), timeout=timeout)
        except asyncio.TimeoutError:
            logger.error(f"[PROVER] Proof generation exceeded {timeout}s, abandoning worker")
            raise ProverFailure(
                "Proof generation timed out",
                detail=f"prover did not finish within {timeout}s",
            )

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


# ═══════════════════════════════════════════════════════════════════════════════
# PROOF PIPELINE
# ═══════════════════════════════════════════════════════════════════════════════

class ProofPipeline:
    """
    Validates inputs, runs the prover and encodes the result for the verifier.

    Usage:
        pipeline = ProofPipeline(CommitmentEngine())
        formatted = pipeline.generate_formatted_proof(inputs, CircuitArtifacts.from_settings())
        extension_payload = formatted.encoded
    """

    def __init__(self, engine: CommitmentEngine, prover: Optional[Prover] = None) -> None:
        self._engine = engine
        self._prover: Prover = prover or SnarkjsProver()

    @property
    def engine(self) -> CommitmentEngine:
        return self._engine

    # ── Validation ──

    def _bounds_violations(self, inputs: ProofInputs) -> List[Violation]:
        violations = self._engine.validate(inputs.secret_price, inputs.secret_amount, inputs.nonce)
        if not 0 <= inputs.offered_price <= MAX_PRICE:
            violations.append(Violation("offeredPrice", f"outside [0, {MAX_PRICE}]"))
        if not 0 <= inputs.offered_amount <= MAX_AMOUNT:
            violations.append(Violation("offeredAmount", f"outside [0, {MAX_AMOUNT}]"))
        return violations

    def _constraint_violations(self, inputs: ProofInputs) -> List[Violation]:
        violations = []
        if inputs.offered_price < inputs.secret_price:
            violations.append(Violation("offeredPrice", "below the hidden minimum price"))
        if inputs.offered_amount < inputs.secret_amount:
            violations.append(Violation("offeredAmount", "below the hidden minimum amount"))
        return violations

    def _commitment_matches(self, inputs: ProofInputs) -> bool:
        return self._engine.verify(inputs.commit, inputs.secret_price, inputs.secret_amount, inputs.nonce)

    def validate_inputs(self, inputs: ProofInputs) -> List[Violation]:
        """
        Every reason the circuit would reject these inputs, without proving.

        Bounds come first; the commitment and threshold checks only run on
        in-bounds inputs. Messages never contain the secret values.
        """
        violations = self._bounds_violations(inputs)
        if violations:
            return violations
        if not self._commitment_matches(inputs):
            violations.append(Violation("commit", "does not match the secret parameters"))
        return violations + self._constraint_violations(inputs)

    def ensure_valid(self, inputs: ProofInputs) -> None:
        """
        Raise the most specific error for invalid inputs.

        Raises:
            InvalidParameters: Scalars out of bounds.
            CommitmentMismatch: Secrets do not hash to `commit`.
            ConstraintViolation: Offered terms below a hidden threshold.
        """
        bounds = self._bounds_violations(inputs)
        if bounds:
            raise InvalidParameters(bounds, context="proof inputs")
        if not self._commitment_matches(inputs):
            raise CommitmentMismatch(
                "Commitment does not match the secret parameters",
                detail=f"commit={inputs.commit}",
            )
        constraints = self._constraint_violations(inputs)
        if constraints:
            raise ConstraintViolation(
                "Offered terms do not satisfy the maker's hidden constraints",
                detail=", ".join(str(v) for v in constraints),
            )

    # ── Proving ──

    def generate_proof(self, inputs: ProofInputs, artifacts: CircuitArtifacts) -> ProofArtifact:
        """
        Blocking. Validate, prove and parse.

        A `valid` signal of 0 is a circuit-level rejection and is reported as
        ConstraintViolation, not as a prover failure.
        """
        self.ensure_valid(inputs)
        logger.info(f"[PROVER] Generating proof | public={inputs.public_view()}")

        proof_json, raw_signals = self._prover.prove(inputs, artifacts)
        artifact = parse_prover_output(proof_json, raw_signals)

        if artifact.valid != 1:
            raise ConstraintViolation("Circuit rejected the offered terms")
        if artifact.public_signals[1:] != (
            inputs.commit, inputs.nonce, inputs.offered_price, inputs.offered_amount,
        ):
            logger.error(
                f"[PROVER] Public signals disagree with inputs | public={inputs.public_view()} "
                f"| signals={artifact.public_signals}"
            )
            raise ProverFailure("Prover returned public signals for different inputs")

        logger.info(f"[PROVER] Proof generated | commit={inputs.commit}")
        return artifact

    def generate_formatted_proof(
        self, inputs: ProofInputs, artifacts: CircuitArtifacts,
    ) -> FormattedProof:
        artifact = self.generate_proof(inputs, artifacts)
        return FormattedProof(
            artifact=artifact,
            verifier_proof=to_verifier_proof(artifact),
            encoded=encode_for_verifier(artifact),
        )


# ═══════════════════════════════════════════════════════════════════════════════
# FORMATTING & ABI ENCODING
# ═══════════════════════════════════════════════════════════════════════════════

def _as_int(value: Any, name: str) -> int:
    try:
        if isinstance(value, str) and value.lower().startswith("0x"):
            return int(value, 16)
        return int(value)
    except (TypeError, ValueError):
        raise ProverFailure("Malformed proof output", detail=f"{name} is not an integer: {value!r}")


def _g1(coords: Any, name: str) -> G1Point:
    # snarkjs emits projective [x, y, 1]; affine [x, y] is also accepted.
    if not isinstance(coords, (list, tuple)) or len(coords) not in (2, 3):
        raise ProverFailure("Malformed proof output", detail=f"{name} must have 2 or 3 coordinates")
    x, y = _as_int(coords[0], name), _as_int(coords[1], name)
    for v in (x, y):
        if not 0 <= v < BN254_BASE_FIELD:
            raise ProverFailure("Malformed proof output", detail=f"{name} coordinate outside base field")
    return x, y


def _g2(coords: Any, name: str) -> G2Point:
    if not isinstance(coords, (list, tuple)) or len(coords) not in (2, 3):
        raise ProverFailure("Malformed proof output", detail=f"{name} must have 2 or 3 coordinate pairs")
    x = _g1(coords[0], f"{name}[0]")
    y = _g1(coords[1], f"{name}[1]")
    return x, y


def parse_prover_output(proof_json: Dict[str, Any], raw_signals: Sequence[Any]) -> ProofArtifact:
    """Validate snarkjs output and reduce it to an affine ProofArtifact."""
    for key in ("pi_a", "pi_b", "pi_c"):
        if key not in proof_json:
            raise ProverFailure("Malformed proof output", detail=f"missing {key}")
    if len(raw_signals) != PUBLIC_SIGNAL_COUNT:
        raise ProverFailure(
            "Malformed proof output",
            detail=f"expected {PUBLIC_SIGNAL_COUNT} public signals, got {len(raw_signals)}",
        )

    signals = tuple(_as_int(s, f"publicSignals[{i}]") for i, s in enumerate(raw_signals))
    for s in signals:
        if not 0 <= s < BN254_SCALAR_FIELD:
            raise ProverFailure("Malformed proof output", detail="public signal outside scalar field")

    return ProofArtifact(
        pi_a=_g1(proof_json["pi_a"], "pi_a"),
        pi_b=_g2(proof_json["pi_b"], "pi_b"),
        pi_c=_g1(proof_json["pi_c"], "pi_c"),
        public_signals=signals,
    )


def _swap_g2(b: G2Point) -> G2Point:
    return (b[0][1], b[0][0]), (b[1][1], b[1][0])


def to_verifier_proof(artifact: ProofArtifact) -> VerifierProof:
    return VerifierProof(
        a=artifact.pi_a,
        b=_swap_g2(artifact.pi_b),
        c=artifact.pi_c,
        public_signals=artifact.public_signals,
    )


def encode_for_verifier(artifact: ProofArtifact) -> bytes:
    """ABI-encode (a, swapped b, c, signals) into the 416-byte verifier blob."""
    view = to_verifier_proof(artifact)
    return abi_encode(
        VERIFIER_ABI_TYPES,
        [list(view.a), [list(view.b[0]), list(view.b[1])], list(view.c), list(view.public_signals)],
    )


def decode(data: bytes) -> ProofArtifact:
    """
    Inverse of encode_for_verifier. Swaps pi_b back to prover order.

    Raises:
        InvalidParameters: If `data` is shorter than 416 bytes.
    """
    if len(data) < ENCODED_PROOF_LENGTH:
        raise InvalidParameters(
            [Violation("proof", f"encoded proof must be at least {ENCODED_PROOF_LENGTH} bytes, got {len(data)}")],
            context="encoded proof",
        )
    a, b, c, signals = abi_decode(VERIFIER_ABI_TYPES, bytes(data[:ENCODED_PROOF_LENGTH]))
    return ProofArtifact(
        pi_a=(a[0], a[1]),
        pi_b=_swap_g2(((b[0][0], b[0][1]), (b[1][0], b[1][1]))),
        pi_c=(c[0], c[1]),
        public_signals=tuple(signals),
    )


_pool_instance: Optional[ProverPool] = None


def get_prover_pool() -> ProverPool:
    """Lazy process-wide prover pool."""
    global _pool_instance
    if _pool_instance is None:
        _pool_instance = ProverPool()
    return _pool_instance
