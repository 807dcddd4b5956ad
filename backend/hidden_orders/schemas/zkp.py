from typing import Dict, Tuple

from pydantic import BaseModel, Field

G1Point = Tuple[int, int]
G2Point = Tuple[Tuple[int, int], Tuple[int, int]]

PUBLIC_SIGNAL_COUNT = 5


class ProofInputs(BaseModel):
    """
    Witness for the hidden-parameters circuit.

    secret_price and secret_amount are private inputs; the remaining four are
    public and reappear in the public-signal vector.
    """
    secret_price: int = Field(..., repr=False)
    secret_amount: int = Field(..., repr=False)
    commit: int
    nonce: int
    offered_price: int
    offered_amount: int

    def to_circuit_input(self) -> Dict[str, str]:
        """Decimal-string input.json in the circuit's signal names."""
        return {
            "secretPrice": str(self.secret_price),
            "secretAmount": str(self.secret_amount),
            "commit": str(self.commit),
            "nonce": str(self.nonce),
            "offeredPrice": str(self.offered_price),
            "offeredAmount": str(self.offered_amount),
        }

    def public_view(self) -> Dict[str, str]:
        """Loggable subset: no private inputs."""
        return {
            "commit": str(self.commit),
            "nonce": str(self.nonce),
            "offeredPrice": str(self.offered_price),
            "offeredAmount": str(self.offered_amount),
        }


class ProofArtifact(BaseModel):
    """Affine Groth16 proof in prover order plus [valid, commit, nonce, offeredPrice, offeredAmount]."""
    pi_a: G1Point
    pi_b: G2Point
    pi_c: G1Point
    public_signals: Tuple[int, int, int, int, int]

    @property
    def valid(self) -> int:
        return self.public_signals[0]


class VerifierProof(BaseModel):
    """Contract-facing view: G2 coordinate pairs already swapped."""
    a: G1Point
    b: G2Point
    c: G1Point
    public_signals: Tuple[int, int, int, int, int]


class FormattedProof(BaseModel):
    artifact: ProofArtifact
    verifier_proof: VerifierProof
    encoded: bytes

    @property
    def encoded_hex(self) -> str:
        return "0x" + self.encoded.hex()
