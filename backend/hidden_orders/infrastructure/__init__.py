"""
Hidden Orders Infrastructure Module.

Exports the collaborators the authorization service is wired from:
    - ProofPipeline / ProverPool: Groth16 proving and verifier encoding
    - OrderCatalog: File-backed published-order store
    - LocalOrderSigner: EIP-712 order signing with the maker key
"""

from hidden_orders.infrastructure.blockchain.signer import LocalOrderSigner, OrderSigner, get_signer
from hidden_orders.infrastructure.storage.order_catalog import OrderCatalog, get_catalog
from hidden_orders.infrastructure.zkp.zkp_service import (
    CircuitArtifacts,
    ProofPipeline,
    ProverPool,
    SnarkjsProver,
    get_prover_pool,
)

__all__ = [
    "CircuitArtifacts",
    "LocalOrderSigner",
    "OrderCatalog",
    "OrderSigner",
    "ProofPipeline",
    "ProverPool",
    "SnarkjsProver",
    "get_catalog",
    "get_prover_pool",
    "get_signer",
]
