"""
Authorization Service: turns a taker's fill request into a signed ZK order.

═══════════════════════════════════════════════════════════════════════════════
FILL STATE MACHINE
═══════════════════════════════════════════════════════════════════════════════

  IDLE ──lookup──► LOOKED_UP ──threshold──► THRESHOLD_CHECKED ──prove──►
  PROOF_GENERATED ──rebuild──► ORDER_REBUILT ──sign──► SIGNED

  Exits:
    IDLE              → ORDER_NOT_FOUND   (no params for hash / no secrets for commitment)
    LOOKED_UP         → MAKER_MISMATCH    (order maker ≠ secrets owner)
                      → INSUFFICIENT_AMOUNT (fillAmount < secretPrice)
    THRESHOLD_CHECKED → PROOF_FAILED      (any Proof Pipeline error, cause kept)
    PROOF_GENERATED   → REBUILD_FAILED    (predicate / extension / salt)
    ORDER_REBUILT     → REBUILD_FAILED    (signer unavailable or refused)

  authorize_fill never raises for these outcomes; it returns a
  FillAuthorization carrying the state reached and a stable error code.
  It mutates neither the registry nor the catalog.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from hidden_orders.core.config import get_network_config, settings
from hidden_orders.core.crypto.commitment import CommitmentEngine
from hidden_orders.core.errors import (
    CommitmentMismatch,
    ErrorCode,
    HiddenOrderError,
    InsufficientAmount,
    InvalidParameters,
    MakerMismatch,
    OrderNotFound,
    ProofFailed,
    RebuildFailed,
)
from hidden_orders.infrastructure.blockchain.order_builder import (
    ExtensionFields,
    build_maker_traits,
    build_order,
    build_zk_predicate,
    compute_order_hash,
    validate_zk_order,
)
from hidden_orders.infrastructure.blockchain.signer import OrderSigner, get_signer
from hidden_orders.infrastructure.zkp.zkp_service import (
    CircuitArtifacts,
    ProofPipeline,
    ProverPool,
    get_prover_pool,
)
from hidden_orders.schemas.orders import (
    OrderParameters,
    OrderSignature,
    OrderStruct,
    SecretParameters,
)
from hidden_orders.schemas.zkp import ProofInputs
from hidden_orders.services.registry import OrderRegistry

logger = logging.getLogger(__name__)


class FillState(str, Enum):
    IDLE = "idle"
    LOOKED_UP = "looked_up"
    THRESHOLD_CHECKED = "threshold_checked"
    PROOF_GENERATED = "proof_generated"
    ORDER_REBUILT = "order_rebuilt"
    SIGNED = "signed"


@dataclass
class FillAuthorization:
    success: bool
    state: FillState
    error_code: Optional[ErrorCode] = None
    cause_code: Optional[ErrorCode] = None
    reason: Optional[str] = None
    is_denial: bool = False
    order: Optional[OrderStruct] = None
    signature: Optional[OrderSignature] = None
    order_hash: Optional[str] = None


class AuthorizationService:
    """
    Registers maker secrets and authorizes fills against them.

    Usage:
        service = AuthorizationService(OrderRegistry(), pipeline, signer,
                                       predicate_address="0x...")
        service.register_order(commitment, params, secrets, order_hash)
        result = await service.authorize_fill(order_hash, 3200_000000)
    """

    def __init__(
        self,
        registry: OrderRegistry,
        pipeline: ProofPipeline,
        signer: Optional[OrderSigner],
        predicate_address: str,
        chain_id: Optional[int] = None,
        router_address: Optional[str] = None,
        artifacts: Optional[CircuitArtifacts] = None,
        pool: Optional[ProverPool] = None,
        prover_timeout: Optional[float] = None,
    ) -> None:
        network = get_network_config(settings.NETWORK)
        self.registry = registry
        self._pipeline = pipeline
        self._signer = signer
        self._predicate_address = predicate_address
        self.chain_id = chain_id if chain_id is not None else network.chain_id
        self.router_address = router_address or network.router_address
        self._artifacts = artifacts or CircuitArtifacts.from_settings()
        self._pool = pool or get_prover_pool()
        self._prover_timeout = (
            settings.PROVER_TIMEOUT_SECONDS if prover_timeout is None else prover_timeout
        )

    @property
    def engine(self) -> CommitmentEngine:
        return self._pipeline.engine

    # ── Registration ──

    def register_order(
        self,
        commitment: int,
        order_params: OrderParameters,
        secrets: SecretParameters,
        order_hash: Optional[str] = None,
    ) -> None:
        """
        Store secrets and order parameters for later fills.

        Raises:
            InvalidParameters: Secrets out of bounds, or params bound to another commitment.
            CommitmentMismatch: Secrets do not hash to `commitment`.
        """
        if order_params.commitment != commitment:
            raise InvalidParameters(
                ["orderParameters.commitment differs from the registered commitment"],
                context="registration",
            )
        violations = self.engine.validate(secrets.secret_price, secrets.secret_amount, secrets.nonce)
        if violations:
            raise InvalidParameters(violations, context="secret parameters")
        if not self.engine.verify(commitment, secrets.secret_price, secrets.secret_amount, secrets.nonce):
            raise CommitmentMismatch(
                "Commitment does not match the secret parameters",
                detail=f"commitment={commitment}",
            )
        self.registry.register(commitment, order_params, secrets, order_hash)

    # ── Authorization ──

    async def authorize_fill(self, order_hash: str, fill_amount: int) -> FillAuthorization:
        state = FillState.IDLE
        logger.info(f"[AUTHZ] Fill request | orderHash={order_hash} fillAmount={fill_amount}")
        try:
            if fill_amount <= 0:
                raise InvalidParameters(["fillAmount must be positive"], context="fill request")

            params = self.registry.order_params_for(order_hash)
            if params is None:
                raise OrderNotFound("Order not found - no parameters registered for this hash")
            secrets = self.registry.secrets_for(params.commitment)
            if secrets is None:
                raise OrderNotFound("Order not found - no secrets registered for this commitment")
            state = FillState.LOOKED_UP

            if params.maker.lower() != secrets.maker_identity.lower():
                raise MakerMismatch("Unauthorized - order maker does not match registered maker")

            if fill_amount < secrets.secret_price:
                logger.info(
                    f"[AUTHZ] Denied {order_hash}: fill amount {fill_amount} "
                    f"below minimum threshold {secrets.secret_price}"
                )
                raise InsufficientAmount(fill_amount, secrets.secret_price)
            state = FillState.THRESHOLD_CHECKED

            proof_bytes = await self._prove(params, secrets, fill_amount)
            state = FillState.PROOF_GENERATED

            order = self._rebuild(params, proof_bytes)
            state = FillState.ORDER_REBUILT

            signature = self._sign(order)
            state = FillState.SIGNED
        except HiddenOrderError as exc:
            log = logger.info if exc.is_denial else logger.error
            log(f"[AUTHZ] Fill {order_hash} stopped at {state.value}: {exc.code.value} | {exc.detail}")
            return FillAuthorization(
                success=False,
                state=state,
                error_code=exc.code,
                cause_code=getattr(exc, "cause_code", None),
                reason=exc.reason,
                is_denial=exc.is_denial,
            )

        rebuilt_hash = compute_order_hash(order, self.chain_id, self.router_address)
        logger.info(
            f"[AUTHZ] Fill {order_hash} authorized | rebuilt={rebuilt_hash} "
            f"extension={len(order.extension)}B"
        )
        return FillAuthorization(
            success=True,
            state=state,
            order=order,
            signature=signature,
            order_hash=rebuilt_hash,
        )

    # ── Steps ──

    async def _prove(self, params: OrderParameters, secrets: SecretParameters, fill_amount: int) -> bytes:
        inputs = ProofInputs(
            secret_price=secrets.secret_price,
            secret_amount=secrets.secret_amount,
            commit=params.commitment,
            nonce=secrets.nonce,
            offered_price=fill_amount,
            offered_amount=fill_amount,
        )
        try:
            formatted = await self._pool.run(
                self._pipeline.generate_formatted_proof,
                inputs,
                self._artifacts,
                timeout=self._prover_timeout,
            )
        except HiddenOrderError as exc:
            raise ProofFailed(exc)
        return formatted.encoded

    def _rebuild(self, params: OrderParameters, proof_bytes: bytes) -> OrderStruct:
        try:
            predicate = build_zk_predicate(self._predicate_address, proof_bytes)
            order = build_order(
                salt=params.commitment if params.original_salt is None else params.original_salt,
                commitment=params.commitment,
                maker=params.maker,
                maker_asset=params.maker_asset,
                taker_asset=params.taker_asset,
                making_amount=params.making_amount,
                taking_amount=params.taking_amount,
                maker_traits=build_maker_traits(allow_partial_fill=True, allow_multiple_fills=True),
                extension_fields=ExtensionFields(predicate=predicate),
            )
        except (ValueError, InvalidParameters) as exc:
            raise RebuildFailed("Failed to rebuild order with ZK extension", detail=str(exc))

        violations = validate_zk_order(order, params.commitment)
        if violations:
            raise RebuildFailed(
                "Rebuilt order does not bind its commitment and extension",
                detail=", ".join(str(v) for v in violations),
            )
        return order

    def _sign(self, order: OrderStruct) -> OrderSignature:
        if self._signer is None:
            raise RebuildFailed("No maker signer configured", detail="MAKER_PRIVATE_KEY is empty")
        try:
            return self._signer.sign_order(order, self.chain_id, self.router_address)
        except ValueError as exc:
            raise RebuildFailed("Failed to sign rebuilt order", detail=str(exc))


_service_instance: Optional[AuthorizationService] = None


def get_authorization_service() -> AuthorizationService:
    """Lazy process-wide service wired from settings."""
    global _service_instance
    if _service_instance is None:
        _service_instance = AuthorizationService(
            registry=OrderRegistry(),
            pipeline=ProofPipeline(CommitmentEngine()),
            signer=get_signer(),
            predicate_address=settings.ZK_PREDICATE_ADDRESS,
        )
    return _service_instance
