"""
Hidden Orders Maker Service: HTTP entry point.

Thin FastAPI layer over the commitment-and-authorization core:

    POST  /api/maker/register          register secrets + order parameters
    POST  /api/authorize-fill          prove, rebuild and sign a ZK-gated order
    GET   /api/order-status/{c}        whether secrets exist for a commitment
    POST  /api/orders                  publish to the order catalog
    GET   /api/orders                  query (status/maker/assets/network, paged)
    GET   /api/orders/active/{net}     active orders on a network
    GET   /api/orders/stats            catalog counters
    GET   /api/orders/{id}             single order
    PATCH /api/orders/{id}/status      lifecycle update

Request bodies are validated by the pydantic schemas before any hashing or
proving starts. Core errors carry a stable code which is mapped to an HTTP
status here and nowhere else.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from hidden_orders.core.config import settings
from hidden_orders.core.crypto.bridge import get_bridge
from hidden_orders.core.errors import ErrorCode, HiddenOrderError
from hidden_orders.infrastructure.storage.order_catalog import OrderCatalog, get_catalog
from hidden_orders.middleware.request_logging import RequestLoggingMiddleware
from hidden_orders.schemas.orders import (
    AuthorizeFillRequest,
    CreateOrderRequest,
    FillAuthorizationResponse,
    OrderFilter,
    OrderParameters,
    OrderStatus,
    RegisterOrderRequest,
    SecretParameters,
    StatusUpdate,
)
from hidden_orders.services.authorization import AuthorizationService, get_authorization_service

logger = logging.getLogger(__name__)

_BOOT_TIME: float = time.time()

app = FastAPI(
    title=settings.PROJECT_NAME,
    description="Maker service for limit orders with zero-knowledge hidden thresholds",
    version="0.1.0",
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
)

# --- CORS Configuration ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

if settings.ENABLE_LOGGING:
    app.add_middleware(RequestLoggingMiddleware)


# ═══════════════════════════════════════════════════════════════════════════════
# ERROR MAPPING
# ═══════════════════════════════════════════════════════════════════════════════

_STATUS_BY_CODE: Dict[ErrorCode, int] = {
    ErrorCode.INVALID_PARAMETERS: status.HTTP_400_BAD_REQUEST,
    ErrorCode.COMMITMENT_MISMATCH: status.HTTP_400_BAD_REQUEST,
    ErrorCode.CONSTRAINT_VIOLATION: status.HTTP_403_FORBIDDEN,
    ErrorCode.MAKER_MISMATCH: status.HTTP_403_FORBIDDEN,
    ErrorCode.INSUFFICIENT_AMOUNT: status.HTTP_403_FORBIDDEN,
    ErrorCode.ORDER_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.DUPLICATE_COMMITMENT: status.HTTP_409_CONFLICT,
    ErrorCode.PROVER_FAILURE: status.HTTP_502_BAD_GATEWAY,
    ErrorCode.PROOF_FAILED: status.HTTP_502_BAD_GATEWAY,
    ErrorCode.REBUILD_FAILED: status.HTTP_500_INTERNAL_SERVER_ERROR,
    ErrorCode.STORAGE_LOCK_TIMEOUT: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorCode.STORAGE_CORRUPT: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def status_for(code: ErrorCode, is_denial: bool = False, cause_code: Optional[ErrorCode] = None) -> int:
    if code == ErrorCode.PROOF_FAILED:
        if cause_code == ErrorCode.INVALID_PARAMETERS:
            return status.HTTP_400_BAD_REQUEST
        if is_denial:
            return status.HTTP_403_FORBIDDEN
    return _STATUS_BY_CODE.get(code, status.HTTP_500_INTERNAL_SERVER_ERROR)


def _http_error(exc: HiddenOrderError) -> HTTPException:
    return HTTPException(
        status_code=status_for(exc.code, exc.is_denial, getattr(exc, "cause_code", None)),
        detail={"code": exc.code.value, "message": exc.reason},
    )


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _dump(model) -> Dict[str, Any]:
    return model.model_dump(by_alias=True, mode="json")


# ═══════════════════════════════════════════════════════════════════════════════
# SYSTEM ENDPOINTS
# ═══════════════════════════════════════════════════════════════════════════════

@app.get(f"{settings.API_V1_STR}/health", tags=["System"])
def health_check(service: AuthorizationService = Depends(get_authorization_service)):
    return {
        "status": "healthy",
        "service": settings.PROJECT_NAME,
        "network": settings.NETWORK,
        "timestamp": _now(),
        "uptime_seconds": round(time.time() - _BOOT_TIME, 2),
        "prover_backend": get_bridge().backend,
        "registered_commitments": len(service.registry),
    }


# ═══════════════════════════════════════════════════════════════════════════════
# MAKER / AUTHORIZATION ENDPOINTS
# ═══════════════════════════════════════════════════════════════════════════════

@app.post(f"{settings.API_V1_STR}/maker/register", tags=["Maker"])
def register_secrets(
    req: RegisterOrderRequest,
    service: AuthorizationService = Depends(get_authorization_service),
):
    commitment = int(req.commitment)
    p = req.order_parameters
    params = OrderParameters(
        maker=p.maker,
        maker_asset=p.maker_asset,
        taker_asset=p.taker_asset,
        making_amount=int(p.making_amount),
        taking_amount=int(p.taking_amount),
        commitment=commitment,
        original_salt=int(p.original_salt) if p.original_salt else None,
    )
    secrets = SecretParameters(
        secret_price=req.secrets.secret_price,
        secret_amount=req.secrets.secret_amount,
        nonce=req.secrets.nonce,
        maker_identity=req.secrets.maker,
    )
    try:
        service.register_order(commitment, params, secrets, req.order_hash)
    except HiddenOrderError as exc:
        raise _http_error(exc)

    return {
        "success": True,
        "message": "Secrets registered successfully",
        "orderHash": req.order_hash,
        "commitment": req.commitment,
        "timestamp": _now(),
    }


@app.post(f"{settings.API_V1_STR}/authorize-fill", tags=["Maker"])
async def authorize_fill(
    req: AuthorizeFillRequest,
    service: AuthorizationService = Depends(get_authorization_service),
):
    logger.info(
        f"[API] Authorization request | orderHash={req.order_hash} "
        f"fillAmount={req.fill_amount} taker={req.taker_address}"
    )
    result = await service.authorize_fill(req.order_hash, int(req.fill_amount))

    if result.success:
        body = FillAuthorizationResponse(
            success=True,
            order_with_extension=result.order.to_json(),
            signature=result.signature.signature,
            order_hash=result.order_hash,
        )
        return JSONResponse(status_code=status.HTTP_200_OK, content=_dump(body))

    body = FillAuthorizationResponse(
        success=False,
        error_code=result.error_code.value,
        error=result.reason,
    )
    return JSONResponse(
        status_code=status_for(result.error_code, result.is_denial, result.cause_code),
        content=_dump(body),
    )


@app.get(f"{settings.API_V1_STR}/order-status/{{commitment}}", tags=["Maker"])
def order_status(
    commitment: str,
    service: AuthorizationService = Depends(get_authorization_service),
):
    if not commitment.isdigit():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": ErrorCode.INVALID_PARAMETERS.value, "message": "commitment must be a decimal integer"},
        )
    info = service.registry.order_status(int(commitment))
    return {"commitment": commitment, **info, "timestamp": _now()}


# ═══════════════════════════════════════════════════════════════════════════════
# ORDER CATALOG ENDPOINTS
# ═══════════════════════════════════════════════════════════════════════════════

@app.post(f"{settings.API_V1_STR}/orders", status_code=status.HTTP_201_CREATED, tags=["Orders"])
def publish_order(req: CreateOrderRequest, catalog: OrderCatalog = Depends(get_catalog)):
    try:
        order_id = catalog.publish(req)
    except HiddenOrderError as exc:
        raise _http_error(exc)
    return {
        "success": True,
        "id": order_id,
        "orderId": order_id,
        "message": "Order created and published successfully",
        "timestamp": _now(),
    }


@app.get(f"{settings.API_V1_STR}/orders", tags=["Orders"])
def list_orders(
    status_filter: Optional[OrderStatus] = Query(default=None, alias="status"),
    maker: Optional[str] = None,
    maker_asset: Optional[str] = Query(default=None, alias="makerAsset"),
    taker_asset: Optional[str] = Query(default=None, alias="takerAsset"),
    network: Optional[str] = None,
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    catalog: OrderCatalog = Depends(get_catalog),
):
    order_filter = OrderFilter(
        status=status_filter,
        maker=maker,
        maker_asset=maker_asset,
        taker_asset=taker_asset,
        network=network,
    )
    try:
        orders = catalog.query(order_filter)
    except HiddenOrderError as exc:
        raise _http_error(exc)

    page = orders[offset:offset + limit]
    return {
        "success": True,
        "orders": [_dump(o) for o in page],
        "pagination": {
            "total": len(orders),
            "limit": limit,
            "offset": offset,
            "hasMore": offset + len(page) < len(orders),
        },
        "filters": order_filter.model_dump(by_alias=True, mode="json", exclude_none=True),
        "timestamp": _now(),
    }


@app.get(f"{settings.API_V1_STR}/orders/active/{{network}}", tags=["Orders"])
def active_orders(network: str, catalog: OrderCatalog = Depends(get_catalog)):
    try:
        orders = catalog.get_active_orders(network)
    except HiddenOrderError as exc:
        raise _http_error(exc)
    return {
        "success": True,
        "orders": [_dump(o) for o in orders],
        "network": network,
        "count": len(orders),
        "timestamp": _now(),
    }


@app.get(f"{settings.API_V1_STR}/orders/stats", tags=["Orders"])
def order_stats(catalog: OrderCatalog = Depends(get_catalog)):
    try:
        stats = catalog.get_statistics()
    except HiddenOrderError as exc:
        raise _http_error(exc)
    return {"success": True, "stats": stats.model_dump(), "timestamp": _now()}


@app.get(f"{settings.API_V1_STR}/orders/{{order_id}}", tags=["Orders"])
def get_order(order_id: str, catalog: OrderCatalog = Depends(get_catalog)):
    try:
        order = catalog.get_by_id(order_id)
    except HiddenOrderError as exc:
        raise _http_error(exc)
    if order is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"code": ErrorCode.NOT_FOUND.value, "message": f"Order not found: {order_id}"},
        )
    return {"success": True, "order": _dump(order), "timestamp": _now()}


@app.patch(f"{settings.API_V1_STR}/orders/{{order_id}}/status", tags=["Orders"])
def update_order_status(
    order_id: str,
    update: StatusUpdate,
    catalog: OrderCatalog = Depends(get_catalog),
):
    try:
        order = catalog.update_status(order_id, update.status)
    except HiddenOrderError as exc:
        raise _http_error(exc)
    if update.reason or update.updated_by:
        logger.info(f"[API] {order_id} -> {update.status.value} by {update.updated_by or '-'}: {update.reason or '-'}")
    return {"success": True, "order": _dump(order), "timestamp": _now()}


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    uvicorn.run("hidden_orders.main:app", host="0.0.0.0", port=settings.PORT)
