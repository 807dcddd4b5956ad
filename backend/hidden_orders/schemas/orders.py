"""
Pydantic schemas for orders, secrets, the persisted catalog and the HTTP API.

Wire and file formats use camelCase keys (``orderData``, ``originalSalt``,
``lastUpdated``) so that the JSON matches what limit-order tooling and the
existing catalog files expect. Python code uses the snake_case attributes.

Validation rules applied before any cryptographic work:
- Addresses must be 20-byte 0x-prefixed hex.
- Order hashes must be 32-byte 0x-prefixed hex.
- Amounts arrive as decimal strings and must be positive.
- Secret scalars are excluded from repr() so they cannot leak into logs.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

ADDRESS_PATTERN = r"^0x[a-fA-F0-9]{40}$"
HASH32_PATTERN = r"^0x[a-fA-F0-9]{64}$"
ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
STORAGE_VERSION = "1.0.0"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class OrderStatus(str, Enum):
    ACTIVE = "active"
    FILLED = "filled"
    CANCELLED = "cancelled"


# ═══════════════════════════════════════════════════════════════════════════════
# CORE RECORDS
# ═══════════════════════════════════════════════════════════════════════════════

class SecretParameters(CamelModel):
    """
    Maker-held thresholds. Lives only in the in-memory registry.

    ``maker_identity`` is the address that owns the secrets; fills on orders
    whose maker differs are refused.
    """
    secret_price: int = Field(..., repr=False)
    secret_amount: int = Field(..., repr=False)
    nonce: int = Field(..., repr=False)
    maker_identity: str = Field(..., pattern=ADDRESS_PATTERN)


class OrderParameters(CamelModel):
    """Economic terms captured at publish time. Immutable once registered."""
    maker: str = Field(..., pattern=ADDRESS_PATTERN)
    maker_asset: str = Field(..., pattern=ADDRESS_PATTERN)
    taker_asset: str = Field(..., pattern=ADDRESS_PATTERN)
    making_amount: int = Field(..., gt=0)
    taking_amount: int = Field(..., gt=0)
    commitment: int = Field(..., ge=0)
    original_salt: Optional[int] = None

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class OrderStruct(CamelModel):
    """Limit order struct as signed under EIP-712, plus its extension bytes."""
    salt: int
    maker: str
    receiver: str = ZERO_ADDRESS
    maker_asset: str
    taker_asset: str
    making_amount: int
    taking_amount: int
    maker_traits: int = 0
    extension: bytes = b""

    def typed_message(self) -> Dict[str, Any]:
        """The eight signed fields, keyed as in the Order type."""
        return {
            "salt": self.salt,
            "maker": self.maker,
            "receiver": self.receiver,
            "makerAsset": self.maker_asset,
            "takerAsset": self.taker_asset,
            "makingAmount": self.making_amount,
            "takingAmount": self.taking_amount,
            "makerTraits": self.maker_traits,
        }

    def to_json(self) -> Dict[str, str]:
        """Wire form: integers as decimal strings, extension as 0x hex."""
        data = {k: str(v) if isinstance(v, int) else v for k, v in self.typed_message().items()}
        data["extension"] = "0x" + self.extension.hex()
        return data


class OrderSignature(BaseModel):
    """65-byte signature plus its EIP-2098 compact (r, vs) form."""
    signature: str
    r: str
    vs: str


# ═══════════════════════════════════════════════════════════════════════════════
# ORDER CATALOG
# ═══════════════════════════════════════════════════════════════════════════════

class OrderMetadata(CamelModel):
    maker: str
    maker_asset: str
    taker_asset: str
    making_amount: str
    taking_amount: str
    original_salt: str
    network: str
    display_price: Optional[str] = None
    published: datetime = Field(default_factory=_utcnow)
    status: OrderStatus = OrderStatus.ACTIVE


class PublishedOrder(CamelModel):
    id: str
    order_data: Dict[str, Any]
    signature: str
    commitment: str
    metadata: OrderMetadata


class CatalogDocument(CamelModel):
    """Top-level JSON document of the catalog file."""
    orders: List[PublishedOrder] = Field(default_factory=list)
    last_updated: datetime = Field(default_factory=_utcnow)
    version: str = STORAGE_VERSION


class OrderMetadataIn(CamelModel):
    maker: str = Field(..., pattern=ADDRESS_PATTERN)
    maker_asset: str = Field(..., pattern=ADDRESS_PATTERN)
    taker_asset: str = Field(..., pattern=ADDRESS_PATTERN)
    making_amount: str = Field(..., pattern=r"^[0-9]+$")
    taking_amount: str = Field(..., pattern=r"^[0-9]+$")
    original_salt: str = Field(..., pattern=r"^[0-9]+$")
    network: str = Field(..., min_length=1)
    display_price: Optional[str] = None


class CreateOrderRequest(CamelModel):
    order_data: Dict[str, Any]
    signature: str = Field(..., min_length=1)
    commitment: str = Field(..., pattern=r"^[0-9]+$")
    metadata: OrderMetadataIn

    @field_validator("commitment")
    @classmethod
    def canonical_commitment(cls, v: str) -> str:
        return str(int(v))


class OrderFilter(CamelModel):
    status: Optional[OrderStatus] = None
    maker: Optional[str] = None
    maker_asset: Optional[str] = None
    taker_asset: Optional[str] = None
    network: Optional[str] = None


class StatusUpdate(CamelModel):
    status: OrderStatus
    updated_by: Optional[str] = None
    reason: Optional[str] = None


class StorageStats(BaseModel):
    total: int = 0
    active: int = 0
    filled: int = 0
    cancelled: int = 0


# ═══════════════════════════════════════════════════════════════════════════════
# AUTHORIZATION API
# ═══════════════════════════════════════════════════════════════════════════════

def _positive_decimal(value: str) -> str:
    if not value.isdigit() or int(value) <= 0:
        raise ValueError("must be a positive decimal integer string")
    return value


class SecretsIn(CamelModel):
    secret_price: int = Field(..., ge=1, repr=False)
    secret_amount: int = Field(..., ge=1, repr=False)
    nonce: int = Field(..., ge=0, repr=False)
    maker: str = Field(..., pattern=ADDRESS_PATTERN)


class OrderParametersIn(CamelModel):
    maker: str = Field(..., pattern=ADDRESS_PATTERN)
    maker_asset: str = Field(..., pattern=ADDRESS_PATTERN)
    taker_asset: str = Field(..., pattern=ADDRESS_PATTERN)
    making_amount: str
    taking_amount: str
    original_salt: Optional[str] = None

    @field_validator("making_amount", "taking_amount")
    @classmethod
    def check_amount(cls, v: str) -> str:
        return _positive_decimal(v)


class RegisterOrderRequest(CamelModel):
    order_hash: Optional[str] = Field(default=None, pattern=HASH32_PATTERN)
    commitment: str = Field(..., pattern=r"^[0-9]+$")
    order_parameters: OrderParametersIn
    secrets: SecretsIn


class AuthorizeFillRequest(CamelModel):
    order_hash: str = Field(..., pattern=HASH32_PATTERN)
    fill_amount: str
    taker_address: str = Field(..., pattern=ADDRESS_PATTERN)

    @field_validator("fill_amount")
    @classmethod
    def check_fill_amount(cls, v: str) -> str:
        return _positive_decimal(v)


class FillAuthorizationResponse(CamelModel):
    success: bool
    order_with_extension: Optional[Dict[str, str]] = None
    signature: Optional[str] = None
    order_hash: Optional[str] = None
    error_code: Optional[str] = None
    error: Optional[str] = None
    timestamp: datetime = Field(default_factory=_utcnow)
