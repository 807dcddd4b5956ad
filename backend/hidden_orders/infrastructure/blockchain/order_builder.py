"""
Limit order protocol glue: maker traits, extensions, ZK predicate, EIP-712.

Encodings follow the 1inch Limit Order Protocol v4 as deployed on the
Aggregation Router v6:

  makerTraits (uint256)
      bit 255  NO_PARTIAL_FILLS        bit 250  NEED_EPOCH_CHECK
      bit 254  ALLOW_MULTIPLE_FILLS    bit 249  HAS_EXTENSION
      bit 252  NEED_PREINTERACTION     bit 248  USE_PERMIT2
      bit 251  NEED_POSTINTERACTION    bit 247  UNWRAP_WETH
      bits 160..199 series, 120..159 nonce/epoch, 80..119 expiry,
      bits 0..79 low 10 bytes of the allowed sender

  extension (bytes)
      32-byte offsets word: eight cumulative 32-bit end offsets, field i at
      bits [32*i, 32*i + 32), followed by the concatenated fields
      makerAssetSuffix, takerAssetSuffix, makingAmountData, takingAmountData,
      predicate, permit, preInteraction, postInteraction, then customData.

  When an extension is present the protocol requires
      salt & (2^160 - 1) == keccak256(extension) & (2^160 - 1)
  which the Salt Codec satisfies while keeping the truncated commitment in
  the upper 96 bits.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from eth_abi import encode as abi_encode
from eth_account.messages import SignableMessage, encode_typed_data
from eth_utils import function_signature_to_4byte_selector, keccak
from web3 import Web3

from hidden_orders.core.crypto.commitment import Violation
from hidden_orders.core.crypto import salt_codec
from hidden_orders.schemas.orders import ZERO_ADDRESS, OrderStruct

# ── Maker traits ──
NO_PARTIAL_FILLS_FLAG = 255
ALLOW_MULTIPLE_FILLS_FLAG = 254
NEED_PREINTERACTION_FLAG = 252
NEED_POSTINTERACTION_FLAG = 251
NEED_EPOCH_CHECK_FLAG = 250
HAS_EXTENSION_FLAG = 249
USE_PERMIT2_FLAG = 248
UNWRAP_WETH_FLAG = 247

SERIES_SHIFT = 160
NONCE_SHIFT = 120
EXPIRY_SHIFT = 80
UINT40_MAX = (1 << 40) - 1
UINT80_MAX = (1 << 80) - 1

# ── EIP-712 ──
DOMAIN_NAME = "1inch Aggregation Router"
DOMAIN_VERSION = "6"

EIP712_TYPES: Dict[str, List[Dict[str, str]]] = {
    "EIP712Domain": [
        {"name": "name", "type": "string"},
        {"name": "version", "type": "string"},
        {"name": "chainId", "type": "uint256"},
        {"name": "verifyingContract", "type": "address"},
    ],
    "Order": [
        {"name": "salt", "type": "uint256"},
        {"name": "maker", "type": "address"},
        {"name": "receiver", "type": "address"},
        {"name": "makerAsset", "type": "address"},
        {"name": "takerAsset", "type": "address"},
        {"name": "makingAmount", "type": "uint256"},
        {"name": "takingAmount", "type": "uint256"},
        {"name": "makerTraits", "type": "uint256"},
    ],
}

# ── Router predicate helpers ──
GT_SELECTOR = function_signature_to_4byte_selector("gt(uint256,bytes)")
ARBITRARY_STATIC_CALL_SELECTOR = function_signature_to_4byte_selector(
    "arbitraryStaticCall(address,bytes)"
)
PREDICATE_SELECTOR = function_signature_to_4byte_selector("predicate(bytes)")

EXTENSION_FIELDS = (
    "maker_asset_suffix",
    "taker_asset_suffix",
    "making_amount_data",
    "taking_amount_data",
    "predicate",
    "permit",
    "pre_interaction",
    "post_interaction",
)


def build_maker_traits(
    allowed_sender: str = ZERO_ADDRESS,
    should_check_epoch: bool = False,
    allow_partial_fill: bool = True,
    allow_multiple_fills: bool = True,
    use_permit2: bool = False,
    unwrap_weth: bool = False,
    expiry: int = 0,
    nonce: int = 0,
    series: int = 0,
) -> int:
    for name, value in (("expiry", expiry), ("nonce", nonce), ("series", series)):
        if not 0 <= value <= UINT40_MAX:
            raise ValueError(f"{name} must fit in 40 bits")

    traits = (
        (series << SERIES_SHIFT)
        | (nonce << NONCE_SHIFT)
        | (expiry << EXPIRY_SHIFT)
        | (int(allowed_sender, 16) & UINT80_MAX)
    )
    if not allow_partial_fill:
        traits |= 1 << NO_PARTIAL_FILLS_FLAG
    if allow_multiple_fills:
        traits |= 1 << ALLOW_MULTIPLE_FILLS_FLAG
    if should_check_epoch:
        traits |= 1 << NEED_EPOCH_CHECK_FLAG
    if use_permit2:
        traits |= 1 << USE_PERMIT2_FLAG
    if unwrap_weth:
        traits |= 1 << UNWRAP_WETH_FLAG
    return traits


def has_flag(traits: int, flag: int) -> bool:
    return bool(traits >> flag & 1)


@dataclass(frozen=True)
class ExtensionFields:
    maker_asset_suffix: bytes = b""
    taker_asset_suffix: bytes = b""
    making_amount_data: bytes = b""
    taking_amount_data: bytes = b""
    predicate: bytes = b""
    permit: bytes = b""
    pre_interaction: bytes = b""
    post_interaction: bytes = b""
    custom_data: bytes = b""


def build_extension(fields: ExtensionFields) -> bytes:
    """Offsets word plus concatenated fields; empty when every field is empty."""
    parts = [getattr(fields, name) for name in EXTENSION_FIELDS]
    body = b"".join(parts) + fields.custom_data
    if not body:
        return b""

    offsets = 0
    end = 0
    for i, part in enumerate(parts):
        end += len(part)
        offsets |= end << (32 * i)
    return offsets.to_bytes(32, "big") + body


def parse_extension(extension: bytes) -> ExtensionFields:
    """Inverse of build_extension."""
    if not extension:
        return ExtensionFields()
    if len(extension) < 32:
        raise ValueError("extension shorter than its offsets word")

    offsets = int.from_bytes(extension[:32], "big")
    body = extension[32:]
    values: Dict[str, bytes] = {}
    start = 0
    for i, name in enumerate(EXTENSION_FIELDS):
        end = (offsets >> (32 * i)) & 0xFFFFFFFF
        if end < start or end > len(body):
            raise ValueError(f"extension offset for {name} out of range")
        values[name] = body[start:end]
        start = end
    return ExtensionFields(custom_data=body[start:], **values)


def build_zk_predicate(predicate_address: str, proof_bytes: bytes) -> bytes:
    """
    gt(0, arbitraryStaticCall(predicate, predicate(proof)))

    The router evaluates this during fill: the predicate contract runs the
    Groth16 verifier on `proof_bytes` and returns nonzero on acceptance.
    """
    if not Web3.is_address(predicate_address):
        raise ValueError(f"Invalid predicate address: {predicate_address}")

    inner = PREDICATE_SELECTOR + abi_encode(["bytes"], [proof_bytes])
    static_call = ARBITRARY_STATIC_CALL_SELECTOR + abi_encode(
        ["address", "bytes"], [Web3.to_checksum_address(predicate_address), inner],
    )
    return GT_SELECTOR + abi_encode(["uint256", "bytes"], [0, static_call])


def build_order(
    salt: int,
    maker: str,
    maker_asset: str,
    taker_asset: str,
    making_amount: int,
    taking_amount: int,
    maker_traits: int = 0,
    receiver: str = ZERO_ADDRESS,
    extension_fields: Optional[ExtensionFields] = None,
    commitment: Optional[int] = None,
) -> OrderStruct:
    """
    Assemble an order and attach its extension.

    With a non-empty extension the HAS_EXTENSION flag (and the interaction
    flags for non-empty pre/post interactions) are set, and the salt becomes
    the packed (commitment, extension hash) salt. `commitment` defaults to
    the given salt.
    """
    fields = extension_fields or ExtensionFields()
    extension = build_extension(fields)

    if extension:
        maker_traits |= 1 << HAS_EXTENSION_FLAG
        if fields.pre_interaction:
            maker_traits |= 1 << NEED_PREINTERACTION_FLAG
        if fields.post_interaction:
            maker_traits |= 1 << NEED_POSTINTERACTION_FLAG
    salt = salt_codec.rebuild_salt(salt if commitment is None else commitment, extension, salt)

    return OrderStruct(
        salt=salt,
        maker=maker,
        receiver=receiver,
        maker_asset=maker_asset,
        taker_asset=taker_asset,
        making_amount=making_amount,
        taking_amount=taking_amount,
        maker_traits=maker_traits,
        extension=extension,
    )


def validate_commitment_order(
    maker: str, maker_asset: str, taker_asset: str, making_amount: int, taking_amount: int,
) -> List[Violation]:
    violations: List[Violation] = []
    for field, address in (("maker", maker), ("makerAsset", maker_asset), ("takerAsset", taker_asset)):
        if not Web3.is_address(address):
            violations.append(Violation(field, "is not a valid address"))
    if making_amount <= 0:
        violations.append(Violation("makingAmount", "must be positive"))
    if taking_amount <= 0:
        violations.append(Violation("takingAmount", "must be positive"))
    if not violations and maker_asset.lower() == taker_asset.lower():
        violations.append(Violation("takerAsset", "must differ from makerAsset"))
    return violations


def build_commitment_order(
    commitment: int,
    maker: str,
    maker_asset: str,
    taker_asset: str,
    making_amount: int,
    taking_amount: int,
    expiry: int = 0,
) -> OrderStruct:
    """Publish-time order: salt is the full commitment and there is no extension."""
    violations = validate_commitment_order(maker, maker_asset, taker_asset, making_amount, taking_amount)
    if violations:
        raise ValueError("Invalid order: " + ", ".join(str(v) for v in violations))

    traits = build_maker_traits(allow_multiple_fills=False, expiry=expiry)
    return build_order(
        salt=commitment,
        maker=maker,
        maker_asset=maker_asset,
        taker_asset=taker_asset,
        making_amount=making_amount,
        taking_amount=taking_amount,
        maker_traits=traits,
    )


def order_typed_data(order: OrderStruct, chain_id: int, verifying_contract: str) -> Dict[str, Any]:
    message = order.typed_message()
    for key in ("maker", "receiver", "makerAsset", "takerAsset"):
        message[key] = Web3.to_checksum_address(message[key])
    return {
        "types": EIP712_TYPES,
        "primaryType": "Order",
        "domain": {
            "name": DOMAIN_NAME,
            "version": DOMAIN_VERSION,
            "chainId": chain_id,
            "verifyingContract": Web3.to_checksum_address(verifying_contract),
        },
        "message": message,
    }


def signable_order(order: OrderStruct, chain_id: int, verifying_contract: str) -> SignableMessage:
    return encode_typed_data(full_message=order_typed_data(order, chain_id, verifying_contract))


def compute_order_hash(order: OrderStruct, chain_id: int, verifying_contract: str) -> str:
    """EIP-712 digest of the order, as the router computes hashOrder()."""
    signable = signable_order(order, chain_id, verifying_contract)
    digest = keccak(b"\x19" + signable.version + signable.header + signable.body)
    return "0x" + digest.hex()


def validate_zk_order(order: OrderStruct, commitment: int) -> List[Violation]:
    """Check that the salt binds both the commitment and the attached extension."""
    violations = salt_codec.validate_salt_structure(order.salt)
    if violations:
        return violations
    if not order.extension:
        violations.append(Violation("extension", "ZK order carries no extension"))
        return violations
    if not has_flag(order.maker_traits, HAS_EXTENSION_FLAG):
        violations.append(Violation("makerTraits", "HAS_EXTENSION flag not set"))

    upper, lower = salt_codec.unpack(order.salt)
    if upper != salt_codec.truncate_commitment(commitment):
        violations.append(Violation("salt", "upper 96 bits do not match the commitment"))
    if lower != salt_codec.compute_extension_hash(order.extension):
        violations.append(Violation("salt", "lower 160 bits do not match the extension hash"))
    return violations
