import pytest
from eth_account import Account
from eth_utils import function_signature_to_4byte_selector

from hidden_orders.core.crypto import salt_codec
from hidden_orders.infrastructure.blockchain import order_builder as ob
from hidden_orders.infrastructure.blockchain.order_builder import ExtensionFields

from conftest import CHAIN_ID, MAKER, PREDICATE, ROUTER, USDC, WETH


def _order(commitment, fields=None):
    return ob.build_order(
        salt=commitment,
        maker=MAKER,
        maker_asset=WETH,
        taker_asset=USDC,
        making_amount=10**18,
        taking_amount=3500_000000,
        maker_traits=ob.build_maker_traits(),
        extension_fields=fields,
    )


# ═══════════════════════════════════════════════════════════════════════════════
# MAKER TRAITS
# ═══════════════════════════════════════════════════════════════════════════════

def test_default_traits_allow_partial_and_multiple_fills():
    traits = ob.build_maker_traits()
    assert ob.has_flag(traits, ob.ALLOW_MULTIPLE_FILLS_FLAG)
    assert not ob.has_flag(traits, ob.NO_PARTIAL_FILLS_FLAG)


def test_traits_fields():
    traits = ob.build_maker_traits(
        allowed_sender="0x00000000000000000000000000000000000000ff",
        allow_partial_fill=False,
        should_check_epoch=True,
        expiry=1_700_000_000,
        nonce=7,
        series=3,
    )
    assert ob.has_flag(traits, ob.NO_PARTIAL_FILLS_FLAG)
    assert ob.has_flag(traits, ob.NEED_EPOCH_CHECK_FLAG)
    assert traits & (2**80 - 1) == 0xFF
    assert (traits >> ob.EXPIRY_SHIFT) & ob.UINT40_MAX == 1_700_000_000
    assert (traits >> ob.NONCE_SHIFT) & ob.UINT40_MAX == 7
    assert (traits >> ob.SERIES_SHIFT) & ob.UINT40_MAX == 3


def test_traits_reject_oversized_expiry():
    with pytest.raises(ValueError):
        ob.build_maker_traits(expiry=2**40)


# ═══════════════════════════════════════════════════════════════════════════════
# EXTENSION
# ═══════════════════════════════════════════════════════════════════════════════

def test_empty_extension():
    assert ob.build_extension(ExtensionFields()) == b""


def test_extension_offsets_are_cumulative():
    fields = ExtensionFields(maker_asset_suffix=b"\x01\x02", predicate=b"\xaa" * 4)
    extension = ob.build_extension(fields)

    offsets = int.from_bytes(extension[:32], "big")
    ends = [(offsets >> (32 * i)) & 0xFFFFFFFF for i in range(8)]
    assert ends == [2, 2, 2, 2, 6, 6, 6, 6]
    assert extension[32:] == b"\x01\x02" + b"\xaa" * 4
    assert ob.parse_extension(extension) == fields


def test_zk_predicate_structure():
    proof = b"\x07" * 416
    predicate = ob.build_zk_predicate(PREDICATE, proof)
    assert predicate[:4] == function_signature_to_4byte_selector("gt(uint256,bytes)")
    assert ob.ARBITRARY_STATIC_CALL_SELECTOR in predicate
    assert ob.PREDICATE_SELECTOR + (32).to_bytes(32, "big") in predicate
    assert proof in predicate


def test_zk_predicate_rejects_bad_address():
    with pytest.raises(ValueError):
        ob.build_zk_predicate("0x1234", b"\x00" * 416)


# ═══════════════════════════════════════════════════════════════════════════════
# ORDERS
# ═══════════════════════════════════════════════════════════════════════════════

def test_commitment_order_uses_commitment_as_salt(commitment):
    order = ob.build_commitment_order(commitment, MAKER, WETH, USDC, 10**18, 3500_000000)
    assert order.salt == commitment
    assert order.extension == b""
    assert not ob.has_flag(order.maker_traits, ob.HAS_EXTENSION_FLAG)


def test_commitment_order_validation():
    violations = ob.validate_commitment_order("0xnope", WETH, WETH, 0, 5)
    assert {v.field for v in violations} == {"maker", "makingAmount"}
    same_asset = ob.validate_commitment_order(MAKER, WETH, WETH, 1, 1)
    assert [v.field for v in same_asset] == ["takerAsset"]
    with pytest.raises(ValueError):
        ob.build_commitment_order(1, MAKER, WETH, USDC, 0, 1)


def test_order_with_extension_binds_salt(commitment):
    order = _order(commitment, ExtensionFields(predicate=ob.build_zk_predicate(PREDICATE, b"\x01" * 416)))
    assert ob.has_flag(order.maker_traits, ob.HAS_EXTENSION_FLAG)
    assert order.salt != commitment
    assert salt_codec.unpack(order.salt) == (
        salt_codec.truncate_commitment(commitment),
        salt_codec.compute_extension_hash(order.extension),
    )
    assert ob.validate_zk_order(order, commitment) == []
    assert ob.validate_zk_order(order, commitment + 1)


def test_interaction_flags():
    order = _order(1, ExtensionFields(pre_interaction=b"\x01", post_interaction=b"\x02"))
    assert ob.has_flag(order.maker_traits, ob.NEED_PREINTERACTION_FLAG)
    assert ob.has_flag(order.maker_traits, ob.NEED_POSTINTERACTION_FLAG)


def test_validate_zk_order_requires_extension(commitment):
    violations = ob.validate_zk_order(_order(commitment), commitment)
    assert [v.field for v in violations] == ["extension"]


# ═══════════════════════════════════════════════════════════════════════════════
# EIP-712
# ═══════════════════════════════════════════════════════════════════════════════

def test_typed_data_domain(commitment):
    typed = ob.order_typed_data(_order(commitment), CHAIN_ID, ROUTER)
    assert typed["domain"] == {
        "name": "1inch Aggregation Router",
        "version": "6",
        "chainId": 1,
        "verifyingContract": ROUTER,
    }
    assert typed["primaryType"] == "Order"
    assert [f["name"] for f in typed["types"]["Order"]] == [
        "salt", "maker", "receiver", "makerAsset", "takerAsset",
        "makingAmount", "takingAmount", "makerTraits",
    ]


def test_order_hash_depends_on_salt_and_chain(commitment):
    order = _order(commitment)
    h = ob.compute_order_hash(order, CHAIN_ID, ROUTER)
    assert h.startswith("0x") and len(h) == 66
    assert h == ob.compute_order_hash(order, CHAIN_ID, ROUTER)
    assert h != ob.compute_order_hash(order, 137, ROUTER)
    assert h != ob.compute_order_hash(_order(commitment + 1), CHAIN_ID, ROUTER)


def test_signature_recovers_maker(signer, commitment):
    order = _order(commitment)
    sig = signer.sign_order(order, CHAIN_ID, ROUTER)
    recovered = Account.recover_message(ob.signable_order(order, CHAIN_ID, ROUTER), signature=sig.signature)
    assert recovered == MAKER
    assert len(bytes.fromhex(sig.signature[2:])) == 65
    assert len(sig.r) == len(sig.vs) == 66
