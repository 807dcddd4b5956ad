import random

import pytest

from hidden_orders.core.crypto import salt_codec
from hidden_orders.core.errors import InvalidParameters

EMPTY_KECCAK_LOW160 = int("dcc703c0e500b653ca82273b7bfad8045d85a470", 16)


def test_random_round_trips():
    rng = random.Random(20240611)
    for _ in range(1000):
        commitment = rng.getrandbits(254)
        extension = rng.randbytes(rng.randint(1, 600))
        ext_hash = salt_codec.compute_extension_hash(extension)

        salt = salt_codec.pack(salt_codec.truncate_commitment(commitment), ext_hash)
        assert salt_codec.unpack(salt) == (commitment % 2**96, ext_hash)
        assert salt < 2**256


def test_pack_truncates_full_commitment():
    commitment = (1 << 200) | 0xABCDEF
    salt = salt_codec.pack(commitment, 0)
    assert salt >> 160 == 0xABCDEF


def test_layout():
    salt = salt_codec.pack(0x1, 0x2)
    assert salt == (1 << 160) | 2


def test_pack_rejects_oversized_extension_hash():
    with pytest.raises(InvalidParameters):
        salt_codec.pack(1, 1 << 160)
    with pytest.raises(InvalidParameters):
        salt_codec.pack(1, -1)


def test_extension_hash_is_low_160_bits_of_keccak():
    assert salt_codec.compute_extension_hash(b"") == EMPTY_KECCAK_LOW160


def test_verify_round_trip():
    assert salt_codec.verify_round_trip(2**254 - 1, 2**160 - 1)
    assert not salt_codec.verify_round_trip(1, 2**160)


def test_validate_salt_structure():
    assert salt_codec.validate_salt_structure(2**256 - 1) == []
    assert salt_codec.validate_salt_structure(2**256)
    assert salt_codec.validate_salt_structure(-5)


def test_extension_hash_from_hex():
    assert salt_codec.extension_hash_from_hex("0x" + "f" * 40) == 2**160 - 1
    assert salt_codec.extension_hash_from_hex("ff") == 255
    with pytest.raises(InvalidParameters):
        salt_codec.extension_hash_from_hex("0x" + "1" * 41)
    with pytest.raises(InvalidParameters):
        salt_codec.extension_hash_from_hex("0xzz")


def test_rebuild_salt_without_extension_keeps_original():
    assert salt_codec.rebuild_salt(123, b"", original_salt=456) == 456
    assert salt_codec.rebuild_salt(123, b"") == 123


def test_rebuild_salt_with_extension_packs():
    extension = b"\x01" * 64
    packed = salt_codec.create_salt_from_extension(123, extension)
    assert salt_codec.rebuild_salt(123, extension, original_salt=456) == packed.salt
    assert packed.commitment == 123
    assert "extHash=0x" in salt_codec.format_packed_salt(packed)
