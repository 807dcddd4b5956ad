import json
import logging
import os
import time

import pytest

from hidden_orders.core.errors import (
    CatalogOrderNotFound,
    DuplicateCommitment,
    StorageCorrupt,
    StorageLockTimeout,
)
from hidden_orders.infrastructure.storage import order_catalog
from hidden_orders.infrastructure.storage.order_catalog import (
    OrderCatalog,
    generate_order_id,
    validate_order_id,
)
from hidden_orders.schemas.orders import CreateOrderRequest, OrderFilter, OrderStatus

from conftest import MAKER, OTHER_MAKER, USDC, WETH


def make_request(commitment="1234", maker=MAKER, network="localhost", maker_asset=WETH):
    return CreateOrderRequest.model_validate({
        "orderData": {"salt": commitment, "maker": maker},
        "signature": "0x" + "11" * 65,
        "commitment": commitment,
        "metadata": {
            "maker": maker,
            "makerAsset": maker_asset,
            "takerAsset": USDC,
            "makingAmount": "1000000000000000000",
            "takingAmount": "3500000000",
            "originalSalt": commitment,
            "network": network,
            "displayPrice": "3500",
        },
    })


# ═══════════════════════════════════════════════════════════════════════════════
# LIFECYCLE
# ═══════════════════════════════════════════════════════════════════════════════

def test_new_catalog_file_is_initialized(catalog):
    doc = json.loads(catalog.storage_path.read_text())
    assert doc["orders"] == []
    assert doc["version"] == "1.0.0"
    assert "lastUpdated" in doc


def test_publish_and_get(catalog):
    order_id = catalog.publish(make_request())
    assert validate_order_id(order_id)

    order = catalog.get_by_id(order_id)
    assert order.commitment == "1234"
    assert order.metadata.status == OrderStatus.ACTIVE
    assert catalog.get_by_id("order_missing_abc123") is None


def test_document_uses_camel_case_keys(catalog):
    catalog.publish(make_request())
    stored = json.loads(catalog.storage_path.read_text())["orders"][0]
    assert {"orderData", "signature", "commitment", "metadata"} <= set(stored)
    assert stored["metadata"]["makerAsset"] == WETH
    assert stored["metadata"]["status"] == "active"


def test_duplicate_commitment_rejected_while_active(catalog):
    order_id = catalog.publish(make_request())
    with pytest.raises(DuplicateCommitment):
        catalog.publish(make_request())

    catalog.update_status(order_id, OrderStatus.CANCELLED)
    assert catalog.publish(make_request()) != order_id


def test_duplicate_detection_ignores_leading_zeros(catalog):
    catalog.publish(make_request("1234"))
    with pytest.raises(DuplicateCommitment):
        catalog.publish(make_request("01234"))
    assert make_request("000").commitment == "0"


def test_update_status_unknown_id(catalog):
    with pytest.raises(CatalogOrderNotFound):
        catalog.update_status("order_nope_000000", OrderStatus.FILLED)


def test_any_status_transition_is_accepted(catalog):
    order_id = catalog.publish(make_request())
    catalog.update_status(order_id, OrderStatus.FILLED)
    updated = catalog.update_status(order_id, OrderStatus.ACTIVE)
    assert updated.metadata.status == OrderStatus.ACTIVE


def test_catalog_survives_reopen(catalog):
    order_id = catalog.publish(make_request())
    reopened = OrderCatalog(str(catalog.storage_path), lock=catalog._lock)
    assert reopened.get_by_id(order_id) is not None


# ═══════════════════════════════════════════════════════════════════════════════
# QUERIES
# ═══════════════════════════════════════════════════════════════════════════════

def test_query_newest_first(catalog):
    first = catalog.publish(make_request("1"))
    second = catalog.publish(make_request("2"))
    third = catalog.publish(make_request("3"))
    assert [o.id for o in catalog.query()] == [third, second, first]


def test_query_filters_case_insensitively(catalog):
    mine = catalog.publish(make_request("1"))
    catalog.publish(make_request("2", maker=OTHER_MAKER))

    by_maker = catalog.query(OrderFilter(maker=MAKER.lower()))
    assert [o.id for o in by_maker] == [mine]

    by_asset = catalog.query(OrderFilter(maker_asset=WETH.upper().replace("0X", "0x")))
    assert len(by_asset) == 2


def test_active_orders_by_network(catalog):
    local = catalog.publish(make_request("1", network="localhost"))
    catalog.publish(make_request("2", network="hardhat"))
    filled = catalog.publish(make_request("3", network="localhost"))
    catalog.update_status(filled, OrderStatus.FILLED)

    assert [o.id for o in catalog.get_active_orders("localhost")] == [local]
    assert len(catalog.get_active_orders()) == 2


def test_statistics(catalog):
    a = catalog.publish(make_request("1"))
    b = catalog.publish(make_request("2"))
    catalog.publish(make_request("3"))
    catalog.update_status(a, OrderStatus.FILLED)
    catalog.update_status(b, OrderStatus.CANCELLED)

    stats = catalog.get_statistics()
    assert (stats.total, stats.active, stats.filled, stats.cancelled) == (3, 1, 1, 1)


# ═══════════════════════════════════════════════════════════════════════════════
# LOCKING & CORRUPTION
# ═══════════════════════════════════════════════════════════════════════════════

def _write_lock(catalog, created):
    catalog._lock.path.write_text(json.dumps({"pid": os.getpid(), "created": created}))


def test_stale_lock_is_broken(catalog, caplog):
    _write_lock(catalog, time.time() - 120)
    with caplog.at_level(logging.WARNING):
        catalog.publish(make_request())
    assert "Breaking stale lock" in caplog.text
    assert not catalog._lock.path.exists()


def test_lock_of_dead_owner_is_broken(catalog, caplog, monkeypatch):
    monkeypatch.setattr(order_catalog, "_pid_alive", lambda pid: False)
    catalog._lock.path.write_text(json.dumps({"pid": os.getpid() + 100000, "created": time.time()}))
    with caplog.at_level(logging.WARNING):
        catalog.publish(make_request())
    assert "is not running" in caplog.text
    assert not catalog._lock.path.exists()


def test_replaced_marker_survives_a_late_breaker(catalog):
    lock = catalog._lock
    fresh = json.dumps({"pid": os.getpid(), "created": time.time()})
    lock.path.write_text(fresh)

    stale = json.dumps({"pid": os.getpid(), "created": time.time() - 120})
    assert lock._discard_marker(stale) is False
    assert lock.path.read_text() == fresh
    assert sorted(p.name for p in lock.path.parent.iterdir()) == ["orders.json", "orders.json.lock"]

    assert lock._discard_marker(fresh) is True
    assert not lock.path.exists()


def test_held_lock_times_out(catalog):
    _write_lock(catalog, time.time())
    with pytest.raises(StorageLockTimeout):
        catalog.publish(make_request())
    assert catalog._lock.path.exists()


def test_lock_released_after_operation(catalog):
    catalog.publish(make_request())
    assert not catalog._lock.path.exists()


def test_corrupt_document_raises(catalog):
    catalog.storage_path.write_text("{not json")
    with pytest.raises(StorageCorrupt):
        catalog.query()
    assert catalog.storage_path.read_text() == "{not json"
    assert not catalog._lock.path.exists()


def test_version_mismatch_warns(catalog, caplog):
    catalog.storage_path.write_text(json.dumps({
        "orders": [], "lastUpdated": "2024-01-01T00:00:00Z", "version": "0.9.0",
    }))
    with caplog.at_level(logging.WARNING):
        assert catalog.query() == []
    assert "Storage version mismatch" in caplog.text


# ═══════════════════════════════════════════════════════════════════════════════
# ORDER IDS
# ═══════════════════════════════════════════════════════════════════════════════

def test_order_ids():
    ids = {generate_order_id() for _ in range(20)}
    assert len(ids) == 20
    assert all(validate_order_id(i) for i in ids)
    assert not validate_order_id("order_ABC_123")
    assert not validate_order_id("foo_1_2")
    assert not validate_order_id("order_1")
