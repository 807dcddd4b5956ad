"""
OrderCatalog: durable JSON store of published orders.

File layout:
    <ORDER_STORAGE_PATH>         {"orders": [...], "lastUpdated": ISO-8601, "version": "1.0.0"}
    <ORDER_STORAGE_PATH>.lock    {"pid": 1234, "created": 1718000000.12}

Every operation runs inside the lock: the marker is created with O_EXCL,
retried every STORAGE_LOCK_RETRY_INTERVAL seconds for up to
STORAGE_LOCK_TIMEOUT_SECONDS. A marker older than STORAGE_LOCK_STALE_SECONDS,
or one whose owning pid is gone, is broken instead of waited on.

Writes go to a sibling temp file and are renamed into place, so readers never
see a half-written document. An unparsable document raises StorageCorrupt and
is left untouched for the operator.
"""

from __future__ import annotations

import json
import logging
import os
import secrets
import string
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from hidden_orders.core.config import settings
from hidden_orders.core.errors import (
    CatalogOrderNotFound,
    DuplicateCommitment,
    StorageCorrupt,
    StorageLockTimeout,
)
from hidden_orders.schemas.orders import (
    STORAGE_VERSION,
    CatalogDocument,
    CreateOrderRequest,
    OrderFilter,
    OrderMetadata,
    OrderStatus,
    PublishedOrder,
    StorageStats,
)

logger = logging.getLogger(__name__)

LOCK_SUFFIX = ".lock"
_BASE36 = string.digits + string.ascii_lowercase


# ═══════════════════════════════════════════════════════════════════════════════
# ORDER IDS
# ═══════════════════════════════════════════════════════════════════════════════

def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def generate_order_id() -> str:
    """order_<base36 epoch millis>_<6 random base36 chars>"""
    millis = int(time.time() * 1000)
    suffix = "".join(secrets.choice(_BASE36) for _ in range(6))
    return f"order_{_to_base36(millis)}_{suffix}"


def validate_order_id(order_id: str) -> bool:
    parts = order_id.split("_")
    return (
        len(parts) == 3
        and parts[0] == "order"
        and all(p and all(c in _BASE36 for c in p) for p in parts[1:])
    )


# ═══════════════════════════════════════════════════════════════════════════════
# FILE LOCK
# ═══════════════════════════════════════════════════════════════════════════════

def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


class FileLock:
    """Cooperative lock marker with staleness detection."""

    def __init__(
        self,
        path: Path,
        timeout: Optional[float] = None,
        retry_interval: Optional[float] = None,
        stale_after: Optional[float] = None,
    ) -> None:
        self.path = path
        self.timeout = settings.STORAGE_LOCK_TIMEOUT_SECONDS if timeout is None else timeout
        self.retry_interval = (
            settings.STORAGE_LOCK_RETRY_INTERVAL if retry_interval is None else retry_interval
        )
        self.stale_after = settings.STORAGE_LOCK_STALE_SECONDS if stale_after is None else stale_after

    def acquire(self) -> None:
        deadline = time.monotonic() + self.timeout
        while True:
            try:
                fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
            except FileExistsError:
                if self._break_if_stale():
                    continue
                if time.monotonic() >= deadline:
                    raise StorageLockTimeout(
                        "Order storage is busy, try again",
                        detail=f"could not acquire {self.path} within {self.timeout}s",
                    )
                time.sleep(self.retry_interval)
                continue

            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump({"pid": os.getpid(), "created": time.time()}, f)
            return

    def release(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            logger.warning(f"[CATALOG] Lock {self.path} already removed on release")

    def _break_if_stale(self) -> bool:
        """True when the caller should retry O_EXCL immediately."""
        try:
            raw = self.path.read_text(encoding="utf-8")
            mtime = self.path.stat().st_mtime
        except FileNotFoundError:
            return True
        try:
            info = json.loads(raw or "{}")
        except ValueError:
            # Marker caught mid-write or garbage; fall back to its mtime.
            info = {}
        if not isinstance(info, dict):
            info = {}

        created = info.get("created")
        created = float(created) if isinstance(created, (int, float)) else mtime
        pid = info.get("pid")

        age = time.time() - created
        reason = None
        if age > self.stale_after:
            reason = f"age {age:.1f}s exceeds {self.stale_after}s"
        elif isinstance(pid, int) and pid != os.getpid() and not _pid_alive(pid):
            reason = f"owner pid {pid} is not running"
        if reason is None:
            return False

        if self._discard_marker(raw):
            logger.warning(f"[CATALOG] Breaking stale lock {self.path}: {reason}")
        return True

    def _discard_marker(self, expected: str) -> bool:
        """
        Remove the marker only if it still holds `expected`.

        The marker is first renamed to a private name, so a concurrent waiter
        that already replaced the stale marker with its own keeps its lock:
        a mismatching marker is linked back into place.
        """
        claimed = self.path.with_name(f"{self.path.name}.{os.getpid()}.{secrets.token_hex(4)}")
        try:
            os.rename(self.path, claimed)
        except FileNotFoundError:
            return False

        try:
            if claimed.read_text(encoding="utf-8") == expected:
                return True
            try:
                os.link(claimed, self.path)
            except FileExistsError:
                logger.error(
                    f"[CATALOG] Could not restore live lock {self.path}; another writer took it"
                )
            return False
        finally:
            claimed.unlink(missing_ok=True)

    def __enter__(self) -> "FileLock":
        self.acquire()
        return self

    def __exit__(self, *exc) -> None:
        self.release()


# ═══════════════════════════════════════════════════════════════════════════════
# CATALOG
# ═══════════════════════════════════════════════════════════════════════════════

class OrderCatalog:
    """
    Published-order store with an active/filled/cancelled lifecycle.

    Usage:
        catalog = OrderCatalog("storage/published_orders.json")
        order_id = catalog.publish(request)
        catalog.update_status(order_id, OrderStatus.FILLED)
    """

    def __init__(self, storage_path: Optional[str] = None, lock: Optional[FileLock] = None) -> None:
        self.storage_path = Path(storage_path or settings.ORDER_STORAGE_PATH)
        self.storage_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = lock or FileLock(Path(str(self.storage_path) + LOCK_SUFFIX))
        if not self.storage_path.exists():
            with self._lock:
                if not self.storage_path.exists():
                    self._write(CatalogDocument())
                    logger.info(f"[CATALOG] Initialized empty catalog at {self.storage_path}")

    # ── Public operations ──

    def publish(self, request: CreateOrderRequest) -> str:
        """
        Persist a new active order and return its id.

        Raises:
            DuplicateCommitment: An active order already uses this commitment.
        """
        with self._lock:
            doc = self._read()
            commitment = int(request.commitment)
            for existing in doc.orders:
                if (
                    int(existing.commitment) == commitment
                    and existing.metadata.status == OrderStatus.ACTIVE
                ):
                    raise DuplicateCommitment(
                        f"Order with commitment {request.commitment} already exists",
                    )

            order_id = generate_order_id()
            order = PublishedOrder(
                id=order_id,
                order_data=request.order_data,
                signature=request.signature,
                commitment=request.commitment,
                metadata=OrderMetadata(**request.metadata.model_dump()),
            )
            doc.orders.append(order)
            self._write(doc)

        logger.info(
            f"[CATALOG] Published {order_id} | maker={order.metadata.maker} "
            f"network={order.metadata.network}"
        )
        return order_id

    def get_by_id(self, order_id: str) -> Optional[PublishedOrder]:
        with self._lock:
            doc = self._read()
        return next((o for o in doc.orders if o.id == order_id), None)

    def query(self, order_filter: Optional[OrderFilter] = None) -> List[PublishedOrder]:
        """Orders matching every set filter field, newest published first."""
        f = order_filter or OrderFilter()
        with self._lock:
            doc = self._read()

        def matches(order: PublishedOrder) -> bool:
            m = order.metadata
            return (
                (f.status is None or m.status == f.status)
                and (f.maker is None or m.maker.lower() == f.maker.lower())
                and (f.maker_asset is None or m.maker_asset.lower() == f.maker_asset.lower())
                and (f.taker_asset is None or m.taker_asset.lower() == f.taker_asset.lower())
                and (f.network is None or m.network == f.network)
            )

        indexed = [(i, o) for i, o in enumerate(doc.orders) if matches(o)]
        indexed.sort(key=lambda pair: (pair[1].metadata.published, pair[0]), reverse=True)
        return [o for _, o in indexed]

    def get_active_orders(self, network: Optional[str] = None) -> List[PublishedOrder]:
        return self.query(OrderFilter(status=OrderStatus.ACTIVE, network=network))

    def update_status(self, order_id: str, status: OrderStatus) -> PublishedOrder:
        """
        Set an order's status. Any transition is accepted.

        Raises:
            CatalogOrderNotFound: Unknown order id.
        """
        with self._lock:
            doc = self._read()
            order = next((o for o in doc.orders if o.id == order_id), None)
            if order is None:
                raise CatalogOrderNotFound(f"Order {order_id} not found")
            previous = order.metadata.status
            order.metadata.status = status
            self._write(doc)

        logger.info(f"[CATALOG] {order_id} status {previous.value} -> {status.value}")
        return order

    def get_statistics(self) -> StorageStats:
        with self._lock:
            doc = self._read()
        stats = StorageStats(total=len(doc.orders))
        for order in doc.orders:
            if order.metadata.status == OrderStatus.ACTIVE:
                stats.active += 1
            elif order.metadata.status == OrderStatus.FILLED:
                stats.filled += 1
            elif order.metadata.status == OrderStatus.CANCELLED:
                stats.cancelled += 1
        return stats

    # ── Internals ──

    def _read(self) -> CatalogDocument:
        try:
            raw = self.storage_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return CatalogDocument()

        try:
            data = json.loads(raw)
        except ValueError as exc:
            logger.error(f"[CATALOG] Unparsable catalog {self.storage_path}: {exc}")
            raise StorageCorrupt(
                "Order storage is corrupt",
                detail=f"{self.storage_path}: {exc}",
            )

        if not isinstance(data, dict) or data.get("version") != STORAGE_VERSION:
            found = data.get("version", "unknown") if isinstance(data, dict) else "unknown"
            logger.warning(
                f"[CATALOG] Storage version mismatch. Expected: {STORAGE_VERSION}, Found: {found}"
            )

        try:
            return CatalogDocument.model_validate(data)
        except ValidationError as exc:
            logger.error(f"[CATALOG] Catalog {self.storage_path} has an invalid shape: {exc}")
            raise StorageCorrupt(
                "Order storage is corrupt",
                detail=f"{self.storage_path}: {exc.error_count()} validation errors",
            )

    def _write(self, doc: CatalogDocument) -> None:
        doc.last_updated = datetime.now(timezone.utc)
        doc.version = STORAGE_VERSION
        tmp_path = self.storage_path.with_name(self.storage_path.name + ".tmp")
        tmp_path.write_text(
            doc.model_dump_json(by_alias=True, indent=2),
            encoding="utf-8",
        )
        os.replace(tmp_path, self.storage_path)


_catalog_instance: Optional[OrderCatalog] = None


def get_catalog() -> OrderCatalog:
    """Lazy process-wide catalog at ORDER_STORAGE_PATH."""
    global _catalog_instance
    if _catalog_instance is None:
        _catalog_instance = OrderCatalog()
    return _catalog_instance
