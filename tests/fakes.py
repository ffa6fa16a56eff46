import asyncio
import uuid
from collections import defaultdict
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Set
from uuid6 import uuid7
from freshcart.common.utils import now
from freshcart.orders.models import LockedProduct, LockedVariant, OrderLine, OrderRow
from freshcart.recommendations.models import (
    AffinityOrderItem,
    ProductCard,
    PurchaseSummary,
    ScoredOrderItem,
    ViewRecord,
)


class InjectedFailure(RuntimeError):
    pass


class FakeStore:
    """Committed rows of the order tables, plus one asyncio.Lock per locked row."""

    def __init__(self):
        self.products: Dict[uuid.UUID, dict] = {}
        self.variants: Dict[uuid.UUID, dict] = {}
        self.orders: Dict[uuid.UUID, dict] = {}
        self.order_items: List[dict] = []
        self.coupon_usage: Set[tuple] = set()
        self.carts: Dict[uuid.UUID, list] = {}
        self.copurchases: Dict[tuple, int] = {}
        self.locks = defaultdict(asyncio.Lock)
        self.fail_on: Optional[str] = None
        self.statement_timeouts: List[int] = []
        self.lock_order: List[tuple] = []

    def add_product(self, name="Milk 1L", price="50.00", stock=10, is_active=True) -> uuid.UUID:
        pid = uuid7()
        self.products[pid] = {"name": name, "price": Decimal(price), "stock_quantity": stock, "is_active": is_active}
        return pid

    def add_variant(self, product_id, price) -> uuid.UUID:
        vid = uuid7()
        self.variants[vid] = {"product_id": product_id, "price": Decimal(price)}
        return vid

    def add_order(self, user_id, status="pending", items=(), copurchase_recorded=False) -> uuid.UUID:
        oid = uuid7()
        self.orders[oid] = {
            "id": oid,
            "user_id": user_id,
            "status": status,
            "subtotal": Decimal("0"),
            "discount_amount": Decimal("0"),
            "total_amount": Decimal("0"),
            "coupon_id": None,
            "delivery_address": "12 Market Road",
            "copurchase_recorded": copurchase_recorded,
            "created_at": now(),
            "delivered_at": None,
        }
        for pid, qty in items:
            self.order_items.append({"order_id": oid, "product_id": pid, "variant_id": None, "quantity": qty,
                                     "price": self.products[pid]["price"]})
        return oid

    def stock(self, pid) -> int:
        return self.products[pid]["stock_quantity"]

    def session(self) -> "FakeSession":
        return FakeSession(self)


class FakeSession:
    """Stages writes until commit; row locks are held until the transaction ends."""

    def __init__(self, store: FakeStore):
        self.store = store
        self._held: Dict[tuple, asyncio.Lock] = {}
        self._staged = []
        self.pending_stock: Dict[uuid.UUID, int] = {}
        self.commits = 0
        self.rollbacks = 0

    async def lock(self, key: tuple):
        if key in self._held:
            return
        lock = self.store.locks[key]
        await lock.acquire()
        self._held[key] = lock
        self.store.lock_order.append(key)
        # give a competing transaction the chance to queue up behind us
        await asyncio.sleep(0)

    def stage(self, fn):
        self._staged.append(fn)

    async def commit(self):
        for fn in self._staged:
            fn()
        self.commits += 1
        self._finish()

    async def rollback(self):
        self.rollbacks += 1
        self._finish()

    def _finish(self):
        self._staged = []
        self.pending_stock = {}
        held, self._held = self._held, {}
        for lock in held.values():
            lock.release()


class FakeOrderRepository:
    """Same call surface as freshcart.orders.repository, backed by a FakeStore."""

    def __init__(self, store: FakeStore):
        self.store = store

    def _maybe_fail(self, step: str):
        if self.store.fail_on == step:
            raise InjectedFailure(step)

    async def set_statement_timeout(self, session, timeout_ms):
        self.store.statement_timeouts.append(timeout_ms)

    async def lock_products(self, session, product_ids):
        locked = {}
        for pid in sorted(set(product_ids)):
            await session.lock(("product", pid))
            row = self.store.products.get(pid)
            if row is None:
                continue
            locked[pid] = LockedProduct(id=pid, name=row["name"], price=row["price"],
                                        stock_quantity=row["stock_quantity"], is_active=row["is_active"])
        return locked

    async def lock_variant(self, session, variant_id, product_id):
        await session.lock(("variant", variant_id))
        row = self.store.variants.get(variant_id)
        if row is None or row["product_id"] != product_id:
            return None
        return LockedVariant(id=variant_id, product_id=product_id, price=row["price"])

    async def insert_order(self, session, *, user_id, subtotal, discount_amount, total_amount, coupon_id, delivery_address):
        self._maybe_fail("insert_order")
        oid = uuid7()
        row = {
            "id": oid,
            "user_id": user_id,
            "status": "pending",
            "subtotal": subtotal,
            "discount_amount": discount_amount,
            "total_amount": total_amount,
            "coupon_id": coupon_id,
            "delivery_address": delivery_address,
            "copurchase_recorded": False,
            "created_at": now(),
            "delivered_at": None,
        }
        session.stage(lambda: self.store.orders.__setitem__(oid, row))
        return oid

    async def insert_order_items(self, session, order_id, lines):
        self._maybe_fail("insert_order_items")
        rows = [{"order_id": order_id, "product_id": l.product_id, "variant_id": l.variant_id,
                 "quantity": l.quantity, "price": l.price} for l in lines]
        session.stage(lambda: self.store.order_items.extend(rows))

    async def decrement_stock(self, session, product_id, quantity):
        self._maybe_fail("decrement_stock")
        current = self.store.products[product_id]["stock_quantity"] - session.pending_stock.get(product_id, 0)
        if current < quantity:
            return False
        session.pending_stock[product_id] = session.pending_stock.get(product_id, 0) + quantity

        def apply():
            self.store.products[product_id]["stock_quantity"] -= quantity
        session.stage(apply)
        return True

    async def insert_coupon_usage(self, session, user_id, coupon_id, order_id):
        await session.lock(("coupon_usage", user_id, coupon_id))
        if (user_id, coupon_id) in self.store.coupon_usage:
            return False
        session.stage(lambda: self.store.coupon_usage.add((user_id, coupon_id)))
        return True

    async def clear_cart(self, session, user_id):
        self._maybe_fail("clear_cart")
        count = len(self.store.carts.get(user_id, []))
        session.stage(lambda: self.store.carts.pop(user_id, None))
        return count

    async def get_order_for_update(self, session, order_id):
        await session.lock(("order", order_id))
        row = self.store.orders.get(order_id)
        if row is None:
            return None
        return OrderRow(id=order_id, user_id=row["user_id"], status=row["status"],
                        copurchase_recorded=row["copurchase_recorded"])

    async def get_order_lines(self, session, order_id):
        return [OrderLine(product_id=i["product_id"], quantity=i["quantity"])
                for i in self.store.order_items if i["order_id"] == order_id]

    async def get_order_product_ids(self, session, order_id):
        return list(dict.fromkeys(i["product_id"] for i in self.store.order_items if i["order_id"] == order_id))

    async def restore_stock(self, session, lines):
        per_product: Dict[uuid.UUID, int] = {}
        for line in lines:
            per_product[line.product_id] = per_product.get(line.product_id, 0) + line.quantity
        restored = {pid: self.store.products[pid]["stock_quantity"] + qty for pid, qty in per_product.items()}

        def apply():
            for pid, qty in restored.items():
                self.store.products[pid]["stock_quantity"] = qty
        session.stage(apply)
        return restored

    async def upsert_copurchase_pairs(self, session, pairs, at):
        self._maybe_fail("upsert_copurchase_pairs")
        pairs = list(pairs)

        def apply():
            for pair in pairs:
                self.store.copurchases[pair] = self.store.copurchases.get(pair, 0) + 1
        session.stage(apply)

    async def update_order_status(self, session, order_id, status, *, delivered_at=None, copurchase_recorded=None):
        values = {"status": status.value}
        if delivered_at is not None:
            values["delivered_at"] = delivered_at
        if copurchase_recorded is not None:
            values["copurchase_recorded"] = copurchase_recorded
        session.stage(lambda: self.store.orders[order_id].update(values))

    async def fetch_order_with_items(self, session, order_id):
        row = self.store.orders.get(order_id)
        if row is None:
            return None
        items = [{k: i[k] for k in ("product_id", "variant_id", "quantity", "price")}
                 for i in self.store.order_items if i["order_id"] == order_id]
        return {**row, "items": items}


class RecordingPublisher:
    def __init__(self, fail: bool = False):
        self.batches = []
        self.fail = fail

    async def __call__(self, events):
        if self.fail:
            raise ConnectionError("feed down")
        self.batches.append(list(events))

    @property
    def events(self):
        return [ev for batch in self.batches for ev in batch]


def card(name="Apples", price="40.00", stock=10, category_id=None, created_at: Optional[datetime] = None,
         product_id: Optional[uuid.UUID] = None) -> ProductCard:
    return ProductCard(id=product_id or uuid7(), name=name, price=Decimal(price), stock_quantity=stock,
                       category_id=category_id, created_at=created_at or now())


class FakeRecommendationRepository:
    """Same call surface as freshcart.recommendations.repository, over plain lists."""

    def __init__(self):
        self.products: Dict[uuid.UUID, ProductCard] = {}
        self.delivered_items: List[ScoredOrderItem] = []
        self.copurchased: Dict[uuid.UUID, List[uuid.UUID]] = {}
        self.copurchase_error: Optional[Exception] = None
        self.purchase_summaries: Dict[uuid.UUID, List[PurchaseSummary]] = {}
        self.recent_purchases: Dict[uuid.UUID, Set[uuid.UUID]] = {}
        self.affinity_items: Dict[uuid.UUID, List[AffinityOrderItem]] = {}
        self.views: Dict[uuid.UUID, List[ViewRecord]] = {}
        self.recorded_views: List[tuple] = []
        self.delivered_windows: List[datetime] = []
        self.copurchase_calls = 0

    def add(self, product: ProductCard) -> ProductCard:
        self.products[product.id] = product
        return product

    def _available(self):
        return [p for p in self.products.values() if p.stock_quantity > 0]

    async def fetch_delivered_order_items(self, session, since):
        self.delivered_windows.append(since)
        return [i for i in self.delivered_items if i.created_at >= since]

    async def fetch_available_products(self, session, product_ids):
        return {p.id: p for p in self._available() if p.id in set(product_ids)}

    async def fetch_newest_products(self, session, limit, *, category_id=None, exclude_ids=()):
        rows = [p for p in self._available() if p.id not in set(exclude_ids)]
        if category_id is not None:
            rows = [p for p in rows if p.category_id == category_id]
        rows.sort(key=lambda p: (-p.created_at.timestamp(), str(p.id)))
        return rows[:limit]

    async def fetch_candidates(self, session):
        rows = self._available()
        rows.sort(key=lambda p: (-p.created_at.timestamp(), str(p.id)))
        return rows

    async def get_product_category(self, session, product_id):
        product = self.products.get(product_id)
        if product is None:
            return False, None
        return True, product.category_id

    async def fetch_copurchased(self, session, product_id, limit, exclude_ids=()):
        self.copurchase_calls += 1
        if self.copurchase_error is not None:
            raise self.copurchase_error
        available = {p.id for p in self._available()}
        ids = [pid for pid in self.copurchased.get(product_id, [])
               if pid in available and pid != product_id and pid not in set(exclude_ids)]
        return [self.products[pid] for pid in ids[:limit]]

    async def fetch_purchase_summaries(self, session, user_id):
        return list(self.purchase_summaries.get(user_id, []))

    async def fetch_recent_purchase_ids(self, session, user_id, since):
        return set(self.recent_purchases.get(user_id, set()))

    async def fetch_affinity_order_items(self, session, user_id, order_limit=30):
        return list(self.affinity_items.get(user_id, []))

    async def fetch_recent_views(self, session, user_id, limit=50):
        return list(self.views.get(user_id, []))[:limit]

    async def upsert_product_view(self, session, user_id, product_id, at):
        self.recorded_views.append((user_id, product_id, at))


class NullSession:
    def __init__(self, execute_error: Optional[Exception] = None):
        self.commits = 0
        self.rollbacks = 0
        self.execute_error = execute_error

    async def execute(self, *args, **kwargs):
        if self.execute_error is not None:
            raise self.execute_error

    async def commit(self):
        self.commits += 1

    async def rollback(self):
        self.rollbacks += 1

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False
