import uuid
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Set, Tuple
from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from freshcart.recommendations.constants import AFFINITY_ORDER_LIMIT, AFFINITY_VIEW_LIMIT
from freshcart.recommendations.models import AffinityOrderItem, ProductCard, PurchaseSummary, ScoredOrderItem, ViewRecord
from freshcart.schema.full_schema import (
    OrderItem,
    Orders,
    OrderStatus,
    Product,
    ProductCoPurchase,
    UserProductView,
)

AFFINITY_STATUSES = (OrderStatus.DELIVERED.value, OrderStatus.OUT_FOR_DELIVERY.value, OrderStatus.CONFIRMED.value)
# cancelled and rejected orders were never bought
PURCHASE_STATUSES = (OrderStatus.PENDING.value,) + AFFINITY_STATUSES

_CARD_COLUMNS = (
    Product.id, Product.name, Product.price, Product.mrp, Product.image_url, Product.unit,
    Product.stock_quantity, Product.category_id, Product.created_at,
)


def _card(row) -> ProductCard:
    return ProductCard(
        id=row.id,
        name=row.name,
        price=Decimal(row.price),
        mrp=Decimal(row.mrp) if row.mrp is not None else None,
        image_url=row.image_url,
        unit=row.unit,
        stock_quantity=int(row.stock_quantity),
        category_id=row.category_id,
        created_at=row.created_at,
    )


def _available():
    return (Product.is_active.is_(True), Product.stock_quantity > 0)


async def fetch_delivered_order_items(session, since: datetime) -> List[ScoredOrderItem]:
    stmt = (
        select(OrderItem.product_id, OrderItem.quantity, OrderItem.created_at)
        .join(Orders, Orders.id == OrderItem.order_id)
        .where(Orders.status == OrderStatus.DELIVERED.value, OrderItem.created_at >= since)
    )
    res = await session.execute(stmt)
    return [ScoredOrderItem(product_id=r.product_id, quantity=int(r.quantity), created_at=r.created_at) for r in res.all()]


async def fetch_available_products(session, product_ids: Sequence[uuid.UUID]) -> Dict[uuid.UUID, ProductCard]:
    if not product_ids:
        return {}
    stmt = select(*_CARD_COLUMNS).where(Product.id.in_(list(product_ids)), *_available())
    res = await session.execute(stmt)
    return {r.id: _card(r) for r in res.all()}


async def fetch_newest_products(session, limit: int, *, category_id: Optional[uuid.UUID] = None,
                                exclude_ids: Sequence[uuid.UUID] = ()) -> List[ProductCard]:
    stmt = select(*_CARD_COLUMNS).where(*_available())
    if category_id is not None:
        stmt = stmt.where(Product.category_id == category_id)
    if exclude_ids:
        stmt = stmt.where(Product.id.notin_(list(exclude_ids)))
    stmt = stmt.order_by(Product.created_at.desc(), Product.id).limit(limit)
    res = await session.execute(stmt)
    return [_card(r) for r in res.all()]


async def fetch_candidates(session) -> List[ProductCard]:
    stmt = select(*_CARD_COLUMNS).where(*_available()).order_by(Product.created_at.desc(), Product.id)
    res = await session.execute(stmt)
    return [_card(r) for r in res.all()]


async def get_product_category(session, product_id: uuid.UUID) -> Tuple[bool, Optional[uuid.UUID]]:
    res = await session.execute(select(Product.id, Product.category_id).where(Product.id == product_id))
    row = res.one_or_none()
    if row is None:
        return False, None
    return True, row.category_id


async def fetch_copurchased(session, product_id: uuid.UUID, limit: int,
                            exclude_ids: Sequence[uuid.UUID] = ()) -> List[ProductCard]:
    stmt = (
        select(*_CARD_COLUMNS, ProductCoPurchase.co_purchase_count)
        .join(Product, Product.id == ProductCoPurchase.co_product_id)
        .where(ProductCoPurchase.product_id == product_id, Product.id != product_id, *_available())
    )
    if exclude_ids:
        stmt = stmt.where(Product.id.notin_(list(exclude_ids)))
    stmt = stmt.order_by(ProductCoPurchase.co_purchase_count.desc(), Product.id).limit(limit)
    res = await session.execute(stmt)
    return [_card(r).model_copy(update={"score": float(r.co_purchase_count)}) for r in res.all()]


async def fetch_purchase_summaries(session, user_id: uuid.UUID) -> List[PurchaseSummary]:
    stmt = (
        select(
            OrderItem.product_id,
            func.count().label("purchase_count"),
            func.max(Orders.created_at).label("last_purchased_at"),
        )
        .join(Orders, Orders.id == OrderItem.order_id)
        .where(Orders.user_id == user_id, Orders.status == OrderStatus.DELIVERED.value)
        .group_by(OrderItem.product_id)
    )
    res = await session.execute(stmt)
    return [
        PurchaseSummary(product_id=r.product_id, purchase_count=int(r.purchase_count), last_purchased_at=r.last_purchased_at)
        for r in res.all()
    ]


async def fetch_recent_purchase_ids(session, user_id: uuid.UUID, since: datetime) -> Set[uuid.UUID]:
    stmt = (
        select(OrderItem.product_id)
        .join(Orders, Orders.id == OrderItem.order_id)
        .where(Orders.user_id == user_id, Orders.status.in_(PURCHASE_STATUSES), Orders.created_at >= since)
        .distinct()
    )
    res = await session.execute(stmt)
    return set(res.scalars().all())


async def fetch_affinity_order_items(session, user_id: uuid.UUID, order_limit: int = AFFINITY_ORDER_LIMIT) -> List[AffinityOrderItem]:
    recent_orders = (
        select(Orders.id, Orders.created_at)
        .where(Orders.user_id == user_id, Orders.status.in_(AFFINITY_STATUSES))
        .order_by(Orders.created_at.desc())
        .limit(order_limit)
        .subquery()
    )
    stmt = (
        select(OrderItem.product_id, Product.category_id, recent_orders.c.created_at)
        .join(recent_orders, recent_orders.c.id == OrderItem.order_id)
        .join(Product, Product.id == OrderItem.product_id)
    )
    res = await session.execute(stmt)
    return [AffinityOrderItem(product_id=r.product_id, category_id=r.category_id, order_created_at=r.created_at) for r in res.all()]


async def fetch_recent_views(session, user_id: uuid.UUID, limit: int = AFFINITY_VIEW_LIMIT) -> List[ViewRecord]:
    stmt = (
        select(UserProductView.product_id, UserProductView.view_count, UserProductView.last_viewed_at)
        .where(UserProductView.user_id == user_id)
        .order_by(UserProductView.last_viewed_at.desc(), UserProductView.product_id)
        .limit(limit)
    )
    res = await session.execute(stmt)
    return [ViewRecord(product_id=r.product_id, view_count=int(r.view_count or 1), last_viewed_at=r.last_viewed_at) for r in res.all()]


async def upsert_product_view(session, user_id: uuid.UUID, product_id: uuid.UUID, at: datetime):
    stmt = pg_insert(UserProductView).values(
        user_id=user_id, product_id=product_id, view_count=1, first_viewed_at=at, last_viewed_at=at,
    )
    stmt = stmt.on_conflict_do_update(
        constraint="uq_user_product_views_user_product",
        set_={
            "view_count": UserProductView.view_count + 1,
            "last_viewed_at": stmt.excluded.last_viewed_at,
        },
    )
    await session.execute(stmt)
