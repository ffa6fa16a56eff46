import uuid
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple
from sqlalchemy import delete, select, text, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from uuid6 import uuid7
from freshcart.common.utils import now
from freshcart.orders.models import LockedProduct, LockedVariant, OrderLine, OrderRow, PricedLine
from freshcart.schema.full_schema import CartItem, CouponUsage, OrderItem, Orders, OrderStatus, Product, ProductCoPurchase, ProductVariant


async def set_statement_timeout(session, timeout_ms: int):
    # SET LOCAL only lasts until the end of the current transaction
    await session.execute(text(f"SET LOCAL statement_timeout = {int(timeout_ms)}"))


async def lock_products(session, product_ids: Sequence[uuid.UUID]) -> Dict[uuid.UUID, LockedProduct]:
    """Lock product rows one at a time in ascending id order so concurrent checkouts never deadlock."""
    locked = {}
    for pid in sorted(set(product_ids)):
        stmt = (
            select(Product.id, Product.name, Product.price, Product.stock_quantity, Product.is_active)
            .where(Product.id == pid)
            .with_for_update()
        )
        res = await session.execute(stmt)
        row = res.one_or_none()
        if row is None:
            continue
        locked[row.id] = LockedProduct(
            id=row.id,
            name=row.name,
            price=Decimal(row.price),
            stock_quantity=int(row.stock_quantity),
            is_active=bool(row.is_active),
        )
    return locked


async def lock_variant(session, variant_id: uuid.UUID, product_id: uuid.UUID) -> Optional[LockedVariant]:
    stmt = (
        select(ProductVariant.id, ProductVariant.product_id, ProductVariant.price)
        .where(ProductVariant.id == variant_id, ProductVariant.product_id == product_id)
        .with_for_update()
    )
    res = await session.execute(stmt)
    row = res.one_or_none()
    if row is None:
        return None
    return LockedVariant(id=row.id, product_id=row.product_id, price=Decimal(row.price))


async def insert_order(session, *, user_id: uuid.UUID, subtotal: Decimal, discount_amount: Decimal,
                       total_amount: Decimal, coupon_id: Optional[uuid.UUID], delivery_address: str) -> uuid.UUID:
    order = Orders(
        user_id=user_id,
        status=OrderStatus.PENDING.value,
        subtotal=subtotal,
        discount_amount=discount_amount,
        total_amount=total_amount,
        coupon_id=coupon_id,
        delivery_address=delivery_address,
        created_at=now(),
        updated_at=now(),
    )
    session.add(order)
    await session.flush()  # to get order.id
    return order.id


async def insert_order_items(session, order_id: uuid.UUID, lines: Sequence[PricedLine]):
    ts = now()
    rows = [
        {
            "order_id": order_id,
            "product_id": line.product_id,
            "variant_id": line.variant_id,
            "quantity": line.quantity,
            "price": line.price,
            "created_at": ts,
        }
        for line in lines
    ]
    if rows:
        await session.execute(pg_insert(OrderItem).values(rows))


async def decrement_stock(session, product_id: uuid.UUID, quantity: int) -> bool:
    """Decrement under the row lock; the stock >= quantity guard keeps stock non-negative."""
    stmt = (
        update(Product)
        .where(Product.id == product_id, Product.stock_quantity >= quantity)
        .values(stock_quantity=Product.stock_quantity - quantity, updated_at=now())
    )
    res = await session.execute(stmt)
    return res.rowcount == 1


async def insert_coupon_usage(session, user_id: uuid.UUID, coupon_id: uuid.UUID, order_id: uuid.UUID) -> bool:
    """Returns False when the (user, coupon) pair already exists.

    A concurrent insert of the same pair blocks on the unique index until the other
    transaction finishes, so at most one of them ever sees True.
    """
    stmt = (
        pg_insert(CouponUsage)
        .values(id=uuid7(), user_id=user_id, coupon_id=coupon_id, order_id=order_id, used_at=now())
        .on_conflict_do_nothing(constraint="uq_coupon_usage_user_coupon")
        .returning(CouponUsage.id)
    )
    res = await session.execute(stmt)
    return res.scalar_one_or_none() is not None


async def clear_cart(session, user_id: uuid.UUID) -> int:
    res = await session.execute(delete(CartItem).where(CartItem.user_id == user_id))
    return res.rowcount or 0


async def get_order_for_update(session, order_id: uuid.UUID) -> Optional[OrderRow]:
    stmt = (
        select(Orders.id, Orders.user_id, Orders.status, Orders.copurchase_recorded)
        .where(Orders.id == order_id)
        .with_for_update()
    )
    res = await session.execute(stmt)
    row = res.one_or_none()
    if row is None:
        return None
    return OrderRow(id=row.id, user_id=row.user_id, status=row.status, copurchase_recorded=bool(row.copurchase_recorded))


async def get_order_lines(session, order_id: uuid.UUID) -> List[OrderLine]:
    stmt = select(OrderItem.product_id, OrderItem.quantity).where(OrderItem.order_id == order_id)
    res = await session.execute(stmt)
    return [OrderLine(product_id=r.product_id, quantity=int(r.quantity)) for r in res.all()]


async def get_order_product_ids(session, order_id: uuid.UUID) -> List[uuid.UUID]:
    stmt = select(OrderItem.product_id).where(OrderItem.order_id == order_id).distinct()
    res = await session.execute(stmt)
    return list(res.scalars().all())


async def restore_stock(session, lines: Sequence[OrderLine]) -> Dict[uuid.UUID, int]:
    """Give ordered quantities back; returns the new stock per product."""
    per_product: Dict[uuid.UUID, int] = {}
    for line in lines:
        per_product[line.product_id] = per_product.get(line.product_id, 0) + line.quantity

    restored = {}
    for pid in sorted(per_product):
        stmt = (
            update(Product)
            .where(Product.id == pid)
            .values(stock_quantity=Product.stock_quantity + per_product[pid], updated_at=now())
            .returning(Product.stock_quantity)
        )
        res = await session.execute(stmt)
        new_stock = res.scalar_one_or_none()
        if new_stock is not None:
            restored[pid] = int(new_stock)
    return restored


async def upsert_copurchase_pairs(session, pairs: Sequence[Tuple[uuid.UUID, uuid.UUID]], at: datetime):
    if not pairs:
        return
    rows = [
        {"product_id": a, "co_product_id": b, "co_purchase_count": 1, "last_purchased_at": at}
        for a, b in pairs
    ]
    stmt = pg_insert(ProductCoPurchase).values(rows)
    stmt = stmt.on_conflict_do_update(
        index_elements=["product_id", "co_product_id"],
        set_={
            "co_purchase_count": ProductCoPurchase.co_purchase_count + 1,
            "last_purchased_at": stmt.excluded.last_purchased_at,
        },
    )
    await session.execute(stmt)


async def update_order_status(session, order_id: uuid.UUID, status: OrderStatus, *,
                              delivered_at: Optional[datetime] = None,
                              copurchase_recorded: Optional[bool] = None):
    values = {"status": status.value, "updated_at": now()}
    if delivered_at is not None:
        values["delivered_at"] = delivered_at
    if copurchase_recorded is not None:
        values["copurchase_recorded"] = copurchase_recorded
    await session.execute(update(Orders).where(Orders.id == order_id).values(**values))


async def fetch_order_with_items(session, order_id: uuid.UUID) -> Optional[dict]:
    res = await session.execute(select(Orders).where(Orders.id == order_id))
    order = res.scalar_one_or_none()
    if order is None:
        return None
    items_res = await session.execute(
        select(OrderItem.product_id, OrderItem.variant_id, OrderItem.quantity, OrderItem.price)
        .where(OrderItem.order_id == order_id)
        .order_by(OrderItem.created_at, OrderItem.product_id)
    )
    return {
        "id": order.id,
        "user_id": order.user_id,
        "status": order.status,
        "subtotal": order.subtotal,
        "discount_amount": order.discount_amount,
        "total_amount": order.total_amount,
        "delivery_address": order.delivery_address,
        "created_at": order.created_at,
        "delivered_at": order.delivered_at,
        "items": [dict(r._mapping) for r in items_res.all()],
    }
