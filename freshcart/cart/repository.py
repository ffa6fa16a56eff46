import uuid
from decimal import Decimal
from typing import List, Optional
from fastapi import HTTPException, status
from sqlalchemy import delete, func, or_, select, text, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from freshcart.cart.models import (
    MAX_ITEM_QTY,
    CartAdjustment,
    CartAdjustResult,
    CartItemOut,
    CartStockStatus,
    RemovedCartItem,
)
from freshcart.common.utils import now
from freshcart.schema.full_schema import CartItem, Product, ProductVariant


async def get_product_data(session, product_id: uuid.UUID, variant_id: Optional[uuid.UUID] = None):
    stmt = select(Product.id, Product.is_active, Product.stock_quantity).where(Product.id == product_id)
    res = await session.execute(stmt)
    row = res.one_or_none()
    if not row:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Product not found")

    if variant_id is not None:
        res = await session.execute(
            select(ProductVariant.id).where(ProductVariant.id == variant_id, ProductVariant.product_id == product_id)
        )
        if res.scalar_one_or_none() is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Variant not found: {variant_id}")

    return {"id": row.id, "is_active": bool(row.is_active), "stock_qty": int(row.stock_quantity)}


async def add_item(session, user_id: uuid.UUID, product_id: uuid.UUID, variant_id: Optional[uuid.UUID], quantity: int) -> dict:
    """Insert the line or add to its quantity; (user, product, variant) stays unique."""
    ts = now()
    stmt = pg_insert(CartItem).values(
        user_id=user_id, product_id=product_id, variant_id=variant_id, quantity=quantity,
        created_at=ts, updated_at=ts,
    )
    if variant_id is None:
        conflict_cols = ["user_id", "product_id"]
        where = text("variant_id IS NULL")
    else:
        conflict_cols = ["user_id", "product_id", "variant_id"]
        where = text("variant_id IS NOT NULL")

    stmt = stmt.on_conflict_do_update(
        index_elements=conflict_cols,
        index_where=where,
        set_={
            "quantity": func.least(CartItem.quantity + stmt.excluded.quantity, MAX_ITEM_QTY),
            "updated_at": ts,
        },
    ).returning(CartItem.id, CartItem.quantity)
    res = await session.execute(stmt)
    row = res.one()
    return {"id": row.id, "quantity": int(row.quantity)}


async def list_items(session, user_id: uuid.UUID) -> List[CartItemOut]:
    stmt = (
        select(
            CartItem.id, CartItem.product_id, CartItem.variant_id, CartItem.quantity,
            Product.name.label("product_name"),
            func.coalesce(ProductVariant.price, Product.price).label("unit_price"),
        )
        .join(Product, Product.id == CartItem.product_id)
        .outerjoin(ProductVariant, ProductVariant.id == CartItem.variant_id)
        .where(CartItem.user_id == user_id)
        .order_by(CartItem.created_at, CartItem.id)
    )
    res = await session.execute(stmt)
    return [
        CartItemOut(id=r.id, product_id=r.product_id, variant_id=r.variant_id, product_name=r.product_name,
                    quantity=int(r.quantity), unit_price=Decimal(r.unit_price))
        for r in res.all()
    ]


async def remove_item(session, user_id: uuid.UUID, item_id: uuid.UUID) -> bool:
    res = await session.execute(delete(CartItem).where(CartItem.id == item_id, CartItem.user_id == user_id))
    return (res.rowcount or 0) > 0


async def clear_cart(session, user_id: uuid.UUID) -> int:
    res = await session.execute(delete(CartItem).where(CartItem.user_id == user_id))
    return res.rowcount or 0


async def get_cart_stock_status(session, user_id: uuid.UUID) -> List[CartStockStatus]:
    stmt = (
        select(
            CartItem.id, CartItem.product_id, CartItem.variant_id, CartItem.quantity,
            Product.name, Product.stock_quantity, Product.is_active,
            func.coalesce(ProductVariant.price, Product.price).label("unit_price"),
        )
        .join(Product, Product.id == CartItem.product_id)
        .outerjoin(ProductVariant, ProductVariant.id == CartItem.variant_id)
        .where(CartItem.user_id == user_id)
        .order_by(CartItem.created_at, CartItem.id)
    )
    res = await session.execute(stmt)
    rows = []
    for r in res.all():
        stock = int(r.stock_quantity)
        rows.append(CartStockStatus(
            cart_item_id=r.id,
            product_id=r.product_id,
            variant_id=r.variant_id,
            product_name=r.name,
            cart_quantity=int(r.quantity),
            available_stock=stock,
            has_conflict=r.quantity > stock,
            suggested_quantity=max(0, min(int(r.quantity), stock)),
            is_out_of_stock=stock <= 0 or not r.is_active,
            unit_price=Decimal(r.unit_price),
        ))
    return rows


def _unavailable():
    return or_(Product.stock_quantity <= 0, Product.is_active.is_(False))


async def remove_unavailable_cart_items(session, user_id: uuid.UUID) -> List[RemovedCartItem]:
    stmt = (
        select(CartItem.id, CartItem.product_id, CartItem.quantity, Product.name)
        .join(Product, Product.id == CartItem.product_id)
        .where(CartItem.user_id == user_id, _unavailable())
        .with_for_update(of=CartItem)
    )
    res = await session.execute(stmt)
    rows = res.all()
    if rows:
        await session.execute(delete(CartItem).where(CartItem.id.in_([r.id for r in rows])))
    return [RemovedCartItem(product_id=r.product_id, product_name=r.name, quantity=int(r.quantity)) for r in rows]


async def adjust_cart_to_stock(session, user_id: uuid.UUID) -> CartAdjustResult:
    """Remove lines that can't be bought at all, clamp the rest to what's on the shelf."""
    stmt = (
        select(CartItem.id, CartItem.product_id, CartItem.quantity, Product.name, Product.stock_quantity, Product.is_active)
        .join(Product, Product.id == CartItem.product_id)
        .where(CartItem.user_id == user_id, or_(CartItem.quantity > Product.stock_quantity, _unavailable()))
        .order_by(CartItem.created_at, CartItem.id)
        .with_for_update(of=CartItem)
    )
    res = await session.execute(stmt)

    result = CartAdjustResult()
    for r in res.all():
        stock = int(r.stock_quantity)
        if stock <= 0 or not r.is_active:
            await session.execute(delete(CartItem).where(CartItem.id == r.id))
            result.removed_count += 1
            result.adjustments.append(CartAdjustment(product_id=r.product_id, product_name=r.name,
                                                     old_quantity=int(r.quantity), new_quantity=0, action="removed"))
        else:
            await session.execute(
                update(CartItem).where(CartItem.id == r.id).values(quantity=stock, updated_at=now())
            )
            result.adjusted_count += 1
            result.adjustments.append(CartAdjustment(product_id=r.product_id, product_name=r.name,
                                                     old_quantity=int(r.quantity), new_quantity=stock, action="adjusted"))
    return result
