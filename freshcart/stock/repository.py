import uuid
from decimal import Decimal
from typing import List, Optional, Sequence
from sqlalchemy import select, update
from freshcart.common.utils import now
from freshcart.stock.models import CartLineForStock, StockCheckRow, StockInfo
from freshcart.schema.full_schema import Product, ProductVariant


async def check_stock_batch(session, product_ids: Sequence[uuid.UUID], *,
                            with_variant_prices: bool = False) -> List[StockInfo]:
    ids = list(set(product_ids))
    if not ids:
        return []
    stmt = (
        select(Product.id, Product.name, Product.stock_quantity, Product.is_active, Product.price)
        .where(Product.id.in_(ids))
        .order_by(Product.id)
    )
    res = await session.execute(stmt)
    infos = [
        StockInfo(product_id=r.id, product_name=r.name, stock_quantity=int(r.stock_quantity),
                  is_active=bool(r.is_active), price=Decimal(r.price))
        for r in res.all()
    ]
    if with_variant_prices and infos:
        res = await session.execute(
            select(ProductVariant.id, ProductVariant.product_id, ProductVariant.price)
            .where(ProductVariant.product_id.in_(ids))
        )
        by_product = {info.product_id: info for info in infos}
        for r in res.all():
            by_product[r.product_id].variant_prices[r.id] = Decimal(r.price)
    return infos


async def check_stock_with_variants(session, items: Sequence[CartLineForStock]) -> List[StockCheckRow]:
    """One row per requested line; unknown products come back unavailable with zero stock."""
    products = {info.product_id: info for info in await check_stock_batch(session, [i.product_id for i in items])}

    variant_ids = [i.variant_id for i in items if i.variant_id is not None]
    variants = {}
    if variant_ids:
        res = await session.execute(
            select(ProductVariant.id, ProductVariant.product_id, ProductVariant.variant_name, ProductVariant.price)
            .where(ProductVariant.id.in_(variant_ids))
        )
        variants = {r.id: r for r in res.all()}

    rows = []
    for item in items:
        info = products.get(item.product_id)
        stock = info.stock_quantity if info else 0
        active = info.is_active if info else False
        price = info.price if info else Decimal("0")
        variant_name = None
        variant = variants.get(item.variant_id) if item.variant_id is not None else None
        if variant is not None and variant.product_id == item.product_id:
            variant_name = variant.variant_name
            price = Decimal(variant.price)
        rows.append(StockCheckRow(
            product_id=item.product_id,
            variant_id=item.variant_id,
            product_name=info.product_name if info else "Unknown Product",
            variant_name=variant_name,
            requested_quantity=item.quantity,
            available_stock=stock,
            is_available=active and stock >= item.quantity,
            price=price,
        ))
    return rows


async def set_product_stock(session, product_id: uuid.UUID, stock_quantity: int,
                            is_active: Optional[bool] = None) -> Optional[StockInfo]:
    values = {"stock_quantity": stock_quantity, "updated_at": now()}
    if is_active is not None:
        values["is_active"] = is_active
    stmt = (
        update(Product)
        .where(Product.id == product_id)
        .values(**values)
        .returning(Product.id, Product.name, Product.stock_quantity, Product.is_active, Product.price)
    )
    res = await session.execute(stmt)
    r = res.one_or_none()
    if r is None:
        return None
    return StockInfo(product_id=r.id, product_name=r.name, stock_quantity=int(r.stock_quantity),
                     is_active=bool(r.is_active), price=Decimal(r.price))


def session_stock_fetcher(session_maker):
    """Build a StockMonitor fetcher that reads through a short-lived session per refresh."""
    async def fetch(product_ids: Sequence[uuid.UUID]) -> List[StockInfo]:
        async with session_maker() as session:
            return await check_stock_batch(session, product_ids, with_variant_prices=True)

    return fetch
